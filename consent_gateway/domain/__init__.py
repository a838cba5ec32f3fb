"""Domain core: models, ports, error taxonomy and services."""
