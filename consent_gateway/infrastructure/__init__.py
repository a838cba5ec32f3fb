"""Infrastructure layer: configuration, logging, hashing, tokens and audit."""
