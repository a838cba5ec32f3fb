"""HTTP API for the Consent Gateway (FastAPI)."""
