"""Consent Gateway: access delegation and multi-identity ledger gateway."""

__version__ = "1.0.0"
