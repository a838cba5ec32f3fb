"""Identity store adapters."""

from consent_gateway.adapters.identity.file_identity_store import (
    FileSystemIdentityStore,
    validate_identity_material,
)

__all__ = ["FileSystemIdentityStore", "validate_identity_material"]
