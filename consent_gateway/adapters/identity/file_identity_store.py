"""File-system Identity Store.

This adapter implements IdentityStorePort as a directory of wallet files, one
JSON document per identity label (`<label>.id`), so enrolled identities survive
process restarts and can be provisioned out of band.

Security Impact:
    - Labels are validated to prevent path traversal outside the wallet
    - Certificate and private key PEMs are parsed before being stored
    - Files are written atomically and restricted to the owner (0600)
    - Private key material is never logged

Architecture:
    - Implements IdentityStorePort (Hexagonal Architecture)
    - Blocking file I/O; the session pool calls it via asyncio.to_thread
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from consent_gateway.domain.models import Identity
from consent_gateway.domain.ports import IdentityNotFound, IdentityStorePort, ValidationError

logger = logging.getLogger(__name__)

WALLET_SUFFIX = ".id"
_LABEL_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}$")


def validate_identity_material(identity: Identity) -> None:
    """Check that certificate and key are well-formed PEM.

    Raises:
        ValidationError: If either PEM cannot be parsed
    """
    try:
        x509.load_pem_x509_certificate(identity.certificate.encode("utf-8"))
    except ValueError as e:
        raise ValidationError(
            f"Identity {identity.label}: certificate is not a valid PEM X.509 certificate",
            details={"label": identity.label, "reason": str(e)},
        ) from e

    try:
        load_pem_private_key(identity.private_key.get_secret_value().encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise ValidationError(
            f"Identity {identity.label}: private key is not a valid unencrypted PEM key",
            details={"label": identity.label},
        ) from e


class FileSystemIdentityStore(IdentityStorePort):
    """Wallet-directory implementation of IdentityStorePort.

    Parameters:
        wallet_path: Directory holding `<label>.id` files (created if missing)
        validate_material: Parse PEM material on put (disable only in tests)

    Example Usage:
        ```python
        store = FileSystemIdentityStore("wallet")
        store.put("auditOrgAdmin", identity)
        identity = store.get("auditOrgAdmin")
        ```
    """

    def __init__(self, wallet_path: Union[str, Path], validate_material: bool = True):
        self.wallet_path = Path(wallet_path)
        self.wallet_path.mkdir(parents=True, exist_ok=True)
        self.validate_material = validate_material
        self._lock = threading.Lock()

    def _path_for(self, label: str) -> Path:
        if not _LABEL_PATTERN.match(label or ""):
            raise ValidationError(
                f"Invalid identity label: {label!r}",
                details={"label": label},
            )
        return self.wallet_path / f"{label}{WALLET_SUFFIX}"

    def get(self, label: str) -> Identity:
        path = self._path_for(label)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise IdentityNotFound(label) from None
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Wallet file for {label} is corrupt",
                details={"label": label, "reason": str(e)},
            ) from e
        return Identity.from_wallet_dict(label, data)

    def put(self, label: str, identity: Identity) -> None:
        path = self._path_for(label)
        if identity.label != label:
            identity = identity.model_copy(update={"label": label})
        if self.validate_material:
            validate_identity_material(identity)

        payload = json.dumps(identity.to_wallet_dict(), indent=2)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self.wallet_path, prefix=f".{label}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except OSError:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.info(f"Stored identity {label} (MSP: {identity.msp_id})")

    def remove(self, label: str) -> None:
        path = self._path_for(label)
        with self._lock:
            try:
                path.unlink()
                logger.info(f"Removed identity {label}")
            except FileNotFoundError:
                pass

    def labels(self) -> list[str]:
        return sorted(p.name[: -len(WALLET_SUFFIX)] for p in self.wallet_path.glob(f"*{WALLET_SUFFIX}"))
