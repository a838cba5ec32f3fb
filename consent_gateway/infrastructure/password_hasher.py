"""Password hashing for off-chain credentials.

Security Impact:
    - scrypt (memory-hard KDF) with a random 16-byte salt per password
    - Cost parameters are stored in the encoded hash so they can be raised
      later without invalidating existing records
    - Verification uses the KDF's constant-time comparison

Architecture:
    - Infrastructure layer; implements PasswordHasherPort
"""

import base64
import logging
import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from consent_gateway.domain.ports import PasswordHasherPort

logger = logging.getLogger(__name__)

SCHEME = "scrypt"
SALT_BYTES = 16
KEY_LENGTH = 32


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class ScryptPasswordHasher(PasswordHasherPort):
    """scrypt-based PasswordHasherPort.

    Encoded format: ``scrypt$<n>$<r>$<p>$<salt>$<hash>`` (urlsafe base64).

    Parameters:
        n: CPU/memory cost (power of two)
        r: Block size
        p: Parallelization
    """

    def __init__(self, n: int = 2 ** 14, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p

    def hash(self, password: str) -> str:
        salt = os.urandom(SALT_BYTES)
        kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=self.n, r=self.r, p=self.p)
        digest = kdf.derive(password.encode("utf-8"))
        return f"{SCHEME}${self.n}${self.r}${self.p}${_b64encode(salt)}${_b64encode(digest)}"

    def verify(self, password: str, encoded: str) -> bool:
        try:
            scheme, n, r, p, salt, digest = encoded.split("$")
            if scheme != SCHEME:
                raise ValueError(f"unknown scheme {scheme}")
            kdf = Scrypt(salt=_b64decode(salt), length=KEY_LENGTH, n=int(n), r=int(r), p=int(p))
            expected = _b64decode(digest)
        except ValueError as e:
            logger.warning(f"Unreadable password hash: {str(e)}")
            return False

        try:
            kdf.verify(password.encode("utf-8"), expected)
        except InvalidKey:
            return False
        return True
