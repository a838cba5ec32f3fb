"""Unit tests for ScryptPasswordHasher."""

import pytest

from consent_gateway.infrastructure.password_hasher import ScryptPasswordHasher


@pytest.fixture
def hasher():
    return ScryptPasswordHasher(n=2 ** 10)


class TestScryptPasswordHasher:

    def test_hash_is_not_plaintext(self, hasher):
        encoded = hasher.hash("correct-horse")
        assert "correct-horse" not in encoded
        assert encoded.startswith("scrypt$1024$8$1$")

    def test_verify(self, hasher):
        encoded = hasher.hash("correct-horse")
        assert hasher.verify("correct-horse", encoded)
        assert not hasher.verify("wrong-horse", encoded)

    def test_salted(self, hasher):
        assert hasher.hash("correct-horse") != hasher.hash("correct-horse")

    def test_parameters_read_from_hash(self, hasher):
        """A hash made with other cost parameters still verifies."""
        encoded = ScryptPasswordHasher(n=2 ** 11, r=4).hash("correct-horse")
        assert hasher.verify("correct-horse", encoded)

    @pytest.mark.parametrize("encoded", ["", "plaintext", "bcrypt$1$2$3$x$y", "scrypt$abc$8$1$x$y"])
    def test_unreadable_hash_fails_closed(self, hasher, encoded):
        assert hasher.verify("correct-horse", encoded) is False
