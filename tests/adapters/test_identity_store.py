"""Tests for the file-system identity store.

Security Impact:
    - Verifies wallet files are owner-only
    - Verifies labels cannot escape the wallet directory
    - Verifies malformed PEM material is rejected before it is stored
"""

import os
import stat

import pytest
from pydantic import SecretStr

from consent_gateway.adapters.identity import FileSystemIdentityStore
from consent_gateway.domain.models import Identity
from consent_gateway.domain.ports import IdentityNotFound, ValidationError


@pytest.fixture
def wallet(tmp_path):
    return FileSystemIdentityStore(tmp_path / "wallet")


class TestPutAndGet:

    def test_round_trip(self, wallet, hospital_identity):
        wallet.put("hospitalApolloAdmin", hospital_identity)

        loaded = wallet.get("hospitalApolloAdmin")

        assert loaded.label == "hospitalApolloAdmin"
        assert loaded.msp_id == "HospitalApolloMSP"
        assert loaded.certificate == hospital_identity.certificate
        assert loaded.private_key.get_secret_value() == hospital_identity.private_key.get_secret_value()

    def test_put_relabels_identity(self, wallet, hospital_identity):
        wallet.put("backupAdmin", hospital_identity)
        assert wallet.get("backupAdmin").label == "backupAdmin"

    def test_wallet_file_is_owner_only(self, wallet, hospital_identity):
        wallet.put("hospitalApolloAdmin", hospital_identity)

        mode = stat.S_IMODE(os.stat(wallet.wallet_path / "hospitalApolloAdmin.id").st_mode)
        assert mode == 0o600

    def test_put_replaces_existing(self, wallet, hospital_identity, audit_identity):
        wallet.put("admin", hospital_identity)
        wallet.put("admin", audit_identity)

        assert wallet.get("admin").msp_id == "AuditOrgMSP"
        assert wallet.labels() == ["admin"]

    def test_survives_new_instance(self, tmp_path, hospital_identity):
        FileSystemIdentityStore(tmp_path / "wallet").put("hospitalApolloAdmin", hospital_identity)

        reopened = FileSystemIdentityStore(tmp_path / "wallet")
        assert reopened.get("hospitalApolloAdmin").msp_id == "HospitalApolloMSP"


class TestValidation:

    def test_invalid_certificate_rejected(self, wallet, hospital_identity):
        broken = hospital_identity.model_copy(update={"certificate": "-----BEGIN CERTIFICATE-----\nnope\n"})

        with pytest.raises(ValidationError):
            wallet.put("hospitalApolloAdmin", broken)
        assert wallet.labels() == []

    def test_invalid_key_rejected(self, wallet, hospital_identity):
        broken = hospital_identity.model_copy(update={"private_key": SecretStr("not a key")})

        with pytest.raises(ValidationError) as exc_info:
            wallet.put("hospitalApolloAdmin", broken)
        assert "not a key" not in str(exc_info.value.to_dict())

    def test_validation_can_be_disabled(self, tmp_path):
        store = FileSystemIdentityStore(tmp_path / "raw", validate_material=False)
        store.put("x", Identity(label="x", msp_id="XMSP", certificate="c", private_key=SecretStr("k")))
        assert store.get("x").certificate == "c"

    @pytest.mark.parametrize("label", ["../escape", "a/b", "", ".hidden", "x" * 200])
    def test_unsafe_labels_rejected(self, wallet, hospital_identity, label):
        with pytest.raises(ValidationError):
            wallet.put(label, hospital_identity)
        with pytest.raises(ValidationError):
            wallet.get(label)

    def test_corrupt_wallet_file(self, wallet):
        (wallet.wallet_path / "broken.id").write_text("{not json")

        with pytest.raises(ValidationError):
            wallet.get("broken")


class TestLabelsAndRemove:

    def test_missing_label(self, wallet):
        with pytest.raises(IdentityNotFound) as exc_info:
            wallet.get("auditOrgAdmin")
        assert exc_info.value.status_code == 500

    def test_labels_sorted(self, wallet, hospital_identity, audit_identity):
        wallet.put("hospitalApolloAdmin", hospital_identity)
        wallet.put("auditOrgAdmin", audit_identity)

        assert wallet.labels() == ["auditOrgAdmin", "hospitalApolloAdmin"]

    def test_remove(self, wallet, hospital_identity):
        wallet.put("hospitalApolloAdmin", hospital_identity)
        wallet.remove("hospitalApolloAdmin")

        assert wallet.labels() == []
        with pytest.raises(IdentityNotFound):
            wallet.get("hospitalApolloAdmin")

    def test_remove_missing_is_noop(self, wallet):
        wallet.remove("nobody")
        assert wallet.labels() == []
