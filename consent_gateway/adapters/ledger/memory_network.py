"""In-memory ledger network.

A process-local implementation of the healthcare contract used for local
development, demos and tests. It keeps a world state of patients, doctors and
access grants, appends an audit event for every state change, and enforces the
same organizational policies the deployed contract does (only the audit
organization verifies doctors and reads audit trails).

Architecture:
    - Implements LedgerNetworkPort / LedgerConnection / ContractHandle
    - Rejections are raised as LedgerRejectionError with contract-style text,
      so the gateway's classification path is exercised unchanged
    - Selected with CG_LEDGER_BACKEND=memory
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from consent_gateway.domain.enums import LedgerOperation
from consent_gateway.domain.models import Identity, utcnow
from consent_gateway.domain.ports import (
    ContractHandle,
    LedgerConnection,
    LedgerConnectionError,
    LedgerNetworkPort,
    LedgerRejectionError,
)

logger = logging.getLogger(__name__)

DEFAULT_AUDITOR_MSPS = ("AuditOrgMSP",)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class HealthcareLedgerState:
    """World state and transaction logic of the healthcare contract.

    Parameters:
        clock: Ledger time source (transaction timestamps)
        auditor_msps: MSP ids allowed to verify doctors and read audit trails
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        auditor_msps: Iterable[str] = DEFAULT_AUDITOR_MSPS,
    ):
        self.clock = clock
        self.auditor_msps = frozenset(auditor_msps)
        self.reset()

    def reset(self) -> None:
        self.patients: dict[str, dict] = {}
        self.doctors: dict[str, dict] = {}
        self.grants: dict[str, dict] = {}
        self.audit_log: list[dict] = []
        self.transaction_count = 0
        self.submission_count = 0

    def _audit(self, actor: str, subject: str, action: str, **details) -> None:
        self.audit_log.append({
            "actor": actor,
            "subject": subject,
            "action": action,
            "timestamp": _iso(self.clock()),
            "details": details,
        })

    def _require_auditor(self, msp_id: str, action: str) -> None:
        if msp_id not in self.auditor_msps:
            raise LedgerRejectionError(f"only AuditOrg can {action} (caller MSP: {msp_id})")

    def _grant_view(self, grant: dict) -> dict:
        now = self.clock()
        issued = datetime.fromisoformat(grant["grantedAt"])
        expires = issued + timedelta(hours=grant["durationHours"])
        view = dict(grant)
        view["expiresAt"] = _iso(expires)
        view["isValid"] = not grant["isRevoked"] and now < expires
        return view

    # ------------------------------------------------------------------
    # Submit operations
    # ------------------------------------------------------------------

    def register_patient(self, msp_id, patient_id, name, date_of_birth, phone,
                         national_id, fingerprint_template_id=""):
        if patient_id in self.patients:
            raise LedgerRejectionError(f"patient {patient_id} already exists")
        for existing in self.patients.values():
            if existing["aadharNumber"] == national_id:
                raise LedgerRejectionError(f"patient with national id already registered as {existing['patientID']}")
        self.patients[patient_id] = {
            "patientID": patient_id,
            "name": name,
            "dateOfBirth": date_of_birth,
            "phone": phone,
            "aadharNumber": national_id,
            "fingerprintTemplateID": fingerprint_template_id,
            "registeredBy": msp_id,
            "registeredAt": _iso(self.clock()),
        }
        self._audit(msp_id, patient_id, "REGISTER_PATIENT")
        return patient_id

    def register_doctor(self, msp_id, doctor_id, name, license_number,
                        specialization, hospital_name):
        if doctor_id in self.doctors:
            raise LedgerRejectionError(f"doctor {doctor_id} already exists")
        for existing in self.doctors.values():
            if existing["licenseNumber"] == license_number:
                raise LedgerRejectionError(f"doctor with license number already registered as {existing['doctorID']}")
        self.doctors[doctor_id] = {
            "doctorID": doctor_id,
            "name": name,
            "licenseNumber": license_number,
            "specialization": specialization,
            "hospitalName": hospital_name,
            "isVerified": False,
            "verifiedAt": None,
            "registeredBy": msp_id,
            "registeredAt": _iso(self.clock()),
        }
        self._audit(msp_id, doctor_id, "REGISTER_DOCTOR")
        return doctor_id

    def grant_access(self, msp_id, patient_id, doctor_id, duration_hours, purpose):
        if patient_id not in self.patients:
            raise LedgerRejectionError(f"patient {patient_id} does not exist")
        if doctor_id not in self.doctors:
            raise LedgerRejectionError(f"doctor {doctor_id} does not exist")
        try:
            hours = int(duration_hours)
        except ValueError:
            raise LedgerRejectionError(f"invalid duration: {duration_hours}") from None
        if hours <= 0:
            raise LedgerRejectionError(f"invalid duration: {duration_hours}")

        granted_at = self.clock()
        base_key = f"ACCESS_{patient_id}_{doctor_id}_{int(granted_at.timestamp() * 1000)}"
        key = base_key
        suffix = 1
        while key in self.grants:
            suffix += 1
            key = f"{base_key}_{suffix}"

        self.grants[key] = {
            "accessKey": key,
            "patientID": patient_id,
            "doctorID": doctor_id,
            "purpose": purpose,
            "grantedAt": _iso(granted_at),
            "durationHours": hours,
            "isRevoked": False,
            "revokedAt": None,
            "grantedBy": msp_id,
        }
        self._audit(msp_id, patient_id, "GRANT_ACCESS", accessKey=key, doctorID=doctor_id,
                    durationHours=hours, purpose=purpose)
        return key

    def revoke_access(self, msp_id, access_key):
        grant = self.grants.get(access_key)
        if grant is None:
            raise LedgerRejectionError(f"access key {access_key} not found")
        if grant["isRevoked"]:
            raise LedgerRejectionError(f"active access key {access_key} not found (already revoked)")
        grant["isRevoked"] = True
        grant["revokedAt"] = _iso(self.clock())
        self._audit(msp_id, grant["patientID"], "REVOKE_ACCESS", accessKey=access_key,
                    doctorID=grant["doctorID"])
        return access_key

    def verify_doctor(self, msp_id, doctor_id):
        self._require_auditor(msp_id, "verify doctors")
        doctor = self.doctors.get(doctor_id)
        if doctor is None:
            raise LedgerRejectionError(f"doctor {doctor_id} does not exist")
        doctor["isVerified"] = True
        doctor["verifiedAt"] = _iso(self.clock())
        self._audit(msp_id, doctor_id, "VERIFY_DOCTOR")
        return doctor

    # ------------------------------------------------------------------
    # Evaluate operations
    # ------------------------------------------------------------------

    def check_access_validity(self, msp_id, access_key):
        grant = self.grants.get(access_key)
        if grant is None:
            raise LedgerRejectionError(f"access key {access_key} does not exist")
        return self._grant_view(grant)

    def get_active_accesses_for_patient(self, msp_id, patient_id):
        views = [self._grant_view(g) for g in self.grants.values() if g["patientID"] == patient_id]
        return [v for v in views if v["isValid"]]

    def get_doctor_access_history(self, msp_id, doctor_id):
        if doctor_id not in self.doctors:
            raise LedgerRejectionError(f"doctor {doctor_id} does not exist")
        return [self._grant_view(g) for g in self.grants.values() if g["doctorID"] == doctor_id]

    def get_audit_trail(self, msp_id, subject_id):
        self._require_auditor(msp_id, "read audit trails")
        return [e for e in self.audit_log if e["subject"] == subject_id]

    def get_patient(self, msp_id, patient_id):
        patient = self.patients.get(patient_id)
        if patient is None:
            raise LedgerRejectionError(f"patient {patient_id} does not exist")
        return patient

    def get_doctor(self, msp_id, doctor_id):
        doctor = self.doctors.get(doctor_id)
        if doctor is None:
            raise LedgerRejectionError(f"doctor {doctor_id} does not exist")
        return doctor

    _SUBMIT = {
        LedgerOperation.REGISTER_PATIENT.value: register_patient,
        LedgerOperation.REGISTER_DOCTOR.value: register_doctor,
        LedgerOperation.GRANT_ACCESS.value: grant_access,
        LedgerOperation.REVOKE_ACCESS.value: revoke_access,
        LedgerOperation.VERIFY_DOCTOR.value: verify_doctor,
    }
    _EVALUATE = {
        LedgerOperation.CHECK_ACCESS_VALIDITY.value: check_access_validity,
        LedgerOperation.GET_ACTIVE_ACCESSES_FOR_PATIENT.value: get_active_accesses_for_patient,
        LedgerOperation.GET_DOCTOR_ACCESS_HISTORY.value: get_doctor_access_history,
        LedgerOperation.GET_AUDIT_TRAIL.value: get_audit_trail,
        LedgerOperation.GET_PATIENT.value: get_patient,
        LedgerOperation.GET_DOCTOR.value: get_doctor,
    }

    def invoke(self, msp_id: str, name: str, args: tuple, submit: bool) -> bytes:
        table = self._SUBMIT if submit else self._EVALUATE
        handler = table.get(name)
        if handler is None:
            kind = "submit" if submit else "evaluate"
            raise LedgerRejectionError(f"function {name} is not available for {kind}")
        if submit:
            self.submission_count += 1
        try:
            result = handler(self, msp_id, *args)
        except TypeError as e:
            raise LedgerRejectionError(f"incorrect number of arguments for {name}: {e}") from None
        if submit:
            self.transaction_count += 1
        if isinstance(result, str):
            return result.encode("utf-8")
        return json.dumps(result).encode("utf-8")


class InMemoryContract(ContractHandle):
    def __init__(self, connection: "InMemoryConnection", channel_name: str, contract_name: str):
        self._connection = connection
        self.channel_name = channel_name
        self.contract_name = contract_name

    async def submit_transaction(self, name: str, *args: str) -> bytes:
        return await self._connection.invoke(name, args, submit=True)

    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        return await self._connection.invoke(name, args, submit=False)


class InMemoryConnection(LedgerConnection):
    def __init__(self, network: "InMemoryLedgerNetwork", identity: Identity):
        self._network = network
        self.label = identity.label
        self.msp_id = identity.msp_id
        self.closed = False

    def get_contract(self, channel_name: str, contract_name: str) -> ContractHandle:
        return InMemoryContract(self, channel_name, contract_name)

    async def invoke(self, name: str, args: tuple, submit: bool) -> bytes:
        if self.closed:
            raise LedgerConnectionError(f"connection for {self.label} is closed")
        if self._network.latency:
            await asyncio.sleep(self._network.latency)
        return self._network.state.invoke(self.msp_id, name, args, submit)

    async def close(self) -> None:
        self.closed = True


class InMemoryLedgerNetwork(LedgerNetworkPort):
    """LedgerNetworkPort backed by a shared HealthcareLedgerState.

    Parameters:
        state: World state shared by every connection (created if omitted)
        latency: Seconds to sleep per transaction
        connect_latency: Seconds to sleep per connect

    Example Usage:
        ```python
        network = InMemoryLedgerNetwork()
        connection = await network.connect(identity)
        contract = connection.get_contract("healthcare-channel", "healthcare-contract")
        key = await contract.submit_transaction("GrantAccess", "P1001", "D2002", "24", "Follow-up")
        ```
    """

    def __init__(
        self,
        state: Optional[HealthcareLedgerState] = None,
        latency: float = 0.0,
        connect_latency: float = 0.0,
    ):
        self.state = state or HealthcareLedgerState()
        self.latency = latency
        self.connect_latency = connect_latency
        self.connect_count = 0
        self.connections: list[InMemoryConnection] = []

    async def connect(self, identity: Identity) -> LedgerConnection:
        self.connect_count += 1
        if self.connect_latency:
            await asyncio.sleep(self.connect_latency)
        connection = InMemoryConnection(self, identity)
        self.connections.append(connection)
        logger.debug(f"In-memory ledger connection opened for {identity.label} ({identity.msp_id})")
        return connection
