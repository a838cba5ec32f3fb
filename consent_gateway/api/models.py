"""Request and response models for the gateway API.

Field-level bounds live on the domain models; request bodies reuse them so a
malformed body is rejected with VALIDATION_ERROR before reaching a service.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from consent_gateway.domain.models import DoctorProfile, PatientProfile


def envelope(data: Any, message: Optional[str] = None) -> dict:
    """Success response shape shared by every endpoint."""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


class LoginRequest(BaseModel):
    entity_id: str = Field(..., min_length=1, max_length=50, description="Patient or doctor id")
    password: str = Field(..., min_length=1, max_length=100)


class RegisterPatientRequest(PatientProfile):
    password: str = Field(..., description="8 to 100 characters")

    def profile(self) -> PatientProfile:
        return PatientProfile.model_validate(self.model_dump(exclude={"password"}))


class RegisterDoctorRequest(DoctorProfile):
    password: str = Field(..., description="8 to 100 characters")

    def profile(self) -> DoctorProfile:
        return DoctorProfile.model_validate(self.model_dump(exclude={"password"}))


class GrantAccessRequest(BaseModel):
    patient_id: str = Field(..., description="Patient granting access")
    doctor_id: str = Field(..., description="Doctor receiving access")
    duration_hours: int = Field(..., description="1 to 720 hours")
    purpose: str = Field(..., description="5 to 500 characters")


class ComponentHealth(BaseModel):
    status: str = Field(..., description="connected, disconnected or degraded")
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy, degraded or unhealthy")
    timestamp: datetime
    version: str
    credential_store: ComponentHealth
    identities: dict[str, bool] = Field(..., description="Policy identity label -> enrolled")
    active_sessions: list[str]
