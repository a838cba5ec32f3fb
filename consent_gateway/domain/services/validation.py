"""Request validation helpers shared by the domain services.

Pydantic validation failures are converted into the gateway's
ValidationError before any ledger or store call is made.
"""

from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from consent_gateway.domain.models import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH
from consent_gateway.domain.ports import ValidationError

M = TypeVar("M", bound=BaseModel)


def validate_model(model_cls: Type[M], data: Union[M, dict, Any]) -> M:
    """Return `data` as a validated `model_cls` instance.

    Raises:
        ValidationError: With one entry per failing field in details["errors"]
    """
    if isinstance(data, model_cls):
        return data
    try:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(p) for p in err["loc"]),
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        fields = ", ".join(err["field"] for err in errors)
        raise ValidationError(
            f"Invalid {model_cls.__name__}: {fields}",
            details={"errors": errors},
        ) from None


def validate_password(password: Any) -> str:
    if not isinstance(password, str) or not (
        MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH
    ):
        raise ValidationError(
            f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters",
            details={"errors": [{"field": "password", "message": "invalid length"}]},
        )
    return password


def require_identifier(value: Any, field: str, max_length: int = 128) -> str:
    """Non-empty, stripped identifier (entity id or grant key)."""
    text = value.strip() if isinstance(value, str) else ""
    if not text or len(text) > max_length:
        raise ValidationError(
            f"{field} must be a non-empty string of at most {max_length} characters",
            details={"errors": [{"field": field, "message": "required"}]},
        )
    return text
