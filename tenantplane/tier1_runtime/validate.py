"""
tenantplane.tier1_runtime.validate
───────────────────────────────────
Input validation via Pydantic v2. Raises our ValidationError (not raw
Pydantic errors) so admission responses and logs stay consistent.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from tenantplane.tier0_core.errors import ValidationError

T = TypeVar("T", bound=BaseModel)


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model.

    Usage:
        review = validate_input(AdmissionReview, await request.json())
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ValidationError(
            user_message=f"Invalid {model.__name__}.",
            fields=fields,
        ) from exc


__all__ = ["validate_input"]
