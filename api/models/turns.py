"""Pydantic request models for turn endpoints."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.models import ServiceType
from queue_engine.validators import (
    CUSTOMER_NAME_MAX_LENGTH,
    CUSTOMER_NAME_MIN_LENGTH,
    NOTES_MAX_LENGTH,
    is_valid_mobile,
    normalize_mobile,
)


class CreateTurnRequest(BaseModel):
    """Public booking form."""
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field(
        min_length=CUSTOMER_NAME_MIN_LENGTH,
        max_length=CUSTOMER_NAME_MAX_LENGTH,
    )
    mobile_number: str
    service_type: ServiceType

    @field_validator("mobile_number")
    @classmethod
    def validate_mobile(cls, v: str) -> str:
        """8-15 characters of digits, +, -, spaces and parentheses."""
        if not is_valid_mobile(v):
            raise ValueError("Invalid mobile number")
        return normalize_mobile(v)


class UpdateNotesRequest(BaseModel):
    """Admin notes edit; an empty string clears the notes."""
    model_config = ConfigDict(str_strip_whitespace=True)

    notes: str | None = Field(default=None, max_length=NOTES_MAX_LENGTH)


class LoginRequest(BaseModel):
    username: str
    password: str
