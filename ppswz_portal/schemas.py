"""
schemas.py
----------
Validation models for every form the portal accepts. Text fields are
trimmed before their length rules apply, and optional fields submitted
empty become None.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from .content import MEMBERSHIP_TYPES
from .session_timeout import ACTIVITY_EVENTS


class FormModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value, info):
        field = cls.model_fields[info.field_name]
        if isinstance(value, str) and not value.strip() and field.default is None and not field.is_required():
            return None
        return value


class LoginForm(FormModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class SignupForm(FormModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2, max_length=100)


class MembershipApplicationForm(FormModel):
    membership_type: str
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, min_length=10, max_length=20)
    profession: str = Field(..., min_length=2, max_length=100)
    organization: Optional[str] = Field(None, max_length=200)
    experience_years: Optional[int] = Field(None, ge=0, le=50)
    motivation: str = Field(..., min_length=20, max_length=1000)

    @field_validator("membership_type")
    @classmethod
    def known_membership_type(cls, value):
        if value not in MEMBERSHIP_TYPES:
            raise ValueError(f"Membership type must be one of: {', '.join(MEMBERSHIP_TYPES)}")
        return value


class ContactForm(FormModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)
    message: str = Field(..., min_length=10, max_length=2000)


class ProfileUpdateForm(FormModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    location: Optional[str] = Field(None, max_length=100)
    profession: Optional[str] = Field(None, max_length=100)
    organization: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=1000)


class AdvertisementForm(FormModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=2000)
    image_url: Optional[str] = Field(None, max_length=500)
    is_active: bool = True
    priority: int = 0


class RoleUpdate(FormModel):
    role: str = Field(..., pattern=r"^(admin|user)$")


class ApplicationStatusUpdate(FormModel):
    status: str = Field(..., pattern=r"^(pending|approved|rejected)$")


class ActivityReport(BaseModel):
    """Batch of interaction events posted by the browser."""
    events: list[str] = Field(..., min_length=1, max_length=50)

    @field_validator("events")
    @classmethod
    def known_events(cls, value):
        unknown = sorted(set(value) - set(ACTIVITY_EVENTS))
        if unknown:
            raise ValueError(f"Unknown activity events: {', '.join(unknown)}")
        return value


class VisibilityReport(BaseModel):
    state: str = Field(..., pattern=r"^(visible|hidden)$")


def field_errors(exc: ValidationError):
    """Flatten a ValidationError into {field: message} for templates and JSON replies."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "form"
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, message)
    return errors
