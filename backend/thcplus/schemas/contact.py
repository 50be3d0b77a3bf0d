from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from thcplus.models.contact import SubmissionStatus


class ContactFormRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    message: str = Field(min_length=10, max_length=1000)
    captcha_token: str = Field(min_length=1)

    @field_validator("name", "message", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class SubmissionStatusUpdate(BaseModel):
    id: UUID
    status: SubmissionStatus


class ContactSubmissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    message: str
    status: SubmissionStatus
    submitted_at: datetime
    replied_at: datetime | None = None
