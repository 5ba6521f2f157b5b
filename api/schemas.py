"""Request bodies. JSON keys are camelCase; Python attributes stay snake_case."""
from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InviteBody(CamelModel):
    guest_email: EmailStr
    guest_phone: Optional[str] = Field(default=None, max_length=32)
    guest_name: Optional[str] = Field(default=None, max_length=120)
    visit_date: date
    floor: str = Field(min_length=1, max_length=32)
    purpose_of_visit: Optional[str] = Field(default=None, max_length=500)
    special_instructions: Optional[str] = Field(default=None, max_length=500)


class RegisterBody(CamelModel):
    first_name: str = Field(min_length=1, max_length=60)
    last_name: str = Field(min_length=1, max_length=60)
    phone_number: str = Field(min_length=7, max_length=32)
    floor: str = Field(min_length=1, max_length=32)
    is_delivery: bool = False


class CompleteBody(CamelModel):
    token: str = Field(min_length=1)
    first_name: str = Field(min_length=1, max_length=60)
    last_name: str = Field(min_length=1, max_length=60)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=32)
    id_country: Optional[str] = Field(default=None, max_length=64)
    id_type: Optional[str] = Field(default=None, max_length=32)
    id_last4: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9]{4}$")
    policy_version: Optional[str] = Field(default=None, max_length=32)


class StartVerificationBody(CamelModel):
    token: str = Field(min_length=1)
    first_name: str = Field(min_length=1, max_length=60)
    last_name: str = Field(min_length=1, max_length=60)
    phone_number: str = Field(min_length=7, max_length=32)
    is_delivery: bool = False


class ScheduleBody(CamelModel):
    approve: bool = True


class CancelBody(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CheckInBody(CamelModel):
    token: str = Field(min_length=1)


class CheckOutBody(CamelModel):
    pass_id: UUID


class SendCodeBody(CamelModel):
    email: EmailStr


class VerifyCodeBody(CamelModel):
    code: str = Field(pattern=r"^\d{6}$")
