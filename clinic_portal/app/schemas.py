# schemas.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import AppointmentType, ServiceType
from .utils import parse_time_string


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingFor(str, Enum):
    MYSELF = "MYSELF"
    FAMILY_MEMBER = "FAMILY_MEMBER"
    SOMEONE_ELSE = "SOMEONE_ELSE"


class MergeResolutionType(str, Enum):
    SELF = "SELF"
    FAMILY = "FAMILY"
    NEW = "NEW"


class AvailabilityWindowIn(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    slot_duration: int = Field(default=30, gt=0, le=480)
    max_patients: int = Field(default=1, ge=1)
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def check_hhmm(cls, value):
        parse_time_string(value)
        return value

    @model_validator(mode="after")
    def check_order(self):
        if parse_time_string(self.end_time) <= parse_time_string(self.start_time):
            raise ValueError("End time must be after start time")
        return self


class AvailabilityUpdate(CamelModel):
    availability: List[AvailabilityWindowIn]


class AppointmentCreate(CamelModel):
    doctor_id: int
    appointment_type: AppointmentType
    service_type: ServiceType
    appointment_date: datetime
    booking_for: BookingFor = BookingFor.MYSELF
    family_member_id: Optional[int] = None

    patient_name: Optional[str] = Field(default=None, min_length=2)
    patient_email: Optional[EmailStr] = None
    patient_phone: Optional[str] = Field(default=None, pattern=r"^[0-9]{10}$")

    symptoms: str = Field(min_length=4, max_length=1000)
    previous_treatment: Optional[str] = None
    agree_to_terms: bool

    @field_validator("patient_name", "patient_email", "patient_phone", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("agree_to_terms")
    @classmethod
    def must_agree(cls, value):
        if value is not True:
            raise ValueError("You must agree to the terms and conditions")
        return value

    @model_validator(mode="after")
    def check_booking_for(self):
        if self.booking_for == BookingFor.SOMEONE_ELSE:
            if not (self.patient_name and self.patient_email and self.patient_phone):
                raise ValueError("Patient name, email and phone are required when booking for someone else")
        if self.booking_for == BookingFor.FAMILY_MEMBER and not self.family_member_id:
            raise ValueError("Please select a family member")
        return self


class MergeResolution(CamelModel):
    resolution_type: MergeResolutionType
    family_member_id: Optional[int] = None

    @model_validator(mode="after")
    def check_family(self):
        if self.resolution_type == MergeResolutionType.FAMILY and not self.family_member_id:
            raise ValueError("Family member ID is required for FAMILY resolution")
        return self


class FamilyMemberCreate(CamelModel):
    name: str = Field(min_length=2)
    relationship: str = Field(min_length=2)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=r"^[0-9]{10}$")


class DoctorCreate(CamelModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str
    specialization: Optional[str] = None
    consultation_fee: Optional[float] = Field(default=None, ge=0)
    is_admin: bool = False


class DoctorStatusUpdate(CamelModel):
    is_active: bool


class MagicLinkRequest(CamelModel):
    email: EmailStr


class MagicLinkVerify(CamelModel):
    email: EmailStr
    token: str = Field(min_length=1)
