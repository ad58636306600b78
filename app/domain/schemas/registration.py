import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator
from typing import Optional, Literal, Annotated

from ..enums import RegistrationStatus

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Phone = Annotated[str, StringConstraints(strip_whitespace=True, max_length=20)]


class RegisterIn(BaseModel):
    email: Annotated[EmailStr, Field(max_length=255)]
    first_name: Name
    last_name: Name
    phone: Optional[Phone] = None
    additional_attendees: Annotated[int, Field(ge=0, le=20)] = 0
    reminder_opt_in: bool = True
    occurrence_date: Optional[datetime] = None   # required for recurring events
    website: Optional[str] = None                # honeypot; humans never see this field

    @field_validator("phone")
    @classmethod
    def empty_phone_is_none(cls, v):
        return v or None


class RegisterOut(BaseModel):
    success: bool = True
    id: Optional[uuid.UUID] = None
    status: Optional[RegistrationStatus] = None
    waitlist_position: Optional[int] = None
    message: str


class CapacityStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    registration_enabled: bool
    capacity: Optional[int]
    registered: int
    waitlisted: int
    available: Optional[int]
    waitlist_enabled: bool
    is_full: bool
    deadline_passed: bool


class RegistrationStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    registered: int
    waitlisted: int
    checked_in: int
    cancelled: int
    no_show: int
    total_attendees: int


class VenueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    address: Optional[str] = None


class EventSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    start_date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    venue: Optional[VenueOut] = None


class MyRegistrationOut(BaseModel):
    """What a registrant sees through their access token."""
    id: uuid.UUID
    status: RegistrationStatus
    waitlist_position: Optional[int] = None
    first_name: str
    last_name: str
    email: str
    additional_attendees: int
    occurrence_date: Optional[datetime] = None
    registered_at: datetime
    event: EventSummaryOut


class RegistrationRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_id: uuid.UUID
    occurrence_date: Optional[datetime] = None
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    additional_attendees: int
    status: RegistrationStatus
    waitlist_position: Optional[int] = None
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    reminder_opt_in: bool
    registered_at: datetime
    cancelled_at: Optional[datetime] = None


class RegistrationListOut(BaseModel):
    registrations: list[RegistrationRowOut]
    stats: RegistrationStatsOut


class AdminRegisterIn(BaseModel):
    email: Annotated[EmailStr, Field(max_length=255)]
    first_name: Name
    last_name: Name
    phone: Optional[Phone] = None
    additional_attendees: Annotated[int, Field(ge=0, le=20)] = 0
    reminder_opt_in: bool = True
    occurrence_date: Optional[datetime] = None


class RegistrationUpdateIn(BaseModel):
    first_name: Optional[Name] = None
    last_name: Optional[Name] = None
    email: Optional[Annotated[EmailStr, Field(max_length=255)]] = None
    phone: Optional[Phone] = None
    additional_attendees: Optional[Annotated[int, Field(ge=0, le=20)]] = None
    reminder_opt_in: Optional[bool] = None


class RegistrationActionIn(BaseModel):
    action: Literal["check_in", "undo_check_in", "no_show"]


class CancelOut(BaseModel):
    success: bool = True
    promoted_registration_id: Optional[uuid.UUID] = None
