import uuid
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from typing import Optional, Annotated

from ..enums import EventStatus, Frequency
from ...services.recurrence import Weekday, WeekdaySet


class EventCreateIn(BaseModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    start_date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    venue_id: Optional[uuid.UUID] = None
    timezone: str = "America/New_York"
    status: EventStatus = EventStatus.DRAFT

    registration_enabled: bool = False
    capacity: Optional[Annotated[int, Field(ge=1)]] = None
    waitlist_enabled: bool = False
    registration_deadline: Optional[datetime] = None

    is_recurring: bool = False
    recurrence_frequency: Optional[Frequency] = None
    recurrence_interval: Annotated[int, Field(ge=1, le=99)] = 1
    recurrence_days_of_week: Optional[list[Annotated[int, Field(ge=0, le=6)]]] = None  # 0 = Sunday
    recurrence_day_of_month: Optional[int] = None     # 1..31, or -1 for the last day
    recurrence_end_date: Optional[datetime] = None
    recurrence_count: Optional[Annotated[int, Field(ge=1)]] = None

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    @field_validator("recurrence_day_of_month")
    @classmethod
    def day_of_month_range(cls, v):
        if v is not None and v != -1 and not 1 <= v <= 31:
            raise ValueError("recurrence_day_of_month must be 1..31 or -1")
        return v

    @model_validator(mode="after")
    def recurrence_consistent(self):
        if self.is_recurring and self.recurrence_frequency is None:
            raise ValueError("recurring events need recurrence_frequency")
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def days_of_week_mask(self) -> Optional[int]:
        if not self.recurrence_days_of_week:
            return None
        return WeekdaySet.of(*map(Weekday, self.recurrence_days_of_week)).mask


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    start_date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    timezone: str
    status: EventStatus
    registration_enabled: bool
    capacity: Optional[int] = None
    waitlist_enabled: bool
    registration_deadline: Optional[datetime] = None
    is_recurring: bool
    recurrence_frequency: Optional[Frequency] = None
    recurrence_interval: Optional[int] = None
    recurrence_days_of_week: Optional[int] = None
    recurrence_day_of_month: Optional[int] = None
    recurrence_end_date: Optional[datetime] = None
    recurrence_count: Optional[int] = None
    recurrence_pattern: str = ""


class OccurrencesOut(BaseModel):
    event_id: uuid.UUID
    pattern: str
    occurrences: list[datetime]
