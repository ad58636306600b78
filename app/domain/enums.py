from __future__ import annotations

import enum


class RegistrationStatus(str, enum.Enum):
    REGISTERED = "REGISTERED"
    WAITLISTED = "WAITLISTED"
    CHECKED_IN = "CHECKED_IN"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# statuses that hold a capacity slot
ACTIVE_STATUSES = (RegistrationStatus.REGISTERED, RegistrationStatus.CHECKED_IN)


class EventStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class Frequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
