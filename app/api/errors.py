from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status

from ..domain.timeutil import as_utc
from ..models import Event
from ..services.errors import RegistrationError
from ..services.recurrence import is_event_occurrence

_STATUS_BY_CODE = {
    "ALREADY_REGISTERED": status.HTTP_409_CONFLICT,
    "UNKNOWN": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


def to_http(e: RegistrationError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(e.code, status.HTTP_400_BAD_REQUEST),
        detail={"error": e.message, "code": e.code},
    )


def resolve_occurrence(event: Event, occurrence_date: Optional[datetime]) -> Optional[datetime]:
    """Normalize the requested occurrence: None for one-off events, a real UTC occurrence otherwise."""
    if not event.is_recurring:
        return None
    if occurrence_date is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "occurrence_date is required for recurring events", "code": "INVALID_OCCURRENCE"},
        )
    when = as_utc(occurrence_date)
    if not is_event_occurrence(event, when):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "occurrence_date is not an occurrence of this event", "code": "INVALID_OCCURRENCE"},
        )
    return when
