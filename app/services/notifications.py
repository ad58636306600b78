"""
Outbound registrant notifications: Resend email plus optional Twilio SMS.

Every send is best effort: a failure is logged and counted, never raised.
"""
from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import resend
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ..config import get_settings
from ..domain.timeutil import as_utc
from ..observability.metrics import NOTIFY_FAILED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    email: str
    first_name: str
    access_token: str
    phone: Optional[str] = None
    reminder_opt_in: bool = False


@dataclass(frozen=True)
class EventDetails:
    """Plain copy of what the templates need; safe to use after the DB session is gone."""

    title: str
    start: datetime
    end: Optional[datetime]
    location: str
    timezone: str
    organizer: str


def manage_url(token: str) -> str:
    base = get_settings().PUBLIC_BASE_URL.rstrip("/")
    return f"{base}/events/manage?{urlencode({'token': token})}"


def _local(dt: datetime, tz_name: str) -> datetime:
    try:
        return as_utc(dt).astimezone(ZoneInfo(tz_name))
    except ZoneInfoNotFoundError:
        return as_utc(dt)


def format_event_date(event: EventDetails) -> str:
    start = _local(event.start, event.timezone)
    text = start.strftime("%A, %B %d, %Y at %I:%M %p").replace(" 0", " ")
    if event.end is not None:
        end = _local(event.end, event.timezone)
        if end.date() == start.date():
            text += f" - {end.strftime('%I:%M %p').lstrip('0')}"
    return f"{text} ({start.tzname()})"


def google_calendar_link(event: EventDetails) -> str:
    start = as_utc(event.start)
    end = as_utc(event.end) if event.end is not None else start + timedelta(hours=1)
    fmt = "%Y%m%dT%H%M%SZ"
    params = {
        "action": "TEMPLATE",
        "text": event.title,
        "dates": f"{start.strftime(fmt)}/{end.strftime(fmt)}",
        "location": event.location,
    }
    return "https://calendar.google.com/calendar/render?" + urlencode(params)


class ResendEmailService:
    def __init__(self) -> None:
        settings = get_settings()
        self._api_key = settings.RESEND_API_KEY
        self._from = settings.EMAIL_FROM
        if not self._api_key:
            logger.info("Resend email disabled; RESEND_API_KEY missing")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send_email(self, *, to: str, subject: str, text: str, html_body: str) -> bool:
        if not self.enabled:
            logger.debug("Email send skipped because Resend is not configured.")
            return False

        params = {"from": self._from, "to": [to], "subject": subject, "text": text, "html": html_body}

        def _send():
            resend.api_key = self._api_key
            return resend.Emails.send(params)

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, _send)
        except Exception as exc:  # best effort
            NOTIFY_FAILED.labels(channel="email").inc()
            logger.warning("email_send_failed", extra={"to": to, "subject": subject, "error": str(exc)})
            return False
        logger.info("email_sent", extra={"to": to, "subject": subject, "id": (response or {}).get("id")})
        return True


class TwilioSMSService:
    """Thin wrapper around the Twilio REST client with async-friendly send."""

    def __init__(self) -> None:
        settings = get_settings()
        self._from_number: Optional[str] = settings.TWILIO_FROM_NUMBER
        if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and self._from_number:
            self._client: Optional[Client] = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        else:
            self._client = None
            logger.info("Twilio SMS disabled; credentials or sender number missing")

    @property
    def enabled(self) -> bool:
        return bool(self._client and self._from_number)

    async def send_sms(self, *, to: str, body: str) -> bool:
        if not self.enabled:
            return False

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.messages.create(from_=self._from_number, to=to, body=body),  # type: ignore[union-attr]
            )
            return True
        except TwilioException as exc:
            NOTIFY_FAILED.labels(channel="sms").inc()
            logger.warning("sms_send_failed", extra={"to": to, "error": str(exc)})
            return False


def _wrap_html(heading: str, paragraphs: list[str], links: list[tuple[str, str]]) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    buttons = "".join(
        f'<p><a href="{html.escape(url, quote=True)}">{html.escape(label)}</a></p>' for label, url in links
    )
    return f"<!DOCTYPE html><html><body><h2>{html.escape(heading)}</h2>{body}{buttons}</body></html>"


def _details_lines(event: EventDetails) -> list[str]:
    lines = [f"Event: {event.title}", f"When: {format_event_date(event)}"]
    if event.location:
        lines.append(f"Where: {event.location}")
    return lines


class RegistrationNotifier:
    """Message composition for each registration outcome."""

    def __init__(self, email: ResendEmailService, sms: TwilioSMSService) -> None:
        self.email = email
        self.sms = sms

    async def _send(self, to: Recipient, subject: str, heading: str, intro: list[str],
                    event: EventDetails, links: list[tuple[str, str]]) -> bool:
        details = _details_lines(event)
        text = "\n\n".join(
            [f"Hi {to.first_name},", *intro, "\n".join(details)]
            + [f"{label}: {url}" for label, url in links]
            + [f"- {event.organizer}"]
        )
        html_body = _wrap_html(
            heading,
            [html.escape(f"Hi {to.first_name},")] + [html.escape(p) for p in intro]
            + ["<br>".join(html.escape(d) for d in details)],
            links,
        )
        return await self.email.send_email(to=to.email, subject=subject, text=text, html_body=html_body)

    async def registration_confirmed(self, to: Recipient, event: EventDetails) -> None:
        await self._send(
            to,
            f"You're registered: {event.title}",
            "You're registered!",
            [f"Your registration for {event.title} is confirmed."],
            event,
            [("Add to Google Calendar", google_calendar_link(event)),
             ("Manage or cancel your registration", manage_url(to.access_token))],
        )
        if to.phone and to.reminder_opt_in:
            await self.sms.send_sms(
                to=to.phone,
                body=f"{event.organizer}: you're registered for {event.title} on {format_event_date(event)}.",
            )

    async def waitlisted(self, to: Recipient, event: EventDetails, position: int) -> None:
        await self._send(
            to,
            f"You're on the waitlist: {event.title}",
            "You're on the waitlist",
            [f"{event.title} is currently full. Your waitlist position: #{position}.",
             "We'll let you know if a spot opens up."],
            event,
            [("Leave the waitlist", manage_url(to.access_token))],
        )

    async def promoted(self, to: Recipient, event: EventDetails) -> None:
        await self._send(
            to,
            f"Good news! You're now registered: {event.title}",
            "A spot opened up!",
            [f"You've been moved from the waitlist and are now registered for {event.title}."],
            event,
            [("Add to Google Calendar", google_calendar_link(event)),
             ("Manage or cancel your registration", manage_url(to.access_token))],
        )
        if to.phone and to.reminder_opt_in:
            await self.sms.send_sms(
                to=to.phone,
                body=f"{event.organizer}: a spot opened up. You're now registered for {event.title}.",
            )

    async def cancelled(self, to: Recipient, event: EventDetails) -> None:
        await self._send(
            to,
            f"Registration cancelled: {event.title}",
            "Registration cancelled",
            [f"Your registration for {event.title} has been cancelled."],
            event,
            [],
        )


notifier = RegistrationNotifier(ResendEmailService(), TwilioSMSService())


def recipient_for(reg) -> Recipient:
    return Recipient(
        email=reg.email,
        first_name=reg.first_name,
        access_token=reg.access_token,
        phone=reg.phone,
        reminder_opt_in=reg.reminder_opt_in,
    )


def event_details(event, *, organizer: str, venue=None, occurrence_date: Optional[datetime] = None) -> EventDetails:
    """Snapshot an Event row (and the chosen occurrence) into plain values."""
    start = occurrence_date or event.start_date
    end = event.end_date
    if occurrence_date is not None and event.end_date is not None:
        # an occurrence lasts as long as the master event
        end = occurrence_date + (as_utc(event.end_date) - as_utc(event.start_date))
    if venue is not None:
        location = f"{venue.name}, {venue.address}" if venue.address else venue.name
    else:
        location = event.location or ""
    return EventDetails(
        title=event.title,
        start=start,
        end=end,
        location=location,
        timezone=event.timezone,
        organizer=organizer,
    )
