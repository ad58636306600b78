from __future__ import annotations


class RegistrationError(Exception):
    """Base for expected registration failures; `code` is stable and safe to show to clients."""

    code = "UNKNOWN"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class EventNotFound(RegistrationError):
    code = "UNKNOWN"

    def __init__(self, message: str = "Event not found") -> None:
        super().__init__(message)


class NotEnabled(RegistrationError):
    code = "NOT_ENABLED"

    def __init__(self, message: str = "Registration is not enabled for this event") -> None:
        super().__init__(message)


class DeadlinePassed(RegistrationError):
    code = "DEADLINE_PASSED"

    def __init__(self, message: str = "Registration deadline has passed") -> None:
        super().__init__(message)


class AlreadyRegistered(RegistrationError):
    code = "ALREADY_REGISTERED"

    def __init__(self, message: str = "You are already registered for this event") -> None:
        super().__init__(message)


class CapacityFull(RegistrationError):
    code = "CAPACITY_FULL"

    def __init__(self, message: str = "Event is at full capacity") -> None:
        super().__init__(message)


class NotFound(RegistrationError):
    code = "NOT_FOUND"

    def __init__(self, message: str = "Registration not found") -> None:
        super().__init__(message)


class InvalidState(RegistrationError):
    code = "INVALID_STATE"
