from __future__ import annotations

import hmac
import secrets

TOKEN_BYTES = 32


def new_access_token() -> str:
    """Opaque bearer token for self-service access; 256 random bits, unrelated to the row id."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def tokens_match(expected: str, supplied: str | None) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode(), supplied.encode())
