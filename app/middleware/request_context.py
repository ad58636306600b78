from __future__ import annotations
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from ..observability.logging import get_request_id, bind_record, request_id_var
from ..config import get_settings
from ..auth.jwt import verify_jwt

S = get_settings()
log = logging.getLogger("app.request")


def _caller(request: Request) -> str:
    # staff requests carry a bearer token; everything else is a public registrant
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            claims = verify_jwt(auth[7:].strip())
            return f"staff={claims.get('sub')} tenant={claims.get('tenant_id')}"
        except Exception:
            return "staff=invalid"
    slug = request.headers.get("x-tenant-slug")
    return f"public tenant_slug={slug or '-'}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request)
        token = request_id_var.set(rid)
        start = time.perf_counter()
        caller = _caller(request)

        try:
            response = await call_next(request)
        except Exception:
            dur_ms = int((time.perf_counter() - start) * 1000)
            rec = bind_record(logging.LogRecord(
                name=log.name, level=logging.ERROR, pathname=__file__, lineno=0,
                msg="unhandled_error", args=(), exc_info=None
            ), request_id=rid, extra=f"path={request.url.path} method={request.method} ms={dur_ms} {caller}")
            log.handle(rec)
            raise
        finally:
            request_id_var.reset(token)

        dur_ms = int((time.perf_counter() - start) * 1000)
        response.headers[S.REQUEST_ID_HEADER] = rid
        rec = bind_record(logging.LogRecord(
            name=log.name, level=logging.INFO, pathname=__file__, lineno=0,
            msg="request", args=(), exc_info=None
        ), request_id=rid, extra=f"path={request.url.path} method={request.method} status={response.status_code} ms={dur_ms} {caller}")
        log.handle(rec)
        return response
