from __future__ import annotations
import uuid
from fastapi import HTTPException, Request, status
from ..config import get_settings
from ..redis_client import redis

S = get_settings()

HOUR = 60 * 60

# ---- generic token counter (fixed window) ----
async def _hit(key: str, window_sec: int, limit: int) -> None:
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, window_sec)
    if count > limit:
        ttl = await redis.ttl(key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many registration attempts. Please try again later.",
            headers={"Retry-After": str(ttl) if ttl and ttl > 0 else str(window_sec)},
        )

def _client_ip(req: Request) -> str:
    # prefer X-Forwarded-For (first hop), then X-Real-IP, fallback to uvicorn client
    h = req.headers.get("x-forwarded-for")
    if h and h.split(",")[0].strip():
        return h.split(",")[0].strip()
    real = req.headers.get("x-real-ip")
    if real:
        return real.strip()
    return req.client.host if req.client else "unknown"

# ---- public helpers ----
async def limit_public_registration(req: Request, tenant_id: uuid.UUID) -> None:
    ip = _client_ip(req)
    await _hit(f"rl:reg:{tenant_id}:ip:{ip}", window_sec=HOUR, limit=S.RL_PUBLIC_REG_PER_IP_HOUR)
