from fastapi import APIRouter, Response, status
from ...db import db_health
from ...redis_client import redis_health

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    db_ok, redis_ok = await db_health(), await redis_health()
    return {
        "status": "ok" if (db_ok and redis_ok) else "degraded",
        "dependencies": {
            "database": db_ok,
            "redis": redis_ok,
        },
    }


@router.get("/readiness")
async def readiness(response: Response):
    # registrations need the database; redis only gates the public rate limit
    db_ok, redis_ok = await db_health(), await redis_health()
    if not db_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"ready": db_ok, "database": db_ok, "redis": redis_ok}


@router.get("/liveness")
async def liveness():
    return {"alive": True}
