from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import get_settings
from .db import lifespan_db
from .redis_client import close_redis
from .api.routers import health as health_router
from .api.routers import metrics as metrics_router
from .api.routers import public_registrations as public_router
from .api.routers import admin_events as admin_events_router
from .api.routers import admin_registrations as admin_registrations_router
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware
import uvicorn

settings = get_settings()
setup_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with lifespan_db():
        try:
            yield
        finally:
            await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.REQUEST_ID_HEADER, "Retry-After"],
    )

    # then our own middlewares
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.include_router(health_router.router)
    app.include_router(metrics_router.router)
    app.include_router(public_router.router)
    app.include_router(admin_events_router.router)
    app.include_router(admin_registrations_router.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.DEBUG)
