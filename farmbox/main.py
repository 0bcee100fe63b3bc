"""
Farmbox FastAPI backend
Recurring farm-box subscriptions, trial boxes and box curation.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from farmbox import __version__
from farmbox.config import settings
from farmbox.db.database import AsyncSessionLocal, engine
from farmbox.errors import FarmboxError
from farmbox.repositories.sql import (
    SqlCatalog, SqlContactDirectory, SqlSubscriptionRepository, SqlTrialRepository,
)
from farmbox.routers import admin, categories, subscriptions, trials
from farmbox.routers.deps import Services, build_services
from farmbox.services.notifications import LoggingNotifier, Notifier, TelegramNotifier

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def default_notifier() -> Notifier:
    if settings.TELEGRAM_BOT_TOKEN:
        return TelegramNotifier(SqlContactDirectory(AsyncSessionLocal))
    logger.warning("TELEGRAM_BOT_TOKEN not set, customer notifications are only logged")
    return LoggingNotifier()


def default_services() -> Services:
    return build_services(
        subscriptions=SqlSubscriptionRepository(AsyncSessionLocal),
        trials=SqlTrialRepository(AsyncSessionLocal),
        catalog=SqlCatalog(AsyncSessionLocal),
        notifier=default_notifier(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging(settings.LOG_LEVEL)
    logger.info("Farmbox API starting...")
    yield
    await engine.dispose()
    logger.info("Farmbox API shut down.")


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="Farmbox Subscriptions API",
        description="Subscription lifecycle and box curation for the farm-box marketplace",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services or default_services()

    # ── CORS ───────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Errors ─────────────────────────────────────────────
    @app.exception_handler(FarmboxError)
    async def farmbox_error_handler(request: Request, exc: FarmboxError):
        logger.info(
            "Rejected %s %s: code=%s message=%s",
            request.method, request.url.path, exc.code, exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    # ── Routers ────────────────────────────────────────────
    app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["Subscriptions"])
    app.include_router(trials.router, prefix="/api/trials", tags=["Trial Boxes"])
    app.include_router(categories.router, prefix="/api/categories", tags=["Categories"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Scheduler"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": f"Farmbox API v{__version__}"}

    return app


app = create_app()
