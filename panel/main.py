from __future__ import annotations

from contextlib import asynccontextmanager
from functools import partial
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from panel import db
from panel.config import AppInfo, Settings, get_settings
from panel.core.logging import get_logger, setup_logging
from panel.core.runtime_state import set_scheduler_active
import panel.models  # registers the tables
from panel.routers import get_api_router
from panel.services.alert_dispatch import AlertDispatcher
from panel.services.alert_rules import seed_default_rules
from panel.services.cron import (
    run_alert_log_retention_once,
    run_offline_sweep_once,
    run_quota_reset_once,
    run_quota_scan_once,
)
from panel.services.metrics import MetricsSink, NoopMetricsSink, PrometheusMetricsSink
from panel.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from panel.utils.errors import error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
_metrics_sink: MetricsSink | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _current_settings() -> Settings:
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _metrics_for(settings: Settings) -> MetricsSink:
    # One sink per process; prometheus_client rejects duplicate collectors.
    global _metrics_sink
    if _metrics_sink is None:
        _metrics_sink = PrometheusMetricsSink() if settings.PROMETHEUS_ENABLED else NoopMetricsSink()
    return _metrics_sink


def _start_scheduler(settings: Settings, dispatcher: AlertDispatcher) -> AsyncIOScheduler:
    alert_scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1},
    )
    alert_scheduler.add_job(
        partial(run_quota_scan_once, dispatcher),
        "interval",
        seconds=settings.QUOTA_CHECK_INTERVAL_SECONDS,
        id="quota-scan",
        replace_existing=True,
    )
    alert_scheduler.add_job(
        partial(run_offline_sweep_once, dispatcher, timeout_minutes=settings.HEARTBEAT_TIMEOUT_MINUTES),
        "interval",
        seconds=settings.OFFLINE_CHECK_INTERVAL_SECONDS,
        id="offline-sweep",
        replace_existing=True,
    )
    alert_scheduler.add_job(
        run_quota_reset_once,
        "cron",
        hour=settings.QUOTA_RESET_HOUR,
        minute=5,
        id="quota-reset",
        replace_existing=True,
    )
    alert_scheduler.add_job(
        partial(run_alert_log_retention_once, retention_days=settings.ALERT_LOG_RETENTION_DAYS),
        "cron",
        hour=settings.ALERT_LOG_RETENTION_HOUR,
        minute=15,
        id="alert-log-retention",
        replace_existing=True,
    )
    alert_scheduler.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=60,
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    alert_scheduler.start()
    return alert_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    if settings.ADMIN_API_TOKEN is None:
        logger.warning("ADMIN_API_TOKEN is not set; operator endpoints will refuse requests.")

    db.init_engine()
    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning("Running Base.metadata.create_all() because APP_ENV=%s", settings.app_env)
        db.create_all()
    else:
        logger.info("Skipping create_all(); use Alembic migrations. APP_ENV=%s", settings.app_env)

    if settings.SEED_DEFAULT_RULES:
        session = db.get_sessionmaker()()
        try:
            seed_default_rules(session)
        finally:
            session.close()

    dispatcher = AlertDispatcher.from_settings(settings, metrics=_metrics_for(settings))
    app.state.dispatcher = dispatcher

    # NOTE: in multi-replica deployments the DB lease keeps periodic jobs on one runner.
    set_scheduler_active(False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        lock_acquired = try_acquire_scheduler_lock()
        if lock_acquired:
            scheduler = _start_scheduler(settings, dispatcher)
            set_scheduler_active(True)
            logger.info("Alert scheduler started", extra={"env": settings.app_env})
        else:
            logger.warning(
                "Scheduler disabled because the lease is held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            release_scheduler_lock()
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
