"""FastAPI application factory"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, Optional
import httpx
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from mfi_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from mfi_gateway.api.v1 import notifications, payments, scheduler, webhooks
from mfi_gateway.config import Settings, settings
from mfi_gateway.domain.notifications import ComposerSettings, NotificationComposer
from mfi_gateway.infrastructure.clients.collaborators import LoanEventsClient
from mfi_gateway.infrastructure.clients.gateway import GatewayClient
from mfi_gateway.infrastructure.clients.mailer import EmailProvider, build_email_provider
from mfi_gateway.infrastructure.clients.sms import SMSProvider, build_sms_provider
from mfi_gateway.infrastructure.clients.token_cache import TokenCache
from mfi_gateway.infrastructure.database.repositories import (
    InstallmentRepository,
    NotificationRepository,
    TransactionLedger,
    WebhookEventRepository,
)
from mfi_gateway.infrastructure.database.session import SessionLocal
from mfi_gateway.infrastructure.observability.logging import setup_logging
from mfi_gateway.services.dispatcher import NotificationDispatcher
from mfi_gateway.services.scheduler import TaskScheduler
from mfi_gateway.services.side_effects import LoanSideEffects
from mfi_gateway.services.sweeps import NotificationSweeps, register_default_tasks
from mfi_gateway.services.webhooks import WebhookProcessor

# Setup structured logging
setup_logging(settings.log_level)


def create_app(
    config: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    sms_provider: Optional[SMSProvider] = None,
    email_provider: Optional[EmailProvider] = None,
    loan_events: Optional[LoanEventsClient] = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Every component is built here and kept on `app.state`; tests pass their
    own session factory, HTTP client and providers instead of the defaults.
    """
    config = config or settings
    session_factory = session_factory or SessionLocal

    ledger = TransactionLedger(session_factory)
    notification_repository = NotificationRepository(session_factory)

    token_cache = TokenCache(
        base_url=config.gateway_base_url,
        client_id=config.gateway_client_id,
        client_secret=config.gateway_client_secret,
        timeout=config.http_timeout_seconds,
        safety_margin_seconds=config.token_safety_margin_seconds,
        http_client=http_client,
    )
    gateway_client = GatewayClient(
        token_cache,
        ledger,
        base_url=config.gateway_base_url,
        timeout=config.http_timeout_seconds,
        http_client=http_client,
        bulk_concurrency=config.bulk_payout_concurrency,
    )

    loan_events = loan_events or LoanEventsClient(
        webhook_url=config.loan_events_webhook_url,
        max_retries=config.loan_events_max_retries,
        backoff_base=config.loan_events_backoff_base,
        timeout=config.http_timeout_seconds,
    )
    webhook_processor = WebhookProcessor(
        config.gateway_webhook_secret,
        ledger,
        WebhookEventRepository(session_factory),
        handlers=LoanSideEffects(loan_events).handlers(),
    )

    dispatcher = NotificationDispatcher(
        notification_repository,
        sms_provider or build_sms_provider(config),
        email_provider or build_email_provider(config),
        auto_escalation=config.auto_escalation,
    )
    sweeps = NotificationSweeps(
        InstallmentRepository(session_factory),
        NotificationComposer(ComposerSettings.from_settings(config)),
        dispatcher,
        notification_repository,
        enabled=config.notifications_enabled,
        pending_recovery_minutes=config.pending_recovery_minutes,
        concurrency=config.sweep_concurrency,
        today=today,
    )
    task_scheduler = TaskScheduler(
        retry_delay_minutes=config.scheduler_retry_delay_minutes,
        retry_backoff_factor=config.scheduler_retry_backoff_factor,
    )
    register_default_tasks(task_scheduler, sweeps, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.scheduler_enabled:
            task_scheduler.start()
        yield
        await task_scheduler.stop()

    app = FastAPI(
        title="MFI Payment Gateway",
        description="Payment gateway integration and borrower notification service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.ledger = ledger
    app.state.gateway_client = gateway_client
    app.state.webhook_processor = webhook_processor
    app.state.notification_repository = notification_repository
    app.state.dispatcher = dispatcher
    app.state.sweeps = sweeps
    app.state.scheduler = task_scheduler

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": config.service_name,
            "scheduler_running": task_scheduler.is_running,
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(notifications.router, prefix="/v1", tags=["notifications"])
    app.include_router(scheduler.router, prefix="/v1", tags=["scheduler"])

    return app


app = create_app()
