"""Pytest fixtures for testing"""

from datetime import date
from decimal import Decimal
from typing import Generator, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from mfi_gateway.api.main import create_app
from mfi_gateway.config import Settings
from mfi_gateway.infrastructure.clients.collaborators import LoanEventsClient
from mfi_gateway.infrastructure.clients.gateway import GatewayClient
from mfi_gateway.infrastructure.clients.token_cache import TokenCache
from mfi_gateway.infrastructure.database.models import (
    Base,
    Client,
    ClientPaymentPattern,
    Loan,
    RepaymentSchedule,
)
from mfi_gateway.infrastructure.database.session import build_engine
from mfi_gateway.infrastructure.database.repositories import (
    InstallmentRepository,
    NotificationRepository,
    TransactionLedger,
    WebhookEventRepository,
)
from mock_servers.gateway_server import main as mock_gateway
from tests.fakes import RecordingEmailProvider, RecordingSMSProvider


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

GATEWAY_URL = "http://gateway.test"
WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Create test database and hand out its session factory"""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def ledger(session_factory) -> TransactionLedger:
    return TransactionLedger(session_factory)


@pytest.fixture
def webhook_events(session_factory) -> WebhookEventRepository:
    return WebhookEventRepository(session_factory)


@pytest.fixture
def notification_repository(session_factory) -> NotificationRepository:
    return NotificationRepository(session_factory)


@pytest.fixture
def installment_repository(session_factory) -> InstallmentRepository:
    return InstallmentRepository(session_factory)


@pytest.fixture
def gateway_server():
    """Fresh in-memory mock gateway"""
    mock_gateway.reset()
    yield mock_gateway
    mock_gateway.reset()


@pytest.fixture
def gateway_http(gateway_server) -> httpx.AsyncClient:
    """HTTP client routed straight into the mock gateway ASGI app"""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=gateway_server.app), base_url=GATEWAY_URL)


@pytest.fixture
def token_cache(gateway_http) -> TokenCache:
    return TokenCache(
        base_url=GATEWAY_URL,
        client_id=mock_gateway.CLIENT_ID,
        client_secret=mock_gateway.CLIENT_SECRET,
        timeout=5.0,
        safety_margin_seconds=60,
        http_client=gateway_http,
    )


@pytest.fixture
def gateway_client(token_cache, ledger, gateway_http) -> GatewayClient:
    return GatewayClient(
        token_cache,
        ledger,
        base_url=GATEWAY_URL,
        timeout=5.0,
        http_client=gateway_http,
        bulk_concurrency=3,
    )


@pytest.fixture
def sms_provider() -> RecordingSMSProvider:
    return RecordingSMSProvider()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def loan_events() -> AsyncMock:
    return AsyncMock(spec=LoanEventsClient)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        gateway_base_url=GATEWAY_URL,
        gateway_client_id=mock_gateway.CLIENT_ID,
        gateway_client_secret=mock_gateway.CLIENT_SECRET,
        gateway_webhook_secret=WEBHOOK_SECRET,
        scheduler_enabled=False,
        notifications_enabled=True,
        sms_enabled=True,
        email_enabled=True,
    )


@pytest.fixture
def today() -> date:
    return date(2026, 3, 10)


@pytest.fixture
def app(session_factory, gateway_http, sms_provider, email_provider, loan_events, test_settings, today):
    return create_app(
        config=test_settings,
        session_factory=session_factory,
        http_client=gateway_http,
        sms_provider=sms_provider,
        email_provider=email_provider,
        loan_events=loan_events,
        today=lambda: today,
    )


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with test database and mock gateway"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed_installment(session_factory):
    """Insert a client, an active loan, one unpaid installment and a payment pattern"""

    def _seed(
        due_date: date,
        amount: str = "150000",
        full_name: str = "Amina Juma",
        phone: Optional[str] = "255712345678",
        email: Optional[str] = "amina@example.com",
        on_time_rate: Optional[float] = 90.0,
        risk_level: Optional[str] = None,
        loan_status: str = "active",
    ) -> RepaymentSchedule:
        with session_factory() as db:
            client = Client(full_name=full_name, phone_number=phone, email_address=email)
            db.add(client)
            db.flush()
            loan = Loan(client_id=client.id, principal_amount=Decimal("600000"), status=loan_status)
            db.add(loan)
            db.flush()
            schedule = RepaymentSchedule(
                loan_id=loan.id,
                payment_number=1,
                due_date=due_date,
                total_payment=Decimal(amount),
            )
            db.add(schedule)
            if on_time_rate is not None or risk_level is not None:
                db.add(
                    ClientPaymentPattern(
                        client_id=client.id,
                        loan_id=loan.id,
                        on_time_rate=on_time_rate,
                        risk_level=risk_level,
                    )
                )
            db.commit()
            return schedule

    return _seed
