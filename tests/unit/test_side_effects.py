"""Unit tests for loan book side effects and the loan event webhook client"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mfi_gateway.domain.exceptions import CollaboratorNotificationError
from mfi_gateway.domain.models import Transaction, TransactionKind, TransactionStatus
from mfi_gateway.infrastructure.clients.collaborators import LoanEventsClient
from mfi_gateway.services.side_effects import LoanSideEffects
from mfi_gateway.services.webhooks import WebhookEvent

URL = "http://loan-book.test/events"


def response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", URL))


@pytest.fixture
def completed_payout() -> Transaction:
    return Transaction(
        reference="LN-1",
        kind=TransactionKind.PAYOUT,
        amount=Decimal("150000"),
        currency="TZS",
        status=TransactionStatus.COMPLETED,
        transaction_id="tx_1",
        counterparty_phone="255712345678",
    )


async def test_handlers_forward_loan_events(completed_payout):
    loan_events = AsyncMock(spec=LoanEventsClient)
    handlers = LoanSideEffects(loan_events).handlers()
    event = WebhookEvent(event_type="payout.completed", transaction_id="tx_1", timestamp="2026-03-10T08:00:00Z")

    await handlers["payout.completed"](event, completed_payout)

    loan_events.send_event.assert_awaited_once_with(
        {
            "event": "LOAN_DISBURSED",
            "reference": "LN-1",
            "transaction_id": "tx_1",
            "amount": "150000",
            "currency": "TZS",
            "counterparty_phone": "255712345678",
            "gateway_timestamp": "2026-03-10T08:00:00Z",
        }
    )


def test_handler_coverage():
    handlers = LoanSideEffects(AsyncMock(spec=LoanEventsClient)).handlers()

    assert set(handlers) == {"payout.completed", "payout.failed", "payment.completed", "payment.failed"}


@patch("httpx.AsyncClient.post")
async def test_loan_event_retries_server_errors(mock_post: AsyncMock):
    mock_post.side_effect = [response(503), response(502), response(200)]
    client = LoanEventsClient(webhook_url=URL, max_retries=5, backoff_base=0)

    await client.send_event({"event": "LOAN_DISBURSED"})

    assert mock_post.await_count == 3


@patch("httpx.AsyncClient.post")
async def test_loan_event_client_errors_are_not_retried(mock_post: AsyncMock):
    mock_post.return_value = response(422)
    client = LoanEventsClient(webhook_url=URL, max_retries=5, backoff_base=0)

    with pytest.raises(CollaboratorNotificationError):
        await client.send_event({"event": "LOAN_DISBURSED"})

    assert mock_post.await_count == 1


@patch("httpx.AsyncClient.post")
async def test_loan_event_gives_up_after_max_retries(mock_post: AsyncMock):
    mock_post.side_effect = httpx.ConnectError("connection refused")
    client = LoanEventsClient(webhook_url=URL, max_retries=3, backoff_base=0)

    with pytest.raises(CollaboratorNotificationError):
        await client.send_event({"event": "REPAYMENT_RECEIVED"})

    assert mock_post.await_count == 3
