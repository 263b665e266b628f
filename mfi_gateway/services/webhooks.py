"""Inbound gateway webhook verification, deduplication and reconciliation"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mfi_gateway.domain.lifecycle import parse_status, status_for_event_type
from mfi_gateway.domain.models import Transaction
from mfi_gateway.infrastructure.database.repositories import TransactionLedger, WebhookEventRepository
from mfi_gateway.infrastructure.observability.logging import log_webhook_rejection
from mfi_gateway.infrastructure.observability.metrics import side_effect_failure_counter, webhook_event_counter
from mfi_gateway.services.side_effects import SideEffectHandler


class WebhookEvent(BaseModel):
    """Validated gateway callback body"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    event_type: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    timestamp: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class RejectReason(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    UNKNOWN_TRANSACTION = "unknown_transaction"


@dataclass(frozen=True)
class Ack:
    transaction: Transaction
    duplicate: bool = False


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    detail: str = ""


WebhookResult = Union[Ack, Rejected]


def sign_payload(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw body, as sent in X-Gateway-Signature"""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class WebhookProcessor:
    """
    Applies asynchronous gateway callbacks to the transaction ledger.

    Flow:
    1. Verify HMAC signature over the raw body
    2. Validate the body into a WebhookEvent
    3. Resolve the ledger row by transaction id, then by reference
    4. Skip payloads already processed (dedup by body hash)
    5. Apply the status through TransactionLedger.apply_event
    6. Run the side-effect handler for the event type, only when the ledger
       status actually transitioned; handler failures are logged, never raised
    """

    def __init__(
        self,
        secret: str,
        ledger: TransactionLedger,
        events: WebhookEventRepository,
        handlers: Optional[Mapping[str, SideEffectHandler]] = None,
    ):
        self.secret = secret
        self.ledger = ledger
        self.events = events
        self.handlers = dict(handlers or {})

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature or not self.secret:
            return False
        provided = signature.strip()
        if provided.startswith("sha256="):
            provided = provided[len("sha256="):]
        # Header values are attacker-controlled and may hold non-ASCII text
        expected = sign_payload(self.secret, raw_body).encode("ascii")
        return hmac.compare_digest(provided.lower().encode("utf-8"), expected)

    async def handle(
        self,
        raw_body: bytes,
        signature: Optional[str],
        defer: Optional[Callable[..., Any]] = None,
    ) -> WebhookResult:
        """
        Process one webhook delivery.

        Args:
            raw_body: Exact request body the signature was computed over
            signature: X-Gateway-Signature header value
            defer: Optional scheduler (e.g. BackgroundTasks.add_task) for side
                effects, so the gateway is acknowledged before they run
        """
        if not self.verify_signature(raw_body, signature):
            return self._reject(RejectReason.INVALID_SIGNATURE, raw_body, signature)

        try:
            payload = json.loads(raw_body)
            event = WebhookEvent.model_validate(payload)
        except (ValueError, ValidationError) as e:
            return self._reject(RejectReason.MALFORMED, raw_body, signature, str(e))

        status = parse_status(event.status) if event.status else status_for_event_type(event.event_type)
        if status is None:
            return self._reject(
                RejectReason.MALFORMED, raw_body, signature, f"unrecognised status {event.status!r}"
            )

        known = self.ledger.find(reference=event.reference, transaction_id=event.transaction_id)
        if known is None:
            return self._reject(
                RejectReason.UNKNOWN_TRANSACTION,
                raw_body,
                signature,
                f"transaction_id={event.transaction_id} reference={event.reference}",
            )

        dedup_key = hashlib.sha256(raw_body).hexdigest()
        already_processed = self.events.record(
            dedup_key=dedup_key,
            event_type=event.event_type,
            transaction_id=event.transaction_id,
            reference=event.reference,
            status=event.status,
            event_data=payload,
        )
        if already_processed:
            webhook_event_counter.labels(outcome="duplicate").inc()
            logging.info(
                "Duplicate webhook acknowledged",
                extra={"event_type": event.event_type, "transaction_id": event.transaction_id},
            )
            return Ack(transaction=known, duplicate=True)

        tx = self.ledger.apply_event(event.transaction_id, status, payload, reference=event.reference)
        self.events.mark_processed(dedup_key)
        webhook_event_counter.labels(outcome="applied").inc()
        logging.info(
            "Webhook applied",
            extra={
                "event_type": event.event_type,
                "transaction_id": event.transaction_id,
                "reference": tx.reference,
                "status": tx.status.value,
                "transitioned": tx.transitioned,
            },
        )

        implied = status_for_event_type(event.event_type)
        if tx.transitioned and (implied is None or tx.status == implied):
            if defer is not None:
                defer(self.run_side_effect, event, tx)
            else:
                await self.run_side_effect(event, tx)

        return Ack(transaction=tx)

    async def run_side_effect(self, event: WebhookEvent, tx: Transaction) -> None:
        """Run the handler for this event type; failures are logged and swallowed"""
        handler = self.handlers.get(event.event_type)
        if handler is None:
            logging.info(f"Unhandled webhook event: {event.event_type}")
            return
        try:
            await handler(event, tx)
        except Exception as e:
            side_effect_failure_counter.labels(event_type=event.event_type).inc()
            logging.error(
                f"Webhook side effect failed: {e}",
                extra={"event_type": event.event_type, "reference": tx.reference},
            )

    @staticmethod
    def _reject(reason: RejectReason, raw_body: bytes, signature: Optional[str], detail: str = "") -> Rejected:
        webhook_event_counter.labels(outcome=reason.value).inc()
        log_webhook_rejection(reason.value, raw_body, signature, detail)
        return Rejected(reason=reason, detail=detail)
