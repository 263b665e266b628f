"""Loan book side effects triggered by confirmed gateway events"""

import logging
from typing import Any, Awaitable, Callable, Dict

from mfi_gateway.domain.models import Transaction
from mfi_gateway.infrastructure.clients.collaborators import LoanEventsClient

SideEffectHandler = Callable[[Any, Transaction], Awaitable[None]]


class LoanSideEffects:
    """
    Forwards confirmed disbursements and repayments to the loan book.

    Each handler runs at most once per ledger transition, so a replayed
    webhook never credits a loan twice.
    """

    def __init__(self, loan_events: LoanEventsClient):
        self.loan_events = loan_events

    def handlers(self) -> Dict[str, SideEffectHandler]:
        return {
            "payout.completed": self.payout_completed,
            "payout.failed": self.payout_failed,
            "payment.completed": self.payment_completed,
            "payment.failed": self.payment_failed,
        }

    async def payout_completed(self, event, tx: Transaction) -> None:
        """Loan funds reached the borrower: mark the loan disbursed"""
        await self.loan_events.send_event(self._payload("LOAN_DISBURSED", event, tx))

    async def payout_failed(self, event, tx: Transaction) -> None:
        logging.warning(
            "Payout failed",
            extra={"reference": tx.reference, "transaction_id": tx.transaction_id},
        )
        await self.loan_events.send_event(self._payload("DISBURSEMENT_FAILED", event, tx))

    async def payment_completed(self, event, tx: Transaction) -> None:
        """Repayment collected: post it against the loan"""
        await self.loan_events.send_event(self._payload("REPAYMENT_RECEIVED", event, tx))

    async def payment_failed(self, event, tx: Transaction) -> None:
        await self.loan_events.send_event(self._payload("REPAYMENT_FAILED", event, tx))

    @staticmethod
    def _payload(name: str, event, tx: Transaction) -> dict:
        return {
            "event": name,
            "reference": tx.reference,
            "transaction_id": tx.transaction_id,
            "amount": str(tx.amount),
            "currency": tx.currency,
            "counterparty_phone": tx.counterparty_phone,
            "gateway_timestamp": event.timestamp,
        }
