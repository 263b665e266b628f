"""Transaction status lifecycle rules"""

from typing import Optional
from mfi_gateway.domain.models import TransactionStatus

_RANK = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.PROCESSING: 1,
    TransactionStatus.COMPLETED: 2,
    TransactionStatus.FAILED: 2,
}


def advance_status(current: TransactionStatus, incoming: TransactionStatus) -> TransactionStatus:
    """
    Resolve the status a transaction moves to when `incoming` is reported.

    Status only moves forward: pending -> processing -> completed | failed.
    A terminal status is kept no matter what arrives later, and a stale
    non-terminal report (processing after completed, pending after
    processing) never moves the transaction backwards.
    """
    if current.is_terminal:
        return current
    if _RANK[incoming] < _RANK[current]:
        return current
    return incoming


def parse_status(value: Optional[str]) -> Optional[TransactionStatus]:
    """Map a gateway status string onto TransactionStatus (None if unrecognised)"""
    if not value:
        return None
    normalized = value.strip().lower()
    aliases = {
        "success": TransactionStatus.COMPLETED,
        "successful": TransactionStatus.COMPLETED,
        "settled": TransactionStatus.COMPLETED,
        "in_progress": TransactionStatus.PROCESSING,
        "initiated": TransactionStatus.PENDING,
        "rejected": TransactionStatus.FAILED,
        "cancelled": TransactionStatus.FAILED,
    }
    if normalized in aliases:
        return aliases[normalized]
    try:
        return TransactionStatus(normalized)
    except ValueError:
        return None


def status_for_event_type(event_type: str) -> Optional[TransactionStatus]:
    """Status implied by an event type such as 'payout.completed'"""
    _, _, suffix = event_type.rpartition(".")
    return parse_status(suffix)
