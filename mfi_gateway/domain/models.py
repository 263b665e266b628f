"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class TransactionKind(str, Enum):
    PAYOUT = "payout"
    COLLECTION = "collection"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


class NotificationKind(str, Enum):
    REMINDER = "reminder"
    ESCALATION = "escalation"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    BOTH = "both"

    def expand(self) -> tuple["Channel", ...]:
        """Concrete delivery channels this selection covers"""
        if self is Channel.BOTH:
            return (Channel.SMS, Channel.EMAIL)
        return (self,)


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    ESCALATED_TO_HUMAN = "escalated_to_human"


@dataclass(frozen=True)
class Credential:
    """Bearer token issued by the gateway"""

    token: str
    issued_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class PayoutRequest:
    """Disbursement to a borrower's mobile wallet"""

    amount: Decimal
    currency: str
    recipient_phone: str
    recipient_name: str
    reference: str
    description: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": str(self.amount),
            "currency": self.currency,
            "recipient_phone": self.recipient_phone,
            "recipient_name": self.recipient_name,
            "reference": self.reference,
        }
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class CollectionRequest:
    """Repayment collection request pushed to a borrower's phone"""

    amount: Decimal
    currency: str
    customer_phone: str
    customer_name: str
    reference: str
    description: Optional[str] = None
    callback_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": str(self.amount),
            "currency": self.currency,
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "reference": self.reference,
        }
        if self.description:
            payload["description"] = self.description
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        return payload


@dataclass(frozen=True)
class HistoryFilter:
    """Query parameters for the gateway transaction listing"""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[TransactionStatus] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.start_date is not None:
            params["start_date"] = self.start_date.isoformat()
        if self.end_date is not None:
            params["end_date"] = self.end_date.isoformat()
        if self.status is not None:
            params["status"] = self.status.value
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.offset is not None:
            params["offset"] = str(self.offset)
        return params


@dataclass
class Transaction:
    """Gateway transaction as recorded in the local ledger"""

    reference: str
    kind: TransactionKind
    amount: Decimal
    currency: str
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_id: Optional[str] = None
    counterparty_phone: Optional[str] = None
    counterparty_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_event_payload: Optional[Dict[str, Any]] = None
    response_data: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    # Status before the write that produced this snapshot (None for reads)
    previous_status: Optional[TransactionStatus] = field(default=None, compare=False)

    @property
    def transitioned(self) -> bool:
        return self.previous_status is not None and self.previous_status != self.status


@dataclass(frozen=True)
class Installment:
    """Unpaid repayment schedule entry"""

    id: str
    loan_id: str
    due_date: date
    amount: Decimal
    currency: Optional[str] = None  # None: the configured default currency
    payment_number: int = 1


@dataclass(frozen=True)
class ClientContact:
    """Borrower contact details and payment behaviour"""

    client_id: str
    full_name: str
    phone_number: Optional[str] = None
    email_address: Optional[str] = None
    on_time_rate: Optional[float] = None  # percentage, 0-100
    risk_level: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.full_name.split()
        return parts[0] if parts else self.full_name


@dataclass(frozen=True)
class DueInstallment:
    """Installment joined with the owning client, as read from the loan book"""

    installment: Installment
    client: ClientContact


@dataclass
class NotificationEvent:
    """Reminder or escalation addressed to one borrower"""

    client_id: str
    loan_id: str
    installment_id: str
    kind: NotificationKind
    channel: Channel
    message: str
    subject: str
    risk_level: str
    tone: str
    scheduled_for: date
    recipient_phone: Optional[str] = None
    recipient_email: Optional[str] = None
    status: NotificationStatus = NotificationStatus.PENDING
    id: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivery_reference: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single provider call"""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ScheduledTask:
    """Recurring background job definition and its run state"""

    id: str
    name: str
    interval_minutes: float
    max_retries: int
    enabled: bool = True
    retry_count: int = 0
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    running: bool = False
    last_error: Optional[str] = None


@dataclass
class SweepResult:
    """Summary of one sweep execution"""

    examined: int = 0
    notifications_sent: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)
