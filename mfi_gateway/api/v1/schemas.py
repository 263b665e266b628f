"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from mfi_gateway.domain.models import (
    Channel,
    CollectionRequest,
    NotificationKind,
    NotificationStatus,
    PayoutRequest,
    TransactionKind,
    TransactionStatus,
)


class PayoutIn(BaseModel):
    """Request body for POST /v1/payouts"""

    amount: Decimal = Field(..., gt=0, description="Amount in major currency units")
    currency: str = Field("TZS", min_length=3, max_length=3)
    recipient_phone: str = Field(..., min_length=1, description="Mobile wallet number, e.g. 255712345678")
    recipient_name: str = Field(..., min_length=1)
    reference: str = Field(..., min_length=1, description="Caller-assigned idempotency key")
    description: Optional[str] = None

    def to_request(self) -> PayoutRequest:
        return PayoutRequest(**self.model_dump())


class BulkPayoutIn(BaseModel):
    """Request body for POST /v1/payouts/bulk"""

    payouts: List[PayoutIn] = Field(..., min_length=1)


class CollectionIn(BaseModel):
    """Request body for POST /v1/collections"""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field("TZS", min_length=3, max_length=3)
    customer_phone: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1)
    reference: str = Field(..., min_length=1)
    description: Optional[str] = None
    callback_url: Optional[str] = None

    def to_request(self) -> CollectionRequest:
        return CollectionRequest(**self.model_dump())


class TransactionOut(BaseModel):
    """Ledger or gateway view of one transaction"""

    model_config = ConfigDict(from_attributes=True)

    reference: str
    kind: TransactionKind
    amount: Decimal
    currency: str
    status: TransactionStatus
    transaction_id: Optional[str] = None
    counterparty_phone: Optional[str] = None
    counterparty_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_error: Optional[str] = None


class BulkPayoutOut(BaseModel):
    """Response for POST /v1/payouts/bulk"""

    succeeded: int
    failed: int
    transactions: List[TransactionOut]


class WebhookAck(BaseModel):
    """Response for POST /v1/webhooks/gateway"""

    success: bool
    reason: Optional[str] = None
    duplicate: bool = False
    reference: Optional[str] = None
    status: Optional[TransactionStatus] = None


class NotificationOut(BaseModel):
    """Single entry of the notification history"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    loan_id: str
    installment_id: str
    kind: NotificationKind
    channel: Channel
    status: NotificationStatus
    message: str
    subject: str
    tone: str
    risk_level: str
    scheduled_for: date
    recipient_phone: Optional[str] = None
    recipient_email: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivery_reference: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class TaskOut(BaseModel):
    """Scheduled task definition and run state"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    enabled: bool
    interval_minutes: float
    max_retries: int
    retry_count: int
    running: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_error: Optional[str] = None


class TaskUpdateIn(BaseModel):
    """Request body for PATCH /v1/scheduler/tasks/{task_id}"""

    interval_minutes: Optional[float] = Field(None, gt=0)
    max_retries: Optional[int] = Field(None, ge=1)


class TaskTriggerOut(BaseModel):
    """Response for POST /v1/scheduler/tasks/{task_id}/trigger"""

    success: bool
    task: TaskOut


class SchedulerStatusOut(BaseModel):
    """Response for GET /v1/scheduler/status"""

    is_running: bool
    task_count: int
    tasks: List[TaskOut]
    pending_retries: Dict[str, datetime] = Field(default_factory=dict)
