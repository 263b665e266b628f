"""SQLAlchemy ORM models for the gateway ledger, notifications and the loan book it reads"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from mfi_gateway.utils.date_utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class GatewayTransaction(Base):
    """Ledger row for every payout/collection issued through the gateway"""

    __tablename__ = "gateway_transaction"

    id = Column(Text, primary_key=True, default=_uuid)
    reference = Column(Text, nullable=False, unique=True)
    transaction_id = Column(Text, nullable=True, unique=True, index=True)
    kind = Column(Text, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(Text, nullable=False)
    counterparty_phone = Column(Text, nullable=True)
    counterparty_name = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    last_event_payload = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class GatewayWebhookEvent(Base):
    """Inbound webhook log, deduplicated by a hash of the raw body"""

    __tablename__ = "gateway_webhook_event"

    id = Column(Text, primary_key=True, default=_uuid)
    dedup_key = Column(Text, nullable=False, unique=True)
    event_type = Column(Text, nullable=False)
    transaction_id = Column(Text, nullable=False, index=True)
    reference = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    event_data = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class NotificationHistory(Base):
    """One reminder/escalation per installment, kind and day"""

    __tablename__ = "notification_history"
    __table_args__ = (
        UniqueConstraint("installment_id", "kind", "scheduled_for", name="uq_notification_per_day"),
    )

    id = Column(Text, primary_key=True, default=_uuid)
    client_id = Column(Text, nullable=False, index=True)
    loan_id = Column(Text, nullable=False, index=True)
    installment_id = Column(Text, nullable=False)
    kind = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    risk_level = Column(Text, nullable=False)
    tone = Column(Text, nullable=False)
    recipient_phone = Column(Text, nullable=True)
    recipient_email = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending", index=True)
    scheduled_for = Column(Date, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivery_reference = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# Loan book tables, owned by the back office and only read here


class Client(Base):
    __tablename__ = "client"

    id = Column(Text, primary_key=True, default=_uuid)
    full_name = Column(Text, nullable=False)
    phone_number = Column(Text, nullable=True)
    email_address = Column(Text, nullable=True)

    loans = relationship("Loan", back_populates="client")


class Loan(Base):
    __tablename__ = "loan"

    id = Column(Text, primary_key=True, default=_uuid)
    client_id = Column(Text, ForeignKey("client.id"), nullable=False, index=True)
    principal_amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(Text)  # NULL: the configured default currency
    status = Column(Text, nullable=False, default="active")

    client = relationship("Client", back_populates="loans")
    schedule = relationship("RepaymentSchedule", back_populates="loan")


class RepaymentSchedule(Base):
    __tablename__ = "repayment_schedule"

    id = Column(Text, primary_key=True, default=_uuid)
    loan_id = Column(Text, ForeignKey("loan.id"), nullable=False, index=True)
    payment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    total_payment = Column(Numeric(18, 2), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)

    loan = relationship("Loan", back_populates="schedule")


class ClientPaymentPattern(Base):
    __tablename__ = "client_payment_pattern"

    id = Column(Text, primary_key=True, default=_uuid)
    client_id = Column(Text, ForeignKey("client.id"), nullable=False)
    loan_id = Column(Text, ForeignKey("loan.id"), nullable=False)
    on_time_rate = Column(Float, nullable=True)
    risk_level = Column(Text, nullable=True)
