"""SQLAlchemy models for vouchers, payment records and callback idempotency."""

import uuid
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentStatus(str, enum.Enum):
    """Lifecycle of a payment record. SUCCESSFUL and FAILED are terminal."""
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PROCESSING


class RecordOrigin(str, enum.Enum):
    """How a payment record came into existence."""
    INITIATION = "initiation"
    WEBHOOK = "webhook"


class TransactionAction(str, enum.Enum):
    """Types of actions tracked in payment history."""
    INITIATE = "initiate"
    RECORD_SYNTHESIZED = "record_synthesized"
    COMPLETE = "complete"
    FAIL = "fail"
    VOUCHER_ASSIGNED = "voucher_assigned"
    INVENTORY_EXHAUSTED = "inventory_exhausted"
    INTEGRITY_FAULT = "integrity_fault"
    SUBSCRIBER_LIMIT = "subscriber_limit"
    PROVIDER_ERROR = "provider_error"


class Voucher(Base):
    """A voucher code of a fixed denomination, consumed at most once."""
    __tablename__ = "vouchers"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    denomination: Mapped[int] = mapped_column(Integer, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Unique so a payment reference can never own two vouchers
    originating_reference: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_vouchers_denomination_consumed", "denomination", "consumed"),
        Index("ix_vouchers_assigned_to", "assigned_to"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert voucher to dictionary representation."""
        return {
            "code": self.code,
            "denomination": self.denomination,
            "consumed": self.consumed,
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "originating_reference": self.originating_reference,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PaymentRecord(Base):
    """A mobile-money payment attempt, keyed by its reference."""
    __tablename__ = "payment_records"

    reference: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    subscriber_identifier: Mapped[str] = mapped_column(String(32), nullable=False)
    denomination: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="UGX")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PROCESSING.value
    )
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    assigned_voucher_code: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("vouchers.code"), nullable=True
    )
    origin: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecordOrigin.INITIATION.value
    )

    # Raw provider response for debugging
    raw_provider_response_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    history: Mapped[List["TransactionHistory"]] = relationship(
        "TransactionHistory",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="TransactionHistory.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_payment_records_status", "status"),
        Index("ix_payment_records_created_at", "created_at"),
        Index("ix_payment_records_subscriber", "subscriber_identifier"),
    )

    @property
    def is_terminal(self) -> bool:
        return PaymentStatus(self.status).is_terminal

    @property
    def raw_provider_response(self) -> Optional[Dict[str, Any]]:
        """Get raw provider response as dictionary."""
        if self.raw_provider_response_json:
            return json.loads(self.raw_provider_response_json)
        return None

    @raw_provider_response.setter
    def raw_provider_response(self, value: Optional[Dict[str, Any]]) -> None:
        """Set raw provider response from dictionary."""
        if value is not None:
            self.raw_provider_response_json = json.dumps(value, default=str)
        else:
            self.raw_provider_response_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment record to the status-query representation."""
        return {
            "reference": self.reference,
            "status": self.status,
            "amount": self.denomination,
            "currency": self.currency,
            "phone": self.subscriber_identifier,
            "voucher": self.assigned_voucher_code,
            "provider": self.provider,
            "provider_transaction_id": self.provider_transaction_id,
            "origin": self.origin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ProcessedCallback(Base):
    """Durable idempotency key for a provider callback or poll result."""
    __tablename__ = "processed_callbacks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_transaction_uuid: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    outcome: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "reference", "event_type", "provider_transaction_uuid",
            name="uq_processed_callbacks_callback_id",
        ),
        Index("ix_processed_callbacks_created_at", "created_at"),
    )


class TransactionHistory(Base):
    """Audit trail of actions applied to a payment record."""
    __tablename__ = "transaction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_reference: Mapped[str] = mapped_column(
        String(64), ForeignKey("payment_records.reference"), nullable=False, index=True
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    event_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    payment: Mapped["PaymentRecord"] = relationship("PaymentRecord", back_populates="history")

    __table_args__ = (
        Index("ix_transaction_history_action", "action"),
        Index("ix_transaction_history_created_at", "created_at"),
    )

    @property
    def action_metadata(self) -> Optional[Dict[str, Any]]:
        """Get action metadata as dictionary."""
        if self.action_metadata_json:
            return json.loads(self.action_metadata_json)
        return None

    @action_metadata.setter
    def action_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        """Set action metadata from dictionary."""
        if value is not None:
            self.action_metadata_json = json.dumps(value, default=str)
        else:
            self.action_metadata_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert history entry to dictionary representation."""
        return {
            "id": self.id,
            "payment_reference": self.payment_reference,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "amount": self.amount,
            "event_type": self.event_type,
            "error_message": self.error_message,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
