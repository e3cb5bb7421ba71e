"""Models for payment-to-voucher reconciliation."""

import enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class ReconciliationOutcome(str, enum.Enum):
    """What a provider callback or poll result did to a payment."""
    DUPLICATE = "duplicate"
    VOUCHER_ASSIGNED = "voucher_assigned"
    INVENTORY_EXHAUSTED = "inventory_exhausted"
    INTEGRITY_FAULT = "integrity_fault"
    SUBSCRIBER_LIMIT = "subscriber_limit"
    FAILED = "failed"
    PENDING = "pending"
    ALREADY_FINAL = "already_final"
    IGNORED = "ignored"
    ERROR = "error"


# Event type derived from the status when a webhook omits transaction.status
EVENT_TYPE_STATUSES: Dict[str, str] = {
    "collection.completed": "completed",
    "collection.successful": "completed",
    "collection.failed": "failed",
    "collection.pending": "pending",
}


def _coerce_amount(amount: Any) -> Optional[int]:
    if isinstance(amount, dict):
        amount = amount.get("raw")
    if amount is None or isinstance(amount, bool):
        return None
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if not value.is_integer():
        return None
    return int(value)


class CallbackEvent(BaseModel):
    """A provider status report, from a webhook push or an active poll."""
    reference: str = Field(..., description="Payment reference")
    event_type: str = Field(..., description="Provider event type, e.g. collection.completed")
    provider_status: Optional[str] = Field(None, description="Raw provider status")
    provider: Optional[str] = Field(None, description="Mobile-money network (mtn|airtel)")
    amount: Optional[int] = Field(None, description="Amount reported by the provider")
    subscriber_identifier: Optional[str] = Field(None, description="Payer phone number")
    provider_transaction_uuid: str = Field(default="", description="Provider transaction id")

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> "CallbackEvent":
        """Parse a MarzPay webhook body.

        Raises:
            ValueError: If the body is not an object or carries no reference.
        """
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")

        transaction = payload.get("transaction") or {}
        collection = payload.get("collection") or {}
        if not isinstance(transaction, dict) or not isinstance(collection, dict):
            raise ValueError("Webhook transaction and collection must be objects")

        reference = transaction.get("reference") or payload.get("reference")
        if not reference:
            raise ValueError("Missing transaction reference")

        event_type = str(payload.get("event_type") or "")
        status = transaction.get("status")
        if not status:
            status = EVENT_TYPE_STATUSES.get(event_type)

        provider = collection.get("provider") or transaction.get("provider")
        phone_number = transaction.get("phone_number") or collection.get("phone_number")
        amount = transaction.get("amount")
        if amount is None:
            amount = collection.get("amount")

        return cls(
            reference=str(reference),
            event_type=event_type or "collection.unknown",
            provider_status=str(status) if status is not None else None,
            provider=str(provider).lower() if provider else None,
            amount=_coerce_amount(amount),
            subscriber_identifier=str(phone_number) if phone_number is not None else None,
            provider_transaction_uuid=str(transaction.get("uuid") or ""),
        )


class ReconciliationResult(BaseModel):
    """Result of applying one provider status report to a payment."""
    reference: str
    event_type: str
    outcome: ReconciliationOutcome
    mapped_status: Optional[str] = None
    payment_status: Optional[str] = None
    voucher_code: Optional[str] = None
    record_synthesized: bool = False
    message: str = ""
    # Webhook callers must always be answered with 200
    acknowledged: bool = True

    def to_ack(self) -> Dict[str, Any]:
        """Webhook acknowledgment body (without the timestamp)."""
        return {
            "success": self.outcome != ReconciliationOutcome.ERROR,
            "message": self.message,
            "reference": self.reference,
            "event_type": self.event_type,
            "mapped_status": self.mapped_status,
            "outcome": self.outcome.value,
            "voucher": self.voucher_code,
        }
