"""Reconciliation engine: applies provider status reports to payments.

Each call is one database transaction holding the callback claim, the
terminal status change and the voucher consumption. The engine commits it
before returning, so anything acknowledged to the provider is durable.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..database import (
    PaymentRecord,
    PaymentRecordRepository,
    VoucherRepository,
    ProcessedCallbackRepository,
    TransactionHistoryRepository,
    PaymentStatus,
    RecordOrigin,
    TransactionAction,
    Voucher,
)
from ..errors import AlreadyConsumed
from .models import CallbackEvent, ReconciliationOutcome, ReconciliationResult
from .status_mapper import COMPLETED, FAILED, map_status

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """State machine taking payments from processing to a terminal status."""

    # Voucher candidates tried when concurrent payments race for the same code
    MAX_CONSUME_ATTEMPTS = 5

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or get_settings()
        self.payments = PaymentRecordRepository(session)
        self.vouchers = VoucherRepository(session)
        self.callbacks = ProcessedCallbackRepository(session)
        self.history = TransactionHistoryRepository(session)

    async def reconcile_event(self, event: CallbackEvent) -> ReconciliationResult:
        return await self.reconcile(
            reference=event.reference,
            event_type=event.event_type,
            provider_status=event.provider_status,
            provider=event.provider,
            amount=event.amount,
            subscriber_identifier=event.subscriber_identifier,
            provider_transaction_uuid=event.provider_transaction_uuid,
        )

    async def reconcile(
        self,
        reference: str,
        event_type: str,
        provider_status: Optional[str],
        provider: Optional[str] = None,
        amount: Optional[int] = None,
        subscriber_identifier: Optional[str] = None,
        provider_transaction_uuid: Optional[str] = None,
    ) -> ReconciliationResult:
        """Apply one provider status report to the payment it references.

        Never raises: failures are rolled back, logged and reported with
        outcome ``error`` so the caller can still acknowledge the provider.

        Args:
            reference: Payment reference.
            event_type: Provider event type (or poll/sweep event name).
            provider_status: Raw provider status.
            provider: Mobile-money network the status comes from.
            amount: Amount reported by the provider, if any.
            subscriber_identifier: Payer phone reported by the provider.
            provider_transaction_uuid: Provider transaction id.

        Returns:
            ReconciliationResult describing what happened.
        """
        uuid_key = provider_transaction_uuid or ""
        mapped = map_status(provider_status, provider)

        try:
            if await self.callbacks.exists(reference, event_type, uuid_key):
                return self._duplicate(reference, event_type, mapped)
            try:
                claim = await self.callbacks.claim(reference, event_type, uuid_key)
            except IntegrityError:
                # Lost the insert race to a concurrent delivery
                await self.session.rollback()
                return self._duplicate(reference, event_type, mapped)

            result = await self._apply(
                reference=reference,
                event_type=event_type,
                mapped=mapped,
                provider=provider,
                amount=amount,
                subscriber_identifier=subscriber_identifier,
                provider_transaction_uuid=uuid_key,
            )
            claim.outcome = result.outcome.value
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(
                f"Failed to reconcile {reference} ({event_type}): {e}",
                exc_info=True,
            )
            return ReconciliationResult(
                reference=reference,
                event_type=event_type,
                outcome=ReconciliationOutcome.ERROR,
                mapped_status=mapped,
                message=f"Processing error: {e}",
            )

        logger.info(
            f"Reconciled {reference} ({event_type}): mapped={mapped} "
            f"outcome={result.outcome.value} voucher={result.voucher_code}"
        )
        return result

    def _duplicate(
        self, reference: str, event_type: str, mapped: Optional[str]
    ) -> ReconciliationResult:
        logger.info(f"Duplicate callback ignored for {reference} ({event_type})")
        return ReconciliationResult(
            reference=reference,
            event_type=event_type,
            outcome=ReconciliationOutcome.DUPLICATE,
            mapped_status=mapped,
            message="Callback already processed",
        )

    async def _apply(
        self,
        reference: str,
        event_type: str,
        mapped: Optional[str],
        provider: Optional[str],
        amount: Optional[int],
        subscriber_identifier: Optional[str],
        provider_transaction_uuid: str,
    ) -> ReconciliationResult:
        record = await self.payments.get_by_reference(reference)
        synthesized = False

        if record is None:
            if not amount or amount <= 0:
                logger.warning(
                    f"Callback for unknown reference {reference} carries no amount, ignoring"
                )
                return ReconciliationResult(
                    reference=reference,
                    event_type=event_type,
                    outcome=ReconciliationOutcome.IGNORED,
                    mapped_status=mapped,
                    message="Unknown reference and no amount to create a payment record",
                )
            record = await self.payments.create(
                subscriber_identifier=subscriber_identifier or "unknown",
                denomination=amount,
                reference=reference,
                currency=self.settings.currency,
                origin=RecordOrigin.WEBHOOK.value,
                provider=provider,
                provider_transaction_id=provider_transaction_uuid or None,
            )
            await self.history.create(
                payment_reference=reference,
                action=TransactionAction.RECORD_SYNTHESIZED.value,
                new_status=record.status,
                amount=amount,
                event_type=event_type,
            )
            synthesized = True
            logger.warning(
                f"No payment record for {reference}, created one from the {event_type} callback"
            )
        elif (provider_transaction_uuid and not record.provider_transaction_id) or (
            provider and not record.provider
        ):
            await self.payments.set_provider_details(
                record,
                provider_transaction_id=None if record.provider_transaction_id else provider_transaction_uuid,
                provider=None if record.provider else provider,
            )

        if mapped == COMPLETED:
            result = await self._complete(record, event_type, amount)
        elif mapped == FAILED:
            result = await self._fail(record, event_type)
        else:
            result = ReconciliationResult(
                reference=reference,
                event_type=event_type,
                outcome=ReconciliationOutcome.PENDING,
                mapped_status=mapped,
                payment_status=record.status,
                voucher_code=record.assigned_voucher_code,
                message="Payment still pending",
            )

        result.mapped_status = mapped
        result.record_synthesized = synthesized
        return result

    async def _already_final(self, reference: str, event_type: str) -> ReconciliationResult:
        current = await self.payments.get_by_reference(reference)
        logger.warning(
            f"Payment {reference} is already {current.status}, ignoring {event_type}"
        )
        return ReconciliationResult(
            reference=reference,
            event_type=event_type,
            outcome=ReconciliationOutcome.ALREADY_FINAL,
            payment_status=current.status,
            voucher_code=current.assigned_voucher_code,
            message=f"Payment already {current.status}",
        )

    async def _complete(
        self,
        record: PaymentRecord,
        event_type: str,
        reported_amount: Optional[int],
    ) -> ReconciliationResult:
        reference = record.reference
        amount = record.denomination if record.denomination else reported_amount
        if reported_amount is not None and reported_amount != amount:
            logger.warning(
                f"Amount mismatch for {reference}: stored {amount}, provider reported "
                f"{reported_amount}; using stored amount"
            )

        previous_status = record.status
        if not await self.payments.transition(reference, PaymentStatus.SUCCESSFUL):
            return await self._already_final(reference, event_type)

        await self.history.create(
            payment_reference=reference,
            action=TransactionAction.COMPLETE.value,
            previous_status=previous_status,
            new_status=PaymentStatus.SUCCESSFUL.value,
            amount=amount,
            event_type=event_type,
        )

        subscriber = record.subscriber_identifier
        if self.settings.one_voucher_per_subscriber and await self.vouchers.has_assignment(
            subscriber, amount, exclude_reference=reference
        ):
            logger.warning(
                f"Subscriber {subscriber} already holds a {amount} voucher, "
                f"not issuing another for {reference}"
            )
            await self._record_successful(
                reference, TransactionAction.SUBSCRIBER_LIMIT, amount, event_type
            )
            return self._successful(
                reference, event_type, ReconciliationOutcome.SUBSCRIBER_LIMIT,
                message="Payment successful; subscriber already holds a voucher of this amount",
            )

        voucher, outcome = await self._consume_voucher(amount, subscriber, reference)

        if outcome == ReconciliationOutcome.INTEGRITY_FAULT:
            logger.critical(
                f"Voucher integrity fault for {reference}: voucher {voucher.code} has "
                f"denomination {voucher.denomination}, payment amount is {amount}"
            )
            await self._record_successful(
                reference, TransactionAction.INTEGRITY_FAULT, amount, event_type,
                error_message="Voucher denomination does not match payment amount",
                action_metadata={"voucher_code": voucher.code, "voucher_denomination": voucher.denomination},
            )
            return self._successful(
                reference, event_type, outcome,
                message="Payment successful; voucher withheld after denomination mismatch",
            )

        if voucher is None:
            logger.warning(f"No {amount} vouchers available for {reference}")
            await self._record_successful(
                reference, TransactionAction.INVENTORY_EXHAUSTED, amount, event_type
            )
            return self._successful(
                reference, event_type, ReconciliationOutcome.INVENTORY_EXHAUSTED,
                message="Payment successful but no voucher is available",
            )

        if not await self.payments.assign_voucher(reference, voucher.code):
            raise RuntimeError(f"Could not attach voucher {voucher.code} to {reference}")

        await self._record_successful(
            reference, TransactionAction.VOUCHER_ASSIGNED, amount, event_type,
            action_metadata={"voucher_code": voucher.code},
        )
        return self._successful(
            reference, event_type, ReconciliationOutcome.VOUCHER_ASSIGNED,
            voucher_code=voucher.code,
            message="Payment successful and voucher assigned",
        )

    async def _consume_voucher(
        self, amount: int, subscriber: str, reference: str
    ) -> Tuple[Optional[Voucher], ReconciliationOutcome]:
        """Consume the first available voucher matching the amount exactly."""
        for attempt in range(self.MAX_CONSUME_ATTEMPTS):
            candidates = await self.vouchers.find_candidates(
                amount, limit=self.MAX_CONSUME_ATTEMPTS
            )
            if not candidates:
                return None, ReconciliationOutcome.INVENTORY_EXHAUSTED

            for candidate in candidates:
                if int(candidate.denomination) != int(amount):
                    return candidate, ReconciliationOutcome.INTEGRITY_FAULT
                try:
                    voucher = await self.vouchers.consume(candidate.code, subscriber, reference)
                except AlreadyConsumed:
                    logger.info(
                        f"Voucher {candidate.code} taken concurrently, trying next candidate "
                        f"(attempt {attempt + 1})"
                    )
                    continue
                return voucher, ReconciliationOutcome.VOUCHER_ASSIGNED

        logger.warning(f"Gave up finding a voucher for {reference} after contention")
        return None, ReconciliationOutcome.INVENTORY_EXHAUSTED

    async def _record_successful(
        self,
        reference: str,
        action: TransactionAction,
        amount: int,
        event_type: str,
        error_message: Optional[str] = None,
        action_metadata: Optional[dict] = None,
    ) -> None:
        await self.history.create(
            payment_reference=reference,
            action=action.value,
            previous_status=PaymentStatus.SUCCESSFUL.value,
            new_status=PaymentStatus.SUCCESSFUL.value,
            amount=amount,
            event_type=event_type,
            error_message=error_message,
            action_metadata=action_metadata,
        )

    def _successful(
        self,
        reference: str,
        event_type: str,
        outcome: ReconciliationOutcome,
        message: str,
        voucher_code: Optional[str] = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            reference=reference,
            event_type=event_type,
            outcome=outcome,
            payment_status=PaymentStatus.SUCCESSFUL.value,
            voucher_code=voucher_code,
            message=message,
        )

    async def _fail(self, record: PaymentRecord, event_type: str) -> ReconciliationResult:
        reference = record.reference
        previous_status = record.status
        if not await self.payments.transition(reference, PaymentStatus.FAILED):
            return await self._already_final(reference, event_type)

        await self.history.create(
            payment_reference=reference,
            action=TransactionAction.FAIL.value,
            previous_status=previous_status,
            new_status=PaymentStatus.FAILED.value,
            amount=record.denomination,
            event_type=event_type,
        )
        logger.info(f"Payment {reference} failed ({event_type})")
        return ReconciliationResult(
            reference=reference,
            event_type=event_type,
            outcome=ReconciliationOutcome.FAILED,
            payment_status=PaymentStatus.FAILED.value,
            message="Payment failed",
        )
