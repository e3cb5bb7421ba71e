"""Repository layer for voucher and payment persistence operations.

State changes that other requests may race on (terminal payment transitions
and voucher consumption) are conditional UPDATE statements; the row count
tells the caller whether it won.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable, Tuple

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AlreadyConsumed
from .models import (
    PaymentRecord,
    Voucher,
    ProcessedCallback,
    TransactionHistory,
    PaymentStatus,
    RecordOrigin,
)

logger = logging.getLogger(__name__)


class PaymentRecordRepository:
    """Repository for PaymentRecord operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        subscriber_identifier: str,
        denomination: int,
        reference: Optional[str] = None,
        currency: str = "UGX",
        origin: str = RecordOrigin.INITIATION.value,
        provider: Optional[str] = None,
        provider_transaction_id: Optional[str] = None,
    ) -> PaymentRecord:
        """Create a payment record in the processing state.

        Args:
            subscriber_identifier: Payer phone number.
            denomination: Voucher face value being paid for.
            reference: Reference to use; generated when omitted.
            currency: Three-letter currency code.
            origin: How the record was created (initiation or webhook fallback).
            provider: Mobile-money network, when known.
            provider_transaction_id: Provider transaction id, when known.

        Returns:
            Created PaymentRecord instance.
        """
        record = PaymentRecord(
            subscriber_identifier=subscriber_identifier,
            denomination=denomination,
            currency=currency.upper(),
            status=PaymentStatus.PROCESSING.value,
            origin=origin,
            provider=provider,
            provider_transaction_id=provider_transaction_id,
        )
        if reference:
            record.reference = reference

        self.session.add(record)
        await self.session.flush()

        logger.info(f"Created payment record {record.reference} for {denomination} ({origin})")
        return record

    async def get_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        """Load a payment record, always reading the latest stored row."""
        result = await self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_provider_details(
        self,
        record: PaymentRecord,
        provider_transaction_id: Optional[str] = None,
        provider: Optional[str] = None,
        raw_provider_response: Optional[Dict[str, Any]] = None,
    ) -> PaymentRecord:
        """Attach what the provider told us at initiation time."""
        if provider_transaction_id:
            record.provider_transaction_id = provider_transaction_id
        if provider:
            record.provider = provider
        if raw_provider_response is not None:
            record.raw_provider_response = raw_provider_response
        record.updated_at = datetime.utcnow()
        await self.session.flush()
        return record

    async def transition(self, reference: str, new_status: PaymentStatus) -> bool:
        """Move a record from processing to a terminal status.

        Compare-and-swap on the status column: only a record still in
        processing is updated.

        Returns:
            True if this call performed the transition, False if the record
            was already terminal (or does not exist).
        """
        if not new_status.is_terminal:
            raise ValueError(f"{new_status.value} is not a terminal status")

        now = datetime.utcnow()
        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                and_(
                    PaymentRecord.reference == reference,
                    PaymentRecord.status == PaymentStatus.PROCESSING.value,
                )
            )
            .values(status=new_status.value, updated_at=now, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            logger.info(f"Payment {reference} transitioned to {new_status.value}")
        return won

    async def assign_voucher(self, reference: str, code: str) -> bool:
        """Record the voucher issued for a successful payment (set once)."""
        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                and_(
                    PaymentRecord.reference == reference,
                    PaymentRecord.status == PaymentStatus.SUCCESSFUL.value,
                    PaymentRecord.assigned_voucher_code.is_(None),
                )
            )
            .values(assigned_voucher_code=code, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_stale(
        self,
        created_before: datetime,
        limit: int = 100,
    ) -> List[PaymentRecord]:
        """List processing records created before the cutoff, oldest first."""
        result = await self.session.execute(
            select(PaymentRecord)
            .where(
                and_(
                    PaymentRecord.status == PaymentStatus.PROCESSING.value,
                    PaymentRecord.created_at < created_before,
                )
            )
            .order_by(PaymentRecord.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())


class VoucherRepository:
    """Repository for the voucher inventory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, code: str, denomination: int) -> Voucher:
        """Add a single unused voucher.

        Raises:
            sqlalchemy.exc.IntegrityError: If the code already exists.
        """
        voucher = Voucher(code=code.strip(), denomination=denomination, consumed=False)
        self.session.add(voucher)
        await self.session.flush()
        logger.info(f"Added voucher {voucher.code} ({denomination})")
        return voucher

    async def add_many(
        self,
        codes: Iterable[str],
        denomination: int,
    ) -> Tuple[List[Voucher], List[str]]:
        """Add vouchers in bulk, skipping codes that already exist.

        Returns:
            Tuple of (added vouchers, skipped duplicate codes).
        """
        wanted: List[str] = []
        duplicates: List[str] = []
        seen = set()
        for raw in codes:
            code = raw.strip()
            if not code:
                continue
            if code in seen:
                duplicates.append(code)
                continue
            seen.add(code)
            wanted.append(code)

        if not wanted:
            return [], duplicates

        result = await self.session.execute(
            select(Voucher.code).where(Voucher.code.in_(wanted))
        )
        existing = set(result.scalars().all())

        added = []
        for code in wanted:
            if code in existing:
                duplicates.append(code)
                continue
            voucher = Voucher(code=code, denomination=denomination, consumed=False)
            self.session.add(voucher)
            added.append(voucher)

        await self.session.flush()
        logger.info(
            f"Bulk loaded {len(added)} vouchers of {denomination}, "
            f"skipped {len(duplicates)} duplicates"
        )
        return added, duplicates

    async def get(self, code: str) -> Optional[Voucher]:
        result = await self.session.execute(
            select(Voucher)
            .where(Voucher.code == code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_reference(self, reference: str) -> Optional[Voucher]:
        """Get the voucher consumed by a payment reference, if any."""
        result = await self.session.execute(
            select(Voucher).where(Voucher.originating_reference == reference)
        )
        return result.scalar_one_or_none()

    async def find_candidates(self, denomination: int, limit: int = 5) -> List[Voucher]:
        """Get unused vouchers whose denomination equals the amount exactly."""
        result = await self.session.execute(
            select(Voucher)
            .where(
                and_(
                    Voucher.denomination == int(denomination),
                    Voucher.consumed.is_(False),
                )
            )
            .order_by(Voucher.created_at, Voucher.code)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_available(self, denomination: int) -> Optional[Voucher]:
        candidates = await self.find_candidates(denomination, limit=1)
        return candidates[0] if candidates else None

    async def consume(self, code: str, subscriber_identifier: str, reference: str) -> Voucher:
        """Mark a voucher consumed by a payment.

        Conditional on the voucher still being unused, so only one caller
        can ever consume a given code.

        Raises:
            AlreadyConsumed: If the voucher was consumed before this call.
        """
        result = await self.session.execute(
            update(Voucher)
            .where(and_(Voucher.code == code, Voucher.consumed.is_(False)))
            .values(
                consumed=True,
                assigned_to=subscriber_identifier,
                assigned_at=datetime.utcnow(),
                originating_reference=reference,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyConsumed(code)

        voucher = await self.get(code)
        logger.info(f"Voucher {code} consumed by {reference}")
        return voucher

    async def has_assignment(
        self,
        subscriber_identifier: str,
        denomination: int,
        exclude_reference: Optional[str] = None,
    ) -> bool:
        """Check whether a subscriber already holds a voucher of this denomination."""
        conditions = [
            Voucher.assigned_to == subscriber_identifier,
            Voucher.denomination == int(denomination),
            Voucher.consumed.is_(True),
        ]
        if exclude_reference:
            conditions.append(Voucher.originating_reference != exclude_reference)
        result = await self.session.execute(
            select(func.count()).select_from(Voucher).where(and_(*conditions))
        )
        return result.scalar_one() > 0

    async def list_vouchers(
        self,
        denomination: Optional[int] = None,
        only_unused: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Voucher]:
        """List vouchers ordered by code, optionally filtered."""
        query = select(Voucher)
        if denomination:
            query = query.where(Voucher.denomination == denomination)
        if only_unused:
            query = query.where(Voucher.consumed.is_(False))
        result = await self.session.execute(
            query.order_by(Voucher.code).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def count_available(self) -> Dict[int, int]:
        """Count unused vouchers per denomination."""
        result = await self.session.execute(
            select(Voucher.denomination, func.count())
            .where(Voucher.consumed.is_(False))
            .group_by(Voucher.denomination)
        )
        return {denomination: count for denomination, count in result.all()}


class ProcessedCallbackRepository:
    """Repository for the durable callback idempotency keys."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, reference: str, event_type: str, provider_transaction_uuid: str) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(ProcessedCallback)
            .where(
                and_(
                    ProcessedCallback.reference == reference,
                    ProcessedCallback.event_type == event_type,
                    ProcessedCallback.provider_transaction_uuid == provider_transaction_uuid,
                )
            )
        )
        return result.scalar_one() > 0

    async def claim(
        self,
        reference: str,
        event_type: str,
        provider_transaction_uuid: str,
    ) -> ProcessedCallback:
        """Insert the callback key.

        Raises:
            sqlalchemy.exc.IntegrityError: If another caller already claimed it.
        """
        claim = ProcessedCallback(
            reference=reference,
            event_type=event_type,
            provider_transaction_uuid=provider_transaction_uuid,
        )
        self.session.add(claim)
        await self.session.flush()
        return claim

    async def list_for_reference(self, reference: str) -> List[ProcessedCallback]:
        result = await self.session.execute(
            select(ProcessedCallback)
            .where(ProcessedCallback.reference == reference)
            .order_by(ProcessedCallback.created_at)
        )
        return list(result.scalars().all())


class TransactionHistoryRepository:
    """Repository for TransactionHistory operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        payment_reference: str,
        action: str,
        new_status: str,
        previous_status: Optional[str] = None,
        amount: Optional[int] = None,
        event_type: Optional[str] = None,
        error_message: Optional[str] = None,
        action_metadata: Optional[Dict[str, Any]] = None,
    ) -> TransactionHistory:
        """Create a new transaction history record.

        Args:
            payment_reference: Associated payment reference.
            action: Action performed.
            new_status: Status after the action.
            previous_status: Status before the action.
            amount: Amount involved in this action.
            event_type: Callback event type that caused the action.
            error_message: Error message if the action failed.
            action_metadata: Additional metadata for this action.

        Returns:
            Created TransactionHistory instance.
        """
        history = TransactionHistory(
            payment_reference=payment_reference,
            action=action,
            new_status=new_status,
            previous_status=previous_status,
            amount=amount,
            event_type=event_type,
            error_message=error_message,
        )
        if action_metadata:
            history.action_metadata = action_metadata

        self.session.add(history)
        await self.session.flush()

        logger.debug(
            f"Created transaction history for payment {payment_reference}: "
            f"{action} -> {new_status}"
        )
        return history

    async def get_by_reference(
        self,
        payment_reference: str,
        limit: int = 100,
    ) -> List[TransactionHistory]:
        """Get history for a payment ordered by creation time, newest first."""
        result = await self.session.execute(
            select(TransactionHistory)
            .where(TransactionHistory.payment_reference == payment_reference)
            .order_by(TransactionHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
