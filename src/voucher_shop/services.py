"""Payment service layer: initiation, status queries and stale-payment handling."""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .connectors.base import ConnectorBase, CollectionRequest
from .database import (
    PaymentRecord,
    PaymentRecordRepository,
    TransactionHistoryRepository,
    PaymentStatus,
    TransactionAction,
)
from .errors import (
    InvalidDenomination,
    InvalidInput,
    NotFound,
    PaymentTimeout,
    ProviderError,
    ProviderRejected,
    ProviderUnreachable,
)
from .reconciliation import ReconciliationEngine, ReconciliationOutcome, ReconciliationResult

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^(\+?256|0)?[0-9]{9}$")
PHONE_SEPARATORS = re.compile(r"[\s\-()]")

INITIATION_REJECTED_EVENT = "initiation.rejected"
SWEEP_EXPIRED_EVENT = "sweep.expired"
SIMULATED_FAILURE_EVENT = "simulation.failed"


def is_valid_phone(phone: Any) -> bool:
    """Pass/fail check for a Ugandan mobile number."""
    if not isinstance(phone, str):
        return False
    return bool(PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", phone)))


def normalize_phone(phone: Any) -> str:
    """Return the number in +256XXXXXXXXX form.

    Raises:
        InvalidInput: If the number fails the pass/fail check.
    """
    if not is_valid_phone(phone):
        raise InvalidInput("Please enter a valid phone number")
    digits = PHONE_SEPARATORS.sub("", phone)
    return f"+256{digits[-9:]}"


def poll_event_type(provider_status: str) -> str:
    # Each distinct polled status is its own callback, so a pending poll never
    # shadows a later completed one
    return f"poll.{provider_status}"


class PaymentService:
    """Service class for payment operations with persistence."""

    def __init__(
        self,
        session: AsyncSession,
        connector: ConnectorBase,
        settings: Optional[Settings] = None,
    ):
        """Initialize the service.

        Args:
            session: AsyncSession instance for database operations.
            connector: Collection gateway used to start and poll payments.
            settings: Runtime settings; process settings when omitted.
        """
        self.session = session
        self.connector = connector
        self.settings = settings or get_settings()
        self.payment_repo = PaymentRecordRepository(session)
        self.history_repo = TransactionHistoryRepository(session)
        self.engine = ReconciliationEngine(session, self.settings)

    async def initiate(self, phone: Any, amount: Any) -> Dict[str, Any]:
        """Start a mobile-money collection for a voucher.

        The payment record is committed as processing before the provider is
        called, so webhooks and polls always have a record to land on.

        Args:
            phone: Payer phone number.
            amount: Voucher denomination being bought.

        Returns:
            Dict with reference, provider_transaction_id, status and provider_response.

        Raises:
            InvalidDenomination: If the amount is not a configured denomination.
            InvalidInput: If the phone number fails validation.
            ProviderUnreachable: If the provider could not be reached; the
                record stays processing and the error carries its reference.
            ProviderRejected: If the provider refused; the record is failed.
        """
        if not self.settings.is_valid_denomination(amount):
            raise InvalidDenomination(amount, self.settings.denominations)
        subscriber = normalize_phone(phone)
        denomination = int(amount)

        record = await self.payment_repo.create(
            subscriber_identifier=subscriber,
            denomination=denomination,
            currency=self.settings.currency,
        )
        reference = record.reference
        await self.history_repo.create(
            payment_reference=reference,
            action=TransactionAction.INITIATE.value,
            new_status=PaymentStatus.PROCESSING.value,
            amount=denomination,
        )
        await self.session.commit()

        request = CollectionRequest(
            reference=reference,
            phone_number=subscriber,
            amount=denomination,
            currency=self.settings.currency,
            description=f"Voucher purchase ({denomination} {self.settings.currency})",
            callback_url=self.settings.marzpay_callback_url,
        )

        try:
            response = await self.connector.initiate_collection(request)
        except ProviderUnreachable as e:
            logger.error(f"Provider unreachable while initiating {reference}: {e}")
            await self.history_repo.create(
                payment_reference=reference,
                action=TransactionAction.PROVIDER_ERROR.value,
                previous_status=PaymentStatus.PROCESSING.value,
                new_status=PaymentStatus.PROCESSING.value,
                amount=denomination,
                error_message=str(e),
            )
            await self.session.commit()
            raise ProviderUnreachable(str(e), response=e.response, reference=reference) from e
        except ProviderRejected as e:
            logger.warning(f"Provider rejected payment {reference}: {e}")
            await self.engine.reconcile(
                reference=reference,
                event_type=INITIATION_REJECTED_EVENT,
                provider_status="failed",
            )
            raise ProviderRejected(str(e), response=e.response, reference=reference) from e

        await self.payment_repo.set_provider_details(
            record,
            provider_transaction_id=response.provider_transaction_id,
            provider=response.provider,
            raw_provider_response=response.raw_provider_response,
        )
        await self.session.commit()

        logger.info(
            f"Initiated payment {reference} for {denomination} "
            f"(provider transaction {response.provider_transaction_id})"
        )
        return {
            "reference": reference,
            "provider_transaction_id": response.provider_transaction_id,
            "status": PaymentStatus.PROCESSING.value,
            "provider_response": response.raw_provider_response,
        }

    async def poll_provider(
        self, record: PaymentRecord, fallback: bool = True
    ) -> Optional[ReconciliationResult]:
        """Ask the provider for a processing payment's status and reconcile it.

        Returns None when the provider could not answer. With ``fallback``
        unset, ProviderUnreachable is raised instead so callers can tell an
        outage apart from a provider that does not know the collection.
        """
        reference = record.reference
        transaction_id = record.provider_transaction_id
        fallback_provider = record.provider
        if not transaction_id:
            return None

        try:
            response = await self.connector.get_collection(transaction_id)
        except ProviderUnreachable as e:
            if not fallback:
                raise
            logger.warning(f"Could not poll provider for {reference}, using local status: {e}")
            return None
        except ProviderError as e:
            logger.warning(f"Provider has no usable status for {reference}: {e}")
            return None

        return await self.engine.reconcile(
            reference=reference,
            event_type=poll_event_type(response.status),
            provider_status=response.status,
            provider=response.provider or fallback_provider,
            amount=response.amount,
            subscriber_identifier=response.phone_number,
            provider_transaction_uuid=transaction_id,
        )

    async def get_status(self, reference: str, poll: bool = True) -> Dict[str, Any]:
        """Get the status view of a payment.

        A payment still processing is checked with the provider first when
        ``poll`` is set.

        Raises:
            InvalidInput: If no reference is given.
            NotFound: If no payment has this reference.
        """
        if not reference:
            raise InvalidInput("Reference is required")

        record = await self.payment_repo.get_by_reference(reference)
        if record is None:
            raise NotFound(reference)

        if poll and not record.is_terminal and record.provider_transaction_id:
            await self.poll_provider(record)
            record = await self.payment_repo.get_by_reference(reference)

        return self._status_view(record)

    @staticmethod
    def _status_view(record: PaymentRecord) -> Dict[str, Any]:
        data = record.to_dict()
        return {
            key: data[key]
            for key in (
                "reference",
                "status",
                "amount",
                "phone",
                "voucher",
                "created_at",
                "updated_at",
                "completed_at",
            )
        }

    async def wait_for_completion(
        self,
        reference: str,
        timeout_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Poll the status query until the payment is terminal.

        Raises:
            PaymentTimeout: If the payment is still processing after the timeout.
            NotFound: If no payment has this reference.
        """
        timeout = self.settings.poll_timeout_seconds if timeout_seconds is None else timeout_seconds
        interval = self.settings.poll_interval_seconds if interval_seconds is None else interval_seconds

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            status = await self.get_status(reference)
            if status["status"] != PaymentStatus.PROCESSING.value:
                return status
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Gave up waiting for payment {reference} after {timeout}s")
                raise PaymentTimeout(reference, timeout)
            await asyncio.sleep(min(interval, remaining))

    async def sweep_stale_payments(
        self,
        older_than: Optional[timedelta] = None,
        limit: int = 100,
    ) -> Dict[str, int]:
        """Resolve payments stuck in processing.

        Each stale payment is polled once more. It is marked failed when the
        provider answers with a non-terminal status or does not know the
        collection. Payments the provider cannot be reached for stay
        processing and are counted as errors.

        Returns:
            Counts of checked, resolved (by the provider), expired and errored payments.
        """
        if older_than is None:
            older_than = timedelta(minutes=self.settings.stale_payment_minutes)
        cutoff = datetime.utcnow() - older_than

        stale = await self.payment_repo.list_stale(cutoff, limit=limit)
        candidates = [(r.reference, r.provider_transaction_id) for r in stale]
        summary = {"checked": len(candidates), "resolved": 0, "expired": 0, "errors": 0}

        for reference, transaction_id in candidates:
            record = await self.payment_repo.get_by_reference(reference)
            if record is None or record.is_terminal:
                continue
            if transaction_id:
                try:
                    polled = await self.poll_provider(record, fallback=False)
                except ProviderUnreachable as e:
                    logger.warning(f"Leaving stale payment {reference} processing, provider unreachable: {e}")
                    summary["errors"] += 1
                    continue
                if polled is not None and polled.outcome == ReconciliationOutcome.ERROR:
                    summary["errors"] += 1
                    continue
                record = await self.payment_repo.get_by_reference(reference)
                if record.is_terminal:
                    summary["resolved"] += 1
                    continue

            result = await self.engine.reconcile(
                reference=reference,
                event_type=SWEEP_EXPIRED_EVENT,
                provider_status="failed",
                provider_transaction_uuid=transaction_id or "",
            )
            if result.outcome == ReconciliationOutcome.FAILED:
                summary["expired"] += 1
            elif result.outcome == ReconciliationOutcome.ERROR:
                summary["errors"] += 1

        logger.info(
            f"Stale payment sweep: checked={summary['checked']} resolved={summary['resolved']} "
            f"expired={summary['expired']} errors={summary['errors']}"
        )
        return summary

    async def simulate_failure(self, reference: str) -> ReconciliationResult:
        """Drive a payment to failed as if the provider had reported it."""
        if not reference:
            raise InvalidInput("Reference is required")
        record = await self.payment_repo.get_by_reference(reference)
        if record is None:
            raise NotFound(reference)

        return await self.engine.reconcile(
            reference=reference,
            event_type=SIMULATED_FAILURE_EVENT,
            provider_status="failed",
            provider=record.provider,
            provider_transaction_uuid=record.provider_transaction_id or "",
        )
