"""Tests for database models, repositories and the schema migration."""

import importlib.util
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect, update
from sqlalchemy.exc import IntegrityError

from voucher_shop.database import (
    PaymentRecord,
    PaymentStatus,
    RecordOrigin,
    TransactionAction,
    PaymentRecordRepository,
    VoucherRepository,
    ProcessedCallbackRepository,
    TransactionHistoryRepository,
)
from voucher_shop.errors import AlreadyConsumed

from conftest import SUBSCRIBER

MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "src" / "voucher_shop" / "database" / "migrations" / "versions" / "001_initial.py"
)


class TestPaymentRecordRepository:
    """Tests for the PaymentRecordRepository."""

    async def test_create_defaults(self, db_session):
        repo = PaymentRecordRepository(db_session)
        record = await repo.create(subscriber_identifier=SUBSCRIBER, denomination=1000)

        assert record.reference
        assert record.status == PaymentStatus.PROCESSING.value
        assert record.origin == RecordOrigin.INITIATION.value
        assert record.currency == "UGX"
        assert record.assigned_voucher_code is None
        assert record.completed_at is None
        assert not record.is_terminal

    async def test_create_with_reference(self, db_session):
        repo = PaymentRecordRepository(db_session)
        record = await repo.create(
            subscriber_identifier=SUBSCRIBER,
            denomination=1500,
            reference="ref-123",
            origin=RecordOrigin.WEBHOOK.value,
        )

        loaded = await repo.get_by_reference("ref-123")
        assert loaded is record
        assert loaded.origin == "webhook"

    async def test_get_missing_reference(self, db_session):
        assert await PaymentRecordRepository(db_session).get_by_reference("nope") is None

    async def test_transition_is_compare_and_swap(self, db_session, make_payment):
        record = await make_payment()
        repo = PaymentRecordRepository(db_session)

        assert await repo.transition(record.reference, PaymentStatus.SUCCESSFUL) is True
        assert await repo.transition(record.reference, PaymentStatus.FAILED) is False
        assert await repo.transition(record.reference, PaymentStatus.SUCCESSFUL) is False

        loaded = await repo.get_by_reference(record.reference)
        assert loaded.status == "successful"
        assert loaded.completed_at is not None

    async def test_transition_rejects_processing_target(self, db_session, make_payment):
        record = await make_payment()
        with pytest.raises(ValueError):
            await PaymentRecordRepository(db_session).transition(
                record.reference, PaymentStatus.PROCESSING
            )

    async def test_assign_voucher_requires_successful(self, db_session, make_payment, stocked_vouchers):
        record = await make_payment()
        repo = PaymentRecordRepository(db_session)

        assert await repo.assign_voucher(record.reference, "V1000-A") is False

        await repo.transition(record.reference, PaymentStatus.SUCCESSFUL)
        assert await repo.assign_voucher(record.reference, "V1000-A") is True
        assert await repo.assign_voucher(record.reference, "V1000-B") is False

        loaded = await repo.get_by_reference(record.reference)
        assert loaded.assigned_voucher_code == "V1000-A"

    async def test_set_provider_details(self, db_session, make_payment):
        record = await make_payment()
        repo = PaymentRecordRepository(db_session)

        await repo.set_provider_details(
            record,
            provider_transaction_id="uuid-1",
            provider="mtn",
            raw_provider_response={"status": "success"},
        )

        loaded = await repo.get_by_reference(record.reference)
        assert loaded.provider_transaction_id == "uuid-1"
        assert loaded.provider == "mtn"
        assert loaded.raw_provider_response == {"status": "success"}

    async def test_list_stale(self, db_session, make_payment):
        old = await make_payment()
        await make_payment()
        done = await make_payment()
        await db_session.execute(
            update(PaymentRecord)
            .where(PaymentRecord.reference.in_([old.reference, done.reference]))
            .values(created_at=datetime.utcnow() - timedelta(hours=2))
        )
        repo = PaymentRecordRepository(db_session)
        await repo.transition(done.reference, PaymentStatus.FAILED)
        await db_session.commit()

        stale = await repo.list_stale(datetime.utcnow() - timedelta(hours=1))

        assert [r.reference for r in stale] == [old.reference]

    async def test_to_dict(self, make_payment):
        record = await make_payment(denomination=7000)
        data = record.to_dict()

        assert data["reference"] == record.reference
        assert data["status"] == "processing"
        assert data["amount"] == 7000
        assert data["phone"] == SUBSCRIBER
        assert data["voucher"] is None
        assert data["completed_at"] is None


class TestVoucherRepository:
    """Tests for the voucher inventory."""

    async def test_add_and_get(self, db_session):
        repo = VoucherRepository(db_session)
        await repo.add(" CODE-1 ", 1000)

        voucher = await repo.get("CODE-1")
        assert voucher.denomination == 1000
        assert voucher.consumed is False

    async def test_add_duplicate_raises(self, db_session):
        repo = VoucherRepository(db_session)
        await repo.add("CODE-1", 1000)
        await db_session.commit()
        db_session.expunge_all()

        with pytest.raises(IntegrityError):
            await repo.add("CODE-1", 1500)

    async def test_add_many_reports_duplicates(self, db_session):
        repo = VoucherRepository(db_session)
        await repo.add("EXISTING", 1000)

        added, duplicates = await repo.add_many(
            ["NEW-1", "EXISTING", "", "NEW-2", "NEW-1"], 1000
        )

        assert sorted(v.code for v in added) == ["NEW-1", "NEW-2"]
        assert sorted(duplicates) == ["EXISTING", "NEW-1"]

    async def test_find_available_matches_denomination_exactly(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)

        voucher = await repo.find_available(1500)
        assert voucher.denomination == 1500
        assert await repo.find_available(500) is None

    async def test_consume_succeeds_once(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)

        voucher = await repo.consume("V1000-A", SUBSCRIBER, "ref-1")
        assert voucher.consumed is True
        assert voucher.assigned_to == SUBSCRIBER
        assert voucher.originating_reference == "ref-1"
        assert voucher.assigned_at is not None

        with pytest.raises(AlreadyConsumed):
            await repo.consume("V1000-A", "+256700000009", "ref-2")

        voucher = await repo.get("V1000-A")
        assert voucher.originating_reference == "ref-1"

    async def test_consumed_voucher_is_not_a_candidate(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)
        await repo.consume("V1000-A", SUBSCRIBER, "ref-1")

        candidates = await repo.find_candidates(1000)
        assert [v.code for v in candidates] == ["V1000-B"]

    async def test_reference_owns_at_most_one_voucher(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)
        await repo.consume("V1000-A", SUBSCRIBER, "ref-1")

        with pytest.raises(IntegrityError):
            await repo.consume("V1000-B", SUBSCRIBER, "ref-1")

    async def test_has_assignment(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)
        await repo.consume("V1000-A", SUBSCRIBER, "ref-1")

        assert await repo.has_assignment(SUBSCRIBER, 1000) is True
        assert await repo.has_assignment(SUBSCRIBER, 1000, exclude_reference="ref-1") is False
        assert await repo.has_assignment(SUBSCRIBER, 1500) is False

    async def test_list_and_count(self, db_session, stocked_vouchers):
        repo = VoucherRepository(db_session)
        await repo.consume("V7000-A", SUBSCRIBER, "ref-1")

        all_7000 = await repo.list_vouchers(denomination=7000)
        unused_7000 = await repo.list_vouchers(denomination=7000, only_unused=True)

        assert [v.code for v in all_7000] == ["V7000-A", "V7000-B"]
        assert [v.code for v in unused_7000] == ["V7000-B"]
        assert await repo.count_available() == {1000: 2, 1500: 2, 7000: 1}


class TestProcessedCallbackRepository:
    """Tests for durable callback idempotency keys."""

    async def test_claim_then_exists(self, db_session):
        repo = ProcessedCallbackRepository(db_session)
        assert await repo.exists("ref-1", "collection.completed", "uuid-1") is False

        await repo.claim("ref-1", "collection.completed", "uuid-1")

        assert await repo.exists("ref-1", "collection.completed", "uuid-1") is True
        assert await repo.exists("ref-1", "collection.failed", "uuid-1") is False

    async def test_second_claim_violates_unique_key(self, db_session):
        repo = ProcessedCallbackRepository(db_session)
        await repo.claim("ref-1", "collection.completed", "uuid-1")
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await repo.claim("ref-1", "collection.completed", "uuid-1")
        await db_session.rollback()

        claims = await repo.list_for_reference("ref-1")
        assert len(claims) == 1


class TestTransactionHistoryRepository:

    async def test_create_and_list(self, db_session, make_payment):
        record = await make_payment()
        repo = TransactionHistoryRepository(db_session)

        await repo.create(
            payment_reference=record.reference,
            action=TransactionAction.INITIATE.value,
            new_status="processing",
            amount=1000,
            action_metadata={"source": "test"},
        )
        history = await repo.get_by_reference(record.reference)

        assert len(history) == 1
        entry = history[0].to_dict()
        assert entry["action"] == "initiate"
        assert entry["action_metadata"] == {"source": "test"}


def _load_migration():
    spec = importlib.util.spec_from_file_location("initial_migration", MIGRATION_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestInitialMigration:

    def test_upgrade_and_downgrade(self):
        from alembic.migration import MigrationContext
        from alembic.operations import Operations

        migration = _load_migration()
        engine = create_engine("sqlite://")

        with engine.begin() as conn:
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                migration.upgrade()
            tables = set(inspect(conn).get_table_names())
            assert {"vouchers", "payment_records", "processed_callbacks", "transaction_history"} <= tables

            unique_constraints = inspect(conn).get_unique_constraints("processed_callbacks")
            assert any(
                set(uc["column_names"]) == {"reference", "event_type", "provider_transaction_uuid"}
                for uc in unique_constraints
            )

            with Operations.context(ctx):
                migration.downgrade()
            assert "vouchers" not in set(inspect(conn).get_table_names())

        engine.dispose()
