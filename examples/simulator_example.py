"""
End-to-end voucher purchase against the simulator connector.

Loads a few vouchers, starts a payment, delivers the provider webhook twice
(the second delivery is ignored as a duplicate) and prints the final status.

    python examples/simulator_example.py
"""
import asyncio

from voucher_shop.config import Settings
from voucher_shop.connectors import SimulatorConnector
from voucher_shop.database import (
    VoucherRepository,
    create_async_engine,
    create_tables,
    get_async_session_factory,
)
from voucher_shop.reconciliation import CallbackEvent, ReconciliationEngine
from voucher_shop.services import PaymentService


async def main():
    settings = Settings(payment_provider="simulator")
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    session_factory = get_async_session_factory(engine)
    connector = SimulatorConnector()

    async with session_factory() as session:
        await VoucherRepository(session).add_many(["DEMO-1000-A", "DEMO-1000-B"], 1000)
        await session.commit()

        service = PaymentService(session, connector, settings)
        payment = await service.initiate("0772 123 456", 1000)
        print(f"Started payment {payment['reference']}")

        # The payer approves the prompt on their phone; the gateway calls back
        payload = connector.build_webhook_payload(
            payment["provider_transaction_id"], status="completed"
        )
        reconciler = ReconciliationEngine(session, settings)
        for attempt in (1, 2):
            result = await reconciler.reconcile_event(CallbackEvent.from_webhook(payload))
            print(f"Webhook delivery {attempt}: {result.outcome.value}")

        status = await service.get_status(payment["reference"])
        print(f"Final status: {status['status']}, voucher: {status['voucher']}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
