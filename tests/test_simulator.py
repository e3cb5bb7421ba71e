"""Tests for the simulator connector."""

import pytest

from voucher_shop.config import Settings
from voucher_shop.connectors import (
    CollectionRequest,
    MarzPayConnector,
    SimulatorConfig,
    SimulatorConnector,
    get_connector,
)
from voucher_shop.errors import ProviderRejected, ProviderUnreachable
from voucher_shop.reconciliation import CallbackEvent


def make_request(phone="+256772123456", amount=1000, reference="ref-1"):
    return CollectionRequest(reference=reference, phone_number=phone, amount=amount)


class TestSimulatorCollections:

    async def test_initiate_is_pending(self):
        connector = SimulatorConnector()

        response = await connector.initiate_collection(make_request())

        assert response.status == "pending"
        assert response.reference == "ref-1"
        assert response.provider == "mtn"
        assert response.provider_transaction_id

    async def test_get_collection_reflects_settle(self):
        connector = SimulatorConnector()
        response = await connector.initiate_collection(make_request())

        connector.settle(response.provider_transaction_id, "successful")
        polled = await connector.get_collection(response.provider_transaction_id)

        assert polled.status == "successful"
        assert polled.amount == 1000

    async def test_success_phone_settles_completed(self):
        connector = SimulatorConnector()
        response = await connector.initiate_collection(make_request(phone=SimulatorConnector.PHONE_SUCCESS))

        polled = await connector.get_collection(response.provider_transaction_id)

        assert response.status == "pending"
        assert polled.status == "completed"

    async def test_failure_phone_settles_failed(self):
        connector = SimulatorConnector()
        response = await connector.initiate_collection(make_request(phone=SimulatorConnector.PHONE_FAILURE))

        polled = await connector.get_collection(response.provider_transaction_id)

        assert polled.status == "failed"

    async def test_settle_status_config(self):
        connector = SimulatorConnector(SimulatorConfig(provider="airtel", settle_status="TS"))
        response = await connector.initiate_collection(make_request())

        polled = await connector.get_collection(response.provider_transaction_id)

        assert polled.status == "TS"
        assert polled.provider == "airtel"

    async def test_rejected_phone(self):
        connector = SimulatorConnector()
        with pytest.raises(ProviderRejected):
            await connector.initiate_collection(make_request(phone=SimulatorConnector.PHONE_REJECTED))

    async def test_unreachable(self):
        connector = SimulatorConnector()
        with pytest.raises(ProviderUnreachable):
            await connector.initiate_collection(make_request(phone=SimulatorConnector.PHONE_UNREACHABLE))

        connector.config.unreachable = True
        with pytest.raises(ProviderUnreachable):
            await connector.get_collection("anything")

    async def test_unknown_collection(self):
        with pytest.raises(ProviderRejected):
            await SimulatorConnector().get_collection("missing")


class TestSimulatorHelpers:

    async def test_webhook_payload_parses(self):
        connector = SimulatorConnector()
        response = await connector.initiate_collection(make_request(amount=1500))

        payload = connector.build_webhook_payload(response.provider_transaction_id, status="completed")
        event = CallbackEvent.from_webhook(payload)

        assert event.reference == "ref-1"
        assert event.event_type == "collection.completed"
        assert event.provider_status == "completed"
        assert event.amount == 1500
        assert event.provider == "mtn"
        assert event.provider_transaction_uuid == response.provider_transaction_id

    async def test_failed_webhook_event_type(self):
        connector = SimulatorConnector()
        response = await connector.initiate_collection(make_request())

        payload = connector.build_webhook_payload(response.provider_transaction_id, status="failed")

        assert payload["event_type"] == "collection.failed"

    async def test_clear_and_health(self):
        connector = SimulatorConnector()
        await connector.initiate_collection(make_request())
        assert (await connector.health_check())["collection_count"] == 1

        connector.clear()

        health = await connector.health_check()
        assert health == {"ok": True, "provider": "simulator", "collection_count": 0}


class TestConnectorFactory:

    def test_simulator(self):
        assert isinstance(get_connector(Settings(payment_provider="simulator")), SimulatorConnector)

    def test_marzpay(self):
        settings = Settings(
            payment_provider="marzpay",
            marzpay_api_key="key",
            marzpay_api_secret="secret",
        )
        connector = get_connector(settings)
        assert isinstance(connector, MarzPayConnector)

    def test_marzpay_requires_credentials(self):
        with pytest.raises(ValueError):
            get_connector(Settings(payment_provider="marzpay"))

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_connector(Settings(payment_provider="paypal"))
