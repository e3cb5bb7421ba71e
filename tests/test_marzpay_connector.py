"""Tests for the MarzPay connector using a mocked HTTP transport."""

import base64
import json

import httpx
import pytest

from voucher_shop.connectors import CollectionRequest, MarzPayConnector
from voucher_shop.errors import ProviderRejected, ProviderUnreachable

BASE_URL = "https://wallet.example.com"


def collection_body(status="pending", reference="ref-1", provider="MTN"):
    return {
        "status": "success",
        "message": "Collection initiated",
        "data": {
            "transaction": {
                "uuid": "uuid-1",
                "reference": reference,
                "status": status,
                "amount": {"formatted": "1,000.00", "raw": 1000, "currency": "UGX"},
            },
            "collection": {
                "provider": provider,
                "amount": {"formatted": "1,000.00", "raw": 1000, "currency": "UGX"},
                "phone_number": "+256772123456",
                "mode": "live",
            },
        },
    }


def make_connector(handler):
    return MarzPayConnector(
        api_key="key",
        api_secret="secret",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
    )


def make_request():
    return CollectionRequest(
        reference="ref-1",
        phone_number="+256772123456",
        amount=1000,
        callback_url="https://shop.example.com/webhook",
    )


class TestInitiateCollection:

    async def test_sends_collect_money_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=collection_body())

        response = await make_connector(handler).initiate_collection(make_request())

        expected_token = base64.b64encode(b"key:secret").decode()
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v1/collect-money"
        assert seen["auth"] == f"Basic {expected_token}"
        assert seen["body"]["amount"] == 1000
        assert seen["body"]["phone_number"] == "+256772123456"
        assert seen["body"]["reference"] == "ref-1"
        assert seen["body"]["country"] == "UG"
        assert seen["body"]["callback_url"] == "https://shop.example.com/webhook"

        assert response.provider_transaction_id == "uuid-1"
        assert response.status == "pending"
        assert response.provider == "mtn"
        assert response.amount == 1000
        assert response.raw_provider_response["message"] == "Collection initiated"

    async def test_client_error_is_rejection(self):
        def handler(request):
            return httpx.Response(422, json={"status": "error", "message": "Invalid phone number"})

        with pytest.raises(ProviderRejected) as exc_info:
            await make_connector(handler).initiate_collection(make_request())

        assert "Invalid phone number" in str(exc_info.value)
        assert exc_info.value.response["status"] == "error"

    async def test_server_error_is_unreachable(self):
        def handler(request):
            return httpx.Response(503, text="Service Unavailable")

        with pytest.raises(ProviderUnreachable):
            await make_connector(handler).initiate_collection(make_request())

    async def test_network_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnreachable):
            await make_connector(handler).initiate_collection(make_request())


class TestGetCollection:

    async def test_fetches_by_uuid(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            return httpx.Response(200, json=collection_body(status="successful"))

        response = await make_connector(handler).get_collection("uuid-1")

        assert seen == {"method": "GET", "path": "/api/v1/collect-money/uuid-1"}
        assert response.status == "successful"
        assert response.reference == "ref-1"
        assert response.phone_number == "+256772123456"


def test_requires_credentials():
    with pytest.raises(ValueError):
        MarzPayConnector(api_key="", api_secret="secret")


class TestUnexpectedResponses:

    async def test_data_not_an_object(self):
        def handler(request):
            return httpx.Response(200, json={"status": "error", "data": "Transaction not found"})

        with pytest.raises(ProviderUnreachable) as exc_info:
            await make_connector(handler).get_collection("uuid-1")

        assert "Unexpected MarzPay response" in str(exc_info.value)
        assert exc_info.value.response["data"] == "Transaction not found"

    async def test_non_json_success_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(ProviderUnreachable):
            await make_connector(handler).get_collection("uuid-1")

    async def test_numeric_fields_are_coerced(self):
        body = collection_body(status="successful")
        body["data"]["collection"]["phone_number"] = 256772123456
        body["data"]["transaction"]["uuid"] = 12345

        def handler(request):
            return httpx.Response(200, json=body)

        response = await make_connector(handler).get_collection("uuid-1")

        assert response.phone_number == "256772123456"
        assert response.provider_transaction_id == "12345"
        assert response.status == "successful"

