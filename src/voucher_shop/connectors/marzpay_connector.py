"""MarzPay collection gateway connector (MTN and Airtel Uganda)."""

import base64
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..errors import ProviderRejected, ProviderUnreachable
from .base import ConnectorBase, CollectionRequest, CollectionResponse

logger = logging.getLogger(__name__)

COLLECT_MONEY_PATH = "/api/v1/collect-money"

# Fields never copied into stored provider responses
SENSITIVE_FIELDS = frozenset(["api_key", "api_secret", "authorization", "pin"])


def _sanitize(raw: Any) -> Any:
    if isinstance(raw, dict):
        return {k: _sanitize(v) for k, v in raw.items() if k.lower() not in SENSITIVE_FIELDS}
    if isinstance(raw, list):
        return [_sanitize(v) for v in raw]
    return raw


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _raw_amount(amount: Any) -> Optional[int]:
    if isinstance(amount, dict):
        amount = amount.get("raw")
    try:
        return int(float(amount)) if amount is not None else None
    except (TypeError, ValueError):
        return None


class MarzPayConnector(ConnectorBase):
    """
    Connector for the MarzPay wallet API. Authenticates with HTTP Basic auth
    built from the API key and secret.
    """

    name = "marzpay"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://wallet.wearemarz.com",
        timeout_seconds: float = 20.0,
        country: str = "UG",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key or not api_secret:
            raise ValueError("MarzPay API key and secret must be configured")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.country = country
        self._transport = transport
        token = base64.b64encode(f"{api_key}:{api_secret}".encode()).decode()
        self._headers = {
            "Authorization": f"Basic {token}",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"MarzPay {method} {path} failed: {type(e).__name__}")
            raise ProviderUnreachable(f"Failed to reach MarzPay: {e}") from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"body": response.text[:500]}

        if response.status_code >= 500:
            logger.error(f"MarzPay {method} {path} returned {response.status_code}")
            raise ProviderUnreachable(
                f"MarzPay server error {response.status_code}", response=_sanitize(data)
            )
        if response.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            logger.warning(f"MarzPay {method} {path} rejected with {response.status_code}: {message}")
            raise ProviderRejected(
                message or f"MarzPay rejected the request ({response.status_code})",
                response=_sanitize(data),
            )
        return data if isinstance(data, dict) else {"data": data}

    def _to_response(self, data: Dict[str, Any], fallback_reference: str = "") -> CollectionResponse:
        body = _as_dict(data.get("data"))
        transaction = _as_dict(body.get("transaction"))
        collection = _as_dict(body.get("collection"))
        if not transaction:
            logger.error(f"MarzPay response carries no transaction: {str(data)[:200]}")
            raise ProviderUnreachable("Unexpected MarzPay response", response=_sanitize(data))
        provider = collection.get("provider") or transaction.get("provider")
        phone_number = collection.get("phone_number") or transaction.get("phone_number")
        try:
            return CollectionResponse(
                reference=_as_str(transaction.get("reference")) or fallback_reference,
                provider_transaction_id=_as_str(transaction.get("uuid")),
                status=str(transaction.get("status") or data.get("status") or "pending"),
                provider=str(provider).lower() if provider else None,
                amount=_raw_amount(collection.get("amount") or transaction.get("amount")),
                phone_number=_as_str(phone_number),
                raw_provider_response=_sanitize(data),
            )
        except ValidationError as e:
            logger.error(f"Unexpected MarzPay response shape: {e}")
            raise ProviderUnreachable("Unexpected MarzPay response", response=_sanitize(data)) from e

    async def initiate_collection(self, request: CollectionRequest) -> CollectionResponse:
        payload = {
            "amount": request.amount,
            "phone_number": request.phone_number,
            "reference": request.reference,
            "description": request.description or f"Voucher purchase {request.amount} {request.currency}",
            "country": self.country,
        }
        if request.callback_url:
            payload["callback_url"] = request.callback_url

        data = await self._request("POST", COLLECT_MONEY_PATH, json=payload)
        response = self._to_response(data, fallback_reference=request.reference)
        logger.info(
            f"MarzPay collection started for {request.reference}: "
            f"uuid={response.provider_transaction_id} status={response.status}"
        )
        return response

    async def get_collection(self, provider_transaction_id: str) -> CollectionResponse:
        data = await self._request("GET", f"{COLLECT_MONEY_PATH}/{provider_transaction_id}")
        return self._to_response(data)
