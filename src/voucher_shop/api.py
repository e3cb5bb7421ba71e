"""HTTP API: payment initiation, status checks and the provider webhook."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Type, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from . import __version__
from .admin import router as admin_router
from .auth import limiter, pay_rate_limit
from .config import Settings, get_settings
from .connectors import ConnectorBase, get_connector
from .database import close_db, get_db, init_db
from .errors import InvalidInput, NotFound, ProviderError, VoucherShopError
from .reconciliation import CallbackEvent, ReconciliationEngine, ReconciliationOutcome
from .services import PaymentService

logger = logging.getLogger(__name__)

BodyT = TypeVar("BodyT", bound=BaseModel)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Voucher Shop", version=__version__, lifespan=lifespan)
app.state.limiter = limiter
app.include_router(admin_router)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer rate-limited payment requests with 429."""
    logger.warning(f"Rate limit exceeded for {request.client.host if request.client else 'unknown'}")
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": "Too many payment requests, please try again later",
            "error": str(exc.detail),
        },
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


def get_payment_connector(request: Request) -> ConnectorBase:
    """The collection gateway connector, built once per application."""
    connector = getattr(request.app.state, "connector", None)
    if connector is None:
        connector = get_connector(get_settings())
        request.app.state.connector = connector
    return connector


def _http_error(e: VoucherShopError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _now() -> str:
    return datetime.utcnow().isoformat()


class PayBody(BaseModel):
    # Loosely typed so bad input is answered with 400 rather than 422
    phone: Any = None
    amount: Any = None


class ReferenceBody(BaseModel):
    reference: Any = None


async def _read_body(request: Request, model: Type[BodyT]) -> BodyT:
    """Parse a JSON object body; a missing or malformed body reads as empty."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        payload = {}
    return model.model_validate(payload)


def _require_reference(body: ReferenceBody) -> str:
    if not body.reference:
        raise HTTPException(status_code=400, detail="Reference is required")
    if not isinstance(body.reference, str):
        raise HTTPException(status_code=400, detail="Reference must be a string")
    return body.reference


@app.post("/pay")
@limiter.limit(pay_rate_limit)
async def pay(
    request: Request,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_payment_connector),
    settings: Settings = Depends(get_settings),
):
    """
    Start a mobile-money payment for a voucher.

    Returns the payment reference to poll with /check-payment.
    """
    body = await _read_body(request, PayBody)
    service = PaymentService(db, connector, settings)
    try:
        data = await service.initiate(body.phone, body.amount)
    except InvalidInput as e:
        raise _http_error(e)
    except ProviderError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "success": False,
                "message": f"Payment provider error: {e}",
                "reference": e.reference,
            },
        )
    return {"success": True, "data": data}


@app.post("/check-payment")
async def check_payment(
    request: Request,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_payment_connector),
    settings: Settings = Depends(get_settings),
):
    """Current status of a payment, checked with the provider while still processing."""
    reference = _require_reference(await _read_body(request, ReferenceBody))

    service = PaymentService(db, connector, settings)
    try:
        data = await service.get_status(reference)
    except (InvalidInput, NotFound) as e:
        raise _http_error(e)
    return {"success": True, "data": data}


@app.post("/webhook")
async def webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Provider callback. Always answered with 200 so the provider stops
    retrying; the body says what was done with the callback.
    """
    try:
        payload = await request.json()
        event = CallbackEvent.from_webhook(payload)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Malformed webhook body: {e}")
        return {
            "success": False,
            "message": "Invalid webhook payload",
            "error": str(e),
            "timestamp": _now(),
        }

    logger.info(
        f"Webhook {event.event_type} for {event.reference}: "
        f"status={event.provider_status} provider={event.provider}"
    )
    result = await ReconciliationEngine(db, settings).reconcile_event(event)
    return {**result.to_ack(), "timestamp": _now()}


@app.get("/webhook")
async def webhook_verify():
    """Lets the provider dashboard confirm the callback URL is live."""
    return {"success": True, "message": "Webhook endpoint is active", "timestamp": _now()}


@app.post("/test-failed-payment")
async def test_failed_payment(
    request: Request,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_payment_connector),
    settings: Settings = Depends(get_settings),
):
    """Force a payment to failed. Only available with ENABLE_TEST_ENDPOINTS."""
    if not settings.enable_test_endpoints:
        raise HTTPException(status_code=404, detail="Not Found")
    reference = _require_reference(await _read_body(request, ReferenceBody))

    service = PaymentService(db, connector, settings)
    try:
        result = await service.simulate_failure(reference)
    except (InvalidInput, NotFound) as e:
        raise _http_error(e)

    return {
        "success": result.outcome != ReconciliationOutcome.ERROR,
        "message": result.message,
        "reference": result.reference,
        "outcome": result.outcome.value,
        "status": result.payment_status,
    }


@app.get("/health")
async def health(connector: ConnectorBase = Depends(get_payment_connector)):
    return {
        "status": "healthy",
        "service": "voucher-shop",
        "provider": await connector.health_check(),
    }
