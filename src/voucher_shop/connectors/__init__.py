"""Mobile-money collection gateway connectors."""

from .base import ConnectorBase, CollectionRequest, CollectionResponse
from .marzpay_connector import MarzPayConnector
from .simulator_connector import SimulatorConnector, SimulatorConfig, SimulatorScenario

from ..config import Settings


def get_connector(settings: Settings) -> ConnectorBase:
    """Build the connector selected by PAYMENT_PROVIDER."""
    if settings.payment_provider == "simulator":
        return SimulatorConnector()
    if settings.payment_provider == "marzpay":
        return MarzPayConnector(
            api_key=settings.marzpay_api_key,
            api_secret=settings.marzpay_api_secret,
            base_url=settings.marzpay_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    raise ValueError(f"Unsupported payment provider: {settings.payment_provider}")


__all__ = [
    "ConnectorBase",
    "CollectionRequest",
    "CollectionResponse",
    "MarzPayConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorScenario",
    "get_connector",
]
