"""Simulator connector for exercising collection flows without a real gateway."""

import uuid
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..errors import ProviderRejected, ProviderUnreachable
from .base import ConnectorBase, CollectionRequest, CollectionResponse

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined scenarios, selected by the payer's phone number."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"


@dataclass
class SimulatedCollection:
    """In-memory representation of a simulated collection."""
    uuid: str
    reference: str
    amount: int
    phone_number: str
    provider: str
    status: str = "pending"
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    provider: str = "mtn"
    # Raw status reported by get_collection() right after initiation
    settle_status: Optional[str] = None
    unreachable: bool = False


class SimulatorConnector(ConnectorBase):
    """
    Simulator for the collection gateway.

    Features:
    - In-memory collection storage
    - Special phone numbers for specific scenarios
    - Status updates driven by tests via settle()
    - MarzPay-shaped webhook payloads via build_webhook_payload()
    """

    name = "simulator"

    # Phone numbers that trigger specific behaviors
    PHONE_SUCCESS = "+256700000001"
    PHONE_FAILURE = "+256700000002"
    PHONE_REJECTED = "+256700000003"
    PHONE_UNREACHABLE = "+256700000004"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self._collections: Dict[str, SimulatedCollection] = {}
        logger.info("SimulatorConnector initialized")

    def _determine_scenario(self, phone_number: str) -> SimulatorScenario:
        phone_scenarios = {
            self.PHONE_SUCCESS: SimulatorScenario.SUCCESS,
            self.PHONE_FAILURE: SimulatorScenario.FAILURE,
            self.PHONE_REJECTED: SimulatorScenario.REJECTED,
            self.PHONE_UNREACHABLE: SimulatorScenario.UNREACHABLE,
        }
        if self.config.unreachable:
            return SimulatorScenario.UNREACHABLE
        return phone_scenarios.get(phone_number, SimulatorScenario.PENDING)

    def _to_response(self, collection: SimulatedCollection) -> CollectionResponse:
        return CollectionResponse(
            reference=collection.reference,
            provider_transaction_id=collection.uuid,
            status=collection.status,
            provider=collection.provider,
            amount=collection.amount,
            phone_number=collection.phone_number,
            raw_provider_response={
                "status": "success",
                "simulator": True,
                "data": {
                    "transaction": {
                        "uuid": collection.uuid,
                        "reference": collection.reference,
                        "status": collection.status,
                    },
                    "collection": {
                        "provider": collection.provider,
                        "amount": {"raw": collection.amount, "currency": "UGX"},
                        "phone_number": collection.phone_number,
                    },
                },
            },
        )

    async def initiate_collection(self, request: CollectionRequest) -> CollectionResponse:
        """Start a simulated collection."""
        scenario = self._determine_scenario(request.phone_number)

        if scenario == SimulatorScenario.UNREACHABLE:
            raise ProviderUnreachable("Simulated gateway outage")
        if scenario == SimulatorScenario.REJECTED:
            raise ProviderRejected(
                "Simulated rejection: invalid phone number",
                response={"status": "error", "simulator": True},
            )

        collection = SimulatedCollection(
            uuid=str(uuid.uuid4()),
            reference=request.reference,
            amount=request.amount,
            phone_number=request.phone_number,
            provider=self.config.provider,
        )
        self._collections[collection.uuid] = collection
        # The gateway always acknowledges a new collection as pending
        response = self._to_response(collection)

        if scenario == SimulatorScenario.SUCCESS:
            collection.status = "completed"
        elif scenario == SimulatorScenario.FAILURE:
            collection.status = "failed"
        return response

    async def get_collection(self, provider_transaction_id: str) -> CollectionResponse:
        """Return the current state of a simulated collection."""
        if self.config.unreachable:
            raise ProviderUnreachable("Simulated gateway outage")

        collection = self._collections.get(provider_transaction_id)
        if collection is None:
            raise ProviderRejected(
                f"Collection {provider_transaction_id} not found",
                response={"status": "error", "simulator": True},
            )
        if self.config.settle_status and collection.status == "pending":
            collection.status = self.config.settle_status
        return self._to_response(collection)

    def settle(self, provider_transaction_id: str, status: str) -> None:
        """Set the raw status the gateway will report for a collection."""
        self._collections[provider_transaction_id].status = status

    def find_by_reference(self, reference: str) -> Optional[SimulatedCollection]:
        for collection in self._collections.values():
            if collection.reference == reference:
                return collection
        return None

    def build_webhook_payload(
        self,
        provider_transaction_id: str,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build a MarzPay-style webhook body for a simulated collection."""
        collection = self._collections[provider_transaction_id]
        status = status or collection.status
        if event_type is None:
            event_type = "collection.failed" if status == "failed" else "collection.completed"
        amount = {"formatted": f"{collection.amount:,.2f}", "raw": collection.amount, "currency": "UGX"}
        return {
            "event_type": event_type,
            "transaction": {
                "uuid": collection.uuid,
                "reference": collection.reference,
                "status": status,
                "amount": amount,
                "provider": collection.provider,
                "phone_number": collection.phone_number,
            },
            "collection": {
                "provider": collection.provider,
                "phone_number": collection.phone_number,
                "amount": amount,
            },
            "metadata": {"sandbox_mode": True, "simulator": True},
        }

    def clear(self) -> None:
        """Clear all stored collections (for test cleanup)."""
        self._collections.clear()

    async def health_check(self) -> Dict[str, Any]:
        return {
            "ok": not self.config.unreachable,
            "provider": self.name,
            "collection_count": len(self._collections),
        }
