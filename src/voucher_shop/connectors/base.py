from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


# Canonical models
class CollectionRequest(BaseModel):
    reference: str
    phone_number: str  # international format, e.g. +256712345678
    amount: int = Field(..., gt=0)
    currency: str = "UGX"
    description: Optional[str] = None
    callback_url: Optional[str] = None


class CollectionResponse(BaseModel):
    reference: str
    provider_transaction_id: Optional[str] = None
    status: str  # raw provider status, normalize with map_status()
    provider: Optional[str] = None  # mtn|airtel
    amount: Optional[int] = None
    phone_number: Optional[str] = None
    raw_provider_response: Optional[Dict[str, Any]] = None


class ConnectorBase(ABC):
    """
    Mobile-money collection gateway interface. Implementations raise
    ProviderUnreachable for transport failures and ProviderRejected for
    definitive refusals.
    """

    name: str = "base"

    @abstractmethod
    async def initiate_collection(self, request: CollectionRequest) -> CollectionResponse:
        """
        Ask the gateway to prompt the payer's phone for the amount.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_collection(self, provider_transaction_id: str) -> CollectionResponse:
        """
        Fetch the current state of a collection started earlier.
        """
        raise NotImplementedError

    async def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "provider": self.name}
