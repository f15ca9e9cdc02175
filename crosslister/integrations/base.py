"""
Uniform capability contract every marketplace adapter implements.

Adapters translate the platform-neutral ``ListingPayload`` into one
marketplace's representation and report success or failure through the
result models below or ``AdapterError``. They never touch the database;
persistence is the sync engine's job.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from pydantic import BaseModel, Field

from crosslister.core.enums import Platform
from crosslister.core.exceptions import UnsupportedOperationError
from crosslister.schemas.listing import ListingFees, ListingPayload
from crosslister.schemas.platform import PlatformCredentials


@dataclass(frozen=True)
class AdapterCapabilities:
    create: bool = True
    update: bool = True
    end: bool = True
    get: bool = True


class CreatedListing(BaseModel):
    listing_id: str
    url: Optional[str] = None
    fees: Optional[ListingFees] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class UpdatedListing(BaseModel):
    raw: Dict[str, Any] = Field(default_factory=dict)


class EndedListing(BaseModel):
    ended_at: datetime
    already_ended: bool = False
    raw: Dict[str, Any] = Field(default_factory=dict)


class RemoteListing(BaseModel):
    # active / sold / ended / unknown
    status: str = "unknown"
    price: Optional[float] = None
    quantity: Optional[int] = None
    views: Optional[int] = None
    watchers: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class PlatformAdapter(ABC):
    platform: ClassVar[Platform]
    capabilities: ClassVar[AdapterCapabilities] = AdapterCapabilities()
    # What the operator has to do by hand for a capability the platform lacks
    manual_steps: ClassVar[Dict[str, str]] = {}

    def __init__(self, credentials: PlatformCredentials, settings: BaseModel):
        self.credentials = credentials
        self.settings = settings

    def supports(self, capability: str) -> bool:
        return bool(getattr(self.capabilities, capability, False))

    def unsupported(self, capability: str, message: Optional[str] = None) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            message or self.manual_steps.get(capability)
            or f"{self.platform.display_name} does not support '{capability}'",
            platform=self.platform.value,
        )

    @abstractmethod
    async def create_listing(self, payload: ListingPayload) -> CreatedListing:
        """Publish a new listing on the platform"""
        pass

    @abstractmethod
    async def update_listing(self, listing_id: str, updates: Dict[str, Any]) -> UpdatedListing:
        """Push a partial update (title/description/price/quantity) to a live listing"""
        pass

    @abstractmethod
    async def end_listing(self, listing_id: str, reason: str) -> EndedListing:
        """End a listing. Ending an already ended listing is not an error."""
        pass

    @abstractmethod
    async def get_listing(self, listing_id: str) -> RemoteListing:
        """Best-effort read of remote status and metrics"""
        pass

    async def aclose(self) -> None:
        return None
