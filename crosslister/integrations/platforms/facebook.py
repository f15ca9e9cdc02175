"""
Facebook Marketplace adapter (Graph API, JSON).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from crosslister.core.enums import Platform
from crosslister.core.exceptions import AdapterError, PlatformConfigurationError
from crosslister.integrations.base import (
    AdapterCapabilities, CreatedListing, EndedListing, RemoteListing, UpdatedListing,
)
from crosslister.integrations.platforms.http import HttpPlatformAdapter
from crosslister.schemas.listing import ListingPayload

logger = logging.getLogger(__name__)

CONDITION_MAP = {
    "new": "new",
    "like-new": "like_new",
    "good": "good",
    "fair": "fair",
    "acceptable": "poor",
}

AVAILABILITY_STATUS = {
    "available": "active",
    "in stock": "active",
    "sold": "sold",
    "unavailable": "ended",
}


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


class FacebookAdapter(HttpPlatformAdapter):
    platform = Platform.FACEBOOK
    capabilities = AdapterCapabilities(create=True, update=True, end=True, get=True)

    @property
    def base_url(self) -> str:
        return self.app_settings.FACEBOOK_GRAPH_URL.rstrip("/")

    def _validate(self) -> None:
        super()._validate()
        if not self.settings.page_id:
            raise PlatformConfigurationError(
                "Facebook Marketplace requires a page_id in platform settings",
                platform=self.platform.value,
            )

    @staticmethod
    def map_condition(condition) -> str:
        return CONDITION_MAP.get((condition or "").lower(), "used")

    def _build_listing(self, payload: ListingPayload) -> Dict[str, Any]:
        location = self.settings.location.model_dump(exclude_none=True)
        return {
            "name": payload.title,
            "description": payload.description,
            "price": to_cents(payload.price),
            "currency": self.settings.currency,
            "condition": self.map_condition(payload.condition),
            "availability": "available",
            "quantity": payload.quantity,
            "images": [{"url": url} for url in payload.images],
            "location": location,
            "delivery_options": self.settings.delivery_options,
            "retailer_id": payload.sku,
        }

    async def create_listing(self, payload: ListingPayload) -> CreatedListing:
        response = await self._request(
            "POST",
            f"/{self.settings.page_id}/marketplace_listings",
            json=self._build_listing(payload),
        )
        self._raise_for_status(response, "create")
        data = self._json(response)
        listing_id = data.get("id")
        if not listing_id:
            raise AdapterError("Facebook did not return a listing id", platform=self.platform.value,
                               details={"response": data})
        logger.info(f"Facebook listing created: {listing_id}")
        return CreatedListing(
            listing_id=str(listing_id),
            url=data.get("url") or f"https://www.facebook.com/marketplace/item/{listing_id}",
            raw=data,
        )

    async def update_listing(self, listing_id: str, updates: Dict[str, Any]) -> UpdatedListing:
        body: Dict[str, Any] = {}
        if updates.get("title") is not None:
            body["name"] = updates["title"]
        if updates.get("description") is not None:
            body["description"] = updates["description"]
        if updates.get("price") is not None:
            body["price"] = to_cents(updates["price"])
        if updates.get("quantity") is not None:
            body["quantity"] = updates["quantity"]
            if updates["quantity"] == 0:
                body["availability"] = "out of stock"
        response = await self._request("POST", f"/{listing_id}", json=body)
        self._raise_for_status(response, "update")
        return UpdatedListing(raw=self._json(response))

    async def end_listing(self, listing_id: str, reason: str) -> EndedListing:
        response = await self._request("DELETE", f"/{listing_id}")
        if response.status_code == 404:
            logger.info(f"Facebook listing {listing_id} was already removed")
            return EndedListing(ended_at=datetime.now(timezone.utc), already_ended=True)
        self._raise_for_status(response, "end")
        return EndedListing(ended_at=datetime.now(timezone.utc), raw={"reason": reason, **self._json(response)})

    async def get_listing(self, listing_id: str) -> RemoteListing:
        response = await self._request(
            "GET",
            f"/{listing_id}",
            params={"fields": "name,description,price,availability,quantity,views"},
        )
        self._raise_for_status(response, "get")
        data = self._json(response)
        price = data.get("price")
        return RemoteListing(
            status=AVAILABILITY_STATUS.get(str(data.get("availability", "")).lower(), "unknown"),
            price=price / 100 if price is not None else None,
            quantity=data.get("quantity"),
            views=data.get("views"),
            raw=data,
        )
