"""
Depop adapter (REST, JSON).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from crosslister.core.enums import Platform
from crosslister.core.exceptions import AdapterError
from crosslister.integrations.base import (
    AdapterCapabilities, CreatedListing, EndedListing, RemoteListing, UpdatedListing,
)
from crosslister.integrations.platforms.http import HttpPlatformAdapter
from crosslister.schemas.listing import ListingPayload

logger = logging.getLogger(__name__)

CONDITION_MAP = {
    "new": "new_with_tags",
    "like-new": "new_without_tags",
    "good": "used_excellent",
    "fair": "used_good",
    "acceptable": "used_fair",
}

CATEGORY_MAP = {
    "clothing": "womens",
    "accessories": "accessories",
    "shoes": "shoes",
    "home": "home",
    "electronics": "electronics",
}

STATUS_MAP = {
    "onsale": "active",
    "active": "active",
    "sold": "sold",
    "deleted": "ended",
}


class DepopAdapter(HttpPlatformAdapter):
    platform = Platform.DEPOP
    capabilities = AdapterCapabilities(create=True, update=True, end=True, get=True)

    @property
    def base_url(self) -> str:
        return self.app_settings.DEPOP_API_URL.rstrip("/")

    @staticmethod
    def map_condition(condition) -> str:
        return CONDITION_MAP.get((condition or "").lower(), "used_good")

    @staticmethod
    def map_category(category) -> str:
        return CATEGORY_MAP.get((category or "").lower(), "other")

    def _product_url(self, slug: str) -> str:
        return f"https://www.depop.com/products/{slug}/"

    async def create_listing(self, payload: ListingPayload) -> CreatedListing:
        extra = payload.extra
        body = {
            "title": payload.title,
            "description": payload.description,
            "price": {"amount": f"{payload.price:.2f}", "currency": self.settings.currency},
            "quantity": payload.quantity,
            "condition": self.map_condition(payload.condition),
            "category": self.map_category(payload.category),
            "brand": payload.brand or "Unbranded",
            "size": extra.get("size", "One Size"),
            "color": extra.get("color", "Multi"),
            "photos": payload.images,
            "shipping_profile_id": self.settings.default_shipping_profile,
            "sku": payload.sku,
        }
        response = await self._request("POST", "/products", json=body)
        self._raise_for_status(response, "create")
        data = self._json(response)
        listing_id = data.get("id")
        if not listing_id:
            raise AdapterError("Depop did not return a product id", platform=self.platform.value,
                               details={"response": data})
        logger.info(f"Depop listing created: {listing_id}")
        return CreatedListing(
            listing_id=str(listing_id),
            url=data.get("url") or self._product_url(data.get("slug") or listing_id),
            raw=data,
        )

    async def update_listing(self, listing_id: str, updates: Dict[str, Any]) -> UpdatedListing:
        body: Dict[str, Any] = {}
        if updates.get("title") is not None:
            body["title"] = updates["title"]
        if updates.get("description") is not None:
            body["description"] = updates["description"]
        if updates.get("price") is not None:
            body["price"] = {"amount": f"{updates['price']:.2f}", "currency": self.settings.currency}
        if updates.get("quantity") is not None:
            body["quantity"] = updates["quantity"]
        response = await self._request("PATCH", f"/products/{listing_id}", json=body)
        self._raise_for_status(response, "update")
        return UpdatedListing(raw=self._json(response))

    async def end_listing(self, listing_id: str, reason: str) -> EndedListing:
        response = await self._request("DELETE", f"/products/{listing_id}")
        if response.status_code == 404:
            logger.info(f"Depop product {listing_id} was already removed")
            return EndedListing(ended_at=datetime.now(timezone.utc), already_ended=True)
        self._raise_for_status(response, "end")
        return EndedListing(ended_at=datetime.now(timezone.utc), raw={"reason": reason, **self._json(response)})

    async def get_listing(self, listing_id: str) -> RemoteListing:
        response = await self._request("GET", f"/products/{listing_id}")
        self._raise_for_status(response, "get")
        data = self._json(response)
        price = data.get("price") or {}
        amount = price.get("amount") if isinstance(price, dict) else price
        return RemoteListing(
            status=STATUS_MAP.get(str(data.get("status", "")).lower(), "unknown"),
            price=float(amount) if amount is not None else None,
            quantity=data.get("quantity"),
            views=data.get("views"),
            watchers=data.get("likes"),
            raw=data,
        )
