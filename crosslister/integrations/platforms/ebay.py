"""
eBay adapter built on the Trading API (XML over HTTPS).

Calls used: AddFixedPriceItem, ReviseFixedPriceItem, EndFixedPriceItem, GetItem.
"""
import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import xmltodict

from crosslister.core.enums import Platform
from crosslister.core.exceptions import AdapterError
from crosslister.integrations.base import (
    AdapterCapabilities, CreatedListing, EndedListing, RemoteListing, UpdatedListing,
)
from crosslister.integrations.platforms.http import HttpPlatformAdapter
from crosslister.schemas.listing import ListingFees, ListingPayload

logger = logging.getLogger(__name__)

EBAY_NAMESPACE = "urn:ebay:apis:eBLBaseComponents"

CONDITION_IDS = {
    "new": 1000,
    "like-new": 1500,
    "good": 3000,
    "fair": 4000,
    "acceptable": 5000,
}

# Trading API error codes
AUTH_ERROR_CODES = {"931", "932", "16110", "17470", "21916984"}
RATE_LIMIT_ERROR_CODES = {"518"}
ALREADY_ENDED_ERROR_CODES = {"1047"}

LISTING_STATUS_MAP = {
    "Active": "active",
    "Completed": "sold",
    "Ended": "ended",
}


class EbayAdapter(HttpPlatformAdapter):
    platform = Platform.EBAY
    capabilities = AdapterCapabilities(create=True, update=True, end=True, get=True)

    @property
    def base_url(self) -> str:
        if self.settings.sandbox:
            return self.app_settings.EBAY_SANDBOX_TRADING_URL
        return self.app_settings.EBAY_TRADING_URL

    def _trading_headers(self, call_name: str) -> Dict[str, str]:
        return {
            "X-EBAY-API-CALL-NAME": call_name,
            "X-EBAY-API-SITEID": str(self.settings.site_id),
            "X-EBAY-API-COMPATIBILITY-LEVEL": self.app_settings.EBAY_COMPATIBILITY_LEVEL,
            "X-EBAY-API-IAF-TOKEN": self.credentials.access_token,
            "Content-Type": "text/xml",
        }

    async def _call(self, call_name: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        xml_request = xmltodict.unparse(
            {f"{call_name}Request": {"@xmlns": EBAY_NAMESPACE, **body}},
            pretty=False,
        )
        response = await self._request(
            "POST",
            "",
            url=self.base_url,
            content=xml_request,
            headers=self._trading_headers(call_name),
        )
        self._raise_for_status(response, operation)

        parsed = xmltodict.parse(response.text)
        result = parsed.get(f"{call_name}Response", {})
        if result.get("Ack") in ("Success", "Warning"):
            return result

        errors = self._errors(result)
        first = errors[0] if errors else {}
        error_code = str(first.get("ErrorCode", ""))
        message = first.get("LongMessage") or first.get("ShortMessage") or "Unknown eBay error"
        raise AdapterError(
            f"eBay {operation} failed: {message}",
            platform=self.platform.value,
            code=self._map_error_code(error_code),
            details={"ebay_error_code": error_code, "errors": errors},
        )

    @staticmethod
    def _errors(result: Dict[str, Any]) -> List[Dict[str, Any]]:
        errors = result.get("Errors") or []
        if isinstance(errors, dict):
            errors = [errors]
        return errors

    @staticmethod
    def _map_error_code(error_code: str) -> str:
        if error_code in AUTH_ERROR_CODES:
            return "AUTH"
        if error_code in RATE_LIMIT_ERROR_CODES:
            return "RATE_LIMIT"
        if error_code in ALREADY_ENDED_ERROR_CODES:
            return "ALREADY_ENDED"
        return "VALIDATION"

    @staticmethod
    def format_description(description: str) -> str:
        body = html.escape(description or "").replace("\n", "<br>")
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto;">'
            f"<p>{body}</p></div>"
        )

    @staticmethod
    def map_condition(condition: Optional[str]) -> int:
        return CONDITION_IDS.get((condition or "").lower(), 1000)

    def _build_item(self, payload: ListingPayload) -> Dict[str, Any]:
        settings = self.settings
        shipping_services = settings.shipping_services or [{
            "ShippingService": "USPSPriority",
            "ShippingServiceCost": payload.shipping_cost or 0,
        }]
        return {
            "Title": payload.title[:80],
            "Description": self.format_description(payload.description),
            "PrimaryCategory": {"CategoryID": payload.extra.get("category_id") or settings.category_id or "1"},
            "StartPrice": f"{payload.price:.2f}",
            "Quantity": payload.quantity,
            "ConditionID": self.map_condition(payload.condition),
            "Country": settings.country,
            "Currency": settings.currency,
            "DispatchTimeMax": payload.handling_time if payload.handling_time is not None else 2,
            "ListingDuration": settings.listing_duration,
            "ListingType": "FixedPriceItem",
            "PaymentMethods": settings.payment_methods,
            "PictureDetails": {"PictureURL": payload.images},
            "PostalCode": settings.postal_code,
            "ReturnPolicy": settings.return_policy or {
                "ReturnsAcceptedOption": "ReturnsAccepted",
                "RefundOption": "MoneyBack",
                "ReturnsWithinOption": "Days_30",
            },
            "ShippingDetails": {
                "ShippingType": "Flat",
                "ShippingServiceOptions": shipping_services,
            },
            "SKU": payload.sku,
        }

    @staticmethod
    def _parse_fees(result: Dict[str, Any]) -> ListingFees:
        fees = (result.get("Fees") or {}).get("Fee") or []
        if isinstance(fees, dict):
            fees = [fees]
        amounts = {}
        for fee in fees:
            value = fee.get("Fee")
            if isinstance(value, dict):
                value = value.get("#text")
            amounts[fee.get("Name")] = float(value or 0)
        listing_fee = amounts.get("InsertionFee", 0.0)
        final_value_fee = amounts.get("FinalValueFee", 0.0)
        return ListingFees(listing_fee=listing_fee, final_value_fee=final_value_fee)

    def _item_url(self, item_id: str) -> str:
        host = "www.sandbox.ebay.com" if self.settings.sandbox else "www.ebay.com"
        return f"https://{host}/itm/{item_id}"

    async def create_listing(self, payload: ListingPayload) -> CreatedListing:
        result = await self._call("AddFixedPriceItem", {"Item": self._build_item(payload)}, "create")
        item_id = result.get("ItemID")
        if not item_id:
            raise AdapterError("eBay did not return an ItemID", platform=self.platform.value,
                               details={"response": result})
        logger.info(f"eBay listing created: {item_id}")
        return CreatedListing(
            listing_id=str(item_id),
            url=self._item_url(item_id),
            fees=self._parse_fees(result),
            raw=result,
        )

    async def update_listing(self, listing_id: str, updates: Dict[str, Any]) -> UpdatedListing:
        item: Dict[str, Any] = {"ItemID": listing_id}
        if updates.get("title") is not None:
            item["Title"] = updates["title"][:80]
        if updates.get("price") is not None:
            item["StartPrice"] = f"{updates['price']:.2f}"
        if updates.get("quantity") is not None:
            item["Quantity"] = updates["quantity"]
        if updates.get("description") is not None:
            item["Description"] = self.format_description(updates["description"])
        result = await self._call("ReviseFixedPriceItem", {"Item": item}, "update")
        return UpdatedListing(raw=result)

    async def end_listing(self, listing_id: str, reason: str) -> EndedListing:
        try:
            result = await self._call(
                "EndFixedPriceItem",
                {"ItemID": listing_id, "EndingReason": "NotAvailable"},
                "end",
            )
        except AdapterError as e:
            if e.code == "ALREADY_ENDED":
                logger.info(f"eBay listing {listing_id} was already ended")
                return EndedListing(ended_at=datetime.now(timezone.utc), already_ended=True, raw=e.details)
            raise
        end_time = result.get("EndTime")
        ended_at = datetime.fromisoformat(end_time.replace("Z", "+00:00")) if end_time else datetime.now(timezone.utc)
        return EndedListing(ended_at=ended_at, raw={"reason": reason, **result})

    async def get_listing(self, listing_id: str) -> RemoteListing:
        result = await self._call("GetItem", {"ItemID": listing_id, "IncludeWatchCount": "true"}, "get")
        item = result.get("Item") or {}
        selling = item.get("SellingStatus") or {}
        price = selling.get("CurrentPrice")
        if isinstance(price, dict):
            price = price.get("#text")
        quantity = item.get("Quantity")
        sold = selling.get("QuantitySold")
        remaining = int(quantity) - int(sold or 0) if quantity is not None else None
        return RemoteListing(
            status=LISTING_STATUS_MAP.get(selling.get("ListingStatus"), "unknown"),
            price=float(price) if price is not None else None,
            quantity=remaining,
            views=int(item["HitCount"]) if item.get("HitCount") is not None else None,
            watchers=int(item["WatchCount"]) if item.get("WatchCount") is not None else None,
            raw=result,
        )
