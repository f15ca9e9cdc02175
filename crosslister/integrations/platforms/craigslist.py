"""
Craigslist adapter.

Craigslist has no listing API. Posts are created by email to
``{category}@{city}.craigslist.org``; Craigslist replies to the poster with a
confirmation/deletion link, so ending a post and reading its status are manual
steps. The adapter declares this through its capabilities instead of
pretending the calls succeeded remotely.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from crosslister.core.config import Settings
from crosslister.core.enums import Platform
from crosslister.core.exceptions import AdapterError, PlatformConfigurationError
from crosslister.integrations.base import (
    AdapterCapabilities, CreatedListing, EndedListing, PlatformAdapter, RemoteListing, UpdatedListing,
)
from crosslister.schemas.listing import ListingPayload
from crosslister.schemas.platform import CraigslistSettings, PlatformCredentials
from crosslister.services.email_service import EmailService

logger = logging.getLogger(__name__)

# Craigslist allows at most 24 images per post
MAX_IMAGES = 24

CATEGORY_CODES = {
    "furniture": "fuo",
    "appliances": "app",
    "electronics": "ele",
    "household": "hsh",
    "tools": "tls",
    "sporting": "spo",
    "toys": "tag",
    "clothing": "clo",
    "books": "bks",
    "general": "sss",
}

CONDITION_LABELS = {
    "new": "New",
    "like-new": "Like New",
    "good": "Good",
    "fair": "Fair",
    "acceptable": "Acceptable",
}


class CraigslistAdapter(PlatformAdapter):
    platform = Platform.CRAIGSLIST
    capabilities = AdapterCapabilities(create=True, update=False, end=False, get=True)
    manual_steps = {
        "update": "Craigslist does not support listing updates; end and repost instead",
        "end": "Craigslist posts must be removed with the deletion link from the confirmation email",
    }

    def __init__(
        self,
        credentials: PlatformCredentials,
        settings: CraigslistSettings,
        app_settings: Settings,
        *,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(credentials, settings)
        self.email_service = email_service or EmailService(app_settings)
        if not settings.city or not settings.email:
            raise PlatformConfigurationError(
                "Craigslist requires 'city' and 'email' in platform settings",
                platform=self.platform.value,
            )
        if not self.email_service.ready():
            raise PlatformConfigurationError(
                "Craigslist posting is done by email and SMTP is not configured",
                platform=self.platform.value,
            )

    @staticmethod
    def map_category(category) -> str:
        return CATEGORY_CODES.get((category or "").lower(), "sss")

    def posting_address(self, category) -> str:
        return f"{self.map_category(category)}@{self.settings.city}.craigslist.org"

    def format_body(self, payload: ListingPayload) -> str:
        lines = [payload.description or ""]
        if payload.condition:
            lines.append(f"\nCondition: {CONDITION_LABELS.get(payload.condition.lower(), 'Used')}")
        if payload.brand:
            lines.append(f"Brand: {payload.brand}")
        if payload.model:
            lines.append(f"Model: {payload.model}")
        lines.append(f"\nPrice: ${payload.price:,.2f}")
        if self.settings.area:
            lines.append(f"Location: {self.settings.area}")
        lines.append(f"\nContact: {self.settings.email}")
        if self.settings.phone_number:
            lines.append(f"Phone: {self.settings.phone_number}")
        images = payload.images[:MAX_IMAGES]
        if images:
            lines.append("\nPhotos:")
            lines.extend(images)
        return "\n".join(lines).strip()

    async def create_listing(self, payload: ListingPayload) -> CreatedListing:
        to_address = self.posting_address(payload.category)
        try:
            await self.email_service.send_message(
                to=[to_address],
                subject=payload.title,
                body_text=self.format_body(payload),
                reply_to=self.settings.email,
            )
        except OSError as e:
            # smtplib errors derive from OSError
            raise AdapterError(
                f"Craigslist email post failed: {e}",
                platform=self.platform.value,
                code="UNREACHABLE",
            )

        # The real posting id only arrives in the confirmation email
        listing_id = f"CL-{uuid.uuid4().hex[:12]}"
        logger.info(f"Craigslist post emailed to {to_address} as {listing_id}")
        return CreatedListing(
            listing_id=listing_id,
            url=None,
            raw={
                "posted_to": to_address,
                "category": self.map_category(payload.category),
                "manual_action_required": "Confirm the post from the Craigslist reply email",
            },
        )

    async def update_listing(self, listing_id: str, updates: Dict[str, Any]) -> UpdatedListing:
        raise self.unsupported("update")

    async def end_listing(self, listing_id: str, reason: str) -> EndedListing:
        raise self.unsupported("end")

    async def get_listing(self, listing_id: str) -> RemoteListing:
        return RemoteListing(status="unknown", raw={"note": "Craigslist does not expose post status"})
