"""Email helpers: sale alerts and Craigslist email posting."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, List, Optional, Sequence

from crosslister.core.config import Settings

logger = logging.getLogger(__name__)


class EmailService:
    """Lightweight SMTP helper. Sending runs in a worker thread."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def ready(self) -> bool:
        settings = self._settings
        return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)

    async def send_message(
        self,
        *,
        to: Sequence[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        """Send one email. Raises on SMTP failure; callers decide what that means."""
        message = self._build_message(subject, to, body_text, body_html)
        if reply_to:
            message["Reply-To"] = reply_to
        await asyncio.to_thread(self._send_sync, message)
        logger.info("Email '%s' sent to %s", subject, message["To"])

    async def send_sale_alert(
        self,
        *,
        product,
        platform: str,
        sale_price: Optional[float] = None,
        listing_url: Optional[str] = None,
        delisted_platforms: Optional[Sequence[str]] = None,
        failed_platforms: Optional[Sequence[str]] = None,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Send a sale notification email.

        Args:
            product: Catalog product snapshot with at least ``title``/``sku``.
            platform: Name of the platform that reported the sale.
            sale_price: Price achieved on the platform.
            delisted_platforms: Platforms whose listings were ended remotely.
            failed_platforms: Platforms where the remote end call failed and the
                listing needs manual removal.
            recipients: Override the default notification list.

        Returns False when the alert was skipped or could not be sent.
        """
        if not self.ready():
            logger.warning("SMTP configuration incomplete; sale alert skipped for %s", getattr(product, "sku", "<unknown>"))
            return False

        to_addresses = self._resolve_recipients(recipients)
        if not to_addresses:
            logger.warning("No recipients configured for sale alert; skipping email")
            return False

        title = getattr(product, "title", "Product")
        lines: List[str] = [
            f"Product: {title}",
            f"SKU: {getattr(product, 'sku', None) or 'N/A'}",
            f"Platform: {platform}",
        ]
        if sale_price is not None:
            lines.append(f"Sale price: ${sale_price:,.2f}")
        if listing_url:
            lines.append(f"Listing URL: {listing_url}")
        if delisted_platforms:
            lines.append(f"Listings ended on: {', '.join(sorted(p.upper() for p in delisted_platforms))}")
        if failed_platforms:
            lines.append(
                f"End request FAILED on: {', '.join(sorted(p.upper() for p in failed_platforms))} "
                "(remove these listings manually)"
            )
        lines.append("\nSent automatically by Crosslister")

        body_text = "\n".join(lines)
        body_html = "<p><strong>Product Sold</strong></p>" + "".join(f"<p>{line}</p>" for line in lines[:-1])

        try:
            await self.send_message(to=to_addresses, subject=f"Sale: {title}", body_text=body_text, body_html=body_html)
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send sale alert email: %s", exc, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _resolve_recipients(self, override: Optional[Sequence[str]]) -> List[str]:
        recipients: Iterable[str] = override if override else self._settings.NOTIFICATION_EMAILS
        return [email.strip() for email in recipients if email]

    def _build_message(
        self,
        subject: str,
        to_addresses: Sequence[str],
        body_text: str,
        body_html: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._formatted_from_address
        message["To"] = ", ".join(sorted(set(to_addresses)))
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        return message

    @property
    def _formatted_from_address(self) -> str:
        from_email = self._settings.SMTP_FROM_EMAIL or self._settings.SMTP_USERNAME
        from_name = self._settings.SMTP_FROM_NAME or "Crosslister"
        return formataddr((from_name, from_email))

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        host = settings.SMTP_HOST
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        timeout = settings.SMTP_TIMEOUT

        if settings.SMTP_USE_SSL:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=timeout)
        try:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()

            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                smtp.close()
