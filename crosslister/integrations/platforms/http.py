"""
Shared request handling for adapters that talk to an HTTP API.
"""
import logging
from abc import abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from crosslister.core.config import Settings
from crosslister.core.exceptions import AdapterError, PlatformConfigurationError
from crosslister.integrations.base import PlatformAdapter
from crosslister.schemas.platform import PlatformCredentials

logger = logging.getLogger(__name__)


def error_code_for_status(status_code: int) -> str:
    if status_code in (400, 422):
        return "VALIDATION"
    if status_code in (401, 403):
        return "AUTH"
    if status_code == 429:
        return "RATE_LIMIT"
    return "REMOTE_ERROR"


class HttpPlatformAdapter(PlatformAdapter):
    """
    Base for JSON/XML-over-HTTP adapters.

    ``transport`` lets tests plug in ``httpx.MockTransport``; in production it
    stays ``None`` and httpx uses its default transport.
    """

    def __init__(
        self,
        credentials: PlatformCredentials,
        settings: BaseModel,
        app_settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(credentials, settings)
        self.app_settings = app_settings
        self.timeout = app_settings.ADAPTER_TIMEOUT_SECONDS
        self.transport = transport
        self._validate()

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Root URL the request paths are joined to"""
        pass

    def _validate(self) -> None:
        if not self.credentials.access_token:
            raise PlatformConfigurationError(
                f"{self.platform.display_name} requires an access token",
                platform=self.platform.value,
            )

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        url: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send one request and translate transport failures into AdapterError.

        Non-2xx responses are returned as-is so each adapter can decide what
        a given status means for the operation (e.g. 404 on delete).
        """
        target = url or f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"{self.platform.value}: {method} {target}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(
                    method=method,
                    url=target,
                    headers=headers or self._get_headers(),
                    json=json,
                    content=content,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"{self.platform.value}: request to {target} timed out")
            raise AdapterError(
                f"{self.platform.display_name} request timed out: {e}",
                platform=self.platform.value,
                code="TIMEOUT",
            )
        except httpx.RequestError as e:
            logger.warning(f"{self.platform.value}: network error calling {target}: {e}")
            raise AdapterError(
                f"{self.platform.display_name} is unreachable: {e}",
                platform=self.platform.value,
                code="UNREACHABLE",
            )

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if response.status_code < 400:
            return
        body = response.text[:500]
        logger.error(f"{self.platform.value} {operation} failed with {response.status_code}: {body}")
        raise AdapterError(
            f"{self.platform.display_name} {operation} failed ({response.status_code})",
            platform=self.platform.value,
            code=error_code_for_status(response.status_code),
            details={"status_code": response.status_code, "body": body},
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()
