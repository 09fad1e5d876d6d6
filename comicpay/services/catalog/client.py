"""
Catalog client using httpx sync client.
Resolves the unlock price of a content unit; the catalog itself lives in another service.
"""
import logging

import httpx

from comicpay.core.config import settings
from comicpay.errors import CatalogUnavailable, ContentNotFound

logger = logging.getLogger(__name__)


class CatalogClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url if base_url is not None else settings.catalog_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.catalog_timeout
        self._client: httpx.Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def get_unlock_cost(self, content_unit_id: str) -> int:
        """Credits needed to unlock the unit. Free units cost 0."""
        if not self.configured:
            return settings.default_unlock_cost
        try:
            resp = self.client.get(f"{self._base_url}/content/{content_unit_id}")
        except httpx.HTTPError as e:
            logger.warning(
                "catalog_request_failed",
                extra={"content_unit_id": content_unit_id, "error": str(e)},
            )
            raise CatalogUnavailable("content catalog is unreachable") from e
        if resp.status_code == 404:
            raise ContentNotFound(f"content unit {content_unit_id} not found")
        if resp.status_code >= 400:
            logger.warning(
                "catalog_request_failed",
                extra={"content_unit_id": content_unit_id, "status_code": resp.status_code},
            )
            raise CatalogUnavailable(f"catalog returned {resp.status_code}")
        try:
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            if data.get("isFree"):
                return 0
            cost = data.get("unlockCost")
            cost = int(cost) if cost is not None else settings.default_unlock_cost
        except (ValueError, TypeError) as e:
            logger.warning(
                "catalog_response_invalid",
                extra={"content_unit_id": content_unit_id, "error": str(e)},
            )
            raise CatalogUnavailable("catalog returned an unreadable response") from e
        if cost < 0:
            raise CatalogUnavailable(f"catalog returned a negative unlock cost: {cost}")
        return cost
