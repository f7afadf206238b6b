# storefront/services/catalog_client.py
from typing import Optional

import requests
from requests import RequestException

from storefront.domain.types import CatalogItem, money
from storefront.exceptions import CatalogUnavailableError, ItemNotFoundError
from storefront.utils.retry import http_retry
from storefront.utils.settings import CATALOG_SERVICE_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CatalogClient:
    """
    Read side of the external catalog service.
    Prices are fetched on every call; nothing here assumes they stay the same.
    """

    def __init__(self, base_url: str | None = None, timeout: int = 2, session: requests.Session | None = None):
        self.base_url = (base_url or CATALOG_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    @http_retry()
    def _get(self, item_id: int) -> requests.Response:
        url = f"{self.base_url}/items/{item_id}"
        logger.info(f"CatalogClient GET {url}")
        return self.http.get(url, timeout=self.timeout)

    def fetch_item(self, item_id: int) -> Optional[CatalogItem]:
        try:
            resp = self._get(item_id)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except RequestException as e:
            logger.error(f"Catalog lookup for item {item_id} failed: {e}")
            raise CatalogUnavailableError() from e

        return CatalogItem(id=int(data["id"]), name=data["name"], price=money(data["price"]))

    def exists(self, item_id: int) -> bool:
        return self.fetch_item(item_id) is not None

    def current_price(self, item_id: int):
        item = self.fetch_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item.price
