"""
Inventory lookup adapters.

The validator only depends on ``InventoryLookup``; ``HttpInventoryLookup``
talks to the catalog/inventory service over HTTP.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import httpx
from pydantic import BaseModel, field_validator

from cartsync.config import INVENTORY_API_URL, INVENTORY_API_TOKEN, INVENTORY_TIMEOUT
from cartsync.errors import InventoryUnavailable
from cartsync.logging import get_logger
from cartsync.services.money import to_decimal

logger = get_logger(__name__)


class InventoryRecord(BaseModel):
    """Authoritative stock and price for one product/variant."""
    stock: int
    price: Decimal
    delisted: bool = False

    class Config:
        extra = "ignore"

    @field_validator("price", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return to_decimal(v)

    @field_validator("stock")
    @classmethod
    def non_negative_stock(cls, v):
        return max(v, 0)


class InventoryLookup(ABC):
    """Source of live stock and pricing."""

    @abstractmethod
    async def lookup(self, product_id: str, variant_id: Optional[str] = None) -> InventoryRecord:
        """
        Fetch the current record for a product.

        Raises:
            InventoryUnavailable: the record could not be fetched
        """


class HttpInventoryLookup(InventoryLookup):
    """
    Inventory lookup against ``GET {base_url}/inventory/{product_id}``.

    A 404 means the product no longer exists and is reported as delisted.
    Transport errors and other non-2xx responses raise InventoryUnavailable.
    """

    def __init__(
        self,
        base_url: str = INVENTORY_API_URL,
        token: str = INVENTORY_API_TOKEN,
        timeout: float = INVENTORY_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._http_client = client  # Lazy init

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy creation of shared httpx client with timeouts."""
        if self._http_client is None:
            if not self.base_url:
                raise ValueError("INVENTORY_API_URL must be set")
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def lookup(self, product_id: str, variant_id: Optional[str] = None) -> InventoryRecord:
        client = await self._get_http_client()
        params = {"variant_id": variant_id} if variant_id else None

        try:
            response = await client.get(f"/inventory/{product_id}", params=params)
            if response.status_code == 404:
                return InventoryRecord(stock=0, price=Decimal("0"), delisted=True)
            response.raise_for_status()
            return InventoryRecord.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.warning("Inventory API error %s for %s", e.response.status_code, product_id)
            raise InventoryUnavailable(product_id, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.warning("Inventory network error for %s: %s", product_id, e)
            raise InventoryUnavailable(product_id, str(e)) from e
        except ValueError as e:
            # Malformed JSON or a record that fails validation
            logger.warning("Invalid inventory record for %s: %s", product_id, e)
            raise InventoryUnavailable(product_id, "invalid record") from e

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
