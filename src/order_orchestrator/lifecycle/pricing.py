"""Product catalog collaborators used to price new orders.

``StaticCatalog`` serves a fixed product table (tests, local runs).
``HttpCatalogClient`` asks the product service over HTTP.

Both return only the products they know about; the engine turns the gaps
into UnknownProductError.  Transport failures are TransientError so the
caller retries the whole create.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

import httpx

from order_orchestrator.core.errors import FatalError, TransientError
from order_orchestrator.core.models import ProductQuote, money

logger = logging.getLogger(__name__)


class StaticCatalog:
    """In-memory product table.

    When ``default_unit_price`` is set, unknown products are priced at that
    amount under a generated name instead of being reported missing.
    """

    def __init__(
        self,
        products: Iterable[ProductQuote] | Mapping[str, tuple[str, Decimal]] = (),
        default_unit_price: Decimal | None = None,
    ) -> None:
        self._products: dict[str, ProductQuote] = {}
        self._default = money(default_unit_price) if default_unit_price is not None else None
        if isinstance(products, Mapping):
            for product_id, (name, price) in products.items():
                self.add(product_id, name, price)
        else:
            for quote in products:
                self._products[quote.product_id] = quote

    def add(self, product_id: str, name: str, unit_price: Decimal | str | float) -> None:
        self._products[product_id] = ProductQuote(
            product_id=product_id, name=name, unit_price=money(unit_price),
        )

    async def quote(self, product_ids: list[str]) -> dict[str, ProductQuote]:
        found: dict[str, ProductQuote] = {}
        for product_id in product_ids:
            quote = self._products.get(product_id)
            if quote is None and self._default is not None:
                quote = ProductQuote(
                    product_id=product_id,
                    name=f"Product {product_id[:8]}",
                    unit_price=self._default,
                )
            if quote is not None:
                found[product_id] = quote
        return found


class HttpCatalogClient:
    """Product service client.

    ``GET {base_url}/products/{id}`` must answer ``{"id", "name", "price"}``;
    404 means the product does not exist.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def quote(self, product_ids: list[str]) -> dict[str, ProductQuote]:
        results = await asyncio.gather(*(self._fetch(pid) for pid in product_ids))
        return {q.product_id: q for q in results if q is not None}

    async def _fetch(self, product_id: str) -> ProductQuote | None:
        client = self._get_client()
        try:
            resp = await client.get(
                f"{self._base_url}/products/{quote(product_id, safe='')}"
            )
        except httpx.TransportError as exc:
            raise TransientError(f"Catalog unreachable: {exc}") from exc

        if resp.status_code == 404:
            logger.info("Catalog has no product %s", product_id)
            return None
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientError(
                f"Catalog returned {resp.status_code} for product {product_id}"
            )
        try:
            resp.raise_for_status()
            data = resp.json()
            return ProductQuote(
                product_id=product_id,
                name=str(data["name"]),
                unit_price=money(data["price"]),
            )
        except (httpx.HTTPStatusError, KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise FatalError(
                f"Unexpected catalog response for product {product_id}: {exc}"
            ) from exc
