"""Product catalog queries against the hosted products table."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from cafe_storefront.backend.client import BackendClient, BackendError
from cafe_storefront.models import Product, RemoteResult

logger = structlog.get_logger(__name__)


class ProductCatalog:
    """Read (and, for admins, insert) products.

    Rows that fail validation are skipped rather than failing the whole
    listing; missing image arrays fall back to the placeholder image.
    """

    def __init__(self, client: BackendClient, table: str = "cafe_products") -> None:
        self._client = client
        self._path = f"/rest/v1/{table}"

    async def fetch_all(
        self,
        category: str | None = None,
        featured: bool | None = None,
        exclude_id: str | None = None,
        limit: int | None = None,
    ) -> RemoteResult[list[Product]]:
        params: dict[str, Any] = {"select": "*", "order": "name.asc"}
        if category:
            params["category"] = f"eq.{category}"
        if featured is not None:
            params["featured"] = f"eq.{str(featured).lower()}"
        if exclude_id:
            params["id"] = f"neq.{exclude_id}"
        if limit is not None:
            params["limit"] = limit

        try:
            rows = await self._client.request("GET", self._path, params=params)
        except BackendError as exc:
            logger.error("catalog_query_failed", error=str(exc), category=category)
            return RemoteResult.fail(str(exc))

        products = self._parse_rows(rows or [])
        logger.debug("catalog_query_complete", results=len(products), category=category)
        return RemoteResult[list[Product]].ok(products)

    async def fetch_by_category(
        self,
        category: str,
        exclude_id: str | None = None,
        limit: int | None = None,
    ) -> RemoteResult[list[Product]]:
        return await self.fetch_all(category=category, exclude_id=exclude_id, limit=limit)

    async def fetch_by_id(self, product_id: str) -> RemoteResult[Product]:
        params = {"select": "*", "id": f"eq.{product_id}", "limit": 1}
        try:
            rows = await self._client.request("GET", self._path, params=params)
        except BackendError as exc:
            logger.error("catalog_lookup_failed", product_id=product_id, error=str(exc))
            return RemoteResult.fail(str(exc))

        products = self._parse_rows(rows or [])
        if not products:
            return RemoteResult.fail(f"Product {product_id} not found")
        return RemoteResult[Product].ok(products[0])

    async def fetch_related(self, product: Product, limit: int = 4) -> RemoteResult[list[Product]]:
        """Other products in the same category as *product*."""
        return await self.fetch_by_category(product.category, exclude_id=product.id, limit=limit)

    async def insert(self, fields: dict[str, Any]) -> RemoteResult[Product]:
        try:
            rows = await self._client.request(
                "POST",
                self._path,
                json_body=fields,
                headers={"Prefer": "return=representation"},
                retry=False,
            )
        except BackendError as exc:
            logger.error("catalog_insert_failed", name=fields.get("name"), error=str(exc))
            return RemoteResult.fail(str(exc))

        products = self._parse_rows(rows if isinstance(rows, list) else [rows])
        if not products:
            return RemoteResult.fail("The backend did not return the created product.")
        logger.info("catalog_product_inserted", product_id=products[0].id, name=products[0].name)
        return RemoteResult[Product].ok(products[0])

    @staticmethod
    def _parse_rows(rows: list[Any]) -> list[Product]:
        products: list[Product] = []
        for row in rows:
            try:
                products.append(Product.model_validate(row))
            except ValidationError as exc:
                logger.warning("catalog_row_skipped", row_id=row.get("id") if isinstance(row, dict) else None, error=str(exc))
        return products
