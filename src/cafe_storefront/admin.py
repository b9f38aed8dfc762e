"""Admin product entry: validate a draft, upload its image, insert it."""

from __future__ import annotations

import enum
from typing import Any

import structlog
from pydantic import BaseModel, Field, HttpUrl

from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.backend.uploads import ImageUploadSink
from cafe_storefront.models import Currency, Product, RemoteResult

logger = structlog.get_logger(__name__)


class ProductCategory(str, enum.Enum):
    BREAKFAST = "Breakfast"
    COFFEE = "Coffee"
    LUNCH = "Lunch"
    DESSERTS = "Desserts"


class ProductDraft(BaseModel):
    """A product as entered on the admin form."""

    name: str = Field(min_length=2)
    description: str = Field(min_length=10)
    price: float = Field(ge=0.01)
    currency: Currency = Currency.USD
    category: ProductCategory = ProductCategory.COFFEE
    image_url: HttpUrl | None = None
    featured: bool = False


class ImageFile(BaseModel):
    filename: str
    content: bytes
    content_type: str | None = None


class AdminService:
    """Creates catalog products from admin drafts."""

    def __init__(self, catalog: ProductCatalog, uploads: ImageUploadSink) -> None:
        self._catalog = catalog
        self._uploads = uploads

    async def create_product(self, draft: ProductDraft, image: ImageFile | None = None) -> RemoteResult[Product]:
        """Upload *image* (if any) and insert the product.

        The uploaded URL comes first in ``images``; a URL given on the form
        follows it.  Nothing is inserted when the upload fails.
        """
        images: list[str] = []
        if image is not None:
            uploaded = await self._uploads.upload(image.filename, image.content, image.content_type)
            if not uploaded.success or uploaded.data is None:
                return RemoteResult.fail(uploaded.error or "Image upload failed.")
            images.append(uploaded.data)
        if draft.image_url is not None:
            images.append(str(draft.image_url))
        if not images:
            return RemoteResult.fail("Provide an image URL or upload an image.")

        fields: dict[str, Any] = {
            "name": draft.name,
            "description": draft.description,
            "price": draft.price,
            "currency": draft.currency.value,
            "category": draft.category.value,
            "images": images,
            "featured": draft.featured,
        }
        result = await self._catalog.insert(fields)
        if result.success and result.data is not None:
            logger.info("admin_product_created", product_id=result.data.id, category=draft.category.value)
        return result
