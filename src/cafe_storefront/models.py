"""Pydantic models for the Cafe Storefront service.

Covers catalog products, cart line items and snapshots, favorites,
authentication sessions, chat transcripts, state-change events and the
tagged result type returned by every remote collaborator call.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

PLACEHOLDER_IMAGE = "/placeholder.svg"

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Remote call results
# ---------------------------------------------------------------------------


class RemoteResult(BaseModel, Generic[T]):
    """Outcome of a call to a remote collaborator.

    Expected failures (bad credentials, declined payment session, mail
    provider down) are reported through ``success=False`` and ``error``
    rather than raised.
    """

    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> RemoteResult[Any]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> RemoteResult[Any]:
        return cls(success=False, error=error)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Currency(str, enum.Enum):
    """Currencies the catalog may price products in."""

    USD = "USD"
    UGX = "UGX"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"


class Product(BaseModel):
    """A catalog entry. Read-only for the lifetime of a session."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    price: float
    currency: Currency = Currency.USD
    images: list[str] = Field(default_factory=lambda: [PLACEHOLDER_IMAGE])
    category: str = "Other"
    featured: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_single_image(cls, data: Any) -> Any:
        # Older rows and cached payloads carry a single ``image`` field.
        if isinstance(data, dict) and "images" not in data and data.get("image"):
            data = {**data, "images": [data["image"]]}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("description", "category", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return "Other" if info.field_name == "category" else ""
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _normalise_currency(cls, value: Any) -> Any:
        if value is None:
            return Currency.USD
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("images", mode="before")
    @classmethod
    def _placeholder_images(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return [PLACEHOLDER_IMAGE]
        images = [str(v) for v in value if v]
        return images or [PLACEHOLDER_IMAGE]

    @property
    def image(self) -> str:
        """Primary image reference."""
        return self.images[0]


# ---------------------------------------------------------------------------
# Cart and favorites
# ---------------------------------------------------------------------------


class LineItem(BaseModel):
    """A cart entry pairing a product with a positive quantity."""

    product: Product
    quantity: int = Field(default=1, ge=1)

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def subtotal(self) -> float:
        return round(self.product.price * self.quantity, 2)


class CartSnapshot(BaseModel):
    """Cart contents plus the derived totals."""

    items: list[LineItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0.0


class FavoritesSnapshot(BaseModel):
    """Favorited products in insertion order."""

    items: list[Product] = Field(default_factory=list)
    total: int = 0


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthUser(BaseModel):
    id: str
    email: str
    name: str | None = None


class AuthSession(BaseModel):
    """An authenticated session issued by the hosted auth provider."""

    access_token: str
    refresh_token: str | None = None
    user: AuthUser


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


MessageRole = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    """One message in a chat transcript."""

    id: str
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    products: list[Product] | None = None


# ---------------------------------------------------------------------------
# State-change events
# ---------------------------------------------------------------------------


class StateEvent(BaseModel):
    """Notification that persisted client state changed."""

    topic: str
    key: str | None = None
    origin: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
