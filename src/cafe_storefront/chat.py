"""Scripted chat assistant for the storefront widget.

Replies come from a fixed script.  Messages that mention menu items are
answered with a few products from the catalog instead.
"""

from __future__ import annotations

import random
import uuid

import structlog
from pydantic import BaseModel, Field

from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.models import ChatMessage, MessageRole, Product

logger = structlog.get_logger(__name__)

PRODUCT_KEYWORDS = ("coffee", "latte", "espresso", "cake", "pastry", "food", "drink", "menu")

SCRIPTED_REPLIES = [
    "I'd be happy to help you with our menu options!",
    "Our coffee is sourced from ethically managed farms.",
    "Would you like to know about our seasonal specials?",
    "I can help you place an order or answer any questions about our items.",
    "Our most popular item is the Vanilla Latte with our homemade syrup.",
]

RECOMMENDATION_INTRO = "Here are some items you might like based on your request:"
NO_MATCHES_REPLY = "I couldn't find any products matching your request. Can I help you with something else?"
CATALOG_ERROR_REPLY = "I'm having trouble finding products right now. Please try again later."


class ChatTranscript(BaseModel):
    id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    is_loading: bool = False


def mentions_products(content: str) -> bool:
    lowered = content.lower()
    return any(keyword in lowered for keyword in PRODUCT_KEYWORDS)


class ChatAssistant:
    """One in-memory chat transcript and its scripted responder."""

    def __init__(
        self,
        catalog: ProductCatalog,
        recommendation_limit: int = 3,
        rng: random.Random | None = None,
        chat_id: str | None = None,
    ) -> None:
        self.id = chat_id or uuid.uuid4().hex
        self._catalog = catalog
        self._limit = recommendation_limit
        self._rng = rng or random.Random()
        self._messages: list[ChatMessage] = []
        self._loading = False

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def transcript(self) -> ChatTranscript:
        return ChatTranscript(id=self.id, messages=self.messages, is_loading=self._loading)

    def add_message(
        self,
        role: MessageRole,
        content: str,
        products: list[Product] | None = None,
    ) -> ChatMessage:
        message = ChatMessage(id=str(uuid.uuid4()), role=role, content=content, products=products)
        self._messages.append(message)
        return message

    async def send(self, content: str) -> ChatMessage:
        """Record a user message and return the assistant's reply."""
        self.add_message("user", content)
        self._loading = True
        try:
            if mentions_products(content):
                reply = await self._recommend()
            else:
                reply = self.add_message("assistant", self._rng.choice(SCRIPTED_REPLIES))
        finally:
            self._loading = False

        logger.debug("chat_reply", chat_id=self.id, products=len(reply.products or []))
        return reply

    async def _recommend(self) -> ChatMessage:
        result = await self._catalog.fetch_all(limit=self._limit)
        if not result.success:
            logger.warning("chat_recommendations_failed", chat_id=self.id, error=result.error)
            return self.add_message("assistant", CATALOG_ERROR_REPLY)
        if not result.data:
            return self.add_message("assistant", NO_MATCHES_REPLY)
        return self.add_message("assistant", RECOMMENDATION_INTRO, products=result.data[: self._limit])
