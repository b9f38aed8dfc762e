"""Tests for the scripted chat assistant."""

import random

from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.chat import (
    CATALOG_ERROR_REPLY,
    NO_MATCHES_REPLY,
    RECOMMENDATION_INTRO,
    SCRIPTED_REPLIES,
    ChatAssistant,
    mentions_products,
)


class TestKeywords:
    def test_product_keywords(self):
        assert mentions_products("Do you have any LATTE options?")
        assert mentions_products("what's on the menu")
        assert not mentions_products("What are your opening hours?")


class TestChatAssistant:
    async def test_scripted_reply(self, catalog):
        chat = ChatAssistant(catalog, rng=random.Random(1))
        expected = random.Random(1).choice(SCRIPTED_REPLIES)

        reply = await chat.send("Hello there")
        assert reply.role == "assistant"
        assert reply.content == expected
        assert reply.products is None
        assert [m.role for m in chat.messages] == ["user", "assistant"]

    async def test_recommends_products(self, catalog):
        chat = ChatAssistant(catalog, recommendation_limit=3)
        reply = await chat.send("I'd like a coffee")
        assert reply.content == RECOMMENDATION_INTRO
        assert len(reply.products) == 3

    async def test_no_products(self, mock_backend, catalog):
        mock_backend.products.clear()
        reply = await ChatAssistant(catalog).send("any cake today?")
        assert reply.content == NO_MATCHES_REPLY

    async def test_catalog_failure(self, unreachable_client):
        chat = ChatAssistant(ProductCatalog(unreachable_client))
        reply = await chat.send("show me the menu")
        assert reply.content == CATALOG_ERROR_REPLY
        assert not chat.transcript().is_loading

    async def test_transcript(self, catalog):
        chat = ChatAssistant(catalog, chat_id="chat-1")
        chat.add_message("system", "Welcome to the cafe!")
        await chat.send("hi")
        transcript = chat.transcript()
        assert transcript.id == "chat-1"
        assert len(transcript.messages) == 3
        assert transcript.messages[0].content == "Welcome to the cafe!"
