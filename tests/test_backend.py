"""Tests for the hosted-backend collaborators."""

import httpx
import pytest

from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.backend.client import BackendClient, BackendError, error_message
from cafe_storefront.backend.payments import PaymentSessionCreator, wire_items
from cafe_storefront.models import PLACEHOLDER_IMAGE, Currency, LineItem, Product


class TestClient:
    def test_error_message_fields(self):
        assert error_message({"error_description": "Invalid login credentials"}, "x") == "Invalid login credentials"
        assert error_message({"msg": "User already registered"}, "x") == "User already registered"
        assert error_message({"error": {"message": "nested"}}, "x") == "nested"
        assert error_message(None, "fallback") == "fallback"

    async def test_sends_api_key_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        client = BackendClient("http://backend.test", "anon", transport=httpx.MockTransport(handler))
        assert await client.request("GET", "/rest/v1/cafe_products") == []
        assert seen["apikey"] == "anon"
        assert seen["authorization"] == "Bearer anon"
        await client.close()

    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "unavailable"})
            return httpx.Response(200, json={"ok": True})

        client = BackendClient("http://backend.test", "anon", max_retries=2, transport=httpx.MockTransport(handler))
        assert await client.request("GET", "/rest/v1/cafe_products") == {"ok": True}
        assert len(calls) == 3
        await client.close()

    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"message": "bad filter"})

        client = BackendClient("http://backend.test", "anon", max_retries=2, transport=httpx.MockTransport(handler))
        with pytest.raises(BackendError) as exc_info:
            await client.request("GET", "/rest/v1/cafe_products")
        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == "bad filter"
        assert len(calls) == 1
        await client.close()

    async def test_last_server_error_raised_after_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502, json={"message": "bad gateway"})

        client = BackendClient("http://backend.test", "anon", max_retries=1, transport=httpx.MockTransport(handler))
        with pytest.raises(BackendError) as exc_info:
            await client.request("GET", "/rest/v1/cafe_products")
        assert exc_info.value.status_code == 502
        assert str(exc_info.value) == "bad gateway"
        assert len(calls) == 2
        await client.close()

    async def test_transport_errors_surface_after_retries(self, unreachable_client):
        with pytest.raises(BackendError, match="Could not reach the server"):
            await unreachable_client.request("GET", "/rest/v1/cafe_products")
        await unreachable_client.close()


class TestCatalog:
    async def test_fetch_all_sorted_by_name(self, catalog):
        result = await catalog.fetch_all()
        assert result.success
        names = [p.name for p in result.data]
        assert names == sorted(names, key=str.lower)
        assert len(names) == 8

    async def test_missing_images_use_placeholder(self, catalog):
        result = await catalog.fetch_by_id("chai-tea-latte")
        assert result.data.images == [PLACEHOLDER_IMAGE]
        cake = (await catalog.fetch_by_id("chocolate-cake")).data
        assert cake.image == PLACEHOLDER_IMAGE

    async def test_filter_by_category_and_featured(self, catalog):
        coffee = await catalog.fetch_by_category("Coffee")
        assert {p.category for p in coffee.data} == {"Coffee"}

        featured = await catalog.fetch_all(featured=True)
        assert all(p.featured for p in featured.data)
        assert len(featured.data) == 4

    async def test_related_excludes_product(self, catalog):
        espresso = (await catalog.fetch_by_id("espresso-signature")).data
        related = await catalog.fetch_related(espresso, limit=4)
        ids = [p.id for p in related.data]
        assert "espresso-signature" not in ids
        assert set(ids) == {"chai-tea-latte", "iced-caramel-latte"}

    async def test_unknown_product(self, catalog):
        result = await catalog.fetch_by_id("nope")
        assert not result.success
        assert result.error == "Product nope not found"

    async def test_currency_preserved(self, catalog):
        rolex = (await catalog.fetch_by_id("rolex-wrap")).data
        assert rolex.currency is Currency.UGX
        assert rolex.price == 8000

    async def test_invalid_rows_are_skipped(self, mock_backend, catalog):
        mock_backend.products.append({"id": "broken", "name": "No price"})
        result = await catalog.fetch_all()
        assert result.success
        assert "broken" not in [p.id for p in result.data]

    async def test_backend_down_is_a_failed_result(self, unreachable_client):
        result = await ProductCatalog(unreachable_client).fetch_all()
        assert not result.success
        assert "Could not reach the server" in result.error


class TestAuth:
    async def test_sign_in(self, auth):
        result = await auth.sign_in("jane@x.com", "secret123")
        assert result.success
        assert auth.is_authenticated
        assert auth.current_session.user.name == "Jane Doe"

    async def test_wrong_password(self, auth):
        result = await auth.sign_in("jane@x.com", "wrong")
        assert not result.success
        assert result.error == "Invalid login credentials"
        assert auth.current_session is None

    async def test_sign_up_signs_in_when_session_issued(self, auth):
        result = await auth.sign_up("sam@x.com", "hunter22", name="Sam")
        assert result.success
        assert result.data.name == "Sam"
        assert auth.is_authenticated

    async def test_sign_up_without_confirmation_stays_signed_out(self, mock_backend, auth):
        mock_backend.auto_confirm = False
        result = await auth.sign_up("sam@x.com", "hunter22")
        assert result.success
        assert result.data.email == "sam@x.com"
        assert not auth.is_authenticated

    async def test_duplicate_sign_up(self, auth):
        result = await auth.sign_up("jane@x.com", "secret123")
        assert not result.success
        assert result.error == "User already registered"

    async def test_sign_out(self, auth, mock_backend):
        await auth.sign_in("jane@x.com", "secret123")
        result = await auth.sign_out()
        assert result.success
        assert not auth.is_authenticated
        assert mock_backend.tokens == {}


class TestFunctions:
    @pytest.fixture
    def line_items(self):
        cake = Product(id="chocolate-cake", name="Chocolate Fudge Cake", price=6.25, images=[])
        return [LineItem(product=cake, quantity=2)]

    def test_wire_items(self, line_items):
        assert wire_items(line_items) == [
            {
                "id": "chocolate-cake",
                "name": "Chocolate Fudge Cake",
                "price": 6.25,
                "quantity": 2,
                "image": PLACEHOLDER_IMAGE,
                "currency": "USD",
            }
        ]

    async def test_create_session(self, payments, line_items, mock_backend):
        result = await payments.create_session(
            line_items,
            customer_email="jane@x.com",
            success_url="http://shop.test/checkout?success=true",
            cancel_url="http://shop.test/checkout?canceled=true",
        )
        assert result.success
        assert result.data.session_id in mock_backend.payment_sessions
        assert result.data.redirect_url.endswith(result.data.session_id)

    async def test_create_session_without_items(self, payments):
        result = await payments.create_session([], None, "http://s", "http://c")
        assert not result.success
        assert result.error == "No items provided or invalid items format"

    async def test_success_false_body_is_a_failure(self, line_items):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "Stripe key missing"})

        client = BackendClient("http://backend.test", "anon", transport=httpx.MockTransport(handler))
        result = await PaymentSessionCreator(client).create_session(line_items, None, "http://s", "http://c")
        assert not result.success
        assert result.error == "Stripe key missing"
        await client.close()

    async def test_send_order_confirmation(self, emailer, line_items, mock_backend):
        details = {"fullName": "Jane Doe", "address": "1 Main St", "notes": None}
        result = await emailer.send("jane@x.com", details, line_items, 12.5)
        assert result.success
        assert result.data["id"] == mock_backend.sent_emails[0]["id"]
        assert "notes" not in mock_backend.sent_emails[0]
        assert mock_backend.sent_emails[0]["totalPrice"] == 12.5

    async def test_send_failure(self, emailer, line_items, mock_backend):
        mock_backend.fail_emails = "Resend API error"
        result = await emailer.send("jane@x.com", {}, line_items, 12.5)
        assert not result.success
        assert result.error == "Resend API error"


class TestUploads:
    async def test_upload_returns_public_url(self, uploads, mock_backend):
        result = await uploads.upload("latte.png", b"\x89PNG data")
        assert result.success
        assert result.data.startswith("http://backend.test/storage/v1/object/public/product-images/")
        assert result.data.endswith(".png")
        assert len(mock_backend.objects) == 1

    async def test_rejects_non_images(self, uploads):
        result = await uploads.upload("notes.txt", b"hello")
        assert not result.success
        assert "Unsupported image type" in result.error

    async def test_rejects_empty_file(self, uploads):
        result = await uploads.upload("latte.jpg", b"")
        assert not result.success
        assert result.error == "The uploaded file is empty."
