"""Shared test fixtures for the Cafe Storefront service."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from cafe_storefront.api import create_app
from cafe_storefront.backend.auth import AuthSessionProvider
from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.backend.client import BackendClient
from cafe_storefront.backend.emailer import OrderConfirmationEmailer
from cafe_storefront.backend.payments import PaymentSessionCreator
from cafe_storefront.backend.uploads import ImageUploadSink
from cafe_storefront.config import Settings
from cafe_storefront.mock_backend.backend_app import MockBackendApp
from cafe_storefront.models import Product
from cafe_storefront.state.bridge import PersistentBridge
from cafe_storefront.state.cart import CartStore
from cafe_storefront.state.favorites import FavoritesStore
from cafe_storefront.state.notifier import Notifier
from cafe_storefront.state.storage import MemoryStorage

BACKEND_URL = "http://backend.test"
CUSTOMER_EMAIL = "jane@x.com"
CUSTOMER_PASSWORD = "secret123"


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        environment="testing",
        backend_url=BACKEND_URL,
        mock_backend_enabled=False,
        email_timeout=1.0,
        backend_max_retries=0,
    )


# ---------------------------------------------------------------------------
# Hosted backend
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_backend():
    """In-memory hosted backend seeded with the demo catalog and one customer."""
    backend = MockBackendApp(auto_confirm=True)
    backend.add_user(CUSTOMER_EMAIL, CUSTOMER_PASSWORD, name="Jane Doe")
    return backend


@pytest.fixture
async def backend_client(mock_backend):
    client = BackendClient(
        BACKEND_URL,
        "test-anon-key",
        max_retries=0,
        transport=ASGITransport(app=mock_backend.app),
    )
    yield client
    await client.close()


@pytest.fixture
def catalog(backend_client):
    return ProductCatalog(backend_client)


@pytest.fixture
def auth(backend_client):
    return AuthSessionProvider(backend_client)


@pytest.fixture
def payments(backend_client):
    return PaymentSessionCreator(backend_client)


@pytest.fixture
def emailer(backend_client):
    return OrderConfirmationEmailer(backend_client)


@pytest.fixture
def uploads(backend_client):
    return ImageUploadSink(backend_client)


@pytest.fixture
def unreachable_client():
    """A backend client whose every request fails at the transport level."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return BackendClient(BACKEND_URL, "test-anon-key", max_retries=1, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Client state
# ---------------------------------------------------------------------------


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def storage(notifier):
    return MemoryStorage(notifier=notifier)


@pytest.fixture
def bridge(storage):
    return PersistentBridge(storage)


@pytest.fixture
def cart(bridge, notifier):
    store = CartStore(bridge, notifier)
    yield store
    store.close()


@pytest.fixture
def favorites(bridge, notifier):
    store = FavoritesStore(bridge, notifier)
    yield store
    store.close()


@pytest.fixture
def espresso():
    return Product(
        id="espresso-signature",
        name="Signature Espresso",
        description="Our premium signature blend.",
        price=4.99,
        images=["/images/espresso.png"],
        category="Coffee",
        featured=True,
    )


@pytest.fixture
def latte():
    return Product(
        id="iced-caramel-latte",
        name="Iced Caramel Latte",
        description="Smooth espresso with caramel syrup.",
        price=5.49,
        images=["/images/iced-latte.png"],
        category="Coffee",
    )


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def app(settings, backend_client):
    """Create the FastAPI app wired to the in-process hosted backend."""
    return create_app(settings, backend=backend_client)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
