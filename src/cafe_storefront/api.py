"""FastAPI application for the Cafe Storefront service.

Exposes REST endpoints for:
- Catalog browsing (search, category filter, pagination, related items)
- Per-profile cart and favorites, plus an SSE stream of state changes
- Per-profile authentication
- Checkout sessions (method selection, forms, payment return)
- The chat assistant widget
- Admin product entry
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sse_starlette.sse import EventSourceResponse

from common import ErrorResponse, HealthResponse

from cafe_storefront.admin import AdminService, ImageFile, ProductCategory, ProductDraft
from cafe_storefront.backend.catalog import ProductCatalog
from cafe_storefront.backend.client import BackendClient
from cafe_storefront.backend.emailer import OrderConfirmationEmailer
from cafe_storefront.backend.payments import PaymentSessionCreator
from cafe_storefront.backend.uploads import ImageUploadSink
from cafe_storefront.chat import ChatAssistant
from cafe_storefront.checkout.forms import DISTRICTS, DeliveryPreferences, DeliveryTime, ShippingInfo
from cafe_storefront.checkout.sequencer import (
    CheckoutBusyError,
    CheckoutOutcome,
    CheckoutSequencer,
    CheckoutStep,
    CheckoutTransitionError,
    PaymentMethod,
)
from cafe_storefront.config import Settings
from cafe_storefront.models import Currency, Product
from cafe_storefront.profiles import InvalidProfileError, Profile, ProfileRegistry

logger = structlog.get_logger(__name__)

_MAX_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1


class UpdateQuantityRequest(BaseModel):
    quantity: int


class FavoriteRequest(BaseModel):
    product_id: str


class SignInRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    email: str
    password: str
    name: str | None = None


class CreateCheckoutRequest(BaseModel):
    """Start checkout for a profile's cart."""

    profile_id: str


class SelectMethodRequest(BaseModel):
    method: PaymentMethod


class ChatMessageRequest(BaseModel):
    content: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Application state container
# ---------------------------------------------------------------------------


class AppState:
    """Shared collaborators and in-memory sessions used by route handlers."""

    def __init__(self, settings: Settings, backend: BackendClient) -> None:
        self.settings = settings
        self.backend = backend
        self.catalog = ProductCatalog(backend, table=settings.products_table)
        self.payments = PaymentSessionCreator(backend)
        self.emailer = OrderConfirmationEmailer(backend)
        self.uploads = ImageUploadSink(backend, bucket=settings.upload_bucket)
        self.admin = AdminService(self.catalog, self.uploads)
        self.profiles = ProfileRegistry(
            backend,
            storage_dir=settings.storage_dir,
            event_queue_size=settings.event_queue_size,
        )
        self.checkouts: dict[str, CheckoutSequencer] = {}
        self.chats: dict[str, ChatAssistant] = {}

    @property
    def checkout_url(self) -> str:
        return f"{self.settings.site_url.rstrip('/')}{self.settings.checkout_path}"

    async def close(self) -> None:
        for sequencer in self.checkouts.values():
            sequencer.discard()
        self.checkouts.clear()
        self.chats.clear()
        self.profiles.close_all()
        await self.backend.close()


def _checkout_response(sequencer: CheckoutSequencer, outcome: CheckoutOutcome | None) -> dict[str, Any]:
    return {
        "checkout": sequencer.state().model_dump(mode="json"),
        "outcome": outcome.model_dump(mode="json") if outcome is not None else None,
    }


def _auth_response(profile: Profile) -> dict[str, Any]:
    session = profile.auth.current_session
    return {
        "profile_id": profile.id,
        "authenticated": session is not None,
        "user": session.user.model_dump() if session is not None else None,
    }


def _error(request: Request, status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error, detail=detail, status_code=status_code, path=request.url.path
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, backend: BackendClient | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Service configuration; read from the environment when omitted.
    backend:
        Client for the hosted backend.  Tests pass one bound to an
        in-process transport.
    """
    settings = settings or Settings()
    backend = backend or BackendClient(
        settings.backend_url,
        settings.backend_anon_key,
        timeout=settings.backend_timeout,
        max_retries=settings.backend_max_retries,
    )
    state = AppState(settings, backend)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await state.close()
        logger.info("application_shutdown", service=settings.service_name)

    app = FastAPI(
        title="Cafe Storefront",
        description="Cafe storefront backend: catalog, cart, favorites, checkout and chat.",
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.app_state = state
    app.state.settings = settings

    async def require_product(product_id: str) -> Product:
        result = await state.catalog.fetch_by_id(product_id)
        if not result.success or result.data is None:
            raise HTTPException(status_code=404, detail=result.error or f"Product {product_id} not found")
        return result.data

    def require_checkout(checkout_id: str) -> CheckoutSequencer:
        sequencer = state.checkouts.get(checkout_id)
        if sequencer is None:
            raise HTTPException(status_code=404, detail=f"Checkout {checkout_id} not found")
        return sequencer

    def checkout_reply(sequencer: CheckoutSequencer, outcome: CheckoutOutcome) -> dict[str, Any]:
        """Build the response; confirmed sessions are dropped from the registry."""
        if sequencer.step is CheckoutStep.CONFIRMATION:
            state.checkouts.pop(sequencer.id, None)
            logger.info("checkout_closed", checkout_id=sequencer.id)
        return _checkout_response(sequencer, outcome)

    def require_chat(chat_id: str) -> ChatAssistant:
        chat = state.chats.get(chat_id)
        if chat is None:
            raise HTTPException(status_code=404, detail=f"Chat {chat_id} not found")
        return chat

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=settings.service_version,
            environment=settings.environment,
        )

    # -------------------------------------------------------------------
    # Catalog endpoints
    # -------------------------------------------------------------------

    @app.get("/api/v1/products", tags=["catalog"])
    async def list_products(
        q: str = "",
        category: str | None = None,
        featured: bool | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> dict[str, Any]:
        """List products, filtered by search text and category, one page at a time."""
        page_size = min(max(page_size or settings.page_size, 1), _MAX_PAGE_SIZE)
        page = max(page, 1)

        result = await state.catalog.fetch_all(
            category=None if category in (None, "", "All") else category,
            featured=featured,
        )
        if not result.success:
            raise HTTPException(status_code=502, detail=result.error)

        products = result.data or []
        needle = q.strip().lower()
        if needle:
            products = [
                p for p in products if needle in p.name.lower() or needle in p.description.lower()
            ]

        total = len(products)
        start = (page - 1) * page_size
        return {
            "products": [p.model_dump(mode="json") for p in products[start : start + page_size]],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total / page_size) if total else 0,
        }

    @app.get("/api/v1/categories", tags=["catalog"])
    async def list_categories() -> dict[str, Any]:
        result = await state.catalog.fetch_all()
        if not result.success:
            raise HTTPException(status_code=502, detail=result.error)
        categories = sorted({p.category for p in result.data or []})
        return {"categories": categories, "total": len(categories)}

    @app.get("/api/v1/products/{product_id}", tags=["catalog"])
    async def get_product(product_id: str) -> dict[str, Any]:
        product = await require_product(product_id)
        return product.model_dump(mode="json")

    @app.get("/api/v1/products/{product_id}/related", tags=["catalog"])
    async def related_products(product_id: str, limit: int = 4) -> dict[str, Any]:
        """Other products from the same category."""
        product = await require_product(product_id)
        result = await state.catalog.fetch_related(product, limit=limit)
        if not result.success:
            raise HTTPException(status_code=502, detail=result.error)
        related = result.data or []
        return {
            "product_id": product_id,
            "products": [p.model_dump(mode="json") for p in related],
            "total": len(related),
        }

    # -------------------------------------------------------------------
    # Cart endpoints
    # -------------------------------------------------------------------

    @app.get("/api/v1/profiles/{profile_id}/cart", tags=["cart"])
    async def get_cart(profile_id: str) -> dict[str, Any]:
        return state.profiles.get(profile_id).cart.snapshot().model_dump(mode="json")

    @app.post("/api/v1/profiles/{profile_id}/cart/items", tags=["cart"])
    async def add_cart_item(profile_id: str, req: AddToCartRequest) -> dict[str, Any]:
        profile = state.profiles.get(profile_id)
        product = await require_product(req.product_id)
        return profile.cart.add_to_cart(product, req.quantity).model_dump(mode="json")

    @app.patch("/api/v1/profiles/{profile_id}/cart/items/{product_id}", tags=["cart"])
    async def update_cart_item(profile_id: str, product_id: str, req: UpdateQuantityRequest) -> dict[str, Any]:
        cart = state.profiles.get(profile_id).cart
        return cart.update_quantity(product_id, req.quantity).model_dump(mode="json")

    @app.delete("/api/v1/profiles/{profile_id}/cart/items/{product_id}", tags=["cart"])
    async def remove_cart_item(profile_id: str, product_id: str) -> dict[str, Any]:
        cart = state.profiles.get(profile_id).cart
        return cart.remove_from_cart(product_id).model_dump(mode="json")

    @app.delete("/api/v1/profiles/{profile_id}/cart", tags=["cart"])
    async def clear_cart(profile_id: str) -> dict[str, Any]:
        return state.profiles.get(profile_id).cart.clear_cart().model_dump(mode="json")

    # -------------------------------------------------------------------
    # Favorites endpoints
    # -------------------------------------------------------------------

    @app.get("/api/v1/profiles/{profile_id}/favorites", tags=["favorites"])
    async def get_favorites(profile_id: str) -> dict[str, Any]:
        return state.profiles.get(profile_id).favorites.snapshot().model_dump(mode="json")

    @app.post("/api/v1/profiles/{profile_id}/favorites", tags=["favorites"])
    async def add_favorite(profile_id: str, req: FavoriteRequest) -> dict[str, Any]:
        profile = state.profiles.get(profile_id)
        product = await require_product(req.product_id)
        return profile.favorites.add(product).model_dump(mode="json")

    @app.get("/api/v1/profiles/{profile_id}/favorites/{product_id}", tags=["favorites"])
    async def is_favorite(profile_id: str, product_id: str) -> dict[str, Any]:
        favorites = state.profiles.get(profile_id).favorites
        return {"product_id": product_id, "favorite": favorites.is_favorite(product_id)}

    @app.post("/api/v1/profiles/{profile_id}/favorites/{product_id}/toggle", tags=["favorites"])
    async def toggle_favorite(profile_id: str, product_id: str) -> dict[str, Any]:
        favorites = state.profiles.get(profile_id).favorites
        product = await require_product(product_id)
        favorite = favorites.toggle(product)
        return {
            "product_id": product_id,
            "favorite": favorite,
            "favorites": favorites.snapshot().model_dump(mode="json"),
        }

    @app.delete("/api/v1/profiles/{profile_id}/favorites/{product_id}", tags=["favorites"])
    async def remove_favorite(profile_id: str, product_id: str) -> dict[str, Any]:
        favorites = state.profiles.get(profile_id).favorites
        return favorites.remove(product_id).model_dump(mode="json")

    @app.delete("/api/v1/profiles/{profile_id}/favorites", tags=["favorites"])
    async def clear_favorites(profile_id: str) -> dict[str, Any]:
        return state.profiles.get(profile_id).favorites.clear().model_dump(mode="json")

    # -------------------------------------------------------------------
    # State-change stream
    # -------------------------------------------------------------------

    @app.get("/api/v1/profiles/{profile_id}/events", tags=["events"])
    async def stream_profile_events(profile_id: str) -> EventSourceResponse:
        """SSE stream of ``storage`` / ``cartUpdated`` / ``favoritesUpdated`` events."""
        profile = state.profiles.get(profile_id)

        async def event_generator():  # type: ignore[no-untyped-def]
            async for event in profile.notifier.listen():
                yield {
                    "event": event.topic,
                    "data": event.model_dump_json(),
                }

        return EventSourceResponse(event_generator())

    # -------------------------------------------------------------------
    # Auth endpoints
    # -------------------------------------------------------------------

    @app.get("/api/v1/profiles/{profile_id}/auth/session", tags=["auth"])
    async def get_auth_session(profile_id: str) -> dict[str, Any]:
        return _auth_response(state.profiles.get(profile_id))

    @app.post("/api/v1/profiles/{profile_id}/auth/sign-in", tags=["auth"])
    async def sign_in(profile_id: str, req: SignInRequest) -> dict[str, Any]:
        profile = state.profiles.get(profile_id)
        result = await profile.auth.sign_in(req.email, req.password)
        if not result.success:
            raise HTTPException(status_code=401, detail=result.error)
        return _auth_response(profile)

    @app.post("/api/v1/profiles/{profile_id}/auth/sign-up", tags=["auth"])
    async def sign_up(profile_id: str, req: SignUpRequest) -> dict[str, Any]:
        profile = state.profiles.get(profile_id)
        result = await profile.auth.sign_up(req.email, req.password, req.name)
        if not result.success or result.data is None:
            raise HTTPException(status_code=400, detail=result.error)
        return {**_auth_response(profile), "user": result.data.model_dump()}

    @app.post("/api/v1/profiles/{profile_id}/auth/sign-out", tags=["auth"])
    async def sign_out(profile_id: str) -> dict[str, Any]:
        profile = state.profiles.get(profile_id)
        result = await profile.auth.sign_out()
        response = _auth_response(profile)
        if not result.success:
            response["warning"] = result.error
        return response

    # -------------------------------------------------------------------
    # Checkout endpoints
    # -------------------------------------------------------------------

    @app.get("/api/v1/checkout/options", tags=["checkout"])
    async def checkout_options() -> dict[str, Any]:
        """Choices offered on the checkout forms."""
        return {
            "payment_methods": [m.value for m in PaymentMethod],
            "districts": DISTRICTS,
            "delivery_times": [t.value for t in DeliveryTime],
            "skip_delivery_preferences": settings.skip_delivery_preferences,
        }

    @app.post("/api/v1/checkout", tags=["checkout"])
    async def create_checkout(req: CreateCheckoutRequest) -> dict[str, Any]:
        """Open a checkout session over the profile's cart."""
        profile = state.profiles.get(req.profile_id)
        sequencer = CheckoutSequencer(
            profile.cart,
            profile.auth,
            state.payments,
            state.emailer,
            checkout_url=state.checkout_url,
            skip_delivery_preferences=settings.skip_delivery_preferences,
            email_timeout=settings.email_timeout,
        )
        state.checkouts[sequencer.id] = sequencer
        logger.info("checkout_created", checkout_id=sequencer.id, profile_id=profile.id)
        return _checkout_response(sequencer, sequencer.guard())

    @app.get("/api/v1/checkout/{checkout_id}", tags=["checkout"])
    async def get_checkout(checkout_id: str) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        return _checkout_response(sequencer, sequencer.guard())

    @app.post("/api/v1/checkout/{checkout_id}/method", tags=["checkout"])
    async def select_payment_method(checkout_id: str, req: SelectMethodRequest) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        outcome = await sequencer.select_method(req.method)
        return checkout_reply(sequencer, outcome)

    @app.post("/api/v1/checkout/{checkout_id}/delivery-preferences", tags=["checkout"])
    async def submit_delivery_preferences(checkout_id: str, req: DeliveryPreferences) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        return checkout_reply(sequencer, sequencer.submit_delivery_preferences(req))

    @app.post("/api/v1/checkout/{checkout_id}/shipping", tags=["checkout"])
    async def submit_shipping_info(checkout_id: str, req: ShippingInfo) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        outcome = await sequencer.submit_shipping_info(req)
        return checkout_reply(sequencer, outcome)

    @app.post("/api/v1/checkout/{checkout_id}/return", tags=["checkout"])
    async def payment_return(checkout_id: str, request: Request) -> dict[str, Any]:
        """Apply ``?success=true`` or ``?canceled=true`` from the hosted payment page."""
        sequencer = require_checkout(checkout_id)
        return checkout_reply(sequencer, sequencer.handle_return(request.query_params))

    @app.post("/api/v1/checkout/{checkout_id}/back", tags=["checkout"])
    async def checkout_back(checkout_id: str) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        return checkout_reply(sequencer, sequencer.go_back())

    @app.post("/api/v1/checkout/{checkout_id}/resume", tags=["checkout"])
    async def resume_checkout(checkout_id: str) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        outcome = await sequencer.resume()
        return checkout_reply(sequencer, outcome)

    @app.delete("/api/v1/checkout/{checkout_id}", tags=["checkout"])
    async def discard_checkout(checkout_id: str) -> dict[str, Any]:
        sequencer = require_checkout(checkout_id)
        sequencer.discard()
        state.checkouts.pop(checkout_id, None)
        return {"checkout_id": checkout_id, "status": "discarded"}

    # -------------------------------------------------------------------
    # Chat endpoints
    # -------------------------------------------------------------------

    @app.post("/api/v1/chat", tags=["chat"])
    async def create_chat() -> dict[str, Any]:
        chat = ChatAssistant(state.catalog, recommendation_limit=settings.chat_recommendation_limit)
        state.chats[chat.id] = chat
        return chat.transcript().model_dump(mode="json")

    @app.get("/api/v1/chat/{chat_id}", tags=["chat"])
    async def get_chat(chat_id: str) -> dict[str, Any]:
        return require_chat(chat_id).transcript().model_dump(mode="json")

    @app.post("/api/v1/chat/{chat_id}/messages", tags=["chat"])
    async def post_chat_message(chat_id: str, req: ChatMessageRequest) -> dict[str, Any]:
        chat = require_chat(chat_id)
        reply = await chat.send(req.content)
        return {
            "reply": reply.model_dump(mode="json"),
            "transcript": chat.transcript().model_dump(mode="json"),
        }

    @app.delete("/api/v1/chat/{chat_id}", tags=["chat"])
    async def close_chat(chat_id: str) -> dict[str, Any]:
        require_chat(chat_id)
        state.chats.pop(chat_id, None)
        return {"chat_id": chat_id, "status": "closed"}

    # -------------------------------------------------------------------
    # Admin endpoints
    # -------------------------------------------------------------------

    @app.post("/api/v1/admin/products", status_code=201, tags=["admin"])
    async def create_product(
        name: str = Form(...),
        description: str = Form(...),
        price: float = Form(...),
        currency: Currency = Form(Currency.USD),
        category: ProductCategory = Form(ProductCategory.COFFEE),
        image_url: str | None = Form(None),
        featured: bool = Form(False),
        image: UploadFile | None = File(None),
    ) -> dict[str, Any]:
        """Create a product from the admin form, uploading its image first."""
        try:
            draft = ProductDraft(
                name=name,
                description=description,
                price=price,
                currency=currency,
                category=category,
                image_url=image_url or None,
                featured=featured,
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=422,
                detail=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

        upload: ImageFile | None = None
        if image is not None and image.filename:
            upload = ImageFile(
                filename=image.filename,
                content=await image.read(),
                content_type=image.content_type,
            )

        result = await state.admin.create_product(draft, upload)
        if not result.success or result.data is None:
            raise HTTPException(status_code=400, detail=result.error)
        return result.data.model_dump(mode="json")

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(InvalidProfileError)
    async def invalid_profile_handler(request: Request, exc: InvalidProfileError) -> JSONResponse:
        return _error(request, 400, "Invalid profile", str(exc))

    @app.exception_handler(CheckoutTransitionError)
    async def checkout_transition_handler(request: Request, exc: CheckoutTransitionError) -> JSONResponse:
        logger.info("checkout_transition_rejected", error=str(exc), path=request.url.path)
        return _error(request, 409, "Invalid checkout step", str(exc))

    @app.exception_handler(CheckoutBusyError)
    async def checkout_busy_handler(request: Request, exc: CheckoutBusyError) -> JSONResponse:
        return _error(request, 409, "Checkout busy", str(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return _error(request, 500, "Internal server error", str(exc))

    return app
