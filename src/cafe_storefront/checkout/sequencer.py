"""Checkout step sequencer.

States::

    SELECT_METHOD -> DELIVERY_PREFERENCES -> SHIPPING_INFO -> CONFIRMATION
    SELECT_METHOD -> PAYMENT_PROCESSING (hosted page) -> CONFIRMATION

Every step past ``SELECT_METHOD`` requires a signed-in session, and an
empty cart sends the customer away from checkout unless the order has
already been confirmed.  Operations return a :class:`CheckoutOutcome`
describing what the storefront should do next; only programming errors
(submitting a form for the wrong step, acting while a remote call is in
flight) raise.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel, Field

from cafe_storefront.backend.auth import AuthSessionProvider
from cafe_storefront.backend.emailer import OrderConfirmationEmailer
from cafe_storefront.backend.payments import PaymentSessionCreator
from cafe_storefront.checkout.forms import DeliveryPreferences, ShippingInfo
from cafe_storefront.models import LineItem
from cafe_storefront.state.cart import CartStore

logger = structlog.get_logger(__name__)

_TRUTHY = {"true", "1", "yes"}


class CheckoutStep(str, enum.Enum):
    SELECT_METHOD = "select_method"
    DELIVERY_PREFERENCES = "delivery_preferences"
    SHIPPING_INFO = "shipping_info"
    PAYMENT_PROCESSING = "payment_processing"
    CONFIRMATION = "confirmation"


class PaymentMethod(str, enum.Enum):
    ON_DELIVERY = "on_delivery"
    CARD = "card"


class OutcomeStatus(str, enum.Enum):
    ADVANCED = "advanced"
    SIGN_IN_REQUIRED = "sign_in_required"
    REDIRECT = "redirect"
    LEAVE_CHECKOUT = "leave_checkout"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CheckoutOutcome(BaseModel):
    """Result of a sequencer operation."""

    status: OutcomeStatus
    step: CheckoutStep
    method: PaymentMethod | None = None
    redirect_url: str | None = None
    message: str = ""
    warnings: list[str] = Field(default_factory=list)


class CheckoutState(BaseModel):
    """Serializable view of a checkout session."""

    id: str
    step: CheckoutStep
    method: PaymentMethod | None = None
    delivery_preferences: DeliveryPreferences | None = None
    shipping_info: ShippingInfo | None = None
    pending_method: PaymentMethod | None = None
    processing: bool = False


class CheckoutTransitionError(Exception):
    """Raised when an operation is not valid in the current step."""


class CheckoutBusyError(Exception):
    """Raised when a remote action is already in flight for this session."""


class CheckoutSequencer:
    """Walks one customer through checkout for one cart."""

    def __init__(
        self,
        cart: CartStore,
        auth: AuthSessionProvider,
        payments: PaymentSessionCreator,
        emailer: OrderConfirmationEmailer,
        checkout_url: str,
        skip_delivery_preferences: bool = False,
        email_timeout: float = 10.0,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self._cart = cart
        self._auth = auth
        self._payments = payments
        self._emailer = emailer
        self._checkout_url = checkout_url
        self._skip_preferences = skip_delivery_preferences
        self._email_timeout = email_timeout

        self.step = CheckoutStep.SELECT_METHOD
        self.method: PaymentMethod | None = None
        self.delivery_preferences: DeliveryPreferences | None = None
        self.shipping_info: ShippingInfo | None = None
        self._pending_method: PaymentMethod | None = None
        self._processing = False
        self._discarded = False

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def state(self) -> CheckoutState:
        return CheckoutState(
            id=self.id,
            step=self.step,
            method=self.method,
            delivery_preferences=self.delivery_preferences,
            shipping_info=self.shipping_info,
            pending_method=self._pending_method,
            processing=self._processing,
        )

    @property
    def success_url(self) -> str:
        return f"{self._checkout_url}?{urlencode({'success': 'true'})}"

    @property
    def cancel_url(self) -> str:
        return f"{self._checkout_url}?{urlencode({'canceled': 'true'})}"

    def guard(self) -> CheckoutOutcome | None:
        """Return a leave-checkout outcome when the cart is empty."""
        if self._cart.is_empty and self.step is not CheckoutStep.CONFIRMATION:
            return self._outcome(OutcomeStatus.LEAVE_CHECKOUT, message="Your cart is empty")
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def select_method(self, method: PaymentMethod) -> CheckoutOutcome:
        """Choose how to pay; card payments hand off to the hosted page."""
        self._ensure_idle()
        blocked = self.guard()
        if blocked is not None:
            return blocked
        self._require_step(CheckoutStep.SELECT_METHOD)

        session = self._auth.current_session
        if session is None:
            self._pending_method = method
            logger.info("checkout_sign_in_required", checkout_id=self.id, method=method.value)
            return self._outcome(
                OutcomeStatus.SIGN_IN_REQUIRED,
                message="Please sign in to continue with checkout.",
            )
        self._pending_method = None

        if method is PaymentMethod.ON_DELIVERY:
            self.method = method
            self.step = (
                CheckoutStep.SHIPPING_INFO if self._skip_preferences else CheckoutStep.DELIVERY_PREFERENCES
            )
            logger.info("checkout_method_selected", checkout_id=self.id, method=method.value, step=self.step.value)
            return self._outcome(OutcomeStatus.ADVANCED)

        with self._busy():
            result = await self._payments.create_session(
                self._cart.items,
                customer_email=session.user.email or None,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
            )
        if self._discarded:
            return self._dropped_response("payment_session")

        if not result.success or result.data is None:
            logger.warning("checkout_payment_session_failed", checkout_id=self.id, error=result.error)
            return self._outcome(
                OutcomeStatus.FAILED,
                message=result.error or "Could not start the payment. Please try again.",
            )

        self.method = PaymentMethod.CARD
        self.step = CheckoutStep.PAYMENT_PROCESSING
        logger.info("checkout_redirecting", checkout_id=self.id, payment_session=result.data.session_id)
        return self._outcome(OutcomeStatus.REDIRECT, redirect_url=result.data.redirect_url)

    async def resume(self) -> CheckoutOutcome:
        """Continue after the customer has signed in."""
        self._ensure_idle()
        if self._auth.current_session is None:
            return self._outcome(
                OutcomeStatus.SIGN_IN_REQUIRED,
                message="Please sign in to continue with checkout.",
            )
        pending, self._pending_method = self._pending_method, None
        if pending is not None and self.step is CheckoutStep.SELECT_METHOD:
            return await self.select_method(pending)
        blocked = self.guard()
        if blocked is not None:
            return blocked
        return self._outcome(OutcomeStatus.ADVANCED)

    def handle_return(self, query: Mapping[str, str]) -> CheckoutOutcome:
        """Apply the success/cancel indicator from the hosted page redirect."""
        self._ensure_idle()
        if query.get("success", "").lower() in _TRUTHY:
            self.method = self.method or PaymentMethod.CARD
            self.step = CheckoutStep.CONFIRMATION
            self._cart.clear_cart()
            logger.info("checkout_payment_succeeded", checkout_id=self.id)
            return self._outcome(OutcomeStatus.ADVANCED, message="Payment successful!")

        cancelled = query.get("canceled", query.get("cancelled", ""))
        if cancelled.lower() in _TRUTHY:
            self.step = CheckoutStep.SELECT_METHOD
            self.method = None
            logger.info("checkout_payment_cancelled", checkout_id=self.id)
            blocked = self.guard()
            if blocked is not None:
                return blocked
            return self._outcome(OutcomeStatus.CANCELLED, message="Payment was cancelled")

        blocked = self.guard()
        if blocked is not None:
            return blocked
        return self._outcome(OutcomeStatus.ADVANCED)

    def submit_delivery_preferences(self, preferences: DeliveryPreferences) -> CheckoutOutcome:
        self._ensure_idle()
        blocked = self.guard() or self._auth_gate()
        if blocked is not None:
            return blocked
        self._require_step(CheckoutStep.DELIVERY_PREFERENCES)

        self.delivery_preferences = preferences
        self.step = CheckoutStep.SHIPPING_INFO
        logger.info(
            "checkout_preferences_captured",
            checkout_id=self.id,
            district=preferences.district,
            delivery_time=preferences.delivery_time.value,
        )
        return self._outcome(OutcomeStatus.ADVANCED)

    async def submit_shipping_info(self, info: ShippingInfo) -> CheckoutOutcome:
        """Place a pay-on-delivery order.

        The confirmation email is best effort: a failure or timeout is
        reported as a warning and the order is confirmed regardless.
        """
        self._ensure_idle()
        blocked = self.guard() or self._auth_gate()
        if blocked is not None:
            return blocked
        self._require_step(CheckoutStep.SHIPPING_INFO)

        items = self._cart.items
        total_price = self._cart.total_price
        with self._busy():
            warning = await self._send_confirmation(info, items, total_price)
        if self._discarded:
            return self._dropped_response("order_email")

        self.shipping_info = info
        self.step = CheckoutStep.CONFIRMATION
        self._cart.clear_cart()
        logger.info("checkout_order_placed", checkout_id=self.id, items=len(items), total=total_price)
        return self._outcome(
            OutcomeStatus.ADVANCED,
            message="Your order has been placed successfully!",
            warnings=[warning] if warning else [],
        )

    def go_back(self) -> CheckoutOutcome:
        self._ensure_idle()
        if self.step is CheckoutStep.SELECT_METHOD:
            return self._outcome(OutcomeStatus.LEAVE_CHECKOUT)
        if self.step is CheckoutStep.DELIVERY_PREFERENCES:
            self.step = CheckoutStep.SELECT_METHOD
            self.method = None
        elif self.step is CheckoutStep.SHIPPING_INFO:
            if self._skip_preferences:
                self.step = CheckoutStep.SELECT_METHOD
                self.method = None
            else:
                self.step = CheckoutStep.DELIVERY_PREFERENCES
        else:
            raise CheckoutTransitionError(f"Cannot go back from {self.step.value}")
        return self.guard() or self._outcome(OutcomeStatus.ADVANCED)

    def discard(self) -> None:
        """Drop the session; responses still in flight are ignored."""
        self._discarded = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _send_confirmation(
        self,
        info: ShippingInfo,
        items: list[LineItem],
        total_price: float,
    ) -> str | None:
        details: dict[str, Any] = {
            "fullName": info.full_name,
            "address": info.address,
            "city": info.city,
            "zipCode": info.zip_code,
            "phone": info.phone,
            "notes": info.notes,
        }
        if self.delivery_preferences is not None:
            details["district"] = self.delivery_preferences.district
            details["deliveryTime"] = self.delivery_preferences.delivery_time.value

        try:
            result = await asyncio.wait_for(
                self._emailer.send(str(info.email), details, items, total_price),
                timeout=self._email_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("checkout_email_timeout", checkout_id=self.id)
            return "Your order was placed, but the confirmation email timed out."

        if not result.success:
            return f"Your order was placed, but the confirmation email could not be sent: {result.error}"
        return None

    def _auth_gate(self) -> CheckoutOutcome | None:
        if self._auth.current_session is None:
            return self._outcome(
                OutcomeStatus.SIGN_IN_REQUIRED,
                message="Please sign in to continue with checkout.",
            )
        return None

    def _require_step(self, expected: CheckoutStep) -> None:
        if self.step is not expected:
            raise CheckoutTransitionError(
                f"Checkout is at {self.step.value}, expected {expected.value}"
            )

    def _ensure_idle(self) -> None:
        if self._processing:
            raise CheckoutBusyError("A checkout action is already in progress.")

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._ensure_idle()
        self._processing = True
        try:
            yield
        finally:
            self._processing = False

    def _dropped_response(self, action: str) -> CheckoutOutcome:
        logger.info("checkout_response_dropped", checkout_id=self.id, action=action)
        return self._outcome(OutcomeStatus.CANCELLED, message="Checkout session was closed.")

    def _outcome(
        self,
        status: OutcomeStatus,
        redirect_url: str | None = None,
        message: str = "",
        warnings: list[str] | None = None,
    ) -> CheckoutOutcome:
        return CheckoutOutcome(
            status=status,
            step=self.step,
            method=self.method,
            redirect_url=redirect_url,
            message=message,
            warnings=warnings or [],
        )
