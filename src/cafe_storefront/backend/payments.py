"""Payment-session creation through the hosted serverless function."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from cafe_storefront.backend.client import BackendClient, BackendError, error_message
from cafe_storefront.models import LineItem, RemoteResult

logger = structlog.get_logger(__name__)


class PaymentSession(BaseModel):
    """A hosted checkout page the customer is redirected to."""

    session_id: str
    redirect_url: str


def wire_items(items: Sequence[LineItem]) -> list[dict[str, Any]]:
    """Flatten line items into the shape the serverless functions expect."""
    return [
        {
            "id": item.product.id,
            "name": item.product.name,
            "price": item.product.price,
            "quantity": item.quantity,
            "image": item.product.image,
            "currency": item.product.currency.value,
        }
        for item in items
    ]


class PaymentSessionCreator:
    """Creates hosted payment sessions for the card checkout path."""

    def __init__(self, client: BackendClient, function_name: str = "create-checkout-session") -> None:
        self._client = client
        self._path = f"/functions/v1/{function_name}"

    async def create_session(
        self,
        items: Sequence[LineItem],
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
    ) -> RemoteResult[PaymentSession]:
        body = {
            "items": wire_items(items),
            "customerEmail": customer_email,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
        }
        try:
            data = await self._client.request("POST", self._path, json_body=body, retry=False)
        except BackendError as exc:
            logger.error("payment_session_failed", status=exc.status_code, error=str(exc))
            return RemoteResult.fail(str(exc))

        if not isinstance(data, dict) or data.get("success") is False:
            message = error_message(data, "Could not start the payment session.")
            logger.error("payment_session_rejected", error=message)
            return RemoteResult.fail(message)

        session_id = data.get("id") or data.get("sessionId")
        redirect_url = data.get("url") or data.get("redirectUrl")
        if not session_id or not redirect_url:
            return RemoteResult.fail("Payment session response was missing a redirect URL.")

        logger.info("payment_session_created", session_id=session_id, items=len(items))
        return RemoteResult[PaymentSession].ok(PaymentSession(session_id=session_id, redirect_url=redirect_url))
