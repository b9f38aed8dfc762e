"""Order-confirmation email through the hosted serverless function."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from cafe_storefront.backend.client import BackendClient, BackendError, error_message
from cafe_storefront.backend.payments import wire_items
from cafe_storefront.models import LineItem, RemoteResult

logger = structlog.get_logger(__name__)


class OrderConfirmationEmailer:
    """Sends the order summary to the customer and the shop."""

    def __init__(self, client: BackendClient, function_name: str = "send-order-confirmation") -> None:
        self._client = client
        self._path = f"/functions/v1/{function_name}"

    async def send(
        self,
        recipient_email: str,
        customer_details: Mapping[str, Any],
        items: Sequence[LineItem],
        total_price: float,
    ) -> RemoteResult[dict[str, Any]]:
        body: dict[str, Any] = {"email": recipient_email}
        body.update({key: value for key, value in customer_details.items() if value is not None})
        body["items"] = wire_items(items)
        body["totalPrice"] = total_price

        try:
            data = await self._client.request("POST", self._path, json_body=body, retry=False)
        except BackendError as exc:
            logger.warning("order_email_failed", recipient=recipient_email, error=str(exc))
            return RemoteResult.fail(str(exc))

        if isinstance(data, dict) and data.get("success") is False:
            message = error_message(data, "Failed to send order confirmation")
            logger.warning("order_email_rejected", recipient=recipient_email, error=message)
            return RemoteResult.fail(message)

        logger.info("order_email_sent", recipient=recipient_email, items=len(items))
        payload = data.get("data") if isinstance(data, dict) else None
        return RemoteResult[dict[str, Any]].ok(payload if isinstance(payload, dict) else {})
