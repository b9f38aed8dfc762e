"""Cart state machine.

Holds the insertion-ordered line items of one browser profile, keeps the
derived totals current and writes every mutation through to the bridge
before notifying the other live instances.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from pydantic import TypeAdapter

from cafe_storefront.models import CartSnapshot, LineItem, Product, StateEvent
from cafe_storefront.state.bridge import CART_KEY, PersistentBridge
from cafe_storefront.state.notifier import TOPIC_CART_UPDATED, TOPIC_STORAGE, Notifier

logger = structlog.get_logger(__name__)

_LINE_ITEMS = TypeAdapter(list[LineItem])


def migrate_legacy_cart(entries: list[Any]) -> list[Any]:
    """Convert flat ``{...product, quantity}`` entries into line items."""
    migrated: list[Any] = []
    for entry in entries:
        if isinstance(entry, dict) and "product" not in entry:
            fields = dict(entry)
            quantity = fields.pop("quantity", 1)
            migrated.append({"product": fields, "quantity": quantity})
        else:
            migrated.append(entry)
    return migrated


class CartStore:
    """Cart for one profile, rehydrated from the bridge on creation.

    Every instance subscribes to ``cartUpdated`` and ``storage`` events and
    re-reads the bridge when another instance (or another process writing
    the same storage) changes the cart.
    """

    def __init__(
        self,
        bridge: PersistentBridge,
        notifier: Notifier,
        instance_id: str | None = None,
    ) -> None:
        self._bridge = bridge
        self._notifier = notifier
        self.instance_id = instance_id or f"cart-{uuid.uuid4().hex[:8]}"
        self._items: list[LineItem] = []
        self._total_items = 0
        self._total_price = 0.0

        self._unsubscribe = [
            notifier.subscribe(TOPIC_CART_UPDATED, self._on_cart_updated, owner=self.instance_id),
            notifier.subscribe(TOPIC_STORAGE, self._on_storage, owner=self.instance_id),
        ]
        self.reload()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def items(self) -> list[LineItem]:
        return list(self._items)

    @property
    def total_items(self) -> int:
        return self._total_items

    @property
    def total_price(self) -> float:
        return self._total_price

    @property
    def is_empty(self) -> bool:
        return not self._items

    def get(self, product_id: str) -> LineItem | None:
        index = self._index_of(product_id)
        return None if index is None else self._items[index]

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=self.items,
            total_items=self._total_items,
            total_price=self._total_price,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_to_cart(self, product: Product, quantity: int = 1) -> CartSnapshot:
        """Add *quantity* of *product*, merging with an existing line item.

        A non-positive quantity removes the product instead.
        """
        if quantity <= 0:
            return self.remove_from_cart(product.id)

        items = list(self._items)
        index = self._index_of(product.id)
        if index is None:
            items.append(LineItem(product=product, quantity=quantity))
        else:
            current = items[index]
            items[index] = current.model_copy(update={"quantity": current.quantity + quantity})

        self._commit(items)
        logger.info("cart_item_added", product_id=product.id, quantity=quantity, total_items=self._total_items)
        return self.snapshot()

    def update_quantity(self, product_id: str, quantity: int) -> CartSnapshot:
        """Set the quantity of *product_id*; zero or less removes it."""
        if quantity <= 0:
            return self.remove_from_cart(product_id)

        index = self._index_of(product_id)
        if index is None:
            return self.snapshot()

        items = list(self._items)
        items[index] = items[index].model_copy(update={"quantity": quantity})
        self._commit(items)
        logger.info("cart_quantity_updated", product_id=product_id, quantity=quantity)
        return self.snapshot()

    def remove_from_cart(self, product_id: str) -> CartSnapshot:
        if self._index_of(product_id) is None:
            return self.snapshot()

        self._commit([item for item in self._items if item.product.id != product_id])
        logger.info("cart_item_removed", product_id=product_id)
        return self.snapshot()

    def clear_cart(self) -> CartSnapshot:
        self._items = []
        self._recompute()
        self._bridge.clear(CART_KEY)
        self._notifier.publish(TOPIC_CART_UPDATED, key=CART_KEY, origin=self.instance_id)
        logger.info("cart_cleared", instance=self.instance_id)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the cart from the bridge."""
        self._items = self._bridge.load(CART_KEY, _LINE_ITEMS, migrate=migrate_legacy_cart)
        self._recompute()

    def close(self) -> None:
        """Stop listening for changes made by other instances."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_cart_updated(self, event: StateEvent) -> None:
        self.reload()

    def _on_storage(self, event: StateEvent) -> None:
        if event.key in (None, CART_KEY):
            self.reload()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, items: list[LineItem]) -> None:
        self._items = items
        self._recompute()
        self._bridge.save(CART_KEY, items)
        self._notifier.publish(TOPIC_CART_UPDATED, key=CART_KEY, origin=self.instance_id)

    def _recompute(self) -> None:
        self._total_items = sum(item.quantity for item in self._items)
        self._total_price = round(sum(item.subtotal for item in self._items), 2)

    def _index_of(self, product_id: str) -> int | None:
        for index, item in enumerate(self._items):
            if item.product.id == product_id:
                return index
        return None
