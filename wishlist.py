"""Member wishlist: product ids kept on the user document."""

from typing import List

from database import ArrayRemove, ArrayUnion
from errors import CapabilityError, PermissionDeniedError, WriteThroughError
from logging_config import get_logger

logger = get_logger("wishlist")

USERS = "users"
PRODUCTS = "products"


class Wishlist:
    def __init__(self, store, identity):
        if identity is None:
            raise PermissionDeniedError("Please login to save to wishlist")
        self.store = store
        self.identity = identity

    def product_ids(self) -> List[str]:
        user = self.store.get(USERS, self.identity.uid)
        return list((user or {}).get("wishlist") or [])

    def load(self) -> List[dict]:
        ids = self.product_ids()
        if not ids:
            return []
        return self.store.query(PRODUCTS, {"id": {"$in": ids}})

    def contains(self, product_id: str) -> bool:
        return product_id in self.product_ids()

    def _update(self, partial: dict, action: str) -> None:
        try:
            self.store.update(USERS, self.identity.uid, partial)
        except CapabilityError as e:
            logger.error("Failed to %s wishlist: %s", action, e.message)
            raise WriteThroughError("Failed to update wishlist") from e

    def add(self, product_id: str) -> None:
        self._update({"wishlist": ArrayUnion(product_id)}, "add to")

    def remove(self, product_id: str) -> None:
        self._update({"wishlist": ArrayRemove(product_id)}, "remove from")

    def toggle(self, product_id: str) -> bool:
        """Flip membership; returns True when the product is now liked."""
        if self.contains(product_id):
            self.remove(product_id)
            return False
        self.add(product_id)
        return True

    def clear(self) -> None:
        self._update({"wishlist": []}, "clear")
