"""
Shopping cart shared by guests and members.

Guests keep their cart on the device (local cache blob with a sliding 3 hour
expiry). Members keep it on their user document as a list of
``{product_id, quantity}`` lines joined against the products collection on
load. Mutations update the in-memory lines first and then write through; a
failed write is reported but never rolled back.
"""
import json
import time
from copy import deepcopy
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from catalog import as_number
from config import GUEST_CART_KEY, GUEST_CART_TTL_MS, MERGE_GUEST_CART_ON_LOGIN
from database import ArrayUnion
from errors import CapabilityError, NotFoundError, ValidationError, WriteThroughError
from logging_config import get_logger
from schemas import CartLine

logger = get_logger("cart")

USERS = "users"
PRODUCTS = "products"


def now_ms() -> int:
    return int(time.time() * 1000)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _collapse(lines: List[dict]) -> List[dict]:
    """Merge lines sharing a product_id, keeping the first position.

    Raises ValueError (or TypeError) when the stored lines are malformed.
    """
    if not isinstance(lines, list):
        raise ValueError(f"cart lines must be a list, got {type(lines).__name__}")
    merged = {}
    for line in lines:
        if not isinstance(line, dict):
            raise ValueError(f"cart line must be an object, got {type(line).__name__}")
        pid = line.get("product_id")
        quantity = int(line.get("quantity") or 0)
        if not pid or quantity <= 0:
            continue
        if pid in merged:
            merged[pid]["quantity"] += quantity
        else:
            merged[pid] = {**line, "quantity": quantity}
    return list(merged.values())


class CartEngine:
    def __init__(
        self,
        store,
        cache,
        clock: Callable[[], int] = now_ms,
        cache_key: str = GUEST_CART_KEY,
        ttl_ms: int = GUEST_CART_TTL_MS,
        merge_on_login: bool = MERGE_GUEST_CART_ON_LOGIN,
    ):
        self.store = store
        self.cache = cache
        self.clock = clock
        self.cache_key = cache_key
        self.ttl_ms = ttl_ms
        self.merge_on_login = merge_on_login
        self.identity = None
        self.error: Optional[str] = None
        self._lines: List[dict] = []

    @property
    def is_guest(self) -> bool:
        return self.identity is None

    @property
    def lines(self) -> List[dict]:
        return deepcopy(self._lines)

    def item_count(self) -> int:
        return len(self._lines)

    def total(self) -> float:
        return sum(as_number((line.get("product") or {}).get("price")) * line["quantity"] for line in self._lines)

    # Loading

    def load(self, identity=None) -> List[dict]:
        """Replace the in-memory cart with the stored one for ``identity`` (None = guest)."""
        self.identity = identity
        self.error = None
        try:
            self._lines = self._load_guest() if identity is None else self._load_member()
        except CapabilityError as e:
            logger.error("Error loading cart: %s", e.message)
            self.error = "Failed to load cart"
            self._lines = []
        return self.lines

    def _load_guest(self) -> List[dict]:
        stored = self.cache.get_item(self.cache_key)
        if not stored:
            return []
        try:
            blob = json.loads(stored)
            if not isinstance(blob, dict):
                raise ValueError(f"expected an object, got {type(blob).__name__}")
            timestamp = int(blob.get("timestamp") or 0)
            lines = _collapse(blob.get("items") or [])
            if any(not isinstance(line.get("product"), dict) for line in lines):
                raise ValueError("guest cart line without a product copy")
        except (TypeError, ValueError) as e:
            # an unreadable blob would never expire on its own
            self.cache.remove_item(self.cache_key)
            logger.warning("Guest cart is unreadable, discarded", extra={"event_type": "guest_cart_discarded"})
            raise CapabilityError(f"Guest cart is unreadable: {e}") from e
        if self.clock() - timestamp > self.ttl_ms:
            self.cache.remove_item(self.cache_key)
            logger.info("Guest cart expired, discarded", extra={"event_type": "guest_cart_expired"})
            return []
        return lines

    def _load_member(self) -> List[dict]:
        user = self.store.get(USERS, self.identity.uid)
        try:
            cart = _collapse((user or {}).get("cart") or [])
        except (TypeError, ValueError) as e:
            raise CapabilityError(f"Stored cart is unreadable: {e}") from e
        if not cart:
            return []
        product_ids = [line["product_id"] for line in cart]
        products = {p["id"]: p for p in self.store.query(PRODUCTS, {"id": {"$in": product_ids}})}
        # lines whose product is gone drop out silently
        return [{**line, "product": products[line["product_id"]]} for line in cart if line["product_id"] in products]

    # Write-through

    def _stored_line(self, line: dict) -> dict:
        return CartLine(
            product_id=line["product_id"], quantity=line["quantity"], added_at=line.get("added_at")
        ).model_dump(exclude_none=True)

    def _save_guest(self) -> None:
        blob = {
            "items": [
                {"product_id": l["product_id"], "quantity": l["quantity"], "product": l.get("product")}
                for l in self._lines
            ],
            "timestamp": self.clock(),
        }
        self.cache.set_item(self.cache_key, json.dumps(blob, default=_json_default))

    def _write(self, partial: Optional[dict] = None) -> None:
        """Persist the current lines; ``partial`` overrides the member cart update."""
        try:
            if self.identity is None:
                if self._lines:
                    self._save_guest()
                else:
                    self.cache.remove_item(self.cache_key)
            else:
                if partial is None:
                    partial = {"cart": [self._stored_line(l) for l in self._lines]}
                self.store.update(USERS, self.identity.uid, partial)
        except CapabilityError as e:
            logger.warning("Cart write-through failed, keeping local state: %s", e.message)
            raise WriteThroughError("Failed to update cart") from e

    def _find(self, product_id: str) -> Optional[dict]:
        for line in self._lines:
            if line["product_id"] == product_id:
                return line
        return None

    # Commands

    def add(self, product: dict, quantity: int = 1) -> None:
        """Add a product; a product already in the cart gets its quantity bumped."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        existing = self._find(product["id"])
        if existing:
            existing["quantity"] += quantity
            self._write()
            return
        added_at = datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc)
        line = {"product_id": product["id"], "quantity": quantity, "added_at": added_at, "product": deepcopy(product)}
        self._lines.append(line)
        if self.identity is None:
            self._write()
        else:
            self._write({"cart": ArrayUnion(self._stored_line(line))})

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        line = self._find(product_id)
        if line is None:
            raise NotFoundError("This device is not in your cart")
        line["quantity"] = quantity
        self._write()

    def remove(self, product_id: str) -> None:
        if self._find(product_id) is None:
            return
        self._lines = [line for line in self._lines if line["product_id"] != product_id]
        self._write()

    def clear(self) -> None:
        self._lines = []
        self._write()

    # Guest -> member

    def merge_guest_cart(self) -> int:
        """Fold the device's guest cart into the member cart and drop the blob.

        Only runs when asked to (or on login with merge_on_login); by default
        a guest cart stays on the device after signing in.
        """
        if self.identity is None:
            raise ValidationError("Sign in to keep your guest cart")
        guest_lines = self._load_guest()
        for guest_line in guest_lines:
            existing = self._find(guest_line["product_id"])
            if existing:
                existing["quantity"] += guest_line["quantity"]
            else:
                self._lines.append(deepcopy(guest_line))
        if guest_lines:
            self._write()
            self.cache.remove_item(self.cache_key)
            logger.info("Merged %d guest cart lines into member cart", len(guest_lines))
        return len(guest_lines)

    def bind(self, session) -> Callable[[], None]:
        """Reload whenever the session identity changes. Returns the unsubscribe function."""

        def on_change(identity):
            was_guest = self.identity is None
            self.load(identity)
            if self.merge_on_login and was_guest and identity is not None:
                try:
                    self.merge_guest_cart()
                except CapabilityError as e:
                    logger.error("Could not merge guest cart: %s", e.message)
                    self.error = e.message

        return session.subscribe(on_change)
