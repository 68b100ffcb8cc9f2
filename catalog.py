"""
Catalog filtering, sorting and facet discovery.

recompute() is a pure function over a product snapshot; CatalogFeed keeps
the live snapshot from the products collection together with the shopper's
search text, filters and sort key, and recomputes on every change.
"""
import math
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from config import PRICE_RANGE_MAX
from errors import CapabilityError
from logging_config import get_logger
from schemas import FilterState

logger = get_logger("catalog")

PRODUCTS = "products"

SEARCH_FIELDS = ("name", "brand", "description", "model", "category", "operating_system")

# filter attribute -> (product field, substring match)
SET_FILTERS = {
    "brands": ("brand", False),
    "models": ("model", True),
    "conditions": ("condition", False),
    "categories": ("category", False),
    "colors": ("color", True),
    "storages": ("storage", False),
    "rams": ("ram", False),
    "operating_systems": ("operating_system", False),
    "screen_sizes": ("screen_size", False),
    "battery_capacities": ("battery_capacity", False),
    "camera_megapixels": ("camera_megapixel", False),
}


def as_number(value) -> float:
    """Numeric view of a price/rating field; anything unusable counts as 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


def _created_at(product: dict) -> float:
    value = product.get("created_at")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value / 1000  # epoch ms
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return float("-inf")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return float("-inf")


def matches_search(product: dict, search_text: str) -> bool:
    if not search_text:
        return True
    needle = search_text.lower()
    for field in SEARCH_FIELDS:
        value = product.get(field)
        if isinstance(value, str) and needle in value.lower():
            return True
    return False


def matches_filters(product: dict, filters: FilterState) -> bool:
    for attr, (field, fuzzy) in SET_FILTERS.items():
        wanted = getattr(filters, attr)
        if not wanted:
            continue
        value = product.get(field)
        if fuzzy:
            if not isinstance(value, str) or not value:
                return False
            if not any(member.lower() in value.lower() for member in wanted):
                return False
        elif value not in wanted:
            return False

    price = as_number(product.get("price"))
    if price < filters.price_range.min:
        return False
    if filters.price_range.max != PRICE_RANGE_MAX and price > filters.price_range.max:
        return False

    if filters.rating and as_number(product.get("rating")) < filters.rating:
        return False
    if filters.featured and not product.get("featured"):
        return False
    if filters.in_stock and product.get("in_stock") is False:
        return False
    return True


def sort_products(products: List[dict], sort_key: str) -> List[dict]:
    # list.sort is stable, also with reverse=True
    ordered = list(products)
    if sort_key == "newest":
        ordered.sort(key=_created_at, reverse=True)
    elif sort_key == "priceHigh":
        ordered.sort(key=lambda p: as_number(p.get("price")), reverse=True)
    elif sort_key == "priceLow":
        ordered.sort(key=lambda p: as_number(p.get("price")))
    elif sort_key == "rating":
        ordered.sort(key=lambda p: as_number(p.get("rating")), reverse=True)
    elif sort_key == "featured":
        ordered.sort(key=lambda p: 0 if p.get("featured") else 1)
    return ordered


def recompute(
    products: Iterable[dict],
    search_text: str = "",
    filters: Optional[FilterState] = None,
    sort_key: str = "newest",
) -> List[dict]:
    """Visible product list for the given search text, filters and sort key."""
    filters = filters or FilterState()
    filtered = [p for p in products if matches_search(p, search_text) and matches_filters(p, filters)]
    return sort_products(filtered, sort_key)


def active_filter_count(filters: FilterState) -> int:
    count = sum(len(getattr(filters, attr)) for attr in SET_FILTERS)
    if filters.rating > 0:
        count += 1
    if filters.featured:
        count += 1
    if filters.in_stock:
        count += 1
    if filters.price_range.min > 0 or filters.price_range.max < PRICE_RANGE_MAX:
        count += 1
    return count


def unique_values(products: Iterable[dict]) -> Dict[str, List[str]]:
    """Distinct non-empty values per facet, sorted, keyed like FilterState."""
    products = list(products)
    facets = {}
    for attr, (field, _) in SET_FILTERS.items():
        values = {p.get(field) for p in products if p.get(field)}
        facets[attr] = sorted(values, key=str)
    return facets


def discount_percentage(product: dict) -> int:
    price = as_number(product.get("price"))
    original = as_number(product.get("original_price"))
    if original > price:
        return math.floor((original - price) / original * 100 + 0.5)
    return 0


class CatalogFeed:
    """Live view of the catalog for one shopper."""

    def __init__(self, store):
        self.store = store
        self.products: List[dict] = []
        self.visible: List[dict] = []
        self.search_text = ""
        self.filters = FilterState()
        self.sort_key = "newest"
        self.error: Optional[str] = None
        self._listeners: List[Callable[[List[dict]], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        try:
            self._unsubscribe = self.store.subscribe(PRODUCTS, None, self._on_snapshot)
        except CapabilityError as e:
            logger.error("Error setting up products listener: %s", e.message)
            self.error = "Failed to load devices"

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def subscribe(self, on_change: Callable[[List[dict]], None]) -> Callable[[], None]:
        self._listeners.append(on_change)

        def unsubscribe():
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    def _on_snapshot(self, products: List[dict]) -> None:
        self.products = products
        self.error = None
        self._refresh()

    def _refresh(self) -> None:
        self.visible = recompute(self.products, self.search_text, self.filters, self.sort_key)
        for listener in list(self._listeners):
            listener(self.visible)

    def set_search(self, search_text: str) -> None:
        self.search_text = search_text or ""
        self._refresh()

    def set_filters(self, filters: FilterState) -> None:
        self.filters = filters
        self._refresh()

    def set_sort(self, sort_key: str) -> None:
        self.sort_key = sort_key
        self._refresh()

    def clear_filters(self) -> None:
        self.filters = FilterState()
        self.search_text = ""
        self.sort_key = "newest"
        self._refresh()

    def active_filter_count(self) -> int:
        return active_filter_count(self.filters)

    def facets(self) -> Dict[str, List[str]]:
        return unique_values(self.products)
