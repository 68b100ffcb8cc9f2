"""Shared fixtures: in-memory capabilities, a controllable clock and sample devices."""

from datetime import datetime, timedelta, timezone

import pytest

from database import MemoryDocumentStore
from errors import CapabilityError
from local_cache import MemoryLocalCache
from session import Identity

START_MS = 1_760_000_000_000
HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FlakyStore(MemoryDocumentStore):
    """Memory store whose updates can be switched to fail like a dropped connection."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def update(self, collection, doc_id, partial):
        if self.fail_writes:
            raise CapabilityError("Network error. Please check your internet connection and try again.")
        super().update(collection, doc_id, partial)


class FlakyCache(MemoryLocalCache):
    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set_item(self, key, value):
        if self.fail_writes:
            raise CapabilityError("Storage is full")
        super().set_item(key, value)


def make_product(product_id, **overrides):
    product = {
        "id": product_id,
        "name": f"Device {product_id}",
        "brand": "Apple",
        "model": "iPhone 15",
        "description": "A phone",
        "price": 100.0,
        "original_price": 100.0,
        "condition": "new",
        "category": "smartphone",
        "color": "Black",
        "storage": "128GB",
        "ram": "6GB",
        "operating_system": "iOS",
        "screen_size": "6.1",
        "battery_capacity": "3000mAh",
        "camera_megapixel": "48MP",
        "rating": 0,
        "featured": False,
        "in_stock": True,
        "seller_id": "seller-1",
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
    product.update(overrides)
    return product


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def cache():
    return FlakyCache()


@pytest.fixture
def catalog_products():
    base = datetime(2025, 3, 1, tzinfo=timezone.utc)
    return [
        make_product("p1", name="iPhone 15 Pro", brand="Apple", model="iPhone 15 Pro", price=900,
                     original_price=1000, color="Natural Titanium", rating=4.8, featured=True,
                     created_at=base),
        make_product("p2", name="Galaxy A54", brand="Samsung", model="Galaxy A54", price=100,
                     color="Awesome Black", operating_system="Android", rating=4.1, condition="good",
                     storage="256GB", created_at=base + timedelta(days=2)),
        make_product("p3", name="Pixel Watch", brand="Google", model="Pixel Watch 2", price=500,
                     category="smartwatch", operating_system="watchOS", color="Silver", rating=None,
                     in_stock=False, created_at=base + timedelta(days=1)),
        make_product("p4", name="iPad Air", brand="Apple", model="iPad Air 5", price=2500,
                     category="tablet", color="Blue", rating=4.5, featured=True, storage="",
                     created_at=base + timedelta(days=3)),
    ]


@pytest.fixture
def seeded_store(store, catalog_products):
    for product in catalog_products:
        store.set("products", product["id"], product)
    return store


@pytest.fixture
def member(store):
    store.set("users", "u1", {"email": "ana@mobilehub.dev", "role": "customer", "cart": [], "wishlist": []})
    return Identity(uid="u1", email="ana@mobilehub.dev")


@pytest.fixture
def admin(store):
    store.set("users", "admin-1", {"email": "boss@mobilehub.dev", "role": "admin", "cart": [], "wishlist": []})
    return Identity(uid="admin-1", email="boss@mobilehub.dev")
