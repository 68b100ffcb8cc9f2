"""Tests for the in-memory document store and the local caches."""

import threading

import pytest

from database import ArrayRemove, ArrayUnion, MemoryDocumentStore, split_update
from errors import CapabilityError, NotFoundError
from local_cache import FileLocalCache, MemoryLocalCache, NamespacedCache


@pytest.fixture
def mem_store():
    return MemoryDocumentStore()


class TestMemoryDocumentStore:
    def test_add_get_round_trip(self, mem_store):
        doc_id = mem_store.add("products", {"name": "Pixel", "price": 500})
        assert mem_store.get("products", doc_id) == {"id": doc_id, "name": "Pixel", "price": 500}
        assert mem_store.get("products", "missing") is None

    def test_returned_documents_are_copies(self, mem_store):
        mem_store.set("users", "u1", {"cart": []})
        doc = mem_store.get("users", "u1")
        doc["cart"].append({"product_id": "p1"})
        assert mem_store.get("users", "u1")["cart"] == []

    def test_query_predicates(self, mem_store):
        mem_store.set("products", "a", {"brand": "Apple", "price": 1})
        mem_store.set("products", "b", {"brand": "Samsung", "price": 2})
        mem_store.set("products", "c", {"brand": "Apple", "price": 3})
        assert [d["id"] for d in mem_store.query("products", {"brand": "Apple"})] == ["a", "c"]
        assert [d["id"] for d in mem_store.query("products", {"id": {"$in": ["b", "c", "zz"]}})] == ["b", "c"]
        assert [d["id"] for d in mem_store.query("products", {"brand": {"$ne": "Apple"}})] == ["b"]
        assert len(mem_store.query("products")) == 3

    def test_array_union_skips_existing_values(self, mem_store):
        mem_store.set("users", "u1", {"wishlist": ["p1"]})
        mem_store.update("users", "u1", {"wishlist": ArrayUnion("p1", "p2")})
        assert mem_store.get("users", "u1")["wishlist"] == ["p1", "p2"]

    def test_array_union_creates_missing_field(self, mem_store):
        mem_store.set("users", "u1", {})
        mem_store.update("users", "u1", {"cart": ArrayUnion({"product_id": "p1", "quantity": 1})})
        assert mem_store.get("users", "u1")["cart"] == [{"product_id": "p1", "quantity": 1}]

    def test_array_remove(self, mem_store):
        mem_store.set("users", "u1", {"wishlist": ["p1", "p2", "p1"]})
        mem_store.update("users", "u1", {"wishlist": ArrayRemove("p1")})
        assert mem_store.get("users", "u1")["wishlist"] == ["p2"]

    def test_update_and_delete_missing_raise(self, mem_store):
        with pytest.raises(NotFoundError):
            mem_store.update("users", "ghost", {"name": "x"})
        with pytest.raises(NotFoundError):
            mem_store.delete("users", "ghost")

    def test_subscribe_delivers_snapshots_until_unsubscribed(self, mem_store):
        snapshots = []
        unsubscribe = mem_store.subscribe("products", None, lambda docs: snapshots.append(len(docs)))
        doc_id = mem_store.add("products", {"name": "a"})
        mem_store.update("products", doc_id, {"name": "b"})
        mem_store.add("users", {"name": "not a product"})
        mem_store.delete("products", doc_id)
        unsubscribe()
        mem_store.add("products", {"name": "c"})
        assert snapshots == [0, 1, 1, 0]

    def test_subscribe_applies_predicate(self, mem_store):
        snapshots = []
        mem_store.subscribe("products", {"featured": True}, lambda docs: snapshots.append([d["name"] for d in docs]))
        mem_store.add("products", {"name": "plain", "featured": False})
        mem_store.add("products", {"name": "star", "featured": True})
        assert snapshots[-1] == ["star"]

    def test_failed_first_snapshot_registers_nothing(self, mem_store, monkeypatch):
        def offline(collection, predicate=None):
            raise CapabilityError("offline")

        monkeypatch.setattr(mem_store, "query", offline)
        with pytest.raises(CapabilityError):
            mem_store.subscribe("products", None, lambda docs: None)
        assert mem_store._listeners == []

    def test_failing_listener_does_not_fail_the_write(self, mem_store):
        def broken(docs):
            if docs:
                raise KeyError("price")

        healthy = []
        mem_store.subscribe("products", None, broken)
        mem_store.subscribe("products", None, lambda docs: healthy.append(len(docs)))
        doc_id = mem_store.add("products", {"name": "Pixel"})
        assert mem_store.get("products", doc_id)["name"] == "Pixel"
        assert healthy == [0, 1]


class TestConcurrentAccess:
    """Request handlers share one store and one cache across worker threads."""

    def test_reads_during_writes(self, mem_store):
        errors = []
        ids = [mem_store.add("products", {"name": f"seed {i}"}) for i in range(5)]
        mem_store.subscribe("products", None, lambda docs: None)

        def writer():
            try:
                for i in range(500):
                    mem_store.add("products", {"name": f"device {i}"})
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(500):
                    mem_store.query("products", {"id": {"$in": ids}})
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert errors == []
        assert len(mem_store.query("products")) == 505

    def test_file_cache_writes_from_many_threads(self, tmp_path):
        cache = FileLocalCache(tmp_path / "storage.json")
        errors = []

        def worker(n):
            try:
                for i in range(50):
                    cache.set_item(f"device-{n}:cart", str(i))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert errors == []
        reopened = FileLocalCache(tmp_path / "storage.json")
        assert [reopened.get_item(f"device-{n}:cart") for n in range(4)] == ["49"] * 4


def test_split_update():
    to_set, to_union, to_remove = split_update({"name": "x", "tags": ArrayUnion("a"), "likes": ArrayRemove("b")})
    assert to_set == {"name": "x"}
    assert to_union == {"tags": ["a"]}
    assert to_remove == {"likes": ["b"]}


class TestLocalCaches:
    def test_memory_cache(self):
        cache = MemoryLocalCache()
        assert cache.get_item("k") is None
        cache.set_item("k", "v")
        assert cache.get_item("k") == "v"
        cache.remove_item("k")
        cache.remove_item("k")
        assert cache.get_item("k") is None

    def test_file_cache_survives_restart(self, tmp_path):
        path = tmp_path / "cache" / "storage.json"
        FileLocalCache(path).set_item("cart", '{"items": []}')
        reopened = FileLocalCache(path)
        assert reopened.get_item("cart") == '{"items": []}'
        reopened.remove_item("cart")
        assert FileLocalCache(path).get_item("cart") is None

    def test_file_cache_rejects_corrupt_file(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("garbage")
        with pytest.raises(CapabilityError):
            FileLocalCache(path)

    def test_namespaces_are_isolated(self):
        shared = MemoryLocalCache()
        phone = NamespacedCache(shared, "phone")
        tablet = NamespacedCache(shared, "tablet")
        phone.set_item("cart", "1")
        assert tablet.get_item("cart") is None
        assert shared.get_item("phone:cart") == "1"
