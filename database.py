"""
Document store for the storefront

Collections hold plain JSON-like documents addressed by string ids. Two
implementations share one interface: MongoDocumentStore (pymongo) and
MemoryDocumentStore (tests, database-less runs). Both deliver live snapshots
to subscribers after every write made through the store.
"""
import threading
from copy import deepcopy
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_URL
from errors import CapabilityError, NotFoundError
from logging_config import get_logger

logger = get_logger("database")

Predicate = Optional[Dict[str, Any]]
SnapshotHandler = Callable[[List[dict]], None]

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def new_id() -> str:
    return str(ObjectId())


class ArrayUnion:
    """Update marker: add each value to an array field unless already present."""

    def __init__(self, *values):
        self.values = list(values)


class ArrayRemove:
    """Update marker: remove every occurrence of each value from an array field."""

    def __init__(self, *values):
        self.values = list(values)


def split_update(partial: Dict[str, Any]) -> Tuple[dict, dict, dict]:
    """Split a partial update into plain sets, array unions and array removals."""
    to_set, to_union, to_remove = {}, {}, {}
    for key, value in partial.items():
        if isinstance(value, ArrayUnion):
            to_union[key] = value.values
        elif isinstance(value, ArrayRemove):
            to_remove[key] = value.values
        else:
            to_set[key] = value
    return to_set, to_union, to_remove


class DocumentStore:
    """Shared subscription bookkeeping; subclasses implement the CRUD calls."""

    def __init__(self):
        self._listeners: List[Tuple[str, Predicate, SnapshotHandler]] = []

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def query(self, collection: str, predicate: Predicate = None) -> List[dict]:
        raise NotImplementedError

    def add(self, collection: str, doc: dict) -> str:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, doc: dict) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def subscribe(self, collection: str, predicate: Predicate, on_snapshot: SnapshotHandler) -> Callable[[], None]:
        """Register a snapshot handler; it fires now and after every write to the collection.

        Nothing is registered when the first snapshot cannot be loaded.
        """
        snapshot = self.query(collection, predicate)
        entry = (collection, predicate, on_snapshot)
        self._listeners.append(entry)
        on_snapshot(snapshot)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        """Deliver fresh snapshots. A failing listener never fails the write that triggered it."""
        for name, predicate, on_snapshot in list(self._listeners):
            if name != collection:
                continue
            try:
                snapshot = self.query(collection, predicate)
            except CapabilityError as e:
                logger.error("Error loading %s snapshot: %s", collection, e.message)
                continue
            try:
                on_snapshot(snapshot)
            except Exception:
                logger.exception("Snapshot listener for %s failed", collection)


def _matches(doc: dict, predicate: Predicate) -> bool:
    for key, cond in (predicate or {}).items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$ne" in cond and value == cond["$ne"]:
                return False
        elif value != cond:
            return False
    return True


class MemoryDocumentStore(DocumentStore):
    """In-process store with the same semantics as the Mongo one.

    Safe to share between request threads; listeners are notified after the
    lock is released.
    """

    def __init__(self):
        super().__init__()
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()

    def _docs(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._docs(collection).get(doc_id)
            if doc is None:
                return None
            return {"id": doc_id, **deepcopy(doc)}

    def query(self, collection, predicate=None):
        results = []
        with self._lock:
            for doc_id, doc in self._docs(collection).items():
                full = {"id": doc_id, **deepcopy(doc)}
                if _matches(full, predicate):
                    results.append(full)
        return results

    def add(self, collection, doc):
        doc_id = new_id()
        with self._lock:
            self._docs(collection)[doc_id] = deepcopy({k: v for k, v in doc.items() if k != "id"})
        self._notify(collection)
        return doc_id

    def set(self, collection, doc_id, doc):
        with self._lock:
            self._docs(collection)[doc_id] = deepcopy({k: v for k, v in doc.items() if k != "id"})
        self._notify(collection)

    def update(self, collection, doc_id, partial):
        to_set, to_union, to_remove = split_update(partial)
        with self._lock:
            doc = self._docs(collection).get(doc_id)
            if doc is None:
                raise NotFoundError(f"No {collection} document with id {doc_id}")
            doc.update(deepcopy(to_set))
            for key, values in to_union.items():
                current = list(doc.get(key) or [])
                for value in values:
                    if value not in current:
                        current.append(deepcopy(value))
                doc[key] = current
            for key, values in to_remove.items():
                doc[key] = [item for item in (doc.get(key) or []) if item not in values]
        self._notify(collection)

    def delete(self, collection, doc_id):
        with self._lock:
            if self._docs(collection).pop(doc_id, None) is None:
                raise NotFoundError(f"No {collection} document with id {doc_id}")
        self._notify(collection)


def _to_key(doc_id: Any):
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return doc_id


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def _mongo_filter(predicate: Predicate) -> dict:
    filter_q = {}
    for key, cond in (predicate or {}).items():
        if key != "id":
            filter_q[key] = cond
        elif isinstance(cond, dict):
            filter_q["_id"] = {
                op: [_to_key(v) for v in value] if isinstance(value, list) else _to_key(value)
                for op, value in cond.items()
            }
        else:
            filter_q["_id"] = _to_key(cond)
    return filter_q


class MongoDocumentStore(DocumentStore):
    """pymongo-backed store. Errors from the driver surface as CapabilityError."""

    def __init__(self, database):
        super().__init__()
        self.db = database

    def get(self, collection, doc_id):
        try:
            return to_str_id(self.db[collection].find_one({"_id": _to_key(doc_id)}))
        except PyMongoError as e:
            raise CapabilityError(f"Failed to load {collection} document: {e}") from e

    def query(self, collection, predicate=None):
        try:
            return [to_str_id(d) for d in self.db[collection].find(_mongo_filter(predicate))]
        except PyMongoError as e:
            raise CapabilityError(f"Failed to query {collection}: {e}") from e

    def add(self, collection, doc):
        payload = {k: v for k, v in doc.items() if k != "id"}
        try:
            inserted = self.db[collection].insert_one(payload).inserted_id
        except PyMongoError as e:
            raise CapabilityError(f"Failed to add {collection} document: {e}") from e
        self._notify(collection)
        return str(inserted)

    def set(self, collection, doc_id, doc):
        payload = {k: v for k, v in doc.items() if k != "id"}
        try:
            self.db[collection].replace_one({"_id": _to_key(doc_id)}, payload, upsert=True)
        except PyMongoError as e:
            raise CapabilityError(f"Failed to save {collection} document: {e}") from e
        self._notify(collection)

    def update(self, collection, doc_id, partial):
        to_set, to_union, to_remove = split_update(partial)
        ops = {}
        if to_set:
            ops["$set"] = to_set
        if to_union:
            ops["$addToSet"] = {k: {"$each": v} for k, v in to_union.items()}
        if to_remove:
            ops["$pull"] = {k: {"$in": v} for k, v in to_remove.items()}
        if not ops:
            return
        try:
            res = self.db[collection].update_one({"_id": _to_key(doc_id)}, ops)
        except PyMongoError as e:
            raise CapabilityError(f"Failed to update {collection} document: {e}") from e
        if res.matched_count == 0:
            raise NotFoundError(f"No {collection} document with id {doc_id}")
        self._notify(collection)

    def delete(self, collection, doc_id):
        try:
            res = self.db[collection].delete_one({"_id": _to_key(doc_id)})
        except PyMongoError as e:
            raise CapabilityError(f"Failed to delete {collection} document: {e}") from e
        if res.deleted_count == 0:
            raise NotFoundError(f"No {collection} document with id {doc_id}")
        self._notify(collection)


def default_store() -> DocumentStore:
    """Mongo when configured, otherwise an in-memory store."""
    if db is not None:
        return MongoDocumentStore(db)
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory document store")
    return MemoryDocumentStore()
