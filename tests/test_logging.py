"""Tests for the JSONL log output."""

import json
import logging

from cart import CartEngine
from config import GUEST_CART_KEY
from database import MemoryDocumentStore
from local_cache import MemoryLocalCache
from logging_config import get_logger, setup_logging
from tests.conftest import HOUR_MS, FakeClock, make_product


def read_records(log_dir):
    records = []
    for path in sorted(log_dir.glob("mobilehub_*.jsonl")):
        with open(path, encoding="utf-8") as f:
            records.extend(json.loads(line) for line in f if line.strip())
    return records


class TestJSONLFile:
    def test_records_carry_event_type_when_given(self, tmp_path):
        setup_logging(level=logging.INFO, log_to_console=False, log_to_file=True, log_dir=tmp_path)
        try:
            get_logger("test").info("plain message")
            get_logger("test").info("tagged message", extra={"event_type": "order_placed"})
        finally:
            setup_logging(level=logging.INFO, log_to_console=False, log_to_file=False)
        plain, tagged = read_records(tmp_path)
        assert plain["logger"] == "mobilehub.test"
        assert "event_type" not in plain
        assert tagged["event_type"] == "order_placed"
        assert tagged["message"] == "tagged message"

    def test_guest_cart_expiry_is_logged_as_event(self, tmp_path):
        setup_logging(level=logging.INFO, log_to_console=False, log_to_file=True, log_dir=tmp_path)
        try:
            clock = FakeClock()
            cache = MemoryLocalCache()
            cart = CartEngine(MemoryDocumentStore(), cache, clock=clock)
            cart.load(None)
            cart.add(make_product("p1"))
            clock.advance(4 * HOUR_MS)
            CartEngine(cart.store, cache, clock=clock).load(None)
        finally:
            setup_logging(level=logging.INFO, log_to_console=False, log_to_file=False)
        events = [r.get("event_type") for r in read_records(tmp_path)]
        assert "guest_cart_expired" in events
        assert cache.get_item(GUEST_CART_KEY) is None
