"""Order number format, uniqueness and collision regeneration."""

import random
import re
import threading

import pytest

from checkout_engine.errors import TransientError
from checkout_engine.extensions import db
from checkout_engine.models import Order, Product
from checkout_engine.services.checkout_service import place_order
from checkout_engine.services.order_numbers import OrderNumberGenerator

from conftest import make_request


ORDER_NUMBER_RE = re.compile(r"^ORD-\d{9}$")


class FrozenClock:
    def __init__(self, now=1_700_000_123.5):
        self.now = now

    def __call__(self):
        return self.now


class ScriptedGenerator:
    """Hands out a fixed sequence of order numbers."""

    def __init__(self, numbers):
        self.numbers = list(numbers)
        self.calls = 0

    def next(self):
        self.calls += 1
        if len(self.numbers) > 1:
            return self.numbers.pop(0)
        return self.numbers[0]


class TestGenerator:

    def test_format(self):
        number = OrderNumberGenerator().next()
        assert ORDER_NUMBER_RE.match(number), number

    def test_time_part_is_last_six_millisecond_digits(self):
        generator = OrderNumberGenerator(clock=FrozenClock(1_700_000_123.5))
        assert generator.next().startswith("ORD-123500")

    def test_ten_thousand_numbers_are_unique(self):
        generator = OrderNumberGenerator()
        numbers = [generator.next() for _ in range(10_000)]
        assert len(set(numbers)) == 10_000

    def test_unique_even_with_frozen_clock(self):
        # 1000 suffixes per millisecond; the rest spill into later milliseconds
        generator = OrderNumberGenerator(clock=FrozenClock(), rng=random.Random(42))
        numbers = [generator.next() for _ in range(2_500)]

        assert len(set(numbers)) == 2_500
        assert all(ORDER_NUMBER_RE.match(n) for n in numbers)
        assert {n[4:10] for n in numbers} == {"123500", "123501", "123502"}

    def test_unique_across_threads(self):
        generator = OrderNumberGenerator()
        results = []
        lock = threading.Lock()

        def worker():
            local = [generator.next() for _ in range(500)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4_000
        assert len(set(results)) == 4_000


class TestCollisionRetry:

    def test_collision_regenerates_number(self, db_session, tee):
        first = place_order(make_request([(tee.id, 1)]), number_generator=ScriptedGenerator(["ORD-000000001"]))
        assert first.order_number == "ORD-000000001"

        generator = ScriptedGenerator(["ORD-000000001", "ORD-000000002"])
        second = place_order(make_request([(tee.id, 1)]), number_generator=generator)

        assert second.order_number == "ORD-000000002"
        assert generator.calls == 2
        assert db_session.query(Order).count() == 2
        assert db_session.get(Product, tee.id).stock == 8

    def test_exhausted_attempts_raise_transient_and_write_nothing(self, app, db_session, tee):
        place_order(make_request([(tee.id, 1)]), number_generator=ScriptedGenerator(["ORD-000000001"]))

        generator = ScriptedGenerator(["ORD-000000001"])
        with pytest.raises(TransientError):
            place_order(make_request([(tee.id, 2)]), number_generator=generator)

        assert generator.calls == app.config["ORDER_NUMBER_MAX_ATTEMPTS"]
        assert db_session.query(Order).count() == 1
        assert db_session.get(Product, tee.id).stock == 9
