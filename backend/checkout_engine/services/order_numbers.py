# Overview: Human-readable order number allocation without a central sequence.

from __future__ import annotations

import random
import threading
import time

SUFFIX_SPACE = 1000
TIME_WINDOW = 1_000_000


class OrderNumberGenerator:
    """
    Produces numbers shaped ORD-{6 time digits}{3 random digits}.

    The time part is the last six digits of the millisecond clock. Within
    one process a number is never handed out twice: suffixes already used in
    the current millisecond are skipped, and if a millisecond runs out of
    suffixes the time part moves forward by one. Across processes the
    orders.order_number unique constraint is the backstop and checkout
    regenerates on collision.
    """

    prefix = "ORD"

    def __init__(self, clock=time.time, rng: random.Random | None = None):
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self._last_millis = -1
        self._used: set[int] = set()

    def next(self) -> str:
        with self._lock:
            millis = int(self._clock() * 1000)
            if millis > self._last_millis:
                self._last_millis = millis
                self._used = set()
            elif len(self._used) >= SUFFIX_SPACE:
                self._last_millis += 1
                self._used = set()

            suffix = self._draw_suffix()
            self._used.add(suffix)
            time_part = self._last_millis % TIME_WINDOW

        return f"{self.prefix}-{time_part:06d}{suffix:03d}"

    def _draw_suffix(self) -> int:
        # Rejection sampling is fine while the millisecond is sparse
        if len(self._used) < SUFFIX_SPACE // 2:
            while True:
                candidate = self._rng.randrange(SUFFIX_SPACE)
                if candidate not in self._used:
                    return candidate
        remaining = [n for n in range(SUFFIX_SPACE) if n not in self._used]
        return self._rng.choice(remaining)


default_generator = OrderNumberGenerator()
