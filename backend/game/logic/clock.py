"""Wall-clock timestamps shared between clients (epoch milliseconds)."""

import time
from collections.abc import Callable

# Injected wherever tests need to control time.
Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000
