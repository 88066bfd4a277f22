# storefront/utils/clock.py
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall clock in epoch milliseconds, shared by every context on one device."""
    return int(time.time() * 1000)
