import random
from typing import List

import pytest

import config

# No file handlers or transaction log files during tests
config.LOG_FILE = None
config.TX_LOG_FILE = None

from transaction_logger import TransactionLogger  # noqa: E402


class FakeSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FixedRandom(random.Random):
    """uniform() always returns the same point of the range (0.0 = low, 1.0 = high)."""

    def __init__(self, point: float = 0.5):
        super().__init__(0)
        self.point = point

    def uniform(self, a, b):
        return a + (b - a) * self.point


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def tx_logger():
    return TransactionLogger(log_file=None)
