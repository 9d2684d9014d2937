import threading
import time
from typing import List, Optional, Tuple

import pytest

from nginx_exporter.client import StatusSource, StubConnections, StubStats


class FakeSource(StatusSource):
    """Status source returning a fixed snapshot or raising a fixed error."""

    def __init__(self, stats: Optional[StubStats] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.stats = stats
        self.error = error
        self.delay = delay
        self.calls: List[Tuple[float, float]] = []
        self.closed = False
        self._calls_lock = threading.Lock()

    def fetch(self) -> StubStats:
        start = time.monotonic()
        if self.delay:
            time.sleep(self.delay)
        end = time.monotonic()
        with self._calls_lock:
            self.calls.append((start, end))
        if self.error is not None:
            raise self.error
        return self.stats

    def close(self) -> None:
        self.closed = True


def scenario_a_stats() -> StubStats:
    return StubStats(
        connections=StubConnections(active=5, accepted=100, handled=99, reading=0, writing=1, waiting=4),
        requests=500,
    )


@pytest.fixture
def good_source():
    return FakeSource(stats=scenario_a_stats())


def samples_by_name(families):
    """name -> value for samples without per-sample labels beyond the constant ones."""
    out = {}
    for fam in families:
        for s in fam.samples:
            if "type" in s.labels:
                continue
            out[s.name] = s.value
    return out


def error_counts(families, name="nginx_scrape_errors_total"):
    out = {}
    for fam in families:
        for s in fam.samples:
            if s.name == name:
                out[s.labels["type"]] = s.value
    return out
