"""In-process counters and millisecond histograms for the import engine.

Everything lives in module state and is flattened by ``get_counters`` into
one ``name -> int`` mapping, so a diagnostics dump (the import script's
summary, a test assertion) needs no knowledge of metric types.
"""

from __future__ import annotations

import contextlib
import time
from collections import Counter
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

DEFAULT_BUCKETS_MS: tuple[int, ...] = (1, 2, 5, 10, 20, 50, 100, 250, 500, 1000, 2000, 5000)


@dataclass
class _Histogram:
    bounds: tuple[int, ...]
    buckets: Counter[str] = field(default_factory=Counter)
    total: int = 0
    count: int = 0

    def observe(self, value: int) -> None:
        label = next((f"le_{ub}" for ub in self.bounds if value <= ub), f"gt_{self.bounds[-1]}")
        self.buckets[label] += 1
        self.total += value
        self.count += 1


_counters: Counter[str] = Counter()
_histograms: dict[str, _Histogram] = {}


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def observe_histogram(name: str, value: int, *, buckets: Sequence[int] | None = None) -> None:
    """Record ``value`` (milliseconds) under ``name``.

    Bucket bounds are fixed by the first observation of a histogram; later
    ``buckets`` arguments for the same name are ignored.
    """
    hist = _histograms.get(name)
    if hist is None:
        hist = _histograms[name] = _Histogram(tuple(buckets or DEFAULT_BUCKETS_MS))
    hist.observe(int(value))


@contextlib.contextmanager
def timed(name: str) -> Iterator[None]:
    """Observe the wall time of the block into histogram ``name``.

    Nothing is recorded when the block raises.
    """
    start = time.perf_counter()
    yield
    observe_histogram(name, int((time.perf_counter() - start) * 1000))


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()


def get_counters() -> dict[str, int]:
    """Return counters plus flattened ``histo.{name}.*`` entries."""
    out = dict(_counters)
    for name, hist in _histograms.items():
        for label, cnt in hist.buckets.items():
            out[f"histo.{name}.{label}"] = cnt
        out[f"histo.{name}.sum"] = hist.total
        out[f"histo.{name}.count"] = hist.count
    return out
