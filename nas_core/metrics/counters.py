"""
Service counters, drop reasons and latency histograms.

Counters cover the event flow of one or more services (events in and out,
requests issued, timed out and superseded, anchors adopted). Every event or
request the service gives up on is recorded under a drop reason so that a
session can be diagnosed from a single summary.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

STANDARD_COUNTERS = (
    'events_in',
    'events_out',
    'events_dropped',
    'requests_issued',
    'request_timeouts',
    'requests_superseded',
    'anchors_colocalized',
    'anchors_created',
)


@dataclass
class CounterSnapshot:
    """Copy of the collector state at one instant."""

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        return sum(self.drop_reasons.values())

    def drop_rate(self, total_events: int) -> float:
        """Dropped share of total_events, in percent."""
        if total_events == 0:
            return 0.0
        return 100.0 * self.total_dropped() / total_events


class MetricsCollector:
    """
    Thread-safe metrics for the network anchor service.

    The relay and the services may record from different threads, so every
    access goes through one lock.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('events_in')
        metrics.increment_drop('unsolicited_response')
        metrics.record_histogram('request_latency_ms', 12.5)
        metrics.print_summary()
    """

    DROP_REASONS = {
        'malformed': 'Payload failed to parse or had empty required fields',
        'unknown_event': 'Event code is not part of the protocol',
        'unsolicited_response': 'Response arrived with no pending request',
        'no_shared_frame': 'Peer answered but shares no coordinate',
        'peer_timeout': 'Peer did not answer before the deadline',
        'no_coordinates': 'Coordinate provider returned nothing',
    }

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._drops: Counter = Counter()
        self._histograms: Dict[str, Deque[float]] = {}
        self._started = time.monotonic()
        self._seed()

    def _seed(self):
        # Report standard keys even when they never moved
        with self._lock:
            for name in STANDARD_COUNTERS:
                self._counters.setdefault(name, 0)
            for reason in self.DROP_REASONS:
                self._drops.setdefault(reason, 0)

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Count a dropped event or abandoned request.

        Args:
            reason: One of DROP_REASONS (others are counted with a warning)
            value: Number of drops
        """
        if reason not in self.DROP_REASONS:
            logger.warning(f"Unknown drop reason '{reason}'")

        with self._lock:
            self._drops[reason] += value
            self._counters['events_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_drop_count(self, reason: str) -> int:
        with self._lock:
            return self._drops.get(reason, 0)

    def record_histogram(self, histogram_name: str, value: float, max_samples: int = 10000):
        """
        Add a sample, keeping only the most recent max_samples.

        The window size is fixed by the first sample recorded for a name.
        """
        with self._lock:
            samples = self._histograms.get(histogram_name)
            if samples is None:
                samples = self._histograms[histogram_name] = deque(maxlen=max_samples)
            samples.append(float(value))

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Summarize a histogram.

        Returns:
            Dict with count, min, max, mean, median, p95 and p99, or None
            when nothing was recorded
        """
        with self._lock:
            samples = np.fromiter(self._histograms.get(histogram_name, ()), dtype=float)

        if samples.size == 0:
            return None

        p50, p95, p99 = np.percentile(samples, [50, 95, 99])
        return {
            'count': int(samples.size),
            'min': float(samples.min()),
            'max': float(samples.max()),
            'mean': float(samples.mean()),
            'median': float(p50),
            'p95': float(p95),
            'p99': float(p99),
        }

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(
                timestamp=time.time(),
                counters=dict(self._counters),
                drop_reasons=dict(self._drops),
                histograms={name: list(samples) for name, samples in self._histograms.items()},
            )

    def reset(self):
        """Forget everything recorded so far."""
        with self._lock:
            self._counters.clear()
            self._drops.clear()
            self._histograms.clear()
            self._started = time.monotonic()
        self._seed()

    def get_uptime(self) -> float:
        """Seconds since creation or the last reset."""
        return time.monotonic() - self._started

    def summary_lines(self) -> List[str]:
        """Human-readable report, one line per entry."""
        snapshot = self.snapshot()
        rule = "-" * 60
        lines = [rule, f"METRICS SUMMARY  uptime {self.get_uptime():.1f}s", rule]

        lines.append("counters")
        lines.extend(f"  {name:<28} {value:>8}" for name, value in sorted(snapshot.counters.items()))

        total = snapshot.total_dropped()
        if total:
            lines.append("drops")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count:
                    lines.append(f"  {reason:<28} {count:>8}  {100.0 * count / total:5.1f}%")

        for name in sorted(snapshot.histograms):
            stats = self.get_histogram_stats(name)
            if stats:
                lines.append(
                    f"{name}: n={stats['count']} mean={stats['mean']:.2f} "
                    f"p95={stats['p95']:.2f} max={stats['max']:.2f}"
                )

        lines.append(rule)
        return lines

    def print_summary(self):
        print("\n".join(self.summary_lines()))
