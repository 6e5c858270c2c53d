"""
Metrics Module: Diagnostics, counters, histograms.

- Counters: events_in, events_out, requests_issued, request_timeouts, etc.
- Histograms: request_latency_ms
- Drop reason codes for every discarded event

Usage:
    from nas_core.metrics import get_metrics

    metrics = get_metrics()
    metrics.increment('events_in')
    metrics.increment_drop('malformed')
    metrics.record_histogram('request_latency_ms', 12.5)
"""

from .counters import MetricsCollector, CounterSnapshot

# Global singleton for easy access
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """
    Get the global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    global _global_metrics
    _global_metrics = MetricsCollector()


__all__ = ['MetricsCollector', 'CounterSnapshot', 'get_metrics', 'reset_metrics']
