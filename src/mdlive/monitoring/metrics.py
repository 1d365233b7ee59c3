import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

MAX_SAMPLES = 1000  # per metric; counts stay exact


@dataclass
class MetricSummary:
    count: int
    mean: float
    p95: float
    maximum: float


class MetricsTracker:
    def __init__(self):
        self.metrics: Dict[str, Deque[float]] = {
            name: deque(maxlen=MAX_SAMPLES)
            for name in ('preview_latency',  # ms from content load to ready
                         'updates_sent', 'buffered_edits', 'render_html_length')
        }
        self.counts: Dict[str, int] = {}
        self.errors: Dict[str, Deque[str]] = {}
        self.alert_thresholds = {
            'preview_latency': 5000,  # ms
        }
        self._subscribers: List[Callable[[List[str]], None]] = []

    @staticmethod
    def time() -> float:
        return time.monotonic()

    def record(self, name: str, value: float = 1.0):
        """Record one sample for a named metric"""
        self.metrics.setdefault(name, deque(maxlen=MAX_SAMPLES)).append(float(value))
        self.counts[name] = self.counts.get(name, 0) + 1
        threshold = self.alert_thresholds.get(name)
        if threshold is not None and value > threshold:
            self._notify_subscribers([f"{name} above threshold: {value:.0f} > {threshold}"])

    def record_error(self, name: str, message: str):
        self.errors.setdefault(name, deque(maxlen=MAX_SAMPLES)).append(message)

    def count(self, name: str) -> int:
        return self.counts.get(name, 0)

    def summary(self, name: str) -> Optional[MetricSummary]:
        """Count, mean, 95th percentile and maximum of the retained samples, None when empty"""
        samples = self.metrics.get(name)
        if not samples:
            return None
        values = np.asarray(samples, dtype=float)
        return MetricSummary(
            count=int(values.size),
            mean=float(values.mean()),
            p95=float(np.percentile(values, 95)),
            maximum=float(values.max())
        )

    def subscribe(self, callback: Callable[[List[str]], None]):
        """Subscribe to metric alerts"""
        self._subscribers.append(callback)

    def _notify_subscribers(self, alerts: List[str]):
        for subscriber in self._subscribers:
            try:
                subscriber(alerts)
            except Exception as e:
                logger.error(f"Error notifying subscriber: {e}")
