"""
Prometheus Metrics for the HelloWorld overlay

Counts admissions, rejections and indexing failures so that errors the
notification path swallows are still visible to operators. Exposed in
Prometheus text format at the REST layer's /metrics endpoint.
"""

import time
from typing import Dict, Optional
from collections import defaultdict

from helloworld.lib import util


class MetricsCollector:
    """
    Collects and exposes Prometheus-compatible metrics.
    """

    def __init__(self, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env
        self.enabled = getattr(env, 'prometheus_enabled', True) if env else True

        # Counters (monotonically increasing)
        self.counters: Dict[str, int] = defaultdict(int)

        # Gauges (can go up or down)
        self.gauges: Dict[str, float] = defaultdict(float)

        # Histograms (for latency measurements)
        self.histograms: Dict[str, list] = defaultdict(list)

        self.start_time = time.time()

        if self.enabled:
            self.logger.info('Prometheus metrics enabled')

    # ========================================================================
    # Counter Methods
    # ========================================================================

    def inc_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        if not self.enabled:
            return
        self.counters[self._make_key(name, labels)] += value

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        """Get current counter value."""
        return self.counters.get(self._make_key(name, labels), 0)

    # ========================================================================
    # Gauge Methods
    # ========================================================================

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge metric value."""
        if not self.enabled:
            return
        self.gauges[self._make_key(name, labels)] = value

    def get_gauge(self, name: str, labels: Dict[str, str] = None) -> float:
        """Get current gauge value."""
        return self.gauges.get(self._make_key(name, labels), 0.0)

    # ========================================================================
    # Histogram Methods
    # ========================================================================

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Record a histogram observation."""
        if not self.enabled:
            return
        key = self._make_key(name, labels)
        self.histograms[key].append(value)
        # Keep only last 1000 observations
        if len(self.histograms[key]) > 1000:
            self.histograms[key] = self.histograms[key][-1000:]

    # ========================================================================
    # Metric Export
    # ========================================================================

    def generate_metrics(self) -> str:
        """Generate Prometheus text format metrics."""
        lines = []
        declared = set()

        def declare(name, kind):
            if name not in declared:
                declared.add(name)
                lines.append(f'# HELP {name} {kind.capitalize()} metric')
                lines.append(f'# TYPE {name} {kind}')

        uptime = time.time() - self.start_time
        declare(MetricNames.UPTIME, 'gauge')
        lines.append(f'{MetricNames.UPTIME} {uptime:.2f}')

        for key, value in sorted(self.counters.items()):
            name, label_str = self._parse_key(key)
            declare(name, 'counter')
            lines.append(f'{name}{label_str} {value}')

        for key, value in sorted(self.gauges.items()):
            name, label_str = self._parse_key(key)
            declare(name, 'gauge')
            lines.append(f'{name}{label_str} {value:.6f}')

        for key, values in sorted(self.histograms.items()):
            if not values:
                continue
            name, label_str = self._parse_key(key)
            declare(name, 'summary')

            count = len(values)
            sorted_vals = sorted(values)
            lines.append(f'{name}_count{label_str} {count}')
            lines.append(f'{name}_sum{label_str} {sum(values):.6f}')
            for q in (0.5, 0.9, 0.99):
                value = sorted_vals[min(count - 1, int(count * q))]
                if label_str:
                    lines.append(f'{name}{{quantile="{q}",{label_str[1:]} {value:.6f}')
                else:
                    lines.append(f'{name}{{quantile="{q}"}} {value:.6f}')

        return '\n'.join(lines) + '\n'

    def _make_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key for a metric with labels."""
        if not labels:
            return name
        label_parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return f"{name}{{{','.join(label_parts)}}}"

    def _parse_key(self, key: str) -> tuple:
        """Parse a key back into name and label string."""
        if '{' in key:
            name = key[:key.index('{')]
            return name, key[key.index('{'):]
        return key, ''


class MetricNames:
    """Standard metric names for the HelloWorld overlay."""

    UPTIME = 'helloworld_uptime_seconds'

    # Admission (topic manager)
    OUTPUTS_ADMITTED = 'helloworld_outputs_admitted_total'
    OUTPUTS_REJECTED = 'helloworld_outputs_rejected_total'

    # Indexing (lookup service)
    RECORDS_STORED = 'helloworld_records_stored_total'
    RECORDS_DELETED = 'helloworld_records_deleted_total'
    RECORDS = 'helloworld_records'
    INDEX_FAILURES = 'helloworld_index_failures_total'

    # Queries
    LOOKUPS = 'helloworld_lookups_total'
    LOOKUP_DURATION = 'helloworld_lookup_seconds'
