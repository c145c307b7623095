"""Tests for the Prometheus metrics collector."""

from types import SimpleNamespace

from helloworld.server.metrics import MetricNames, MetricsCollector


def test_counters_with_labels():
    metrics = MetricsCollector()
    metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': 'decode'})
    metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': 'decode'})
    metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': 'verify'})
    assert metrics.get_counter(MetricNames.OUTPUTS_REJECTED, {'reason': 'decode'}) == 2
    assert metrics.get_counter(MetricNames.OUTPUTS_REJECTED, {'reason': 'verify'}) == 1
    assert metrics.get_counter(MetricNames.OUTPUTS_REJECTED) == 0


def test_disabled_collector_records_nothing():
    metrics = MetricsCollector(SimpleNamespace(prometheus_enabled=False))
    metrics.inc_counter(MetricNames.LOOKUPS)
    metrics.set_gauge('g', 1.0)
    metrics.observe_histogram(MetricNames.LOOKUP_DURATION, 0.1)
    assert metrics.get_counter(MetricNames.LOOKUPS) == 0
    assert metrics.get_gauge('g') == 0.0
    assert not metrics.histograms


def test_text_format_declares_each_metric_once():
    metrics = MetricsCollector()
    metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': 'decode'})
    metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': 'verify'})
    metrics.observe_histogram(MetricNames.LOOKUP_DURATION, 0.25)
    text = metrics.generate_metrics()

    assert text.count(f'# TYPE {MetricNames.OUTPUTS_REJECTED} counter') == 1
    assert f'{MetricNames.OUTPUTS_REJECTED}{{reason="decode"}} 1' in text
    assert f'{MetricNames.LOOKUP_DURATION}_count 1' in text
    assert f'{MetricNames.LOOKUP_DURATION}{{quantile="0.5"}} 0.250000' in text
    assert text.endswith('\n')


def test_histogram_keeps_last_thousand():
    metrics = MetricsCollector()
    for i in range(1200):
        metrics.observe_histogram(MetricNames.LOOKUP_DURATION, float(i))
    values = metrics.histograms[MetricNames.LOOKUP_DURATION]
    assert len(values) == 1000
    assert values[0] == 200.0
