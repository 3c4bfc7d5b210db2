import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from service_common.metrics import MetricsRecorder
from service_common.telemetry import TelemetryBuilder

METRICS_ENDPOINT = "http://collector.test:4318/v1/metrics"


def _collected(reader: InMemoryMetricReader) -> dict:
    data = reader.get_metrics_data()
    return {
        metric.name: metric
        for resource_metrics in data.resource_metrics
        for scope_metrics in resource_metrics.scope_metrics
        for metric in scope_metrics.metrics
    }


@pytest.fixture
def metered(recorder):
    reader = InMemoryMetricReader()
    handle = (
        TelemetryBuilder("families-api")
        .with_metrics_endpoint(METRICS_ENDPOINT)
        .init(handler=recorder, metric_reader=reader)
    )
    yield handle, reader
    handle.shutdown()


def test_full_metric_name_is_service_prefixed(metered):
    handle, _ = metered

    assert MetricsRecorder(handle).full_metric_name("requests") == "families_api_requests"


def test_counter_measurements_are_exported(metered):
    handle, reader = metered
    recorder = MetricsRecorder(handle)

    counter = recorder.create_counter("requests", description="Handled requests")
    counter.add(2, {"route": "/"})
    counter.add(1, {"route": "/"})

    metric = _collected(reader)["families_api_requests"]
    assert metric.description == "Handled requests"
    assert [point.value for point in metric.data.data_points] == [3]


def test_histogram_and_up_down_counter(metered):
    handle, reader = metered
    recorder = MetricsRecorder(handle)

    recorder.create_histogram("render_duration").record(0.25)
    in_flight = recorder.create_up_down_counter("in_flight")
    in_flight.add(2)
    in_flight.add(-1)

    collected = _collected(reader)
    assert collected["families_api_render_duration"].data.data_points[0].count == 1
    assert collected["families_api_in_flight"].data.data_points[0].value == 1


def test_instruments_are_none_when_metering_disabled(recorder):
    handle = TelemetryBuilder("families-api").init(handler=recorder)
    metrics_recorder = MetricsRecorder(handle)

    assert not metrics_recorder.enabled
    assert metrics_recorder.create_counter("requests") is None
    assert metrics_recorder.create_histogram("latency") is None
    assert metrics_recorder.create_up_down_counter("in_flight") is None
