import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.trace import StatusCode

from service_common.telemetry import TelemetryBuilder
from service_common.telemetry_utils import (
    convert_to_loggable_string,
    observe,
    tracing_active,
)


@pytest.fixture
def traced(recorder):
    exporter = InMemorySpanExporter()
    handle = (
        TelemetryBuilder("svc")
        .with_tracing_endpoint("http://collector.test:4318/v1/traces")
        .init(handler=recorder, span_exporter=exporter)
    )
    yield handle, exporter
    handle.shutdown()


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        (3, 3),
        (1.5, 1.5),
        ("text", "text"),
        (b"raw", b"raw"),
        ({"a": 1, "b": "two"}, "a: 1\nb: two"),
        ([1, "x"], "1\nx"),
        (None, "None"),
    ],
)
def test_convert_to_loggable_string(value, expected):
    assert convert_to_loggable_string(value) == expected


def test_observe_runs_plainly_without_tracing():
    @observe("add")
    def add(a, b):
        return a + b

    assert not tracing_active()
    assert add(1, 2) == 3


def test_observe_emits_span(traced):
    handle, exporter = traced

    @observe("lookup", record_args=True)
    def lookup(key, default=None):
        return default

    assert lookup("k", default={"x": 1}) == {"x": 1}
    handle.force_flush()

    (span,) = exporter.get_finished_spans()
    assert span.name == "lookup"
    assert span.attributes["arg.default"] == "x: 1"


def test_observe_records_exceptions(traced):
    handle, exporter = traced

    @observe("explode")
    def explode():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        explode()
    handle.force_flush()

    (span,) = exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert span.events[0].name == "exception"
