import logging

import pytest
from opentelemetry import trace
from opentelemetry.metrics import _internal as metrics_internal
from opentelemetry.util._once import Once

from service_common import telemetry

TELEMETRY_ENV_VARS = ["LOG_LEVEL", "METRICS_ENDPOINT", "TRACING_ENDPOINT", "SERVICE_VERSION"]


class RecordingHandler(logging.Handler):
    """Keeps every record it receives, in place of the stdout handler."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self, logger_name: str) -> list[str]:
        return [r.getMessage() for r in self.records if r.name == logger_name]


def _reset_otel_globals():
    # The SDK only allows one global provider per process
    trace._TRACER_PROVIDER_SET_ONCE = Once()
    trace._TRACER_PROVIDER = None
    metrics_internal._METER_PROVIDER_SET_ONCE = Once()
    metrics_internal._METER_PROVIDER = None


def _release_subscriber():
    handler = telemetry._INSTALLED_HANDLER
    if handler is not None:
        logging.getLogger().removeHandler(handler)
        telemetry._INSTALLED_HANDLER = None


@pytest.fixture(autouse=True)
def clean_telemetry_state(monkeypatch):
    for name in TELEMETRY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    root_level = logging.getLogger().level
    _reset_otel_globals()
    _release_subscriber()

    yield

    _release_subscriber()
    _reset_otel_globals()
    logging.getLogger().setLevel(root_level)


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def template_dir(tmp_path):
    root = tmp_path / "templates"
    (root / "pages").mkdir(parents=True)
    (root / "index.html").write_text("<title>{{ title }}</title>")
    (root / "pages" / "about.html").write_text(
        "<script src=\"{{ digest_asset('app.js') }}\"></script>"
    )
    (root / "assets.html").write_text(
        "{{ digest_asset('app.js') }}|{{ digest_asset('app.js') }}"
    )
    (root / "notes.txt").write_text("{{ not a template")
    return root
