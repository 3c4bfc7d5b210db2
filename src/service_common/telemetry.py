"""
Process-wide telemetry bootstrap for services using `service_common`.

This module defines `TelemetryBuilder`, which turns a `TelemetryConfig` into
an active observability stack (log subscriber, trace pipeline, metrics
pipeline), and `TelemetryHandle`, the object returned once that stack is up.
The handle owns the installed providers and is what the host application
shuts down on exit.

Typical use at process start::

    handle = TelemetryBuilder("families-api").init()
    ...
    handle.shutdown()
"""

import logging
import sys
from threading import Lock
from types import TracebackType
from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.metrics import Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import Tracer
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from service_common.errors import (
    ConfigurationError,
    ExporterError,
    ShutdownError,
    SubscriberError,
)
from service_common.telemetry_config import LogLevel, TelemetryConfig

_LOGGER = logging.getLogger(__name__)

# The one log handler installed for this process, if any.
_LOCK = Lock()
_INSTALLED_HANDLER: Optional[logging.Handler] = None

_ENDPOINT_ADAPTER = TypeAdapter(AnyHttpUrl)


class TraceContextFilter(logging.Filter):
    """Adds the active trace and span ids to log records.

    Records emitted outside a span get empty strings so formatters can
    reference ``%(trace_id)s`` unconditionally.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = ""
            record.span_id = ""
        return True


def subscriber_installed() -> bool:
    """Return whether a log subscriber is installed for this process."""
    return _INSTALLED_HANDLER is not None


def _validate_endpoint(endpoint: str, pipeline: str) -> None:
    """Check that ``endpoint`` is an absolute http(s) URL.

    :param endpoint: Endpoint taken from configuration.
    :type endpoint: str
    :param pipeline: Pipeline name used in the error message.
    :type pipeline: str
    :raises ExporterError: If the endpoint is malformed.
    """
    try:
        _ENDPOINT_ADAPTER.validate_python(endpoint)
    except ValidationError as exc:
        raise ExporterError(
            f"Malformed {pipeline} endpoint {endpoint!r}: {exc.errors()[0]['msg']}"
        ) from exc


class TelemetryHandle:
    """The activated telemetry state for one process.

    Returned by `TelemetryBuilder.init`. Use `shutdown` (or the handle as a
    context manager) to flush and release everything the builder installed.

    :param config: Configuration the stack was built from.
    :type config: TelemetryConfig
    """

    def __init__(
        self,
        config: TelemetryConfig,
        handler: Optional[logging.Handler] = None,
        previous_root_level: Optional[int] = None,
        tracer_provider: Optional[TracerProvider] = None,
        meter_provider: Optional[MeterProvider] = None,
    ) -> None:
        self.config = config
        self.handler = handler
        self.tracer_provider = tracer_provider
        self.meter_provider = meter_provider
        self._previous_root_level = previous_root_level
        self._shut_down = False

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def get_logger(self) -> logging.Logger:
        """Return the service logger.

        :return: Logger named after the service.
        :rtype: logging.Logger
        """
        return logging.getLogger(self.config.service_name)

    def get_tracer(self) -> Optional[Tracer]:
        """Return a tracer for the service, or None when tracing is disabled.

        :return: OpenTelemetry tracer instance.
        :rtype: Tracer | None
        """
        if self.tracer_provider is None:
            return None
        return self.tracer_provider.get_tracer(self.config.service_name)

    def get_meter(self) -> Optional[Meter]:
        """Return a meter for the service, or None when metering is disabled.

        :return: OpenTelemetry meter instance.
        :rtype: Meter | None
        """
        if self.meter_provider is None:
            return None
        return self.meter_provider.get_meter(self.config.service_name)

    def force_flush(self) -> None:
        """Export anything buffered by the providers and the log handler."""
        if self.meter_provider is not None:
            self.meter_provider.force_flush()
        if self.tracer_provider is not None:
            self.tracer_provider.force_flush()
        if self.handler is not None:
            self.handler.flush()

    def shutdown(self) -> None:
        """Flush and shut down providers, then uninstall the log subscriber.

        Every step runs even if an earlier one fails. Calling this more than
        once is a no-op.

        :raises ShutdownError: If any provider failed to shut down.
        """
        global _INSTALLED_HANDLER

        if self._shut_down:
            return
        self._shut_down = True

        _LOGGER.info("Shutting down telemetry providers...")
        failures: list[str] = []

        if self.meter_provider is not None:
            try:
                self.meter_provider.shutdown()
            except Exception as exc:
                _LOGGER.error("Failed to shutdown meter provider: %s", exc)
                failures.append(f"meter provider: {exc}")

        if self.tracer_provider is not None:
            try:
                self.tracer_provider.shutdown()
            except Exception as exc:
                _LOGGER.error("Failed to shutdown tracer provider: %s", exc)
                failures.append(f"tracer provider: {exc}")

        if self.handler is not None:
            with _LOCK:
                root_logger = logging.getLogger()
                root_logger.removeHandler(self.handler)
                if self._previous_root_level is not None:
                    root_logger.setLevel(self._previous_root_level)
                if _INSTALLED_HANDLER is self.handler:
                    _INSTALLED_HANDLER = None
            self.handler.flush()

        if failures:
            raise ShutdownError("; ".join(failures))

    def __enter__(self) -> "TelemetryHandle":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_value: Optional[BaseException],
        exc_traceback: Optional[TracebackType],
    ) -> None:
        self.shutdown()


class TelemetryBuilder:
    """Builds and installs the process-wide telemetry stack.

    Setters return a new builder and have no side effects. The ``init_*``
    methods mutate process-wide state and are meant to run once, early,
    before request-handling threads start.

    :param service_name: Name reported as ``service.name``.
    :type service_name: str
    :param config: Complete configuration to use instead of reading the
        environment.
    :type config: TelemetryConfig | None
    """

    def __init__(
        self, service_name: str, config: Optional[TelemetryConfig] = None
    ) -> None:
        if config is None:
            config = TelemetryConfig(service_name=service_name)
        self.config = config
        self._handler: Optional[logging.Handler] = None
        self._previous_root_level: Optional[int] = None
        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None
        self._handle: Optional[TelemetryHandle] = None

    @classmethod
    def from_config(cls, config: TelemetryConfig) -> "TelemetryBuilder":
        """Create a builder from an existing configuration.

        :param config: Telemetry configuration values.
        :type config: TelemetryConfig
        :return: A builder using ``config`` as is.
        :rtype: TelemetryBuilder
        """
        return cls(config.service_name, config=config)

    def _with(self, **changes) -> "TelemetryBuilder":
        # Validate again so blank endpoints set here also count as unset
        config = TelemetryConfig.model_validate({**self.config.model_dump(), **changes})
        return TelemetryBuilder.from_config(config)

    def with_log_level(self, level: "LogLevel | str") -> "TelemetryBuilder":
        """Return a builder using ``level`` for the log subscriber.

        :raises ConfigurationError: If ``level`` is not a known level.
        """
        try:
            parsed = LogLevel.parse(level)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid log level: {level!r}") from exc
        return self._with(log_level=parsed)

    def with_metrics_endpoint(self, endpoint: str) -> "TelemetryBuilder":
        return self._with(metrics_endpoint=endpoint)

    def with_tracing_endpoint(self, endpoint: str) -> "TelemetryBuilder":
        return self._with(tracing_endpoint=endpoint)

    def with_service_version(self, version: str) -> "TelemetryBuilder":
        return self._with(service_version=version)

    def init_subscriber(self, handler: Optional[logging.Handler] = None) -> None:
        """Install the log subscriber on the root logger.

        :param handler: Handler receiving the records. Defaults to a stdout
            stream handler using the standard format. Tests can pass a
            recording handler here.
        :type handler: logging.Handler | None
        :raises SubscriberError: If a subscriber is already installed.
        """
        global _INSTALLED_HANDLER

        level = self.config.log_level.to_logging_level()

        with _LOCK:
            if _INSTALLED_HANDLER is not None:
                raise SubscriberError(
                    "A log subscriber is already installed for this process."
                )

            if handler is None:
                handler = logging.StreamHandler(sys.stdout)
                handler.setFormatter(logging.Formatter(self.config.get_log_format()))

            handler.setLevel(level)
            handler.addFilter(TraceContextFilter())

            root_logger = logging.getLogger()
            self._previous_root_level = root_logger.level
            root_logger.setLevel(level)
            root_logger.addHandler(handler)

            _INSTALLED_HANDLER = handler
            self._handler = handler

        _LOGGER.info("🛰️ Log subscriber installed at level %s.", self.config.log_level)

    def init_tracing(self, span_exporter: Optional[SpanExporter] = None) -> None:
        """Set up the trace pipeline and register it globally.

        Does nothing when no tracing endpoint is configured.

        :param span_exporter: Exporter to use instead of OTLP over HTTP.
        :type span_exporter: SpanExporter | None
        :raises ExporterError: If the endpoint is malformed, the exporter
            cannot be created or a tracer provider is already registered.
        """
        endpoint = self.config.tracing_endpoint
        if endpoint is None:
            _LOGGER.debug("Tracing disabled, no endpoint configured.")
            return

        _validate_endpoint(endpoint, "tracing")

        if span_exporter is None:
            try:
                span_exporter = OTLPSpanExporter(endpoint=endpoint)
            except Exception as exc:
                raise ExporterError(f"Failed to create span exporter: {exc}") from exc

        provider = TracerProvider(resource=self.config.to_resource())
        provider.add_span_processor(BatchSpanProcessor(span_exporter))

        trace.set_tracer_provider(provider)
        if trace.get_tracer_provider() is not provider:
            provider.shutdown()
            raise ExporterError(
                "A tracer provider is already registered for this process."
            )

        self._tracer_provider = provider
        _LOGGER.info("🔭 Tracing initialised, exporting to %s.", endpoint)

    def init_metering(self, metric_reader: Optional[MetricReader] = None) -> None:
        """Set up the metrics pipeline and register it globally.

        Does nothing when no metrics endpoint is configured.

        :param metric_reader: Reader to use instead of periodic OTLP export.
        :type metric_reader: MetricReader | None
        :raises ExporterError: If the endpoint is malformed, the exporter
            cannot be created or a meter provider is already registered.
        """
        endpoint = self.config.metrics_endpoint
        if endpoint is None:
            _LOGGER.debug("Metrics disabled, no endpoint configured.")
            return

        _validate_endpoint(endpoint, "metrics")

        if metric_reader is None:
            try:
                metric_reader = PeriodicExportingMetricReader(
                    OTLPMetricExporter(endpoint=endpoint)
                )
            except Exception as exc:
                raise ExporterError(
                    f"Failed to create metric exporter: {exc}"
                ) from exc

        provider = MeterProvider(
            resource=self.config.to_resource(),
            metric_readers=[metric_reader],
        )

        metrics.set_meter_provider(provider)
        if metrics.get_meter_provider() is not provider:
            provider.shutdown()
            raise ExporterError(
                "A meter provider is already registered for this process."
            )

        self._meter_provider = provider
        _LOGGER.info("📊 Metrics initialised, exporting to %s.", endpoint)

    def init(
        self,
        handler: Optional[logging.Handler] = None,
        span_exporter: Optional[SpanExporter] = None,
        metric_reader: Optional[MetricReader] = None,
    ) -> TelemetryHandle:
        """Install the subscriber, then tracing, then metering.

        Stops at the first failure; whatever was installed before it stays
        installed and can be released through `handle`.

        :return: Handle owning the installed state.
        :rtype: TelemetryHandle
        :raises SubscriberError: If the log subscriber cannot be installed.
        :raises ExporterError: If a pipeline cannot be configured.
        """
        self.init_subscriber(handler)
        self.init_tracing(span_exporter)
        self.init_metering(metric_reader)
        return self.handle()

    def handle(self) -> TelemetryHandle:
        """Return the handle over whatever this builder has installed so far.

        The same handle is returned on every call, so shutting it down twice
        through different calls only shuts the providers down once.

        :return: Handle owning the installed state.
        :rtype: TelemetryHandle
        """
        if self._handle is None:
            self._handle = TelemetryHandle(config=self.config)

        if not self._handle.is_shut_down:
            self._handle.handler = self._handler
            self._handle.tracer_provider = self._tracer_provider
            self._handle.meter_provider = self._meter_provider
            self._handle._previous_root_level = self._previous_root_level

        return self._handle
