"""
Metrics helpers for services using `service_common`.

This module provides `MetricsRecorder`, a facade over the meter held by a
`TelemetryHandle`. It names instruments consistently per service and hands
back ``None`` when the metrics pipeline is disabled, so callers can guard
measurements with a simple ``if counter:``.
"""

import logging
from typing import Optional

from opentelemetry.metrics import Counter, Histogram, Meter, UpDownCounter

from service_common.telemetry import TelemetryHandle


class MetricsRecorder:
    """Create service-namespaced instruments from a telemetry handle.

    Metrics in OpenTelemetry work as follows:
    - A MeterProvider is the entry point, which comes from the OTel SDK
    - A MeterProvider has many Meters, which create Instruments
    - An Instrument reports a Measurement

    The meter scope is set to the service name for consistent grouping.
    """

    def __init__(self, handle: TelemetryHandle):
        """Initialise the recorder from an activated telemetry handle.

        :param handle: Handle returned by ``TelemetryBuilder.init``.
        :type handle: TelemetryHandle
        """
        self.service_name = handle.config.service_name
        self.meter: Optional[Meter] = handle.get_meter()

        if self.meter is None:
            logging.getLogger(__name__).debug(
                "Metrics disabled, instruments will not be created."
            )

    @property
    def enabled(self) -> bool:
        return self.meter is not None

    def full_metric_name(self, metric: str) -> str:
        """Return the metric name prefixed with the service name.

        :param metric: The base metric name.
        :type metric: str
        :return: The fully qualified metric name.
        :rtype: str
        """
        return f"{self.service_name}_{metric}".replace("-", "_")

    def create_counter(
        self,
        name: str,
        description: str = "",
        unit: str = "1",
    ) -> Optional[Counter]:
        """Create a counter instrument.

        Counters are used for values that only increase (e.g., request counts).

        :param name: The metric name.
        :type name: str
        :param description: Human-readable description of the metric.
        :type description: str
        :param unit: The unit of measurement (default "1" for counts).
        :type unit: str
        :return: The created counter, or None if metrics are disabled.
        :rtype: Counter | None
        """
        if self.meter is None:
            return None

        return self.meter.create_counter(
            name=self.full_metric_name(name),
            description=description,
            unit=unit,
        )

    def create_up_down_counter(
        self,
        name: str,
        description: str = "",
        unit: str = "1",
    ) -> Optional[UpDownCounter]:
        """Create a counter that may also decrease (e.g., in-flight requests)."""
        if self.meter is None:
            return None

        return self.meter.create_up_down_counter(
            name=self.full_metric_name(name),
            description=description,
            unit=unit,
        )

    def create_histogram(
        self,
        name: str,
        description: str = "",
        unit: str = "s",
    ) -> Optional[Histogram]:
        """Create a histogram instrument.

        Histograms are used for measuring distributions of values (e.g., latencies).

        :param name: The metric name.
        :type name: str
        :param description: Human-readable description of the metric.
        :type description: str
        :param unit: The unit of measurement (default "s" for seconds).
        :type unit: str
        :return: The created histogram, or None if metrics are disabled.
        :rtype: Histogram | None
        """
        if self.meter is None:
            return None

        return self.meter.create_histogram(
            name=self.full_metric_name(name),
            description=description,
            unit=unit,
        )
