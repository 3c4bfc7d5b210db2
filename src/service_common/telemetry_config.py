"""
Telemetry configuration for services using `service_common`.

This module provides `TelemetryConfig`, the pydantic settings object that
supplies `TelemetryBuilder` with the service identity, the log level and the
OTLP endpoints for the metrics and trace pipelines. Values come from the
constructor first and environment variables second.
"""

import logging
import socket
from enum import StrEnum
from typing import Optional

from opentelemetry.sdk.resources import Resource
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOGGER = logging.getLogger(__name__)

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class LogLevel(StrEnum):
    """Verbosity of the log subscriber."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @classmethod
    def parse(cls, value: "str | LogLevel") -> "LogLevel":
        """Parse a level name, case-insensitively.

        :param value: Level name such as ``"debug"`` or ``"WARNING"``.
        :type value: str | LogLevel
        :return: The matching level.
        :rtype: LogLevel
        :raises ValueError: If the name is not a known level.
        """
        if isinstance(value, LogLevel):
            return value

        normalised = str(value).strip().lower()
        if normalised == "warning":
            normalised = "warn"
        return cls(normalised)

    def to_logging_level(self) -> int:
        """Translate to the numeric level used by ``logging``.

        :return: Numeric logging level.
        :rtype: int
        """
        return {
            LogLevel.TRACE: TRACE,
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


class TelemetryConfig(BaseSettings):
    """
    Configuration for the telemetry stack using Pydantic BaseSettings.

    Order of preference for config:
    1. Values passed to the constructor
    2. Environment variables (LOG_LEVEL, METRICS_ENDPOINT, TRACING_ENDPOINT,
       SERVICE_VERSION)

    A missing endpoint disables the corresponding pipeline.
    """

    service_name: str = Field(frozen=True)
    service_version: Optional[str] = Field(default=None)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    metrics_endpoint: Optional[str] = Field(default=None)
    tracing_endpoint: Optional[str] = Field(default=None)

    # Automatic attributes
    hostname: str = Field(default="")

    model_config = SettingsConfigDict(
        env_prefix="",  # Use exact environment variable names (e.g., LOG_LEVEL)
        case_sensitive=False,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def parse_log_level(cls, v):
        """Fall back to info for unrecognised levels (e.g. a typo in LOG_LEVEL)."""
        try:
            return LogLevel.parse(v)
        except ValueError:
            _LOGGER.warning("Ignoring invalid log level %r, using info.", v)
            return LogLevel.INFO

    @field_validator("metrics_endpoint", "tracing_endpoint", mode="before")
    @classmethod
    def blank_endpoint_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("hostname", mode="before")
    @classmethod
    def set_hostname(cls, v):
        """Set hostname automatically if not provided"""
        return v or socket.gethostname()

    @property
    def metrics_enabled(self) -> bool:
        return self.metrics_endpoint is not None

    @property
    def tracing_enabled(self) -> bool:
        return self.tracing_endpoint is not None

    def __str__(self):
        return f"TelemetryConfig(service_name={self.service_name}, service_version={self.service_version}, log_level={self.log_level}, metrics_endpoint={self.metrics_endpoint}, tracing_endpoint={self.tracing_endpoint})"

    def to_resource(self) -> Resource:
        """Returns an opentelemetry resource hydrated with config values"""
        attributes = {
            "service.name": self.service_name,
            "host.name": self.hostname,
        }
        if self.service_version:
            attributes["service.version"] = self.service_version
        return Resource(attributes=attributes)

    def get_log_format(self) -> str:
        """Returns the format string used by the default log handler"""
        return "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
