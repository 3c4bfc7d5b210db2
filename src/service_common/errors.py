"""
Exceptions raised by the telemetry and templating helpers.

Each component has its own base class so callers can catch everything a
component raises without catching unrelated errors.
"""


class TelemetryError(Exception):
    """Base class for telemetry initialisation failures."""


class SubscriberError(TelemetryError):
    """The log subscriber is already installed or could not be set up."""


class ExporterError(TelemetryError):
    """A metrics or tracing pipeline could not be configured."""


class ConfigurationError(TelemetryError):
    """A telemetry setting has an invalid value."""


class ShutdownError(TelemetryError):
    """One or more providers failed to shut down cleanly."""


class RendererError(Exception):
    """Base class for template renderer failures."""


class TemplateError(RendererError):
    """A template failed to compile or could not be found."""


class RenderError(RendererError):
    """Executing a template failed."""


class ContextUpdateError(RendererError):
    """The shared render context could not be updated."""
