from service_common.errors import (
    ConfigurationError,
    ContextUpdateError,
    ExporterError,
    RenderError,
    RendererError,
    ShutdownError,
    SubscriberError,
    TelemetryError,
    TemplateError,
)
from service_common.metrics import MetricsRecorder
from service_common.renderer import Renderer
from service_common.telemetry import TelemetryBuilder, TelemetryHandle
from service_common.telemetry_config import LogLevel, TelemetryConfig
from service_common.telemetry_utils import convert_to_loggable_string, observe
from service_common.template_config import RendererConfig

__all__ = [
    "ConfigurationError",
    "ContextUpdateError",
    "ExporterError",
    "LogLevel",
    "MetricsRecorder",
    "RenderError",
    "Renderer",
    "RendererConfig",
    "RendererError",
    "ShutdownError",
    "SubscriberError",
    "TelemetryBuilder",
    "TelemetryConfig",
    "TelemetryError",
    "TelemetryHandle",
    "TemplateError",
    "convert_to_loggable_string",
    "observe",
]
