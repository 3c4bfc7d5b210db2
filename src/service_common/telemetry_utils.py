import functools
from typing import Callable

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import Status, StatusCode


def convert_to_loggable_string(obj: object) -> object:
    """Convert arbitrary objects into OpenTelemetry-compatible values.

    OpenTelemetry only accepts ``bool``, ``str``, ``bytes``, ``int`` and
    ``float`` as attribute values. Anything else is flattened to a string,
    one ``key: value`` or item per line for mappings and lists.

    :param obj: Value that should be converted.
    :type obj: object
    :return: The converted value suitable for span or log attributes.
    :rtype: object
    """
    if isinstance(obj, (bool, int, float, str, bytes)):
        return obj
    if isinstance(obj, dict):
        return "\n".join(
            f"{key}: {convert_to_loggable_string(value)}" for key, value in obj.items()
        )
    if isinstance(obj, (list, tuple)):
        return "\n".join(str(convert_to_loggable_string(item)) for item in obj)
    return str(obj)


def tracing_active() -> bool:
    """Return whether an SDK tracer provider is registered for this process."""
    return isinstance(trace.get_tracer_provider(), TracerProvider)


def observe(name: str, record_args: bool = False) -> Callable:
    """Wrap a callable inside an OpenTelemetry span.

    The wrapped function runs unchanged when tracing is not active.
    Exceptions are recorded on the span and re-raised.

    :param name: Span name to emit.
    :type name: str
    :param record_args: Add keyword arguments as ``arg.<name>`` attributes.
    :type record_args: bool
    :return: Decorator that instruments the wrapped function.
    :rtype: Callable
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wraps(*args, **kwargs):
            if not tracing_active():
                return func(*args, **kwargs)

            tracer = trace.get_tracer(func.__module__)
            with tracer.start_as_current_span(
                name, record_exception=False, set_status_on_exception=False
            ) as span:
                if record_args:
                    for key, value in kwargs.items():
                        span.set_attribute(
                            f"arg.{key}", convert_to_loggable_string(value)
                        )
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    raise

        return wraps

    return decorator
