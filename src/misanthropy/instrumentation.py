"""Optional OpenTelemetry instrumentation for misanthropy.

Call ``misanthropy.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the client works
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None

_USAGE_ATTRIBUTES = {
    "input_tokens": "gen_ai.usage.input_tokens",
    "output_tokens": "gen_ai.usage.output_tokens",
    "cache_creation_input_tokens": "gen_ai.usage.cache_creation_input_tokens",
    "cache_read_input_tokens": "gen_ai.usage.cache_read_input_tokens",
}


def instrument(*, tracer_name: str = "misanthropy") -> None:
    """Enable OpenTelemetry tracing for every API call.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install misanthropy[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import misanthropy
        misanthropy.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install misanthropy[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Misanthropy instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing.

    Subsequent calls will not emit spans.
    """
    global _tracer
    _tracer = None


@asynccontextmanager
async def completion_span(model: str, stream: bool = False):
    """Wrap one Messages API call in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": "anthropic",
            "gen_ai.request.model": model,
            "gen_ai.request.stream": stream,
        },
    ) as span:
        yield span


def record_usage(span, usage, response_model: str | None = None):
    """Set token-usage and response-model attributes on a span."""
    if span is None or usage is None:
        return
    for field, attribute in _USAGE_ATTRIBUTES.items():
        value = getattr(usage, field, None)
        if value is not None:
            span.set_attribute(attribute, value)
    if response_model:
        span.set_attribute(
            "gen_ai.response.model", response_model
        )


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    Sets ``error.type`` per GenAI semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
