"""HTTP client for the Messages API."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx
from pydantic import ValidationError

from misanthropy.errors import (
    BadRequest,
    ConfigurationError,
    DecodeError,
    MisanthropyError,
    RateLimitExceeded,
    TransportError,
    Unauthorized,
    UpstreamError,
    upstream_error,
)
from misanthropy.events import StreamEvent
from misanthropy.instrumentation import (
    completion_span,
    record_error,
    record_usage,
)
from misanthropy.request import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    MessagesRequest,
)
from misanthropy.response import MessagesResponse
from misanthropy.sse import aiter_frames
from misanthropy.streaming import StreamingResponse

logger = logging.getLogger(__name__)

ANTHROPIC_API_KEY_ENV = "ANTHROPIC_API_KEY"
ANTHROPIC_API_VERSION = "2023-06-01"
DEFAULT_BASE_URL = "https://api.anthropic.com"

_STATUS_ERRORS: dict[int, type[UpstreamError]] = {
    400: BadRequest,
    401: Unauthorized,
    429: RateLimitExceeded,
}


def _status_error(response: httpx.Response) -> UpstreamError:
    """Map a non-2xx response to the matching :class:`UpstreamError`."""
    try:
        body = response.json()
        detail = body["error"]
        return upstream_error(detail["type"], detail.get("message", ""))
    except (ValueError, KeyError, TypeError):
        pass
    message = f"HTTP {response.status_code}"
    cls = _STATUS_ERRORS.get(response.status_code)
    if cls is None:
        return UpstreamError("api_error", message)
    return cls(message)


class Anthropic:
    """Client for the Messages API.

    Holds the API key and the defaults applied to requests that leave
    ``model`` empty or ``max_tokens`` at zero.

    Args:
        api_key: API key sent as ``x-api-key``.
        base_url: API root, without the ``/v1`` path.
        model: Default model.
        max_tokens: Default output token limit.
        timeout: HTTP timeout in seconds.
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("An API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls, **kwargs) -> Anthropic:
        """Build a client from the ``ANTHROPIC_API_KEY`` variable.

        Raises:
            ConfigurationError: If the variable is unset or empty.
        """
        api_key = os.getenv(ANTHROPIC_API_KEY_ENV)
        if not api_key:
            raise ConfigurationError(
                f"{ANTHROPIC_API_KEY_ENV} environment variable not set"
            )
        return cls(api_key, **kwargs)

    @classmethod
    def with_string_or_env(cls, api_key: str | None, **kwargs) -> Anthropic:
        """Use *api_key* if given, else fall back to the environment."""
        if api_key:
            return cls(api_key, **kwargs)
        return cls.from_env(**kwargs)

    def __repr__(self) -> str:
        return (
            f"Anthropic(base_url={self.base_url!r}, model={self.model!r}, "
            f"max_tokens={self.max_tokens})"
        )

    async def __aenter__(self) -> Anthropic:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

    def prepare(self, request: MessagesRequest, stream: bool) -> dict:
        """The JSON payload for *request*, with client defaults filled in."""
        payload = request.to_payload()
        payload["model"] = request.model or self.model
        payload["max_tokens"] = request.max_tokens or self.max_tokens
        payload["stream"] = stream
        return payload

    async def messages(self, request: MessagesRequest) -> MessagesResponse:
        """Send *request* and return the complete response.

        Raises:
            UpstreamError: The API answered with an error.
            TransportError: The request never got an answer.
        """
        payload = self.prepare(request, stream=False)
        logger.info(
            f"Sending request: model={payload['model']}, "
            f"{len(request.messages)} messages"
        )
        async with completion_span(payload["model"], stream=False) as span:
            try:
                try:
                    http_response = await self.client.post(
                        "/v1/messages", json=payload, headers=self.headers(),
                    )
                except httpx.TransportError as e:
                    raise TransportError(f"HTTP request failed: {e}") from e
                if http_response.is_error:
                    raise _status_error(http_response)
                try:
                    response = MessagesResponse.model_validate(
                        http_response.json()
                    )
                except (ValueError, ValidationError) as e:
                    raise DecodeError(f"Malformed response body: {e}") from e
            except MisanthropyError as e:
                logger.warning(f"Request failed: {e}")
                record_error(span, e)
                raise
            record_usage(span, response.usage, response.model)
        return response

    def messages_stream(self, request: MessagesRequest) -> MessageStream:
        """Start a streamed request.

        Nothing is sent until the returned stream is iterated.
        """
        return MessageStream(self, self.prepare(request, stream=True))


class MessageStream:
    """The typed events of one streamed request, as an async iterator.

    Each event is applied to :attr:`response` before it is yielded, so
    ``stream.response.snapshot()`` always reflects the events seen so
    far.  Stopping iteration early (``break``, :meth:`aclose`) leaves
    the partial response readable.

    Example::

        async with client.messages_stream(request) as stream:
            async for event in stream:
                ...
        print(stream.response.snapshot().format_content())
    """

    def __init__(self, client: Anthropic, payload: dict):
        self.response = StreamingResponse()
        self._client = client
        self._payload = payload
        self._iterator: AsyncIterator[StreamEvent] | None = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._iterator is None:
            self._iterator = self._events()
        return self._iterator

    async def __aenter__(self) -> MessageStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()

    async def until_done(self) -> MessagesResponse:
        """Consume the remaining events and return the final response."""
        async for _ in self:
            pass
        return self.response.response()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        model = self._payload["model"]
        logger.info(f"Opening stream: model={model}")
        async with completion_span(model, stream=True) as span:
            try:
                async with aclosing(self._read()) as events:
                    async for event in events:
                        yield event
            except MisanthropyError as e:
                self.response.abort(e)
                record_error(span, e)
                raise
            record_usage(span, self.response.usage, model)

    async def _read(self) -> AsyncIterator[StreamEvent]:
        client = self._client
        try:
            async with client.client.stream(
                "POST", "/v1/messages",
                json=self._payload, headers=client.headers(),
            ) as http_response:
                if http_response.is_error:
                    await http_response.aread()
                    raise _status_error(http_response)
                async for frame in aiter_frames(http_response.aiter_lines()):
                    yield self.response.feed(frame)
        except httpx.TransportError as e:
            raise TransportError(f"Stream failed: {e}") from e
        if not self.response.is_complete:
            raise TransportError("Stream closed before message_stop")
