"""
Streaming HTTP adapter for a single model endpoint.

One adapter serves every ``ProviderKind``: the request envelope and the
stream decoding come from ``WIRE_FORMATS`` and the transport (``httpx``
streaming POST plus Server-Sent Events parsing) is shared.

Dependencies: ``httpx`` (async HTTP client).  No vendor SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from aicli.llm.errors import (
    AuthenticationError,
    ConnectionFailed,
    DecodeError,
    RateLimitError,
    StreamTimeout,
    TransportError,
)
from aicli.llm.providers.base import Provider
from aicli.llm.providers.wire import StreamState, wire_format_for
from aicli.llm.types import Message, ModelProfile, StreamChunk

logger = logging.getLogger(__name__)


class EndpointAdapter(Provider):
    """
    Stream-capable provider bound to one ``ModelProfile``.

    Parameters
    ----------
    profile:
        The resolved endpoint, deployment and credentials.
    transport:
        Optional ``httpx`` transport.  Tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        profile: ModelProfile,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._profile = profile
        self._wire = wire_format_for(profile.kind)
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def profile(self) -> ModelProfile:
        return self._profile

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        request = self._wire.build_request(self._profile, messages, tools)
        effective_timeout = timeout or self._profile.timeout
        logger.info(
            "REQUEST: profile=%s kind=%s tools=%d messages=%d api_key=%s...",
            self._profile.name,
            self._profile.kind.value,
            len(tools) if tools else 0,
            len(messages),
            self._profile.api_key[:4] if self._profile.api_key else "(none)",
        )

        try:
            async with httpx.AsyncClient(
                timeout=effective_timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST", request.url, json=request.body, headers=request.headers
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise _status_error(response)

                    async for chunk in self._parse_sse_stream(response):
                        yield chunk
        except httpx.TimeoutException as exc:
            raise StreamTimeout(
                f"Request to {self._profile.name} timed out after {effective_timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectionFailed(
                f"Could not reach {self._profile.endpoint}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[StreamChunk]:
        """
        Parse Server-Sent Events from the response.

        Each SSE event has the form::

            event: name\\n          (optional, ignored)
            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.
        """
        state = StreamState()
        async for line in response.aiter_lines():
            line = line.rstrip("\r")
            if not line or not line.startswith("data:"):
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                yield StreamChunk(usage=state.usage(), done=True)
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError as exc:
                raise DecodeError(f"Malformed stream chunk: {exc}", raw=data_str[:200]) from exc
            if not isinstance(data, dict):
                raise DecodeError("Stream chunk is not a JSON object", raw=data_str[:200])

            chunk = self._wire.parse_event(data, state)
            if chunk is not None:
                yield chunk
                if chunk.done:
                    return

        # If the stream ends without a terminator, emit a final chunk.
        yield StreamChunk(usage=state.usage(), done=True)


def _status_error(response: httpx.Response) -> TransportError:
    """Map a non-2xx response to the matching ``TransportError``."""
    status = response.status_code
    detail = response.text[:500]
    if status in (401, 403):
        return AuthenticationError(f"HTTP {status}: {detail}", status_code=status)
    if status == 429:
        return RateLimitError(
            f"HTTP 429: {detail}",
            retry_after=_retry_after(response.headers.get("retry-after")),
        )
    return TransportError(f"HTTP {status}: {detail}", code="http_error", status_code=status)


def _retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
