"""
chatstream - Streaming HTTP Transport

httpx-based transport for provider event streams with:
- One fresh HTTP request per call (the driver calls it once per attempt)
- HTTP error statuses mapped to ProviderError
- httpx exceptions mapped to TransportTimeoutError / TransportClosedError
- W3C trace context headers injected into every request
- Exponential backoff with jitter for the driver's retries (1-2-4-8-16s)
"""

import random
import uuid
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..observability.logging import get_logger
from ..observability.tracing import get_tracing_manager
from .errors import ChatStreamException, classify_transport_error, create_error_from_status

logger = get_logger(__name__)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 16.0,
    exponential_base: float = 2.0,
    jitter_factor: float = 0.25
) -> float:
    """
    Calculate delay with exponential backoff and jitter.

    Sequence for attempt 0, 1, 2...: 1s, 2s, 4s, 8s, 16s (with ±25% jitter)
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    jitter_range = delay * jitter_factor
    delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0.1, delay)  # Minimum 100ms


class HttpxStreamTransport:
    """
    Transport factory for the stream driver.

    Each call issues the request again and yields raw body chunks.

    Usage:
        transport = HttpxStreamTransport(
            url="https://api.openai.com/v1/chat/completions",
            json_body={"model": "gpt-4o", "stream": True, "messages": [...]},
            headers={"Authorization": f"Bearer {api_key}"},
            provider="openai",
        )
        result = await StreamDriver("openai", transport).run()
        await transport.aclose()
    """

    def __init__(
        self,
        url: str,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        provider: str = "",
        method: str = "POST",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        inject_trace_context: bool = True,
    ):
        self.url = url
        self.json_body = json_body
        self.headers = headers or {}
        self.provider = getattr(provider, "value", provider)
        self.method = method
        self.timeout = timeout
        self.inject_trace_context = inject_trace_context
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def aclose(self):
        """Close the HTTP client if this transport created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def _request_headers(self, request_id: str) -> Dict[str, str]:
        headers = {
            "Accept": "text/event-stream",
            **self.headers,
            "X-Request-ID": request_id,
        }
        if self.inject_trace_context:
            get_tracing_manager().inject_context(headers)
        return headers

    async def __call__(self) -> AsyncIterator[bytes]:
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        client = await self._get_client()

        logger.debug(
            "Opening provider stream",
            provider=self.provider,
            url=self.url,
            stream_request_id=request_id,
        )

        try:
            async with client.stream(
                self.method,
                self.url,
                json=self.json_body,
                headers=self._request_headers(request_id),
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise create_error_from_status(
                        self.provider,
                        response.status_code,
                        body,
                        request_id=request_id,
                    )

                async for chunk in response.aiter_bytes():
                    yield chunk

        except ChatStreamException:
            raise
        except (httpx.HTTPError, ConnectionError) as e:
            raise classify_transport_error(e, self.provider, request_id) from e
