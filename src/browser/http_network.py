"""
Browser - HTTP Network Capability

NetworkCapability over an httpx.AsyncClient. Responses to requests issued
through it are also published to `on_response` subscribers, so API
discovery can run against plain HTTP fetches as well as a live browser.
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

import httpx

from ..engine.exceptions import NavigationTimeout, NetworkError
from ..shared.config import get_settings
from .accessor import InterceptedResponse, NetworkCapability, NetworkResponse, ResponsePredicate

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
    'Accept-Encoding': 'gzip, deflate',
    'Connection': 'keep-alive',
}


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Create the shared httpx client from settings."""
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http.timeout),
        follow_redirects=True,
        max_redirects=settings.http.max_redirects,
        verify=settings.http.verify_ssl,
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        headers={**DEFAULT_HEADERS, 'User-Agent': settings.browser.user_agent},
        transport=transport,
    )


class HttpxNetwork(NetworkCapability):
    """
    HTTP requests through httpx.

    Usable as an async context manager; a client passed in by the caller is
    not closed by this object.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._owns_client = client is None
        self.client = client or build_client()
        self._subscribers: List[asyncio.Queue] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> NetworkResponse:
        timeout = timeout_ms / 1000 if timeout_ms else httpx.USE_CLIENT_DEFAULT
        try:
            response = await self.client.request(
                method.upper(), url, headers=headers or None, content=body, timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise NavigationTimeout(f"Request to {url} timed out: {e}", url=url)
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {url} failed: {e}", url=url)

        result = NetworkResponse(
            status=response.status_code,
            url=str(response.url),
            text=response.text,
            headers=dict(response.headers),
        )
        self._publish(method, headers, body, result)
        return result

    def _publish(self, method, headers, body, response: NetworkResponse):
        if not self._subscribers:
            return
        try:
            payload = response.json()
        except ValueError:
            return
        item = InterceptedResponse(
            url=response.url,
            method=method.upper(),
            headers=dict(headers or {}),
            post_data=body,
            status=response.status,
            json=payload,
        )
        for queue in self._subscribers:
            queue.put_nowait(item)

    async def on_response(self, predicate: Optional[ResponsePredicate] = None) -> AsyncIterator[InterceptedResponse]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if predicate is None or predicate(item):
                    yield item
        finally:
            self._subscribers.remove(queue)

