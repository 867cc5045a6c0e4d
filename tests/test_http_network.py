"""
Unit tests for the httpx network capability.
"""
import httpx
import pytest

from src.browser.http_network import HttpxNetwork, build_client
from src.engine.exceptions import NavigationTimeout, NetworkError


def make_network(handler) -> HttpxNetwork:
    return HttpxNetwork(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpxNetwork:
    """Test request handling."""

    @pytest.mark.asyncio
    async def test_post_request(self):
        """Method, headers and body are forwarded."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.headers["content-type"] == "application/json"
            assert request.content == b'{"q":"dune"}'
            return httpx.Response(200, json={"ok": True})

        network = make_network(handler)

        response = await network.request(
            "https://api.example.com/s", method="post",
            headers={"Content-Type": "application/json"}, body='{"q":"dune"}',
        )

        assert response.ok
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_error_status_is_returned(self):
        """Status handling is left to the caller."""
        network = make_network(lambda request: httpx.Response(500, text="boom"))

        response = await network.request("https://api.example.com/s")

        assert response.status == 500
        assert not response.ok

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Transport failures raise NetworkError."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            await make_network(handler).request("https://api.example.com/s")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Timeouts raise NavigationTimeout."""
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(NavigationTimeout):
            await make_network(handler).request("https://api.example.com/s", timeout_ms=100)

    @pytest.mark.asyncio
    async def test_context_manager_keeps_caller_client(self):
        """A client passed in by the caller stays open."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        async with HttpxNetwork(client):
            pass

        assert not client.is_closed
        await client.aclose()

    def test_build_client_defaults(self):
        """The shared client carries the configured user agent."""
        client = build_client()

        assert "Mozilla" in client.headers["user-agent"]
        assert client.follow_redirects
