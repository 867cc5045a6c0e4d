"""
Unit tests for the command executor.
Tests DOM extraction, transforms, network commands and error mapping.
"""
import pytest
from unittest.mock import AsyncMock

from src.browser.accessor import NetworkResponse
from src.browser.soup_accessor import SoupDOMAccessor
from src.engine.commands import CommandExecutor, apply_regex, check_locator
from src.engine.exceptions import ConfigurationError, NetworkError, TransformError
from src.engine.variable_store import VariableStore
from src.shared.schemas import Step, WaitPolicy


PRODUCT_HTML = """
<html><body>
    <h1 class="name">  Dune
        Deluxe Edition </h1>
    <a class="buy" href="/buy/dune">Buy</a>
    <ul class="tags"><li>scifi</li><li></li><li>classic</li></ul>
    <div class="cover" style="background-image: url('https://img.example/dune.jpg')"></div>
</body></html>
"""


def step(**kwargs) -> Step:
    return Step.model_validate(kwargs)


@pytest.fixture
def store():
    return VariableStore({"INPUT": "dune messiah"})


@pytest.fixture
def accessor():
    return SoupDOMAccessor(PRODUCT_HTML, url="https://books.example.com/dune")


@pytest.fixture
def network():
    network = AsyncMock()
    network.request.return_value = NetworkResponse(
        status=200, url="https://api.example.com/s", text='{"hits": [{"title": "Dune"}]}'
    )
    return network


@pytest.fixture
def executor(store, accessor, network, engine_settings):
    return CommandExecutor(store, accessor, network, engine_settings)


class TestDomCommands:
    """Test DOM extraction commands."""

    @pytest.mark.asyncio
    async def test_extract_text(self, executor, store):
        """Text is whitespace-cleaned and stored."""
        outcome = await executor.execute(step(command="extract_text", locator="h1.name", output={"name": "TITLE"}))

        assert outcome.found
        assert outcome.match_count == 1
        assert store.get("TITLE") == "Dune Deluxe Edition"

    @pytest.mark.asyncio
    async def test_missing_element_is_not_an_error(self, executor, store):
        """A selector with no match stores empty text."""
        outcome = await executor.execute(step(command="extract_text", locator=".missing", output={"name": "X"}))

        assert not outcome.found
        assert outcome.match_count == 0
        assert store.get("X", None) == ""

    @pytest.mark.asyncio
    async def test_extract_attribute(self, executor, store):
        """Attribute values are read from the first match."""
        await executor.execute(step(
            command="extract_attribute", locator="a.buy", attribute_name="href", output={"name": "URL"}
        ))

        assert store.get("URL") == "/buy/dune"

    @pytest.mark.asyncio
    async def test_extract_attribute_requires_name(self, executor):
        """attribute_name is mandatory."""
        with pytest.raises(ConfigurationError):
            await executor.execute(step(command="extract_attribute", locator="a.buy"))

    @pytest.mark.asyncio
    async def test_extract_array_appends(self, executor, store):
        """extract_array pushes non-empty values."""
        for index in (1, 2, 3):
            await executor.execute(step(
                command="extract_array", locator=f"ul.tags li:nth-child({index})", output={"name": "TAGS"}
            ))

        assert store.get("TAGS") == ["scifi", "classic"]

    @pytest.mark.asyncio
    async def test_extract_count(self, executor, store):
        """The match count is stored as text."""
        await executor.execute(step(command="extract_count", locator="ul.tags li", output={"name": "N"}))

        assert store.get("N") == "3"

    @pytest.mark.asyncio
    async def test_store_url(self, executor, store):
        """The accessor's current URL is stored."""
        await executor.execute(step(command="store_url", output={"name": "PAGE"}))

        assert store.get("PAGE") == "https://books.example.com/dune"

    @pytest.mark.asyncio
    async def test_non_standard_selector_rejected(self, executor):
        """jQuery pseudo-classes never reach the accessor."""
        with pytest.raises(ConfigurationError):
            await executor.execute(step(command="extract_text", locator="h1:contains('Dune')"))

    @pytest.mark.asyncio
    async def test_invalid_selector_syntax(self, executor):
        """Accessor syntax faults surface as configuration errors."""
        with pytest.raises(ConfigurationError):
            await executor.execute(step(command="extract_text", locator="div[[["))

    @pytest.mark.asyncio
    async def test_missing_accessor(self, store, engine_settings):
        """DOM commands need an accessor."""
        executor = CommandExecutor(store, None, None, engine_settings)

        with pytest.raises(ConfigurationError):
            await executor.execute(step(command="extract_text", locator="h1"))


class TestNavigate:
    """Test navigation."""

    @pytest.mark.asyncio
    async def test_navigate_renders_url_and_applies_timeouts(self, store, engine_settings):
        """URL templates render and timeouts respect the minimum."""
        accessor = AsyncMock()
        executor = CommandExecutor(store, accessor, None, engine_settings, default_headers={"X-Site": "1"})

        await executor.execute(step(
            command="navigate", url="https://books.example.com/search?q=$INPUT", timeout_ms=10,
        ))

        accessor.set_extra_headers.assert_awaited_once_with({"X-Site": "1"})
        accessor.navigate.assert_awaited_once_with(
            "https://books.example.com/search?q=dune messiah", WaitPolicy.DOM_READY, 1000
        )

    @pytest.mark.asyncio
    async def test_navigate_requires_url(self, executor):
        """An empty URL is a configuration error."""
        with pytest.raises(ConfigurationError):
            await executor.execute(step(command="navigate"))


class TestTransforms:
    """Test transform commands."""

    @pytest.mark.asyncio
    async def test_transform_store(self, executor, store):
        """Templates are rendered into a new variable."""
        store.set("BASE", "https://books.example.com")
        await executor.execute(step(command="transform_store", input="$BASE/s?q=$INPUT", output={"name": "URL"}))

        assert store.get("URL") == "https://books.example.com/s?q=dune messiah"

    @pytest.mark.asyncio
    async def test_transform_regex_first_group(self, executor, store):
        """The first defined group is returned."""
        store.set("STYLE", "background-image: url('https://img.example/dune.jpg')")
        await executor.execute(step(
            command="transform_regex", input="$STYLE", expression=r"url\(['\"]?(.*?)['\"]?\)",
            output={"name": "COVER"},
        ))

        assert store.get("COVER") == "https://img.example/dune.jpg"

    @pytest.mark.asyncio
    async def test_transform_regex_no_match_returns_input(self, executor, store):
        """No match leaves the text unchanged."""
        store.set("TEXT", "no digits")
        await executor.execute(step(
            command="transform_regex", input="$TEXT", expression=r"(\d+)", output={"name": "OUT"}
        ))

        assert store.get("OUT") == "no digits"

    @pytest.mark.asyncio
    async def test_invalid_regex_is_fatal(self, executor):
        """Broken patterns raise TransformError."""
        with pytest.raises(TransformError):
            await executor.execute(step(command="transform_regex", input="x", expression="(unclosed"))

    @pytest.mark.asyncio
    async def test_transform_replace_is_literal(self, executor, store):
        """find is not a regular expression."""
        store.set("PRICE", "$5.00 (sale)")
        await executor.execute(step(
            command="transform_replace", input="$PRICE", find="(sale)", replace="", output={"name": "OUT"}
        ))

        assert store.get("OUT") == "$5.00"

    @pytest.mark.asyncio
    async def test_transform_url_encode(self, executor, store):
        """Encoding matches encodeURIComponent."""
        await executor.execute(step(command="transform_url_encode", input="$INPUT", output={"name": "Q"}))

        assert store.get("Q") == "dune%20messiah"

    def test_apply_regex_full_match(self):
        """Without groups the full match is returned."""
        assert apply_regex(r"\d+", "page 42 of 90") == "42"

    def test_check_locator(self):
        """Standard selectors pass, non-standard ones are rejected."""
        check_locator("ul > li:nth-child(2) a[href]")
        check_locator("div:not(.ad) :first-child")
        with pytest.raises(ConfigurationError):
            check_locator("li:eq(2)")
        with pytest.raises(ConfigurationError):
            check_locator("div:visible")


class TestNetworkCommands:
    """Test http_request and json_extract."""

    @pytest.mark.asyncio
    async def test_http_request_stores_json(self, executor, store, network):
        """The parsed payload is stored for json_extract."""
        await executor.execute(step(
            command="http_request", url="https://api.example.com/s?q=$INPUT", output={"name": "API"}
        ))
        await executor.execute(step(
            command="json_extract", input="API", locator="hits[0].title", output={"name": "TITLE1"}
        ))

        network.request.assert_awaited_once()
        assert network.request.call_args[0][0] == "https://api.example.com/s?q=dune messiah"
        assert store.get("TITLE1") == "Dune"

    @pytest.mark.asyncio
    async def test_http_error_status(self, executor, network):
        """Non-2xx responses raise NetworkError."""
        network.request.return_value = NetworkResponse(status=503, url="https://api.example.com/s")

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute(step(command="http_request", url="https://api.example.com/s"))

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_json_extract_missing_path(self, executor, store):
        """Missing paths store empty text."""
        store.set("API", {"hits": []})
        outcome = await executor.execute(step(
            command="json_extract", input="API", locator="hits[0].title", output={"name": "T"}
        ))

        assert not outcome.found
        assert store.get("T") == ""
