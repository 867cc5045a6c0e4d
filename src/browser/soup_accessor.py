"""
Browser - BeautifulSoup DOM Accessor

DOMAccessor over a static HTML snapshot. CSS selection goes through
soupsieve (BeautifulSoup.select); navigation fetches the page with httpx
and re-parses it. JavaScript is never executed, so every wait policy
behaves like dom_ready.
"""
import logging
from typing import Dict, List, Optional

import httpx
from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ..engine.exceptions import NavigationTimeout, NetworkError
from ..shared.schemas import WaitPolicy
from .accessor import DOMAccessor, ElementHandle, SelectorError
from .http_network import build_client

logger = logging.getLogger(__name__)


def _select(node, selector: str) -> List[Tag]:
    try:
        return node.select(selector)
    except SelectorSyntaxError as e:
        raise SelectorError(f"Invalid selector '{selector}': {e}")


class SoupElement(ElementHandle):
    """ElementHandle wrapping a bs4 Tag."""

    def __init__(self, tag: Tag):
        self.tag = tag

    def __repr__(self):
        return f"SoupElement(<{self.tag.name}>)"

    async def text_content(self) -> str:
        return self.tag.get_text()

    async def get_attribute(self, name: str) -> Optional[str]:
        value = self.tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    async def outer_html(self) -> str:
        return str(self.tag)

    async def parent(self) -> Optional["SoupElement"]:
        parent = self.tag.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return SoupElement(parent)

    async def children(self) -> List["SoupElement"]:
        return [SoupElement(child) for child in self.tag.children if isinstance(child, Tag)]

    async def tag_name(self) -> str:
        return self.tag.name.lower()

    async def class_list(self) -> List[str]:
        classes = self.tag.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        return list(classes)

    async def query_selector(self, selector: str) -> Optional["SoupElement"]:
        matches = _select(self.tag, selector)
        return SoupElement(matches[0]) if matches else None

    async def query_selector_all(self, selector: str) -> List["SoupElement"]:
        return [SoupElement(tag) for tag in _select(self.tag, selector)]

    async def same_node(self, other: ElementHandle) -> bool:
        return isinstance(other, SoupElement) and other.tag is self.tag

    async def matches(self, selector: str) -> bool:
        try:
            return self.tag.css.match(selector)
        except SelectorSyntaxError as e:
            raise SelectorError(f"Invalid selector '{selector}': {e}")


class SoupDOMAccessor(DOMAccessor):
    """
    Static page accessor.

    Build it from HTML directly (`SoupDOMAccessor(html, url=...)`) or let
    `navigate` fetch pages through an httpx client.
    """

    def __init__(
        self,
        html: str = "",
        url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        parser: str = "html.parser",
    ):
        self.parser = parser
        self.url = url
        self.soup = BeautifulSoup(html or "", parser)
        self._client = client
        self._owns_client = False
        self.extra_headers: Dict[str, str] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def load_html(self, html: str, url: str = "") -> None:
        """Replace the current snapshot."""
        self.soup = BeautifulSoup(html or "", self.parser)
        if url:
            self.url = url

    async def query_selector(self, selector: str) -> Optional[SoupElement]:
        matches = _select(self.soup, selector)
        return SoupElement(matches[0]) if matches else None

    async def query_selector_all(self, selector: str) -> List[SoupElement]:
        return [SoupElement(tag) for tag in _select(self.soup, selector)]

    async def set_extra_headers(self, headers: Dict[str, str]) -> None:
        self.extra_headers.update(headers)

    async def navigate(self, url: str, wait_policy: WaitPolicy = WaitPolicy.DOM_READY, timeout_ms: int = 30000) -> None:
        if self._client is None:
            self._client = build_client()
            self._owns_client = True

        logger.debug(f"Fetching {url} (wait policy {wait_policy.value} has no effect on static pages)")
        try:
            response = await self._client.get(
                url, headers=self.extra_headers or None, timeout=timeout_ms / 1000
            )
        except httpx.TimeoutException as e:
            raise NavigationTimeout(f"Timed out loading {url} after {timeout_ms}ms: {e}", url=url)
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to load {url}: {e}", url=url)

        if response.status_code >= 400:
            raise NetworkError(
                f"Loading {url} returned HTTP {response.status_code}", status=response.status_code, url=url
            )

        self.load_html(response.text, str(response.url))

    async def current_url(self) -> str:
        return self.url

    async def content(self) -> str:
        return str(self.soup)
