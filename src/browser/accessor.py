"""
Browser - Accessor Interfaces

Abstract DOM and network capabilities the engine and the inference
analyzers run against. Concrete adapters: SoupDOMAccessor (static HTML via
BeautifulSoup), PlaywrightDOMAccessor (live page) and HttpxNetwork.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..shared.schemas import WaitPolicy


class SelectorError(Exception):
    """Raised by an accessor when a selector cannot be parsed."""
    pass


class ElementHandle(ABC):
    """One element of a loaded page."""

    @abstractmethod
    async def text_content(self) -> str:
        ...

    @abstractmethod
    async def get_attribute(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    async def outer_html(self) -> str:
        ...

    @abstractmethod
    async def parent(self) -> Optional["ElementHandle"]:
        """Parent element, None at the document root."""
        ...

    @abstractmethod
    async def children(self) -> List["ElementHandle"]:
        """Element children in document order."""
        ...

    @abstractmethod
    async def tag_name(self) -> str:
        """Lowercase tag name."""
        ...

    @abstractmethod
    async def class_list(self) -> List[str]:
        ...

    @abstractmethod
    async def query_selector(self, selector: str) -> Optional["ElementHandle"]:
        ...

    @abstractmethod
    async def query_selector_all(self, selector: str) -> List["ElementHandle"]:
        ...

    @abstractmethod
    async def same_node(self, other: "ElementHandle") -> bool:
        """True if both handles refer to the same DOM node."""
        ...

    async def matches(self, selector: str) -> bool:
        """True if the element itself matches `selector`."""
        parent = await self.parent()
        if parent is None:
            return False
        for candidate in await parent.query_selector_all(f":scope > {selector}"):
            if await candidate.same_node(self):
                return True
        return False

    async def closest(self, selector: str) -> Optional["ElementHandle"]:
        """Nearest ancestor (or self) matching `selector`."""
        node: Optional[ElementHandle] = self
        while node is not None:
            if await node.matches(selector):
                return node
            node = await node.parent()
        return None


class DOMAccessor(ABC):
    """Query and navigation primitives over one page session."""

    @abstractmethod
    async def query_selector(self, selector: str) -> Optional[ElementHandle]:
        ...

    @abstractmethod
    async def query_selector_all(self, selector: str) -> List[ElementHandle]:
        ...

    @abstractmethod
    async def navigate(self, url: str, wait_policy: WaitPolicy, timeout_ms: int) -> None:
        """Load `url`. Raises NavigationTimeout or NetworkError."""
        ...

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def content(self) -> str:
        """Serialized HTML of the current page."""
        ...

    async def set_extra_headers(self, headers: Dict[str, str]) -> None:
        """Headers sent with subsequent navigations; ignored by default."""
        return None


@dataclass
class NetworkResponse:
    """Response of a request issued through a NetworkCapability."""
    status: int
    url: str
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Parse the body. Raises ValueError for non-JSON bodies."""
        return json.loads(self.text)


@dataclass
class InterceptedResponse:
    """A JSON response observed on the wire."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    post_data: Optional[str] = None
    status: int = 200
    json: Any = None


ResponsePredicate = Callable[[InterceptedResponse], bool]


class NetworkCapability(ABC):
    """Issue requests and observe responses."""

    @abstractmethod
    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> NetworkResponse:
        """Raises NetworkError on transport failure."""
        ...

    @abstractmethod
    def on_response(self, predicate: Optional[ResponsePredicate] = None) -> AsyncIterator[InterceptedResponse]:
        """Stream of JSON responses accepted by `predicate`."""
        ...
