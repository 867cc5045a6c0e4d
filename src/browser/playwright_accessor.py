"""
Browser - Playwright DOM Accessor

DOMAccessor and NetworkCapability over a live Playwright page. The browser
process is owned by `PlaywrightSession`; a host that already manages its
own browser can wrap an existing Page directly.
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Set

from playwright.async_api import (
    async_playwright, Browser, BrowserContext, ElementHandle as PwElementHandle,
    Error as PlaywrightError, Page, Response, TimeoutError as PlaywrightTimeoutError,
)

from ..engine.exceptions import NavigationTimeout, NetworkError
from ..shared.config import get_settings
from ..shared.schemas import WaitPolicy
from .accessor import (
    DOMAccessor, ElementHandle, InterceptedResponse, NetworkCapability,
    NetworkResponse, ResponsePredicate, SelectorError,
)

logger = logging.getLogger(__name__)

WAIT_UNTIL = {
    WaitPolicy.IMMEDIATE: "commit",
    WaitPolicy.DOM_READY: "domcontentloaded",
    WaitPolicy.NETWORK_IDLE: "networkidle",
}


def _is_selector_error(error: PlaywrightError) -> bool:
    message = str(error).lower()
    return "not a valid selector" in message or "unexpected token" in message


class PlaywrightElement(ElementHandle):
    """ElementHandle wrapping a Playwright element handle."""

    def __init__(self, handle: PwElementHandle):
        self.handle = handle

    async def text_content(self) -> str:
        return await self.handle.text_content() or ""

    async def get_attribute(self, name: str) -> Optional[str]:
        return await self.handle.get_attribute(name)

    async def outer_html(self) -> str:
        return await self.handle.evaluate("el => el.outerHTML")

    async def parent(self) -> Optional["PlaywrightElement"]:
        js_handle = await self.handle.evaluate_handle(
            "el => el.parentElement"
        )
        element = js_handle.as_element()
        return PlaywrightElement(element) if element else None

    async def children(self) -> List["PlaywrightElement"]:
        return [PlaywrightElement(h) for h in await self.handle.query_selector_all(":scope > *")]

    async def tag_name(self) -> str:
        return (await self.handle.evaluate("el => el.tagName")).lower()

    async def class_list(self) -> List[str]:
        return await self.handle.evaluate("el => Array.from(el.classList)")

    async def query_selector(self, selector: str) -> Optional["PlaywrightElement"]:
        try:
            handle = await self.handle.query_selector(selector)
        except PlaywrightError as e:
            if _is_selector_error(e):
                raise SelectorError(f"Invalid selector '{selector}': {e}")
            raise
        return PlaywrightElement(handle) if handle else None

    async def query_selector_all(self, selector: str) -> List["PlaywrightElement"]:
        try:
            handles = await self.handle.query_selector_all(selector)
        except PlaywrightError as e:
            if _is_selector_error(e):
                raise SelectorError(f"Invalid selector '{selector}': {e}")
            raise
        return [PlaywrightElement(h) for h in handles]

    async def same_node(self, other: ElementHandle) -> bool:
        if not isinstance(other, PlaywrightElement):
            return False
        return await self.handle.evaluate("(a, b) => a === b", other.handle)

    async def matches(self, selector: str) -> bool:
        try:
            return await self.handle.evaluate("(el, sel) => el.matches(sel)", selector)
        except PlaywrightError as e:
            raise SelectorError(f"Invalid selector '{selector}': {e}")


class PlaywrightDOMAccessor(DOMAccessor, NetworkCapability):
    """Accessor over one Playwright page."""

    def __init__(self, page: Page):
        self.page = page

    async def query_selector(self, selector: str) -> Optional[PlaywrightElement]:
        try:
            handle = await self.page.query_selector(selector)
        except PlaywrightError as e:
            if _is_selector_error(e):
                raise SelectorError(f"Invalid selector '{selector}': {e}")
            raise
        return PlaywrightElement(handle) if handle else None

    async def query_selector_all(self, selector: str) -> List[PlaywrightElement]:
        try:
            handles = await self.page.query_selector_all(selector)
        except PlaywrightError as e:
            if _is_selector_error(e):
                raise SelectorError(f"Invalid selector '{selector}': {e}")
            raise
        return [PlaywrightElement(h) for h in handles]

    async def set_extra_headers(self, headers: Dict[str, str]) -> None:
        await self.page.set_extra_http_headers(headers)

    async def navigate(self, url: str, wait_policy: WaitPolicy = WaitPolicy.DOM_READY, timeout_ms: int = 30000) -> None:
        try:
            response = await self.page.goto(url, wait_until=WAIT_UNTIL[wait_policy], timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Timed out loading {url} after {timeout_ms}ms: {e}", url=url)
        except PlaywrightError as e:
            raise NetworkError(f"Failed to load {url}: {e}", url=url)

        if response is not None and response.status >= 400:
            raise NetworkError(f"Loading {url} returned HTTP {response.status}", status=response.status, url=url)

    async def current_url(self) -> str:
        return self.page.url

    async def content(self) -> str:
        return await self.page.content()

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> NetworkResponse:
        """Issue a request sharing the page's cookies."""
        try:
            response = await self.page.request.fetch(
                url, method=method.upper(), headers=headers or None, data=body,
                timeout=timeout_ms or get_settings().engine.page_load_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Request to {url} timed out: {e}", url=url)
        except PlaywrightError as e:
            raise NetworkError(f"Request to {url} failed: {e}", url=url)

        return NetworkResponse(
            status=response.status,
            url=response.url,
            text=await response.text(),
            headers=dict(response.headers),
        )

    async def on_response(self, predicate: Optional[ResponsePredicate] = None) -> AsyncIterator[InterceptedResponse]:
        queue: asyncio.Queue = asyncio.Queue()

        async def capture(response: Response):
            content_type = response.headers.get("content-type", "")
            if "json" not in content_type:
                return
            try:
                payload = await response.json()
            except (PlaywrightError, ValueError) as e:
                logger.debug(f"Ignoring unreadable JSON response from {response.url}: {e}")
                return
            request = response.request
            queue.put_nowait(InterceptedResponse(
                url=response.url,
                method=request.method,
                headers=dict(request.headers),
                post_data=request.post_data,
                status=response.status,
                json=payload,
            ))

        pending: Set[asyncio.Task] = set()

        def listener(response: Response):
            task = asyncio.ensure_future(capture(response))
            pending.add(task)
            task.add_done_callback(pending.discard)

        self.page.on("response", listener)
        try:
            while True:
                item = await queue.get()
                if predicate is None or predicate(item):
                    yield item
        finally:
            self.page.remove_listener("response", listener)
            for task in list(pending):
                task.cancel()


class PlaywrightSession:
    """
    Owns a Playwright browser, context and page.

    Usage:
        async with PlaywrightSession() as accessor:
            await accessor.navigate(url, WaitPolicy.NETWORK_IDLE, 30000)
    """

    def __init__(self, headless: Optional[bool] = None):
        browser_settings = get_settings().browser
        self.headless = browser_settings.headless if headless is None else headless
        self.browser_settings = browser_settings
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self) -> PlaywrightDOMAccessor:
        """Launch the browser and open a page."""
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=self.headless,
            args=['--no-sandbox', '--disable-dev-shm-usage'],
        )
        self.context = await self.browser.new_context(
            viewport={
                'width': self.browser_settings.viewport_width,
                'height': self.browser_settings.viewport_height,
            },
            user_agent=self.browser_settings.user_agent,
            locale=self.browser_settings.locale,
        )
        self.page = await self.context.new_page()
        logger.info("Playwright session started")
        return PlaywrightDOMAccessor(self.page)

    async def close(self):
        """Close page, context, browser and driver."""
        if self.page:
            await self.page.close()
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        logger.info("Playwright session closed")

    async def __aenter__(self) -> PlaywrightDOMAccessor:
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
