"""
Engine - Command Executor

Executes one concrete (loop-expanded) step against the DOM accessor, the
network capability and the variable store. Extraction commands never raise
for a missing element: they return a CommandOutcome with found=False and
an empty value.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..browser.accessor import DOMAccessor, ElementHandle, NetworkCapability, SelectorError
from ..shared.config import EngineSettings, get_settings
from ..shared.schemas import CommandKind, Step, WaitPolicy
from .exceptions import ConfigurationError, NetworkError, TransformError
from .json_path import get_path
from .variable_store import VariableStore, clean_value, to_text

logger = logging.getLogger(__name__)

# Pseudo-classes from jQuery / Playwright that CSS engines reject
NON_STANDARD_PSEUDO_CLASSES = (
    "contains", "visible", "hidden", "eq", "gt", "lt", "first", "last", "even", "odd",
    "has-text", "text", "text-is", "text-matches", "header", "input", "button",
    "checkbox", "parent", "selected",
)
_NON_STANDARD_PSEUDO = re.compile(
    r":(" + "|".join(re.escape(name) for name in sorted(NON_STANDARD_PSEUDO_CLASSES, key=len, reverse=True)) + r")(?![\w-])"
)

DOM_COMMANDS = {
    CommandKind.EXTRACT_TEXT,
    CommandKind.EXTRACT_ATTRIBUTE,
    CommandKind.EXTRACT_ARRAY,
    CommandKind.EXTRACT_COUNT,
}

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "-_.!~*'()"


def check_locator(locator: str) -> None:
    """Raise ConfigurationError for selectors using non-standard pseudo-classes."""
    match = _NON_STANDARD_PSEUDO.search(locator)
    if match:
        raise ConfigurationError(
            f"Selector '{locator}' uses non-standard pseudo-class ':{match.group(1)}'"
        )


def apply_regex(expression: str, text: str) -> str:
    """
    First defined capture group of the first match, else the full match.
    Input is returned unchanged when nothing matches.
    """
    try:
        pattern = re.compile(expression, re.DOTALL)
    except re.error as e:
        raise TransformError(f"Invalid regular expression '{expression}': {e}")

    match = pattern.search(text)
    if not match:
        return text
    for group in match.groups():
        if group is not None:
            return group.strip()
    return match.group(0).strip()


@dataclass
class CommandOutcome:
    """Result of one executed step."""
    value: Any = ""
    match_count: int = 0
    found: bool = True
    locator: Optional[str] = None
    samples: List[str] = field(default_factory=list)


class CommandExecutor:
    """
    Dispatches steps to command handlers and writes their outputs.

    One executor belongs to one recipe run; it holds no state of its own
    beyond references to the run's store and capabilities.
    """

    def __init__(
        self,
        store: VariableStore,
        accessor: Optional[DOMAccessor] = None,
        network: Optional[NetworkCapability] = None,
        engine_settings: Optional[EngineSettings] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.store = store
        self.accessor = accessor
        self.network = network
        self.settings = engine_settings or get_settings().engine
        self.default_headers = dict(default_headers or {})
        self._handlers = {
            CommandKind.NAVIGATE: self._navigate,
            CommandKind.EXTRACT_TEXT: self._extract_text,
            CommandKind.EXTRACT_ATTRIBUTE: self._extract_attribute,
            CommandKind.EXTRACT_ARRAY: self._extract_array,
            CommandKind.EXTRACT_COUNT: self._extract_count,
            CommandKind.STORE_URL: self._store_url,
            CommandKind.TRANSFORM_STORE: self._transform_store,
            CommandKind.TRANSFORM_REGEX: self._transform_regex,
            CommandKind.TRANSFORM_REPLACE: self._transform_replace,
            CommandKind.TRANSFORM_URL_ENCODE: self._transform_url_encode,
            CommandKind.HTTP_REQUEST: self._http_request,
            CommandKind.JSON_EXTRACT: self._json_extract,
        }

    async def execute(self, step: Step) -> CommandOutcome:
        """
        Execute one concrete step and store its output.

        Raises:
            ConfigurationError: Step cannot run as written
            TransformError: Invalid regular expression
            NetworkError: Navigation or request failure
        """
        handler = self._handlers[step.command]
        outcome = await handler(step)

        name = step.output.name
        if name and step.command != CommandKind.EXTRACT_ARRAY:
            self.store.set(name, outcome.value)
        if not outcome.samples and outcome.value not in (None, ""):
            outcome.samples = [to_text(outcome.value)[:200]]
        return outcome

    # Helpers

    def _require_accessor(self, step: Step) -> DOMAccessor:
        if self.accessor is None:
            raise ConfigurationError(f"{step.command.value} needs a DOM accessor")
        return self.accessor

    def _render_locator(self, step: Step) -> str:
        if not step.locator:
            raise ConfigurationError(f"{step.command.value} requires a locator")
        locator = self.store.render(step.locator)
        check_locator(locator)
        return locator

    async def _query_all(self, step: Step):
        accessor = self._require_accessor(step)
        locator = self._render_locator(step)
        try:
            elements = await accessor.query_selector_all(locator)
        except SelectorError as e:
            raise ConfigurationError(str(e))
        return locator, elements

    @staticmethod
    async def _text_of(element: ElementHandle) -> str:
        return clean_value(await element.text_content() or "")

    def _timeout_for(self, step: Step) -> int:
        timeout = step.timeout_ms or self.settings.page_load_timeout_ms
        return max(timeout, self.settings.min_page_load_timeout_ms)

    def _headers_for(self, step: Step) -> Dict[str, str]:
        headers = {**self.default_headers, **step.headers}
        return {key: self.store.render(value) for key, value in headers.items()}

    # DOM commands

    async def _navigate(self, step: Step) -> CommandOutcome:
        accessor = self._require_accessor(step)
        url = self.store.render(step.url or step.input)
        if not url:
            raise ConfigurationError("navigate requires a url")

        headers = self._headers_for(step)
        if headers:
            await accessor.set_extra_headers(headers)

        wait_policy = step.wait_policy or WaitPolicy(self.settings.default_wait_policy)
        timeout_ms = self._timeout_for(step)
        logger.debug(f"Navigating to {url} (wait={wait_policy.value}, timeout={timeout_ms}ms)")
        await accessor.navigate(url, wait_policy, timeout_ms)
        return CommandOutcome(value=url, match_count=1, samples=[url])

    async def _extract_text(self, step: Step) -> CommandOutcome:
        locator, elements = await self._query_all(step)
        if not elements:
            logger.debug(f"No elements found for locator: {locator}")
            return CommandOutcome(value="", match_count=0, found=False, locator=locator)
        return CommandOutcome(value=await self._text_of(elements[0]), match_count=len(elements), locator=locator)

    async def _extract_attribute(self, step: Step) -> CommandOutcome:
        if not step.attribute_name:
            raise ConfigurationError("extract_attribute requires attribute_name")
        locator, elements = await self._query_all(step)
        if not elements:
            logger.debug(f"No elements found for locator: {locator}")
            return CommandOutcome(value="", match_count=0, found=False, locator=locator)
        attribute = self.store.render(step.attribute_name)
        value = await elements[0].get_attribute(attribute)
        return CommandOutcome(value=(value or "").strip(), match_count=len(elements), locator=locator)

    async def _extract_array(self, step: Step) -> CommandOutcome:
        outcome = await self._extract_text(step)
        if step.output.name and outcome.value:
            self.store.push(step.output.name, outcome.value)
        return outcome

    async def _extract_count(self, step: Step) -> CommandOutcome:
        locator, elements = await self._query_all(step)
        return CommandOutcome(value=str(len(elements)), match_count=len(elements), locator=locator)

    async def _store_url(self, step: Step) -> CommandOutcome:
        url = await self._require_accessor(step).current_url()
        return CommandOutcome(value=url, match_count=1)

    # Transforms

    async def _transform_store(self, step: Step) -> CommandOutcome:
        return CommandOutcome(value=self.store.render(step.input))

    async def _transform_regex(self, step: Step) -> CommandOutcome:
        if not step.expression:
            raise ConfigurationError("transform_regex requires an expression")
        text = self.store.render(step.input)
        text = re.sub(r"\\([\\/?!])", r"\1", text)
        return CommandOutcome(value=apply_regex(step.expression, text))

    async def _transform_replace(self, step: Step) -> CommandOutcome:
        if not step.find:
            raise ConfigurationError("transform_replace requires find")
        text = self.store.render(step.input)
        return CommandOutcome(value=text.replace(step.find, step.replace or ""))

    async def _transform_url_encode(self, step: Step) -> CommandOutcome:
        return CommandOutcome(value=quote(self.store.render(step.input), safe=_URI_COMPONENT_SAFE))

    # Network commands

    async def _http_request(self, step: Step) -> CommandOutcome:
        if self.network is None:
            raise ConfigurationError("http_request needs a network capability")
        url = self.store.render(step.url or step.input)
        if not url:
            raise ConfigurationError("http_request requires a url")

        body = self.store.render(step.body) if step.body else None
        response = await self.network.request(
            url, method=step.method, headers=self._headers_for(step), body=body,
            timeout_ms=step.timeout_ms,
        )
        if not response.ok:
            raise NetworkError(f"{step.method} {url} returned HTTP {response.status}", status=response.status, url=url)
        try:
            payload = response.json()
        except ValueError:
            raise NetworkError(f"{step.method} {url} did not return JSON", status=response.status, url=url)
        return CommandOutcome(value=payload, match_count=1, samples=[to_text(payload)[:200]])

    async def _json_extract(self, step: Step) -> CommandOutcome:
        if not step.input or not step.locator:
            raise ConfigurationError("json_extract requires input and locator")

        source = self.store.get(step.input, None)
        if source is None:
            source = self.store.render(step.input)
        if isinstance(source, str):
            source = parse_json_text(source)

        path = self.store.render(step.locator)
        value = get_path(source, path)
        if value is None:
            logger.debug(f"JSON path {path} not found in {step.input}")
            return CommandOutcome(value="", match_count=0, found=False, locator=path)
        if not isinstance(value, (dict, list)):
            value = to_text(value)
        return CommandOutcome(value=value, match_count=1, locator=path)


def parse_json_text(text: str) -> Any:
    """Parse JSON text held in a variable; non-JSON text yields None."""
    try:
        return json.loads(text)
    except ValueError:
        return None
