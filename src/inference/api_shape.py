"""
Inference - API Shape Analyzer

Finds the autocomplete/search-shaped array in an intercepted JSON payload
and the field paths a recipe needs to read from it. Also ranks captured
API calls, turns the best one into URL/body templates, and builds the
http_request + json_extract steps for a listing recipe.
"""
import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import quote, quote_plus

from ..browser.accessor import InterceptedResponse, NetworkCapability, ResponsePredicate
from ..engine.json_path import get_path, join_path, parse_path
from ..shared.schemas import (
    ApiCallCandidate, ApiShapeDescriptor, CommandKind, LoopConfig, OutputSpec, Step, StructureKind,
)

logger = logging.getLogger(__name__)

VENDOR_MARKERS = ("hits", "suggestions", "results", "documents")
# Markers naming the item array itself; "results" often wraps per-index envelopes
ITEM_MARKERS = ("hits", "suggestions", "documents")

TITLE_EXACT_KEYS = {
    "label", "text", "display", "naslov", "naziv", "titulo", "titre",
    "headline", "value", "query", "heading",
}
SUBTITLE_KEYS = ("subtitle", "description", "author", "brand", "designer", "artist", "creator", "publisher")
URL_EXACT_KEYS = {"uri", "path", "slug", "permalink"}
IMAGE_KEYS = ("image", "img", "cover", "thumb", "picture", "photo", "avatar", "poster")

MAX_DEPTH = 8
MAX_ELEMENTS_SCANNED = 10
MIN_UNMATCHED_ITEMS = 3

# Headers that describe the captured transport rather than the API contract
_DROPPED_HEADERS = {"cookie", "content-length", "host", "connection", "accept-encoding"}


def is_title_key(key: str) -> bool:
    key = key.lower()
    return "title" in key or "name" in key or key in TITLE_EXACT_KEYS


def is_subtitle_key(key: str) -> bool:
    key = key.lower()
    return any(marker in key for marker in SUBTITLE_KEYS)


def is_url_key(key: str) -> bool:
    key = key.lower()
    return "url" in key or "href" in key or "link" in key or key in URL_EXACT_KEYS


def is_image_key(key: str) -> bool:
    key = key.lower()
    return any(marker in key for marker in IMAGE_KEYS)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(v, str) for v in value)


def enumerate_arrays(data: Any, path: str = "", depth: int = 0) -> Iterator[Tuple[str, list]]:
    """Every array reachable from `data` with its access path, outermost first."""
    if depth > MAX_DEPTH:
        return
    if isinstance(data, list):
        yield path, data
        for index, element in enumerate(data[:MAX_ELEMENTS_SCANNED]):
            if isinstance(element, (dict, list)):
                yield from enumerate_arrays(element, join_path(path, index), depth + 1)
    elif isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                yield from enumerate_arrays(value, join_path(path, key), depth + 1)


def has_vendor_marker(path: str) -> bool:
    return any(
        isinstance(part, str) and any(marker in part.lower() for marker in VENDOR_MARKERS)
        for part in parse_path(path)
    )


def marker_rank(path: str) -> Tuple[int, int]:
    """
    Sort key for candidate arrays: arrays named by an item marker first,
    then arrays under any vendor marker, deepest first, then the rest in
    document order.
    """
    parts = parse_path(path)
    keys = [part.lower() for part in parts if isinstance(part, str)]
    if keys and any(marker in keys[-1] for marker in ITEM_MARKERS):
        return 0, -len(parts)
    if has_vendor_marker(path):
        return 1, -len(parts)
    return 2, 0


def _first_string_leaf(value: Any, path: str, depth: int = 0) -> Optional[str]:
    """Path of the first string (or first element of a string list) under `value`."""
    if depth > 3:
        return None
    if isinstance(value, str):
        return path
    if _is_string_list(value):
        return join_path(path, 0)
    if isinstance(value, dict):
        for key, child in value.items():
            leaf = _first_string_leaf(child, join_path(path, key), depth + 1)
            if leaf:
                return leaf
    return None


def find_item_fields(item: Dict[str, Any], prefix: str = "", nested: bool = True) -> Dict[str, str]:
    """
    Title, subtitle, url and image paths inside one object element.

    Image-like keys win over url-like keys ("image_url" is an image) and
    subtitle-like keys are checked before title-like ones ("subtitle"
    contains "title"). Objects under other keys are searched one level deep.
    """
    fields: Dict[str, str] = {}

    def claim(name: str, path: Optional[str]):
        if path is not None and name not in fields:
            fields[name] = path

    for key, value in item.items():
        path = join_path(prefix, key)
        if is_image_key(key):
            role = "image"
        elif is_url_key(key):
            role = "url"
        elif is_subtitle_key(key):
            role = "subtitle"
        elif is_title_key(key):
            role = "title"
        else:
            continue

        if isinstance(value, str):
            claim(role, path)
        elif _is_string_list(value) and role != "subtitle":
            claim(role, join_path(path, 0))
        elif isinstance(value, dict):
            claim(role, _first_string_leaf(value, path))

    if nested:
        for key, value in item.items():
            if isinstance(value, dict):
                for name, path in find_item_fields(value, join_path(prefix, key), nested=False).items():
                    claim(name, path)
    return fields


def _analyze_string_array(path: str, array: list, query: str) -> Optional[ApiShapeDescriptor]:
    query_lower = query.lower()
    if not any(query_lower in element.lower() for element in array):
        return None
    return ApiShapeDescriptor(
        found=True,
        items_path=path,
        title_path="",
        sample_item=array[0],
        structure_kind=StructureKind.STRING_ARRAY,
        item_count=len(array),
    )


def _echoes_query(title_path: str, titles: list, query_lower: str) -> bool:
    """A `query` field repeating the search input is the request echo, not a title."""
    keys = [part for part in parse_path(title_path) if isinstance(part, str)]
    if not keys or keys[-1].lower() != "query":
        return False
    return all(isinstance(t, str) and t.strip().lower() == query_lower.strip() for t in titles if t)


def _analyze_object_array(path: str, array: list, query: str) -> Optional[ApiShapeDescriptor]:
    objects = [element for element in array if isinstance(element, dict)]
    if not objects:
        return None

    fields: Dict[str, str] = {}
    sample = objects[0]
    for element in objects[:MAX_ELEMENTS_SCANNED]:
        fields = find_item_fields(element)
        if "title" in fields:
            sample = element
            break
    if "title" not in fields:
        return None

    query_lower = query.lower()
    titles = [get_path(element, fields["title"]) for element in objects]
    if _echoes_query(fields["title"], titles, query_lower):
        return None
    matched = any(isinstance(title, str) and query_lower in title.lower() for title in titles)
    if not matched and len(array) < MIN_UNMATCHED_ITEMS:
        return None

    return ApiShapeDescriptor(
        found=True,
        items_path=path,
        title_path=fields["title"],
        subtitle_path=fields.get("subtitle"),
        url_path=fields.get("url"),
        image_path=fields.get("image"),
        sample_item=sample,
        structure_kind=StructureKind.OBJECT_ARRAY,
        item_count=len(array),
    )


def analyze_api_response(payload: Any, query: str) -> ApiShapeDescriptor:
    """
    Locate the result array in a JSON payload.

    Arrays named hits, suggestions or documents are tried first, then other
    arrays under a vendor marker such as results (deepest first), then the
    rest in document order. The root path is the empty string.
    """
    arrays = list(enumerate_arrays(payload))
    ordered = sorted(arrays, key=lambda entry: marker_rank(entry[0]))

    for path, array in ordered:
        if not array:
            continue
        if _is_string_list(array):
            shape = _analyze_string_array(path, array, query)
        else:
            shape = _analyze_object_array(path, array, query)
        if shape is not None:
            logger.debug(f"Autocomplete-shaped array at '{path}' ({shape.item_count} items)")
            return shape

    return ApiShapeDescriptor(found=False, reason="not autocomplete-shaped")


def detect_vendor(url: str) -> Optional[str]:
    lowered = url.lower()
    for vendor in ("algolia", "typesense", "elasticsearch"):
        if vendor in lowered:
            return vendor
    return None


def call_priority(call: InterceptedResponse) -> int:
    """Lower is better: known vendors, POST with a body, "search" URLs, the rest."""
    vendor = detect_vendor(call.url)
    if vendor == "algolia":
        return 0
    if vendor == "typesense":
        return 1
    if vendor == "elasticsearch":
        return 2
    if call.method.upper() == "POST" and call.post_data:
        return 3
    if "search" in call.url.lower():
        return 4
    return 5


def url_template(url: str, query: str) -> str:
    """Replace the query (encoded or raw) in a URL with $INPUT."""
    if not query:
        return url
    for form in (quote(query, safe="-_.!~*'()"), quote_plus(query), query):
        url = url.replace(form, "$INPUT")
    return url


def body_template(body: Optional[str], query: str) -> Optional[str]:
    """Case-insensitively replace the query (raw or encoded) in a request body."""
    if not body or not query:
        return body
    for form in (query, quote(query, safe="-_.!~*'()")):
        body = re.sub(re.escape(form), lambda m: "$INPUT", body, flags=re.IGNORECASE)
    return body


def replayable_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        name: value for name, value in headers.items()
        if not name.startswith(":") and name.lower() not in _DROPPED_HEADERS
    }


def analyze_captured_calls(calls: Sequence[InterceptedResponse], query: str) -> Optional[ApiCallCandidate]:
    """
    Pick the best captured JSON call for `query`.

    Returns:
        The first call, in priority order, whose payload is
        autocomplete-shaped, or None when no call qualifies
    """
    for call in sorted(calls, key=call_priority):
        if call.json is None:
            continue
        shape = analyze_api_response(call.json, query)
        if not shape.found:
            continue

        is_post_body = call.method.upper() == "POST" and bool(call.post_data)
        candidate = ApiCallCandidate(
            url=call.url,
            method=call.method.upper(),
            url_pattern=call.url if is_post_body else url_template(call.url, query),
            body_pattern=body_template(call.post_data, query),
            headers=replayable_headers(call.headers),
            vendor=detect_vendor(call.url),
            shape=shape,
        )
        logger.info(f"Selected API call {candidate.method} {candidate.url_pattern} (vendor {candidate.vendor})")
        return candidate

    logger.info(f"None of {len(calls)} captured calls returned autocomplete-shaped JSON")
    return None


async def capture_api_calls(
    network: NetworkCapability,
    predicate: Optional[ResponsePredicate] = None,
    limit: int = 10,
    timeout_s: float = 5.0,
    trigger: Optional[Callable[[], Awaitable[Any]]] = None,
) -> List[InterceptedResponse]:
    """
    Collect up to `limit` JSON responses within `timeout_s`.

    `trigger` runs once the subscription is active, typically typing a query
    into a search box or issuing the request directly.
    """
    captured: List[InterceptedResponse] = []
    stream = network.on_response(predicate)

    async def collect():
        async for response in stream:
            captured.append(response)
            if len(captured) >= limit:
                break

    collector = asyncio.ensure_future(collect())
    # Let the collector subscribe before anything is sent
    await asyncio.sleep(0)
    try:
        if trigger is not None:
            await trigger()
        await asyncio.wait_for(collector, timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.debug(f"Capture window closed after {timeout_s}s with {len(captured)} response(s)")
    finally:
        if not collector.done():
            collector.cancel()
            await asyncio.gather(collector, return_exceptions=True)
        await stream.aclose()
    return captured


def build_api_steps(
    candidate: ApiCallCandidate,
    shape: Optional[ApiShapeDescriptor] = None,
    max_items: int = 10,
) -> List[Step]:
    """Listing steps replaying the API call and reading each item field."""
    shape = shape or candidate.shape
    steps = [
        Step(
            command=CommandKind.HTTP_REQUEST,
            url=candidate.url_pattern,
            method=candidate.method,
            headers=candidate.headers,
            body=candidate.body_pattern,
            output=OutputSpec(name="API_RESPONSE", show=False),
        )
    ]

    fields = [("TITLE", shape.title_path), ("SUBTITLE", shape.subtitle_path),
              ("URL", shape.url_path), ("COVER", shape.image_path)]
    for name, field_path in fields:
        if field_path is None:
            continue
        item_path = f"{shape.items_path or ''}[$i]"
        locator = f"{item_path}.{field_path}" if field_path else item_path
        steps.append(Step(
            command=CommandKind.JSON_EXTRACT,
            input="API_RESPONSE",
            locator=locator,
            output=OutputSpec(name=f"{name}$i", show=True),
            loop=LoopConfig(index="i", from_=0, to=max_items - 1),
        ))
    return steps
