"""
Inference - Consecutive-Ancestor Finder

Derives a loop-base selector and per-field selectors from the links of a
search results page:

1. Resolve at least three result anchors, either from known result links
   or from the largest group of outbound links sharing a path prefix.
2. Find the deepest ancestor common to all anchors.
3. Walk each anchor up to the common ancestor's child (its result
   container) and record the container's 1-based position.
4. Contiguous positions give an `:nth-child($i)` loop base; gaps fall back
   to `:nth-of-type($i)` with a warning.

When the structure does not support a confident answer the finder returns
found=False with a reason instead of guessing.
"""
import logging
import re
from collections import OrderedDict
from typing import List, Optional, Sequence, Tuple

from ..browser.accessor import DOMAccessor, ElementHandle
from ..shared.schemas import FieldSelectors, LoopSelectorCheck, SelectorCandidate
from .dom_utils import (
    ancestor_path, contains_node, css_string, get_selector, sibling_index,
    stable_classes, unique_selector,
)

logger = logging.getLogger(__name__)

MIN_ANCHORS = 3
MAX_ANCHORS = 10
MIN_CONTAINERS = 2

HEADINGS = "h1, h2, h3, h4, h5, h6"
TITLE_CLASSES = '[class*="title" i], [class*="name" i]'
IMAGES = "img[src], img[data-src], img[data-lazy-src]"
IMAGE_ATTRS = ("src", "data-src", "data-lazy-src")
BACKGROUND_IMAGE = re.compile(r"background(-image)?\s*:.*url\(", re.IGNORECASE)

_SCHEME_AND_HOST = re.compile(r"^https?://[^/]+", re.IGNORECASE)
_SKIPPED_LINK_PARTS = ("login", "cart", "account")


def link_path_pattern(href: str) -> str:
    """Path of a link minus its last segment, or 'root'."""
    path = _SCHEME_AND_HOST.sub("", href).split("?")[0].split("#")[0]
    parts = [part for part in path.split("/") if part]
    return "/".join(parts[:-1]) or "root"


def _last_segment(href: str) -> str:
    path = href.split("?")[0].split("#")[0].rstrip("/")
    return path.rsplit("/", 1)[-1]


def _skip_link(href: str) -> bool:
    lowered = href.lower()
    return (
        href.startswith("#")
        or href == "/"
        or len(href) < 3
        or any(part in lowered for part in _SKIPPED_LINK_PARTS)
    )


async def _dedupe(elements: Sequence[ElementHandle]) -> List[ElementHandle]:
    unique: List[ElementHandle] = []
    for element in elements:
        if not await contains_node(unique, element):
            unique.append(element)
    return unique


async def anchors_from_links(accessor: DOMAccessor, links: Sequence[str]) -> List[ElementHandle]:
    """Anchors for known result hrefs, matched exactly or by last path segment."""
    anchors = []
    for href in list(links)[:MAX_ANCHORS]:
        if not href:
            continue
        selector = f"a[href={css_string(href)}]"
        segment = _last_segment(href)
        if segment:
            selector += f", a[href$={css_string(segment)}]"
        anchor = await accessor.query_selector(selector)
        if anchor is not None:
            anchors.append(anchor)
    return await _dedupe(anchors)


async def anchors_by_path_group(accessor: DOMAccessor) -> Tuple[List[ElementHandle], Optional[str]]:
    """First anchors of the largest group of links sharing a path prefix."""
    groups: "OrderedDict[str, List[ElementHandle]]" = OrderedDict()
    for anchor in await accessor.query_selector_all("a[href]"):
        href = (await anchor.get_attribute("href") or "").strip()
        if _skip_link(href):
            continue
        groups.setdefault(link_path_pattern(href), []).append(anchor)

    best_pattern, best_group = None, []
    for pattern, group in groups.items():
        if len(group) > len(best_group):
            best_pattern, best_group = pattern, group

    if len(best_group) < MIN_ANCHORS:
        return [], None
    return best_group[:MAX_ANCHORS], best_pattern


async def common_ancestor(anchors: Sequence[ElementHandle]) -> Optional[ElementHandle]:
    """Deepest element (below body) that contains every anchor."""
    paths = [await ancestor_path(anchor) for anchor in anchors]
    for candidate in paths[0]:
        shared = True
        for path in paths[1:]:
            if not await contains_node(path, candidate):
                shared = False
                break
        if shared:
            return candidate
    return None


async def container_under(anchor: ElementHandle, ancestor: ElementHandle) -> Optional[ElementHandle]:
    """The ancestor's child that holds `anchor`."""
    current: Optional[ElementHandle] = anchor
    while current is not None:
        parent = await current.parent()
        if parent is None:
            return None
        if await parent.same_node(ancestor):
            return current
        current = parent
    return None


def is_contiguous(indices: Sequence[int]) -> bool:
    ordered = sorted(indices)
    return all(b - a == 1 for a, b in zip(ordered, ordered[1:]))


async def child_pattern(containers: Sequence[ElementHandle]) -> str:
    """`tag.sharedClass`, the bare tag, or `*` when tags differ."""
    tags = {await container.tag_name() for container in containers}
    if len(tags) != 1:
        return "*"
    tag = tags.pop()

    class_lists = [stable_classes(await container.class_list()) for container in containers]
    for class_name in class_lists[0]:
        if all(class_name in classes for classes in class_lists[1:]):
            return f"{tag}.{class_name}"
    return tag


def field_locator(loop_base: str, relative: Optional[str]) -> Optional[str]:
    """Absolute locator for a field; an empty relative selector is the item itself."""
    if relative is None:
        return None
    return f"{loop_base} {relative}" if relative else loop_base


async def derive_field_selectors(container: ElementHandle) -> FieldSelectors:
    """
    Title, url and image selectors relative to one result container.

    An empty selector means the container itself, as when each result is
    a bare link.
    """
    fields = FieldSelectors()
    is_link = await container.tag_name() == "a"

    title = await container.query_selector(HEADINGS) or await container.query_selector(TITLE_CLASSES)
    if title is not None:
        fields.title = await get_selector(title, use_id=False)
    else:
        fields.title = "" if is_link else "a"

    if is_link:
        fields.url = ""
    elif await container.query_selector("a[href]") is not None:
        fields.url = "a"
    fields.url_attr = "href"

    image = await container.query_selector(IMAGES)
    if image is not None:
        fields.image = await get_selector(image, use_id=False)
        for attr in IMAGE_ATTRS:
            if await image.get_attribute(attr):
                fields.image_attr = attr
                break
        return fields

    styled = [container] + await container.query_selector_all('[style*="background"]')
    for element in styled:
        style = await element.get_attribute("style") or ""
        if BACKGROUND_IMAGE.search(style):
            fields.image = await get_selector(element, use_id=False) if element is not container else ""
            fields.image_attr = "style"
            fields.cover_needs_extraction = True
            fields.cover_sample = style[:200]
            break
    return fields


class ConsecutiveAncestorFinder:
    """
    Finds the container of consecutive result siblings and the loop base
    that indexes them.
    """

    async def resolve_anchors(
        self, accessor: DOMAccessor, known_links: Optional[Sequence[str]] = None
    ) -> Tuple[List[ElementHandle], Optional[str]]:
        if known_links:
            anchors = await anchors_from_links(accessor, known_links)
            if len(anchors) >= MIN_ANCHORS:
                return anchors, None
            logger.debug(f"Only {len(anchors)} known links resolved, grouping links by path")
        return await anchors_by_path_group(accessor)

    async def find(self, accessor: DOMAccessor, known_links: Optional[Sequence[str]] = None) -> SelectorCandidate:
        """
        Derive a SelectorCandidate from the loaded page.

        Args:
            accessor: Page to analyze; never navigated
            known_links: hrefs of results found by an earlier probe

        Returns:
            SelectorCandidate, found=False with a reason when fewer than three
            anchors resolve, they share no ancestor below body, or fewer than
            two distinct containers remain
        """
        anchors, pattern = await self.resolve_anchors(accessor, known_links)
        if len(anchors) < MIN_ANCHORS:
            return SelectorCandidate(
                found=False, reason="Could not identify enough result links to analyze",
                anchor_count=len(anchors),
            )

        ancestor = await common_ancestor(anchors)
        if ancestor is None:
            return SelectorCandidate(
                found=False, reason="Result links have no common ancestor",
                anchor_count=len(anchors), link_pattern=pattern,
            )

        containers = []
        for anchor in anchors:
            container = await container_under(anchor, ancestor)
            if container is not None:
                containers.append(container)
        containers = await _dedupe(containers)
        if len(containers) < MIN_CONTAINERS:
            return SelectorCandidate(
                found=False, reason="Result links share a single container",
                anchor_count=len(anchors), link_pattern=pattern,
            )

        indices = [await sibling_index(container) for container in containers]
        consecutive = is_contiguous(indices)
        container_selector = await unique_selector(accessor, ancestor)
        item = await child_pattern(containers)

        candidate = SelectorCandidate(
            found=True,
            container=container_selector,
            item_selector=item,
            is_consecutive=consecutive,
            child_indices=indices,
            field_selectors=await derive_field_selectors(containers[0]),
            anchor_count=len(anchors),
            link_pattern=pattern,
            sample_html=(await containers[0].outer_html())[:500],
        )

        if consecutive:
            candidate.loop_base = f"{container_selector} > {item}:nth-child($i)"
            candidate.loop_from, candidate.loop_to = min(indices), max(indices)
        else:
            candidate.loop_base = f"{container_selector} > {item}:nth-of-type($i)"
            candidate.loop_from, candidate.loop_to = 1, len(containers)
            candidate.warning = (
                f"Result containers are not consecutive (positions {sorted(indices)}); "
                "nth-of-type is only correct if every same-tag sibling is a result"
            )

        title_locator = field_locator(candidate.loop_base, candidate.field_selectors.title)
        candidate.recommendation = (
            f"Loop $i from {candidate.loop_from} to {candidate.loop_to} over "
            f"'{candidate.loop_base}' and read '{title_locator}' as TITLE$i"
        )
        logger.info(
            f"Found {len(containers)} result containers under {container_selector} "
            f"(consecutive={consecutive})"
        )
        return candidate


async def find_consecutive_parent(
    accessor: DOMAccessor, known_links: Optional[Sequence[str]] = None
) -> SelectorCandidate:
    """Convenience wrapper around ConsecutiveAncestorFinder().find()."""
    return await ConsecutiveAncestorFinder().find(accessor, known_links)


async def validate_loop_selector(accessor: DOMAccessor, loop_base: str, expected: int = 5) -> LoopSelectorCheck:
    """Substitute $i = 1..expected and count indices that match something."""
    matched = []
    for index in range(1, expected + 1):
        selector = loop_base.replace("$i", str(index))
        if await accessor.query_selector(selector) is not None:
            matched.append(index)
    return LoopSelectorCheck(
        valid=len(matched) >= min(MIN_ANCHORS, expected),
        loop_base=loop_base,
        expected=expected,
        found_count=len(matched),
        matched_indices=matched,
    )
