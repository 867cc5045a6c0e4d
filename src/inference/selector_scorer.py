"""
Inference - Selector Scorer

Ranks candidate repeating-item selectors on a loaded search results page.
Each candidate is filtered down to elements that look like real results,
accepted when 2 to 100 remain, and scored on images, titles, selector text
and main-content placement. The strictly highest score wins, so ties keep
declaration order and reruns on the same snapshot give the same answer.
"""
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from ..browser.accessor import DOMAccessor, ElementHandle
from ..shared.schemas import ScoredSelector
from .dom_utils import MAIN_LANDMARK, get_selector, in_main_content

logger = logging.getLogger(__name__)

CANDIDATE_SELECTORS = [
    '[class*="bookTitle"]', '[class*="book-title"]',
    '[class*="searchResult"]', '[class*="search-result"]',
    '[class*="searchItem"]', '[class*="search-item"]',
    '[class*="result"]:not([class*="searchResults"])',
    '[class*="item"]:not(li[class*="nav"]):not([class*="menu"])',
    '[class*="card"]:not([class*="sidebar"])',
    '[data-testid*="result"]', '[data-testid*="item"]',
    'article', 'main [class*="row"]', '[class*="listing"]',
    'table.tableList tr',
    '[class*="perfume"]', '[class*="product"]',
]

NON_CONTENT_PATTERNS = [
    'fc-consent', 'fc-preference', 'fc-purpose', 'fc-dialog',
    'cookie', 'consent', 'gdpr', 'privacy',
    'onetrust', 'cookiebot', 'didomi', 'quantcast',
    'newsletter', 'subscribe', 'signup', 'sign-up',
    'login', 'signin', 'sign-in', 'register',
    'advertisement', 'ad-', 'ads-', 'sponsor',
    'modal', 'popup', 'overlay', 'banner',
]

GDPR_PHRASES = [
    'store and/or access', 'advertising', 'personalised', 'personalized',
    'legitimate interest', 'data processing', 'cookies', 'consent',
    'privacy policy', 'terms of service', 'accept all', 'reject all',
]

EXCLUDED_LINK_PARTS = ['/genres/', '/categories/', '/tags/', '/signin', '/login', '/register']

NAVIGATION_HINTS = ['ul.', 'nav', 'menu', 'sidebar', 'footer', 'header']

TITLE_DESCENDANTS = 'h1, h2, h3, h4, h5, h6, [class*="title"]'

MIN_ITEMS = 2
MAX_ITEMS = 100
MIN_TEXT_LENGTH = 10


async def _class_and_id(element: Optional[ElementHandle]) -> str:
    if element is None:
        return ""
    classes = " ".join(await element.class_list())
    element_id = await element.get_attribute("id") or ""
    return f"{classes} {element_id}".lower()


async def is_non_content(element: ElementHandle) -> bool:
    """Consent banners, newsletter boxes, login prompts, ads and overlays."""
    own = await _class_and_id(element)
    parent = await _class_and_id(await element.parent())
    if any(pattern in own or pattern in parent for pattern in NON_CONTENT_PATTERNS):
        return True
    text = (await element.text_content() or "").lower()
    return any(phrase in text for phrase in GDPR_PHRASES)


async def _primary_link(element: ElementHandle) -> Optional[ElementHandle]:
    if await element.tag_name() == "a" and await element.get_attribute("href") is not None:
        return element
    return await element.query_selector("a[href]")


async def looks_like_result(element: ElementHandle) -> bool:
    """An outbound, non-navigation link and at least ten characters of text."""
    if await is_non_content(element):
        return False

    link = await _primary_link(element)
    if link is None:
        return False
    href = await link.get_attribute("href") or ""
    if any(part in href for part in EXCLUDED_LINK_PARTS):
        return False
    if "#" in href and "/#/" not in href:
        return False

    return len((await element.text_content() or "").strip()) >= MIN_TEXT_LENGTH


async def score_selector(selector: str, items: Sequence[ElementHandle]) -> int:
    """Heuristic score for a set of result elements."""
    score = 0
    for item in items:
        if await item.query_selector("img") is not None:
            score += 2
        if await item.query_selector(TITLE_DESCENDANTS) is not None:
            score += 3

    if any(hint in selector for hint in NAVIGATION_HINTS):
        score -= 10

    for item in items:
        if await in_main_content(item):
            score += 5
            break

    return score


async def describe_item(item: ElementHandle, index: int) -> Dict[str, Any]:
    """Summary of one result element for authoring tools."""
    link = await _primary_link(item)
    image = await item.query_selector("img")
    title = await item.query_selector(TITLE_DESCENDANTS)
    text = (await item.text_content() or "").strip()
    return {
        "index": index,
        "item_selector": await get_selector(item),
        "link_href": await link.get_attribute("href") if link else None,
        "link_text": (await link.text_content() or "").strip()[:100] if link else None,
        "link_selector": await get_selector(link),
        "title_selector": await get_selector(title),
        "title_text": (await title.text_content() or "").strip()[:100] if title else None,
        "img_src": await image.get_attribute("src") if image else None,
        "img_selector": await get_selector(image),
        "text_content": text[:200],
        "html_snippet": (await item.outer_html())[:500],
    }


class SelectorScorer:
    """
    Finds the repeating result container of a search results page.

    Runs against an already loaded accessor and never navigates.
    """

    def __init__(self, candidates: Optional[Sequence[str]] = None, max_described: int = 10):
        self.candidates = list(candidates or CANDIDATE_SELECTORS)
        self.max_described = max_described

    async def _valid_items(self, accessor: DOMAccessor, selector: str) -> List[ElementHandle]:
        items = await accessor.query_selector_all(selector)
        return [item for item in items if await looks_like_result(item)]

    async def _refine_single(self, container: ElementHandle):
        """
        A single match with three or more children may be the list itself:
        use its most common child class among children holding links.
        """
        children = await container.children()
        if len(children) < 3:
            return None, []

        counts: Counter = Counter()
        for child in children:
            classes = await child.class_list()
            if classes and await child.query_selector("a[href]") is not None:
                counts[classes[0]] += 1

        best_class, best_count = None, 0
        for class_name, count in counts.items():
            if count > best_count and count >= 3:
                best_class, best_count = class_name, count
        if best_class is None:
            return None, []

        items = await container.query_selector_all(f":scope > .{best_class}")
        if len(items) < 3:
            return None, []

        container_classes = await container.class_list()
        prefix = f".{container_classes[0]}" if container_classes else await container.tag_name()
        return f"{prefix} > .{best_class}", items

    async def find_best(self, accessor: DOMAccessor) -> ScoredSelector:
        """
        Score every candidate selector and return the best one.

        Returns:
            ScoredSelector with found=False and a reason when no candidate
            yields between 2 and 100 result-like elements
        """
        best: Optional[ScoredSelector] = None
        best_items: List[ElementHandle] = []
        single_matches = []

        for selector in self.candidates:
            items = await self._valid_items(accessor, selector)
            if len(items) == 1:
                single_matches.append((selector, items[0]))
            if not MIN_ITEMS <= len(items) <= MAX_ITEMS:
                continue

            score = await score_selector(selector, items)
            logger.debug(f"Candidate {selector}: {len(items)} items, score {score}")
            if best is None or score > best.score:
                best = ScoredSelector(found=True, selector=selector, count=len(items), score=score)
                best_items = items

        if best is None:
            for selector, container in single_matches:
                refined, items = await self._refine_single(container)
                if refined:
                    best = ScoredSelector(
                        found=True, selector=refined, count=len(items),
                        score=await score_selector(refined, items), refined_from=selector,
                    )
                    best_items = items
                    break

        if best is None:
            logger.info("No repeating result container found")
            return ScoredSelector(
                found=False,
                reason=f"No candidate selector matched between {MIN_ITEMS} and {MAX_ITEMS} result-like elements",
            )

        described = best_items[: self.max_described]
        best.items = [await describe_item(item, i) for i, item in enumerate(described)]
        best.sample_text = best.items[0]["text_content"] if best.items else None
        best.common_parent, best.items_are_direct_children = await self._common_parent(best_items)
        logger.info(f"Best result selector {best.selector} ({best.count} items, score {best.score})")
        return best

    @staticmethod
    async def _common_parent(items: Sequence[ElementHandle]):
        if len(items) < 2:
            return None, False
        first_parent = await items[0].parent()
        if first_parent is None:
            return None, False
        for item in items[1:]:
            parent = await item.parent()
            if parent is None or not await parent.same_node(first_parent):
                return None, False
        return await get_selector(first_parent), True


async def find_result_selector(accessor: DOMAccessor) -> ScoredSelector:
    """Convenience wrapper around SelectorScorer().find_best()."""
    return await SelectorScorer().find_best(accessor)


__all__ = [
    "CANDIDATE_SELECTORS", "MAIN_LANDMARK", "SelectorScorer",
    "find_result_selector", "looks_like_result", "score_selector",
]
