"""
Inference - DOM Helpers

Small structural helpers over the abstract ElementHandle used by the
selector scorer and the consecutive-ancestor finder.
"""
import re
from typing import List, Optional

from ..browser.accessor import DOMAccessor, ElementHandle

MAIN_LANDMARK = 'main, [role="main"], #content, .content'

_GENERATED_CLASS = re.compile(r"\d{4,}")


def css_string(value: str) -> str:
    """Quote a value for use inside a CSS attribute selector."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def stable_classes(classes: List[str]) -> List[str]:
    """Drop classes that look generated (four or more digits)."""
    return [c for c in classes if c and not _GENERATED_CLASS.search(c)]


async def get_selector(element: Optional[ElementHandle], use_id: bool = True) -> Optional[str]:
    """`#id`, else `tag.firstStableClass`, else the tag name."""
    if element is None:
        return None
    tag = await element.tag_name()
    if use_id:
        element_id = await element.get_attribute("id")
        if element_id and not re.search(r"\s", element_id):
            return f"#{element_id}"
    classes = stable_classes(await element.class_list())
    if classes:
        return f"{tag}.{classes[0]}"
    return tag


async def ancestor_path(element: ElementHandle) -> List[ElementHandle]:
    """The element and its ancestors up to (excluding) body, innermost first."""
    path = []
    current: Optional[ElementHandle] = element
    while current is not None and await current.tag_name() not in ("body", "html"):
        path.append(current)
        current = await current.parent()
    return path


async def sibling_index(element: ElementHandle) -> int:
    """1-based position among the parent's element children, -1 without a parent."""
    parent = await element.parent()
    if parent is None:
        return -1
    for position, child in enumerate(await parent.children(), start=1):
        if await child.same_node(element):
            return position
    return -1


async def contains_node(nodes: List[ElementHandle], element: ElementHandle) -> bool:
    for node in nodes:
        if await node.same_node(element):
            return True
    return False


async def unique_selector(accessor: DOMAccessor, element: ElementHandle, max_parts: int = 6) -> str:
    """
    Shortest `a > b > c` chain of simple selectors, built from the element
    upwards, that matches exactly one element on the page. Falls back to the
    longest chain tried.
    """
    parts: List[str] = []
    current: Optional[ElementHandle] = element
    selector = await get_selector(element) or "*"
    while current is not None and len(parts) < max_parts:
        parts.insert(0, await get_selector(current) or "*")
        selector = " > ".join(parts)
        if parts[0].startswith("#") or len(await accessor.query_selector_all(selector)) == 1:
            return selector
        current = await current.parent()
        if current is not None and await current.tag_name() == "html":
            break
    return selector


async def in_main_content(element: ElementHandle) -> bool:
    return await element.closest(MAIN_LANDMARK) is not None
