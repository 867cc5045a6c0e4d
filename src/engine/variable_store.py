"""
Engine - Variable Store

Name to value map shared by the steps of one recipe run, with template
rendering that always resolves the longest defined variable name at each
placeholder. `$URL1` never matches inside `$URL10`, whether or not `URL10`
is defined.
"""
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

# Post-hoc scan for placeholders that survived rendering
LEAKED_VARIABLE_PATTERN = re.compile(r"\$[A-Z_]+[0-9]*")

# A placeholder that names no defined variable
_UNRESOLVED_TOKEN = re.compile(r"\$[A-Z_][A-Z0-9_]*")

# Characters that continue a placeholder name
_NAME_CONTINUATION = set("ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")


def clean_value(value: Any) -> Any:
    """Collapse whitespace in string values; other values pass through."""
    if isinstance(value, str):
        return re.sub(r"\s+", " ", value).strip()
    return value


def to_text(value: Any) -> str:
    """Render a stored value as text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class VariableStore:
    """
    Variables of one recipe run.

    Values are strings, lists (from extract_array) or parsed JSON payloads
    (from http_request). Index-qualified names such as TITLE1 and TITLE10
    are distinct entries.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = {}
        self._keys_by_length: Optional[List[str]] = None
        self.unresolved: Set[str] = set()
        for name, value in (initial or {}).items():
            self.set(name, value)

    def set(self, name: str, value: Any) -> None:
        if not name:
            return
        if name not in self._values:
            self._keys_by_length = None
        self._values[name] = clean_value(value)

    def get(self, name: str, default: Any = "") -> Any:
        return self._values.get(name, default)

    def push(self, name: str, value: Any) -> None:
        """Append a non-empty value to a list variable, creating it if needed."""
        value = clean_value(value)
        if value in (None, "", [], {}):
            return
        current = self._values.get(name)
        if not isinstance(current, list):
            current = [] if current in (None, "") else [current]
            self.set(name, current)
        current.append(value)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def keys(self) -> Iterable[str]:
        return self._values.keys()

    def items(self):
        return self._values.items()

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of all variables."""
        return dict(self._values)

    def _sorted_keys(self) -> List[str]:
        if self._keys_by_length is None:
            self._keys_by_length = sorted(self._values, key=len, reverse=True)
        return self._keys_by_length

    def _match_key(self, template: str, start: int) -> Optional[str]:
        """Longest defined key starting at `start` that ends on a name boundary."""
        for key in self._sorted_keys():
            if not template.startswith(key, start):
                continue
            end = start + len(key)
            if end < len(template) and template[end] in _NAME_CONTINUATION:
                continue
            return key
        return None

    def render(self, template: Optional[str]) -> str:
        """
        Substitute `$NAME` placeholders with their values.

        Scans left to right. At each `$` the longest defined name that is
        not followed by another name character is used. Unknown uppercase
        placeholders render as empty text and are recorded in `unresolved`
        so callers can report them. Any other `$` is kept literally.
        """
        if not template:
            return ""
        if "$" not in template:
            return template

        parts: List[str] = []
        pos = 0
        length = len(template)
        while pos < length:
            dollar = template.find("$", pos)
            if dollar == -1:
                parts.append(template[pos:])
                break
            parts.append(template[pos:dollar])

            key = self._match_key(template, dollar + 1)
            if key is not None:
                parts.append(to_text(self._values[key]))
                pos = dollar + 1 + len(key)
                continue

            token = _UNRESOLVED_TOKEN.match(template, dollar)
            if token:
                self.unresolved.add(token.group())
                logger.debug(f"Unresolved variable {token.group()} rendered as empty text")
                pos = token.end()
                continue

            parts.append("$")
            pos = dollar + 1

        return "".join(parts)

    @staticmethod
    def find_leaked(value: Any) -> List[str]:
        """Placeholders left in a value (strings, lists and dicts are scanned)."""
        found: List[str] = []
        if isinstance(value, str):
            found.extend(LEAKED_VARIABLE_PATTERN.findall(value))
        elif isinstance(value, dict):
            for item in value.values():
                found.extend(VariableStore.find_leaked(item))
        elif isinstance(value, (list, tuple)):
            for item in value:
                found.extend(VariableStore.find_leaked(item))
        return found
