"""
Engine - Loop Expander

Turns one templated step plus its loop config into concrete steps by
textual substitution of the index placeholder. Substitution happens here,
before the step is queued, and never goes through the variable store.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Set, Union

from ..shared.config import get_settings
from ..shared.schemas import Step
from .exceptions import ConfigurationError
from .variable_store import VariableStore

logger = logging.getLogger(__name__)

# Placeholder names treated as loop indices when a step has no loop
CONVENTIONAL_INDEX_NAMES = {"i", "j", "k", "n", "idx", "index"}

# Fields that carry templates with loop placeholders
TEMPLATED_FIELDS = ("locator", "input", "url", "body", "attribute_name")

_LOWER_PLACEHOLDER = re.compile(r"\$([a-z][a-z0-9_]*)(?![A-Za-z0-9_])")


@dataclass
class ExpandedStep:
    """A concrete step ready for the executor."""
    step: Step
    source_index: int
    iteration: Optional[int] = None


def index_pattern(index: str) -> "re.Pattern[str]":
    return re.compile(r"\$" + re.escape(index) + r"(?![A-Za-z_])")


def _step_texts(step: Step) -> List[str]:
    texts = [getattr(step, field) for field in TEMPLATED_FIELDS]
    texts.append(step.output.name)
    texts.extend(step.headers.values())
    return [text for text in texts if text]


def find_index_placeholders(step: Step) -> Set[str]:
    """Conventional index placeholders (`$i`, `$j`, ...) used by a step."""
    names = set()
    for text in _step_texts(step):
        for match in _LOWER_PLACEHOLDER.finditer(text):
            if match.group(1) in CONVENTIONAL_INDEX_NAMES:
                names.add(match.group(1))
    return names


def check_step_placeholders(step: Step, position: int) -> None:
    """
    Raise ConfigurationError if a step uses an index placeholder its loop
    does not define.
    """
    names = find_index_placeholders(step)
    if step.loop is not None:
        names.discard(step.loop.index)
        if names:
            raise ConfigurationError(
                f"Step {position} ({step.command.value}) uses placeholder(s) "
                f"{', '.join('$' + n for n in sorted(names))} but loops over ${step.loop.index}"
            )
    elif names:
        raise ConfigurationError(
            f"Step {position} ({step.command.value}) uses placeholder(s) "
            f"{', '.join('$' + n for n in sorted(names))} without a loop"
        )


def substitute_index(step: Step, index: str, value: int) -> Step:
    """Copy of `step` with every `$index` replaced by `value`."""
    pattern = index_pattern(index)
    text_value = str(value)

    def sub(text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        return pattern.sub(text_value, text)

    updates = {field: sub(getattr(step, field)) for field in TEMPLATED_FIELDS}
    updates["headers"] = {key: sub(val) for key, val in step.headers.items()}
    updates["output"] = step.output.model_copy(update={"name": sub(step.output.name)})
    updates["loop"] = None
    return step.model_copy(update=updates)


class LoopExpander:
    """Expands looped steps into concrete steps."""

    def __init__(self, max_iterations: Optional[int] = None):
        self.max_iterations = max_iterations or get_settings().engine.max_loop_iterations

    def _resolve_bound(self, value: Union[int, str], name: str, store: Optional[VariableStore]) -> int:
        if isinstance(value, int):
            return value
        text = store.render(value) if store is not None else value
        try:
            return int(str(text).strip())
        except ValueError:
            raise ConfigurationError(f"Loop bound '{name}' is not an integer: {value!r} -> {text!r}")

    def iteration_values(self, step: Step, store: Optional[VariableStore] = None) -> List[int]:
        """Index values for a looped step, in order."""
        loop = step.loop
        start = self._resolve_bound(loop.from_, "from", store)
        end = self._resolve_bound(loop.to, "to", store)
        increment = self._resolve_bound(loop.step, "step", store)

        if increment <= 0:
            raise ConfigurationError(f"Loop step must be positive, got {increment}")
        if end < start:
            logger.info(f"Loop over ${loop.index} is empty ({start}..{end})")
            return []

        count = math.ceil((end - start + 1) / increment)
        if count > self.max_iterations:
            raise ConfigurationError(
                f"Loop over ${loop.index} expands to {count} steps (max {self.max_iterations})"
            )
        if end >= 10 and start < 10:
            logger.warning(
                f"Loop over ${loop.index} mixes index widths ({start}..{end}); "
                f"keep indices single-digit where possible"
            )
        return [start + n * increment for n in range(count)]

    def expand(self, step: Step, position: int, store: Optional[VariableStore] = None) -> List[ExpandedStep]:
        """
        Expand one step.

        Args:
            step: Step as written in the recipe
            position: Index of the step in its recipe list
            store: Variable store used to resolve templated loop bounds

        Returns:
            Concrete steps in iteration order (one step when there is no loop)
        """
        check_step_placeholders(step, position)
        if step.loop is None:
            return [ExpandedStep(step=step, source_index=position)]

        index = step.loop.index
        return [
            ExpandedStep(step=substitute_index(step, index, value), source_index=position, iteration=value)
            for value in self.iteration_values(step, store)
        ]
