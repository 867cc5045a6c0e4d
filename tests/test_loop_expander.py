"""
Unit tests for loop expansion.
Tests index substitution, bounds, templated bounds and placeholder checks.
"""
import pytest

from src.engine.exceptions import ConfigurationError
from src.engine.loop_expander import (
    LoopExpander, check_step_placeholders, find_index_placeholders, substitute_index,
)
from src.engine.variable_store import VariableStore
from src.shared.schemas import Step


def make_step(**kwargs) -> Step:
    data = {"command": "extract_text", "locator": ".r:nth-child($i) a", "output": {"name": "TITLE$i"}}
    data.update(kwargs)
    return Step.model_validate(data)


@pytest.fixture
def expander():
    """Expander with a small iteration cap."""
    return LoopExpander(max_iterations=20)


class TestExpansion:
    """Test loop expansion."""

    def test_inclusive_range(self, expander):
        """from..to is inclusive and substitutes every templated field."""
        step = make_step(loop={"index": "i", "from": 1, "to": 3})

        expanded = expander.expand(step, 0)

        assert [e.iteration for e in expanded] == [1, 2, 3]
        assert [e.step.locator for e in expanded] == [
            ".r:nth-child(1) a", ".r:nth-child(2) a", ".r:nth-child(3) a",
        ]
        assert [e.step.output.name for e in expanded] == ["TITLE1", "TITLE2", "TITLE3"]
        assert all(e.step.loop is None for e in expanded)
        assert all(e.source_index == 0 for e in expanded)

    def test_step_increment(self, expander):
        """Loop step skips values."""
        step = make_step(loop={"index": "i", "from": 0, "to": 9, "step": 4})

        assert expander.iteration_values(step) == [0, 4, 8]

    def test_empty_range(self, expander):
        """to < from yields no steps."""
        step = make_step(loop={"index": "i", "from": 5, "to": 1})

        assert expander.expand(step, 0) == []

    def test_non_positive_step_rejected(self, expander):
        """A zero step would never terminate."""
        step = make_step(loop={"index": "i", "from": 1, "to": 3, "step": 0})

        with pytest.raises(ConfigurationError):
            expander.expand(step, 0)

    def test_iteration_cap(self, expander):
        """Loops larger than the cap are configuration errors."""
        step = make_step(loop={"index": "i", "from": 1, "to": 100})

        with pytest.raises(ConfigurationError):
            expander.expand(step, 0)

    def test_templated_bounds(self, expander):
        """Bounds can reference store variables."""
        store = VariableStore({"COUNT": "4"})
        step = make_step(loop={"index": "i", "from": 1, "to": "$COUNT"})

        assert [e.iteration for e in expander.expand(step, 0, store)] == [1, 2, 3, 4]

    def test_non_numeric_bound(self, expander):
        """A bound that does not render to an integer is rejected."""
        store = VariableStore({"COUNT": "many"})
        step = make_step(loop={"index": "i", "from": 1, "to": "$COUNT"})

        with pytest.raises(ConfigurationError):
            expander.expand(step, 0, store)

    def test_step_without_loop(self, expander):
        """A plain step expands to itself."""
        step = make_step(locator="h1", output={"name": "TITLE"})

        expanded = expander.expand(step, 2)

        assert len(expanded) == 1
        assert expanded[0].step is step
        assert expanded[0].iteration is None


class TestSubstitution:
    """Test index placeholder substitution."""

    def test_index_not_replaced_inside_longer_names(self):
        """$i does not touch $item or $INPUT."""
        step = make_step(locator="li:nth-child($i) [data-x=$item]", input="$INPUT",
                         command="transform_store", loop={"index": "i", "from": 1, "to": 1})

        result = substitute_index(step, "i", 7)

        assert result.locator == "li:nth-child(7) [data-x=$item]"
        assert result.input == "$INPUT"

    def test_two_digit_values(self):
        """Values of any width substitute cleanly."""
        step = make_step(loop={"index": "i", "from": 1, "to": 12})

        assert substitute_index(step, "i", 12).output.name == "TITLE12"

    def test_custom_index_name(self):
        """Loops may use another index name."""
        step = make_step(locator="tr:nth-child($row) td", output={"name": "CELL$row"},
                         loop={"index": "row", "from": 1, "to": 2})

        assert substitute_index(step, "row", 2).locator == "tr:nth-child(2) td"


class TestPlaceholderChecks:
    """Test static placeholder validation."""

    def test_placeholder_without_loop(self):
        """$i outside a loop is rejected before execution."""
        step = make_step()

        with pytest.raises(ConfigurationError):
            check_step_placeholders(step, 0)

    def test_mismatched_index(self):
        """$j inside a loop over $i is rejected."""
        step = make_step(locator="li:nth-child($j)", output={"name": "X$i"},
                         loop={"index": "i", "from": 1, "to": 2})

        with pytest.raises(ConfigurationError):
            check_step_placeholders(step, 0)

    def test_unconventional_lowercase_names_ignored(self):
        """Lowercase words such as $filter are not index placeholders."""
        step = make_step(locator="a[href*='$filter']", output={"name": "LINK"})

        assert find_index_placeholders(step) == set()
        check_step_placeholders(step, 0)


class TestSingleDigitRange:
    """Test the common 1..9 listing loop."""

    def test_nine_steps_in_order(self, expander):
        """{from: 1, to: 9} gives nine steps with indices 1..9."""
        step = make_step(loop={"index": "i", "from": 1, "to": 9, "step": 1})

        expanded = expander.expand(step, 0)

        assert len(expanded) == 9
        assert [e.step.output.name for e in expanded] == [f"TITLE{n}" for n in range(1, 10)]
