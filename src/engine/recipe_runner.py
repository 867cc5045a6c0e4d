"""
Engine - Recipe Runner

Sequences the steps of one recipe mode, shapes the final output and keeps
a per-step diagnostic trace. The runner never retries; retry and repair
belong to the caller, which gets the trace to work from.
"""
import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from ..browser.accessor import DOMAccessor, NetworkCapability
from ..shared.config import EngineSettings, get_settings
from ..shared.logging_config import RunContext
from ..shared.schemas import (
    CommandKind, Recipe, RecipeMode, RunResult, Step, StepStatus, TraceEntry,
)
from .commands import DOM_COMMANDS, CommandExecutor, check_locator
from .exceptions import FATAL_ERRORS, ConfigurationError, NetworkError, StepCancelled
from .loop_expander import ExpandedStep, LoopExpander, check_step_placeholders, index_pattern
from .variable_store import VariableStore

logger = logging.getLogger(__name__)

INDEXED_KEY = re.compile(r"^([A-Z_]*[A-Z])(\d+)$")

# Commands that suspend on I/O and are bounded by the caller deadline
SUSPENDING_COMMANDS = {CommandKind.NAVIGATE, CommandKind.HTTP_REQUEST}


def load_recipe(source: Union[Recipe, Dict[str, Any], str, Path]) -> Recipe:
    """
    Build a Recipe from a model, a dict, JSON text or a JSON file path.

    Raises:
        ConfigurationError: If the recipe does not validate
    """
    if isinstance(source, Recipe):
        return source
    if isinstance(source, Path):
        source = source.read_text(encoding="utf-8")
    if isinstance(source, str):
        try:
            source = json.loads(source)
        except ValueError as e:
            raise ConfigurationError(f"Recipe is not valid JSON: {e}")
    try:
        return Recipe.model_validate(source)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid recipe: {e}")


def _hidden_outputs(steps: List[Step]) -> Tuple[Set[str], Set[str]]:
    """
    Bases and exact names of outputs marked show=False by every step that
    writes them.
    """
    hidden, shown = set(), set()
    for step in steps:
        name = step.output.name
        if not name:
            continue
        key = ("base", index_pattern(step.loop.index).sub("", name)) if step.loop else ("name", name)
        (hidden if step.output.show is False else shown).add(key)
    hidden -= shown
    bases = {value for kind, value in hidden if kind == "base"}
    names = {value for kind, value in hidden if kind == "name"}
    return bases, names


def _visible_patterns(steps: List[Step]) -> List[re.Pattern]:
    """Name patterns for outputs explicitly marked show=True."""
    patterns = []
    for step in steps:
        name = step.output.name
        if not name or step.output.show is not True:
            continue
        if step.loop is not None:
            pieces = index_pattern(step.loop.index).split(name)
            patterns.append(re.compile("^" + r"\d+".join(re.escape(p) for p in pieces) + "$"))
        else:
            patterns.append(re.compile("^" + re.escape(name) + "$"))
    return patterns


def shape_listing(variables: Dict[str, Any], steps: Optional[List[Step]] = None) -> List[Dict[str, Any]]:
    """
    Group `BASE<digits>` variables into one record per numeric suffix.

    Records are ordered by ascending suffix. Every record carries the union
    of bases observed across all suffixes; a base missing from one record
    is filled with an empty string. Outputs marked show=False are dropped.
    """
    hidden_bases, hidden_names = _hidden_outputs(steps or [])
    grouped: Dict[int, Dict[str, Any]] = {}
    bases: List[str] = []

    for key, value in variables.items():
        match = INDEXED_KEY.match(key)
        if not match or key in hidden_names:
            continue
        base, suffix = match.group(1), int(match.group(2))
        if base in hidden_bases:
            continue
        if base not in bases:
            bases.append(base)
        grouped.setdefault(suffix, {})[base] = "" if value is None else value

    records = []
    for suffix in sorted(grouped):
        record = grouped[suffix]
        records.append({base: record.get(base, "") for base in bases})
    return records


def shape_detail(variables: Dict[str, Any], steps: List[Step]) -> Dict[str, Any]:
    """One flat object holding only outputs explicitly marked show=True."""
    patterns = _visible_patterns(steps)
    return {
        key: ("" if value is None else value)
        for key, value in variables.items()
        if any(pattern.match(key) for pattern in patterns)
    }


class RecipeRunner:
    """
    Executes recipes against one DOM accessor / network capability pair.

    A runner instance may be reused for several runs, but runs must not
    overlap: each run creates its own VariableStore and drives the single
    page session owned by the accessor.
    """

    def __init__(
        self,
        accessor: Optional[DOMAccessor] = None,
        network: Optional[NetworkCapability] = None,
        engine_settings: Optional[EngineSettings] = None,
    ):
        self.accessor = accessor
        self.network = network
        self.settings = engine_settings or get_settings().engine
        self.expander = LoopExpander(self.settings.max_loop_iterations)

    def validate(self, recipe: Recipe, mode: RecipeMode) -> List[Step]:
        """
        Static checks done before any step runs.

        Raises:
            ConfigurationError: Empty step list, index placeholder without
                a matching loop, or a non-standard selector
        """
        steps = recipe.steps_for(mode)
        if not steps:
            raise ConfigurationError(f"Recipe has no {mode.value} steps")
        for position, step in enumerate(steps):
            check_step_placeholders(step, position)
            if step.command in DOM_COMMANDS and step.locator:
                check_locator(step.locator)
        return steps

    def _seed_store(self, recipe: Recipe, user_input: str, variables: Optional[Dict[str, Any]]) -> VariableStore:
        store = VariableStore()
        store.set("INPUT", (user_input or "").replace("\\", ""))

        language = self.settings.system_language
        if recipe.languages_available:
            wanted = language.lower().split("_")[0]
            matched = next((lang for lang in recipe.languages_available if lang.lower() == wanted), None)
            if matched is None:
                logger.debug(f"No language matched for {language}, using recipe default")
            language = matched or (recipe.language_default or language).lower()
        store.set("SYSTEM_LANGUAGE", language)

        region = self.settings.system_region
        if recipe.regions_available:
            matched = next((reg for reg in recipe.regions_available if reg.upper() == region.upper()), None)
            if matched is None:
                logger.debug(f"No region matched for {region}, using recipe default")
            region = matched or (recipe.region_default or region).upper()
        store.set("SYSTEM_REGION", region)

        for name, value in (variables or {}).items():
            store.set(name, value)
        return store

    def _trace_entry(self, expanded: ExpandedStep, status: StepStatus, **kwargs) -> TraceEntry:
        step = expanded.step
        return TraceEntry(
            step_index=expanded.source_index,
            iteration=expanded.iteration,
            command=step.command,
            locator=kwargs.pop("locator", None) or step.locator,
            output_name=step.output.name,
            status=status,
            **kwargs,
        )

    async def _execute(self, executor: CommandExecutor, step: Step, deadline: Optional[float]):
        if deadline is None:
            return await executor.execute(step)

        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise StepCancelled("Deadline expired before step started")
        if step.command not in SUSPENDING_COMMANDS:
            return await executor.execute(step)
        try:
            return await asyncio.wait_for(executor.execute(step), timeout=remaining)
        except asyncio.TimeoutError:
            raise StepCancelled(f"Deadline expired during {step.command.value}")

    async def run(
        self,
        recipe: Union[Recipe, Dict[str, Any], str, Path],
        mode: RecipeMode = RecipeMode.LISTING,
        user_input: str = "",
        variables: Optional[Dict[str, Any]] = None,
        deadline_s: Optional[float] = None,
    ) -> RunResult:
        """
        Run one mode of a recipe.

        Args:
            recipe: Recipe model, dict, JSON text or path
            mode: listing or detail
            user_input: Value seeded as $INPUT
            variables: Extra variables seeded before the first step
            deadline_s: Caller-owned time budget for the whole run

        Returns:
            RunResult with shaped results, trace and leaked variables

        Raises:
            ConfigurationError: Recipe cannot run as written (nothing executed
                or the run aborted at the offending step)
            TransformError: A regex step has an invalid pattern
        """
        recipe = load_recipe(recipe)
        mode = RecipeMode(mode)
        steps = self.validate(recipe, mode)

        with RunContext(mode_value=mode.value):
            store = self._seed_store(recipe, user_input, variables)
            executor = CommandExecutor(
                store, self.accessor, self.network, self.settings, default_headers=recipe.headers
            )
            deadline = None
            if deadline_s is not None:
                deadline = asyncio.get_running_loop().time() + deadline_s

            trace: List[TraceEntry] = []
            cancelled = False
            logger.info(f"Running {len(steps)} {mode.value} steps")

            for position, step in enumerate(steps):
                if cancelled:
                    trace.append(self._trace_entry(
                        ExpandedStep(step, position), StepStatus.CANCELLED, error="Run cancelled"
                    ))
                    continue

                try:
                    expanded_steps = self.expander.expand(step, position, store)
                except ConfigurationError as e:
                    trace.append(self._trace_entry(ExpandedStep(step, position), StepStatus.FAILED, error=str(e)))
                    e.trace = trace
                    raise

                if not expanded_steps:
                    trace.append(self._trace_entry(
                        ExpandedStep(step, position), StepStatus.SKIPPED, error="Loop range is empty"
                    ))

                for expanded in expanded_steps:
                    if cancelled:
                        trace.append(self._trace_entry(expanded, StepStatus.CANCELLED, error="Run cancelled"))
                        continue
                    try:
                        trace.append(await self._run_step(executor, expanded, deadline))
                    except FATAL_ERRORS as e:
                        trace.append(self._trace_entry(expanded, StepStatus.FAILED, error=str(e)))
                        e.trace = trace
                        raise
                    cancelled = trace[-1].status == StepStatus.CANCELLED

            variables_out = store.snapshot()
            if mode == RecipeMode.LISTING:
                results: Union[List, Dict] = shape_listing(variables_out, steps)
            else:
                results = shape_detail(variables_out, steps)

            leaked = set(store.unresolved) | set(VariableStore.find_leaked(results))
            if leaked:
                logger.warning(f"Leaked variables in output: {', '.join(sorted(leaked))}")

            failed = sum(1 for entry in trace if entry.status == StepStatus.FAILED)
            logger.info(
                f"Run finished: {len(results)} result(s), {failed} failed step(s)"
                + (", cancelled" if cancelled else "")
            )
            return RunResult(
                mode=mode,
                results=results,
                trace=trace,
                variables=variables_out,
                leaked_variables=sorted(leaked),
                cancelled=cancelled,
            )

    async def _run_step(self, executor: CommandExecutor, expanded: ExpandedStep, deadline: Optional[float]) -> TraceEntry:
        step = expanded.step
        started = time.perf_counter()

        def elapsed() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        try:
            outcome = await self._execute(executor, step, deadline)
        except FATAL_ERRORS as e:
            logger.error(f"Step {expanded.source_index} ({step.command.value}) aborted the run: {e}")
            raise
        except StepCancelled as e:
            logger.warning(f"Step {expanded.source_index} ({step.command.value}) cancelled: {e}")
            return self._trace_entry(expanded, StepStatus.CANCELLED, error=str(e), duration_ms=elapsed())
        except NetworkError as e:
            logger.warning(f"Step {expanded.source_index} ({step.command.value}) failed: {e}")
            return self._trace_entry(expanded, StepStatus.FAILED, error=str(e), duration_ms=elapsed())

        return self._trace_entry(
            expanded,
            StepStatus.OK,
            locator=outcome.locator,
            match_count=outcome.match_count,
            sample_values=outcome.samples[: self.settings.trace_sample_values],
            duration_ms=elapsed(),
        )
