"""
Engine - Recipe Execution

This package executes declarative extraction recipes against a page or a
JSON API.

The Engine layer provides:
- Variable store with longest-match template rendering
- Loop expansion of templated steps
- Command execution against abstract DOM / network capabilities
- Output shaping into listing or detail records with a diagnostic trace
- Validation of extracted records
"""

from .exceptions import (
    RecipeError, ConfigurationError, TransformError, NetworkError,
    NavigationTimeout, StepCancelled,
)
from .variable_store import VariableStore
from .loop_expander import LoopExpander
from .commands import CommandExecutor, CommandOutcome
from .recipe_runner import RecipeRunner, load_recipe, shape_listing, shape_detail
from .result_validator import validate_listing_results, validate_semantic_match, validate_run

__all__ = [
    'RecipeError',
    'ConfigurationError',
    'TransformError',
    'NetworkError',
    'NavigationTimeout',
    'StepCancelled',
    'VariableStore',
    'LoopExpander',
    'CommandExecutor',
    'CommandOutcome',
    'RecipeRunner',
    'load_recipe',
    'shape_listing',
    'shape_detail',
    'validate_listing_results',
    'validate_semantic_match',
    'validate_run',
]
