"""
Inference - Structural Selector and API Discovery

This package derives the selectors and JSON paths a recipe needs from an
already loaded page or from intercepted API responses.

The Inference layer provides:
- Scoring of candidate repeating-item selectors
- Consecutive-ancestor discovery with loop-base and field selectors
- Autocomplete-shaped array discovery in JSON payloads
- Conversion of a discovered API call into recipe steps
"""

from .selector_scorer import SelectorScorer, find_result_selector
from .ancestor_finder import ConsecutiveAncestorFinder, find_consecutive_parent, validate_loop_selector
from .api_shape import analyze_api_response, analyze_captured_calls, build_api_steps, capture_api_calls

__all__ = [
    'SelectorScorer',
    'find_result_selector',
    'ConsecutiveAncestorFinder',
    'find_consecutive_parent',
    'validate_loop_selector',
    'analyze_api_response',
    'analyze_captured_calls',
    'build_api_steps',
    'capture_api_calls',
]
