"""
Engine - Error Types

Fatal errors (ConfigurationError, TransformError) abort a run. NetworkError
and StepCancelled are recorded in the trace and the run continues or stops
best-effort. A missing element is not an exception at all.
"""


class RecipeError(Exception):
    """Base exception for recipe engine errors."""

    # Trace of the aborted run, attached by the runner
    trace = None


class ConfigurationError(RecipeError):
    """Raised when a recipe cannot be executed as written."""
    pass


class TransformError(RecipeError):
    """Raised when a transform step is malformed (e.g. invalid regex)."""
    pass


class NetworkError(RecipeError):
    """Raised when a navigation or HTTP request fails."""

    def __init__(self, message: str, status: int = None, url: str = None):
        super().__init__(message)
        self.status = status
        self.url = url


class NavigationTimeout(NetworkError):
    """Raised when a page does not load within its timeout."""
    pass


class StepCancelled(RecipeError):
    """Raised when the caller-owned deadline expires during a step."""
    pass


FATAL_ERRORS = (ConfigurationError, TransformError)
