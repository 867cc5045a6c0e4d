"""
Shared Schemas - Pydantic Models for Recipes, Traces and Inference Results
Common data models used across the engine, inference and browser packages.

These schemas provide:
- Recipe and step validation
- Run results and diagnostic trace serialization
- Selector / API shape descriptors handed to authoring tools
- Type safety across package boundaries
"""
from typing import Optional, List, Dict, Any, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


# Enums for controlled values
class RecipeMode(str, Enum):
    """Output shaping modes."""
    LISTING = "listing"
    DETAIL = "detail"


class CommandKind(str, Enum):
    """Commands understood by the executor."""
    NAVIGATE = "navigate"
    EXTRACT_TEXT = "extract_text"
    EXTRACT_ATTRIBUTE = "extract_attribute"
    EXTRACT_ARRAY = "extract_array"
    EXTRACT_COUNT = "extract_count"
    STORE_URL = "store_url"
    TRANSFORM_STORE = "transform_store"
    TRANSFORM_REGEX = "transform_regex"
    TRANSFORM_REPLACE = "transform_replace"
    TRANSFORM_URL_ENCODE = "transform_url_encode"
    HTTP_REQUEST = "http_request"
    JSON_EXTRACT = "json_extract"


class WaitPolicy(str, Enum):
    """When a navigation counts as loaded."""
    IMMEDIATE = "immediate"
    DOM_READY = "dom_ready"
    NETWORK_IDLE = "network_idle"


class StepStatus(str, Enum):
    """Outcome of one executed step."""
    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class StructureKind(str, Enum):
    """Element type of an autocomplete-shaped array."""
    STRING_ARRAY = "string_array"
    OBJECT_ARRAY = "object_array"


# Recipe schemas
class OutputSpec(BaseModel):
    """Where a step stores its value and whether it is surfaced."""
    name: Optional[str] = Field(None, description="Variable name, may contain a loop placeholder")
    show: Optional[bool] = Field(None, description="Externally visible output")


class LoopConfig(BaseModel):
    """Inclusive numeric loop over one index placeholder."""
    model_config = ConfigDict(populate_by_name=True)

    index: str = Field("i", pattern=r"^[a-z][a-z0-9_]*$", description="Placeholder name, used as $index")
    from_: Union[int, str] = Field(1, alias="from", description="First value or template")
    to: Union[int, str] = Field(..., description="Last value (inclusive) or template")
    step: Union[int, str] = Field(1, description="Increment or template")


class Step(BaseModel):
    """One command invocation."""
    model_config = ConfigDict(extra="forbid", use_enum_values=False)

    command: CommandKind
    locator: Optional[str] = Field(None, description="CSS selector template")
    input: Optional[str] = Field(None, description="Input template or variable name")
    url: Optional[str] = Field(None, description="URL template for navigate / http_request")
    output: OutputSpec = Field(default_factory=OutputSpec)
    loop: Optional[LoopConfig] = None
    attribute_name: Optional[str] = None
    expression: Optional[str] = Field(None, description="Regular expression for transform_regex")
    find: Optional[str] = None
    replace: Optional[str] = None
    method: str = Field("GET")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    wait_policy: Optional[WaitPolicy] = None
    timeout_ms: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None


class Recipe(BaseModel):
    """Declarative extraction program for one site."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    url: Optional[str] = Field(None, description="Base URL of the site")
    listing_steps: List[Step] = Field(default_factory=list)
    detail_steps: List[Step] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    cookies: List[Dict[str, Any]] = Field(default_factory=list)
    languages_available: List[str] = Field(default_factory=list)
    language_default: Optional[str] = None
    regions_available: List[str] = Field(default_factory=list)
    region_default: Optional[str] = None

    def steps_for(self, mode: RecipeMode) -> List[Step]:
        """Get the step list for a run mode."""
        return self.listing_steps if mode == RecipeMode.LISTING else self.detail_steps


# Execution schemas
class TraceEntry(BaseModel):
    """Diagnostic record for one concrete step."""
    step_index: int
    iteration: Optional[int] = Field(None, description="Loop index value, None outside loops")
    command: CommandKind
    locator: Optional[str] = None
    match_count: int = 0
    sample_values: List[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.OK
    error: Optional[str] = None
    output_name: Optional[str] = None
    duration_ms: float = 0.0


class RunResult(BaseModel):
    """Output of one recipe run."""
    mode: RecipeMode
    results: Union[List[Dict[str, Any]], Dict[str, Any]]
    trace: List[TraceEntry] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    leaked_variables: List[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def failed_steps(self) -> List[TraceEntry]:
        return [entry for entry in self.trace if entry.status == StepStatus.FAILED]

    def to_record(self) -> Dict[str, Any]:
        """ExtractionRecord JSON shape."""
        return {"results": self.results}


# Inference schemas
class FieldSelectors(BaseModel):
    """Per-field selectors relative to one result container; "" is the container itself."""
    title: Optional[str] = None
    url: Optional[str] = None
    url_attr: str = "href"
    image: Optional[str] = None
    image_attr: Optional[str] = None
    cover_needs_extraction: bool = False
    cover_sample: Optional[str] = Field(None, description="Style text holding the background image")


class SelectorCandidate(BaseModel):
    """Loop base and field selectors derived from consecutive result containers."""
    found: bool
    reason: Optional[str] = None
    container: Optional[str] = None
    item_selector: Optional[str] = None
    loop_base: Optional[str] = None
    is_consecutive: bool = False
    child_indices: List[int] = Field(default_factory=list)
    field_selectors: FieldSelectors = Field(default_factory=FieldSelectors)
    anchor_count: int = 0
    link_pattern: Optional[str] = None
    warning: Optional[str] = None
    loop_from: int = 1
    loop_to: int = 0
    recommendation: Optional[str] = None
    sample_html: Optional[str] = None


class ScoredSelector(BaseModel):
    """Best repeating-item selector found by the scorer."""
    found: bool
    reason: Optional[str] = None
    selector: Optional[str] = None
    count: int = 0
    score: int = 0
    sample_text: Optional[str] = None
    refined_from: Optional[str] = Field(None, description="Container selector a single match was refined from")
    items: List[Dict[str, Any]] = Field(default_factory=list, description="Summaries of the first matched items")
    common_parent: Optional[str] = None
    items_are_direct_children: bool = False


class LoopSelectorCheck(BaseModel):
    """Result of probing a loop base for indices 1..expected."""
    valid: bool
    loop_base: str
    expected: int
    found_count: int
    matched_indices: List[int] = Field(default_factory=list)


class ApiShapeDescriptor(BaseModel):
    """Location of the result array and its fields inside a JSON payload."""
    found: bool
    reason: Optional[str] = None
    items_path: Optional[str] = None
    title_path: Optional[str] = None
    subtitle_path: Optional[str] = None
    url_path: Optional[str] = None
    image_path: Optional[str] = None
    sample_item: Any = None
    structure_kind: Optional[StructureKind] = None
    item_count: int = 0


class ApiCallCandidate(BaseModel):
    """An intercepted call whose response is autocomplete-shaped."""
    url: str
    method: str = "GET"
    url_pattern: str
    body_pattern: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    vendor: Optional[str] = None
    shape: ApiShapeDescriptor


# Validation schemas
class RecordIssue(BaseModel):
    """Problems found in one extracted record."""
    index: int
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Outcome of validating extracted records."""
    valid: bool
    total: int = 0
    valid_count: int = 0
    threshold: int = 0
    issues: List[RecordIssue] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
