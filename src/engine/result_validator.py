"""
Engine - Result Validation

Checks extracted records for the failure modes a run can hide behind a
"successful" status: empty required fields, leaked `$NAME` placeholders,
URLs that only point at the site root, doubled domains from substitution
collisions, and results that ignore the search input.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from ..shared.schemas import RecordIssue, RunResult, ValidationReport
from .variable_store import LEAKED_VARIABLE_PATTERN

logger = logging.getLogger(__name__)

# Placeholder left in a value: $URL, $URL10 and the $URL of "$URL$i"
UNREPLACED_VARIABLE = LEAKED_VARIABLE_PATTERN
SCHEME = re.compile(r"https?://")

REQUIRED_LISTING_FIELDS = ("TITLE", "URL", "COVER")
OPTIONAL_LISTING_FIELDS = ("SUBTITLE",)


@dataclass
class SemanticMatchResult:
    """How many records mention the query."""
    valid: bool
    match_count: int
    total_count: int
    match_ratio: int
    reason: str
    details: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MultiQueryResult:
    """Outcome of running one recipe for several queries."""
    valid: bool
    reason: str
    details: List[Dict[str, Any]] = field(default_factory=list)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ("" if value is None else str(value))


def _is_base_domain(url: str, hostname: Optional[str]) -> bool:
    parsed = urlparse(url)
    if parsed.scheme and parsed.netloc:
        return len(parsed.path.rstrip("/")) <= 1 and not parsed.query
    if not hostname:
        return url == "/"
    return url in ("/", hostname, f"https://{hostname}", f"https://www.{hostname}")


def check_record(record: Dict[str, Any], hostname: Optional[str] = None) -> RecordIssue:
    """Errors and warnings for one listing record."""
    issue = RecordIssue(index=0)

    for name in REQUIRED_LISTING_FIELDS:
        value = _text(record.get(name))
        if not value:
            issue.errors.append(f"{name} is empty")
        elif UNREPLACED_VARIABLE.search(value):
            issue.errors.append(f"{name} contains unreplaced variable: \"{value}\"")

    url = _text(record.get("URL"))
    if url:
        if _is_base_domain(url, hostname):
            issue.errors.append(f"URL is just base domain: \"{url}\" (should be a detail page)")
        if len(SCHEME.findall(url)) > 1:
            issue.errors.append(f"URL contains doubled domain (variable collision): \"{url[:80]}\"")

    for name, value in record.items():
        if name in REQUIRED_LISTING_FIELDS or not isinstance(value, str):
            continue
        if UNREPLACED_VARIABLE.search(value):
            issue.errors.append(f"{name} contains unreplaced variable: \"{value}\"")

    for name in OPTIONAL_LISTING_FIELDS:
        if not _text(record.get(name)):
            issue.warnings.append(f"{name} is empty (optional)")

    return issue


def validate_listing_results(
    results: Sequence[Dict[str, Any]],
    hostname: Optional[str] = None,
    leaked_variables: Sequence[str] = (),
    min_valid: int = 3,
    min_valid_ratio: float = 0.3,
) -> ValidationReport:
    """
    Validate listing records.

    The report is valid when at least max(min_valid, floor(total * ratio))
    records are clean and no placeholder leaked from the run.
    """
    total = len(results)
    threshold = max(min_valid, math.floor(total * min_valid_ratio))
    report = ValidationReport(valid=False, total=total, threshold=threshold)

    if total == 0:
        report.errors.append("No results returned")
        return report

    for index, record in enumerate(results):
        issue = check_record(record, hostname)
        issue.index = index
        if issue.errors:
            report.issues.append(issue)
        else:
            report.valid_count += 1
        report.warnings.extend(f"Result {index + 1}: {w}" for w in issue.warnings)

    if leaked_variables:
        report.errors.append(f"Leaked variables: {', '.join(leaked_variables)}")

    report.valid = report.valid_count >= threshold and not report.errors
    if not report.valid:
        logger.info(f"Listing validation failed: {report.valid_count}/{total} valid (need {threshold})")
    return report


def validate_detail_result(
    result: Dict[str, Any],
    required_fields: Sequence[str] = (),
    leaked_variables: Sequence[str] = (),
) -> ValidationReport:
    """Validate a detail record: required fields present, no leaked placeholders."""
    report = ValidationReport(valid=False, total=1, threshold=1)
    issue = RecordIssue(index=0)

    if not result:
        report.errors.append("No fields returned")
        return report

    for name in required_fields:
        if not _text(result.get(name)):
            issue.errors.append(f"{name} is empty")
    for name, value in result.items():
        if isinstance(value, str) and UNREPLACED_VARIABLE.search(value):
            issue.errors.append(f"{name} contains unreplaced variable: \"{value}\"")

    if issue.errors:
        report.issues.append(issue)
    else:
        report.valid_count = 1
    if leaked_variables:
        report.errors.append(f"Leaked variables: {', '.join(leaked_variables)}")

    report.valid = report.valid_count == 1 and not report.errors
    return report


def validate_run(run: RunResult, hostname: Optional[str] = None, required_fields: Sequence[str] = ()) -> ValidationReport:
    """Validate a RunResult according to its mode."""
    if isinstance(run.results, list):
        return validate_listing_results(run.results, hostname, run.leaked_variables)
    return validate_detail_result(run.results, required_fields, run.leaked_variables)


def validate_semantic_match(
    results: Sequence[Dict[str, Any]],
    query: str,
    min_match_ratio: float = 0.3,
) -> SemanticMatchResult:
    """
    Check that enough records mention the query.

    A record matches when its TITLE, SUBTITLE, DESCRIPTION or URL contains
    the whole query or any query word longer than two characters.
    """
    if not results:
        return SemanticMatchResult(False, 0, 0, 0, "No results")

    query_lower = query.lower()
    query_words = [word for word in query_lower.split() if len(word) > 2]

    match_count = 0
    details = []
    for record in results:
        searchable = " ".join(
            _text(record.get(name)) for name in ("TITLE", "SUBTITLE", "DESCRIPTION", "URL")
        ).lower()
        exact = query_lower in searchable
        word = any(w in searchable for w in query_words)
        if exact or word:
            match_count += 1
        details.append({
            "title": _text(record.get("TITLE")) or "(empty)",
            "matched": exact or word,
            "match_type": "exact" if exact else ("word" if word else "none"),
        })

    ratio = match_count / len(results)
    valid = ratio >= min_match_ratio
    reason = (
        f"{match_count}/{len(results)} results match query"
        if valid else
        f"Only {match_count}/{len(results)} results match query (need {round(min_match_ratio * 100)}%)"
    )
    return SemanticMatchResult(valid, match_count, len(results), round(ratio * 100), reason, details)


def compare_query_results(results_by_query: Dict[str, Sequence[Dict[str, Any]]]) -> MultiQueryResult:
    """
    Detect recipes that ignore their input.

    Identical non-empty title sets across different queries mean the
    recipe returns static content; otherwise each query must pass the
    semantic match check.
    """
    if len(results_by_query) < 2:
        return MultiQueryResult(True, "Need at least 2 queries for multi-query validation")

    title_sets = {
        query: tuple(sorted(_text(r.get("TITLE")) for r in results if _text(r.get("TITLE"))))
        for query, results in results_by_query.items()
    }
    first = next(iter(title_sets.values()))
    if first and len(set(title_sets.values())) == 1:
        return MultiQueryResult(
            False,
            "All queries returned identical results - recipe may not be searching",
            [{"query": q, "result_count": len(r)} for q, r in results_by_query.items()],
        )

    details = []
    for query, results in results_by_query.items():
        check = validate_semantic_match(results, query)
        details.append({"query": query, "valid": check.valid, "reason": check.reason})

    failed = [d for d in details if not d["valid"]]
    if failed:
        return MultiQueryResult(
            False, f"{len(failed)}/{len(details)} queries returned irrelevant results", details
        )
    return MultiQueryResult(True, "All queries returned relevant results", details)


async def validate_multi_query(
    run_query: Callable[[str], Awaitable[Sequence[Dict[str, Any]]]],
    queries: Sequence[str],
) -> MultiQueryResult:
    """Run `run_query` for each query and compare the outcomes."""
    results_by_query: Dict[str, Sequence[Dict[str, Any]]] = {}
    for query in queries:
        results_by_query[query] = await run_query(query)
    return compare_query_results(results_by_query)
