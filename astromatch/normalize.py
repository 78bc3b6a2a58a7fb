"""
Normalize raw compatibility payloads into ``CompatibilityResult``.

Scores reach us in three shapes:

    A  {"ashta_koot_raw": {...}}
    B  {"analysis": "<json text>" | {...}}   wrapping A's inner object
    C  {"total_gunas": 18, "breakdown": {...}, ...}

Extraction rules are tried in that order; the first one that yields a
candidate object wins. A rejected payload returns ``None``: dropping a
candidate is an expected outcome, not an error.
"""

import json
import math
import numbers
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .logger import get_logger
from .models import DEFAULT_MAX_GUNAS, CompatibilityResult, KootaName

Candidate = Any
ExtractionRule = Callable[[Mapping[str, Any]], Optional[Candidate]]


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _present(value: Any) -> bool:
    """JSON-style presence: empty objects and arrays count, empty strings do not."""
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def _inner(obj: Any) -> Optional[Candidate]:
    if not isinstance(obj, dict):
        return None
    nested = obj.get("ashta_koot_raw")
    return nested if _present(nested) else obj


def from_ashta_koot_raw(raw: Mapping[str, Any]) -> Optional[Candidate]:
    nested = raw.get("ashta_koot_raw")
    return nested if _present(nested) else None


def from_analysis(raw: Mapping[str, Any]) -> Optional[Candidate]:
    analysis = raw.get("analysis")
    if not _present(analysis):
        return None
    if isinstance(analysis, str):
        try:
            parsed = json.loads(analysis)
        except ValueError as e:
            get_logger().warning("Failed to parse analysis as JSON", error=str(e))
            return None
        return _inner(parsed)
    return _inner(analysis)


def from_flat_root(raw: Mapping[str, Any]) -> Optional[Candidate]:
    if _is_number(raw.get("total_gunas")) and raw.get("breakdown"):
        return dict(raw)
    return None


EXTRACTION_RULES: Tuple[ExtractionRule, ...] = (
    from_ashta_koot_raw,
    from_analysis,
    from_flat_root,
)


def extract_candidate(raw: Any) -> Optional[Candidate]:
    """Return the first candidate object any extraction rule finds."""
    if not isinstance(raw, dict):
        return None
    for rule in EXTRACTION_RULES:
        candidate = rule(raw)
        if candidate is not None:
            return candidate
    return None


def normalize_breakdown(breakdown: Any) -> Optional[Dict[KootaName, int]]:
    """
    Map a raw breakdown onto all eight kootas.

    Returns None if any koota is missing, duplicated, unknown, non-integral
    or outside ``[0, koota max]``.
    """
    if not isinstance(breakdown, dict):
        return None

    result: Dict[KootaName, int] = {}
    for key, value in breakdown.items():
        koota = KootaName.from_key(key)
        if koota is None or koota in result:
            return None
        if not _is_number(value) or value != int(value):
            return None
        score = int(value)
        if not 0 <= score <= koota.max_points:
            return None
        result[koota] = score

    if len(result) != len(KootaName):
        return None
    return result


def resolve_max_gunas(candidate: Mapping[str, Any]) -> int:
    max_gunas = candidate.get("max_gunas")
    if _is_number(max_gunas) and int(max_gunas) > 0:
        return int(max_gunas)
    return DEFAULT_MAX_GUNAS


def normalize(raw: Any) -> Optional[CompatibilityResult]:
    """
    Turn an untrusted payload into a validated result, or None to reject it.

    Args:
        raw: Payload from the storage or compute collaborator

    Returns:
        CompatibilityResult, or None when the payload is unusable
    """
    logger = get_logger()
    candidate = extract_candidate(raw)

    if (
        not isinstance(candidate, dict)
        or not _is_number(candidate.get("total_gunas"))
        or not candidate.get("breakdown")
    ):
        logger.debug("Rejecting payload without Ashta Koota fields")
        return None

    max_gunas = resolve_max_gunas(candidate)
    total = candidate["total_gunas"]
    if total > max_gunas:
        logger.warning(
            "Rejecting payload with total_gunas above max_gunas",
            total_gunas=total,
            max_gunas=max_gunas,
        )
        return None
    clamped = int(min(max(total, 0), max_gunas))

    breakdown = normalize_breakdown(candidate["breakdown"])
    if breakdown is None:
        logger.warning("Rejecting payload with incomplete koota breakdown",
                       breakdown=candidate["breakdown"])
        return None

    verdict = candidate.get("verdict")
    return CompatibilityResult(
        total_gunas=clamped,
        max_gunas=max_gunas,
        verdict=verdict if isinstance(verdict, str) else "",
        breakdown=breakdown,
    )


def unwrap_stored_row(row: Any) -> Any:
    """Stored rows look like ``{score, details}``; the payload is ``details``."""
    if isinstance(row, dict) and row.get("details") is not None:
        return row["details"]
    return row
