"""Shared six-dimension rubric helpers for both judge modes."""

import json
import re
from typing import Any, Optional

from ..exceptions import MalformedResponseError
from ..models.judge import JUDGE_DIMENSIONS, DimensionScores, InsightType, clamp_unit

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_object(text: str, operation: str) -> dict:
    """Extract the first top-level JSON object from an LLM response.

    Raises:
        MalformedResponseError: If no JSON object can be parsed
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        raise MalformedResponseError("no JSON object in response", operation=operation)
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"invalid JSON: {e}", operation=operation)
    if not isinstance(parsed, dict):
        raise MalformedResponseError("response JSON is not an object", operation=operation)
    return parsed


def score_response(parsed: dict) -> tuple:
    """Dimension scores and aggregate quality from a parsed judge response.

    The aggregate is the mean of the six dimensions when the response scores
    any of them; otherwise the reported ``quality_score`` is used.

    Returns:
        (DimensionScores, quality_score)
    """
    raw_scores = parsed.get("scores")
    if isinstance(raw_scores, dict) and any(name in raw_scores for name in JUDGE_DIMENSIONS):
        scores = DimensionScores.from_mapping(raw_scores)
        return scores, round(scores.mean, 4)

    quality = clamp_unit(parsed.get("quality_score"))
    return DimensionScores.from_mapping({name: quality for name in JUDGE_DIMENSIONS}), quality


def classify_insight(raw: Optional[str], was_good_decision: bool) -> InsightType:
    """Insight type from the response, falling back to the good/bad call."""
    if raw:
        try:
            return InsightType(str(raw).lower())
        except ValueError:
            pass
    return InsightType.PATTERN if was_good_decision else InsightType.WARNING


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
