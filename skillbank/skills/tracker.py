"""Usage tracker.

Detects whether an offered skill was actually used in a decision's stated
reasoning, records one recommendation row per (decision, skill), and on
resolution feeds the outcome into the skill's counters.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config import LearningConfig
from ..exceptions import DuplicateRecommendationError
from ..logging_config import get_logger
from ..models.recommendation import MatchType, SkillRecommendation, TradeOutcome, UsageDetection
from ..models.skill import SkillRecord
from ..validation import validate_resolved_outcome, validate_unit_interval
from .similarity import extract_key_phrases, normalize_phrase
from .store import ResolvedRecommendation, SkillStore

logger = get_logger(__name__)

EXPLICIT_CONFIDENCE = 0.95
IMPLICIT_CONFIDENCE = 0.6
IMPLICIT_MIN_PHRASES = 3

_REFERENCE_VERBS = ("skill", "applying", "using", "based on", "following", "per")


def _explicit_patterns(reference: str) -> List[re.Pattern]:
    ref = re.escape(reference.lower())
    patterns = [re.compile(rf"['\"`]{ref}['\"`]")]
    for verb in _REFERENCE_VERBS:
        verb_re = r"\s+".join(re.escape(part) for part in verb.split())
        patterns.append(re.compile(rf"\b{verb_re}\s+(?:the\s+)?['\"`]?{ref}['\"`]?"))
    return patterns


def detect_skill_usage(skill: SkillRecord, reasoning: str) -> UsageDetection:
    """Decide whether ``reasoning`` used ``skill``.

    Explicit: the skill's name or title appears quoted or after a referential
    phrase ("applying '...'", "based on ..."). Implicit: at least three of the
    skill body's key phrases appear, case-insensitively.

    Args:
        skill: Skill that was offered
        reasoning: Decision's free-text reasoning

    Returns:
        UsageDetection with match type and confidence

    Example:
        >>> detect_skill_usage(skill, f"Applying '{skill.name}' here").match_type
        <MatchType.EXPLICIT: 'explicit'>
    """
    text = (reasoning or "").lower()

    for reference in (skill.name, skill.title):
        if not reference or len(reference.strip()) < 3:
            continue
        for pattern in _explicit_patterns(reference.strip()):
            if pattern.search(text):
                return UsageDetection(skill.id, MatchType.EXPLICIT, EXPLICIT_CONFIDENCE)

    matched = tuple(p for p in extract_key_phrases(skill.body) if normalize_phrase(p) in text)
    if len(matched) >= IMPLICIT_MIN_PHRASES:
        return UsageDetection(skill.id, MatchType.IMPLICIT, IMPLICIT_CONFIDENCE, matched)

    return UsageDetection(skill.id, MatchType.NONE, 0.0)


@dataclass
class TrackingResult:
    """Detections for one decision."""

    decision_id: str
    detections: List[UsageDetection] = field(default_factory=list)

    @property
    def applied_skill_ids(self) -> List[str]:
        return [d.skill_id for d in self.detections if d.was_applied]


class UsageTracker:
    """Links decisions to the skills they were offered and used."""

    def __init__(self, store: SkillStore, config: Optional[LearningConfig] = None):
        self.store = store
        self.config = config or store.config

    def record_recommendation(
        self, decision_id: str, skill_id: str, relevance_score: float
    ) -> SkillRecommendation:
        """Record that a skill was offered to a decision (not yet known if used).

        Raises:
            DuplicateRecommendationError: If the pair was already recorded
            ValidationError: If relevance_score is outside [0, 1]
        """
        recommendation = SkillRecommendation(
            decision_id=decision_id,
            skill_id=skill_id,
            relevance_score=validate_unit_interval(relevance_score, "relevance_score"),
        )
        return self.store.add_recommendation(recommendation)

    def track_usage(
        self,
        decision_id: str,
        offered_skills: Iterable[SkillRecord],
        reasoning: str,
        relevance_scores: Optional[Dict[str, float]] = None,
    ) -> TrackingResult:
        """Detect usage of every offered skill and write one row per skill.

        Rows created earlier by ``record_recommendation`` keep their relevance
        score and get the detection fields filled in.
        """
        relevance_scores = relevance_scores or {}
        result = TrackingResult(decision_id=decision_id)

        for skill in offered_skills:
            detection = detect_skill_usage(skill, reasoning)
            result.detections.append(detection)
            recommendation = SkillRecommendation(
                decision_id=decision_id,
                skill_id=skill.id,
                relevance_score=relevance_scores.get(skill.id, 0.0),
                was_presented=True,
                was_applied=detection.was_applied,
                match_type=detection.match_type,
                detection_confidence=detection.confidence,
            )
            try:
                self.store.record_detection(recommendation)
            except DuplicateRecommendationError:
                # Concurrent insert for the same pair; retry as an update
                self.store.record_detection(recommendation)

        logger.info(
            "skill_usage_tracked",
            extra={
                "decision_id": decision_id,
                "offered": len(result.detections),
                "applied": len(result.applied_skill_ids),
            },
        )
        return result

    def resolve_outcome(self, decision_id: str, outcome: str) -> List[ResolvedRecommendation]:
        """Close out a decision's recommendations and update applied skills' counters."""
        outcome = TradeOutcome(validate_resolved_outcome(outcome))
        resolved = self.store.resolve_recommendations(decision_id, outcome)
        applied = [r for r in resolved if r.was_applied]
        logger.info(
            "recommendations_resolved",
            extra={
                "decision_id": decision_id,
                "outcome": outcome.value,
                "resolved": len(resolved),
                "applied": len(applied),
            },
        )
        return resolved
