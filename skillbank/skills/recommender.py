"""Context-aware skill recommendation.

Scores each retrievable skill against the market context a decision is made
in, drops weak matches, and ranks the rest with a bump for proven skills.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import LearningConfig
from ..logging_config import get_logger
from ..models.recommendation import SkillMarketContext, Trend, Volatility
from ..models.skill import SkillRecord, SkillType
from ..validation import GENERAL_DOMAIN
from .effectiveness import EffectivenessPolicy
from .store import SkillStore

logger = get_logger(__name__)

BASE_RELEVANCE = 0.5


def score_relevance(skill: SkillRecord, context: SkillMarketContext) -> float:
    """Relevance of a skill to the current market context, in [0.5, 1].

    Warning and pattern rules use the skill's bucket type, so an evolved
    warning still reads as a warning.

    Example:
        >>> score_relevance(strategy_skill, SkillMarketContext(domain="perps"))
        0.7
    """
    score = BASE_RELEVANCE
    kind = skill.bucket_type
    body = skill.body.lower()

    if kind == SkillType.STRATEGY:
        score += 0.2
    if kind == SkillType.WARNING and context.recent_loss_count > 0:
        score += 0.15
    if kind == SkillType.PATTERN and not context.has_open_positions:
        score += 0.1
    if skill.skill_type == SkillType.EVOLVED:
        score += 0.15

    if context.volatility == Volatility.HIGH:
        if kind == SkillType.WARNING:
            score += 0.1
        if "risk" in body or "stop" in body:
            score += 0.1

    if context.trend == Trend.BEARISH and ("exit" in body or "loss" in body):
        score += 0.1

    return round(min(1.0, score), 4)


@dataclass
class RecommendedSkill:
    """One skill offered to a decision."""

    skill: SkillRecord
    relevance_score: float
    proven_effective: bool = False


@dataclass
class RecommendationSet:
    """Ranked recommendations and what was left out."""

    domain: str
    recommended: List[RecommendedSkill] = field(default_factory=list)
    total_considered: int = 0
    excluded_low_effectiveness: int = 0
    excluded_low_relevance: int = 0

    @property
    def skills(self) -> List[SkillRecord]:
        return [r.skill for r in self.recommended]

    @property
    def relevance_scores(self) -> Dict[str, float]:
        """Relevance keyed by skill id, as ``track_usage`` expects."""
        return {r.skill.id: r.relevance_score for r in self.recommended}


class SkillRecommender:
    """Ranks a domain's skills for a specific market context."""

    def __init__(
        self,
        store: SkillStore,
        policy: EffectivenessPolicy,
        config: Optional[LearningConfig] = None,
    ):
        self.store = store
        self.policy = policy
        self.config = config or store.config

    def recommend(self, context: SkillMarketContext, max_count: Optional[int] = None) -> RecommendationSet:
        """Recommend skills for a decision.

        Soft-excluded skills are counted but never offered. Skills below
        ``min_relevance_score`` are dropped. The rest are ordered by relevance
        plus ``proven_relevance_boost`` for proven skills, newest first on ties.

        Args:
            context: Market context; ``context.domain`` picks the skills
            max_count: Maximum skills to return

        Returns:
            RecommendationSet

        Raises:
            StorageError: If skills cannot be read
        """
        max_count = max_count or self.config.max_recommended_skills
        skills = self.store.list_active(domains={context.domain, GENERAL_DOMAIN}, include_excluded=True)
        result = RecommendationSet(domain=context.domain, total_considered=len(skills))

        candidates: List[RecommendedSkill] = []
        for skill in skills:
            if skill.excluded_from_retrieval:
                result.excluded_low_effectiveness += 1
                continue
            relevance = score_relevance(skill, context)
            if relevance < self.config.min_relevance_score:
                result.excluded_low_relevance += 1
                continue
            candidates.append(
                RecommendedSkill(
                    skill=skill,
                    relevance_score=relevance,
                    proven_effective=self.policy.is_proven_effective(
                        skill.times_applied, skill.times_successful
                    ),
                )
            )

        boost = self.config.proven_relevance_boost
        candidates.sort(key=lambda r: r.skill.created_at, reverse=True)
        candidates.sort(key=lambda r: -(r.relevance_score + (boost if r.proven_effective else 0.0)))
        result.recommended = candidates[:max_count]

        logger.info(
            "skills_recommended",
            extra={
                "domain": context.domain,
                "considered": result.total_considered,
                "recommended": len(result.recommended),
                "excluded_low_effectiveness": result.excluded_low_effectiveness,
                "excluded_low_relevance": result.excluded_low_relevance,
            },
        )
        return result
