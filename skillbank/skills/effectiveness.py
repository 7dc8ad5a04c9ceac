"""Effectiveness and pruning policy.

Exclusion from retrieval is a derived, reversible flag. The store recomputes
it in SQL on every counter update; this module holds the same rule for
in-process checks plus the reporting statistics (Wilson lower bound,
recency-weighted success rate).
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Tuple

from ..config import LearningConfig
from ..models.skill import SkillRecord


def wilson_lower_bound(successes: int, total: int, z: float = 1.645) -> float:
    """Lower bound of the Wilson score interval for a binomial proportion.

    Args:
        successes: Number of successful applications
        total: Number of applications
        z: Z-score for the confidence level (1.645 = 90%)

    Returns:
        Lower bound in [0, 1]; 0.0 when there is no data

    Example:
        >>> round(wilson_lower_bound(8, 10), 3)
        0.541
    """
    if total <= 0:
        return 0.0
    p = successes / total
    z2 = z * z
    denominator = 1 + z2 / total
    centre = p + z2 / (2 * total)
    margin = z * math.sqrt((p * (1 - p) + z2 / (4 * total)) / total)
    return max(0.0, (centre - margin) / denominator)


@dataclass
class SkillEffectiveness:
    """Effectiveness snapshot for one skill."""

    skill_id: str
    times_applied: int
    times_successful: int
    success_rate: Optional[float]
    wilson_score: float
    proven_effective: bool
    excluded_from_retrieval: bool
    time_weighted_success_rate: Optional[float] = None
    times_presented: int = 0

    @property
    def application_rate(self) -> Optional[float]:
        """Fraction of presentations where the skill was actually used."""
        if self.times_presented <= 0:
            return None
        return self.times_applied / self.times_presented


class EffectivenessPolicy:
    """Success-rate rules for pruning and proven-effectiveness badges."""

    def __init__(self, config: LearningConfig):
        self.config = config

    def is_excluded(self, times_applied: int, times_successful: int) -> bool:
        """Excluded once there are enough samples and the rate is below the floor."""
        if times_applied < self.config.min_sample_size:
            return False
        return (times_successful / times_applied) < self.config.min_success_rate

    def wilson_lower_bound(self, successes: int, total: int) -> float:
        """Wilson lower bound at the configured z."""
        return wilson_lower_bound(successes, total, self.config.wilson_z)

    def is_proven_effective(self, times_applied: int, times_successful: int) -> bool:
        """Enough samples, a high rate, and a Wilson bound that backs it up."""
        if times_applied < self.config.min_sample_size:
            return False
        rate = times_successful / times_applied
        wilson = self.wilson_lower_bound(times_successful, times_applied)
        return (
            rate >= self.config.proven_min_success_rate
            and wilson >= self.config.proven_min_wilson
        )

    def time_weighted_success_rate(
        self, applications: Iterable[Tuple[datetime, bool]], now: datetime
    ) -> Optional[float]:
        """Success rate with each outcome weighted by exp(-age_days / decay_days).

        Args:
            applications: (resolved_at, successful) pairs
            now: Reference time

        Returns:
            Weighted rate, or None with no applications
        """
        weighted_total = 0.0
        weighted_success = 0.0
        for resolved_at, successful in applications:
            age_days = max(0.0, (now - resolved_at).total_seconds() / 86400)
            weight = math.exp(-age_days / self.config.recency_decay_days)
            weighted_total += weight
            if successful:
                weighted_success += weight
        if weighted_total == 0:
            return None
        return weighted_success / weighted_total

    def evaluate(
        self,
        skill: SkillRecord,
        applications: Iterable[Tuple[datetime, bool]] = (),
        times_presented: int = 0,
        now: Optional[datetime] = None,
    ) -> SkillEffectiveness:
        """Build the effectiveness snapshot for a skill."""
        applications = list(applications)
        return SkillEffectiveness(
            skill_id=skill.id,
            times_applied=skill.times_applied,
            times_successful=skill.times_successful,
            success_rate=skill.success_rate,
            wilson_score=wilson_lower_bound(
                skill.times_successful, skill.times_applied, self.config.wilson_z
            ),
            proven_effective=self.is_proven_effective(skill.times_applied, skill.times_successful),
            excluded_from_retrieval=skill.excluded_from_retrieval,
            time_weighted_success_rate=(
                self.time_weighted_success_rate(applications, now) if now and applications else None
            ),
            times_presented=times_presented,
        )
