"""Skill store.

Transactional facade over the repositories. Every public method is one unit
of work: it opens a session scope, does its reads and writes, and commits or
rolls back as a whole. Rows are never deleted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from ..config import LearningConfig
from ..database.connection import session_scope
from ..database.repositories import (
    BucketRepository,
    RecommendationRepository,
    SkillRepository,
)
from ..logging_config import get_logger
from ..models.recommendation import SkillRecommendation, TradeOutcome
from ..models.skill import SkillRecord, SkillStatus, SkillType, utcnow

logger = get_logger(__name__)


@dataclass
class BucketSnapshot:
    """Active members of a merge bucket as of one version."""

    domain: str
    bucket_type: SkillType
    version: int
    skills: List[SkillRecord]


@dataclass
class ResolvedRecommendation:
    """One recommendation flipped out of pending by a resolution."""

    skill_id: str
    was_applied: bool
    contributed_to_success: Optional[bool]


class SkillStore:
    """Persistent skill store.

    Example:
        >>> store = SkillStore(session_factory, config)
        >>> skill = store.create(SkillRecord.new("dlmm", SkillType.WARNING, title, body))
        >>> store.list_active(domain="dlmm")
    """

    def __init__(self, session_factory: sessionmaker, config: Optional[LearningConfig] = None):
        """Initialize store.

        Args:
            session_factory: SQLAlchemy session factory
            config: Policy thresholds (defaults if omitted)
        """
        self.session_factory = session_factory
        self.config = config or LearningConfig()

    def _scope(self):
        return session_scope(self.session_factory)

    # ------------------------------------------------------------------
    # Skill CRUD
    # ------------------------------------------------------------------

    def create(self, skill: SkillRecord) -> SkillRecord:
        """Insert a skill without the merge gate, advancing its bucket version."""
        with self._scope() as db:
            SkillRepository(db).add(skill)
            BucketRepository(db).bump(skill.domain, skill.bucket_type.value, utcnow())
        logger.info(
            "skill_created",
            extra={"skill_id": skill.id, "domain": skill.domain, "skill_type": skill.skill_type.value},
        )
        return skill

    def get(self, skill_id: str) -> Optional[SkillRecord]:
        """Fetch a skill by id, whatever its status."""
        with self._scope() as db:
            row = SkillRepository(db).get(skill_id)
            return row.to_record() if row else None

    def list_active(
        self,
        domain: Optional[str] = None,
        skill_type: Optional[SkillType] = None,
        include_excluded: bool = False,
        domains: Optional[Iterable[str]] = None,
    ) -> List[SkillRecord]:
        """Active skills, never archived or expired.

        Args:
            domain: Restrict to one domain
            skill_type: Restrict to one skill type
            include_excluded: Include soft-excluded skills (audit only)
            domains: Restrict to several domains (overrides ``domain``)

        Returns:
            Skill records, newest first
        """
        if domains is None and domain is not None:
            domains = [domain]
        with self._scope() as db:
            rows = SkillRepository(db).list_active(
                domains=domains,
                skill_type=SkillType(skill_type).value if skill_type else None,
                include_excluded=include_excluded,
            )
            return [row.to_record() for row in rows]

    def list_all(self, domain: Optional[str] = None, status: Optional[SkillStatus] = None) -> List[SkillRecord]:
        """Every skill including archived and expired rows."""
        with self._scope() as db:
            rows = SkillRepository(db).list_all(
                domain=domain, status=SkillStatus(status).value if status else None
            )
            return [row.to_record() for row in rows]

    def count(self) -> int:
        """Total rows, any status."""
        with self._scope() as db:
            return SkillRepository(db).count()

    def mark_archived(self, skill_ids: Iterable[str], merged_into_id: str) -> int:
        """Archive active skills superseded by ``merged_into_id``.

        Raises:
            SkillNotFoundError: If an id is unknown
            InvalidStatusTransitionError: If a skill is not active
        """
        ids = list(skill_ids)
        with self._scope() as db:
            skills = SkillRepository(db)
            rows = skills.get_many(ids)
            count = skills.archive(ids, merged_into_id)
            buckets = BucketRepository(db)
            for key in {(row.domain, row.bucket_type) for row in rows}:
                buckets.bump(*key, now=utcnow())
        return count

    def sweep_expired(self, now: Optional[datetime] = None) -> List[SkillRecord]:
        """Expire every active skill whose TTL has elapsed.

        Idempotent: already-expired rows are not touched again, so a second
        run with the same ``now`` changes nothing.

        Returns:
            Skills that transitioned to expired in this call
        """
        now = now or utcnow()
        with self._scope() as db:
            rows = SkillRepository(db).expire_due(now)
            buckets = BucketRepository(db)
            for key in sorted({(row.domain, row.bucket_type) for row in rows}):
                buckets.bump(*key, now=now)
            expired = [row.to_record() for row in rows]

        for skill in expired:
            logger.info(
                "skill_expired",
                extra={"skill_id": skill.id, "domain": skill.domain, "skill_type": skill.skill_type.value},
            )
        return expired

    # ------------------------------------------------------------------
    # Merge bucket compare-and-swap
    # ------------------------------------------------------------------

    def bucket_snapshot(self, domain: str, bucket_type: SkillType) -> BucketSnapshot:
        """Read a bucket's version and its active members in one transaction.

        Soft-excluded skills are members: exclusion is about retrieval, not
        validity.
        """
        bucket_type = SkillType(bucket_type)
        with self._scope() as db:
            version = BucketRepository(db).current_version(domain, bucket_type.value)
            rows = SkillRepository(db).list_active(
                domains=[domain], bucket_type=bucket_type.value, include_excluded=True
            )
            return BucketSnapshot(domain, bucket_type, version, [row.to_record() for row in rows])

    def active_buckets(self) -> List[Tuple[str, SkillType]]:
        """(domain, bucket type) pairs with at least one active skill."""
        with self._scope() as db:
            rows = SkillRepository(db).list_active(include_excluded=True)
            return sorted({(row.domain, SkillType(row.bucket_type)) for row in rows})

    def commit_candidate(self, candidate: SkillRecord, expected_version: int) -> SkillRecord:
        """Insert a standalone skill if its bucket has not moved.

        Raises:
            StaleBucketError: If the bucket version changed since the snapshot
        """
        with self._scope() as db:
            BucketRepository(db).compare_and_swap(
                candidate.domain, candidate.bucket_type.value, expected_version, utcnow()
            )
            SkillRepository(db).add(candidate)
        return candidate

    def commit_merge(
        self,
        evolved: SkillRecord,
        subsumed_ids: Iterable[str],
        expected_version: int,
    ) -> SkillRecord:
        """Insert an evolved skill and archive what it subsumes, atomically.

        Raises:
            StaleBucketError: If the bucket version changed since the snapshot
            InvalidStatusTransitionError: If a subsumed skill is no longer active
        """
        with self._scope() as db:
            BucketRepository(db).compare_and_swap(
                evolved.domain, evolved.bucket_type.value, expected_version, utcnow()
            )
            skills = SkillRepository(db)
            skills.add(evolved)
            ids = list(subsumed_ids)
            if ids:
                skills.archive(ids, evolved.id)
        return evolved

    # ------------------------------------------------------------------
    # Recommendations and counters
    # ------------------------------------------------------------------

    def add_recommendation(self, recommendation: SkillRecommendation) -> SkillRecommendation:
        """Insert a recommendation row.

        Raises:
            DuplicateRecommendationError: If the (decision, skill) pair exists
        """
        with self._scope() as db:
            RecommendationRepository(db).add(recommendation, utcnow())
        return recommendation

    def get_recommendation(self, decision_id: str, skill_id: str) -> Optional[SkillRecommendation]:
        with self._scope() as db:
            row = RecommendationRepository(db).get(decision_id, skill_id)
            return row.to_recommendation() if row else None

    def recommendations_for_decision(self, decision_id: str) -> List[SkillRecommendation]:
        with self._scope() as db:
            rows = RecommendationRepository(db).list_for_decision(decision_id)
            return [row.to_recommendation() for row in rows]

    def record_detection(self, recommendation: SkillRecommendation) -> SkillRecommendation:
        """Insert the row, or update detection fields on an existing pending row."""
        with self._scope() as db:
            repo = RecommendationRepository(db)
            if repo.get(recommendation.decision_id, recommendation.skill_id) is None:
                repo.add(recommendation, utcnow())
            else:
                repo.update_detection(
                    recommendation.decision_id,
                    recommendation.skill_id,
                    recommendation.was_applied,
                    recommendation.match_type.value,
                    recommendation.detection_confidence,
                )
        return recommendation

    def resolve_recommendations(
        self, decision_id: str, outcome: TradeOutcome, now: Optional[datetime] = None
    ) -> List[ResolvedRecommendation]:
        """Resolve every pending recommendation of a decision and count applications.

        Each row leaves pending through a guarded UPDATE, and the skill's
        counters move in the same transaction only when this call won that
        row, so a decision is counted exactly once.
        """
        now = now or utcnow()
        outcome = TradeOutcome(outcome)
        successful = outcome == TradeOutcome.PROFIT
        resolved = []
        with self._scope() as db:
            recs = RecommendationRepository(db)
            skills = SkillRepository(db)
            for row in recs.list_for_decision(decision_id, pending_only=True):
                contributed = successful if row.was_applied else None
                if not recs.resolve(row.id, outcome.value, contributed, now):
                    continue
                if row.was_applied:
                    skills.apply_outcome(
                        row.skill_id,
                        successful,
                        self.config.min_sample_size,
                        self.config.min_success_rate,
                    )
                resolved.append(ResolvedRecommendation(row.skill_id, bool(row.was_applied), contributed))
        return resolved

    def apply_outcome(self, skill_id: str, successful: bool):
        """Atomically count one application of a skill."""
        with self._scope() as db:
            SkillRepository(db).apply_outcome(
                skill_id, successful, self.config.min_sample_size, self.config.min_success_rate
            )

    def application_history(self, skill_id: str) -> List[Tuple[datetime, bool]]:
        """(resolved_at, successful) for each resolved application of a skill."""
        with self._scope() as db:
            rows = RecommendationRepository(db).resolved_applied_for_skill(skill_id)
            return [
                (row.resolved_at, row.trade_outcome == TradeOutcome.PROFIT.value)
                for row in rows
                if row.resolved_at is not None
            ]

    def presentation_stats(self, skill_id: str) -> dict:
        """Presented vs applied counts for a skill."""
        with self._scope() as db:
            return RecommendationRepository(db).presentation_stats(skill_id)
