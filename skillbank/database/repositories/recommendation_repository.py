"""Skill recommendation repository.

One row per (decision, skill) pair. Resolution flips a row out of "pending"
with a guarded UPDATE, so only one resolver ever wins a given row.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import DuplicateRecommendationError
from ...models.recommendation import SkillRecommendation, TradeOutcome
from ..models import SkillRecommendationRow


class RecommendationRepository:
    """Repository for skill recommendations."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, decision_id: str, skill_id: str) -> Optional[SkillRecommendationRow]:
        return self.db.scalar(
            select(SkillRecommendationRow).where(
                and_(
                    SkillRecommendationRow.decision_id == decision_id,
                    SkillRecommendationRow.skill_id == skill_id,
                )
            )
        )

    def add(self, recommendation: SkillRecommendation, now: datetime) -> SkillRecommendationRow:
        """Insert a recommendation row.

        Raises:
            DuplicateRecommendationError: If the pair already has a row
        """
        if self.get(recommendation.decision_id, recommendation.skill_id) is not None:
            raise DuplicateRecommendationError(
                f"Recommendation exists for decision {recommendation.decision_id} "
                f"and skill {recommendation.skill_id}"
            )

        row = SkillRecommendationRow(
            decision_id=recommendation.decision_id,
            skill_id=recommendation.skill_id,
            relevance_score=recommendation.relevance_score,
            was_presented=recommendation.was_presented,
            was_applied=recommendation.was_applied,
            match_type=recommendation.match_type.value,
            detection_confidence=recommendation.detection_confidence,
            trade_outcome=TradeOutcome.PENDING.value,
            created_at=now,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            raise DuplicateRecommendationError(
                f"Recommendation exists for decision {recommendation.decision_id} "
                f"and skill {recommendation.skill_id}"
            )
        return row

    def update_detection(
        self,
        decision_id: str,
        skill_id: str,
        was_applied: bool,
        match_type: str,
        confidence: float,
    ) -> bool:
        """Record usage detection on a still-pending row. Returns whether a row changed."""
        result = self.db.execute(
            update(SkillRecommendationRow)
            .where(
                and_(
                    SkillRecommendationRow.decision_id == decision_id,
                    SkillRecommendationRow.skill_id == skill_id,
                    SkillRecommendationRow.trade_outcome == TradeOutcome.PENDING.value,
                )
            )
            .values(was_applied=was_applied, match_type=match_type, detection_confidence=confidence)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def list_for_decision(
        self, decision_id: str, pending_only: bool = False
    ) -> List[SkillRecommendationRow]:
        stmt = select(SkillRecommendationRow).where(
            SkillRecommendationRow.decision_id == decision_id
        )
        if pending_only:
            stmt = stmt.where(SkillRecommendationRow.trade_outcome == TradeOutcome.PENDING.value)
        return list(self.db.scalars(stmt.order_by(SkillRecommendationRow.id)))

    def resolve(self, row_id: int, outcome: str, contributed: Optional[bool], now: datetime) -> bool:
        """Move one row out of pending. Returns False if it was already resolved."""
        result = self.db.execute(
            update(SkillRecommendationRow)
            .where(
                and_(
                    SkillRecommendationRow.id == row_id,
                    SkillRecommendationRow.trade_outcome == TradeOutcome.PENDING.value,
                )
            )
            .values(trade_outcome=outcome, contributed_to_success=contributed, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def resolved_applied_for_skill(self, skill_id: str) -> List[SkillRecommendationRow]:
        """Resolved rows where the skill was applied, newest first."""
        return list(
            self.db.scalars(
                select(SkillRecommendationRow)
                .where(
                    and_(
                        SkillRecommendationRow.skill_id == skill_id,
                        SkillRecommendationRow.was_applied.is_(True),
                        SkillRecommendationRow.trade_outcome != TradeOutcome.PENDING.value,
                    )
                )
                .order_by(desc(SkillRecommendationRow.resolved_at))
            )
        )

    def presentation_stats(self, skill_id: str) -> dict:
        """Presented vs applied counts for one skill.

        Returns:
            Dictionary with presented, applied, resolved_applied and successful
        """
        row = self.db.execute(
            select(
                func.count(SkillRecommendationRow.id),
                func.count(SkillRecommendationRow.id).filter(
                    SkillRecommendationRow.was_applied.is_(True)
                ),
                func.count(SkillRecommendationRow.id).filter(
                    and_(
                        SkillRecommendationRow.was_applied.is_(True),
                        SkillRecommendationRow.trade_outcome != TradeOutcome.PENDING.value,
                    )
                ),
                func.count(SkillRecommendationRow.id).filter(
                    SkillRecommendationRow.contributed_to_success.is_(True)
                ),
            ).where(
                and_(
                    SkillRecommendationRow.skill_id == skill_id,
                    SkillRecommendationRow.was_presented.is_(True),
                )
            )
        ).one()
        return {
            "presented": row[0] or 0,
            "applied": row[1] or 0,
            "resolved_applied": row[2] or 0,
            "successful": row[3] or 0,
        }
