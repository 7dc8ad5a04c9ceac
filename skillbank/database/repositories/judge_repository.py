"""Judge insight repository."""

from typing import List, Optional

from sqlalchemy import and_, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import StorageError
from ...models.judge import JudgeInsight, JudgeMode, judge_was_right
from ..models import JudgeInsightRow


class JudgeInsightRepository:
    """Repository for judge insights.

    Example:
        >>> repo = JudgeInsightRepository(db)
        >>> recent = repo.recent("perps", limit=10)
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, decision_id: str, mode: JudgeMode = JudgeMode.POST_HOC) -> Optional[JudgeInsightRow]:
        return self.db.scalar(
            select(JudgeInsightRow).where(
                and_(
                    JudgeInsightRow.decision_id == decision_id,
                    JudgeInsightRow.mode == mode.value,
                )
            )
        )

    def add(self, insight: JudgeInsight) -> JudgeInsightRow:
        """Insert an insight.

        Raises:
            StorageError: If the decision already has an insight in this mode
        """
        row = JudgeInsightRow.from_insight(insight)
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            raise StorageError(
                f"Judge insight exists for decision {insight.decision_id} ({insight.mode.value})"
            )
        return row

    def update_outcome(self, decision_id: str, outcome: str, pnl_percent: float) -> List[JudgeInsightRow]:
        """Record the realized outcome on every not-yet-validated insight for a decision.

        The judge was right when it called a good decision that profited, or a
        poor decision that lost.
        """
        rows = list(
            self.db.scalars(
                select(JudgeInsightRow).where(
                    and_(
                        JudgeInsightRow.decision_id == decision_id,
                        JudgeInsightRow.actual_outcome.is_(None),
                    )
                )
            )
        )
        for row in rows:
            row.actual_outcome = outcome
            row.actual_pnl_percent = pnl_percent
            row.judge_was_right = judge_was_right(row.was_good_decision, outcome)
        self.db.flush()
        return rows

    def recent(
        self,
        domain: Optional[str],
        limit: int = 10,
        mode: JudgeMode = JudgeMode.POST_HOC,
    ) -> List[JudgeInsightRow]:
        """Most recent insights for a domain (all domains when None)."""
        stmt = select(JudgeInsightRow).where(JudgeInsightRow.mode == mode.value)
        if domain is not None:
            stmt = stmt.where(JudgeInsightRow.domain == domain)
        stmt = stmt.order_by(desc(JudgeInsightRow.created_at), desc(JudgeInsightRow.id)).limit(limit)
        return list(self.db.scalars(stmt))

    def calibration_counts(self, mode: JudgeMode = JudgeMode.POST_HOC) -> dict:
        """Per-domain (validated, correct) counts over all validated insights."""
        rows = self.db.execute(
            select(
                JudgeInsightRow.domain,
                func.count(JudgeInsightRow.id),
                func.count(JudgeInsightRow.id).filter(JudgeInsightRow.judge_was_right.is_(True)),
            )
            .where(
                and_(
                    JudgeInsightRow.mode == mode.value,
                    JudgeInsightRow.judge_was_right.is_not(None),
                )
            )
            .group_by(JudgeInsightRow.domain)
        ).all()
        return {domain: (validated, correct or 0) for domain, validated, correct in rows}
