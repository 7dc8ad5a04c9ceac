"""Post-hoc judge feedback loop.

Scores closed decisions on the six-dimension rubric, records whether each
call turned out right once the outcome is known, and condenses recent
insights into the feedback block injected into the next decision's context.
"""

from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ..config import LearningConfig
from ..database.connection import session_scope
from ..database.repositories import JudgeInsightRepository
from ..exceptions import ExternalServiceError
from ..logging_config import get_logger
from ..models.decision import ClosedDecision
from ..models.judge import CalibrationStats, JudgeInsight, JudgeMode, JudgeSynthesis
from ..models.skill import utcnow
from ..synthesis import PromptKind, Synthesizer
from ..utils.timeout import call_with_timeout
from ..validation import validate_resolved_outcome
from .rubric import classify_insight, optional_text, parse_json_object, score_response

logger = get_logger(__name__)

MAX_KEY_THEMES = 5
MAX_WARNINGS = 3
MAX_PATTERNS = 3


class JudgeFeedbackLoop:
    """Post-hoc evaluation, calibration and synthesis."""

    def __init__(
        self,
        session_factory: sessionmaker,
        synthesizer: Synthesizer,
        config: Optional[LearningConfig] = None,
    ):
        self.session_factory = session_factory
        self.synthesizer = synthesizer
        self.config = config or LearningConfig()

    def _scope(self):
        return session_scope(self.session_factory)

    async def evaluate_decision(self, decision: ClosedDecision) -> Optional[JudgeInsight]:
        """Score a closed decision once.

        The evaluator sees the decision but not its outcome. If the outcome is
        already known it is recorded straight after, so the insight is
        validated immediately.

        Returns:
            The stored insight, or None when the evaluator failed (retried on
            the next closed-decision pass)
        """
        existing = self.get_insight(decision.id)
        if existing is not None:
            return existing

        try:
            text = await call_with_timeout(
                self.synthesizer.compose(
                    PromptKind.JUDGE_POST_HOC,
                    {"decision": decision.to_evidence(include_outcome=False)},
                ),
                timeout=self.config.synthesis_timeout_seconds,
                operation="judge_post_hoc",
            )
            parsed = parse_json_object(text, "judge_post_hoc")
        except ExternalServiceError as e:
            logger.warning(
                "judge_evaluation_skipped",
                extra={"decision_id": decision.id, "domain": decision.domain, "error": str(e)},
            )
            return None

        scores, quality = score_response(parsed)
        was_good = parsed.get("was_good_decision")
        if not isinstance(was_good, bool):
            was_good = quality >= 0.5

        insight = JudgeInsight(
            decision_id=decision.id,
            domain=decision.domain,
            scores=scores,
            quality_score=quality,
            was_good_decision=was_good,
            key_insight=optional_text(parsed.get("key_insight")) or "No key insight provided",
            insight_type=classify_insight(parsed.get("insight_type"), was_good),
            mode=JudgeMode.POST_HOC,
            action=decision.action,
            target=decision.target,
            strengths=optional_text(parsed.get("strengths")),
            weaknesses=optional_text(parsed.get("weaknesses")),
            better_approach=optional_text(parsed.get("better_approach")),
            created_at=utcnow(),
        )
        self.save_insight(insight)

        logger.info(
            "decision_judged",
            extra={
                "decision_id": decision.id,
                "domain": decision.domain,
                "quality_score": quality,
                "was_good_decision": was_good,
            },
        )

        if decision.outcome in ("profit", "loss"):
            self.update_outcome(decision.id, decision.outcome, decision.pnl_percent)
            insight = self.get_insight(decision.id) or insight
        return insight

    def save_insight(self, insight: JudgeInsight) -> JudgeInsight:
        with self._scope() as db:
            JudgeInsightRepository(db).add(insight)
        return insight

    def get_insight(self, decision_id: str, mode: JudgeMode = JudgeMode.POST_HOC) -> Optional[JudgeInsight]:
        with self._scope() as db:
            row = JudgeInsightRepository(db).get(decision_id, mode)
            return row.to_insight() if row else None

    def update_outcome(self, decision_id: str, outcome: str, pnl_percent: float) -> List[JudgeInsight]:
        """Record the realized outcome and whether the judge called it right."""
        outcome = validate_resolved_outcome(outcome)
        with self._scope() as db:
            rows = JudgeInsightRepository(db).update_outcome(decision_id, outcome, pnl_percent)
            updated = [row.to_insight() for row in rows]
        for insight in updated:
            logger.info(
                "judge_outcome_recorded",
                extra={
                    "decision_id": decision_id,
                    "mode": insight.mode.value,
                    "judge_was_right": insight.judge_was_right,
                },
            )
        return updated

    def recent_insights(self, domain: Optional[str], limit: int = 10) -> List[JudgeInsight]:
        with self._scope() as db:
            return [row.to_insight() for row in JudgeInsightRepository(db).recent(domain, limit)]

    def calibration(self, mode: JudgeMode = JudgeMode.POST_HOC) -> Dict[str, CalibrationStats]:
        """Per-domain judge accuracy over every validated insight."""
        with self._scope() as db:
            counts = JudgeInsightRepository(db).calibration_counts(mode)
        return {
            domain: CalibrationStats(domain=domain, validated=validated, correct=correct)
            for domain, (validated, correct) in counts.items()
        }

    def synthesize(self, domain: str, limit: Optional[int] = None) -> JudgeSynthesis:
        """Condense recent insights for a domain into themes, warnings and patterns.

        Args:
            domain: Operating domain
            limit: Number of recent insights to consider

        Returns:
            JudgeSynthesis; ``full_text`` is ready for prompt injection
        """
        limit = limit or self.config.judge_synthesis_limit
        insights = self.recent_insights(domain, limit)
        calibration = self.calibration().get(domain, CalibrationStats(domain=domain))

        if not insights:
            return JudgeSynthesis(
                domain=domain,
                calibration_notes="No recent evaluations. Make decisions based on current analysis.",
                calibration=calibration,
            )

        key_themes: List[str] = []
        warnings: List[str] = []
        patterns: List[str] = []
        for insight in insights:
            if insight.key_insight and insight.key_insight not in key_themes:
                key_themes.append(insight.key_insight)
            label = " ".join(p for p in (insight.action, insight.target) if p) or insight.decision_id
            if not insight.was_good_decision and insight.weaknesses:
                warnings.append(f"{label}: {insight.weaknesses}")
            if insight.was_good_decision and insight.strengths:
                patterns.append(f"{label}: {insight.strengths}")

        average_quality = sum(i.quality_score for i in insights) / len(insights)
        accuracy = (
            f"{calibration.accuracy * 100:.0f}%" if calibration.accuracy is not None else "N/A"
        )
        types = Counter(i.insight_type.value for i in insights)
        calibration_notes = "\n".join(
            [
                f"Recent decision quality: {average_quality * 100:.0f}% average",
                f"Judge accuracy: {accuracy} "
                f"({calibration.correct}/{calibration.validated} predictions correct)",
                "Insight types: " + ", ".join(f"{k} ({v})" for k, v in sorted(types.items())),
            ]
        )

        return JudgeSynthesis(
            domain=domain,
            recent_insights_count=len(insights),
            key_themes=key_themes[:MAX_KEY_THEMES],
            warnings_to_heed=warnings[:MAX_WARNINGS],
            patterns_to_follow=patterns[:MAX_PATTERNS],
            calibration_notes=calibration_notes,
            calibration=calibration,
            recent=insights[:3],
            average_quality=average_quality,
        )
