"""Inline (pre-execution) judge.

Same rubric as the post-hoc judge, a faster evaluator and a tighter time
budget. Hard blocks: quality below the floor, a suggested confidence below
the floor, or a position larger than the allowed share of available balance.
The position check runs without the evaluator. Any evaluator failure fails
open: the trade proceeds with a logged warning, unless the position check
alone blocks it.
"""

import time
from dataclasses import replace
from typing import Optional

from ..config import LearningConfig
from ..exceptions import ExternalServiceError, StorageError
from ..logging_config import get_logger
from ..models.decision import PendingDecision
from ..models.judge import (
    EvaluatorSpeed,
    InlineJudgeResult,
    InsightType,
    JudgeInsight,
    JudgeMode,
    SuggestedModifications,
)
from ..models.skill import utcnow
from ..synthesis import PromptKind, Synthesizer
from ..utils.timeout import call_with_timeout
from .feedback import JudgeFeedbackLoop
from ..models.judge import clamp_unit
from .rubric import optional_text, parse_json_object, score_response

logger = get_logger(__name__)


def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class InlineJudge:
    """Pre-execution gate for trading decisions."""

    def __init__(
        self,
        synthesizer: Synthesizer,
        config: Optional[LearningConfig] = None,
        feedback: Optional[JudgeFeedbackLoop] = None,
    ):
        self.synthesizer = synthesizer
        self.config = config or LearningConfig()
        self.feedback = feedback

    def select_speed(self, decision: PendingDecision) -> EvaluatorSpeed:
        """Thorough review for large or high-conviction trades."""
        if (
            decision.amount_usd > self.config.thorough_amount_usd
            or decision.confidence > self.config.thorough_confidence
        ):
            return EvaluatorSpeed.THOROUGH
        return EvaluatorSpeed.FAST

    def position_block_reason(self, decision: PendingDecision) -> Optional[str]:
        """Reason to block on position size alone, if any."""
        if decision.amount_usd <= 0:
            return None
        limit = self.config.inline_max_position_pct
        fraction = decision.position_fraction
        if fraction is None:
            return "position size with no available balance"
        if fraction > limit:
            return (
                f"position size {fraction * 100:.1f}% of balance exceeds "
                f"{limit * 100:.0f}% limit"
            )
        return None

    async def evaluate(
        self,
        decision: PendingDecision,
        decision_id: Optional[str] = None,
        speed: Optional[EvaluatorSpeed] = None,
    ) -> InlineJudgeResult:
        """Decide whether a decision should execute.

        Never raises for evaluator problems: timeouts and malformed output
        produce ``should_proceed=True`` with ``failed_open=True``. The
        position-size check still applies when failing open, so a non-hold
        trade with a positive amount and no available balance is blocked.

        Args:
            decision: Decision about to execute
            decision_id: When given, the verdict is stored for calibration
            speed: Evaluator tier (auto-selected when omitted)

        Returns:
            InlineJudgeResult
        """
        if decision.is_hold:
            return InlineJudgeResult(should_proceed=True, quality_score=1.0)

        started = time.monotonic()
        speed = speed or self.select_speed(decision)
        position_block = self.position_block_reason(decision)

        evidence = {
            "decision": decision.to_evidence(),
            "speed": speed.value,
            "available_balance": decision.available_balance,
            "open_positions": decision.open_positions,
            "recent_outcomes": list(decision.recent_outcomes),
        }
        try:
            text = await call_with_timeout(
                self.synthesizer.compose(PromptKind.JUDGE_INLINE, evidence),
                timeout=self.config.inline_timeout_seconds,
                operation="judge_inline",
            )
            parsed = parse_json_object(text, "judge_inline")
        except ExternalServiceError as e:
            logger.warning(
                "inline_judge_fail_open",
                extra={"domain": decision.domain, "decision_id": decision_id, "error": str(e)},
            )
            result = InlineJudgeResult(
                should_proceed=position_block is None,
                quality_score=0.5,
                warnings=["Inline judge evaluation failed - proceeding with caution"],
                speed=speed,
                failed_open=True,
                block_reasons=[position_block] if position_block else [],
            )
            result.latency_ms = int((time.monotonic() - started) * 1000)
            return result

        result = self._verdict(parsed, speed, position_block)
        result.latency_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "inline_judge_verdict",
            extra={
                "domain": decision.domain,
                "decision_id": decision_id,
                "should_proceed": result.should_proceed,
                "quality_score": result.quality_score,
                "speed": speed.value,
                "latency_ms": result.latency_ms,
                "block_reasons": result.block_reasons,
            },
        )

        if decision_id and self.feedback is not None:
            self._record(decision, decision_id, result)
        return result

    def _verdict(
        self, parsed: dict, speed: EvaluatorSpeed, position_block: Optional[str]
    ) -> InlineJudgeResult:
        scores, quality = score_response(parsed)

        raw_mods = parsed.get("suggested_modifications") or {}
        modifications = None
        if isinstance(raw_mods, dict) and raw_mods:
            modifications = SuggestedModifications(
                adjusted_confidence=_optional_float(raw_mods.get("adjusted_confidence")),
                adjusted_amount=_optional_float(raw_mods.get("adjusted_amount")),
                additional_reasoning=optional_text(raw_mods.get("additional_reasoning")),
            )

        reasons = []
        if parsed.get("should_proceed") is False:
            reasons.append("judge advised against proceeding")
        if quality < self.config.inline_min_quality:
            reasons.append(
                f"quality {quality:.2f} below {self.config.inline_min_quality:.2f}"
            )
        if (
            modifications is not None
            and modifications.adjusted_confidence is not None
            and modifications.adjusted_confidence < self.config.inline_min_confidence
        ):
            reasons.append(
                f"adjusted confidence {modifications.adjusted_confidence:.2f} below "
                f"{self.config.inline_min_confidence:.2f}"
            )
        if position_block:
            reasons.append(position_block)

        warnings = parsed.get("warnings")
        return InlineJudgeResult(
            should_proceed=not reasons,
            quality_score=quality,
            scores=scores,
            warnings=[str(w) for w in warnings] if isinstance(warnings, list) else [],
            key_insight=optional_text(parsed.get("key_insight")),
            modifications=modifications,
            speed=speed,
            block_reasons=reasons,
        )

    def _record(self, decision: PendingDecision, decision_id: str, result: InlineJudgeResult):
        insight = JudgeInsight(
            decision_id=decision_id,
            domain=decision.domain,
            scores=result.scores,
            quality_score=clamp_unit(result.quality_score),
            was_good_decision=result.should_proceed,
            key_insight=result.key_insight or "; ".join(result.warnings) or "No key insight provided",
            insight_type=InsightType.NEUTRAL if result.should_proceed else InsightType.WARNING,
            mode=JudgeMode.INLINE,
            action=decision.action,
            target=decision.target,
            created_at=utcnow(),
        )
        try:
            self.feedback.save_insight(insight)
        except StorageError as e:
            logger.warning(
                "inline_insight_not_saved",
                extra={"decision_id": decision_id, "error": str(e)},
            )


def was_modified(result: InlineJudgeResult) -> bool:
    """Whether the judge proposed a new confidence or amount."""
    mods = result.modifications
    return mods is not None and (
        mods.adjusted_confidence is not None or mods.adjusted_amount is not None
    )


def apply_modifications(decision: PendingDecision, result: InlineJudgeResult) -> PendingDecision:
    """Return a copy of ``decision`` with the judge's suggestions applied."""
    mods = result.modifications
    if mods is None:
        return decision

    reasoning = decision.reasoning
    if mods.additional_reasoning:
        reasoning = f"{reasoning}\n\n[InlineJudge]: {mods.additional_reasoning}"

    return replace(
        decision,
        confidence=mods.adjusted_confidence if mods.adjusted_confidence is not None else decision.confidence,
        amount_usd=mods.adjusted_amount if mods.adjusted_amount is not None else decision.amount_usd,
        reasoning=reasoning,
    )


def format_inline_result(result: InlineJudgeResult) -> str:
    """One-line summary for logs and the presentation layer."""
    verdict = "PROCEED" if result.should_proceed else "BLOCKED"
    text = (
        f"InlineJudge: {verdict} ({result.quality_score * 100:.0f}% quality, "
        f"{result.latency_ms}ms)"
    )
    if result.block_reasons:
        text += f"\n   Blocked: {'; '.join(result.block_reasons)}"
    if result.warnings:
        text += f"\n   Warnings: {'; '.join(result.warnings)}"
    if result.key_insight:
        text += f"\n   Insight: {result.key_insight}"
    return text
