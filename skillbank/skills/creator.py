"""Skill creation from resolved outcomes.

A big loss becomes a warning, a big win becomes a pattern, and every
``strategy_batch_size`` closed decisions in a domain become a strategy. Every
new skill goes through the merge gate.
"""

from typing import List, Optional

from ..config import LearningConfig
from ..exceptions import ExternalServiceError, StorageError
from ..logging_config import get_logger
from ..models.decision import ClosedDecision, DecisionSource
from ..models.skill import SkillRecord, SkillType
from ..synthesis import PromptKind, Synthesizer, TemplateSynthesizer, parse_skill_document, truncate
from ..utils.timeout import call_with_timeout
from .merger import MergeOutcome, SkillMerger

logger = get_logger(__name__)


class SkillCreator:
    """Turns trade outcomes into candidate skills."""

    def __init__(
        self,
        merger: SkillMerger,
        synthesizer: Synthesizer,
        config: Optional[LearningConfig] = None,
        decision_source: Optional[DecisionSource] = None,
    ):
        self.merger = merger
        self.synthesizer = synthesizer
        self.config = config or merger.config
        self.decision_source = decision_source
        self._templates = TemplateSynthesizer(max_chars=self.config.merge_max_chars)

    def skill_type_for(self, decision: ClosedDecision) -> Optional[SkillType]:
        """Which single-decision skill an outcome warrants, if any."""
        if decision.outcome == "loss" and decision.pnl_percent < self.config.loss_skill_threshold_pct:
            return SkillType.WARNING
        if decision.outcome == "profit" and decision.pnl_percent > self.config.win_skill_threshold_pct:
            return SkillType.PATTERN
        return None

    async def process_outcome(self, decision: ClosedDecision) -> List[MergeOutcome]:
        """Create whatever skills a resolved decision warrants.

        Failures are logged and skipped; the next outcome or scheduled run
        picks up where this one left off.
        """
        outcomes: List[MergeOutcome] = []

        skill_type = self.skill_type_for(decision)
        if skill_type is not None:
            try:
                outcomes.append(await self.create_outcome_skill(decision, skill_type))
            except StorageError as e:
                logger.error(
                    "skill_creation_failed",
                    extra={"decision_id": decision.id, "skill_type": skill_type.value, "error": str(e)},
                )

        batch = self._strategy_batch(decision.domain)
        if batch:
            try:
                outcomes.append(await self.create_strategy_skill(decision.domain, batch))
            except StorageError as e:
                logger.error(
                    "strategy_creation_failed",
                    extra={"domain": decision.domain, "error": str(e)},
                )

        return outcomes

    def _strategy_batch(self, domain: str) -> List[ClosedDecision]:
        if self.decision_source is None:
            return []
        try:
            closed = self.decision_source.closed_decisions(domain)
        except Exception as e:
            logger.error("strategy_batch_read_failed", extra={"domain": domain, "error": str(e)})
            return []
        size = self.config.strategy_batch_size
        if len(closed) < size or len(closed) % size != 0:
            return []
        return closed[:size]

    async def _compose(self, kind: PromptKind, evidence: dict) -> str:
        try:
            return await call_with_timeout(
                self.synthesizer.compose(kind, evidence),
                timeout=self.config.synthesis_timeout_seconds,
                operation=kind.value,
            )
        except ExternalServiceError as e:
            logger.warning("skill_synthesis_fallback", extra={"kind": kind.value, "error": str(e)})
            return await self._templates.compose(kind, evidence)

    async def create_outcome_skill(self, decision: ClosedDecision, skill_type: SkillType) -> MergeOutcome:
        """Compose a warning or pattern skill from one decision and gate it."""
        kind = PromptKind.WARNING_SKILL if skill_type == SkillType.WARNING else PromptKind.PATTERN_SKILL
        evidence = {"decision": decision.to_evidence(), "pnl_percent": decision.pnl_percent}
        text = await self._compose(kind, evidence)

        default_title = f"{decision.domain} {skill_type.value}: {decision.action} {decision.target or ''}".strip()
        title, body = parse_skill_document(text, default_title)
        candidate = SkillRecord.new(
            domain=decision.domain,
            skill_type=skill_type,
            title=title,
            body=truncate(body, self.config.merge_max_chars),
            source_decision_ids=[decision.id],
            metadata={"pnl_percent": decision.pnl_percent},
        )
        outcome = await self.merger.create_with_merge_gate(candidate)
        logger.info(
            "skill_created_from_outcome",
            extra={
                "decision_id": decision.id,
                "domain": decision.domain,
                "skill_type": skill_type.value,
                "skill_id": outcome.skill.id,
                "merged": outcome.merged,
            },
        )
        return outcome

    async def create_strategy_skill(self, domain: str, decisions: List[ClosedDecision]) -> MergeOutcome:
        """Compose a strategy skill from a batch of closed decisions and gate it."""
        evidence = {"domain": domain, "decisions": [d.to_evidence() for d in decisions]}
        text = await self._compose(PromptKind.STRATEGY_SKILL, evidence)

        title, body = parse_skill_document(text, f"{domain.upper()} Trading Strategy")
        candidate = SkillRecord.new(
            domain=domain,
            skill_type=SkillType.STRATEGY,
            title=title,
            body=truncate(body, self.config.merge_max_chars),
            source_decision_ids=[d.id for d in decisions],
        )
        outcome = await self.merger.create_with_merge_gate(candidate)
        logger.info(
            "strategy_skill_created",
            extra={"domain": domain, "skill_id": outcome.skill.id, "merged": outcome.merged},
        )
        return outcome
