"""Skill lifecycle engine.

Single entry point for the trading loop: retrieval and context-aware
recommendation for prompt injection, recommendation tracking at decision
time, the outcome fan-out when a position closes, the inline gate, and the
scheduled passes (expiry sweep, merge pass, cross-domain synthesis).

Nothing here raises into the decision loop for storage or LLM trouble: those
errors are logged and the agent carries on with staler or fewer skills.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from .config import LearningConfig
from .database.connection import configure_database, get_session_factory
from .exceptions import ExternalServiceError, InvalidConfigValueError, StorageError
from .judge import InlineJudge, JudgeFeedbackLoop
from .logging_config import DecisionContext, get_logger, setup_logging
from .models.decision import ClosedDecision, DecisionSource, PendingDecision
from .models.judge import InlineJudgeResult, JudgeInsight, JudgeSynthesis
from .models.recommendation import SkillMarketContext
from .models.skill import SkillRecord, utcnow
from .patterns import CrossDomainRunResult, CrossDomainSynthesizer
from .skills import (
    EffectivenessPolicy,
    MergeOutcome,
    MergePassResult,
    RecommendationSet,
    SkillCreator,
    SkillEffectiveness,
    SkillMerger,
    SkillRecommender,
    SkillStore,
    UsageTracker,
    format_skills_for_prompt,
)
from .skills.similarity import SimilarityFn, phrase_jaccard
from .skills.store import ResolvedRecommendation
from .skills.tracker import TrackingResult
from .synthesis import Synthesizer, build_synthesizer
from .validation import GENERAL_DOMAIN, validate_domain, validate_limit, validate_pnl_percent, validate_resolved_outcome

logger = get_logger(__name__)


@dataclass
class ResolutionResult:
    """Everything one ``resolve_outcome`` call did."""

    decision_id: str
    outcome: str
    pnl_percent: float
    recommendations: List[ResolvedRecommendation] = field(default_factory=list)
    judge_insight: Optional[JudgeInsight] = None
    created_skills: List[MergeOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class CycleReport:
    """What ``on_cycle`` ran."""

    cycle_number: int
    expired: int = 0
    merge_pass: Optional[MergePassResult] = None
    cross_domain: Optional[CrossDomainRunResult] = None
    judged: int = 0
    errors: List[str] = field(default_factory=list)


class SkillLifecycleEngine:
    """Skill/memory lifecycle for an autonomous trading agent.

    Example:
        >>> engine = SkillLifecycleEngine(session_factory, config, decision_source=source)
        >>> skills = engine.retrieve_skills("dlmm", 20)
        >>> await engine.resolve_outcome(decision_id, "loss", -15.0)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[LearningConfig] = None,
        synthesizer: Optional[Synthesizer] = None,
        decision_source: Optional[DecisionSource] = None,
        similarity: SimilarityFn = phrase_jaccard,
    ):
        self.config = config or LearningConfig()
        self.synthesizer = synthesizer or build_synthesizer(self.config)
        self.decision_source = decision_source

        self.store = SkillStore(session_factory, self.config)
        self.effectiveness = EffectivenessPolicy(self.config)
        self.tracker = UsageTracker(self.store, self.config)
        self.recommender = SkillRecommender(self.store, self.effectiveness, self.config)
        self.merger = SkillMerger(self.store, self.synthesizer, self.config, similarity)
        self.creator = SkillCreator(self.merger, self.synthesizer, self.config, decision_source)
        self.feedback = JudgeFeedbackLoop(session_factory, self.synthesizer, self.config)
        self.inline_judge = InlineJudge(self.synthesizer, self.config, self.feedback)
        self.cross_domain = (
            CrossDomainSynthesizer(self.merger, self.synthesizer, decision_source, self.config)
            if decision_source is not None
            else None
        )

    @classmethod
    def from_env(cls, decision_source: Optional[DecisionSource] = None) -> "SkillLifecycleEngine":
        """Build an engine from environment configuration.

        Raises:
            InvalidConfigValueError: If a policy threshold is out of range
        """
        config = LearningConfig.from_env()
        is_valid, error = config.validate_policy_parameters()
        if not is_valid:
            raise InvalidConfigValueError(error)

        setup_logging(level=config.log_level, use_json=config.log_json)
        configure_database(config.database_url)
        logger.info("skill_engine_configured", extra={"config": repr(config)})
        return cls(get_session_factory(), config, decision_source=decision_source)

    # ------------------------------------------------------------------
    # Decision-time read path
    # ------------------------------------------------------------------

    def retrieve_skills(self, domain: str, max_count: Optional[int] = None) -> List[SkillRecord]:
        """Active, non-excluded skills for a domain plus general skills.

        Skills with a success rate come first, highest rate first; the rest
        follow. Ties and unrated skills are ordered newest first.

        Args:
            domain: Operating domain
            max_count: Maximum skills to return

        Returns:
            Ordered skill records (empty on storage failure)
        """
        domain = validate_domain(domain, self.config.domains)
        max_count = validate_limit(max_count) or self.config.default_retrieval_count

        try:
            skills = self.store.list_active(domains={domain, GENERAL_DOMAIN})
        except StorageError as e:
            logger.error("skill_retrieval_failed", extra={"domain": domain, "error": str(e)})
            return []

        skills.sort(key=lambda s: s.created_at, reverse=True)
        skills.sort(key=lambda s: (s.success_rate is None, -(s.success_rate or 0.0)))
        return skills[:max_count]

    def recommend_skills(
        self,
        context: SkillMarketContext,
        max_count: Optional[int] = None,
        decision_id: Optional[str] = None,
    ) -> RecommendationSet:
        """Skills ranked for the market context a decision is made in.

        When ``decision_id`` is given, each recommended skill is recorded
        against it with its relevance score, ready for ``track_decision``.

        Args:
            context: Market context; its domain must be an operating domain
            max_count: Maximum skills to return (default ``max_recommended_skills``)
            decision_id: Decision the skills are offered to

        Returns:
            RecommendationSet (empty on storage failure)
        """
        domain = validate_domain(context.domain, self.config.domains, allow_general=False)
        context = replace(context, domain=domain)
        max_count = validate_limit(max_count) or self.config.max_recommended_skills

        try:
            result = self.recommender.recommend(context, max_count)
        except StorageError as e:
            logger.error("skill_recommendation_failed", extra={"domain": domain, "error": str(e)})
            return RecommendationSet(domain=domain)

        if decision_id is not None:
            for recommended in result.recommended:
                try:
                    self.record_recommendation(decision_id, recommended.skill.id, recommended.relevance_score)
                except StorageError as e:
                    logger.warning(
                        "recommendation_record_failed",
                        extra={"decision_id": decision_id, "skill_id": recommended.skill.id, "error": str(e)},
                    )
        return result

    def skill_effectiveness(self, skill: SkillRecord, now: Optional[datetime] = None) -> SkillEffectiveness:
        """Effectiveness snapshot including presented-vs-applied counts."""
        now = now or utcnow()
        stats = self.store.presentation_stats(skill.id)
        return self.effectiveness.evaluate(
            skill,
            applications=self.store.application_history(skill.id),
            times_presented=stats["presented"],
            now=now,
        )

    def build_learning_context(
        self,
        domain: str,
        max_count: Optional[int] = None,
        context: Optional[SkillMarketContext] = None,
    ) -> str:
        """Skills plus judge feedback, formatted for the decision prompt.

        With a market context the skills come from ``recommend_skills`` and
        carry their relevance; without one they come from ``retrieve_skills``.
        """
        relevance: Dict[str, float] = {}
        if context is not None:
            recommendations = self.recommend_skills(replace(context, domain=domain), max_count)
            skills = recommendations.skills
            relevance = recommendations.relevance_scores
        else:
            skills = self.retrieve_skills(domain, max_count)
        effectiveness: Dict[str, SkillEffectiveness] = {}
        try:
            for skill in skills:
                effectiveness[skill.id] = self.skill_effectiveness(skill)
        except StorageError as e:
            logger.warning("effectiveness_unavailable", extra={"domain": domain, "error": str(e)})

        sections = [format_skills_for_prompt(skills, effectiveness, relevance=relevance)]
        synthesis = self.get_judge_synthesis(domain)
        if synthesis is not None:
            sections.append(synthesis.full_text)
        return "\n---\n\n".join(sections)

    def record_recommendation(self, decision_id: str, skill_id: str, relevance_score: float):
        """Record that ``skill_id`` was offered to ``decision_id``."""
        return self.tracker.record_recommendation(decision_id, skill_id, relevance_score)

    def track_decision(
        self,
        decision_id: str,
        offered_skills: Iterable[SkillRecord],
        reasoning: str,
        relevance_scores: Optional[Dict[str, float]] = None,
    ) -> Optional[TrackingResult]:
        """Detect which offered skills the decision's reasoning actually used."""
        DecisionContext.set_decision_id(decision_id)
        try:
            return self.tracker.track_usage(decision_id, offered_skills, reasoning, relevance_scores)
        except StorageError as e:
            logger.error("skill_tracking_failed", extra={"decision_id": decision_id, "error": str(e)})
            return None
        finally:
            DecisionContext.clear()

    async def evaluate_inline(
        self, decision: PendingDecision, decision_id: Optional[str] = None
    ) -> InlineJudgeResult:
        """Pre-execution gate. Fails open on evaluator trouble."""
        return await self.inline_judge.evaluate(decision, decision_id=decision_id)

    def get_judge_synthesis(self, domain: str, limit: Optional[int] = None) -> Optional[JudgeSynthesis]:
        """Recent judge feedback for a domain, or None on storage failure."""
        domain = validate_domain(domain, self.config.domains, allow_general=False)
        try:
            return self.feedback.synthesize(domain, validate_limit(limit))
        except StorageError as e:
            logger.error("judge_synthesis_failed", extra={"domain": domain, "error": str(e)})
            return None

    # ------------------------------------------------------------------
    # Outcome fan-out
    # ------------------------------------------------------------------

    async def resolve_outcome(
        self,
        decision_id: str,
        outcome: str,
        pnl_percent: float,
        decision: Optional[ClosedDecision] = None,
    ) -> ResolutionResult:
        """Fan a closed position out to the tracker, the judge and skill creation.

        Call once per decision. Recommendation rows and counters update at most
        once even if called again.

        Args:
            decision_id: Closed decision
            outcome: "profit" or "loss"
            pnl_percent: Realized P&L percent (e.g. -15.0)
            decision: The closed decision; looked up from the decision source
                when omitted

        Returns:
            ResolutionResult
        """
        outcome = validate_resolved_outcome(outcome)
        pnl_percent = validate_pnl_percent(pnl_percent)
        result = ResolutionResult(decision_id=decision_id, outcome=outcome, pnl_percent=pnl_percent)

        DecisionContext.set_decision_id(decision_id)
        try:
            try:
                result.recommendations = self.tracker.resolve_outcome(decision_id, outcome)
            except StorageError as e:
                logger.error("outcome_tracking_failed", extra={"decision_id": decision_id, "error": str(e)})
                result.errors.append(f"tracker: {e}")

            if decision is None and self.decision_source is not None:
                try:
                    decision = self.decision_source.get_decision(decision_id)
                except Exception as e:
                    logger.error("decision_lookup_failed", extra={"decision_id": decision_id, "error": str(e)})
                    result.errors.append(f"decision lookup: {e}")
            if decision is None:
                logger.info("decision_details_unavailable", extra={"decision_id": decision_id})
                self._record_judge_outcome(decision_id, outcome, pnl_percent, result)
                return result
            decision = replace(decision, id=decision_id, outcome=outcome, pnl_percent=pnl_percent)

            try:
                result.judge_insight = await self.feedback.evaluate_decision(decision)
            except StorageError as e:
                logger.error("judge_evaluation_failed", extra={"decision_id": decision_id, "error": str(e)})
                result.errors.append(f"judge: {e}")
            self._record_judge_outcome(decision_id, outcome, pnl_percent, result)

            result.created_skills = await self.creator.process_outcome(decision)
        finally:
            DecisionContext.clear()

        logger.info(
            "outcome_resolved",
            extra={
                "decision_id": decision_id,
                "outcome": outcome,
                "pnl_percent": pnl_percent,
                "recommendations": len(result.recommendations),
                "skills_created": len(result.created_skills),
                "errors": len(result.errors),
            },
        )
        return result

    def _record_judge_outcome(self, decision_id: str, outcome: str, pnl_percent: float, result: ResolutionResult):
        # Validates any inline verdict stored for this decision too
        try:
            self.feedback.update_outcome(decision_id, outcome, pnl_percent)
        except StorageError as e:
            logger.error("judge_outcome_failed", extra={"decision_id": decision_id, "error": str(e)})
            result.errors.append(f"judge outcome: {e}")

    # ------------------------------------------------------------------
    # Scheduled entry points
    # ------------------------------------------------------------------

    def sweep_expired_skills(self, now: Optional[datetime] = None) -> List[SkillRecord]:
        """Expire skills past their TTL. Safe to repeat or skip."""
        try:
            return self.store.sweep_expired(now or utcnow())
        except StorageError as e:
            logger.error("expiry_sweep_failed", extra={"error": str(e)})
            return []

    async def run_merge_pass(self) -> MergePassResult:
        """Consolidate near-duplicate skills in every bucket. Safe to repeat or skip."""
        try:
            return await self.merger.run_merge_pass()
        except StorageError as e:
            logger.error("merge_pass_failed", extra={"error": str(e)})
            return MergePassResult(errors=[str(e)])

    async def run_cross_domain_synthesis(self) -> Optional[CrossDomainRunResult]:
        """Promote cross-domain themes to general skills. Safe to repeat or skip."""
        if self.cross_domain is None:
            logger.info("cross_domain_synthesis_unavailable", extra={"reason": "no decision source"})
            return None
        try:
            return await self.cross_domain.run()
        except StorageError as e:
            logger.error("cross_domain_synthesis_failed", extra={"error": str(e)})
            return CrossDomainRunResult(errors=[str(e)])

    async def run_judge_pass(self, errors: Optional[List[str]] = None) -> int:
        """Judge recent closed decisions that have no post-hoc insight yet.

        Picks up evaluations skipped earlier because the evaluator failed. A
        domain whose decisions cannot be read is logged and skipped; the
        other domains are still judged.

        Args:
            errors: Optional list that collects one message per failed domain read

        Returns:
            Number of new insights
        """
        if self.decision_source is None:
            return 0
        judged = 0
        for domain in self.config.domains:
            try:
                decisions = self.decision_source.closed_decisions(domain, limit=self.config.cross_domain_window)
            except Exception as e:
                logger.error("judge_pass_read_failed", extra={"domain": domain, "error": str(e)})
                if errors is not None:
                    errors.append(f"judge pass {domain}: {e}")
                continue
            for decision in decisions:
                try:
                    if self.feedback.get_insight(decision.id) is not None:
                        continue
                    if await self.feedback.evaluate_decision(decision) is not None:
                        judged += 1
                except StorageError as e:
                    logger.error(
                        "judge_pass_decision_failed",
                        extra={"decision_id": decision.id, "domain": domain, "error": str(e)},
                    )
        return judged

    async def on_cycle(self, cycle_number: int, now: Optional[datetime] = None) -> CycleReport:
        """Per-cycle housekeeping.

        Sweeps expiry and catches up judge evaluations every cycle; runs the
        merge pass and cross-domain synthesis on their configured intervals.
        """
        report = CycleReport(cycle_number=cycle_number)
        report.expired = len(self.sweep_expired_skills(now))

        try:
            report.judged = await self.run_judge_pass(errors=report.errors)
        except (StorageError, ExternalServiceError) as e:
            report.errors.append(f"judge pass: {e}")

        if cycle_number > 0 and cycle_number % self.config.merge_interval_cycles == 0:
            report.merge_pass = await self.run_merge_pass()
            report.errors.extend(report.merge_pass.errors)

        if cycle_number > 0 and cycle_number % self.config.cross_domain_interval_cycles == 0:
            report.cross_domain = await self.run_cross_domain_synthesis()
            if report.cross_domain is not None:
                report.errors.extend(report.cross_domain.errors)

        logger.info(
            "learning_cycle_completed",
            extra={
                "cycle": cycle_number,
                "expired": report.expired,
                "judged": report.judged,
                "merged": report.merge_pass.merges if report.merge_pass else 0,
                "promoted": len(report.cross_domain.promoted) if report.cross_domain else 0,
                "errors": len(report.errors),
            },
        )
        return report
