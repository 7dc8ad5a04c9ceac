"""SQLAlchemy models for the skill lifecycle store.

Defines the four tables this package exclusively owns: skills, skill
recommendations, judge insights, and the per-bucket version counters used for
compare-and-swap during merges.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from ..models.judge import DimensionScores, InsightType, JudgeInsight, JudgeMode
from ..models.recommendation import MatchType, SkillRecommendation, TradeOutcome
from ..models.skill import SkillRecord, SkillStatus, SkillType

Base = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SkillRow(Base):
    """Skill record.

    Rows are never deleted. ``success_rate`` and ``excluded_from_retrieval``
    are recomputed in the same UPDATE that increments the counters.

    Example:
        >>> row = SkillRow.from_record(SkillRecord.new("dlmm", SkillType.WARNING, title, body))
        >>> session.add(row)
    """

    __tablename__ = "skills"

    id = Column(String(36), primary_key=True)
    domain = Column(String(32), nullable=False, index=True)
    skill_type = Column(String(16), nullable=False)
    bucket_type = Column(String(16), nullable=False)

    title = Column(Text, nullable=False)
    body = Column(Text, nullable=False)

    # Lifecycle
    created_at = Column(DateTime, nullable=False)
    ttl_days = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(16), nullable=False, default=SkillStatus.ACTIVE.value, index=True)

    # Provenance
    source_decision_ids = Column(JSONType, nullable=False, default=list)
    merged_from_skill_ids = Column(JSONType, nullable=False, default=list)
    merged_into_id = Column(String(36), nullable=True)
    theme_key = Column(String(64), nullable=True, index=True)

    # Effectiveness
    times_applied = Column(Integer, nullable=False, default=0)
    times_successful = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=True)
    excluded_from_retrieval = Column(Boolean, nullable=False, default=False)

    # "metadata" is reserved on declarative classes
    details = Column(JSONType, nullable=True)

    def __repr__(self):
        return (
            f"<SkillRow(id='{self.id}', domain='{self.domain}', "
            f"type='{self.skill_type}', status='{self.status}')>"
        )

    @classmethod
    def from_record(cls, record: SkillRecord) -> "SkillRow":
        return cls(
            id=record.id,
            domain=record.domain,
            skill_type=record.skill_type.value,
            bucket_type=record.bucket_type.value,
            title=record.title,
            body=record.body,
            created_at=record.created_at,
            ttl_days=record.ttl_days,
            expires_at=record.expires_at,
            status=record.status.value,
            source_decision_ids=list(record.source_decision_ids),
            merged_from_skill_ids=list(record.merged_from_skill_ids),
            merged_into_id=record.merged_into_id,
            theme_key=record.theme_key,
            times_applied=record.times_applied,
            times_successful=record.times_successful,
            success_rate=record.success_rate,
            excluded_from_retrieval=record.excluded_from_retrieval,
            details=dict(record.metadata),
        )

    def to_record(self) -> SkillRecord:
        return SkillRecord(
            id=self.id,
            domain=self.domain,
            skill_type=SkillType(self.skill_type),
            bucket_type=SkillType(self.bucket_type),
            title=self.title,
            body=self.body,
            created_at=self.created_at,
            ttl_days=self.ttl_days,
            expires_at=self.expires_at,
            status=SkillStatus(self.status),
            source_decision_ids=list(self.source_decision_ids or []),
            merged_from_skill_ids=list(self.merged_from_skill_ids or []),
            merged_into_id=self.merged_into_id,
            theme_key=self.theme_key,
            times_applied=self.times_applied or 0,
            times_successful=self.times_successful or 0,
            excluded_from_retrieval=bool(self.excluded_from_retrieval),
            metadata=dict(self.details or {}),
        )


class SkillRecommendationRow(Base):
    """One (decision, skill) offer. Updated exactly once when the decision resolves."""

    __tablename__ = "skill_recommendations"
    __table_args__ = (
        UniqueConstraint("decision_id", "skill_id", name="uq_recommendation_decision_skill"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    decision_id = Column(String(64), nullable=False, index=True)
    skill_id = Column(String(36), ForeignKey("skills.id"), nullable=False, index=True)

    relevance_score = Column(Float, nullable=False, default=0.0)
    was_presented = Column(Boolean, nullable=False, default=True)
    was_applied = Column(Boolean, nullable=False, default=False)
    match_type = Column(String(16), nullable=False, default=MatchType.NONE.value)
    detection_confidence = Column(Float, nullable=False, default=0.0)

    trade_outcome = Column(String(16), nullable=False, default=TradeOutcome.PENDING.value)
    contributed_to_success = Column(Boolean, nullable=True)

    created_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<SkillRecommendationRow(decision_id='{self.decision_id}', "
            f"skill_id='{self.skill_id}', outcome='{self.trade_outcome}')>"
        )

    def to_recommendation(self) -> SkillRecommendation:
        return SkillRecommendation(
            decision_id=self.decision_id,
            skill_id=self.skill_id,
            relevance_score=self.relevance_score,
            was_presented=bool(self.was_presented),
            was_applied=bool(self.was_applied),
            match_type=MatchType(self.match_type),
            detection_confidence=self.detection_confidence,
            trade_outcome=TradeOutcome(self.trade_outcome),
            contributed_to_success=self.contributed_to_success,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
        )


class JudgeInsightRow(Base):
    """Judge evaluation of one decision in one mode."""

    __tablename__ = "judge_insights"
    __table_args__ = (
        UniqueConstraint("decision_id", "mode", name="uq_judge_insight_decision_mode"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    decision_id = Column(String(64), nullable=False, index=True)
    domain = Column(String(32), nullable=False, index=True)
    mode = Column(String(16), nullable=False, default=JudgeMode.POST_HOC.value)
    action = Column(String(32), nullable=True)
    target = Column(Text, nullable=True)

    # Rubric
    timing = Column(Float, nullable=False)
    sizing = Column(Float, nullable=False)
    selection = Column(Float, nullable=False)
    risk_management = Column(Float, nullable=False)
    market_read = Column(Float, nullable=False)
    execution = Column(Float, nullable=False)
    quality_score = Column(Float, nullable=False)

    was_good_decision = Column(Boolean, nullable=False)
    key_insight = Column(Text, nullable=False)
    insight_type = Column(String(16), nullable=False, default=InsightType.NEUTRAL.value)
    strengths = Column(Text, nullable=True)
    weaknesses = Column(Text, nullable=True)
    better_approach = Column(Text, nullable=True)

    # Filled once the outcome is known
    actual_outcome = Column(String(16), nullable=True)
    actual_pnl_percent = Column(Float, nullable=True)
    judge_was_right = Column(Boolean, nullable=True)

    created_at = Column(DateTime, nullable=False, index=True)

    @classmethod
    def from_insight(cls, insight: JudgeInsight) -> "JudgeInsightRow":
        return cls(
            decision_id=insight.decision_id,
            domain=insight.domain,
            mode=insight.mode.value,
            action=insight.action,
            target=insight.target,
            quality_score=insight.quality_score,
            was_good_decision=insight.was_good_decision,
            key_insight=insight.key_insight,
            insight_type=insight.insight_type.value,
            strengths=insight.strengths,
            weaknesses=insight.weaknesses,
            better_approach=insight.better_approach,
            actual_outcome=insight.actual_outcome,
            actual_pnl_percent=insight.actual_pnl_percent,
            judge_was_right=insight.judge_was_right,
            created_at=insight.created_at,
            **insight.scores.to_dict(),
        )

    def to_insight(self) -> JudgeInsight:
        return JudgeInsight(
            decision_id=self.decision_id,
            domain=self.domain,
            scores=DimensionScores(
                timing=self.timing,
                sizing=self.sizing,
                selection=self.selection,
                risk_management=self.risk_management,
                market_read=self.market_read,
                execution=self.execution,
            ),
            quality_score=self.quality_score,
            was_good_decision=bool(self.was_good_decision),
            key_insight=self.key_insight,
            insight_type=InsightType(self.insight_type),
            mode=JudgeMode(self.mode),
            action=self.action,
            target=self.target,
            strengths=self.strengths,
            weaknesses=self.weaknesses,
            better_approach=self.better_approach,
            actual_outcome=self.actual_outcome,
            actual_pnl_percent=self.actual_pnl_percent,
            judge_was_right=self.judge_was_right,
            created_at=self.created_at,
        )


class SkillBucketRow(Base):
    """Version counter for one (domain, skill type) merge bucket."""

    __tablename__ = "skill_buckets"

    domain = Column(String(32), primary_key=True)
    skill_type = Column(String(16), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SkillBucketRow({self.domain}/{self.skill_type} v{self.version})>"
