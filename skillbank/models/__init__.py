"""Data models for the skill lifecycle engine."""

from .decision import ClosedDecision, DecisionSource, InMemoryDecisionSource, PendingDecision
from .judge import (
    JUDGE_DIMENSIONS,
    CalibrationStats,
    DimensionScores,
    EvaluatorSpeed,
    InlineJudgeResult,
    InsightType,
    JudgeInsight,
    JudgeMode,
    JudgeSynthesis,
    SuggestedModifications,
)
from .patterns import Applicability, CrossDomainPattern, DomainThemeStats, ThemeCategory
from .recommendation import (
    MatchType,
    SkillMarketContext,
    SkillRecommendation,
    TradeOutcome,
    Trend,
    UsageDetection,
    Volatility,
)
from .skill import SKILL_TTL_DAYS, SkillRecord, SkillStatus, SkillType, slugify, utcnow

__all__ = [
    "ClosedDecision",
    "DecisionSource",
    "InMemoryDecisionSource",
    "PendingDecision",
    "JUDGE_DIMENSIONS",
    "CalibrationStats",
    "DimensionScores",
    "EvaluatorSpeed",
    "InlineJudgeResult",
    "InsightType",
    "JudgeInsight",
    "JudgeMode",
    "JudgeSynthesis",
    "SuggestedModifications",
    "Applicability",
    "CrossDomainPattern",
    "DomainThemeStats",
    "ThemeCategory",
    "MatchType",
    "SkillMarketContext",
    "SkillRecommendation",
    "Trend",
    "Volatility",
    "TradeOutcome",
    "UsageDetection",
    "SKILL_TTL_DAYS",
    "SkillRecord",
    "SkillStatus",
    "SkillType",
    "slugify",
    "utcnow",
]
