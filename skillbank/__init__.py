"""Skill/memory lifecycle engine for an autonomous trading agent.

Turns closed trades into durable, reusable lessons (skills), tracks whether
those lessons actually help, consolidates near-duplicates, promotes patterns
that hold across markets, and judges decision quality before and after
execution.

Main components:
    - SkillLifecycleEngine: Facade the trading loop talks to
    - LearningConfig: Configuration from environment variables
    - SkillStore: Skill persistence with TTL and bucket versions
    - SkillMerger: Similarity gate and batch merge pass
    - SkillRecommender: Ranks skills for a decision's market context
    - CrossDomainSynthesizer: Promotes cross-domain themes to general skills
    - JudgeFeedbackLoop / InlineJudge: Post-hoc and pre-execution judging

Example usage:
    >>> from skillbank import SkillLifecycleEngine
    >>>
    >>> engine = SkillLifecycleEngine.from_env(decision_source=source)
    >>> skills = engine.retrieve_skills("perps", 20)
    >>> await engine.resolve_outcome(decision_id, "loss", -15.0)
"""

from .config import LearningConfig
from .engine import CycleReport, ResolutionResult, SkillLifecycleEngine
from .exceptions import (
    ExternalServiceError,
    SkillBankError,
    StorageError,
    ValidationError,
)
from .models import (
    ClosedDecision,
    DecisionSource,
    PendingDecision,
    SkillMarketContext,
    SkillRecord,
    SkillStatus,
    SkillType,
)
from .skills import SkillMerger, SkillRecommender, SkillStore
from .patterns import CrossDomainSynthesizer
from .judge import InlineJudge, JudgeFeedbackLoop

__all__ = [
    "LearningConfig",
    "SkillLifecycleEngine",
    "CycleReport",
    "ResolutionResult",
    "SkillBankError",
    "StorageError",
    "ExternalServiceError",
    "ValidationError",
    "ClosedDecision",
    "DecisionSource",
    "PendingDecision",
    "SkillMarketContext",
    "SkillRecord",
    "SkillStatus",
    "SkillType",
    "SkillStore",
    "SkillMerger",
    "SkillRecommender",
    "CrossDomainSynthesizer",
    "JudgeFeedbackLoop",
    "InlineJudge",
]

__version__ = "1.0.0"
