"""Judge evaluation models.

Both judge modes share one six-dimension rubric.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

JUDGE_DIMENSIONS = (
    "timing",
    "sizing",
    "selection",
    "risk_management",
    "market_read",
    "execution",
)


def clamp_unit(value: Any, default: float = 0.5) -> float:
    """Coerce to a float in [0, 1]; unparseable and NaN values become ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(0.0, min(1.0, number))


def judge_was_right(was_good_decision: bool, outcome: str) -> bool:
    """A good call that profited, or a poor call that lost."""
    return bool(was_good_decision) == (outcome == "profit")


class JudgeMode(str, Enum):
    """When the judge ran relative to execution."""
    POST_HOC = "post_hoc"
    INLINE = "inline"


class EvaluatorSpeed(str, Enum):
    """Inline evaluator tier."""
    FAST = "fast"
    THOROUGH = "thorough"


class InsightType(str, Enum):
    """What kind of lesson the judge's key insight is."""
    WARNING = "warning"
    PATTERN = "pattern"
    NEUTRAL = "neutral"


@dataclass
class DimensionScores:
    """Scores in [0, 1] for each rubric dimension."""

    timing: float = 0.5
    sizing: float = 0.5
    selection: float = 0.5
    risk_management: float = 0.5
    market_read: float = 0.5
    execution: float = 0.5

    @classmethod
    def from_mapping(cls, data: Optional[dict]) -> "DimensionScores":
        """Build from a parsed dict, clamping to [0, 1]; missing, unparseable and NaN scores become 0.5."""
        data = data or {}
        return cls(**{name: clamp_unit(data.get(name, 0.5)) for name in JUDGE_DIMENSIONS})

    @property
    def mean(self) -> float:
        """Unweighted mean across dimensions."""
        return sum(getattr(self, n) for n in JUDGE_DIMENSIONS) / len(JUDGE_DIMENSIONS)

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in JUDGE_DIMENSIONS}


@dataclass
class JudgeInsight:
    """Retrospective (or inline) evaluation of a decision."""

    decision_id: str
    domain: str
    scores: DimensionScores
    quality_score: float
    was_good_decision: bool
    key_insight: str
    insight_type: InsightType = InsightType.NEUTRAL
    mode: JudgeMode = JudgeMode.POST_HOC
    action: Optional[str] = None
    target: Optional[str] = None
    strengths: Optional[str] = None
    weaknesses: Optional[str] = None
    better_approach: Optional[str] = None
    actual_outcome: Optional[str] = None
    actual_pnl_percent: Optional[float] = None
    judge_was_right: Optional[bool] = None
    created_at: Optional[datetime] = None

    @property
    def is_validated(self) -> bool:
        """Whether the outcome is known and the prediction scored."""
        return self.judge_was_right is not None


@dataclass
class CalibrationStats:
    """How often the judge's good/bad call matched the realized outcome."""

    domain: str
    validated: int = 0
    correct: int = 0

    @property
    def accuracy(self) -> Optional[float]:
        """Fraction of validated predictions that were right."""
        if self.validated == 0:
            return None
        return self.correct / self.validated


@dataclass
class JudgeSynthesis:
    """Aggregated recent insights, ready for context injection."""

    domain: str
    recent_insights_count: int = 0
    key_themes: list = field(default_factory=list)
    warnings_to_heed: list = field(default_factory=list)
    patterns_to_follow: list = field(default_factory=list)
    calibration_notes: str = ""
    calibration: Optional[CalibrationStats] = None
    recent: list = field(default_factory=list)
    average_quality: Optional[float] = None

    @property
    def full_text(self) -> str:
        """Markdown block injected into the decision prompt."""
        if self.recent_insights_count == 0:
            return "*No recent judge feedback available.*"

        lines = [f"## Recent Judge Feedback ({self.domain.upper()})", ""]
        lines.append(f"*Based on {self.recent_insights_count} recent decision evaluations*")
        lines.append("")

        if self.key_themes:
            lines.append("### Key Insights from Recent Decisions")
            lines.append("")
            lines.extend(f"- {theme}" for theme in self.key_themes)
            lines.append("")

        if self.warnings_to_heed:
            lines.append("### Warnings to Heed")
            lines.append("")
            lines.append("*These patterns led to poor decisions recently:*")
            lines.append("")
            lines.extend(f"- {warning}" for warning in self.warnings_to_heed)
            lines.append("")

        if self.patterns_to_follow:
            lines.append("### Patterns That Worked")
            lines.append("")
            lines.append("*These approaches were validated as good decisions:*")
            lines.append("")
            lines.extend(f"- {pattern}" for pattern in self.patterns_to_follow)
            lines.append("")

        if self.recent:
            lines.append("### Most Recent Evaluations")
            lines.append("")
            for insight in self.recent[:3]:
                mark = "+" if insight.was_good_decision else "-"
                label = " ".join(p for p in (insight.action, insight.target) if p) or insight.decision_id
                lines.append(f"{mark} **{label}** ({insight.quality_score * 100:.0f}% quality)")
                lines.append(f"   Insight: {insight.key_insight}")
                if insight.better_approach:
                    lines.append(f"   Better: {insight.better_approach}")
            lines.append("")

        lines.append("### Decision Calibration")
        lines.append("")
        lines.append(self.calibration_notes)
        return "\n".join(lines) + "\n"


@dataclass
class SuggestedModifications:
    """Adjustments the inline judge proposes instead of blocking."""

    adjusted_confidence: Optional[float] = None
    adjusted_amount: Optional[float] = None
    additional_reasoning: Optional[str] = None


@dataclass
class InlineJudgeResult:
    """Pre-execution verdict."""

    should_proceed: bool
    quality_score: float
    scores: Optional[DimensionScores] = None
    warnings: list = field(default_factory=list)
    key_insight: Optional[str] = None
    modifications: Optional[SuggestedModifications] = None
    speed: EvaluatorSpeed = EvaluatorSpeed.FAST
    failed_open: bool = False
    block_reasons: list = field(default_factory=list)
    latency_ms: int = 0
