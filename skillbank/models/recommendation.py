"""Skill recommendation models.

A recommendation links one decision to one skill it was offered. The market
context describes the state a decision is made in, and drives relevance.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MatchType(str, Enum):
    """How a skill was detected in a decision's reasoning."""
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
    NONE = "none"


class TradeOutcome(str, Enum):
    """Realized outcome of a decision."""
    PROFIT = "profit"
    LOSS = "loss"
    PENDING = "pending"


@dataclass
class UsageDetection:
    """Result of scanning reasoning for one offered skill."""

    skill_id: str
    match_type: MatchType
    confidence: float
    matched_phrases: tuple = ()

    @property
    def was_applied(self) -> bool:
        """Whether the skill counts as used."""
        return self.match_type != MatchType.NONE


@dataclass
class SkillRecommendation:
    """Link between one decision and one skill it was offered."""

    decision_id: str
    skill_id: str
    relevance_score: float
    was_presented: bool = True
    was_applied: bool = False
    match_type: MatchType = MatchType.NONE
    detection_confidence: float = 0.0
    trade_outcome: TradeOutcome = TradeOutcome.PENDING
    contributed_to_success: Optional[bool] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        """Whether the decision outcome has been recorded."""
        return self.trade_outcome != TradeOutcome.PENDING


class Volatility(str, Enum):
    """Coarse volatility regime."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class Trend(str, Enum):
    """Coarse price trend."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass
class SkillMarketContext:
    """Market and portfolio state at decision time."""

    domain: str
    volatility: Volatility = Volatility.NORMAL
    trend: Trend = Trend.SIDEWAYS
    volume_24h: Optional[float] = None
    has_open_positions: bool = False
    position_count: int = 0
    recent_win_rate: Optional[float] = None
    recent_loss_count: int = 0

    def __post_init__(self):
        self.volatility = Volatility(self.volatility)
        self.trend = Trend(self.trend)
