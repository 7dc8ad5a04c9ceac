"""Decision models consumed from the trading loop.

The trading loop owns decisions and outcomes; this package only reads them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol


@dataclass
class ClosedDecision:
    """A decision whose position has closed."""

    id: str
    domain: str
    reasoning: str
    action: str = "open"
    target: Optional[str] = None
    amount_usd: float = 0.0
    confidence: float = 0.0
    outcome: Optional[str] = None  # "profit" / "loss"
    realized_pnl: float = 0.0
    pnl_percent: float = 0.0
    closed_at: Optional[datetime] = None
    market_conditions: dict = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        """Whether decision closed in profit."""
        return self.outcome == "profit"

    def to_evidence(self, include_outcome: bool = True) -> dict:
        """Plain dict for synthesis prompts.

        The post-hoc judge gets ``include_outcome=False`` so it scores the
        decision rather than the result.
        """
        evidence = {
            "id": self.id,
            "domain": self.domain,
            "action": self.action,
            "target": self.target,
            "amount_usd": self.amount_usd,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "market_conditions": dict(self.market_conditions),
        }
        if include_outcome:
            evidence.update(
                outcome=self.outcome,
                realized_pnl=self.realized_pnl,
                pnl_percent=self.pnl_percent,
            )
        return evidence


@dataclass
class PendingDecision:
    """A decision about to be executed, reviewed by the inline judge.

    ``available_balance`` has no default: the position-size check needs a
    real balance, and a non-positive one blocks every non-hold trade.
    """

    domain: str
    action: str
    reasoning: str
    available_balance: float
    amount_usd: float = 0.0
    confidence: float = 0.0
    target: Optional[str] = None
    open_positions: int = 0
    recent_outcomes: list = field(default_factory=list)

    @property
    def is_hold(self) -> bool:
        """Whether decision is a hold (nothing to execute)."""
        return self.action.lower() == "hold"

    @property
    def position_fraction(self) -> Optional[float]:
        """Position size as a fraction of available balance."""
        if self.available_balance <= 0:
            return None
        return self.amount_usd / self.available_balance

    def to_evidence(self) -> dict:
        return {
            "domain": self.domain,
            "action": self.action,
            "target": self.target,
            "amount_usd": self.amount_usd,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


class DecisionSource(Protocol):
    """Read-only view of the trading loop's resolved decisions."""

    def closed_decisions(
        self, domain: str, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> list:
        """Closed decisions for ``domain``, most recent first."""
        ...

    def get_decision(self, decision_id: str) -> Optional[ClosedDecision]:
        """Look up a single closed decision."""
        ...


class InMemoryDecisionSource:
    """Decision source backed by a list. Used by tests and backfills."""

    def __init__(self, decisions: Optional[list] = None):
        self._decisions = list(decisions or [])

    def add(self, decision: ClosedDecision):
        self._decisions.append(decision)

    def closed_decisions(
        self, domain: str, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> list:
        rows = [
            d for d in self._decisions
            if d.domain == domain
            and d.outcome in ("profit", "loss")
            and (since is None or (d.closed_at is not None and d.closed_at >= since))
        ]
        rows.sort(key=lambda d: d.closed_at or datetime.min, reverse=True)
        return rows[:limit] if limit else rows

    def get_decision(self, decision_id: str) -> Optional[ClosedDecision]:
        for decision in self._decisions:
            if decision.id == decision_id:
                return decision
        return None
