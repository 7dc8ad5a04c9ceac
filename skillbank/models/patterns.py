"""Cross-domain pattern models."""

from dataclasses import dataclass, field
from enum import Enum


class ThemeCategory(str, Enum):
    """Fixed taxonomy of reasoning themes."""
    TIMING = "timing"
    RISK = "risk"
    LIQUIDITY = "liquidity"
    SENTIMENT = "sentiment"
    TECHNICAL = "technical"


class Applicability(str, Enum):
    """Promotion tier by combined win rate."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_win_rate(cls, win_rate: float) -> "Applicability":
        if win_rate > 0.65:
            return cls.HIGH
        if win_rate > 0.55:
            return cls.MEDIUM
        return cls.LOW


@dataclass
class DomainThemeStats:
    """Per-domain evidence for one theme."""

    samples: int = 0
    wins: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.samples if self.samples else 0.0


@dataclass
class CrossDomainPattern:
    """A theme aggregated across domains. Not a skill until promoted."""

    theme_key: str
    category: ThemeCategory
    per_domain: dict = field(default_factory=dict)  # domain -> DomainThemeStats
    evidence: list = field(default_factory=list)
    matched_keywords: list = field(default_factory=list)

    @property
    def keyword(self) -> str:
        """Taxonomy keyword after the category separator."""
        return self.theme_key.partition(":")[2]

    @property
    def domains(self) -> list:
        """Domains with at least one sample, sorted."""
        return sorted(d for d, s in self.per_domain.items() if s.samples > 0)

    @property
    def sample_size(self) -> int:
        return sum(s.samples for s in self.per_domain.values())

    @property
    def wins(self) -> int:
        return sum(s.wins for s in self.per_domain.values())

    @property
    def win_rate(self) -> float:
        """Combined win rate across every domain."""
        return self.wins / self.sample_size if self.sample_size else 0.0

    @property
    def applicability(self) -> Applicability:
        return Applicability.from_win_rate(self.win_rate)

    def to_dict(self) -> dict:
        return {
            "theme_key": self.theme_key,
            "category": self.category.value,
            "domains": self.domains,
            "per_domain": {
                d: {"samples": s.samples, "wins": s.wins} for d, s in self.per_domain.items()
            },
            "win_rate": self.win_rate,
            "sample_size": self.sample_size,
            "applicability": self.applicability.value,
            "matched_keywords": list(self.matched_keywords),
        }
