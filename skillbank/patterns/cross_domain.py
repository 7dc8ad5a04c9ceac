"""Cross-domain pattern synthesis.

Tags recent resolved decisions in every domain with themes from a fixed
keyword taxonomy, aggregates wins per theme across domains, and promotes
themes that win in several domains to "general" skills.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config import LearningConfig
from ..exceptions import ExternalServiceError, StorageError
from ..logging_config import get_logger
from ..models.decision import ClosedDecision, DecisionSource
from ..models.patterns import CrossDomainPattern, DomainThemeStats, ThemeCategory
from ..models.skill import SkillRecord, SkillType
from ..skills.merger import SkillMerger
from ..synthesis import PromptKind, Synthesizer, parse_skill_document, truncate
from ..utils.timeout import call_with_timeout
from ..validation import GENERAL_DOMAIN

logger = get_logger(__name__)

# Bump when keyword lists change so stored promotions can be traced to a table
TAXONOMY_VERSION = 2

THEME_TAXONOMY: Dict[ThemeCategory, tuple] = {
    ThemeCategory.TIMING: (
        "momentum", "trend", "reversal", "breakout", "consolidation",
        "oversold", "overbought", "volume spike", "low volume",
    ),
    ThemeCategory.RISK: (
        "stop loss", "position size", "leverage", "exposure", "drawdown",
        "risk/reward", "diversification", "correlation",
    ),
    ThemeCategory.LIQUIDITY: (
        "liquidity", "slippage", "spread", "depth", "tvl",
        "volume", "market cap",
    ),
    ThemeCategory.SENTIMENT: (
        "fear", "greed", "fomo", "panic", "euphoria",
        "sentiment", "macro", "news", "catalyst",
    ),
    ThemeCategory.TECHNICAL: (
        "support", "resistance", "rsi", "macd", "ema", "sma",
        "fibonacci", "chart pattern", "indicator",
    ),
}

MAX_EVIDENCE_EXAMPLES = 5


def theme_key_for(category: ThemeCategory, keyword: str) -> str:
    """Theme key for one taxonomy keyword, e.g. ``timing:momentum``."""
    return f"{category.value}:{keyword}"


def split_theme_key(theme_key: str) -> tuple:
    """(ThemeCategory, keyword) for a ``category:keyword`` theme key."""
    category, _, keyword = theme_key.partition(":")
    return ThemeCategory(category), keyword


def normalize_theme_key(key: str) -> str:
    """Canonical form of a theme key for collision checks.

    The category separator survives; runs of anything else that is not a
    letter or digit become one underscore.
    """
    parts = key.strip().lower().split(":", 1)
    return ":".join(re.sub(r"[^a-z0-9]+", "_", part).strip("_") for part in parts)


def extract_themes(reasoning: str) -> List[str]:
    """Tag reasoning with taxonomy themes.

    A keyword hits when it occurs anywhere in the lowercased reasoning, so
    "trend" also tags "trending" and "leverage" tags "leveraged".

    Returns:
        ``category:keyword`` theme keys, in taxonomy order

    Example:
        >>> extract_themes("Tight stop loss, RSI oversold")
        ['timing:oversold', 'risk:stop loss', 'technical:rsi']
    """
    text = (reasoning or "").lower()
    themes: List[str] = []
    for category, keywords in THEME_TAXONOMY.items():
        for keyword in keywords:
            if keyword in text:
                theme_key = theme_key_for(category, keyword)
                if theme_key not in themes:
                    themes.append(theme_key)
    return themes


def find_cross_domain_patterns(decisions_by_domain: Dict[str, Iterable[ClosedDecision]]) -> List[CrossDomainPattern]:
    """Aggregate theme evidence per domain.

    Only resolved decisions (profit or loss) count as samples.

    Returns:
        One pattern per theme seen anywhere, strongest combined win rate first
    """
    patterns: Dict[str, CrossDomainPattern] = {}

    for domain, decisions in decisions_by_domain.items():
        for decision in decisions:
            if decision.outcome not in ("profit", "loss"):
                continue
            for theme_key in extract_themes(decision.reasoning):
                pattern = patterns.get(theme_key)
                if pattern is None:
                    category, keyword = split_theme_key(theme_key)
                    pattern = CrossDomainPattern(
                        theme_key=theme_key, category=category, matched_keywords=[keyword]
                    )
                    patterns[theme_key] = pattern
                stats = pattern.per_domain.setdefault(domain, DomainThemeStats())
                stats.samples += 1
                if decision.is_win:
                    stats.wins += 1
                if decision.is_win and len(pattern.evidence) < MAX_EVIDENCE_EXAMPLES:
                    pattern.evidence.append(
                        {"decision_id": decision.id, "domain": domain, "reasoning": decision.reasoning[:500]}
                    )

    return sorted(patterns.values(), key=lambda p: (-p.win_rate, -p.sample_size, p.theme_key))


@dataclass
class CrossDomainRunResult:
    """Summary of one synthesis run."""

    patterns: List[CrossDomainPattern] = field(default_factory=list)
    eligible: List[str] = field(default_factory=list)
    promoted: List[SkillRecord] = field(default_factory=list)
    skipped_collisions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class CrossDomainSynthesizer:
    """Promotes themes that win across domains to general skills."""

    def __init__(
        self,
        merger: SkillMerger,
        synthesizer: Synthesizer,
        decision_source: DecisionSource,
        config: Optional[LearningConfig] = None,
    ):
        self.merger = merger
        self.store = merger.store
        self.synthesizer = synthesizer
        self.decision_source = decision_source
        self.config = config or merger.config

    def is_eligible(self, pattern: CrossDomainPattern) -> bool:
        """Evidence in enough domains, a winning combined rate, and enough samples."""
        return (
            len(pattern.domains) >= self.config.cross_domain_min_domains
            and pattern.win_rate > self.config.cross_domain_min_win_rate
            and pattern.sample_size >= self.config.cross_domain_min_samples
        )

    def _collect(self, result: CrossDomainRunResult) -> Dict[str, List[ClosedDecision]]:
        collected = {}
        for domain in self.config.domains:
            try:
                collected[domain] = self.decision_source.closed_decisions(
                    domain, limit=self.config.cross_domain_window
                )
            except Exception as e:
                logger.error("cross_domain_read_failed", extra={"domain": domain, "error": str(e)})
                result.errors.append(f"{domain}: {e}")
        return collected

    def _existing_theme_keys(self) -> set:
        keys = set()
        for skill in self.store.list_active(domain=GENERAL_DOMAIN, include_excluded=True):
            if skill.theme_key:
                keys.add(normalize_theme_key(skill.theme_key))
            for key in skill.metadata.get("theme_keys", []):
                keys.add(normalize_theme_key(key))
        return keys

    async def run(self) -> CrossDomainRunResult:
        """Mine recent decisions and promote up to ``max_promotions_per_run`` themes."""
        result = CrossDomainRunResult()
        result.patterns = find_cross_domain_patterns(self._collect(result))
        existing = self._existing_theme_keys()

        for pattern in result.patterns:
            if len(result.promoted) >= self.config.max_promotions_per_run:
                break
            if not self.is_eligible(pattern):
                continue
            result.eligible.append(pattern.theme_key)

            key = normalize_theme_key(pattern.theme_key)
            if key in existing:
                result.skipped_collisions.append(pattern.theme_key)
                continue

            try:
                skill = await self.promote(pattern)
            except (ExternalServiceError, StorageError) as e:
                logger.warning(
                    "cross_domain_promotion_skipped",
                    extra={"theme_key": pattern.theme_key, "error": str(e)},
                )
                result.errors.append(f"{pattern.theme_key}: {e}")
                continue

            existing.add(key)
            result.promoted.append(skill)

        logger.info(
            "cross_domain_synthesis_completed",
            extra={
                "patterns": len(result.patterns),
                "eligible": len(result.eligible),
                "promoted": len(result.promoted),
                "collisions": len(result.skipped_collisions),
            },
        )
        return result

    async def promote(self, pattern: CrossDomainPattern) -> SkillRecord:
        """Synthesize and store a general skill for a pattern.

        There is no degraded text for a promotion: any synthesis failure
        aborts it until the next run.

        Raises:
            TransientExternalError: Synthesis timed out or was rate limited
            MalformedResponseError: Synthesis output unusable
        """
        evidence = {
            "theme_key": pattern.theme_key,
            "category": pattern.category.value,
            "keyword": pattern.keyword,
            "win_rate": pattern.win_rate,
            "sample_size": pattern.sample_size,
            "applicability": pattern.applicability.value,
            "per_domain": {d: {"samples": s.samples, "wins": s.wins} for d, s in pattern.per_domain.items()},
            "examples": pattern.evidence,
        }
        text = await call_with_timeout(
            self.synthesizer.compose(PromptKind.GENERAL_SKILL, evidence),
            timeout=self.config.synthesis_timeout_seconds,
            operation="general_skill",
        )
        title, body = parse_skill_document(text, f"General {pattern.category.value}: {pattern.keyword} principle")

        candidate = SkillRecord.new(
            domain=GENERAL_DOMAIN,
            skill_type=SkillType.PATTERN,
            title=title,
            body=truncate(body, self.config.merge_max_chars),
            source_decision_ids=[e["decision_id"] for e in pattern.evidence],
            theme_key=normalize_theme_key(pattern.theme_key),
            metadata={
                "applicability": pattern.applicability.value,
                "taxonomy_version": TAXONOMY_VERSION,
                "theme_keys": [normalize_theme_key(pattern.theme_key)],
                **pattern.to_dict(),
                "evidence": pattern.evidence,
            },
        )
        outcome = await self.merger.create_with_merge_gate(candidate)
        logger.info(
            "general_skill_promoted",
            extra={
                "theme_key": pattern.theme_key,
                "skill_id": outcome.skill.id,
                "domains": pattern.domains,
                "win_rate": round(pattern.win_rate, 4),
                "sample_size": pattern.sample_size,
                "merged": outcome.merged,
            },
        )
        return outcome.skill
