"""Tests for cross-domain theme mining and promotion."""

import pytest

from skillbank.config import LearningConfig
from skillbank.models.patterns import Applicability, ThemeCategory
from skillbank.models.skill import SkillRecord, SkillType
from skillbank.patterns.cross_domain import (
    CrossDomainSynthesizer,
    extract_themes,
    find_cross_domain_patterns,
    normalize_theme_key,
    split_theme_key,
)
from skillbank.skills.merger import SkillMerger
from skillbank.synthesis import PromptKind


def _batch(decision_factory, domain, total, wins, reasoning):
    return [
        decision_factory(
            domain=domain,
            outcome="profit" if i < wins else "loss",
            pnl_percent=5.0 if i < wins else -5.0,
            reasoning=reasoning,
        )
        for i in range(total)
    ]


class TestExtractThemes:
    """Test suite for extract_themes."""

    def test_multiple_categories(self):
        assert extract_themes("Tight stop loss, RSI oversold") == [
            "timing:oversold",
            "risk:stop loss",
            "technical:rsi",
        ]

    def test_substring_matches_inflections(self):
        """Test "trending" tags trend and "leveraged" tags leverage."""
        assert extract_themes("Trending higher on leveraged longs") == ["timing:trend", "risk:leverage"]

    def test_one_theme_per_keyword(self):
        assert extract_themes("Breakout after consolidation") == ["timing:breakout", "timing:consolidation"]

    def test_overlapping_keywords(self):
        """Test "volume spike" also counts as plain volume."""
        assert extract_themes("Volume spike into resistance") == [
            "timing:volume spike",
            "liquidity:volume",
            "technical:resistance",
        ]

    def test_empty_reasoning(self):
        assert extract_themes("") == []


class TestThemeKeys:
    """Test suite for theme key helpers."""

    def test_normalize_keeps_category_separator(self):
        assert normalize_theme_key(" Risk:Stop Loss ") == "risk:stop_loss"
        assert normalize_theme_key("risk:risk/reward") == "risk:risk_reward"

    def test_split(self):
        assert split_theme_key("liquidity:market cap") == (ThemeCategory.LIQUIDITY, "market cap")


class TestFindPatterns:
    """Test suite for find_cross_domain_patterns."""

    def test_aggregates_per_domain(self, decision_factory):
        """Test combined win rate over perps 5/8 and spot 2/4."""
        decisions = {
            "perps": _batch(decision_factory, "perps", 8, 5, "Strong momentum into the close"),
            "spot": _batch(decision_factory, "spot", 4, 2, "Riding momentum after the open"),
        }

        patterns = find_cross_domain_patterns(decisions)

        timing = next(p for p in patterns if p.theme_key == "timing:momentum")
        assert timing.category == ThemeCategory.TIMING
        assert timing.keyword == "momentum"
        assert timing.domains == ["perps", "spot"]
        assert timing.sample_size == 12
        assert timing.wins == 7
        assert timing.win_rate == pytest.approx(7 / 12)
        assert timing.applicability == Applicability.MEDIUM
        assert len(timing.evidence) == 5

    def test_unresolved_decisions_ignored(self, decision_factory):
        decisions = {"perps": [decision_factory(domain="perps", outcome=None, reasoning="momentum")]}
        assert find_cross_domain_patterns(decisions) == []


class TestCrossDomainSynthesizer:
    """Test suite for CrossDomainSynthesizer."""

    @pytest.fixture
    def cross_domain(self, store, synthesizer, decision_source, config):
        merger = SkillMerger(store, synthesizer, config)
        return CrossDomainSynthesizer(merger, synthesizer, decision_source, config)

    def _load(self, decision_source, decisions):
        for decision in decisions:
            decision_source.add(decision)

    @pytest.mark.asyncio
    async def test_single_domain_not_promoted(self, cross_domain, decision_source, decision_factory, store):
        """Test a theme winning only in perps stays domain-local."""
        self._load(decision_source, _batch(decision_factory, "perps", 12, 8, "Strong momentum"))

        result = await cross_domain.run()

        assert result.promoted == []
        assert store.list_active(domain="general") == []

    @pytest.mark.asyncio
    async def test_two_domains_promoted(self, cross_domain, decision_source, decision_factory, store):
        """Test perps 5/8 plus spot 2/4 promotes a general timing skill."""
        self._load(decision_source, _batch(decision_factory, "perps", 8, 5, "Strong momentum into the close"))
        self._load(decision_source, _batch(decision_factory, "spot", 4, 2, "Riding momentum after the open"))

        result = await cross_domain.run()

        assert [s.theme_key for s in result.promoted] == ["timing:momentum"]
        general = store.list_active(domain="general")
        assert len(general) == 1
        skill = general[0]
        assert skill.skill_type == SkillType.PATTERN
        assert skill.theme_key == "timing:momentum"
        assert skill.metadata["applicability"] == "medium"
        assert skill.metadata["sample_size"] == 12
        assert 0 < len(skill.source_decision_ids) <= 5

    @pytest.mark.asyncio
    async def test_win_rate_must_exceed_threshold(self, cross_domain, decision_source, decision_factory):
        """Test exactly 55% is not enough."""
        self._load(decision_source, _batch(decision_factory, "perps", 10, 6, "momentum"))
        self._load(decision_source, _batch(decision_factory, "spot", 10, 5, "momentum"))

        result = await cross_domain.run()

        assert result.eligible == []

    @pytest.mark.asyncio
    async def test_existing_theme_not_repromoted(self, cross_domain, decision_source, decision_factory, store):
        """Test a collision with an existing general skill is skipped."""
        store.create(SkillRecord.new(
            domain="general",
            skill_type=SkillType.PATTERN,
            title="Existing timing principle",
            body="- **Existing general timing lesson**",
            theme_key="timing:momentum",
        ))
        self._load(decision_source, _batch(decision_factory, "perps", 8, 5, "Strong momentum"))
        self._load(decision_source, _batch(decision_factory, "spot", 4, 2, "Riding momentum"))

        result = await cross_domain.run()

        assert result.promoted == []
        assert result.skipped_collisions == ["timing:momentum"]
        assert len(store.list_active(domain="general")) == 1

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, cross_domain, decision_source, decision_factory, store):
        self._load(decision_source, _batch(decision_factory, "perps", 8, 5, "Strong momentum"))
        self._load(decision_source, _batch(decision_factory, "spot", 4, 2, "Riding momentum"))

        await cross_domain.run()
        second = await cross_domain.run()

        assert second.promoted == []
        assert len(store.list_active(domain="general")) == 1

    @pytest.mark.asyncio
    async def test_promotion_cap(self, store, synthesizer, decision_source, decision_factory):
        """Test no more than max_promotions_per_run themes are promoted per run."""
        config = LearningConfig(max_promotions_per_run=2)
        merger = SkillMerger(store, synthesizer, config)
        cross_domain = CrossDomainSynthesizer(merger, synthesizer, decision_source, config)
        for reasoning in ("Strong momentum", "Tight stop loss", "RSI divergence"):
            self._load(decision_source, _batch(decision_factory, "perps", 6, 4, reasoning))
            self._load(decision_source, _batch(decision_factory, "spot", 6, 4, reasoning))

        result = await cross_domain.run()

        assert len(result.eligible) == 2
        assert len(result.promoted) == 2
        assert len(store.list_active(domain="general")) == 2

    @pytest.mark.asyncio
    async def test_synthesis_failure_aborts_promotion(
        self, cross_domain, synthesizer, decision_source, decision_factory, store
    ):
        """Test there is no degraded promotion when synthesis fails."""
        synthesizer.fail(PromptKind.GENERAL_SKILL)
        self._load(decision_source, _batch(decision_factory, "perps", 8, 5, "Strong momentum"))
        self._load(decision_source, _batch(decision_factory, "spot", 4, 2, "Riding momentum"))

        result = await cross_domain.run()

        assert result.promoted == []
        assert len(result.errors) == 1
        assert store.list_active(domain="general") == []
