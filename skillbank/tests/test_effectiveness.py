"""Tests for effectiveness scoring and prompt formatting."""

import math
from datetime import timedelta

import pytest

from skillbank.skills.effectiveness import EffectivenessPolicy, wilson_lower_bound
from skillbank.skills.formatting import effectiveness_badge, format_skills_for_prompt
from skillbank.tests.fakes import BASE_TIME


class TestWilsonLowerBound:
    """Test suite for wilson_lower_bound."""

    def test_known_value(self):
        assert round(wilson_lower_bound(8, 10), 3) == 0.541

    def test_no_data(self):
        assert wilson_lower_bound(0, 0) == 0.0

    def test_bound_below_rate(self):
        """Test the lower bound never exceeds the observed rate."""
        for successes, total in [(1, 1), (3, 5), (50, 100)]:
            assert wilson_lower_bound(successes, total) <= successes / total

    def test_more_samples_tighter_bound(self):
        assert wilson_lower_bound(80, 100) > wilson_lower_bound(8, 10)


class TestEffectivenessPolicy:
    """Test suite for EffectivenessPolicy."""

    @pytest.fixture
    def policy(self, config):
        return EffectivenessPolicy(config)

    @pytest.mark.parametrize("applied,successful,excluded", [
        (4, 0, False),   # below sample floor
        (5, 1, True),    # 20% < 30%
        (6, 1, True),
        (10, 3, False),  # exactly 30% is not below the floor
        (10, 5, False),
    ])
    def test_is_excluded(self, policy, applied, successful, excluded):
        assert policy.is_excluded(applied, successful) is excluded

    def test_policy_wilson_uses_config_z(self, policy):
        assert policy.wilson_lower_bound(8, 10) == wilson_lower_bound(8, 10, 1.645)

    def test_proven_effective(self, policy):
        """Test proven needs a high rate backed by a high Wilson bound."""
        assert policy.is_proven_effective(10, 8) is True
        assert policy.is_proven_effective(5, 3) is False
        assert policy.is_proven_effective(4, 4) is False

    def test_time_weighted_rate(self, policy):
        """Test recent outcomes weigh more than old ones."""
        now = BASE_TIME + timedelta(days=60)
        applications = [
            (now, True),
            (now - timedelta(days=30), False),
        ]

        rate = policy.time_weighted_success_rate(applications, now)

        expected = 1.0 / (1.0 + math.exp(-1.0))
        assert rate == pytest.approx(expected)

    def test_time_weighted_empty(self, policy):
        assert policy.time_weighted_success_rate([], BASE_TIME) is None

    def test_evaluate(self, policy, skill_factory):
        skill = skill_factory()
        skill.times_applied = 10
        skill.times_successful = 8

        stats = policy.evaluate(skill, applications=[(BASE_TIME, True)], times_presented=20, now=BASE_TIME)

        assert stats.success_rate == 0.8
        assert stats.proven_effective is True
        assert stats.application_rate == 0.5
        assert stats.time_weighted_success_rate == 1.0


class TestFormatting:
    """Test suite for prompt formatting."""

    def test_empty(self):
        text = format_skills_for_prompt([])
        assert "No skills yet" in text

    def test_sections_and_badges(self, config, skill_factory):
        """Test domain and general skills render in their own sections."""
        policy = EffectivenessPolicy(config)
        local = skill_factory(domain="perps", title="Funding flips")
        general = skill_factory(domain="general", title="Momentum principle")
        local.times_applied, local.times_successful = 10, 8

        text = format_skills_for_prompt(
            [local, general],
            {local.id: policy.evaluate(local)},
            include_preamble=False,
        )

        assert "## Loaded Skills" in text
        assert "## General Skills" in text
        assert "'warning-perps-funding-flips'" in text
        assert "80% effective over 10 uses, proven" in text
        assert "not yet evaluated" in text
        assert "Your Learning System" not in text

    def test_badge_without_stats(self):
        assert effectiveness_badge(None) == "not yet evaluated"
