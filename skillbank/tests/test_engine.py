"""End-to-end tests for SkillLifecycleEngine."""

from datetime import timedelta

import pytest

from skillbank.database import check_connection, get_engine, init_db
from skillbank.engine import SkillLifecycleEngine
from skillbank.exceptions import InvalidConfigValueError, StorageError, ValidationError
from skillbank.models.skill import SkillStatus, SkillType
from skillbank.synthesis import PromptKind
from skillbank.tests.fakes import BASE_TIME, UnreadableDomainSource, judge_payload

LIQUIDITY_BODY = (
    "- **Thin liquidity pools** are dangerous\n"
    "- **Wide bid ask spreads** hurt fills\n"
    "- **Sudden volume collapse** precedes rugs"
)


@pytest.fixture
def engine(session_factory, config, synthesizer, decision_source):
    return SkillLifecycleEngine(session_factory, config, synthesizer, decision_source)


class TestOutcomeFanOut:
    """Test suite for resolve_outcome."""

    @pytest.mark.asyncio
    async def test_big_loss_creates_warning_that_expires(self, engine, decision_source, decision_factory):
        """Test a -15% dlmm loss becomes a 60-day warning, gone after 61 days."""
        decision = decision_factory(domain="dlmm", outcome="loss", pnl_percent=-15.0,
                                    reasoning="Aped into a thin pool")
        decision_source.add(decision)

        result = await engine.resolve_outcome(decision.id, "loss", -15.0)

        assert result.errors == []
        assert len(result.created_skills) == 1
        warning = result.created_skills[0].skill
        assert warning.skill_type == SkillType.WARNING
        assert warning.ttl_days == 60
        assert warning.source_decision_ids == [decision.id]
        assert [s.id for s in engine.retrieve_skills("dlmm")] == [warning.id]

        expired = engine.sweep_expired_skills(warning.created_at + timedelta(days=61))

        assert [s.id for s in expired] == [warning.id]
        assert engine.retrieve_skills("dlmm") == []
        assert engine.store.get(warning.id).status == SkillStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_big_win_creates_pattern(self, engine, decision_source, decision_factory):
        decision = decision_factory(domain="perps", outcome="profit", pnl_percent=25.0)
        decision_source.add(decision)

        result = await engine.resolve_outcome(decision.id, "profit", 25.0)

        assert [o.skill.skill_type for o in result.created_skills] == [SkillType.PATTERN]
        assert result.created_skills[0].skill.ttl_days == 90

    @pytest.mark.asyncio
    async def test_small_moves_create_nothing(self, engine, decision_source, decision_factory):
        for pnl, outcome in ((-5.0, "loss"), (15.0, "profit")):
            decision = decision_factory(outcome=outcome, pnl_percent=pnl)
            decision_source.add(decision)
            result = await engine.resolve_outcome(decision.id, outcome, pnl)
            assert result.created_skills == []

        assert engine.store.count() == 0

    @pytest.mark.asyncio
    async def test_strategy_every_batch(self, engine, decision_source, decision_factory):
        """Test the tenth closed decision in a domain produces a strategy skill."""
        decisions = [decision_factory(domain="spot", pnl_percent=2.0) for _ in range(10)]
        for decision in decisions:
            decision_source.add(decision)

        result = await engine.resolve_outcome(decisions[-1].id, "profit", 2.0)

        assert [o.skill.skill_type for o in result.created_skills] == [SkillType.STRATEGY]
        strategy = result.created_skills[0].skill
        assert strategy.ttl_days == 180
        assert set(strategy.source_decision_ids) == {d.id for d in decisions}

    @pytest.mark.asyncio
    async def test_repeated_losses_merge(self, engine, decision_source, decision_factory):
        """Test two identical big losses end up as one evolved warning."""
        for _ in range(2):
            decision = decision_factory(domain="dlmm", outcome="loss", pnl_percent=-15.0,
                                        reasoning="Aped into a thin pool")
            decision_source.add(decision)
            await engine.resolve_outcome(decision.id, "loss", -15.0)

        active = engine.store.list_active(domain="dlmm")

        assert len(active) == 1
        assert active[0].skill_type == SkillType.EVOLVED
        assert active[0].bucket_type == SkillType.WARNING
        assert len(active[0].merged_from_skill_ids) == 1

    @pytest.mark.asyncio
    async def test_tracked_skill_counted_once(self, engine, decision_source, decision_factory, skill_factory):
        """Test resolving a decision twice moves the skill counters once."""
        skill = engine.store.create(skill_factory(title="Liquidity traps", body=LIQUIDITY_BODY))
        decision = decision_factory(reasoning="Applying liquidity traps, small size only")
        decision_source.add(decision)

        engine.record_recommendation(decision.id, skill.id, 0.9)
        tracking = engine.track_decision(decision.id, [skill], decision.reasoning)
        await engine.resolve_outcome(decision.id, "profit", 5.0)
        await engine.resolve_outcome(decision.id, "profit", 5.0)

        assert tracking.applied_skill_ids == [skill.id]
        loaded = engine.store.get(skill.id)
        assert (loaded.times_applied, loaded.times_successful) == (1, 1)

    @pytest.mark.asyncio
    async def test_judge_runs_on_resolution(self, engine, synthesizer, decision_source, decision_factory):
        synthesizer.respond_json(PromptKind.JUDGE_POST_HOC, judge_payload(0.3, False))
        decision = decision_factory(outcome="loss", pnl_percent=-4.0)
        decision_source.add(decision)

        result = await engine.resolve_outcome(decision.id, "loss", -4.0)

        assert result.judge_insight is not None
        assert result.judge_insight.judge_was_right is True

    @pytest.mark.asyncio
    async def test_unknown_decision_still_resolves_tracking(self, engine, skill_factory):
        """Test a decision missing from the source only updates recommendations."""
        skill = engine.store.create(skill_factory(title="Liquidity traps", body=LIQUIDITY_BODY))
        engine.track_decision("ghost", [skill], "Per liquidity traps")

        result = await engine.resolve_outcome("ghost", "loss", -30.0)

        assert len(result.recommendations) == 1
        assert result.created_skills == []
        assert engine.store.get(skill.id).times_applied == 1

    @pytest.mark.asyncio
    async def test_rejects_pending_outcome(self, engine):
        with pytest.raises(ValidationError):
            await engine.resolve_outcome("d-1", "pending", 0.0)


class TestRetrieval:
    """Test suite for retrieve_skills."""

    def test_order_rate_then_recency(self, engine, skill_factory):
        """Test rated skills lead by rate, unrated follow newest first."""
        store = engine.store
        half = store.create(skill_factory(domain="dlmm"))
        best = store.create(skill_factory(domain="dlmm"))
        old_unrated = store.create(skill_factory(domain="dlmm"))
        general = store.create(skill_factory(domain="general", skill_type=SkillType.PATTERN))
        store.create(skill_factory(domain="perps"))
        store.apply_outcome(best.id, True)
        store.apply_outcome(half.id, True)
        store.apply_outcome(half.id, False)

        skills = engine.retrieve_skills("dlmm")

        assert [s.id for s in skills] == [best.id, half.id, general.id, old_unrated.id]

    def test_max_count(self, engine, skill_factory):
        for _ in range(5):
            engine.store.create(skill_factory(domain="dlmm"))

        assert len(engine.retrieve_skills("dlmm", 3)) == 3

    def test_excluded_skills_hidden(self, engine, skill_factory):
        skill = engine.store.create(skill_factory(domain="dlmm"))
        for _ in range(5):
            engine.store.apply_outcome(skill.id, False)

        assert engine.retrieve_skills("dlmm") == []

    def test_unknown_domain(self, engine):
        with pytest.raises(ValidationError):
            engine.retrieve_skills("forex")

    def test_storage_failure_returns_empty(self, engine, monkeypatch):
        def broken(**kwargs):
            raise StorageError("database unavailable")

        monkeypatch.setattr(engine.store, "list_active", broken)

        assert engine.retrieve_skills("dlmm") == []

    def test_learning_context(self, engine, skill_factory):
        skill = engine.store.create(skill_factory(domain="perps", title="Funding flips"))

        context = engine.build_learning_context("perps")

        assert f"'{skill.name}'" in context
        assert "*No recent judge feedback available.*" in context


class TestScheduledPasses:
    """Test suite for on_cycle and the scheduled entry points."""

    @pytest.mark.asyncio
    async def test_off_interval_cycle_only_sweeps(self, engine, synthesizer):
        report = await engine.on_cycle(3, now=BASE_TIME)

        assert report.merge_pass is None
        assert report.cross_domain is None
        assert PromptKind.MERGE not in synthesizer.kinds()

    @pytest.mark.asyncio
    async def test_interval_cycle_runs_everything(self, engine, decision_source, decision_factory, skill_factory):
        for _ in range(2):
            engine.store.create(skill_factory(domain="dlmm", body=LIQUIDITY_BODY))
        for domain, total, wins in (("perps", 8, 5), ("spot", 4, 2)):
            for i in range(total):
                decision_source.add(decision_factory(
                    domain=domain,
                    outcome="profit" if i < wins else "loss",
                    reasoning="Strong momentum",
                ))

        report = await engine.on_cycle(10, now=BASE_TIME + timedelta(days=1))

        assert report.merge_pass.merges == 1
        assert [s.theme_key for s in report.cross_domain.promoted] == ["timing:momentum"]
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_expiry_in_cycle(self, engine, skill_factory):
        skill = engine.store.create(skill_factory(domain="dlmm"))

        report = await engine.on_cycle(1, now=skill.expires_at + timedelta(days=1))

        assert report.expired == 1

    @pytest.mark.asyncio
    async def test_judge_pass_catches_up(self, engine, synthesizer, decision_source, decision_factory):
        """Test closed decisions without insights are judged once."""
        synthesizer.respond_json(PromptKind.JUDGE_POST_HOC, judge_payload())
        for _ in range(2):
            decision_source.add(decision_factory(domain="perps"))

        assert await engine.run_judge_pass() == 2
        assert await engine.run_judge_pass() == 0

    @pytest.mark.asyncio
    async def test_cross_domain_needs_source(self, session_factory, config, synthesizer):
        engine = SkillLifecycleEngine(session_factory, config, synthesizer)
        assert await engine.run_cross_domain_synthesis() is None

    @pytest.mark.asyncio
    async def test_inline_gate(self, engine, pending_factory):
        """Test the engine's inline gate fails open with template synthesis."""
        result = await engine.evaluate_inline(pending_factory())

        assert result.should_proceed is True
        assert result.failed_open is True

class TestUnreadableDecisionHistory:
    """Test suite for a decision source that cannot read one domain."""

    @pytest.fixture
    def source(self):
        return UnreadableDomainSource({"dlmm"})

    @pytest.fixture
    def flaky_engine(self, session_factory, config, synthesizer, source):
        return SkillLifecycleEngine(session_factory, config, synthesizer, source)

    @pytest.mark.asyncio
    async def test_judge_pass_skips_unreadable_domain(self, flaky_engine, synthesizer, source, decision_factory):
        """Test perps is still judged when dlmm history fails to load."""
        synthesizer.respond_json(PromptKind.JUDGE_POST_HOC, judge_payload())
        source.add(decision_factory(domain="perps"))

        report = await flaky_engine.on_cycle(1, now=BASE_TIME)

        assert report.judged == 1
        assert len(report.errors) == 1
        assert "dlmm" in report.errors[0]

    @pytest.mark.asyncio
    async def test_big_loss_still_creates_warning(self, flaky_engine, decision_factory):
        """Test an unreadable strategy batch does not cost the warning skill."""
        decision = decision_factory(domain="dlmm", outcome="loss", pnl_percent=-15.0,
                                    reasoning="Aped into a thin pool")

        result = await flaky_engine.resolve_outcome(decision.id, "loss", -15.0, decision=decision)

        assert [o.skill.skill_type for o in result.created_skills] == [SkillType.WARNING]
        assert flaky_engine.store.count() == 1

    @pytest.mark.asyncio
    async def test_failed_lookup_still_resolves_tracking(self, flaky_engine, source, skill_factory, monkeypatch):
        """Test a failing decision lookup is reported and recommendations still resolve."""
        skill = flaky_engine.store.create(skill_factory(title="Liquidity traps", body=LIQUIDITY_BODY))
        flaky_engine.track_decision("d-9", [skill], "Per liquidity traps")

        def broken(decision_id):
            raise StorageError("decision store unavailable")

        monkeypatch.setattr(source, "get_decision", broken)

        result = await flaky_engine.resolve_outcome("d-9", "loss", -30.0)

        assert len(result.recommendations) == 1
        assert result.created_skills == []
        assert result.errors == ["decision lookup: decision store unavailable"]



class TestFromEnv:
    """Test suite for SkillLifecycleEngine.from_env."""

    def test_invalid_policy_rejected(self, monkeypatch):
        monkeypatch.setenv("SKILLBANK_SIMILARITY_THRESHOLD", "1.5")

        with pytest.raises(InvalidConfigValueError):
            SkillLifecycleEngine.from_env()

    def test_builds_engine(self, monkeypatch, restore_logging):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        monkeypatch.setenv("SKILLBANK_LOG_JSON", "false")

        engine = SkillLifecycleEngine.from_env()
        init_db()

        assert check_connection(get_engine())
        assert engine.config.database_url == "sqlite://"
        assert engine.cross_domain is None
        assert engine.store.count() == 0
