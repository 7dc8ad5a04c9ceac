"""Tests for the similarity gate and merge pass."""

import pytest

from skillbank.exceptions import StaleBucketError, ValidationError
from skillbank.models.skill import SkillStatus, SkillType
from skillbank.skills.merger import SkillMerger
from skillbank.synthesis import PromptKind
from skillbank.tests.fakes import ScriptedSynthesizer

LIQUIDITY_BODY = (
    "- **Thin liquidity pools** are dangerous\n"
    "- **Wide bid ask spreads** hurt fills\n"
    "- **Sudden volume collapse** precedes rugs"
)


class AlwaysRacingSynthesizer(ScriptedSynthesizer):
    """Writes into the bucket during every compose, so every commit is stale."""

    def __init__(self, store, skill_factory):
        super().__init__()
        self.store = store
        self.skill_factory = skill_factory

    async def compose(self, kind, evidence):
        self.store.create(self.skill_factory(domain=evidence.get("domain", "dlmm")))
        return await super().compose(kind, evidence)


class TestMergeGate:
    """Test suite for SkillMerger.create_with_merge_gate."""

    @pytest.fixture
    def merger(self, store, synthesizer, config):
        return SkillMerger(store, synthesizer, config)

    @pytest.mark.asyncio
    async def test_no_match_commits_standalone(self, merger, store, skill_factory):
        """Test a distinct candidate is stored as-is."""
        store.create(skill_factory())
        candidate = skill_factory(body=LIQUIDITY_BODY)

        outcome = await merger.create_with_merge_gate(candidate)

        assert outcome.merged is False
        assert outcome.skill.id == candidate.id
        assert store.get(candidate.id).status == SkillStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_match_creates_evolved_with_provenance(self, merger, store, skill_factory):
        """Test a near-duplicate candidate folds into an evolved skill."""
        a = store.create(skill_factory(body=LIQUIDITY_BODY, source_decision_ids=["d-a"]))
        b = store.create(skill_factory(body=LIQUIDITY_BODY + "\n", source_decision_ids=["d-b"]))
        other = store.create(skill_factory())
        candidate = skill_factory(body=LIQUIDITY_BODY, source_decision_ids=["d-new"])

        outcome = await merger.create_with_merge_gate(candidate)

        evolved = store.get(outcome.skill.id)
        assert outcome.merged is True
        assert evolved.skill_type == SkillType.EVOLVED
        assert evolved.bucket_type == SkillType.WARNING
        assert evolved.domain == "dlmm"
        assert evolved.ttl_days == 180
        assert set(evolved.merged_from_skill_ids) == {a.id, b.id}
        assert candidate.id not in evolved.merged_from_skill_ids
        assert set(evolved.source_decision_ids) == {"d-a", "d-b", "d-new"}
        assert evolved.metadata["merged_candidate"]["source_decision_ids"] == ["d-new"]
        assert outcome.similarities[a.id] == 1.0

        for skill_id in (a.id, b.id):
            archived = store.get(skill_id)
            assert archived.status == SkillStatus.ARCHIVED
            assert archived.merged_into_id == evolved.id
        assert store.get(other.id).status == SkillStatus.ACTIVE
        assert store.get(candidate.id) is None

    @pytest.mark.asyncio
    async def test_other_domain_never_matches(self, merger, store, skill_factory):
        """Test buckets are per domain."""
        store.create(skill_factory(domain="perps", body=LIQUIDITY_BODY))

        outcome = await merger.create_with_merge_gate(skill_factory(domain="dlmm", body=LIQUIDITY_BODY))

        assert outcome.merged is False

    @pytest.mark.asyncio
    async def test_rejects_evolved_candidate(self, merger, skill_factory):
        with pytest.raises(ValidationError):
            await merger.create_with_merge_gate(skill_factory(skill_type=SkillType.EVOLVED))

    @pytest.mark.asyncio
    async def test_synthesis_failure_falls_back_to_concatenation(self, store, synthesizer, config, skill_factory):
        """Test the merge still happens when the synthesizer is down."""
        synthesizer.fail(PromptKind.MERGE)
        merger = SkillMerger(store, synthesizer, config)
        a = store.create(skill_factory(title="Thin pools", body=LIQUIDITY_BODY))

        outcome = await merger.create_with_merge_gate(skill_factory(title="Rug signs", body=LIQUIDITY_BODY))

        assert outcome.merged is True
        assert outcome.skill.metadata["synthesis"] == "fallback"
        assert "## From: Rug signs" in outcome.skill.body
        assert "## From: Thin pools" in outcome.skill.body
        assert len(outcome.skill.body) <= config.merge_max_chars
        assert store.get(a.id).status == SkillStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_llm_title_is_used(self, store, synthesizer, config, skill_factory):
        synthesizer.respond(PromptKind.MERGE, "# Liquidity exit rules\n\n" + LIQUIDITY_BODY)
        merger = SkillMerger(store, synthesizer, config)
        store.create(skill_factory(body=LIQUIDITY_BODY))

        outcome = await merger.create_with_merge_gate(skill_factory(body=LIQUIDITY_BODY))

        assert outcome.skill.title == "Liquidity exit rules"
        assert outcome.skill.metadata["synthesis"] == "llm"

    @pytest.mark.asyncio
    async def test_stale_bucket_retries(self, store, synthesizer, config, skill_factory):
        """Test a concurrent write during synthesis forces a re-read, then succeeds."""
        merger = SkillMerger(store, synthesizer, config)
        a = store.create(skill_factory(body=LIQUIDITY_BODY))
        synthesizer.before_compose = lambda kind, evidence: store.create(skill_factory())

        outcome = await merger.create_with_merge_gate(skill_factory(body=LIQUIDITY_BODY))

        assert synthesizer.kinds() == [PromptKind.MERGE, PromptKind.MERGE]
        assert outcome.merged is True
        assert outcome.skill.merged_from_skill_ids == [a.id]
        assert len(store.list_active(domain="dlmm", skill_type=SkillType.EVOLVED)) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, config, skill_factory):
        """Test a bucket that never settles surfaces StaleBucketError."""
        merger = SkillMerger(store, AlwaysRacingSynthesizer(store, skill_factory), config)
        a = store.create(skill_factory(body=LIQUIDITY_BODY))

        with pytest.raises(StaleBucketError):
            await merger.create_with_merge_gate(skill_factory(body=LIQUIDITY_BODY))

        assert store.get(a.id).status == SkillStatus.ACTIVE
        assert store.list_active(domain="dlmm", skill_type=SkillType.EVOLVED) == []


class TestMergePass:
    """Test suite for SkillMerger.run_merge_pass."""

    @pytest.fixture
    def merger(self, store, synthesizer, config):
        return SkillMerger(store, synthesizer, config)

    @pytest.mark.asyncio
    async def test_merges_cluster_once(self, merger, store, skill_factory):
        """Test a cluster merges in one step and a second pass is a no-op."""
        cluster = [store.create(skill_factory(body=LIQUIDITY_BODY)) for _ in range(3)]
        distinct = store.create(skill_factory())
        store.create(skill_factory(domain="perps"))

        result = await merger.run_merge_pass()

        assert result.merges == 1
        assert result.archived == 3
        assert result.errors == []
        evolved = store.get(result.evolved_ids[0])
        assert set(evolved.merged_from_skill_ids) == {s.id for s in cluster}
        assert store.get(distinct.id).status == SkillStatus.ACTIVE

        again = await merger.run_merge_pass()
        assert again.merges == 0

    @pytest.mark.asyncio
    async def test_excluded_skills_still_merge(self, merger, store, skill_factory):
        """Test retrieval exclusion does not keep a skill out of its bucket."""
        weak = store.create(skill_factory(body=LIQUIDITY_BODY))
        for _ in range(5):
            store.apply_outcome(weak.id, successful=False)
        strong = store.create(skill_factory(body=LIQUIDITY_BODY))

        result = await merger.run_merge_pass()

        assert result.merges == 1
        assert store.get(weak.id).status == SkillStatus.ARCHIVED
        assert store.get(strong.id).status == SkillStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_evolved_skill_merges_again(self, merger, store, skill_factory):
        """Test an evolved skill stays in its bucket for later merges."""
        for _ in range(2):
            store.create(skill_factory(body=LIQUIDITY_BODY))
        first = await merger.run_merge_pass()

        outcome = await merger.create_with_merge_gate(skill_factory(body=LIQUIDITY_BODY))

        assert outcome.merged is True
        assert outcome.skill.merged_from_skill_ids == first.evolved_ids
        assert store.get(first.evolved_ids[0]).status == SkillStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_no_rows_deleted(self, merger, store, skill_factory):
        for _ in range(3):
            store.create(skill_factory(body=LIQUIDITY_BODY))

        await merger.run_merge_pass()

        assert store.count() == 4
