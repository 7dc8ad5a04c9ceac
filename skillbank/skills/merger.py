"""Similarity gate and merge engine.

New non-evolved skills pass through ``create_with_merge_gate``: if anything
active in the same (domain, type) bucket is at least ``similarity_threshold``
similar, the candidate and every match become one evolved skill and the
matches are archived. ``run_merge_pass`` applies the same rule to skills that
already exist.

Both paths read a bucket snapshot, compose text outside any transaction, and
commit with a compare-and-swap on the bucket version. A lost race re-reads
the bucket and tries again, up to ``max_gate_attempts``.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..config import LearningConfig
from ..exceptions import (
    ExternalServiceError,
    InvalidStatusTransitionError,
    StaleBucketError,
    StorageError,
    ValidationError,
)
from ..logging_config import get_logger
from ..models.skill import SkillRecord, SkillType
from ..synthesis import PromptKind, Synthesizer, concatenate_bodies, parse_skill_document, truncate
from ..utils.timeout import call_with_timeout
from .similarity import SimilarityFn, phrase_jaccard
from .store import BucketSnapshot, SkillStore

logger = get_logger(__name__)


@dataclass
class MergeOutcome:
    """What the gate did with a candidate.

    ``merged=True`` is the duplicate-prevented path: the candidate was folded
    into ``skill`` (an evolved skill) instead of being stored on its own.
    """

    skill: SkillRecord
    merged: bool
    subsumed_ids: List[str] = field(default_factory=list)
    similarities: dict = field(default_factory=dict)


@dataclass
class MergePassResult:
    """Summary of one batch merge pass."""

    buckets_examined: int = 0
    merges: int = 0
    archived: int = 0
    evolved_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class SkillMerger:
    """Dedup near-duplicate skills into evolved skills with full provenance."""

    def __init__(
        self,
        store: SkillStore,
        synthesizer: Synthesizer,
        config: Optional[LearningConfig] = None,
        similarity: SimilarityFn = phrase_jaccard,
    ):
        self.store = store
        self.synthesizer = synthesizer
        self.config = config or store.config
        self.similarity = similarity

    def find_similar(
        self, body: str, candidates: List[SkillRecord], exclude_id: Optional[str] = None
    ) -> List[Tuple[SkillRecord, float]]:
        """Skills whose body scores at or above the threshold against ``body``.

        Returns:
            (skill, score) pairs, highest score first
        """
        matches = []
        for skill in candidates:
            if skill.id == exclude_id:
                continue
            score = self.similarity(body, skill.body)
            if score >= self.config.similarity_threshold:
                matches.append((skill, score))
        matches.sort(key=lambda pair: pair[1], reverse=True)
        return matches

    async def create_with_merge_gate(self, candidate: SkillRecord) -> MergeOutcome:
        """Commit a candidate, or fold it and its near-duplicates into one evolved skill.

        Args:
            candidate: New warning, pattern or strategy skill (never evolved)

        Returns:
            MergeOutcome with the stored skill

        Raises:
            ValidationError: If the candidate is already evolved
            StaleBucketError: If every attempt lost the bucket race
        """
        if candidate.skill_type == SkillType.EVOLVED:
            raise ValidationError("Evolved skills are produced by merges, not created directly")

        last_error: Optional[StorageError] = None
        for attempt in range(1, self.config.max_gate_attempts + 1):
            snapshot = self.store.bucket_snapshot(candidate.domain, candidate.bucket_type)
            matches = self.find_similar(candidate.body, snapshot.skills, exclude_id=candidate.id)

            try:
                if not matches:
                    skill = self.store.commit_candidate(candidate, snapshot.version)
                    logger.info(
                        "skill_committed",
                        extra={
                            "skill_id": skill.id,
                            "domain": skill.domain,
                            "skill_type": skill.skill_type.value,
                        },
                    )
                    return MergeOutcome(skill=skill, merged=False)

                matched = [skill for skill, _ in matches]
                evolved = await self._compose_evolved(
                    snapshot,
                    sources=[candidate] + matched,
                    subsumed=matched,
                    candidate=candidate,
                )
                self.store.commit_merge(evolved, [s.id for s in matched], snapshot.version)
            except (StaleBucketError, InvalidStatusTransitionError) as e:
                last_error = e
                logger.warning(
                    "merge_gate_retry",
                    extra={"domain": candidate.domain, "attempt": attempt, "error": str(e)},
                )
                continue

            similarities = {skill.id: round(score, 4) for skill, score in matches}
            logger.info(
                "skill_merged",
                extra={
                    "evolved_id": evolved.id,
                    "domain": evolved.domain,
                    "bucket_type": evolved.bucket_type.value,
                    "archived": len(matched),
                    "via": "gate",
                },
            )
            return MergeOutcome(
                skill=evolved,
                merged=True,
                subsumed_ids=[s.id for s in matched],
                similarities=similarities,
            )

        raise last_error

    async def run_merge_pass(self) -> MergePassResult:
        """Consolidate every active bucket. One failing bucket never stops the others."""
        result = MergePassResult()
        for domain, bucket_type in self.store.active_buckets():
            result.buckets_examined += 1
            try:
                evolved = await self.consolidate_bucket(domain, bucket_type)
            except (StorageError, ExternalServiceError) as e:
                logger.error(
                    "merge_pass_bucket_failed",
                    extra={"domain": domain, "bucket_type": bucket_type.value, "error": str(e)},
                )
                result.errors.append(f"{domain}/{bucket_type.value}: {e}")
                continue
            for skill in evolved:
                result.merges += 1
                result.archived += len(skill.merged_from_skill_ids)
                result.evolved_ids.append(skill.id)

        logger.info(
            "merge_pass_completed",
            extra={
                "buckets": result.buckets_examined,
                "merges": result.merges,
                "archived": result.archived,
                "errors": len(result.errors),
            },
        )
        return result

    async def consolidate_bucket(self, domain: str, bucket_type: SkillType) -> List[SkillRecord]:
        """Merge every cluster of mutually-similar skills in one bucket.

        Each cluster is a seed plus every other active skill within the
        threshold of it, merged in a single step.

        Returns:
            Evolved skills created
        """
        created: List[SkillRecord] = []
        failures = 0
        while failures < self.config.max_gate_attempts:
            snapshot = self.store.bucket_snapshot(domain, bucket_type)
            cluster = self._first_cluster(snapshot.skills)
            if not cluster:
                break

            try:
                evolved = await self._compose_evolved(snapshot, sources=cluster, subsumed=cluster)
                self.store.commit_merge(evolved, [s.id for s in cluster], snapshot.version)
            except (StaleBucketError, InvalidStatusTransitionError) as e:
                failures += 1
                logger.warning(
                    "merge_pass_retry",
                    extra={"domain": domain, "bucket_type": bucket_type.value, "error": str(e)},
                )
                continue

            created.append(evolved)
            logger.info(
                "skill_merged",
                extra={
                    "evolved_id": evolved.id,
                    "domain": domain,
                    "bucket_type": bucket_type.value,
                    "archived": len(cluster),
                    "via": "pass",
                },
            )

        if failures >= self.config.max_gate_attempts:
            raise StaleBucketError(domain, bucket_type.value, snapshot.version)
        return created

    def _first_cluster(self, skills: List[SkillRecord]) -> List[SkillRecord]:
        # Oldest first so the seed is stable across retries
        ordered = sorted(skills, key=lambda s: (s.created_at, s.id))
        for index, seed in enumerate(ordered):
            matches = self.find_similar(seed.body, ordered[index + 1:])
            if matches:
                return [seed] + [skill for skill, _ in matches]
        return []

    async def _compose_evolved(
        self,
        snapshot: BucketSnapshot,
        sources: List[SkillRecord],
        subsumed: List[SkillRecord],
        candidate: Optional[SkillRecord] = None,
    ) -> SkillRecord:
        max_chars = self.config.merge_max_chars
        evidence = {
            "domain": snapshot.domain,
            "skill_type": snapshot.bucket_type.value,
            "skills": [{"id": s.id, "title": s.title, "body": s.body} for s in sources],
            "max_chars": max_chars,
        }
        default_title = f"Evolved {snapshot.bucket_type.value}: {sources[0].title}"

        try:
            text = await call_with_timeout(
                self.synthesizer.compose(PromptKind.MERGE, evidence),
                timeout=self.config.synthesis_timeout_seconds,
                operation="merge",
            )
            title, body = parse_skill_document(text, default_title)
            synthesis = "llm"
        except ExternalServiceError as e:
            logger.warning(
                "merge_synthesis_fallback",
                extra={"domain": snapshot.domain, "bucket_type": snapshot.bucket_type.value, "error": str(e)},
            )
            title, body = default_title, concatenate_bodies(evidence["skills"], max_chars)
            synthesis = "fallback"

        source_decisions = []
        for skill in sources:
            for decision_id in skill.source_decision_ids:
                if decision_id not in source_decisions:
                    source_decisions.append(decision_id)

        theme_keys = []
        for skill in sources:
            for key in [skill.theme_key] + list(skill.metadata.get("theme_keys", [])):
                if key and key not in theme_keys:
                    theme_keys.append(key)
        if candidate is not None and candidate.theme_key:
            theme_key = candidate.theme_key
        else:
            theme_key = theme_keys[0] if len(theme_keys) == 1 else None

        metadata = {"synthesis": synthesis}
        if theme_keys:
            metadata["theme_keys"] = theme_keys
        if candidate is not None:
            metadata["merged_candidate"] = {
                "title": candidate.title,
                "skill_type": candidate.skill_type.value,
                "source_decision_ids": list(candidate.source_decision_ids),
            }

        return SkillRecord.new(
            domain=snapshot.domain,
            skill_type=SkillType.EVOLVED,
            title=title,
            body=truncate(body, max_chars),
            bucket_type=snapshot.bucket_type,
            source_decision_ids=source_decisions,
            merged_from_skill_ids=[s.id for s in subsumed],
            theme_key=theme_key,
            metadata=metadata,
        )
