"""Skill storage, usage tracking, merging and creation."""

from .creator import SkillCreator
from .effectiveness import EffectivenessPolicy, SkillEffectiveness, wilson_lower_bound
from .formatting import format_skills_for_prompt
from .merger import MergeOutcome, MergePassResult, SkillMerger
from .recommender import RecommendationSet, RecommendedSkill, SkillRecommender, score_relevance
from .similarity import extract_key_phrases, phrase_jaccard
from .store import SkillStore
from .tracker import UsageTracker, detect_skill_usage

__all__ = [
    "EffectivenessPolicy",
    "MergeOutcome",
    "MergePassResult",
    "RecommendationSet",
    "RecommendedSkill",
    "SkillCreator",
    "SkillEffectiveness",
    "SkillMerger",
    "SkillRecommender",
    "SkillStore",
    "UsageTracker",
    "detect_skill_usage",
    "extract_key_phrases",
    "format_skills_for_prompt",
    "phrase_jaccard",
    "score_relevance",
    "wilson_lower_bound",
]
