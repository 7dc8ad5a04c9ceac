"""Database repositories for data access patterns.

Provides repository pattern for clean separation between
business logic and data access.
"""

from .bucket_repository import BucketRepository
from .judge_repository import JudgeInsightRepository
from .recommendation_repository import RecommendationRepository
from .skill_repository import SkillRepository

__all__ = [
    "BucketRepository",
    "JudgeInsightRepository",
    "RecommendationRepository",
    "SkillRepository",
]
