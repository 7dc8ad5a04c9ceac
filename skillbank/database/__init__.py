"""Database module for the skill lifecycle store.

Provides SQLAlchemy models, connection management, and repositories.
"""

from .connection import (
    SessionLocal,
    configure_database,
    create_engine_from_url,
    get_engine,
    get_session_factory,
    check_connection,
    init_db,
    session_scope,
)
from .models import Base, JudgeInsightRow, SkillBucketRow, SkillRecommendationRow, SkillRow

__all__ = [
    "Base",
    "SkillRow",
    "SkillRecommendationRow",
    "JudgeInsightRow",
    "SkillBucketRow",
    "SessionLocal",
    "configure_database",
    "create_engine_from_url",
    "get_engine",
    "get_session_factory",
    "check_connection",
    "init_db",
    "session_scope",
]
