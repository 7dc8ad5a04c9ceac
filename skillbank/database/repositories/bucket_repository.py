"""Merge bucket version counters.

Every write that changes the active membership of a (domain, skill type)
bucket bumps its version. Merges read the version first and commit with a
compare-and-swap, so a concurrent writer forces a re-read instead of a
double archive.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import StaleBucketError
from ..models import SkillBucketRow


class BucketRepository:
    """Repository for skill bucket versions."""

    def __init__(self, db: Session):
        self.db = db

    def _ensure(self, domain: str, skill_type: str):
        if self.db.get(SkillBucketRow, (domain, skill_type)) is not None:
            return
        self.db.add(SkillBucketRow(domain=domain, skill_type=skill_type, version=0))
        try:
            self.db.flush()
        except IntegrityError:
            # Another writer created the bucket first; the caller's unit of
            # work is rolled back and retried like any other lost race
            raise StaleBucketError(domain, skill_type, 0)

    def current_version(self, domain: str, skill_type: str) -> int:
        """Current version, creating the bucket at version 0 on first use."""
        self._ensure(domain, skill_type)
        return self.db.scalar(
            select(SkillBucketRow.version).where(
                and_(SkillBucketRow.domain == domain, SkillBucketRow.skill_type == skill_type)
            )
        )

    def compare_and_swap(
        self, domain: str, skill_type: str, expected_version: int, now: Optional[datetime] = None
    ) -> int:
        """Advance the version only if it still equals ``expected_version``.

        Returns:
            The new version

        Raises:
            StaleBucketError: If another writer advanced the bucket first
        """
        self._ensure(domain, skill_type)
        result = self.db.execute(
            update(SkillBucketRow)
            .where(
                and_(
                    SkillBucketRow.domain == domain,
                    SkillBucketRow.skill_type == skill_type,
                    SkillBucketRow.version == expected_version,
                )
            )
            .values(version=SkillBucketRow.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleBucketError(domain, skill_type, expected_version)
        return expected_version + 1

    def bump(self, domain: str, skill_type: str, now: Optional[datetime] = None):
        """Unconditionally advance the version (used by the expiry sweep)."""
        self._ensure(domain, skill_type)
        self.db.execute(
            update(SkillBucketRow)
            .where(
                and_(SkillBucketRow.domain == domain, SkillBucketRow.skill_type == skill_type)
            )
            .values(version=SkillBucketRow.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
