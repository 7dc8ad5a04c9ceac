"""Skill repository for database operations.

Counter updates are single UPDATE statements so concurrent domain cycles can
never lose an increment.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import Float, and_, case, cast, desc, func, select, update
from sqlalchemy.orm import Session

from ...exceptions import InvalidStatusTransitionError, SkillNotFoundError
from ...models.skill import SkillRecord, SkillStatus
from ..models import SkillRow


class SkillRepository:
    """Repository for skill records.

    Example:
        >>> with session_scope(factory) as db:
        ...     repo = SkillRepository(db)
        ...     rows = repo.list_active(domain="dlmm")
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def add(self, record: SkillRecord) -> SkillRow:
        """Insert a new skill row and flush it."""
        row = SkillRow.from_record(record)
        self.db.add(row)
        self.db.flush()
        return row

    def get(self, skill_id: str) -> Optional[SkillRow]:
        """Get single skill by ID, whatever its status."""
        return self.db.get(SkillRow, skill_id)

    def get_many(self, skill_ids: Iterable[str]) -> List[SkillRow]:
        ids = list(skill_ids)
        if not ids:
            return []
        return list(self.db.scalars(select(SkillRow).where(SkillRow.id.in_(ids))))

    def list_active(
        self,
        domains: Optional[Iterable[str]] = None,
        skill_type: Optional[str] = None,
        bucket_type: Optional[str] = None,
        include_excluded: bool = False,
        theme_key: Optional[str] = None,
    ) -> List[SkillRow]:
        """Active skills matching the filters, newest first.

        Args:
            domains: Restrict to these domains
            skill_type: Restrict to this skill type
            bucket_type: Restrict to this merge bucket
            include_excluded: Also return rows soft-excluded by the pruning policy
            theme_key: Restrict to this normalized theme key

        Returns:
            List of skill rows
        """
        stmt = select(SkillRow).where(SkillRow.status == SkillStatus.ACTIVE.value)
        if domains is not None:
            stmt = stmt.where(SkillRow.domain.in_(list(domains)))
        if skill_type is not None:
            stmt = stmt.where(SkillRow.skill_type == skill_type)
        if bucket_type is not None:
            stmt = stmt.where(SkillRow.bucket_type == bucket_type)
        if theme_key is not None:
            stmt = stmt.where(SkillRow.theme_key == theme_key)
        if not include_excluded:
            stmt = stmt.where(SkillRow.excluded_from_retrieval.is_(False))
        return list(self.db.scalars(stmt.order_by(desc(SkillRow.created_at))))

    def list_all(
        self, domain: Optional[str] = None, status: Optional[str] = None
    ) -> List[SkillRow]:
        """Every row regardless of status, for audit."""
        stmt = select(SkillRow)
        if domain is not None:
            stmt = stmt.where(SkillRow.domain == domain)
        if status is not None:
            stmt = stmt.where(SkillRow.status == status)
        return list(self.db.scalars(stmt.order_by(desc(SkillRow.created_at))))

    def count(self) -> int:
        """Total number of rows, any status."""
        return self.db.scalar(select(func.count()).select_from(SkillRow))

    def archive(self, skill_ids: Iterable[str], merged_into_id: str) -> int:
        """Move active skills to archived, pointing at the skill that subsumed them.

        Raises:
            SkillNotFoundError: If any id does not exist
            InvalidStatusTransitionError: If any skill is not active
        """
        ids = list(dict.fromkeys(skill_ids))
        rows = {row.id: row for row in self.get_many(ids)}

        missing = [i for i in ids if i not in rows]
        if missing:
            raise SkillNotFoundError(f"Unknown skill ids: {', '.join(missing)}")

        not_active = [i for i in ids if rows[i].status != SkillStatus.ACTIVE.value]
        if not_active:
            raise InvalidStatusTransitionError(
                f"Cannot archive non-active skills: {', '.join(not_active)}"
            )

        result = self.db.execute(
            update(SkillRow)
            .where(and_(SkillRow.id.in_(ids), SkillRow.status == SkillStatus.ACTIVE.value))
            .values(status=SkillStatus.ARCHIVED.value, merged_into_id=merged_into_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            raise InvalidStatusTransitionError("Skills changed status during archive")
        return result.rowcount

    def expire_due(self, now: datetime) -> List[SkillRow]:
        """Mark every active skill with ``now >= expires_at`` as expired.

        Returns:
            The rows that transitioned in this call
        """
        due = list(
            self.db.scalars(
                select(SkillRow).where(
                    and_(
                        SkillRow.status == SkillStatus.ACTIVE.value,
                        SkillRow.expires_at <= now,
                    )
                )
            )
        )
        if not due:
            return []

        self.db.execute(
            update(SkillRow)
            .where(
                and_(
                    SkillRow.id.in_([row.id for row in due]),
                    SkillRow.status == SkillStatus.ACTIVE.value,
                )
            )
            .values(status=SkillStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        for row in due:
            self.db.refresh(row)
        return [row for row in due if row.status == SkillStatus.EXPIRED.value]

    def apply_outcome(
        self,
        skill_id: str,
        successful: bool,
        min_sample_size: int,
        min_success_rate: float,
    ):
        """Atomically count one application and recompute derived fields.

        Increment, success rate and the retrieval exclusion flag are computed
        in one statement from the row's current values.

        Raises:
            SkillNotFoundError: If the skill does not exist
        """
        applied = SkillRow.times_applied + 1
        successes = SkillRow.times_successful + (1 if successful else 0)
        rate = cast(successes, Float) / cast(applied, Float)

        result = self.db.execute(
            update(SkillRow)
            .where(SkillRow.id == skill_id)
            .values(
                times_applied=applied,
                times_successful=successes,
                success_rate=rate,
                excluded_from_retrieval=case(
                    (and_(applied >= min_sample_size, rate < min_success_rate), True),
                    else_=False,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SkillNotFoundError(f"Unknown skill id: {skill_id}")
