"""Skill record models.

A skill is a persisted, typed, time-bounded lesson derived from trade outcomes.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class SkillType(str, Enum):
    """Skill type enumeration."""
    WARNING = "warning"
    PATTERN = "pattern"
    STRATEGY = "strategy"
    EVOLVED = "evolved"


class SkillStatus(str, Enum):
    """Skill lifecycle status.

    Only active->archived (superseded by a merge) and active->expired
    (TTL elapsed) transitions exist.
    """
    ACTIVE = "active"
    ARCHIVED = "archived"
    EXPIRED = "expired"


SKILL_TTL_DAYS = {
    SkillType.WARNING: 60,
    SkillType.PATTERN: 90,
    SkillType.STRATEGY: 180,
    SkillType.EVOLVED: 180,
}


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(text: str) -> str:
    """Lowercase hyphenated name used for explicit skill references."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:80]


@dataclass
class SkillRecord:
    """The unit of learned knowledge.

    ``bucket_type`` is the (domain, type) bucket the skill competes in for
    merging. For non-evolved skills it equals ``skill_type``; an evolved skill
    keeps the type of the bucket it was merged in, so later merges in that
    bucket still see it.
    """

    id: str
    domain: str
    skill_type: SkillType
    title: str
    body: str
    created_at: datetime
    ttl_days: int
    expires_at: datetime
    bucket_type: SkillType
    status: SkillStatus = SkillStatus.ACTIVE

    # Provenance
    source_decision_ids: list = field(default_factory=list)
    merged_from_skill_ids: list = field(default_factory=list)
    merged_into_id: Optional[str] = None
    theme_key: Optional[str] = None

    # Effectiveness
    times_applied: int = 0
    times_successful: int = 0
    excluded_from_retrieval: bool = False

    metadata: dict = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        domain: str,
        skill_type: SkillType,
        title: str,
        body: str,
        created_at: Optional[datetime] = None,
        bucket_type: Optional[SkillType] = None,
        source_decision_ids: Optional[list] = None,
        merged_from_skill_ids: Optional[list] = None,
        theme_key: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> "SkillRecord":
        """Build an active, never-applied skill with the TTL for its type.

        Example:
            >>> skill = SkillRecord.new("dlmm", SkillType.WARNING, "Avoid thin pools", body)
            >>> skill.ttl_days
            60
        """
        skill_type = SkillType(skill_type)
        created_at = created_at or utcnow()
        ttl_days = SKILL_TTL_DAYS[skill_type]
        return cls(
            id=str(uuid.uuid4()),
            domain=domain,
            skill_type=skill_type,
            title=title,
            body=body,
            created_at=created_at,
            ttl_days=ttl_days,
            expires_at=created_at + timedelta(days=ttl_days),
            bucket_type=SkillType(bucket_type or skill_type),
            source_decision_ids=list(source_decision_ids or []),
            merged_from_skill_ids=list(merged_from_skill_ids or []),
            theme_key=theme_key,
            metadata=dict(metadata or {}),
        )

    @property
    def name(self) -> str:
        """Referenceable name, e.g. ``warning-dlmm-avoid-thin-pools``."""
        return f"{self.skill_type.value}-{self.domain}-{slugify(self.title)}"

    @property
    def success_rate(self) -> Optional[float]:
        """timesSuccessful / timesApplied, undefined while never applied."""
        if self.times_applied <= 0:
            return None
        return self.times_successful / self.times_applied

    @property
    def is_active(self) -> bool:
        """Whether skill is active."""
        return self.status == SkillStatus.ACTIVE

    def is_expired_at(self, now: datetime) -> bool:
        """Whether the TTL has elapsed at ``now``."""
        return now >= self.expires_at

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "skill_type": self.skill_type.value,
            "bucket_type": self.bucket_type.value,
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
            "ttl_days": self.ttl_days,
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "source_decision_ids": list(self.source_decision_ids),
            "merged_from_skill_ids": list(self.merged_from_skill_ids),
            "merged_into_id": self.merged_into_id,
            "theme_key": self.theme_key,
            "times_applied": self.times_applied,
            "times_successful": self.times_successful,
            "success_rate": self.success_rate,
            "excluded_from_retrieval": self.excluded_from_retrieval,
        }
