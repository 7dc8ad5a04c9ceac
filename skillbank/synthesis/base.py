"""Synthesizer capability interface.

Every LLM call the learning layer makes goes through
``Synthesizer.compose(kind, evidence) -> str``. Merge, promotion and skill
creation logic only ever see this interface, so tests substitute a scripted
or template implementation.
"""

from enum import Enum
from typing import Protocol


class PromptKind(str, Enum):
    """What the synthesizer is being asked to write."""
    MERGE = "merge"
    GENERAL_SKILL = "general_skill"
    WARNING_SKILL = "warning_skill"
    PATTERN_SKILL = "pattern_skill"
    STRATEGY_SKILL = "strategy_skill"
    JUDGE_POST_HOC = "judge_post_hoc"
    JUDGE_INLINE = "judge_inline"


class Synthesizer(Protocol):
    """Narrow text-composition capability."""

    async def compose(self, kind: PromptKind, evidence: dict) -> str:
        """Compose text for ``kind`` from structured evidence.

        Raises:
            TransientExternalError: Timeout, rate limit or overload
            MalformedResponseError: Empty or unusable output
        """
        ...


def parse_skill_document(text: str, default_title: str) -> tuple:
    """Split a composed skill document into (title, body).

    A leading ``# `` line becomes the title; otherwise ``default_title`` is
    used and the whole text is the body.
    """
    stripped = text.strip()
    lines = stripped.splitlines()
    if lines and lines[0].startswith("# "):
        title = lines[0][2:].strip() or default_title
        body = "\n".join(lines[1:]).strip()
        return title, body or stripped
    return default_title, stripped
