"""Prompt formatting for retrieved skills."""

from typing import Dict, List, Optional

from ..models.skill import SkillRecord
from .effectiveness import SkillEffectiveness

LEARNING_PREAMBLE = """## Your Learning System

After each trade closes, the outcome is analyzed:
- **Losses beyond the warning threshold** create a WARNING skill to prevent similar mistakes
- **Large wins** create a PATTERN skill so the approach can be replicated
- **Every batch of closed trades** produces a STRATEGY skill
- **Overlapping skills** are merged into EVOLVED skills
- **Themes that win across domains** become GENERAL skills

When you rely on a skill, name it explicitly in your reasoning, e.g.
"applying 'warning-dlmm-thin-liquidity'", so its effectiveness can be measured.
"""


def effectiveness_badge(stats: Optional[SkillEffectiveness]) -> str:
    """Short effectiveness label for a skill."""
    if stats is None or stats.success_rate is None:
        return "not yet evaluated"
    label = f"{stats.success_rate * 100:.0f}% effective over {stats.times_applied} uses"
    if stats.proven_effective:
        label += ", proven"
    return label


def format_skills_for_prompt(
    skills: List[SkillRecord],
    effectiveness: Optional[Dict[str, SkillEffectiveness]] = None,
    include_preamble: bool = True,
    relevance: Optional[Dict[str, float]] = None,
) -> str:
    """Render retrieved skills as a markdown block for the decision prompt.

    Args:
        skills: Skills in retrieval order
        effectiveness: Optional per-skill stats keyed by skill id
        include_preamble: Prepend the explanation of how skills are made
        relevance: Optional relevance scores keyed by skill id

    Returns:
        Markdown text
    """
    effectiveness = effectiveness or {}
    relevance = relevance or {}
    parts = [LEARNING_PREAMBLE] if include_preamble else []

    if not skills:
        parts.append("*No skills yet. Skills will be created as trades are completed.*\n")
        return "\n---\n\n".join(parts)

    domain_skills = [s for s in skills if s.domain != "general"]
    general_skills = [s for s in skills if s.domain == "general"]

    for heading, group in (("Loaded Skills", domain_skills), ("General Skills", general_skills)):
        if not group:
            continue
        lines = [f"## {heading}", ""]
        for skill in group:
            label = f"{skill.skill_type.value}, {effectiveness_badge(effectiveness.get(skill.id))}"
            if skill.id in relevance:
                label += f", relevance {relevance[skill.id] * 100:.0f}%"
            lines.append(f"### '{skill.name}' ({label})")
            lines.append("")
            lines.append(skill.body.strip())
            lines.append("")
        parts.append("\n".join(lines))

    return "\n---\n\n".join(parts)
