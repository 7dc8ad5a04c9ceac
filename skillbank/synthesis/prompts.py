"""Prompt templates for each synthesis kind."""

import json

from ..models.judge import JUDGE_DIMENSIONS
from .base import PromptKind

_RUBRIC = "\n".join(f"- {name}" for name in JUDGE_DIMENSIONS)


def _decision_block(decision: dict) -> str:
    return (
        f"- **Domain**: {decision.get('domain')}\n"
        f"- **Action**: {decision.get('action')}\n"
        f"- **Target**: {decision.get('target') or 'N/A'}\n"
        f"- **Amount**: ${float(decision.get('amount_usd') or 0):.2f}\n"
        f"- **Confidence**: {float(decision.get('confidence') or 0) * 100:.0f}%\n"
        f"- **Reasoning**: {decision.get('reasoning', '')}"
    )


def build_merge_prompt(evidence: dict) -> str:
    bodies = "\n\n".join(
        f"### Source {i + 1}: {item['title']}\n{item['body'][:1500]}"
        for i, item in enumerate(evidence["skills"])
    )
    return f"""You maintain the skill library of an autonomous trading agent.
The following {evidence['skill_type']} skills for the {evidence['domain']} domain overlap.
Merge them into ONE consolidated skill that keeps every distinct, actionable rule
and drops repetition.

{bodies}

Write markdown. Start with a single "# " title line, then the body. Use **bold**
for the key rules and "- " bullets for conditions. Stay under {evidence.get('max_chars', 4000)} characters.
Return ONLY the skill document."""


def build_general_skill_prompt(evidence: dict) -> str:
    examples = "\n".join(f"- [{e['domain']}] {e['reasoning'][:300]}" for e in evidence["examples"])
    per_domain = "\n".join(
        f"- {domain}: {stats['wins']}/{stats['samples']} wins"
        for domain, stats in sorted(evidence["per_domain"].items())
    )
    return f"""You maintain the skill library of an autonomous trading agent that trades in
several independent domains. The theme "{evidence['theme_key']}" recurs in winning
reasoning across domains.

## Evidence
Combined win rate: {evidence['win_rate'] * 100:.0f}% over {evidence['sample_size']} decisions
Applicability: {evidence['applicability']}
{per_domain}

## Example reasoning
{examples}

Write a domain-agnostic skill that captures the transferable principle. Start with a
single "# " title line, then markdown with **bold** key rules and "- " bullets.
Return ONLY the skill document."""


def build_outcome_skill_prompt(kind: PromptKind, evidence: dict) -> str:
    decision = evidence["decision"]
    if kind == PromptKind.WARNING_SKILL:
        task = (
            f"This decision lost {abs(evidence['pnl_percent']):.1f}%. Write a WARNING skill that "
            "names the mistake, the red flags that were visible, and what to do instead."
        )
    else:
        task = (
            f"This decision gained {evidence['pnl_percent']:.1f}%. Write a PATTERN skill that "
            "captures the conditions and the approach so it can be replicated."
        )
    return f"""You are the learning system of an autonomous trading agent.

## Decision
{_decision_block(decision)}

{task}

Start with a single "# " title line, then markdown with **bold** key rules and "- "
bullets. Be specific and actionable. Return ONLY the skill document."""


def build_strategy_prompt(evidence: dict) -> str:
    lines = "\n".join(
        f"- {d['action']} {d.get('target') or ''}: {d.get('outcome')} ({float(d.get('pnl_percent') or 0):+.1f}%) {d['reasoning'][:200]}"
        for d in evidence["decisions"]
    )
    return f"""You are the learning system of an autonomous trading agent.
Synthesize the last {len(evidence['decisions'])} closed {evidence['domain']} decisions into a
STRATEGY skill: what to keep doing, what to stop, and sizing/exit guidance.

## Decisions
{lines}

Start with a single "# " title line, then markdown with **bold** key rules and "- "
bullets. Return ONLY the skill document."""


def build_judge_prompt(kind: PromptKind, evidence: dict) -> str:
    decision = evidence["decision"]
    if kind == PromptKind.JUDGE_INLINE:
        instructions = (
            "Review this decision BEFORE it executes. "
            + ("Be concise. Focus on critical issues only." if evidence.get("speed") == "fast"
               else "Be thorough. Consider all aspects of the decision.")
        )
        extra = (
            f"\n## Current Context\n"
            f"- **Balance**: ${float(evidence.get('available_balance') or 0):.2f}\n"
            f"- **Open Positions**: {evidence.get('open_positions', 0)}\n"
            f"- **Recent Outcomes**: {', '.join(evidence.get('recent_outcomes') or []) or 'none'}\n"
        )
        schema = {
            "scores": {name: "number 0.0-1.0" for name in JUDGE_DIMENSIONS},
            "quality_score": "number 0.0-1.0",
            "should_proceed": "boolean",
            "warnings": ["string"],
            "key_insight": "string or null",
            "suggested_modifications": {
                "adjusted_confidence": "number (optional)",
                "adjusted_amount": "number (optional)",
                "additional_reasoning": "string (optional)",
            },
        }
    else:
        instructions = (
            "Evaluate this closed decision on the quality of the decision itself, "
            "not on luck. You are not told the outcome."
        )
        extra = "\n## Market Conditions\n" + json.dumps(decision.get("market_conditions") or {}, indent=2)
        schema = {
            "scores": {name: "number 0.0-1.0" for name in JUDGE_DIMENSIONS},
            "quality_score": "number 0.0-1.0",
            "was_good_decision": "boolean",
            "key_insight": "string under 100 characters",
            "insight_type": "warning | pattern | neutral",
            "strengths": "string or null",
            "weaknesses": "string or null",
            "better_approach": "string or null",
        }

    return f"""You are the decision judge for an autonomous trading agent.
{instructions}

## Decision
{_decision_block(decision)}
{extra}
Score each rubric dimension from 0.0 to 1.0:
{_RUBRIC}

Respond with JSON only, matching:
{json.dumps(schema, indent=2)}"""


def build_prompt(kind: PromptKind, evidence: dict) -> str:
    """Render the prompt for a synthesis kind."""
    kind = PromptKind(kind)
    if kind == PromptKind.MERGE:
        return build_merge_prompt(evidence)
    if kind == PromptKind.GENERAL_SKILL:
        return build_general_skill_prompt(evidence)
    if kind in (PromptKind.WARNING_SKILL, PromptKind.PATTERN_SKILL):
        return build_outcome_skill_prompt(kind, evidence)
    if kind == PromptKind.STRATEGY_SKILL:
        return build_strategy_prompt(evidence)
    return build_judge_prompt(kind, evidence)
