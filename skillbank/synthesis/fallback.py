"""Deterministic synthesis fallback.

Used when no LLM is configured, and by the merger whenever LLM synthesis
fails. Output depends only on the evidence, so tests are reproducible.
"""

from ..exceptions import MalformedResponseError
from .base import PromptKind

TRUNCATION_MARKER = "\n\n[truncated]"


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to at most ``max_chars`` characters, marking the cut."""
    if len(text) <= max_chars:
        return text
    keep = max(0, max_chars - len(TRUNCATION_MARKER))
    return text[:keep].rstrip() + TRUNCATION_MARKER


def concatenate_bodies(skills: list, max_chars: int = 4000) -> str:
    """Merge skill bodies by concatenation.

    Each source gets an equal share of the character budget so no single long
    skill crowds out the others; the result is then capped at ``max_chars``.

    Args:
        skills: Items with ``title`` and ``body`` keys
        max_chars: Total character budget

    Returns:
        Combined markdown body
    """
    if not skills:
        return ""
    share = max(200, max_chars // len(skills))
    sections = [
        f"## From: {item['title']}\n\n{truncate(item['body'].strip(), share)}"
        for item in skills
    ]
    return truncate("\n\n".join(sections), max_chars)


class TemplateSynthesizer:
    """Synthesizer that fills fixed templates instead of calling an LLM.

    Judge kinds are not supported: there is no deterministic way to score a
    decision, so those calls raise MalformedResponseError and the judge skips
    (post-hoc) or fails open (inline).
    """

    def __init__(self, max_chars: int = 4000):
        self.max_chars = max_chars

    async def compose(self, kind: PromptKind, evidence: dict) -> str:
        kind = PromptKind(kind)

        if kind == PromptKind.MERGE:
            titles = [item["title"] for item in evidence["skills"]]
            title = f"{evidence['domain'].upper()} {evidence['skill_type']}: {titles[0]}"
            body = concatenate_bodies(evidence["skills"], evidence.get("max_chars", self.max_chars))
            return f"# {title}\n\n{body}"

        if kind == PromptKind.GENERAL_SKILL:
            per_domain = "\n".join(
                f"- **{domain}**: {stats['wins']}/{stats['samples']} wins"
                for domain, stats in sorted(evidence["per_domain"].items())
            )
            examples = "\n".join(
                f"- [{e['domain']}] {e['reasoning'][:200]}" for e in evidence["examples"][:3]
            )
            return (
                f"# Cross-domain {evidence['category']}: {evidence['keyword']} principle\n\n"
                f"**{evidence['keyword'].capitalize()}** ({evidence['category']}) recurred in winning decisions across "
                f"{len(evidence['per_domain'])} domains "
                f"({evidence['win_rate'] * 100:.0f}% win rate over {evidence['sample_size']} decisions, "
                f"{evidence['applicability']} applicability).\n\n"
                f"## Evidence\n{per_domain}\n\n## Examples\n{examples}"
            )

        if kind in (PromptKind.WARNING_SKILL, PromptKind.PATTERN_SKILL):
            decision = evidence["decision"]
            target = decision.get("target") or decision.get("domain")
            if kind == PromptKind.WARNING_SKILL:
                heading = f"Avoid repeating {decision.get('action')} {target} loss"
                lead = f"**Loss of {abs(evidence['pnl_percent']):.1f}%** after this reasoning:"
            else:
                heading = f"Replicate {decision.get('action')} {target} win"
                lead = f"**Gain of {evidence['pnl_percent']:.1f}%** after this reasoning:"
            return f"# {heading}\n\n{lead}\n\n> {truncate(decision.get('reasoning', ''), 800)}"

        if kind == PromptKind.STRATEGY_SKILL:
            decisions = evidence["decisions"]
            wins = sum(1 for d in decisions if d.get("outcome") == "profit")
            lines = "\n".join(
                f"- {d.get('action')} {d.get('target') or ''}: {d.get('outcome')} "
                f"({float(d.get('pnl_percent') or 0):+.1f}%)"
                for d in decisions
            )
            return (
                f"# {evidence['domain'].upper()} Trading Strategy\n\n"
                f"**{wins}/{len(decisions)} wins** in the last {len(decisions)} decisions.\n\n{lines}"
            )

        raise MalformedResponseError(
            "template synthesizer cannot score decisions", operation=kind.value
        )
