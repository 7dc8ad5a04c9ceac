"""Text synthesis collaborators."""

from ..config import LearningConfig
from .base import PromptKind, Synthesizer, parse_skill_document
from .fallback import TemplateSynthesizer, concatenate_bodies, truncate


def build_synthesizer(config: LearningConfig) -> Synthesizer:
    """Anthropic synthesizer when an API key is configured, templates otherwise."""
    if config.llm_enabled:
        from .anthropic_synthesizer import AnthropicSynthesizer
        return AnthropicSynthesizer(config)
    return TemplateSynthesizer(max_chars=config.merge_max_chars)


__all__ = [
    "PromptKind",
    "Synthesizer",
    "TemplateSynthesizer",
    "build_synthesizer",
    "concatenate_bodies",
    "parse_skill_document",
    "truncate",
]
