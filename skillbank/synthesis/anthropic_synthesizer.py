"""Anthropic-backed synthesizer.

Each call is bounded by a timeout. Rate limits, overload, connection
failures and timeouts surface as TransientExternalError; empty output as
MalformedResponseError. Nothing is retried in place.
"""

from typing import Optional

import anthropic
from anthropic import AsyncAnthropic

from ..config import LearningConfig
from ..exceptions import ExternalServiceError, MalformedResponseError, TransientExternalError
from ..logging_config import get_logger
from ..utils.timeout import call_with_timeout
from .base import PromptKind
from .prompts import build_prompt

logger = get_logger(__name__)

_MAX_TOKENS = {
    PromptKind.MERGE: 2048,
    PromptKind.GENERAL_SKILL: 1500,
    PromptKind.WARNING_SKILL: 1200,
    PromptKind.PATTERN_SKILL: 1200,
    PromptKind.STRATEGY_SKILL: 2048,
    PromptKind.JUDGE_POST_HOC: 1000,
    PromptKind.JUDGE_INLINE: 500,
}


class AnthropicSynthesizer:
    """Synthesizer that calls the Anthropic Messages API.

    Example:
        >>> synthesizer = AnthropicSynthesizer(LearningConfig.from_env())
        >>> text = await synthesizer.compose(PromptKind.MERGE, evidence)
    """

    def __init__(self, config: LearningConfig, client: Optional[AsyncAnthropic] = None):
        self.config = config
        self._client = client or AsyncAnthropic(api_key=config.anthropic_api_key or None)

    def _model_for(self, kind: PromptKind, evidence: dict) -> str:
        if kind == PromptKind.JUDGE_INLINE and evidence.get("speed", "fast") == "fast":
            return self.config.fast_model
        return self.config.model

    def _timeout_for(self, kind: PromptKind) -> float:
        if kind == PromptKind.JUDGE_INLINE:
            return self.config.inline_timeout_seconds
        return self.config.synthesis_timeout_seconds

    async def compose(self, kind: PromptKind, evidence: dict) -> str:
        kind = PromptKind(kind)
        prompt = build_prompt(kind, evidence)
        model = self._model_for(kind, evidence)

        try:
            response = await call_with_timeout(
                self._client.messages.create(
                    model=model,
                    max_tokens=_MAX_TOKENS[kind],
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self._timeout_for(kind),
                operation=kind.value,
            )
        except (
            anthropic.RateLimitError,
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.InternalServerError,
        ) as e:
            raise TransientExternalError(str(e), operation=kind.value, context={"model": model})
        except anthropic.APIError as e:
            raise ExternalServiceError(str(e), operation=kind.value, context={"model": model})

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise MalformedResponseError("empty completion", operation=kind.value)

        logger.debug(
            "synthesis_completed",
            extra={"kind": kind.value, "model": model, "chars": len(text)},
        )
        return text
