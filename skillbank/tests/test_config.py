"""Tests for configuration, validation, logging and the synthesis wiring."""

import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import anthropic
import httpx
import pytest

from skillbank.config import DEFAULT_DOMAINS, LearningConfig
from skillbank.exceptions import MalformedResponseError, TransientExternalError, ValidationError
from skillbank.logging_config import DecisionContext, setup_logging
from skillbank.synthesis import PromptKind, TemplateSynthesizer, build_synthesizer
from skillbank.synthesis.anthropic_synthesizer import AnthropicSynthesizer
from skillbank.utils.timeout import call_with_timeout, with_timeout
from skillbank.validation import (
    validate_domain,
    validate_limit,
    validate_pnl_percent,
    validate_resolved_outcome,
    validate_unit_interval,
)

STRATEGY_EVIDENCE = {"domain": "perps", "decisions": []}


def fake_client(text="# Title\n\nBody", error=None, delay=0.0):
    """Anthropic client double whose messages.create is an AsyncMock."""
    async def create(**kwargs):
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])

    client = Mock()
    client.messages.create = AsyncMock(side_effect=create)
    return client


class TestLearningConfig:
    """Test suite for LearningConfig."""

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("SKILLBANK_DOMAINS", raising=False)
        monkeypatch.delenv("SKILLBANK_SIMILARITY_THRESHOLD", raising=False)

        config = LearningConfig.from_env()

        assert config.domains == DEFAULT_DOMAINS
        assert config.similarity_threshold == 0.70
        assert config.validate_policy_parameters() == (True, None)

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SKILLBANK_DOMAINS", "Perps, spot")
        monkeypatch.setenv("SKILLBANK_MERGE_INTERVAL_CYCLES", "5")
        monkeypatch.setenv("SKILLBANK_LOG_JSON", "no")

        config = LearningConfig.from_env()

        assert config.domains == ("perps", "spot")
        assert config.merge_interval_cycles == 5
        assert config.log_json is False

    @pytest.mark.parametrize("overrides,message", [
        ({"domains": ()}, "at least one domain"),
        ({"domains": ("perps", "general")}, "reserved"),
        ({"similarity_threshold": 1.2}, "similarity_threshold"),
        ({"min_sample_size": 0}, "min_sample_size"),
        ({"inline_timeout_seconds": 0}, "timeouts"),
        ({"min_relevance_score": 1.5}, "min_relevance_score"),
        ({"max_recommended_skills": 0}, "max_recommended_skills"),
    ])
    def test_invalid_policy(self, overrides, message):
        is_valid, error = LearningConfig(**overrides).validate_policy_parameters()

        assert is_valid is False
        assert message in error

    def test_repr_masks_api_key(self):
        config = LearningConfig(anthropic_api_key="sk-ant-secret")

        assert "sk-ant-secret" not in repr(config)
        assert "***REDACTED***" in repr(config)


class TestValidation:
    """Test suite for boundary validation helpers."""

    def test_domain(self):
        assert validate_domain(" PERPS ", DEFAULT_DOMAINS) == "perps"
        assert validate_domain("general", DEFAULT_DOMAINS) == "general"

        with pytest.raises(ValidationError):
            validate_domain("general", DEFAULT_DOMAINS, allow_general=False)
        with pytest.raises(ValidationError):
            validate_domain("", DEFAULT_DOMAINS)

    @pytest.mark.parametrize("value", [-0.1, 1.5, "high", float("nan")])
    def test_unit_interval_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_unit_interval(value, "relevance_score")

    def test_limit(self):
        assert validate_limit(None) is None
        assert validate_limit("20") == 20
        with pytest.raises(ValidationError):
            validate_limit(0)
        with pytest.raises(ValidationError):
            validate_limit(5000)

    def test_outcome(self):
        assert validate_resolved_outcome("LOSS") == "loss"
        with pytest.raises(ValidationError):
            validate_resolved_outcome("pending")

    def test_pnl_percent(self):
        assert validate_pnl_percent("-15") == -15.0
        with pytest.raises(ValidationError):
            validate_pnl_percent(float("inf"))


class TestLogging:
    """Test suite for structured logging setup."""

    def test_json_output(self, capsys, restore_logging):
        logger = setup_logging(level="INFO", use_json=True)

        logging.getLogger("skillbank.test").info("skill_merged", extra={"domain": "dlmm"})

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["message"] == "skill_merged"
        assert record["domain"] == "dlmm"
        assert record["level"] == "INFO"
        assert len(logger.handlers) == 1

    def test_decision_id_attached(self, capsys, restore_logging):
        """Test records logged inside a decision scope carry its id."""
        setup_logging(level="INFO", use_json=True)

        DecisionContext.set_decision_id("d-7")
        try:
            logging.getLogger("skillbank.test").info("skill_usage_tracked")
        finally:
            DecisionContext.clear()

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["decision_id"] == "d-7"

    def test_quiet_client_loggers(self, restore_logging):
        setup_logging(level="DEBUG", use_json=False)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_decision_context(self):
        DecisionContext.set_decision_id("d-42")
        assert DecisionContext.get_extra() == {"decision_id": "d-42"}

        DecisionContext.clear()
        assert DecisionContext.get_extra() == {}


class TestTimeouts:
    """Test suite for timeout helpers."""

    @pytest.mark.asyncio
    async def test_call_with_timeout(self):
        with pytest.raises(TransientExternalError) as exc_info:
            await call_with_timeout(asyncio.sleep(1), timeout=0.01, operation="merge")

        assert exc_info.value.operation == "merge"

    @pytest.mark.asyncio
    async def test_decorator(self):
        @with_timeout(0.01)
        async def slow_compose():
            await asyncio.sleep(1)

        @with_timeout(1.0)
        async def fast_compose():
            return "done"

        assert await fast_compose() == "done"
        with pytest.raises(TransientExternalError, match="slow_compose"):
            await slow_compose()


class TestSynthesizerWiring:
    """Test suite for build_synthesizer and AnthropicSynthesizer."""

    def test_templates_without_api_key(self, config):
        assert isinstance(build_synthesizer(config), TemplateSynthesizer)

    def test_anthropic_with_api_key(self):
        synthesizer = build_synthesizer(LearningConfig(anthropic_api_key="sk-ant-test"))
        assert isinstance(synthesizer, AnthropicSynthesizer)

    @pytest.mark.asyncio
    async def test_compose(self, config):
        client = fake_client(text="  # Funding flips\n\n- **Watch funding**  ")
        synthesizer = AnthropicSynthesizer(config, client=client)

        text = await synthesizer.compose(PromptKind.STRATEGY_SKILL, STRATEGY_EVIDENCE)

        assert text == "# Funding flips\n\n- **Watch funding**"
        request = client.messages.create.call_args.kwargs
        assert request["model"] == config.model
        assert request["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, config):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
        synthesizer = AnthropicSynthesizer(config, client=fake_client(error=error))

        with pytest.raises(TransientExternalError):
            await synthesizer.compose(PromptKind.STRATEGY_SKILL, STRATEGY_EVIDENCE)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        config = LearningConfig(synthesis_timeout_seconds=0.01)
        synthesizer = AnthropicSynthesizer(config, client=fake_client(delay=1.0))

        with pytest.raises(TransientExternalError):
            await synthesizer.compose(PromptKind.STRATEGY_SKILL, STRATEGY_EVIDENCE)

    @pytest.mark.asyncio
    async def test_empty_completion(self, config):
        synthesizer = AnthropicSynthesizer(config, client=fake_client(text="   "))

        with pytest.raises(MalformedResponseError):
            await synthesizer.compose(PromptKind.STRATEGY_SKILL, STRATEGY_EVIDENCE)
