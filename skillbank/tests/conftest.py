"""
Shared pytest fixtures for skillbank testing.
Provides an in-memory store, skill/decision factories and a scripted synthesizer.
"""
import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from skillbank.config import LearningConfig
from skillbank.database.connection import create_engine_from_url, init_db
from skillbank.models.decision import ClosedDecision, InMemoryDecisionSource, PendingDecision
from skillbank.models.skill import SkillRecord, SkillType
from skillbank.skills.store import SkillStore
from skillbank.tests.fakes import BASE_TIME, ScriptedSynthesizer


@pytest.fixture
def config():
    """Default policy thresholds with a template-only synthesizer."""
    return LearningConfig(anthropic_api_key="", log_json=False)

@pytest.fixture
def session_factory():
    """In-memory SQLite database with every table created."""
    engine = create_engine_from_url("sqlite://")
    init_db(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()

@pytest.fixture
def store(session_factory, config):
    return SkillStore(session_factory, config)

@pytest.fixture
def synthesizer():
    return ScriptedSynthesizer()

@pytest.fixture
def decision_source():
    return InMemoryDecisionSource()

@pytest.fixture
def skill_factory():
    """
    Factory fixture for skill records.

    Usage:
        def test_example(skill_factory):
            skill = skill_factory(domain="dlmm", skill_type=SkillType.WARNING)
    """
    counter = {"n": 0}

    def _create_skill(
        domain: str = "dlmm",
        skill_type: SkillType = SkillType.WARNING,
        title: str = None,
        body: str = None,
        created_at: datetime = None,
        theme_key: str = None,
        source_decision_ids: list = None,
    ):
        counter["n"] += 1
        n = counter["n"]
        return SkillRecord.new(
            domain=domain,
            skill_type=skill_type,
            title=title or f"Lesson {n}",
            body=body or f"- **Unique lesson number {n}** applies here\n- keep the {n} rule distinct",
            created_at=created_at or BASE_TIME + timedelta(minutes=n),
            theme_key=theme_key,
            source_decision_ids=source_decision_ids or [f"src-{n}"],
        )

    return _create_skill

@pytest.fixture
def decision_factory():
    """
    Factory fixture for closed decisions.

    Usage:
        def test_example(decision_factory):
            decision = decision_factory(domain="perps", outcome="loss", pnl_percent=-15.0)
    """
    counter = {"n": 0}

    def _create_decision(
        domain: str = "dlmm",
        outcome: str = "profit",
        pnl_percent: float = 5.0,
        reasoning: str = "Entering on steady conditions",
        action: str = "open",
        target: str = "SOL-USDC",
        decision_id: str = None,
        closed_at: datetime = None,
        amount_usd: float = 100.0,
        confidence: float = 0.6,
    ):
        counter["n"] += 1
        n = counter["n"]
        return ClosedDecision(
            id=decision_id or f"{domain}-decision-{n}",
            domain=domain,
            reasoning=reasoning,
            action=action,
            target=target,
            amount_usd=amount_usd,
            confidence=confidence,
            outcome=outcome,
            realized_pnl=amount_usd * pnl_percent / 100,
            pnl_percent=pnl_percent,
            closed_at=closed_at or BASE_TIME + timedelta(hours=n),
        )

    return _create_decision

@pytest.fixture
def pending_factory():
    def _create_pending(
        domain: str = "perps",
        action: str = "open_long",
        amount_usd: float = 100.0,
        confidence: float = 0.7,
        available_balance: float = 1000.0,
        reasoning: str = "Breakout above resistance with rising volume",
    ):
        return PendingDecision(
            domain=domain,
            action=action,
            reasoning=reasoning,
            amount_usd=amount_usd,
            confidence=confidence,
            target="BTC-PERP",
            available_balance=available_balance,
        )

    return _create_pending


@pytest.fixture
def restore_logging():
    """Put the root logger back after a test calls setup_logging()."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
