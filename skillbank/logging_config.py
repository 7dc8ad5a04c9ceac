"""
Structured logging for the skill lifecycle engine.

Every record passes through DecisionContextFilter, so anything logged while a
decision is being tracked or resolved carries its ``decision_id`` without each
call site adding it.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

# Propagates through asyncio tasks, so concurrent domain cycles keep their own id
decision_id_var: ContextVar[Optional[str]] = ContextVar("decision_id", default=None)

# Client libraries that are chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "anthropic")


class DecisionContextFilter(logging.Filter):
    """Attach the current decision id to records that do not set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "decision_id", None) is None:
            decision_id = decision_id_var.get()
            if decision_id is not None:
                record.decision_id = decision_id
        return True


def setup_logging(level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level name
        use_json: JSON lines for production; plain text for local runs

    Returns:
        The root logger

    Example:
        >>> setup_logging(level="DEBUG", use_json=False)
        >>> get_logger("skillbank.skills.merger").info("skill_merged", extra={"domain": "dlmm"})
    """
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(DecisionContextFilter())

    if use_json:
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
                rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; use ``get_logger(__name__)``."""
    return logging.getLogger(name)


class DecisionContext:
    """Scope log records to the decision currently being processed."""

    @classmethod
    def set_decision_id(cls, decision_id: str):
        decision_id_var.set(decision_id)

    @classmethod
    def get_decision_id(cls) -> Optional[str]:
        return decision_id_var.get()

    @classmethod
    def clear(cls):
        decision_id_var.set(None)

    @classmethod
    def get_extra(cls) -> dict:
        """``extra`` dict for loggers that bypass the root handler's filter."""
        decision_id = cls.get_decision_id()
        return {"decision_id": decision_id} if decision_id else {}
