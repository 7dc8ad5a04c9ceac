"""Input validation utilities for public boundaries.

This module validates input arriving from the decision loop (domains,
limits, outcomes, scores) before it reaches the store.

Everything here raises ValidationError, which callers in the decision loop
are expected to treat as a programming error rather than a degraded cycle.
"""

import math
from typing import Any, Iterable, Optional

from .exceptions import ValidationError

GENERAL_DOMAIN = "general"


def validate_domain(
    domain: str,
    known_domains: Iterable[str],
    allow_general: bool = True,
) -> str:
    """Validate an operating domain name.

    Args:
        domain: Domain name (e.g., "dlmm", "perps")
        known_domains: Domains configured for this deployment
        allow_general: Whether the "general" sentinel is accepted

    Returns:
        Validated domain in lowercase

    Raises:
        ValidationError: If domain is unknown

    Examples:
        >>> validate_domain("PERPS", ["dlmm", "perps"])
        'perps'
        >>> validate_domain("forex", ["dlmm", "perps"])  # Blocked
        ValidationError: Unknown domain
    """
    if not domain or not isinstance(domain, str):
        raise ValidationError("Domain must be a non-empty string")

    normalized = domain.strip().lower()
    valid = list(known_domains)
    if allow_general:
        valid.append(GENERAL_DOMAIN)

    if normalized not in valid:
        raise ValidationError(
            f"Unknown domain: {domain}. "
            f"Supported: {', '.join(valid)}"
        )

    return normalized


def _finite_float(value: Any, name: str) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} is not numeric: {value!r}")
    if not math.isfinite(num):
        raise ValidationError(f"{name} is not finite: {num}")
    return num


def validate_unit_interval(value: Any, name: str = "value") -> float:
    """Validate a score, confidence or relevance that must lie in [0, 1].

    Raises:
        ValidationError: If not a finite number in [0, 1]

    Examples:
        >>> validate_unit_interval("0.85", "relevance_score")
        0.85
    """
    num = _finite_float(value, name)
    if not 0.0 <= num <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got: {num}")
    return num


def validate_limit(limit: Optional[int], max_limit: int = 1000) -> Optional[int]:
    """Validate a retrieval or synthesis window size.

    None passes through and means "use the configured default".

    Raises:
        ValidationError: If not an integer in [1, max_limit]

    Examples:
        >>> validate_limit("20")
        20
        >>> validate_limit(0)  # Blocked
        ValidationError: limit must be between 1 and 1000
    """
    if limit is None:
        return None

    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError(f"limit is not an integer: {limit!r}")

    if not 1 <= limit <= max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}, got: {limit}")

    return limit


def validate_resolved_outcome(outcome: str) -> str:
    """Validate a realized trade outcome ("profit" or "loss", any case).

    Raises:
        ValidationError: If outcome is pending or unknown
    """
    if not isinstance(outcome, str):
        raise ValidationError("Outcome must be a string")

    normalized = outcome.strip().lower()
    if normalized not in ("profit", "loss"):
        raise ValidationError(
            f"Invalid outcome: {outcome}. Must be 'profit' or 'loss'"
        )

    return normalized


def validate_pnl_percent(value: Any) -> float:
    """Validate a realized P&L percentage (e.g. -15.0 for a 15% loss)."""
    return _finite_float(value, "pnl_percent")
