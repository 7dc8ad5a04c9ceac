"""Cross-domain pattern mining."""

from .cross_domain import (
    THEME_TAXONOMY,
    CrossDomainRunResult,
    CrossDomainSynthesizer,
    extract_themes,
    find_cross_domain_patterns,
    normalize_theme_key,
    split_theme_key,
    theme_key_for,
)

__all__ = [
    "THEME_TAXONOMY",
    "CrossDomainRunResult",
    "CrossDomainSynthesizer",
    "extract_themes",
    "find_cross_domain_patterns",
    "normalize_theme_key",
    "split_theme_key",
    "theme_key_for",
]
