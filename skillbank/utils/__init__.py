"""Shared async helpers."""

from .timeout import call_with_timeout, with_timeout

__all__ = ["call_with_timeout", "with_timeout"]
