"""Decision quality judge: post-hoc feedback loop and inline gate."""

from .feedback import JudgeFeedbackLoop
from .inline import InlineJudge, apply_modifications, format_inline_result, was_modified

__all__ = [
    "InlineJudge",
    "JudgeFeedbackLoop",
    "apply_modifications",
    "format_inline_result",
    "was_modified",
]
