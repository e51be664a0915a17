"""Static safety scan for generated scripts.

A plain substring scan, run before generated code is offered for
execution.  Matches inside comments and string literals still block the
script; that is the intended behaviour of a deny-list scan.
"""

import logging

from .settings import CopilotSettings

logger = logging.getLogger(__name__)

REFLECTION_PATTERNS = (
    "__import__",
    "eval(",
    "exec(",
    "compile(",
    "globals()",
    "locals()",
    "getattr(",
    "setattr(",
    "delattr(",
    "hasattr(",
)

FILESYSTEM_PATTERNS = (
    "open(",
    "file(",
)


class CodeSafetyValidator:
    """Checks code against, in order: the configured deny-list, the fixed
    reflection / dynamic-execution list, then filesystem access."""

    def __init__(self, settings: CopilotSettings):
        self.settings = settings

    def validate(self, code: str) -> tuple[bool, str]:
        if not self.settings.enable_code_safety_validation:
            return True, ""
        error = self._first_violation(code)
        if error:
            logger.debug(f"Safety scan rejected script: {error}")
            return False, error
        return True, ""

    def _first_violation(self, code: str) -> str:
        for blocked in self.settings.blocked_operations:
            if blocked and blocked in code:
                return f"Generated code contains blocked operation: {blocked}"

        for pattern in REFLECTION_PATTERNS:
            if pattern in code:
                return f"Generated code contains potentially unsafe pattern: {pattern}"

        for pattern in FILESYSTEM_PATTERNS:
            if pattern in code:
                return "Generated code contains file system access which is not allowed"
        return ""
