from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


_EXIT_CODE_RX = re.compile(r"\bEXIT_CODE:\s*(-?\d+)")

_CRITICAL_RXS = [
    re.compile(r"\bcommand not found\b", re.IGNORECASE),
    re.compile(r"\bpermission denied\b", re.IGNORECASE),
    re.compile(r"\bno such file or directory\b", re.IGNORECASE),
    re.compile(r"\bfatal\b", re.IGNORECASE),
    re.compile(r"^\s*error:", re.IGNORECASE | re.MULTILINE),
]

# Success summaries that contain error-like words.
_FALSE_POSITIVE_RX = re.compile(
    r"(?<!\d)0\s*errors?\b|\berror-?free\b|\bno\s+errors?\s+found\b",
    re.IGNORECASE,
)

_STDERR_BLOCK_RX = re.compile(
    r"^STDERR:[ \t]*\n?(.*?)(?=^STDOUT:|^EXIT_CODE:|\Z)",
    re.MULTILINE | re.DOTALL,
)
_STDERR_ERROR_RX = re.compile(r"\berror\b|\bfatal\b|\bcannot\b", re.IGNORECASE)


@dataclass(frozen=True)
class Rule:
    """One classification rule. check() returns True when the rule reports a failure."""

    name: str
    check: Callable[[str], bool]


def _nonzero_exit_code(text: str) -> bool:
    for m in _EXIT_CODE_RX.finditer(text):
        if int(m.group(1)) != 0:
            return True
    return False


def _critical_phrase(text: str) -> bool:
    if _FALSE_POSITIVE_RX.search(text):
        return False
    return any(rx.search(text) for rx in _CRITICAL_RXS)


def stderr_block(text: str) -> str:
    """Return the concatenated STDERR section(s) of a bash tool result."""
    return "\n".join(m.group(1).strip() for m in _STDERR_BLOCK_RX.finditer(text)).strip()


def _stderr_error_wording(text: str) -> bool:
    err = stderr_block(text)
    if not err:
        return False
    return _STDERR_ERROR_RX.search(err) is not None


# Priority order matters: first rule that fires decides.
RULES: list[Rule] = [
    Rule("exit_code", _nonzero_exit_code),
    Rule("critical_phrase", _critical_phrase),
    Rule("stderr_error", _stderr_error_wording),
]


def explain(raw_output: str) -> str | None:
    """Name of the rule that classified raw_output as a failure, or None."""
    text = raw_output or ""
    for rule in RULES:
        if rule.check(text):
            return rule.name
    return None


def classify(raw_output: str) -> Outcome:
    """Decide success/failure of a shell command from its combined output.

    This is a heuristic. It prefers letting a real failure through as success
    over flagging a successful command whose output merely mentions errors.
    """
    return Outcome.FAILURE if explain(raw_output) is not None else Outcome.SUCCESS
