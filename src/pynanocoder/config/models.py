from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..modes import Mode

OUTPUT_TRUNCATED_MARKER = "[Output truncated]"


@dataclass(frozen=True)
class ControllerSettings:
    # Max characters of a single tool result handed back to the model.
    max_tool_result_chars: int = 4000
    # Decline one call -> decline the rest of the batch without asking.
    reject_remaining_on_decline: bool = False


@dataclass
class BehaviorConfig:
    """Behavior config loaded from JSON (pynanocoder.json)."""

    default_mode: Mode = Mode.NORMAL
    max_tool_result_chars: int = 4000
    bash_timeout: int = 120
    fetch_timeout: int = 15
    disabled_tools: list[str] = field(default_factory=list)
    bash_denylist: list[str] = field(default_factory=list)
    reject_remaining_on_decline: bool = False

    loaded_from: Path | None = None

    def controller_settings(self) -> ControllerSettings:
        return ControllerSettings(
            max_tool_result_chars=self.max_tool_result_chars,
            reject_remaining_on_decline=self.reject_remaining_on_decline,
        )
