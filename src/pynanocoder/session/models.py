from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]

@dataclass
class Message:
    role: Role
    # content can be null in some OpenAI-compatible APIs when tool_calls are present
    content: str | None
    tool_call_id: str | None = None
    # Assistant-only: OpenAI-compatible tool call representation
    tool_calls: list[dict[str, Any]] | None = None

    def to_openai(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        if self.role == "assistant" and self.tool_calls is not None:
            d["tool_calls"] = self.tool_calls
        return d

@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)  # parsed json

class ResultKind(str, Enum):
    SUCCESS = "success"
    VALIDATION_FAILURE = "validation_failure"
    EXECUTION_FAILURE = "execution_failure"
    USER_REJECTED = "user_rejected"
    CANCELLED = "cancelled"

@dataclass(frozen=True)
class ToolCallResult:
    id: str
    content: str
    kind: ResultKind

    @property
    def is_error(self) -> bool:
        return self.kind in (ResultKind.VALIDATION_FAILURE, ResultKind.EXECUTION_FAILURE)

    def to_message(self) -> Message:
        return Message(role="tool", content=self.content, tool_call_id=self.id)

@dataclass
class AssistantTurn:
    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    cancelled: bool = False
