from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from rich.console import RenderableType
from rich.text import Text

from .cancellation import CancellationToken
from .classify import Outcome, classify, explain
from .config.models import OUTPUT_TRUNCATED_MARKER, ControllerSettings
from .errors import ToolValidationError, TurnCancelled, UnknownTool
from .events.store import EventStore
from .modes import ModeStore, default_store
from .session.models import ResultKind, ToolCallRequest, ToolCallResult
from .tools.approval import Approver, default_preview, evaluate
from .tools.base import Tool, ToolContext
from .tools.registry import ToolRegistry

CANCELLED_MESSAGE = "Tool execution was cancelled by the user."
REJECTED_MESSAGE = "Tool execution was declined by the user."


def truncate_output(content: str, cap: int) -> tuple[str, bool]:
    """Cap content at exactly `cap` characters plus a trailing marker."""
    if len(content) <= cap:
        return content, False
    return content[:cap] + "\n\n" + OUTPUT_TRUNCATED_MARKER, True


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


@dataclass
class InvocationController:
    """Runs the tool calls of one assistant turn.

    Each request goes Received -> Validating -> AwaitingApproval -> Executing
    and ends in exactly one ToolCallResult. Requests run one at a time, in
    order, so a later edit always sees an earlier edit's write, and a
    cancelled token affects everything not yet finished.
    """

    tools: ToolRegistry
    approver: Approver
    cwd: str
    mode_store: ModeStore = field(default_factory=default_store)
    settings: ControllerSettings = field(default_factory=ControllerSettings)
    events: EventStore | None = None
    session_id: str | None = None

    def run_turn(self, requests: Sequence[ToolCallRequest], token: CancellationToken) -> list[ToolCallResult]:
        results: list[ToolCallResult] = []
        declined = False
        t0 = time.perf_counter()

        for req in requests:
            if token.is_cancelled:
                results.append(self._cancelled(req, stage="received"))
                continue
            if declined and self.settings.reject_remaining_on_decline:
                results.append(self._rejected(req, prompted=False))
                continue
            res = self._run_one(req, token)
            if res.kind is ResultKind.USER_REJECTED:
                declined = True
            results.append(res)

        if self.events:
            counts: dict[str, int] = {}
            for r in results:
                counts[r.kind.value] = counts.get(r.kind.value, 0) + 1
            self.events.append(
                "turn.summary",
                {
                    "turn_id": token.turn_id,
                    "requests": len(requests),
                    "kinds": counts,
                    "cancelled": token.is_cancelled,
                    "elapsed_ms": _elapsed_ms(t0),
                },
            )
        return results

    # ------------------------------------------------------------------
    # per-request lifecycle
    # ------------------------------------------------------------------

    def _run_one(self, req: ToolCallRequest, token: CancellationToken) -> ToolCallResult:
        tool = self.tools.get_optional(req.name)
        if tool is None:
            msg = f"Error: {UnknownTool(req.name)}"
            self._log("tool.missing", req)
            return self._finish(req, msg, ResultKind.EXECUTION_FAILURE)

        args: Any = req.arguments if req.arguments is not None else {}
        self._log("tool.call", req, kind=tool.spec.kind, args=args)

        # Validating
        try:
            vr = tool.validate(args)
            error = None if vr.valid else (vr.error or "Invalid arguments.")
        except ToolValidationError as e:
            error = str(e)
        except Exception as e:
            error = f"Validation error: {e}"
        if error is not None:
            self._log("tool.validation_failed", req, error=error[:2000])
            return self._finish(req, error, ResultKind.VALIDATION_FAILURE)

        if token.is_cancelled:
            return self._cancelled(req, stage="validating")

        # AwaitingApproval
        decision = evaluate(tool, args, self.mode_store)
        self._log(
            "tool.approval",
            req,
            required=decision.required,
            rationale=decision.rationale,
            mode=self.mode_store.get().value,
        )
        if decision.required:
            approved = self.approver.confirm(req, self._render(tool, args, None), token)
            if token.is_cancelled:
                return self._cancelled(req, stage="awaiting_approval")
            if not approved:
                return self._rejected(req, prompted=True)

        # Executing
        ctx = ToolContext(cwd=self.cwd, token=token, session_id=self.session_id)
        t0 = time.perf_counter()
        try:
            content = tool.execute(ctx, args)
            kind = ResultKind.SUCCESS
        except TurnCancelled:
            return self._cancelled(req, stage="executing")
        except Exception as e:
            content = f"Error: {e}"
            kind = ResultKind.EXECUTION_FAILURE
        elapsed = _elapsed_ms(t0)

        if token.is_cancelled:
            return self._cancelled(req, stage="executing")

        content = "" if content is None else str(content)
        rule = None
        if kind is ResultKind.SUCCESS and tool.spec.kind == "shell":
            if classify(content) is Outcome.FAILURE:
                kind = ResultKind.EXECUTION_FAILURE
                rule = explain(content)

        raw_len = len(content)
        content, truncated = truncate_output(content, self.settings.max_tool_result_chars)
        self._log(
            "tool.result",
            req,
            kind=kind.value,
            elapsed_ms=elapsed,
            content_len=raw_len,
            content_preview=content[:4000],
            classification_rule=rule,
            truncated=truncated,
        )
        return self._finish(req, content, kind, tool=tool, args=args)

    # ------------------------------------------------------------------
    # terminal states
    # ------------------------------------------------------------------

    def _cancelled(self, req: ToolCallRequest, *, stage: str) -> ToolCallResult:
        self._log("tool.cancelled", req, stage=stage)
        return self._finish(req, CANCELLED_MESSAGE, ResultKind.CANCELLED)

    def _rejected(self, req: ToolCallRequest, *, prompted: bool) -> ToolCallResult:
        self._log("tool.rejected", req, prompted=prompted)
        return self._finish(req, REJECTED_MESSAGE, ResultKind.USER_REJECTED)

    def _finish(
        self,
        req: ToolCallRequest,
        content: str,
        kind: ResultKind,
        *,
        tool: Tool | None = None,
        args: Any = None,
    ) -> ToolCallResult:
        result = ToolCallResult(id=req.id, content=content, kind=kind)
        if tool is not None:
            rendered = self._render(tool, args, content)
        else:
            style = "red" if result.is_error else "yellow"
            rendered = Text(content, style=style)
        try:
            self.approver.show_result(req, rendered, kind.value)
        except Exception as e:
            self._log("ui.error", req, error=str(e)[:2000])
        return result

    def _render(self, tool: Tool, args: Any, result: str | None) -> RenderableType:
        try:
            return tool.format(args, result)
        except Exception as e:
            self._log("tool.format_error", None, tool=tool.spec.name, error=str(e)[:2000])
            if result is None:
                return default_preview(tool.spec.name, args if isinstance(args, dict) else {"arguments": args})
            return Text(result)

    def _log(self, event_type: str, req: ToolCallRequest | None, **data: Any) -> None:
        if not self.events:
            return
        if req is not None:
            data = {"tool": req.name, "tool_call_id": req.id, **data}
        self.events.append(event_type, data)
