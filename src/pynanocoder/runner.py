from __future__ import annotations

import json
import time
import uuid

from rich.console import Console
from rich.panel import Panel

from .app_context import AppContext
from .errors import ProviderError
from .modes import Mode
from .session.models import AssistantTurn, Message, ResultKind, ToolCallRequest, ToolCallResult

console = Console()

SYSTEM_PROMPT = """You are pynanocoder, a local coding agent working inside the user's project.
Rules:
- Use the provided tools to inspect files and run commands when needed.
- Prefer: list_directory/find_files/search_file_contents/read_file before editing files.
- Edit existing files with string_replace (include enough context for a unique match)
  or with insert_lines/replace_lines/delete_lines after reading the line numbers.
- Do not fabricate file contents or command outputs: use tools.
- If a tool call is declined or cancelled, do not retry it unchanged; ask the user instead.
"""

PLAN_MODE_HINT = "Plan mode is active: describe the changes you would make and do not modify files."

MAX_ATTEMPTS = 3


def _tool_specs_to_openai(tools_registry) -> list[dict]:
    out = []
    for spec in tools_registry.list_specs():
        out.append({
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        })
    return out


def _prompt_char_count(messages: list[dict]) -> int:
    total = 0
    for m in messages:
        c = m.get("content")
        if isinstance(c, str):
            total += len(c)
        tc = m.get("tool_calls")
        if tc:
            total += len(json.dumps(tc, ensure_ascii=False))
    return total


def _with_ids(calls: list[ToolCallRequest], step: int) -> list[ToolCallRequest]:
    """Give every call an id so each result can be paired with its request."""
    out = []
    for i, tc in enumerate(calls):
        if not tc.id:
            tc = ToolCallRequest(id=f"tc_{step}_{i}_{uuid.uuid4().hex[:8]}", name=tc.name, arguments=tc.arguments)
        out.append(tc)
    return out


def _assistant_message(turn: AssistantTurn) -> Message:
    if not turn.tool_calls:
        return Message(role="assistant", content=turn.text or "")
    return Message(
        role="assistant",
        content=turn.text or None,
        tool_calls=[
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments or {}, ensure_ascii=False)},
            }
            for tc in turn.tool_calls
        ],
    )


def _answer_outstanding(ctx: AppContext, calls: list[ToolCallRequest], err: Exception) -> None:
    """Give every call of an aborted batch a failure result."""
    for tc in calls:
        ctx.messages.append(
            ToolCallResult(id=tc.id, content=f"Error: turn aborted: {err}", kind=ResultKind.EXECUTION_FAILURE).to_message()
        )
    if ctx.events:
        try:
            ctx.events.append("turn.error", {"error": str(err)[:2000], "tool_calls": [tc.id for tc in calls]})
        except OSError:
            pass


def build_prompt_messages(ctx: AppContext) -> list[dict]:
    msgs = [Message(role="system", content=SYSTEM_PROMPT).to_openai()]
    if ctx.mode_store.get() is Mode.PLAN:
        msgs.append(Message(role="system", content=PLAN_MODE_HINT).to_openai())
    msgs.extend(m.to_openai() for m in ctx.messages)
    return msgs


def _chat(ctx: AppContext, messages: list[dict], tools: list[dict], token) -> AssistantTurn:
    if not ctx.stream:
        return ctx.provider.chat(messages, tools=tools, token=token, stream=False)

    def _on_token(tok: str) -> None:
        console.print(tok, end="")
        console.file.flush()

    t = ctx.provider.chat(messages, tools=tools, token=token, stream=True, on_token=_on_token)
    if t.text:
        console.print()
    return t


def run_agent_once(ctx: AppContext, user_prompt: str | None, max_steps: int = 20) -> str:
    """Drive the model until it answers without tool calls.

    Every step runs under its own cancellation token; cancelling it stops
    the stream and turns all of that step's tool calls into cancelled results.
    """
    if user_prompt is not None:
        ctx.messages.append(Message(role="user", content=user_prompt))

    tools = _tool_specs_to_openai(ctx.tools)
    final_text = ""

    for step in range(max_steps):
        token = ctx.coordinator.new_turn()
        try:
            messages = build_prompt_messages(ctx)
            if ctx.events:
                ctx.events.append(
                    "llm.request",
                    {
                        "step": step,
                        "turn_id": token.turn_id,
                        "model": ctx.provider.model,
                        "mode": ctx.mode_store.get().value,
                        "messages_count": len(messages),
                        "tools_count": len(tools),
                        "prompt_chars": _prompt_char_count(messages),
                    },
                )

            # Retry transient provider failures a few times.
            turn: AssistantTurn | None = None
            last_err: ProviderError | None = None
            t0 = time.perf_counter()
            for attempt in range(MAX_ATTEMPTS):
                try:
                    turn = _chat(ctx, messages, tools, token)
                    last_err = None
                    break
                except ProviderError as e:
                    last_err = e
                    if ctx.events:
                        ctx.events.append("llm.error", {"step": step, "attempt": attempt + 1, "error": str(e)[:2000]})
                    if token.wait(0.5 * (2 ** attempt)):
                        break
            llm_elapsed_ms = int((time.perf_counter() - t0) * 1000)

            if token.is_cancelled or (turn is not None and turn.cancelled):
                if ctx.events:
                    ctx.events.append("llm.cancelled", {"step": step, "turn_id": token.turn_id})
                partial = turn.text if turn is not None else ""
                if partial:
                    ctx.messages.append(Message(role="assistant", content=partial))
                return "Generation cancelled."

            if turn is None:
                err_text = f"LLM call failed after retries: {last_err}"
                ctx.messages.append(Message(role="assistant", content=err_text))
                return err_text

            turn.tool_calls = _with_ids(turn.tool_calls, step)
            if ctx.events:
                ctx.events.append(
                    "llm.response",
                    {
                        "step": step,
                        "elapsed_ms": llm_elapsed_ms,
                        "text": (turn.text or "")[:4000],
                        "tool_calls": [
                            {"id": tc.id, "name": tc.name, "arguments": tc.arguments} for tc in turn.tool_calls
                        ],
                    },
                )

            ctx.messages.append(_assistant_message(turn))
            if turn.text:
                final_text = turn.text

            if not turn.tool_calls:
                if turn.text:
                    return turn.text
                if ctx.events:
                    ctx.events.append("llm.empty_response", {"step": step})
                continue

            try:
                results = ctx.controller.run_turn(turn.tool_calls, token)
            except Exception as e:
                # The turn is lost but the conversation must stay balanced.
                _answer_outstanding(ctx, turn.tool_calls, e)
                console.print(Panel.fit(f"Turn failed: {e}", border_style="red"))
                return f"Turn failed: {e}"
            # One tool message per call, in request order, keeps the thread balanced.
            for r in results:
                ctx.messages.append(r.to_message())

            if token.is_cancelled:
                console.print(Panel.fit("Turn cancelled.", border_style="yellow"))
                return "Turn cancelled."
        finally:
            ctx.coordinator.end_turn(token)

    return final_text or "Reached max steps without final answer."
