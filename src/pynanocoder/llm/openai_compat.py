from __future__ import annotations

import json
import urllib.request
import urllib.error
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..cancellation import CancellationToken
from ..errors import ProviderError
from ..session.models import AssistantTurn, ToolCallRequest


def _parse_args(arg_str: Any) -> dict[str, Any]:
    if not isinstance(arg_str, str):
        return arg_str if isinstance(arg_str, dict) else {}
    try:
        args = json.loads(arg_str or "{}")
    except json.JSONDecodeError:
        # best-effort: empty args; the validator will report missing fields
        return {}
    return args if isinstance(args, dict) else {}


def parse_sse_stream(
    lines: Iterable[bytes],
    *,
    token: CancellationToken | None = None,
    on_token: Callable[[str], None] | None = None,
) -> AssistantTurn:
    """Accumulate an OpenAI-style SSE stream into one AssistantTurn.

    Stops early (turn.cancelled=True) once token is set.
    """
    text_parts: list[str] = []
    # tool_calls are streamed as deltas by index; accumulate into strings.
    tc_by_index: dict[int, dict[str, Any]] = {}
    cancelled = False

    for raw_line in lines:
        if token is not None and token.is_cancelled:
            cancelled = True
            break
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line.startswith("data:"):
            continue
        data_str = line[len("data:"):].strip()
        if data_str == "[DONE]":
            break
        try:
            ev = json.loads(data_str)
        except json.JSONDecodeError:
            continue
        choices = ev.get("choices") or []
        if not choices:
            continue
        delta = choices[0].get("delta") or {}
        if delta.get("content"):
            chunk = str(delta["content"])
            text_parts.append(chunk)
            if on_token:
                on_token(chunk)
        for tc in delta.get("tool_calls") or []:
            idx = int(tc.get("index", 0))
            cur = tc_by_index.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc.get("id"):
                cur["id"] = tc["id"]
            fn = tc.get("function") or {}
            if fn.get("name"):
                cur["name"] = fn["name"]
            if fn.get("arguments"):
                cur["arguments"] += str(fn["arguments"])

    if token is not None and token.is_cancelled:
        cancelled = True

    turn = AssistantTurn(text="".join(text_parts), cancelled=cancelled)
    if cancelled:
        # half-streamed tool calls are never executed
        return turn
    for idx in sorted(tc_by_index):
        tc = tc_by_index[idx]
        turn.tool_calls.append(
            ToolCallRequest(id=str(tc["id"] or ""), name=str(tc["name"] or ""), arguments=_parse_args(tc["arguments"]))
        )
    return turn


@dataclass
class OpenAICompatProvider:
    """
    Minimal OpenAI-compatible Chat Completions client.
    Works with OpenAI and many compatible gateways (OpenRouter, vLLM, LM Studio, Ollama, etc.)
    """
    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    timeout: int = 120

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        token: CancellationToken | None = None,
        stream: bool = True,
        on_token: Callable[[str], None] | None = None,
    ) -> AssistantTurn:
        url = self.base_url.rstrip("/") + "/chat/completions"
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.2,
            "stream": stream,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = urllib.request.Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers, method="POST")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                # Closing the response unblocks a reader stuck waiting on the socket.
                unregister = token.add_callback(resp.close) if token is not None else (lambda: None)
                try:
                    if stream:
                        return parse_sse_stream(resp, token=token, on_token=on_token)
                    raw = resp.read().decode("utf-8", errors="replace")
                finally:
                    unregister()
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise ProviderError(f"Provider HTTPError {e.code}: {e.reason}\n{body}")
        except urllib.error.URLError as e:
            raise ProviderError(f"Provider URLError: {e}")
        except (OSError, ValueError) as e:
            # reading from a response closed by cancellation
            if token is not None and token.is_cancelled:
                return AssistantTurn(cancelled=True)
            raise ProviderError(f"Provider stream error: {e}")

        if token is not None and token.is_cancelled:
            return AssistantTurn(cancelled=True)
        try:
            msg = json.loads(raw)["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected provider response: {e}\n{raw[:2000]}")
        turn = AssistantTurn(text=msg.get("content") or "")
        for tc in msg.get("tool_calls") or []:
            fn = tc.get("function") or {}
            turn.tool_calls.append(
                ToolCallRequest(id=str(tc.get("id") or ""), name=str(fn.get("name") or ""), arguments=_parse_args(fn.get("arguments")))
            )
        return turn
