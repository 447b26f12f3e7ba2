from __future__ import annotations

import ipaddress
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any
from urllib.parse import urlparse

from rich.console import RenderableType
from rich.text import Text

from ..approval import NEVER
from ..base import BaseTool, ToolContext, ToolSpec, ValidationResult, check_schema
from ...errors import ToolExecutionError

_CHUNK = 64 * 1024
MAX_FETCH_BYTES = 2 * 1024 * 1024


class _HTMLTextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"}:
            self._skip_depth += 1

    def handle_endtag(self, tag: str):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"} and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str):  # type: ignore[override]
        if self._skip_depth > 0:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def text(self) -> str:
        joined = "\n".join(self._parts)
        # collapse excessive blank lines
        joined = re.sub(r"\n{3,}", "\n\n", joined)
        return joined.strip()


def private_host_reason(host: str) -> str | None:
    """Why host must not be fetched, or None. Only literal names/IPs are checked."""
    h = host.strip("[]").lower()
    if h in {"localhost", "localhost.localdomain"} or h.endswith(".localhost") or h.endswith(".local"):
        return f"Refusing to fetch local host: {host}"
    try:
        ip = ipaddress.ip_address(h)
    except ValueError:
        return None
    if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast or ip.is_unspecified:
        return f"Refusing to fetch private or reserved address: {host}"
    return None


class _CheckedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Applies the private-host check to every redirect target."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        host = urlparse(newurl).hostname
        if not host:
            raise ToolExecutionError(f"Refusing redirect to URL without a host: {newurl}")
        reason = private_host_reason(host)
        if reason:
            raise ToolExecutionError(f"Redirect blocked. {reason}")
        return super().redirect_request(req, fp, code, msg, headers, newurl)


@dataclass
class FetchUrlTool(BaseTool):
    """Fetch a URL and return readable text.

    Uses only the standard library HTTP client; HTML is reduced to its text.
    """

    spec: ToolSpec = ToolSpec(
        name="fetch_url",
        description="Fetch a URL and return its text content (HTML will be converted to plain text).",
        approval=NEVER,
        kind="network",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The http(s) URL to fetch."},
            },
            "required": ["url"],
        },
    )
    timeout: int = 15

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        url = args["url"].strip()
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"}:
            return ValidationResult.fail(f"Invalid URL (only http/https are supported): {url}")
        if not parsed.hostname:
            return ValidationResult.fail(f"Invalid URL (missing host): {url}")
        reason = private_host_reason(parsed.hostname)
        if reason:
            return ValidationResult.fail(reason)
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        url = args["url"].strip()
        req = urllib.request.Request(url, headers={"User-Agent": "pynanocoder/0.1"})
        chunks: list[bytes] = []
        size = 0
        try:
            opener = urllib.request.build_opener(_CheckedRedirectHandler)
            with opener.open(req, timeout=self.timeout) as resp:
                content_type = (resp.headers.get("Content-Type") or "").lower()
                while size < MAX_FETCH_BYTES:
                    ctx.token.raise_if_cancelled()
                    chunk = resp.read(_CHUNK)
                    if not chunk:
                        break
                    chunks.append(chunk)
                    size += len(chunk)
        except urllib.error.HTTPError as e:
            raise ToolExecutionError(f"Failed to fetch URL: HTTP {e.code}: {e.reason}")
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise ToolExecutionError(f"Failed to fetch URL: {e}")

        raw = b"".join(chunks)
        text = raw.decode("utf-8", errors="replace")
        if not text.strip():
            raise ToolExecutionError("No content returned from URL")

        if "html" in content_type or "<html" in text[:2000].lower():
            parser = _HTMLTextExtractor()
            parser.feed(text)
            text = parser.text()

        if size >= MAX_FETCH_BYTES:
            text += f"\n\n[Content truncated - stopped reading after {MAX_FETCH_BYTES} bytes]"
        return text

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        url = str(args.get("url") or "unknown")
        if result is None:
            return Text(f"⚒ fetch_url {url}", style="cyan")
        return Text(f"⚒ fetch_url {url}: {len(result):,} characters (~{(len(result) + 3) // 4} tokens)", style="green")
