from __future__ import annotations

import json
import signal
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .app_context import AppContext
from .config.loader import load_behavior_config
from .errors import PynanocoderError
from .events.store import EventStore
from .llm.factory import load_provider_registry
from .modes import Mode, ModeStore
from .runner import run_agent_once
from .tools.approval import describe_policy, evaluate
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry

app = typer.Typer(add_completion=False, help="pynanocoder: terminal coding agent with gated tool execution.")
console = Console()


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser()
    if not cwd.is_absolute():
        cwd = (Path.cwd() / cwd).resolve()
    else:
        cwd = cwd.resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory, got: {cwd}")
    return cwd


def _parse_mode(mode: str | None) -> Mode | None:
    if mode is None:
        return None
    try:
        return Mode.parse(mode)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _build_context(
    *,
    provider: str | None,
    config: Path,
    cwd: Path | None,
    mode: str | None,
    yes: bool,
    behavior_config: Path | None,
    stream: bool,
) -> AppContext:
    cwd = _resolve_cwd(cwd)
    try:
        reg = load_provider_registry(config)
        cfg = reg.get(provider)
        ctx = AppContext.from_env(
            cwd=cwd,
            provider_cfg=cfg,
            auto_approve=yes,
            mode=_parse_mode(mode),
            behavior_config=behavior_config,
            stream=stream,
            config_path=Path(config).expanduser().resolve(),
        )
    except PynanocoderError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)

    table = Table.grid(padding=(0, 2))
    table.add_row("📁 [bold green]cwd[/bold green]", f"[bright_cyan]{ctx.cwd}[/bright_cyan]")
    table.add_row("🆔 [bold green]session[/bold green]", f"[bright_cyan]{ctx.session_id}[/bright_cyan]")
    table.add_row("🔌 [bold green]provider[/bold green]", f"[bright_cyan]{cfg.name}[/bright_cyan]")
    table.add_row("🧠 [bold green]model[/bold green]", f"[bright_cyan]{cfg.model}[/bright_cyan]")
    table.add_row("🚦 [bold green]mode[/bold green]", f"[bright_cyan]{ctx.mode_store.get().value}[/bright_cyan]")
    table.add_row("⚙️ [bold green]behavior_config[/bold green]", f"[bright_cyan]{ctx.behavior.loaded_from or '(none)'}[/bright_cyan]")
    table.add_row("📦 [bold green]known providers[/bold green]", f"[bright_cyan]{', '.join(reg.names())}[/bright_cyan]")
    console.print(Align.center(Panel(table, title="[bold magenta]pynanocoder[/bold magenta]", border_style="bright_blue")))
    return ctx


@contextmanager
def _ctrl_c_cancels_turn(ctx: AppContext):
    """While a turn runs, Ctrl-C cancels its token instead of killing the process."""

    def _handler(signum, frame):
        ctx.coordinator.cancel_from_signal()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _run_turn(ctx: AppContext, prompt: str, max_steps: int) -> bool:
    """Run one prompt. A fault ends the turn, not the session; returns False then."""
    try:
        with _ctrl_c_cancels_turn(ctx):
            answer = run_agent_once(ctx, user_prompt=prompt, max_steps=max_steps)
    except Exception as e:
        console.print(f"\n[red]Turn failed: {e}[/red]")
        return False
    console.print("\n[bold]Assistant:[/bold]\n")
    console.print(answer)
    return True


def _mode_command(ctx: AppContext, line: str) -> None:
    parts = line.split()
    if len(parts) == 1:
        console.print(f"mode: [bold]{ctx.mode_store.get().value}[/bold]")
        return
    arg = parts[1]
    if arg == "next":
        new = ctx.mode_store.cycle()
    else:
        try:
            ctx.mode_store.set(arg)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            return
        new = ctx.mode_store.get()
    if ctx.events:
        ctx.events.append("mode.changed", {"mode": new.value})
    console.print(f"mode -> [bold]{new.value}[/bold]")


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="User prompt to run once."),
    provider: str = typer.Option(None, "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pynanocoder.yaml"), "--config", help="YAML config path (default: ./pynanocoder.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    mode: str = typer.Option(None, "--mode", help="Approval mode: normal, plan or auto-accept."),
    yes: bool = typer.Option(False, "--yes", help="Approve every confirmation prompt (unattended runs)."),
    max_steps: int = typer.Option(25, "--max-steps", help="Max tool/LLM iterations."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pynanocoder.json) path."),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream tokens while generating."),
):
    """Run one prompt through the agent and print the answer."""
    ctx = _build_context(
        provider=provider, config=config, cwd=cwd, mode=mode, yes=yes, behavior_config=behavior_config, stream=stream
    )
    console.print(f"\n[bold]You:[/bold] {prompt}\n")
    if not _run_turn(ctx, prompt, max_steps):
        raise typer.Exit(code=1)


@app.command()
def repl(
    provider: str = typer.Option(None, "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pynanocoder.yaml"), "--config", help="YAML config path (default: ./pynanocoder.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    mode: str = typer.Option(None, "--mode", help="Approval mode: normal, plan or auto-accept."),
    yes: bool = typer.Option(False, "--yes", help="Approve every confirmation prompt (unattended runs)."),
    max_steps: int = typer.Option(100, "--max-steps", help="Max tool/LLM iterations per message."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pynanocoder.json) path."),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream tokens while generating."),
):
    """Interactive session. `/mode [name|next]` shows or changes the approval mode."""
    ctx = _build_context(
        provider=provider, config=config, cwd=cwd, mode=mode, yes=yes, behavior_config=behavior_config, stream=stream
    )
    while True:
        try:
            user = typer.prompt("You")
        except (EOFError, KeyboardInterrupt, typer.Abort):
            break
        line = user.strip()
        if line.lower() in {"exit", "quit"}:
            break
        if line == "/mode" or line.startswith("/mode "):
            _mode_command(ctx, line)
            continue
        _run_turn(ctx, user, max_steps)
        console.print()


@app.command()
def tools(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    mode: str = typer.Option(None, "--mode", help="Evaluate approval under this mode (default: configured)."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pynanocoder.json) path."),
):
    """List registered tools and whether each needs approval."""
    cwd = _resolve_cwd(cwd)
    try:
        behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
    except PynanocoderError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)
    store = ModeStore(_parse_mode(mode) or behavior.default_mode)
    reg = ToolRegistry()
    register_builtin_tools(reg, cwd, behavior)

    table = Table(title=f"tools (mode={store.get().value})")
    table.add_column("name", style="bold")
    table.add_column("kind")
    table.add_column("policy")
    table.add_column("asks now")
    for tool in reg.list():
        d = evaluate(tool, {}, store)
        table.add_row(tool.spec.name, tool.spec.kind, describe_policy(tool.spec.approval), "yes" if d.required else "no")
    console.print(table)


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
):
    """Show recent structured events (LLM calls, tool calls) recorded for a session."""
    es = EventStore.open(session)
    evs = list(es.iter_events())
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(json.dumps(e.data, ensure_ascii=False, indent=2)[:4000], title=f"{ts}  {e.type}"))


@app.command()
def stats(
    session: str = typer.Option(..., "--session", help="Session id to summarize."),
):
    """Show a compact summary for a session (latency, result kinds, tool usage)."""
    es = EventStore.open(session)
    evs = list(es.iter_events())

    llm_req = [e for e in evs if e.type == "llm.request"]
    llm_res = [e for e in evs if e.type == "llm.response"]
    llm_err = [e for e in evs if e.type == "llm.error"]
    llm_cancel = [e for e in evs if e.type == "llm.cancelled"]

    tool_call = [e for e in evs if e.type == "tool.call"]
    tool_res = [e for e in evs if e.type == "tool.result"]

    def _avg_ms(items):
        vals = []
        for e in items:
            ms = (e.data or {}).get("elapsed_ms")
            if isinstance(ms, (int, float)) and ms >= 0:
                vals.append(float(ms))
        return (sum(vals) / len(vals)) if vals else None

    kinds: dict[str, int] = {}
    for e in evs:
        if e.type == "turn.summary":
            for k, n in ((e.data or {}).get("kinds") or {}).items():
                kinds[k] = kinds.get(k, 0) + int(n)

    freq: dict[str, int] = {}
    for e in tool_call:
        t = (e.data or {}).get("tool")
        if t:
            freq[t] = freq.get(t, 0) + 1
    top_tools = sorted(freq.items(), key=lambda x: x[1], reverse=True)[:12]

    lines = [
        f"session: {session}",
        f"events_file: {es.path}",
        f"llm_requests: {len(llm_req)}  llm_responses: {len(llm_res)}  llm_errors: {len(llm_err)}  llm_cancelled: {len(llm_cancel)}",
    ]
    llm_avg = _avg_ms(llm_res)
    if llm_avg is not None:
        lines.append(f"llm_avg_latency_ms: {llm_avg:.1f}")
    lines.append(f"tool_calls: {len(tool_call)}  tool_results: {len(tool_res)}")
    tool_avg = _avg_ms(tool_res)
    if tool_avg is not None:
        lines.append(f"tool_avg_latency_ms: {tool_avg:.1f}")
    if kinds:
        lines.append("result_kinds:")
        for k, n in sorted(kinds.items()):
            lines.append(f"  - {k}: {n}")
    if top_tools:
        lines.append("top_tools:")
        for name, c in top_tools:
            lines.append(f"  - {name}: {c}")

    console.print(Panel.fit("\n".join(lines), title="Stats"))


if __name__ == "__main__":
    app()
