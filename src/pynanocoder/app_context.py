from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .cancellation import CancellationCoordinator
from .config.loader import load_behavior_config
from .config.models import BehaviorConfig
from .controller import InvocationController
from .events.store import EventStore
from .llm.factory import ProviderConfig, build_provider
from .llm.openai_compat import OpenAICompatProvider
from .modes import Mode, ModeStore, default_store
from .session.models import Message
from .tools.approval import Approver, AutoApprover, ConsoleApprover
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry


@dataclass
class AppContext:
    cwd: Path
    provider: OpenAICompatProvider
    tools: ToolRegistry
    controller: InvocationController
    coordinator: CancellationCoordinator
    mode_store: ModeStore
    session_id: str
    behavior: BehaviorConfig
    messages: list[Message] = field(default_factory=list)
    events: EventStore | None = None
    stream: bool = False
    config_path: Optional[Path] = None

    @staticmethod
    def from_env(
        cwd: Path,
        provider_cfg: ProviderConfig,
        *,
        model: str | None = None,
        auto_approve: bool = False,
        mode: Mode | str | None = None,
        behavior_config: Path | None = None,
        stream: bool = False,
        config_path: Optional[Path] = None,
        approver: Approver | None = None,
        mode_store: ModeStore | None = None,
    ) -> "AppContext":
        behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)

        # CLI --mode beats the configured default.
        mode_store = mode_store or default_store()
        mode_store.set(mode if mode is not None else behavior.default_mode)

        tools = ToolRegistry()
        register_builtin_tools(tools, cwd, behavior)

        if approver is None:
            approver = AutoApprover() if auto_approve else ConsoleApprover()

        session_id = uuid.uuid4().hex[:12]
        events = EventStore.open(session_id)

        controller = InvocationController(
            tools=tools,
            approver=approver,
            cwd=str(cwd),
            mode_store=mode_store,
            settings=behavior.controller_settings(),
            events=events,
            session_id=session_id,
        )

        return AppContext(
            cwd=cwd,
            provider=build_provider(provider_cfg, model),
            tools=tools,
            controller=controller,
            coordinator=CancellationCoordinator(),
            mode_store=mode_store,
            session_id=session_id,
            behavior=behavior,
            events=events,
            stream=stream,
            config_path=config_path,
        )
