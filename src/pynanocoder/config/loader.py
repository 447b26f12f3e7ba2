from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from .models import BehaviorConfig
from ..errors import ConfigError
from ..modes import Mode

APP_NAME = "pynanocoder"


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".pynanocoder.json",
        cwd / "pynanocoder.json",
    ]


def _global_candidate_paths() -> list[Path]:
    cfg_dir = Path(user_config_dir(APP_NAME))
    return [cfg_dir / "pynanocoder.json"]


def _load_json(p: Path) -> dict[str, Any] | None:
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
        if isinstance(obj, dict):
            return obj
        return None
    except Exception:
        return None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)  # type: ignore
        else:
            out[k] = v
    return out


def _positive_int(v: Any) -> int | None:
    if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
        return None
    return v


def _str_list(v: Any) -> list[str]:
    if not isinstance(v, list):
        return []
    return [s.strip() for s in v if isinstance(s, str) and s.strip()]


def load_behavior_config(*, cwd: Path, explicit_path: Path | None = None) -> BehaviorConfig:
    """Load behavior config.

    Merge order: global < project < explicit_path. Values of the wrong type are
    ignored; an unknown default_mode is an error since it would silently change
    approval behaviour.
    """
    merged: dict[str, Any] = {}
    loaded_from: Path | None = None

    for p in _global_candidate_paths():
        if p.exists() and p.is_file():
            obj = _load_json(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p

    for p in _candidate_paths(cwd):
        if p.exists() and p.is_file():
            obj = _load_json(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p
                break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.exists() or not p.is_file():
            raise ConfigError(f"Behavior config not found: {p}")
        obj = _load_json(p)
        if obj is None:
            raise ConfigError(f"Behavior config is not a JSON object: {p}")
        merged = _merge_dicts(merged, obj)
        loaded_from = p

    cfg = BehaviorConfig()
    cfg.loaded_from = loaded_from

    dm = merged.get("default_mode")
    if isinstance(dm, str) and dm.strip():
        try:
            cfg.default_mode = Mode.parse(dm)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    for key in ("max_tool_result_chars", "bash_timeout", "fetch_timeout"):
        v = _positive_int(merged.get(key))
        if v is not None:
            setattr(cfg, key, v)

    cfg.disabled_tools = _str_list(merged.get("disabled_tools"))
    cfg.bash_denylist = _str_list(merged.get("bash_denylist"))

    rr = merged.get("reject_remaining_on_decline")
    if isinstance(rr, bool):
        cfg.reject_remaining_on_decline = rr

    return cfg
