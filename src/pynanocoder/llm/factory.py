from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import yaml

from .openai_compat import OpenAICompatProvider
from ..errors import ConfigError


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ConfigError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str | None) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            # a single configured provider needs no --provider
            if len(self._items) == 1:
                return next(iter(self._items.values()))
            raise ConfigError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ConfigError(f"API key placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    """Read providers from YAML:

        providers:
          ollama:
            base_url: http://localhost:11434/v1
            model: qwen2.5-coder:7b
            api_key: ""            # optional for local servers
          openrouter:
            base_url: https://openrouter.ai/api/v1
            model: anthropic/claude-sonnet-4
            api_key: ${OPENROUTER_API_KEY}
    """
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config YAML not found: {p}")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    providers = data.get("providers") if isinstance(data, dict) else None
    if not isinstance(providers, dict) or not providers:
        raise ConfigError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()

    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ConfigError(f"providers.{name} must be a mapping/dict.")

        base_url = str(cfg.get("base_url") or "").strip()
        model = str(cfg.get("model") or "").strip()
        api_key = str(cfg.get("api_key") or "").strip()

        missing = [k for k, v in {"base_url": base_url, "model": model}.items() if not v]
        if missing:
            raise ConfigError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        reg.add(ProviderConfig(name=str(name), base_url=base_url, model=model, api_key=_expand_env_placeholders(api_key)))

    return reg


def build_provider(cfg: ProviderConfig, model: str | None = None) -> OpenAICompatProvider:
    return OpenAICompatProvider(
        model=model or cfg.model,
        base_url=cfg.base_url,
        api_key=cfg.api_key,
        provider_name=cfg.name,
    )
