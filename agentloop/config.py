"""Runtime settings resolved from defaults and AGENTLOOP_* environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from agentloop.schemas import GenerationConfig

logger = logging.getLogger(__name__)

# Provider defaults (Ollama's OpenAI-compatible endpoint)
DEFAULT_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODEL = "qwen2.5-coder"
DEFAULT_MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.2

# Loop limits
DEFAULT_MAX_TURNS = 5

# Tool limits
DEFAULT_BASH_TIMEOUT = 30  # seconds
MAX_OUTPUT_CHARS = 15000

DEFAULT_AGENTS_FILE = Path.home() / ".agentloop" / "agents.json"

ENV_PREFIX = "AGENTLOOP_"


@dataclass
class Settings:
    """Resolved runtime settings."""

    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    max_turns: int = DEFAULT_MAX_TURNS
    bash_timeout: int = DEFAULT_BASH_TIMEOUT
    max_output_chars: int = MAX_OUTPUT_CHARS
    bash_sandbox: bool = False
    policy_id: str = "default"
    agents_file: Path = field(default_factory=lambda: DEFAULT_AGENTS_FILE)

    def generation_config(self) -> GenerationConfig:
        """Build the generation config sent to the provider."""
        return GenerationConfig(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    def with_overrides(self, **overrides: object) -> Settings:
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {ENV_PREFIX}{name}={raw!r}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {ENV_PREFIX}{name}={raw!r}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Ignoring non-boolean {ENV_PREFIX}{name}={raw!r}")
    return default


def load_settings() -> Settings:
    """Load settings from the environment.

    Returns:
        Settings with AGENTLOOP_* variables applied over the defaults
    """
    env = os.environ
    agents_file = env.get(ENV_PREFIX + "AGENTS_FILE")
    return Settings(
        model=env.get(ENV_PREFIX + "MODEL", DEFAULT_MODEL),
        base_url=env.get(ENV_PREFIX + "BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        api_key=env.get(ENV_PREFIX + "API_KEY", ""),
        max_tokens=_env_int("MAX_TOKENS", DEFAULT_MAX_TOKENS),
        temperature=_env_float("TEMPERATURE", DEFAULT_TEMPERATURE),
        max_turns=_env_int("MAX_TURNS", DEFAULT_MAX_TURNS),
        bash_timeout=_env_int("BASH_TIMEOUT", DEFAULT_BASH_TIMEOUT),
        max_output_chars=_env_int("MAX_OUTPUT_CHARS", MAX_OUTPUT_CHARS),
        bash_sandbox=_env_bool("BASH_SANDBOX", False),
        policy_id=env.get(ENV_PREFIX + "POLICY", "default"),
        agents_file=Path(agents_file).expanduser() if agents_file else DEFAULT_AGENTS_FILE,
    )
