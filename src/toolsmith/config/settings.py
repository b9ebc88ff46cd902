"""
Configuration settings for Toolsmith.

Uses Pydantic Settings for environment variable and file-based configuration.
Every section can be overridden with its own prefix (``TOOLSMITH_REGISTRY_SHARE_MODE``)
or through the root settings with the nested delimiter
(``TOOLSMITH_REGISTRY__SHARE_MODE``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv as _load_dotenv
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolsmith.core.types import LLMProvider, ShareMode


class LLMConfig(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_LLM_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    default_provider: LLMProvider = LLMProvider.ANTHROPIC
    default_model: str = "claude-sonnet-4-20250514"

    # API keys (loaded from environment)
    anthropic_api_key: SecretStr | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    openai_api_key: SecretStr | None = Field(default=None, alias="OPENAI_API_KEY")

    # Ollama for local models
    ollama_base_url: str = "http://localhost:11434"

    # Planning, enrichment and summaries
    default_temperature: float = 0.7
    default_max_tokens: int = 4096
    default_timeout_seconds: float = 120.0

    # Code synthesis runs colder and shorter
    synthesis_temperature: float = 0.3
    synthesis_max_tokens: int = 2000


class RegistrySettings(BaseSettings):
    """Capability registry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_REGISTRY_",
        env_file=".env",
        extra="ignore",
    )

    root_dir: Path = Path("generated-tools")

    # Cross-agent visibility. Strict isolation unless explicitly relaxed.
    share_mode: ShareMode = ShareMode.STRICT
    recent_hours: float = 24.0
    share_min_success_rate: float = 0.6
    max_tools_per_agent: int = 50

    # Loading
    load_retries: int = 3
    retry_delay_ms: int = 100

    # Lifecycle
    quarantine_threshold: int = 5

    # Backpressure
    execution_limit_per_hour: int = 10
    execution_reset_hours: float = 1.0


class SandboxSettings(BaseSettings):
    """Sandboxed execution limits."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_SANDBOX_",
        env_file=".env",
        extra="ignore",
    )

    timeout_seconds: float = 10.0

    # Each call runs in its own process; the deadline starts once it is ready
    start_method: Literal["spawn", "forkserver", "fork"] = "spawn"
    startup_timeout_seconds: float = 30.0
    kill_grace_seconds: float = 1.0

    # Watchdog
    watchdog_interval_seconds: float = 0.5
    stall_warning_seconds: float = 2.0
    kill_margin_seconds: float = 5.0
    max_kill_seconds: float = 15.0

    # Operation budget for injected timer helpers
    max_timer_seconds: float = 5.0
    timer_cap_seconds: float = 1.0
    max_operations: int = 100_000

    # Injected HTTP helpers
    http_timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (compatible; ToolsmithAgent/1.0)"

    max_source_length: int = 20_000
    max_error_chars: int = 500


class OrchestratorSettings(BaseSettings):
    """Plan/execute orchestrator configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_ORCHESTRATOR_",
        env_file=".env",
        extra="ignore",
    )

    strict_mode: bool = True
    plan_retries: int = 3
    synthesis_retries: int = 3
    output_snippet_chars: int = 500


class ToolsmithSettings(BaseSettings):
    """
    Main configuration for Toolsmith.

    Supports loading from:
    - Environment variables (TOOLSMITH_* prefix)
    - .env file
    - YAML/JSON config files
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    project_name: str = "toolsmith"
    environment: str = "development"
    debug: bool = False

    # Nested configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)

    # Logging
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_file: Path | None = None

    @classmethod
    def from_file(cls, path: str | Path) -> ToolsmithSettings:
        """Load settings from a YAML or JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary (excludes secrets)."""
        return self.model_dump(exclude={"llm": {"anthropic_api_key", "openai_api_key"}})


# Global settings instance (lazy-loaded)
_settings: ToolsmithSettings | None = None


def get_settings() -> ToolsmithSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = ToolsmithSettings()
    return _settings


def configure(
    settings: ToolsmithSettings | None = None,
    *,
    registry_root: str | Path | None = None,
    share_mode: ShareMode | str | None = None,
    default_model: str | None = None,
    debug: bool | None = None,
) -> ToolsmithSettings:
    """
    Configure Toolsmith.

    Full settings:
        toolsmith.configure(settings=ToolsmithSettings(...))

    Targeted overrides on the current settings:
        toolsmith.configure(registry_root="/var/lib/toolsmith", share_mode="recent")

    Returns:
        The active settings object.
    """
    global _settings

    if settings is not None:
        _settings = settings
        return _settings

    current = get_settings()
    if registry_root is not None:
        current.registry.root_dir = Path(registry_root)
    if share_mode is not None:
        current.registry.share_mode = ShareMode(share_mode)
    if default_model is not None:
        current.llm.default_model = default_model
    if debug is not None:
        current.debug = debug
    return current


def reset_settings() -> None:
    """Drop the cached global settings (used by tests)."""
    global _settings
    _settings = None


def load_dotenv(path: str | Path | None = None) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Path to .env file. Defaults to .env in current directory.

    Returns:
        True if file was loaded, False otherwise.
    """
    if path:
        return _load_dotenv(path)
    return _load_dotenv()
