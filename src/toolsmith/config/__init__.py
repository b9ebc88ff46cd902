"""Configuration module for Toolsmith."""

from toolsmith.config.logging_ import configure_logging
from toolsmith.config.settings import (
    LLMConfig,
    OrchestratorSettings,
    RegistrySettings,
    SandboxSettings,
    ToolsmithSettings,
    configure,
    get_settings,
    load_dotenv,
    reset_settings,
)

__all__ = [
    "ToolsmithSettings",
    "LLMConfig",
    "RegistrySettings",
    "SandboxSettings",
    "OrchestratorSettings",
    "configure",
    "configure_logging",
    "get_settings",
    "load_dotenv",
    "reset_settings",
]
