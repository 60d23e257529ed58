"""
Runtime Configuration for the Case Copilot

Reads deployment settings from the environment (``.env`` supported via
python-dotenv). Library code receives a CopilotConfig explicitly; only the
API module and CLI entry points call ``from_env``.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .language_config import TenantLanguageConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CopilotConfig:
    """Deployment-level settings for one copilot instance."""
    language: TenantLanguageConfig = field(default_factory=TenantLanguageConfig)

    # LLM backend
    llm_provider: str = "tenant"  # tenant | openai
    llm_endpoint: str = "http://localhost:3010/api/copilot/tenant-llm/chat"
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_timeout: float = 60.0

    # Credit metering
    quota_endpoint: Optional[str] = None
    quota_cache_ttl: float = 30.0

    # Context assembly
    collective_enabled: bool = True
    max_context_chunks: int = 20
    history_turns: int = 10

    # Seconds a run may wait at the approval gate before it is cancelled
    approval_ttl: float = 3600.0

    # Number of partial republishes while "streaming" a finished answer
    stream_slices: int = 8

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "CopilotConfig":
        """
        Build a config from COPILOT_* environment variables.

        Args:
            dotenv: Load a ``.env`` file first

        Returns:
            CopilotConfig with environment overrides applied
        """
        if dotenv:
            load_dotenv()

        defaults = cls()
        return cls(
            language=TenantLanguageConfig.for_language(os.getenv("COPILOT_LANGUAGE", "de")),
            llm_provider=os.getenv("COPILOT_LLM_PROVIDER", defaults.llm_provider).lower(),
            llm_endpoint=os.getenv("COPILOT_LLM_ENDPOINT", defaults.llm_endpoint),
            llm_base_url=os.getenv("COPILOT_LLM_BASE_URL") or None,
            llm_api_key=os.getenv("COPILOT_LLM_API_KEY") or None,
            llm_timeout=float(os.getenv("COPILOT_LLM_TIMEOUT", str(defaults.llm_timeout))),
            quota_endpoint=os.getenv("COPILOT_QUOTA_ENDPOINT") or None,
            quota_cache_ttl=float(os.getenv("COPILOT_QUOTA_CACHE_TTL", str(defaults.quota_cache_ttl))),
            collective_enabled=_env_bool("COPILOT_COLLECTIVE_ENABLED", defaults.collective_enabled),
            max_context_chunks=int(os.getenv("COPILOT_MAX_CONTEXT_CHUNKS", str(defaults.max_context_chunks))),
            history_turns=int(os.getenv("COPILOT_HISTORY_TURNS", str(defaults.history_turns))),
            approval_ttl=float(os.getenv("COPILOT_APPROVAL_TTL", str(defaults.approval_ttl))),
            stream_slices=int(os.getenv("COPILOT_STREAM_SLICES", str(defaults.stream_slices))),
        )
