"""
LLM Backends and Model Registry

Two interchangeable chat backends sit behind ``LlmBackend.chat``:

- TenantChatBackend posts to the tenant's own LLM proxy endpoint
  (JSON in, JSON out) with requests.
- OpenAIChatBackend talks to any OpenAI-compatible API through the openai
  client (e.g. NVIDIA NIM, Azure, a local vLLM).

Both raise BackendUnavailableError for every failure mode (transport error,
timeout, non-2xx, non-JSON or empty answer) so the generator has exactly
one exception to fall back on.
"""

import logging
from typing import Optional, Protocol, Sequence

import requests

from .config import CopilotConfig
from .errors import BackendUnavailableError
from .models import LlmModelOption

logger = logging.getLogger(__name__)


# =============================================================================
# Model registry & credit cost
# =============================================================================

COST_TIER_MULTIPLIERS = {
    "low": 0.5,
    "medium": 1.0,
    "high": 1.5,
    "premium": 2.5,
}

MODEL_REGISTRY: dict[str, LlmModelOption] = {
    m.id: m for m in (
        LlmModelOption("gpt-4o", "openai", "GPT-4o", cost_tier="high"),
        LlmModelOption("gpt-4o-mini", "openai", "GPT-4o mini", cost_tier="low"),
        LlmModelOption("claude-4-sonnet", "anthropic", "Claude 4 Sonnet", cost_tier="high", context_window=200000),
        LlmModelOption("claude-3.5-haiku", "anthropic", "Claude 3.5 Haiku", cost_tier="low", context_window=200000),
        LlmModelOption("mistral-large", "mistral", "Mistral Large", cost_tier="medium"),
        LlmModelOption("gemini-2.5-pro", "google", "Gemini 2.5 Pro", cost_tier="high", context_window=1000000),
        LlmModelOption("custom", "custom", "Custom model", cost_tier="medium"),
    )
}

# Base AI credits for one chat message before the model multiplier
BASE_MESSAGE_CREDITS = 50_000


def resolve_model(model_id: Optional[str], default_id: str = "gpt-4o-mini") -> LlmModelOption:
    """Look up a model; unknown ids become a medium-tier option of the same id."""
    model_id = model_id or default_id
    if model_id in MODEL_REGISTRY:
        return MODEL_REGISTRY[model_id]
    logger.debug(f"Model {model_id} not in registry; using medium cost tier")
    return LlmModelOption(model_id, "custom", model_id, cost_tier="medium")


def credit_cost(model: LlmModelOption) -> int:
    """AI credits charged for one chat message with this model."""
    multiplier = model.credit_multiplier
    if multiplier is None:
        multiplier = COST_TIER_MULTIPLIERS.get(model.cost_tier, 1.0)
    return max(1, round(BASE_MESSAGE_CREDITS * multiplier))


# =============================================================================
# Backends
# =============================================================================

class LlmBackend(Protocol):
    def chat(self, system_prompt: str, messages: Sequence[dict], model: LlmModelOption) -> str: ...


def _require_answer(text: Optional[str], source: str) -> str:
    answer = (text or "").strip()
    if not answer:
        raise BackendUnavailableError(f"{source} returned an empty answer")
    return answer


class TenantChatBackend:
    """
    POST {endpoint} with {model, systemPrompt, messages, temperature, maxTokens}.

    The answer is read from ``answer``, ``content`` or ``text``.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 60.0,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    def chat(self, system_prompt: str, messages: Sequence[dict], model: LlmModelOption) -> str:
        payload = {
            "model": model.id,
            "systemPrompt": system_prompt,
            "messages": list(messages),
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
        }
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendUnavailableError(f"Tenant LLM request failed: {e}") from e

        if not response.ok:
            raise BackendUnavailableError(
                f"Tenant LLM returned HTTP {response.status_code}", status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise BackendUnavailableError("Tenant LLM returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise BackendUnavailableError("Tenant LLM returned an unexpected payload")

        return _require_answer(data.get("answer") or data.get("content") or data.get("text"), "Tenant LLM")


class OpenAIChatBackend:
    """Chat completions against an OpenAI-compatible API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        client=None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    def _get_client(self):
        """Get or create the cached OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._client

    def chat(self, system_prompt: str, messages: Sequence[dict], model: LlmModelOption) -> str:
        from openai import OpenAIError

        try:
            response = self._get_client().chat.completions.create(
                model=model.id,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise BackendUnavailableError(f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise BackendUnavailableError("OpenAI-compatible API returned no choices")
        return _require_answer(response.choices[0].message.content, "OpenAI-compatible API")


def build_backend(config: CopilotConfig) -> LlmBackend:
    """Create the backend selected by ``config.llm_provider``."""
    if config.llm_provider == "openai":
        logger.info(f"Using OpenAI-compatible backend ({config.llm_base_url or 'default base URL'})")
        return OpenAIChatBackend(
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
            timeout=config.llm_timeout,
        )
    logger.info(f"Using tenant LLM endpoint {config.llm_endpoint}")
    return TenantChatBackend(config.llm_endpoint, timeout=config.llm_timeout)
