"""
Tests for execution/case_copilot/llm_backend.py

Covers: model registry and resolve_model, credit_cost, TenantChatBackend
        (mocked requests session), OpenAIChatBackend (mocked client) and
        build_backend.
"""

from unittest.mock import MagicMock

import pytest
import requests


# ---------------------------------------------------------------------------
# Registry & cost
# ---------------------------------------------------------------------------

class TestModelRegistry:
    """Tests for resolve_model and credit_cost."""

    def test_known_model(self):
        from execution.case_copilot.llm_backend import resolve_model
        model = resolve_model("gpt-4o")
        assert model.provider_id == "openai"
        assert model.cost_tier == "high"

    def test_default_model(self):
        from execution.case_copilot.llm_backend import resolve_model
        assert resolve_model(None).id == "gpt-4o-mini"
        assert resolve_model(None, "mistral-large").id == "mistral-large"

    def test_unknown_model_is_medium_tier(self):
        from execution.case_copilot.llm_backend import resolve_model
        model = resolve_model("llama-70b")
        assert model.id == "llama-70b"
        assert model.provider_id == "custom"
        assert model.cost_tier == "medium"

    @pytest.mark.parametrize("model_id,expected", [
        ("gpt-4o-mini", 25_000),
        ("mistral-large", 50_000),
        ("gpt-4o", 75_000),
        ("unknown-model", 50_000),
    ])
    def test_credit_cost_by_tier(self, model_id, expected):
        from execution.case_copilot.llm_backend import credit_cost, resolve_model
        assert credit_cost(resolve_model(model_id)) == expected

    def test_explicit_multiplier_wins(self):
        from execution.case_copilot.llm_backend import credit_cost
        from execution.case_copilot.models import LlmModelOption
        model = LlmModelOption("x", "custom", "X", cost_tier="premium", credit_multiplier=0.1)
        assert credit_cost(model) == 5_000

    def test_credit_cost_at_least_one(self):
        from execution.case_copilot.llm_backend import credit_cost
        from execution.case_copilot.models import LlmModelOption
        assert credit_cost(LlmModelOption("x", "custom", "X", credit_multiplier=0.0)) == 1


# ---------------------------------------------------------------------------
# Tenant backend
# ---------------------------------------------------------------------------

def _model():
    from execution.case_copilot.llm_backend import resolve_model
    return resolve_model("gpt-4o-mini")


def _session_returning(status=200, json_data=None, json_error=False, exc=None):
    session = MagicMock()
    if exc is not None:
        session.post.side_effect = exc
        return session
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = json_data
    session.post.return_value = response
    return session


class TestTenantChatBackend:
    """Tests for the tenant LLM proxy backend."""

    def test_posts_payload_and_reads_answer(self):
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(json_data={"answer": "  Antwort  "})
        backend = TenantChatBackend("https://llm.test/chat", timeout=12, session=session)
        messages = [{"role": "user", "content": "Frage"}]
        assert backend.chat("SYSTEM", messages, _model()) == "Antwort"

        url = session.post.call_args[0][0]
        kwargs = session.post.call_args[1]
        assert url == "https://llm.test/chat"
        assert kwargs["timeout"] == 12
        assert kwargs["json"] == {
            "model": "gpt-4o-mini",
            "systemPrompt": "SYSTEM",
            "messages": messages,
            "temperature": 0.3,
            "maxTokens": 4000,
        }

    @pytest.mark.parametrize("payload", [{"content": "Antwort"}, {"text": "Antwort"}])
    def test_alternative_answer_keys(self, payload):
        from execution.case_copilot.llm_backend import TenantChatBackend
        backend = TenantChatBackend("https://llm.test/chat", session=_session_returning(json_data=payload))
        assert backend.chat("s", [], _model()) == "Antwort"

    def test_transport_error(self):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(exc=requests.ConnectionError("refused"))
        with pytest.raises(BackendUnavailableError):
            TenantChatBackend("https://llm.test/chat", session=session).chat("s", [], _model())

    def test_timeout(self):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(exc=requests.Timeout("slow"))
        with pytest.raises(BackendUnavailableError):
            TenantChatBackend("https://llm.test/chat", session=session).chat("s", [], _model())

    def test_http_error_carries_status(self):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(status=503, json_data={})
        with pytest.raises(BackendUnavailableError) as exc_info:
            TenantChatBackend("https://llm.test/chat", session=session).chat("s", [], _model())
        assert exc_info.value.status_code == 503

    def test_non_json(self):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(json_error=True)
        with pytest.raises(BackendUnavailableError):
            TenantChatBackend("https://llm.test/chat", session=session).chat("s", [], _model())

    @pytest.mark.parametrize("payload", [{}, {"answer": "   "}, ["Antwort"]])
    def test_empty_or_unexpected_payload(self, payload):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import TenantChatBackend
        session = _session_returning(json_data=payload)
        with pytest.raises(BackendUnavailableError):
            TenantChatBackend("https://llm.test/chat", session=session).chat("s", [], _model())


# ---------------------------------------------------------------------------
# OpenAI-compatible backend
# ---------------------------------------------------------------------------

def _completion(content):
    response = MagicMock()
    if content is None:
        response.choices = []
    else:
        choice = MagicMock()
        choice.message.content = content
        response.choices = [choice]
    return response


class TestOpenAIChatBackend:
    """Tests for the OpenAI-compatible backend with an injected client."""

    def test_prepends_system_prompt(self):
        from execution.case_copilot.llm_backend import OpenAIChatBackend
        client = MagicMock()
        client.chat.completions.create.return_value = _completion("Antwort")
        backend = OpenAIChatBackend(client=client, max_tokens=1000, temperature=0.1)
        assert backend.chat("SYSTEM", [{"role": "user", "content": "Frage"}], _model()) == "Antwort"

        kwargs = client.chat.completions.create.call_args[1]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "user", "content": "Frage"},
        ]
        assert kwargs["max_tokens"] == 1000
        assert kwargs["temperature"] == 0.1

    def test_api_error_wrapped(self):
        from openai import OpenAIError
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import OpenAIChatBackend
        client = MagicMock()
        client.chat.completions.create.side_effect = OpenAIError("rate limited")
        with pytest.raises(BackendUnavailableError, match="rate limited"):
            OpenAIChatBackend(client=client).chat("s", [], _model())

    @pytest.mark.parametrize("content", [None, "", "  "])
    def test_no_usable_choice(self, content):
        from execution.case_copilot.errors import BackendUnavailableError
        from execution.case_copilot.llm_backend import OpenAIChatBackend
        client = MagicMock()
        client.chat.completions.create.return_value = _completion(content)
        with pytest.raises(BackendUnavailableError):
            OpenAIChatBackend(client=client).chat("s", [], _model())


class TestBuildBackend:
    """Tests for build_backend provider selection."""

    def test_tenant_default(self):
        from execution.case_copilot.config import CopilotConfig
        from execution.case_copilot.llm_backend import TenantChatBackend, build_backend
        backend = build_backend(CopilotConfig(llm_endpoint="https://llm.test/chat", llm_timeout=5))
        assert isinstance(backend, TenantChatBackend)
        assert backend.endpoint == "https://llm.test/chat"
        assert backend.timeout == 5

    def test_openai(self):
        from execution.case_copilot.config import CopilotConfig
        from execution.case_copilot.llm_backend import OpenAIChatBackend, build_backend
        backend = build_backend(CopilotConfig(
            llm_provider="openai", llm_base_url="https://nim.test/v1", llm_api_key="key",
        ))
        assert isinstance(backend, OpenAIChatBackend)
        assert backend.base_url == "https://nim.test/v1"
        assert backend.api_key == "key"
