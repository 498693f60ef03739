"""Tests for the provider clients."""

from types import SimpleNamespace

import httpx
import pytest
import requests
from openai import APIConnectionError, APIStatusError

from cmdstack.claude import ANTHROPIC_VERSION, ClaudeProvider
from cmdstack.config import ProviderConfig, default_providers
from cmdstack.llm import (
    EmptyResponseError,
    ModelInfo,
    ModelNotFoundError,
    ProviderConnectionError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from cmdstack.ollama import LOCAL_STOP_SEQUENCES, LocalProvider
from cmdstack.openai_client import OpenAICompatibleProvider
from cmdstack.runtime import RuntimeStartError

from conftest import FakeResponse, FakeSession

BASE = "http://127.0.0.1:11434"
CHAT = f"{BASE}/api/chat"
GIB = 1024 ** 3


class FakeRuntime:
    def __init__(self, ready=True, start_error=None):
        self.ready = ready
        self.start_error = start_error
        self.started = False
        self.ensured = []

    def is_server_ready(self):
        return self.ready

    def ensure_installed(self, progress=None):
        return "/usr/bin/ollama"

    def start_server(self):
        if self.start_error:
            raise self.start_error
        self.started = True
        self.ready = True

    def ensure_model(self, model, progress=None):
        self.ensured.append(model)
        return model

    def list_models(self):
        return [ModelInfo("qwen2.5-coder:7b")]


def local_provider(session, runtime=None, model="", **kwargs):
    config = ProviderConfig(kind="local", model=model, base_url=BASE, temperature=0.0)
    kwargs.setdefault("memory_probe", lambda: 16 * GIB)
    return LocalProvider(config, runtime or FakeRuntime(), session=session, **kwargs)


def chat_reply(content):
    return FakeResponse(200, {"message": {"role": "assistant", "content": content}})


class TestLocalProvider:
    def test_empty_model_is_selected_from_memory(self):
        selected = []
        provider = local_provider(FakeSession(), memory_probe=lambda: 6 * GIB, on_model_selected=selected.append)
        assert provider.model == "qwen2.5-coder:3b"
        assert selected == ["qwen2.5-coder:3b"]

    def test_configured_model_is_kept(self):
        selected = []
        provider = local_provider(FakeSession(), model="llama3:8b", on_model_selected=selected.append)
        assert provider.model == "llama3:8b"
        assert selected == []

    def test_generate_sends_options_and_cleans_output(self):
        session = FakeSession({("POST", CHAT): chat_reply("```bash\n$ ls -la\n```")})
        runtime = FakeRuntime()
        provider = local_provider(session, runtime)

        assert provider.generate("system", "list files") == "ls -la"

        payload = session.calls_to("POST", CHAT)[0]["json"]
        assert payload["model"] == "qwen2.5-coder:7b"
        assert payload["stream"] is False
        assert payload["messages"][0] == {"role": "system", "content": "system"}
        assert payload["messages"][1] == {"role": "user", "content": "list files"}
        options = payload["options"]
        assert options["temperature"] == 0.0
        assert options["num_predict"] == 100
        assert options["top_p"] == 0.7
        assert options["top_k"] == 20
        assert options["repeat_penalty"] == 1.2
        assert options["stop"] == list(LOCAL_STOP_SEQUENCES)
        assert runtime.ensured == ["qwen2.5-coder:7b"]

    def test_server_is_started_when_down(self):
        runtime = FakeRuntime(ready=False)
        provider = local_provider(FakeSession({("POST", CHAT): chat_reply("pwd")}), runtime)
        assert provider.generate("s", "where am i") == "pwd"
        assert runtime.started

    def test_start_failure_is_unavailable_with_hint(self):
        runtime = FakeRuntime(ready=False, start_error=RuntimeStartError("timed out"))
        provider = local_provider(FakeSession(), runtime)
        with pytest.raises(ProviderUnavailableError) as excinfo:
            provider.generate("s", "u")
        assert "ollama.com" in excinfo.value.hint

    def test_empty_content(self):
        provider = local_provider(FakeSession({("POST", CHAT): chat_reply("   ")}))
        with pytest.raises(EmptyResponseError):
            provider.generate("s", "u")

    def test_missing_model(self):
        provider = local_provider(FakeSession({("POST", CHAT): FakeResponse(404, text="model not found")}))
        with pytest.raises(ModelNotFoundError):
            provider.generate("s", "u")

    def test_server_error(self):
        provider = local_provider(FakeSession({("POST", CHAT): FakeResponse(500, text="oops")}))
        with pytest.raises(ProviderResponseError) as excinfo:
            provider.generate("s", "u")
        assert excinfo.value.status_code == 500

    def test_connection_error(self):
        provider = local_provider(FakeSession({("POST", CHAT): requests.ConnectionError("refused")}))
        with pytest.raises(ProviderConnectionError):
            provider.generate("s", "u")

    def test_no_credentials_needed(self):
        provider = local_provider(FakeSession())
        assert provider.requires_credentials is False
        assert provider.list_models()[0].name == "qwen2.5-coder:7b"


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, result):
        self.result = result
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def fake_openai(result):
    completions = FakeCompletions(result)
    models = SimpleNamespace(list=lambda: SimpleNamespace(data=[SimpleNamespace(id="gpt-4o-mini")]))
    return SimpleNamespace(chat=SimpleNamespace(completions=completions), models=models)


def remote_config(name="openai"):
    config = default_providers()[name]
    config.api_key = "sk-test-1234"
    return config


class TestOpenAICompatibleProvider:
    def test_generate_passes_messages_and_options(self):
        client = fake_openai(completion(" docker ps \n"))
        provider = OpenAICompatibleProvider("deepseek", remote_config("deepseek"), client=client)

        assert provider.generate("system", "show containers") == "docker ps"
        kwargs = client.chat.completions.kwargs
        assert kwargs["model"] == "deepseek-chat"
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 500
        assert [message["role"] for message in kwargs["messages"]] == ["system", "user"]

    def test_availability_follows_credentials(self):
        config = default_providers()["grok"]
        provider = OpenAICompatibleProvider("grok", config)
        assert not provider.is_available()
        assert "cmdstack config set grok.api_key" in provider.setup_hint()
        assert "GROK_API_KEY" in provider.setup_hint()

        config.api_key = "xai-key"
        assert provider.is_available()

    def test_missing_key_raises_unavailable_on_use(self):
        provider = OpenAICompatibleProvider("openai", default_providers()["openai"])
        with pytest.raises(ProviderUnavailableError):
            provider.generate("s", "u")

    def test_empty_model_falls_back_to_default(self):
        config = ProviderConfig(kind="openai_compat", api_key="k")
        assert OpenAICompatibleProvider("custom", config).model == "gpt-4o-mini"

    def test_no_choices(self):
        provider = OpenAICompatibleProvider("openai", remote_config(), client=fake_openai(SimpleNamespace(choices=[])))
        with pytest.raises(EmptyResponseError):
            provider.generate("s", "u")

    def test_empty_content(self):
        provider = OpenAICompatibleProvider("openai", remote_config(), client=fake_openai(completion(None)))
        with pytest.raises(EmptyResponseError):
            provider.generate("s", "u")

    def test_connection_error_is_mapped(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = fake_openai(APIConnectionError(request=request))
        provider = OpenAICompatibleProvider("openai", remote_config(), client=client)
        with pytest.raises(ProviderConnectionError):
            provider.generate("s", "u")

    def test_status_error_keeps_code(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(429, request=request)
        client = fake_openai(APIStatusError("rate limited", response=response, body=None))
        provider = OpenAICompatibleProvider("openai", remote_config(), client=client)
        with pytest.raises(ProviderResponseError) as excinfo:
            provider.generate("s", "u")
        assert excinfo.value.status_code == 429

    def test_list_models(self):
        provider = OpenAICompatibleProvider("openai", remote_config(), client=fake_openai(completion("x")))
        assert [model.name for model in provider.list_models()] == ["gpt-4o-mini"]


MESSAGES = "https://api.anthropic.com/v1/messages"


class TestClaudeProvider:
    def test_generate_builds_messages_request(self):
        reply = FakeResponse(
            200,
            {
                "content": [
                    {"type": "text", "text": "git "},
                    {"type": "tool_use", "id": "x"},
                    {"type": "text", "text": "status"},
                ]
            },
        )
        session = FakeSession({("POST", MESSAGES): reply})
        provider = ClaudeProvider("claude", remote_config("claude"), session=session)

        assert provider.generate("system prompt", "what changed") == "git status"

        call = session.calls_to("POST", MESSAGES)[0]
        assert call["headers"]["x-api-key"] == "sk-test-1234"
        assert call["headers"]["anthropic-version"] == ANTHROPIC_VERSION
        body = call["json"]
        assert body["model"] == "claude-3-5-haiku-20241022"
        assert body["system"] == "system prompt"
        assert body["messages"] == [{"role": "user", "content": "what changed"}]
        assert body["max_tokens"] == 500

    def test_missing_key(self):
        provider = ClaudeProvider("claude", default_providers()["claude"], session=FakeSession())
        assert not provider.is_available()
        assert "ANTHROPIC_API_KEY" in provider.setup_hint()
        with pytest.raises(ProviderUnavailableError):
            provider.generate("s", "u")

    def test_error_status(self):
        session = FakeSession({("POST", MESSAGES): FakeResponse(529, text="overloaded")})
        provider = ClaudeProvider("claude", remote_config("claude"), session=session)
        with pytest.raises(ProviderResponseError) as excinfo:
            provider.generate("s", "u")
        assert excinfo.value.status_code == 529
        assert excinfo.value.body == "overloaded"

    def test_empty_content(self):
        session = FakeSession({("POST", MESSAGES): FakeResponse(200, {"content": []})})
        provider = ClaudeProvider("claude", remote_config("claude"), session=session)
        with pytest.raises(EmptyResponseError):
            provider.generate("s", "u")

    def test_connection_error(self):
        session = FakeSession({("POST", MESSAGES): requests.Timeout("slow")})
        provider = ClaudeProvider("claude", remote_config("claude"), session=session)
        with pytest.raises(ProviderConnectionError):
            provider.generate("s", "u")
