"""pytest configuration and shared fakes for cmdstack tests."""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

from cmdstack.config import AppConfig, PathConfig

_KEY_VARIABLES = (
    "CMDSTACK_HOME",
    "CMDSTACK_CONFIG_FILE",
    "CMDSTACK_PROVIDER",
    "OLLAMA_HOST",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "ANTHROPIC_API_KEY",
    "DEEPSEEK_API_KEY",
    "GROK_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep developer credentials and dotfiles out of every test."""
    for name in _KEY_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("CMDSTACK_HOME", str(tmp_path / "home"))
    yield


@pytest.fixture
def app_config(tmp_path):
    """A default configuration rooted in a temporary home directory."""
    config = AppConfig()
    config.paths = PathConfig(home_dir=tmp_path / "home")
    config.config_path = config.paths.config_file
    return config


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        *,
        text: Optional[str] = None,
        lines: Optional[List[Any]] = None,
        chunks: Optional[List[bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")
        self._lines = lines or []
        self._chunks = chunks or []
        self.headers = headers or {}
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON payload")
        return self._payload

    def iter_lines(self):
        for line in self._lines:
            if isinstance(line, dict):
                yield json.dumps(line).encode("utf-8")
            else:
                yield line

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True
        return False


class FakeSession:
    """Route ``get``/``post`` calls by (method, url) to canned responses.

    A route value may be a response, an exception instance to raise, or a
    list consumed one item per call (the last item repeats).
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None):
        self.routes: Dict[Tuple[str, str], Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def _dispatch(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        route = self.routes.get((method, url))
        if route is None:
            raise requests.ConnectionError(f"no route for {method} {url}")
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def calls_to(self, method: str, url: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method and call["url"] == url]


class FakeProcess:
    """Stand-in for ``subprocess.Popen`` tracking whether it was reaped."""

    def __init__(self, pid: int = 4242, exit_code: Optional[int] = None):
        self.pid = pid
        self.returncode = exit_code
        self.killed = False
        self.waited = False

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        self.waited = True
        return self.returncode


class FakeProvider:
    """Provider double returning scripted responses or raising scripted errors."""

    def __init__(self, responses=None, *, name="fake", requires_credentials=False, available=True):
        self.name = name
        self.model = "fake-model"
        self.requires_credentials = requires_credentials
        self._available = available
        self._responses = list(responses or [])
        self.calls: List[Tuple[str, str]] = []

    def is_available(self):
        return self._available

    def setup_hint(self):
        return f"cmdstack config set {self.name}.api_key <your-key>"

    def list_models(self):
        return []

    def generate(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item
