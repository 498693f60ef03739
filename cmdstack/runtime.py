"""Lifecycle management for the local Ollama runtime.

The manager finds or installs the ``ollama`` binary, starts ``ollama serve``
as a child process it exclusively owns, and makes sure a usable model is
present. Long operations report progress through an optional
``(status, percent)`` callback; the manager never writes to the console.
"""

from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import tarfile
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

import psutil
import requests

from .config import PathConfig
from .llm import ModelInfo, ProviderConnectionError, ProviderError, ProviderResponseError
from .logging import get_logger

LOGGER = get_logger(__name__)

OLLAMA_VERSION = "0.5.4"
DOWNLOAD_BASE = "https://github.com/ollama/ollama/releases/download/v{version}"
DEFAULT_BASE_URL = "http://127.0.0.1:11434"

ProgressCallback = Callable[[str, Optional[float]], None]


@dataclass(frozen=True)
class RecommendedModel:
    name: str
    size: str
    ram: str
    speed: str
    accuracy: str


RECOMMENDED_MODELS: Sequence[RecommendedModel] = (
    RecommendedModel("qwen2.5-coder:7b", "4GB", "6GB", "Normal", "Best"),
    RecommendedModel("qwen2.5-coder:3b", "2GB", "4GB", "Fast", "Good"),
    RecommendedModel("qwen2.5-coder:1.5b", "1GB", "3GB", "Fastest", "Basic"),
)
FALLBACK_MODEL = RECOMMENDED_MODELS[-1].name

_GIB = 1024 ** 3


def select_model_by_ram(total_bytes: int) -> str:
    """Pick a recommended model for a machine with ``total_bytes`` of RAM.

    Tiers are inclusive at their lower bound: 8 GiB and up gets the largest
    model, 4 GiB up to 8 GiB the mid-size one, anything smaller the minimal one.
    """

    ram_gb = total_bytes // _GIB
    if ram_gb >= 8:
        return RECOMMENDED_MODELS[0].name
    if ram_gb >= 4:
        return RECOMMENDED_MODELS[1].name
    return RECOMMENDED_MODELS[2].name


@lru_cache(maxsize=1)
def total_memory() -> int:
    return int(psutil.virtual_memory().total)


class RuntimeState(str, Enum):
    NOT_INSTALLED = "not_installed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    SERVER_STARTING = "server_starting"
    SERVER_READY = "server_ready"


class RuntimeManagerError(ProviderError):
    """Base exception for local runtime failures."""


class RuntimeInstallError(RuntimeManagerError):
    """Raised when the runtime binary cannot be downloaded or extracted."""


class RuntimeStartError(RuntimeManagerError):
    """Raised when ``ollama serve`` does not become healthy."""


class ModelPullError(RuntimeManagerError):
    """Raised when a model download fails."""


def binary_name(system: str) -> str:
    return "ollama.exe" if system == "windows" else "ollama"


def download_url(system: str, machine: str, version: str = OLLAMA_VERSION) -> Optional[str]:
    base = DOWNLOAD_BASE.format(version=version)
    if system == "darwin":
        return f"{base}/ollama-darwin"
    if system == "linux":
        if machine in {"x86_64", "amd64"}:
            return f"{base}/ollama-linux-amd64.tgz"
        if machine in {"aarch64", "arm64"}:
            return f"{base}/ollama-linux-arm64.tgz"
        return None
    if system == "windows":
        return f"{base}/ollama-windows-amd64.zip"
    return None


def _notify(progress: Optional[ProgressCallback], status: str, percent: Optional[float]) -> None:
    if progress is not None:
        progress(status, percent)


@dataclass
class _PullLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class RuntimeManager:
    """Install, start and provision a local Ollama server."""

    # Pulls are serialised per model name across every manager in the process.
    _pull_locks: Dict[str, _PullLock] = {}
    _pull_locks_guard = threading.Lock()

    def __init__(
        self,
        paths: PathConfig,
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        system: Optional[str] = None,
        machine: Optional[str] = None,
        version: str = OLLAMA_VERSION,
        poll_interval: float = 0.5,
        max_attempts: int = 30,
        probe_timeout: float = 2.0,
        request_timeout: float = 120.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.paths = paths
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.system = (system or platform.system()).lower()
        self.machine = (machine or platform.machine()).lower()
        self.version = version
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self.bin_path = paths.bin_dir / binary_name(self.system)
        self.models_dir = paths.models_dir
        self.is_managed = False
        self._session = session or requests.Session()
        self._popen = popen
        self._sleep = sleep
        self._which = which
        self._process: Optional[subprocess.Popen] = None
        self._state = RuntimeState.INSTALLED if self.is_installed() else RuntimeState.NOT_INSTALLED

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self._process

    # ------------------------------------------------------------------
    # Binary discovery and installation
    # ------------------------------------------------------------------
    def is_installed(self) -> bool:
        return self.bin_path.exists()

    def system_binary(self) -> Optional[str]:
        return self._which("ollama")

    def command(self) -> str:
        if self.is_managed or self.is_installed():
            return str(self.bin_path)
        return self.system_binary() or "ollama"

    def ensure_installed(self, progress: Optional[ProgressCallback] = None) -> str:
        """Return the binary to run, downloading a managed copy if none exists."""

        if self.is_installed():
            self.is_managed = True
            self._mark_installed()
            return str(self.bin_path)

        system_binary = self.system_binary()
        if system_binary:
            LOGGER.debug("Using system Ollama at %s", system_binary)
            self.is_managed = False
            self._mark_installed()
            return system_binary

        self._state = RuntimeState.INSTALLING
        try:
            self._download(progress)
        except BaseException:
            self._state = RuntimeState.NOT_INSTALLED
            raise
        self.is_managed = True
        self._state = RuntimeState.INSTALLED
        LOGGER.info("Installed Ollama %s to %s", self.version, self.bin_path)
        return str(self.bin_path)

    def _mark_installed(self) -> None:
        if self._state in (RuntimeState.NOT_INSTALLED, RuntimeState.INSTALLING):
            self._state = RuntimeState.INSTALLED

    def _download(self, progress: Optional[ProgressCallback]) -> None:
        url = download_url(self.system, self.machine, self.version)
        if url is None:
            raise RuntimeInstallError(f"Unsupported platform: {self.system}/{self.machine}")

        _notify(progress, "Downloading Ollama...", 0.0)
        self.paths.bin_dir.mkdir(parents=True, exist_ok=True)

        try:
            response = self._session.get(url, stream=True, timeout=self.request_timeout)
        except requests.RequestException as exc:
            raise RuntimeInstallError(f"Failed to download Ollama: {exc}") from exc

        with tempfile.NamedTemporaryFile(prefix="ollama-download-", delete=False) as handle:
            archive = Path(handle.name)
        try:
            with response:
                if response.status_code != 200:
                    raise RuntimeInstallError(f"Failed to download Ollama: HTTP {response.status_code}")
                total = int(response.headers.get("Content-Length") or 0)
                downloaded = 0
                with archive.open("wb") as target:
                    try:
                        for chunk in response.iter_content(chunk_size=32 * 1024):
                            if not chunk:
                                continue
                            target.write(chunk)
                            downloaded += len(chunk)
                            percent = downloaded / total * 100 if total > 0 else None
                            _notify(progress, "Downloading Ollama...", percent)
                    except requests.RequestException as exc:
                        raise RuntimeInstallError(f"Download of Ollama interrupted: {exc}") from exc

            _notify(progress, "Extracting Ollama...", 100.0)
            self._extract(archive)
            self.bin_path.chmod(0o755)
        finally:
            archive.unlink(missing_ok=True)

    def _extract(self, archive: Path) -> None:
        try:
            if self.system == "darwin":
                shutil.copyfile(archive, self.bin_path)
            elif self.system == "linux":
                self._extract_tarball(archive)
            elif self.system == "windows":
                self._extract_zip(archive)
            else:
                raise RuntimeInstallError(f"Unsupported platform: {self.system}")
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
            raise RuntimeInstallError(f"Failed to extract Ollama: {exc}") from exc

    def _extract_tarball(self, archive: Path) -> None:
        with tarfile.open(archive, "r:gz") as bundle:
            members = {member.name.lstrip("./"): member for member in bundle.getmembers() if member.isfile()}
            member = members.get("bin/ollama") or members.get("ollama")
            if member is None:
                raise RuntimeInstallError("ollama binary not found in archive")
            source = bundle.extractfile(member)
            if source is None:
                raise RuntimeInstallError("ollama binary in archive is not readable")
            with source, self.bin_path.open("wb") as target:
                shutil.copyfileobj(source, target)

    def _extract_zip(self, archive: Path) -> None:
        with zipfile.ZipFile(archive) as bundle:
            for name in bundle.namelist():
                if name.endswith("ollama.exe"):
                    with bundle.open(name) as source, self.bin_path.open("wb") as target:
                        shutil.copyfileobj(source, target)
                    return
        raise RuntimeInstallError("ollama.exe not found in archive")

    # ------------------------------------------------------------------
    # Server process
    # ------------------------------------------------------------------
    @property
    def bind_address(self) -> str:
        return urlparse(self.base_url).netloc or "127.0.0.1:11434"

    def is_server_ready(self) -> bool:
        """Probe ``/api/tags``; a failed probe demotes a ready server to starting."""

        try:
            response = self._session.get(f"{self.base_url}/api/tags", timeout=self.probe_timeout)
            ready = response.status_code == 200
        except requests.RequestException:
            ready = False

        if ready:
            self._state = RuntimeState.SERVER_READY
        elif self._state == RuntimeState.SERVER_READY:
            self._state = RuntimeState.SERVER_STARTING
        return ready

    def start_server(self) -> Optional[subprocess.Popen]:
        """Launch ``ollama serve`` and block until it answers health probes.

        Returns the child process, or ``None`` when a server was already
        reachable. On timeout the child is killed before the error is raised.
        """

        if self.is_server_ready():
            return self._process

        env = dict(os.environ)
        env["OLLAMA_MODELS"] = str(self.models_dir)
        env["OLLAMA_HOST"] = self.bind_address
        self.models_dir.mkdir(parents=True, exist_ok=True)

        self._state = RuntimeState.SERVER_STARTING
        try:
            process = self._popen(
                [self.command(), "serve"],
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            self._state = RuntimeState.INSTALLED
            raise RuntimeStartError(f"Failed to launch Ollama: {exc}") from exc

        try:
            for _ in range(self.max_attempts):
                self._sleep(self.poll_interval)
                if self.is_server_ready():
                    self._process = process
                    LOGGER.info("Ollama server ready at %s (pid %s)", self.base_url, process.pid)
                    return process
                if process.poll() is not None:
                    break
        except BaseException:
            self._terminate(process)
            self._state = RuntimeState.INSTALLED
            raise

        self._terminate(process)
        self._state = RuntimeState.INSTALLED
        raise RuntimeStartError(
            f"Ollama server did not become ready at {self.base_url} "
            f"after {self.max_attempts} attempts"
        )

    def stop_server(self) -> None:
        if self._process is not None:
            self._terminate(self._process)
            self._process = None
            self._state = RuntimeState.INSTALLED

    def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is None:
            process.kill()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            LOGGER.warning("Ollama process %s did not exit after kill", process.pid)

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------
    def list_models(self) -> List[ModelInfo]:
        url = f"{self.base_url}/api/tags"
        try:
            response = self._session.get(url, timeout=self.request_timeout)
        except requests.RequestException as exc:
            raise ProviderConnectionError(f"Unable to reach Ollama at {self.base_url}") from exc

        if response.status_code != 200:
            raise ProviderResponseError(
                f"Unexpected Ollama response ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderResponseError("Ollama returned invalid JSON for /api/tags.") from exc
        models = payload.get("models", []) or []
        return [
            ModelInfo(name=model["name"], size=int(model.get("size") or 0))
            for model in models
            if model.get("name")
        ]

    @staticmethod
    def has_model(model: str, installed: Sequence[ModelInfo]) -> bool:
        """Match ``model`` exactly or as a tag prefix (``7b`` matches ``7b-q4_0``)."""

        for info in installed:
            if info.name == model or info.name == f"{model}:latest":
                return True
            if ":" in model and info.name.startswith(model):
                return True
        return False

    def pull_model(self, model: str, progress: Optional[ProgressCallback] = None) -> None:
        url = f"{self.base_url}/api/pull"
        try:
            response = self._session.post(
                url,
                json={"name": model, "stream": True},
                stream=True,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise ModelPullError(f"Failed to pull '{model}': {exc}") from exc

        with response:
            if response.status_code != 200:
                raise ModelPullError(
                    f"Failed to pull '{model}': HTTP {response.status_code} {response.text}"
                )
            try:
                for line in response.iter_lines():
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except ValueError:
                        continue
                    if event.get("error"):
                        raise ModelPullError(f"Failed to pull '{model}': {event['error']}")
                    total = event.get("total") or 0
                    completed = event.get("completed") or 0
                    percent = completed / total * 100 if total else None
                    _notify(progress, f"Pulling {model}: {event.get('status', '')}", percent)
            except requests.RequestException as exc:
                raise ModelPullError(f"Pull of '{model}' interrupted: {exc}") from exc
        LOGGER.info("Pulled model %s", model)

    @classmethod
    @contextmanager
    def _lock_for(cls, model: str) -> Iterator[None]:
        """Hold the pull lock for ``model``; the entry is dropped once unused."""

        with cls._pull_locks_guard:
            entry = cls._pull_locks.setdefault(model, _PullLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with cls._pull_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del cls._pull_locks[model]

    def ensure_model(self, model: str, progress: Optional[ProgressCallback] = None) -> str:
        """Return a model name that is present on the server.

        Prefers ``model``; then any recommended model already installed; then
        pulls ``model``; and finally pulls the minimal fallback model.
        """

        with self._lock_for(model):
            installed = self.list_models()
            if self.has_model(model, installed):
                return model

            for option in RECOMMENDED_MODELS:
                if self.has_model(option.name, installed):
                    LOGGER.info("Model %s not installed; using %s", model, option.name)
                    return option.name

            try:
                self.pull_model(model, progress)
                return model
            except ModelPullError as exc:
                if model == FALLBACK_MODEL:
                    raise
                LOGGER.warning("%s; trying fallback model %s", exc, FALLBACK_MODEL)

        with self._lock_for(FALLBACK_MODEL):
            self.pull_model(FALLBACK_MODEL, progress)
        return FALLBACK_MODEL
