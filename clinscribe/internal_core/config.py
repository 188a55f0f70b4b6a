from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from clinscribe.utils.paths import default_app_support_dir, resolve_ollama_binary

DEFAULT_MODEL = "gpt-oss:20b"
DEFAULT_OLLAMA_PORT = 11435


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_path(name: str, default: Path) -> Path:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return Path(raw).expanduser().resolve()


@dataclass(frozen=True)
class ScribeConfig:
    SCRIBE_OLLAMA_BIN: Optional[str]
    SCRIBE_OLLAMA_HOST: str
    SCRIBE_OLLAMA_PORT: int
    SCRIBE_APP_SUPPORT_DIR: Path
    SCRIBE_REQUIRED_MODEL: str
    SCRIBE_MODEL_PREFIX: str
    SCRIBE_PROBE_TIMEOUT_SEC: float
    SCRIBE_POLL_INTERVAL_SEC: float
    SCRIBE_POLL_ATTEMPTS: int
    SCRIBE_REQUEST_TIMEOUT_SEC: float
    SCRIBE_RESOURCE_TIMEOUT_SEC: float
    SCRIBE_LLM_TEMPERATURE: float
    SCRIBE_LLM_MAX_TOKENS: int
    SCRIBE_DIAGNOSTIC_MAX_CHARS: int
    SCRIBE_LOG_LEVEL: str

    @property
    def base_url(self) -> str:
        return f"http://{self.SCRIBE_OLLAMA_HOST}:{self.SCRIBE_OLLAMA_PORT}"

    def models_dir_path(self) -> Path:
        return self.SCRIBE_APP_SUPPORT_DIR / "models"


def load_config() -> ScribeConfig:
    probe_timeout = _getenv_float("SCRIBE_PROBE_TIMEOUT_SEC", 0.3)
    poll_interval = _getenv_float("SCRIBE_POLL_INTERVAL_SEC", 0.5)
    poll_attempts = _getenv_int("SCRIBE_POLL_ATTEMPTS", 30)
    if poll_attempts < 1:
        raise ValueError("SCRIBE_POLL_ATTEMPTS must be >= 1")
    if probe_timeout <= 0:
        raise ValueError("SCRIBE_PROBE_TIMEOUT_SEC must be > 0")

    request_timeout = _getenv_float("SCRIBE_REQUEST_TIMEOUT_SEC", 300.0)
    resource_timeout = _getenv_float("SCRIBE_RESOURCE_TIMEOUT_SEC", 600.0)
    if resource_timeout < request_timeout:
        raise ValueError("SCRIBE_RESOURCE_TIMEOUT_SEC must not be shorter than SCRIBE_REQUEST_TIMEOUT_SEC")

    return ScribeConfig(
        SCRIBE_OLLAMA_BIN=resolve_ollama_binary(os.getenv("SCRIBE_OLLAMA_BIN")),
        SCRIBE_OLLAMA_HOST=_getenv_str("SCRIBE_OLLAMA_HOST", "127.0.0.1"),
        SCRIBE_OLLAMA_PORT=_getenv_int("SCRIBE_OLLAMA_PORT", DEFAULT_OLLAMA_PORT),
        SCRIBE_APP_SUPPORT_DIR=_getenv_path("SCRIBE_APP_SUPPORT_DIR", default_app_support_dir()),
        SCRIBE_REQUIRED_MODEL=_getenv_str("SCRIBE_REQUIRED_MODEL", DEFAULT_MODEL),
        SCRIBE_MODEL_PREFIX=_getenv_str("SCRIBE_MODEL_PREFIX", "gpt-oss"),
        SCRIBE_PROBE_TIMEOUT_SEC=probe_timeout,
        SCRIBE_POLL_INTERVAL_SEC=poll_interval,
        SCRIBE_POLL_ATTEMPTS=poll_attempts,
        SCRIBE_REQUEST_TIMEOUT_SEC=request_timeout,
        SCRIBE_RESOURCE_TIMEOUT_SEC=resource_timeout,
        SCRIBE_LLM_TEMPERATURE=_getenv_float("SCRIBE_LLM_TEMPERATURE", 0.3),
        SCRIBE_LLM_MAX_TOKENS=_getenv_int("SCRIBE_LLM_MAX_TOKENS", 1024),
        SCRIBE_DIAGNOSTIC_MAX_CHARS=_getenv_int("SCRIBE_DIAGNOSTIC_MAX_CHARS", 200),
        SCRIBE_LOG_LEVEL=_getenv_str("SCRIBE_LOG_LEVEL", "INFO"),
    )
