from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path

APP_DIR_NAME = "ClinicalScribe"


def project_root() -> Path:
    # clinscribe/utils/paths.py -> clinscribe -> project
    return Path(__file__).resolve().parents[2]


def default_app_support_dir() -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    xdg = os.getenv("XDG_DATA_HOME", "").strip()
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / APP_DIR_NAME


def binary_search_roots() -> list[Path]:
    base = project_root()
    return [base / "bin", base.parent / "bin"]


def _first_executable(candidates: list[Path]) -> str:
    for path in candidates:
        try:
            resolved = path.expanduser().resolve()
        except Exception:
            continue
        if resolved.is_file() and os.access(resolved, os.X_OK):
            return str(resolved)
    return ""


def resolve_ollama_binary(explicit_path: str | None = None) -> str | None:
    """
    Resolve the Ollama executable with precedence:
    1) explicit arg (normally SCRIBE_OLLAMA_BIN)
    2) bundled `bin/ollama` next to the package
    3) `ollama` on PATH
    Returns None when nothing is found; the supervisor reports that as a start failure.
    """

    explicit = str(explicit_path or "").strip()
    if explicit:
        return str(Path(explicit).expanduser())

    bundled = _first_executable([root / "ollama" for root in binary_search_roots()])
    if bundled:
        return bundled

    return shutil.which("ollama")
