"""Lets `python main.py` import prompt_lab from a plain checkout of the src layout."""

from __future__ import annotations

from pathlib import Path
from pkgutil import extend_path

__path__ = extend_path(__path__, __name__)  # type: ignore[name-defined]

_src_pkg = Path(__file__).resolve().parent.parent / "src" / __name__
if _src_pkg.is_dir():
    __path__.append(str(_src_pkg))

__all__ = [
    "config",
    "blocks",
    "models",
    "serializer",
    "baseline",
    "change_validator",
    "run_tree",
    "session",
    "engine",
    "llm_client",
    "persistence",
    "files",
    "diffs",
    "history_view",
]
