"""Prompt Lab package: structured prompt iteration with a tree of runs."""

from __future__ import annotations

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
