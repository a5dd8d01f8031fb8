"""File adapter: turn uploaded bytes into attached-file records."""

from __future__ import annotations

from pathlib import Path

from prompt_lab.models import AttachedFile


def _display_name(name: str) -> str:
    # Browsers may send full client paths; only the file name is kept.
    return Path(str(name or "").replace("\\", "/")).name or "attachment.txt"


def attach_file(name: str, data: bytes) -> AttachedFile:
    """Build an AttachedFile whose content is the decoded text of `data`."""
    raw = bytes(data or b"")
    content = raw.decode("utf-8-sig", errors="replace")
    return AttachedFile(name=_display_name(name), size=len(raw), content=content)
