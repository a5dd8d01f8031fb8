"""Conversion between block states and the flat prompt text sent to the model.

Serialization is exact. Parsing is the lossy direction: it recovers block
structure from a previously flattened prompt and exists for records that were
stored without structured blocks.

Parsing rules:
- The text is split on blank lines (double newline) into sections.
- A section opens a block when its first line is an exact
  ``"<Display Name>:"`` header. One empty line before the header is given
  back to the previous block as a trailing newline. A header standing alone
  opens a block whose content began with a newline.
- Text with no exact headers at all is treated as a legacy record, where a
  section of two or more lines opens the first catalog entry whose display
  name or id occurs in its first line.
- Sections that do not open a block continue the previous block, so content
  containing blank lines survives a round trip.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from prompt_lab.blocks import BLOCK_CATALOG, BlockDefinition, block_ids, is_known_block
from prompt_lab.models import BlockState

SECTION_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ParseReport:
    """Parsed blocks plus notes about any guesses the parser had to make."""

    blocks: tuple[BlockState, ...]
    ambiguities: tuple[str, ...]

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.ambiguities)


def format_block(definition: BlockDefinition, content: str) -> str:
    return f"{definition.display_name}:\n{content}"


def serialize_blocks(blocks: Iterable[BlockState]) -> str:
    """Join non-empty blocks in catalog order as ``Name:\\ncontent`` sections."""
    content_by_id = {block.id: block.content for block in blocks if is_known_block(block.id)}
    sections = [
        format_block(definition, content_by_id[definition.id])
        for definition in BLOCK_CATALOG
        if content_by_id.get(definition.id, "").strip()
    ]
    return SECTION_SEPARATOR.join(sections)


def block_content_map(blocks: Iterable[BlockState]) -> dict[str, str]:
    """Reduce block states to an id -> content map."""
    return {block.id: block.content for block in blocks}


def _exact_header(line: str) -> BlockDefinition | None:
    stripped = line.strip()
    for definition in BLOCK_CATALOG:
        if stripped == f"{definition.display_name}:":
            return definition
    return None


def _substring_header(line: str) -> BlockDefinition | None:
    for definition in BLOCK_CATALOG:
        if definition.display_name in line or definition.id in line:
            return definition
    return None


def _section_header(lines: list[str]) -> tuple[BlockDefinition | None, int]:
    """Find an exact header at the top of a section and the index of its line.

    The header may sit behind one empty line. That line is the trailing
    newline of the previous block's content.
    """
    index = 1 if len(lines) >= 2 and lines[0] == "" else 0
    return _exact_header(lines[index]), index


def parse_prompt_report(text: str, expand_all: bool = True) -> ParseReport:
    """Parse flat prompt text into catalog-ordered block states with diagnostics."""
    sections = [section.split("\n") for section in str(text or "").split(SECTION_SEPARATOR)]
    # Text written by serialize_blocks always carries exact headers; the
    # substring heuristic is reserved for older free-form records.
    allow_substring = not any(_section_header(lines)[0] is not None for lines in sections)
    contents: dict[str, str] = {}
    ambiguities: list[str] = []
    current_id: str | None = None
    # Set while the current block was opened by a bare header line, which
    # means its content started with a newline eaten by the separator.
    bare = False

    for lines in sections:
        section = "\n".join(lines)
        definition, index = _section_header(lines)
        exact = definition is not None
        if definition is None and allow_substring and len(lines) >= 2:
            definition, index = _substring_header(lines[0]), 0

        if definition is not None and definition.id in contents:
            ambiguities.append(
                f"Duplicate header for block '{definition.id}' treated as content: {lines[index].strip()!r}"
            )
            definition = None

        if definition is None:
            if current_id is None:
                if section.strip():
                    ambiguities.append(f"Text before the first block header was dropped: {lines[0].strip()!r}")
            elif bare:
                contents[current_id] = f"\n{section}"
                bare = False
            else:
                contents[current_id] = f"{contents[current_id]}{SECTION_SEPARATOR}{section}"
            continue

        if not exact:
            ambiguities.append(
                f"Header {lines[0].strip()!r} matched block '{definition.id}' by substring."
            )
        if index and current_id is not None and not bare:
            contents[current_id] = f"{contents[current_id]}\n"
        current_id = definition.id
        body = lines[index + 1:]
        contents[current_id] = "\n".join(body)
        bare = not body

    parsed = tuple(
        BlockState(
            id=block_id,
            content=contents.get(block_id, ""),
            is_collapsed=(not expand_all) if contents.get(block_id, "") else True,
        )
        for block_id in block_ids()
    )
    return ParseReport(blocks=parsed, ambiguities=tuple(ambiguities))


def parse_prompt(text: str, expand_all: bool = True) -> tuple[BlockState, ...]:
    """Best-effort recovery of block states from a flattened prompt."""
    return parse_prompt_report(text, expand_all).blocks
