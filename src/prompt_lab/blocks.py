"""Static catalog of prompt blocks in canonical order."""

from __future__ import annotations

from dataclasses import dataclass

from prompt_lab.models import BlockState


@dataclass(frozen=True)
class BlockDefinition:
    """One known prompt block: identifier, label, and editor hints."""

    id: str
    display_name: str
    is_required: bool = False
    description: str = ""
    placeholder: str = ""


BLOCK_CATALOG: tuple[BlockDefinition, ...] = (
    BlockDefinition(
        id="task",
        display_name="Task",
        is_required=True,
        description="What you want the model to do",
        placeholder="Describe the specific task you want the model to perform...",
    ),
    BlockDefinition(
        id="persona",
        display_name="Persona / Role",
        description="Who the model should act as",
        placeholder="You are a [role]. Act as a [specific persona]...",
    ),
    BlockDefinition(
        id="context",
        display_name="Context / Background",
        description="Relevant information and context",
        placeholder="Given the following context: [background information]...",
    ),
    BlockDefinition(
        id="constraints",
        display_name="Constraints",
        description="Tone, format, length, and other limitations",
        placeholder="Respond in a [tone] tone. Format as [format]. Keep it [length]...",
    ),
    BlockDefinition(
        id="examples",
        display_name="Few-shot Examples",
        description="Example inputs and outputs to guide the model",
        placeholder="Example 1:\nInput: [example input]\nOutput: [example output]",
    ),
    BlockDefinition(
        id="format",
        display_name="Output Format",
        description="How the response should be structured",
        placeholder="Please respond in the following format:\n[detailed format specification]",
    ),
    BlockDefinition(
        id="instruction",
        display_name="Instruction Style",
        description="How to approach the task (step-by-step, etc.)",
        placeholder="Let's approach this step by step:\n1. [first step]\n2. [second step]...",
    ),
)

_CATALOG_BY_ID: dict[str, BlockDefinition] = {block.id: block for block in BLOCK_CATALOG}


def block_ids() -> tuple[str, ...]:
    """Return catalog block ids in canonical order."""
    return tuple(block.id for block in BLOCK_CATALOG)


def get_block_definition(block_id: str) -> BlockDefinition:
    """Look up a block definition; raises KeyError for unknown ids."""
    return _CATALOG_BY_ID[block_id]


def is_known_block(block_id: str) -> bool:
    return block_id in _CATALOG_BY_ID


def display_name_for(block_id: str) -> str:
    """Return the display name for a block id, or the id itself when unknown."""
    definition = _CATALOG_BY_ID.get(block_id)
    return definition.display_name if definition is not None else block_id


def required_block_ids() -> tuple[str, ...]:
    return tuple(block.id for block in BLOCK_CATALOG if block.is_required)


def default_block_states() -> tuple[BlockState, ...]:
    """Return one empty, collapsed state per catalog block."""
    return tuple(BlockState(id=block.id, content="", is_collapsed=True) for block in BLOCK_CATALOG)
