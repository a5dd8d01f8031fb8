"""Single-change validation between a candidate edit and its baseline.

A new run is permitted only when exactly one change-domain differs from the
resolved baseline: one generation parameter, or one block's content, or the
attached file set. This keeps every improvement or regression between
adjacent runs attributable to a single cause.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from prompt_lab.baseline import Baseline, find_run
from prompt_lab.blocks import display_name_for
from prompt_lab.models import AttachedFile, BlockState, Experiment, RunParameters

PARAMETER_LABELS: tuple[tuple[str, str], ...] = (
    ("model", "Model"),
    ("temperature", "Temperature"),
    ("max_tokens", "Max Tokens"),
)


class ValidationErrorCode(str, Enum):
    NO_CHANGES = "no_changes"
    TOO_MANY_PARAMETER_CHANGES = "too_many_parameter_changes"
    TOO_MANY_BLOCK_CHANGES = "too_many_block_changes"
    MIXED_CHANGES = "mixed_changes"
    NO_FORK_SELECTED = "no_fork_selected"
    DUPLICATE_TITLE = "duplicate_title"


REJECTION_MESSAGES: dict[ValidationErrorCode, str] = {
    ValidationErrorCode.NO_CHANGES: "No changes detected",
    ValidationErrorCode.TOO_MANY_PARAMETER_CHANGES: "Only one parameter can be changed at a time",
    ValidationErrorCode.TOO_MANY_BLOCK_CHANGES: "Only one component can be changed at a time",
    ValidationErrorCode.MIXED_CHANGES: "Change either one parameter or one component, not both",
    ValidationErrorCode.NO_FORK_SELECTED: "Select a fork point before creating a new run",
    ValidationErrorCode.DUPLICATE_TITLE: "An experiment with this title already exists",
}


class ValidationError(Exception):
    """Recoverable rejection of an edit; state is left unchanged."""

    def __init__(self, code: ValidationErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message or REJECTION_MESSAGES[code]
        super().__init__(self.message)


@dataclass(frozen=True)
class Candidate:
    """The user's current edit: parameters, block contents, and attached files."""

    parameters: RunParameters = field(default_factory=RunParameters)
    blocks: tuple[BlockState, ...] = ()
    files: tuple[AttachedFile, ...] = ()

    def content_for(self, block_id: str) -> str:
        for block in self.blocks:
            if block.id == block_id:
                return block.content
        return ""


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of comparing a candidate against its baseline."""

    allowed: bool
    reason: str = ""
    changes: tuple[str, ...] = ()
    error: ValidationErrorCode | None = None
    parameter_changes: tuple[str, ...] = ()
    changed_block_ids: tuple[str, ...] = ()
    file_changed: bool = False

    @property
    def parameter_change_count(self) -> int:
        return len(self.parameter_changes)

    @property
    def block_change_count(self) -> int:
        return len(self.changed_block_ids) + (1 if self.file_changed else 0)

    def raise_for_rejection(self) -> None:
        if not self.allowed:
            raise ValidationError(self.error or ValidationErrorCode.NO_CHANGES, self.reason or None)


def _reject(code: ValidationErrorCode, **details: object) -> ValidationResult:
    return ValidationResult(allowed=False, reason=REJECTION_MESSAGES[code], error=code, **details)


def diff_parameters(baseline: RunParameters | None, candidate: RunParameters) -> list[str]:
    """Describe each differing parameter as ``"<Field>: <old> → <new>"``."""
    if baseline is None:
        return []
    changes: list[str] = []
    for attribute, label in PARAMETER_LABELS:
        old_value = getattr(baseline, attribute)
        new_value = getattr(candidate, attribute)
        if old_value != new_value:
            changes.append(f"{label}: {old_value} → {new_value}")
    return changes


def diff_blocks(baseline_content: dict[str, str], blocks: Iterable[BlockState]) -> list[str]:
    """Return ids of blocks whose non-empty content differs from the baseline.

    Clearing a block to empty is not counted as a change.
    """
    changed: list[str] = []
    for block in blocks:
        current = block.content.strip()
        if not current or block.id in changed:
            continue
        if current != str(baseline_content.get(block.id, "")).strip():
            changed.append(block.id)
    return changed


def files_signature(files: Iterable[AttachedFile]) -> str:
    return "|".join(sorted(attached.signature for attached in files))


def _describe_files(files: Iterable[AttachedFile]) -> str:
    names = sorted(attached.name for attached in files)
    return ", ".join(names) if names else "(none)"


def validate_change(
    candidate: Candidate,
    baseline: Baseline,
    experiment: Experiment,
    selected_fork_run_id: str | None = None,
) -> ValidationResult:
    """Decide whether the candidate may become a new run."""
    if not experiment.runs:
        return ValidationResult(allowed=True)

    if len(experiment.runs) > 1 and find_run(experiment, selected_fork_run_id) is None:
        return _reject(ValidationErrorCode.NO_FORK_SELECTED)

    parameter_changes = diff_parameters(baseline.parameters, candidate.parameters)
    changed_block_ids = diff_blocks(baseline.block_content, candidate.blocks)
    file_changed = files_signature(baseline.files) != files_signature(candidate.files)

    block_changes = [f"{display_name_for(block_id)}: content modified" for block_id in changed_block_ids]
    file_changes = (
        [f"Attached file: {_describe_files(baseline.files)} → {_describe_files(candidate.files)}"]
        if file_changed
        else []
    )
    details = {
        "changes": tuple(parameter_changes + block_changes + file_changes),
        "parameter_changes": tuple(parameter_changes),
        "changed_block_ids": tuple(changed_block_ids),
        "file_changed": file_changed,
    }

    parameter_change_count = len(parameter_changes)
    block_change_count = len(changed_block_ids) + (1 if file_changed else 0)

    if parameter_change_count > 1:
        return _reject(ValidationErrorCode.TOO_MANY_PARAMETER_CHANGES, **details)
    if block_change_count > 1:
        return _reject(ValidationErrorCode.TOO_MANY_BLOCK_CHANGES, **details)
    if parameter_change_count and block_change_count:
        return _reject(ValidationErrorCode.MIXED_CHANGES, **details)
    if not parameter_change_count and not block_change_count:
        return _reject(ValidationErrorCode.NO_CHANGES, **details)
    return ValidationResult(allowed=True, **details)
