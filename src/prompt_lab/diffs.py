"""Run comparison and human-readable text diffs."""

from __future__ import annotations

from dataclasses import dataclass
import difflib

from prompt_lab.baseline import run_block_content
from prompt_lab.blocks import block_ids, display_name_for
from prompt_lab.change_validator import diff_parameters, files_signature
from prompt_lab.models import ComparisonNote, ExperimentRun


@dataclass(frozen=True)
class RunComparison:
    """Differences between two runs, oldest first."""

    first_run_id: str
    second_run_id: str
    parameter_changes: tuple[str, ...]
    changed_block_ids: tuple[str, ...]
    files_changed: bool
    prompt_diff: str
    output_diff: str
    output_similarity: float

    @property
    def differences(self) -> tuple[str, ...]:
        block_lines = tuple(f"{display_name_for(block_id)} changed" for block_id in self.changed_block_ids)
        file_lines = ("Attached files changed",) if self.files_changed else ()
        return self.parameter_changes + block_lines + file_lines


def unified_text_diff(
    previous_output: str,
    current_output: str,
    *,
    previous_label: str = "previous",
    current_label: str = "selected",
) -> str:
    """Return a unified diff string between previous and current output snapshots."""
    previous_lines = str(previous_output).splitlines()
    current_lines = str(current_output).splitlines()
    diff_lines = difflib.unified_diff(
        previous_lines,
        current_lines,
        fromfile=previous_label,
        tofile=current_label,
        lineterm="",
    )
    return "\n".join(diff_lines)


def compare_runs(first: ExperimentRun, second: ExperimentRun) -> RunComparison:
    """Compare two runs across parameters, blocks, files, prompt, and output.

    Unlike change validation, a block cleared between the two runs is reported.
    """
    first_content = run_block_content(first)
    second_content = run_block_content(second)
    changed_blocks = tuple(
        block_id
        for block_id in block_ids()
        if first_content.get(block_id, "").strip() != second_content.get(block_id, "").strip()
    )
    matcher = difflib.SequenceMatcher(a=first.output, b=second.output, autojunk=False)
    return RunComparison(
        first_run_id=first.id,
        second_run_id=second.id,
        parameter_changes=tuple(diff_parameters(first.parameters, second.parameters)),
        changed_block_ids=changed_blocks,
        files_changed=files_signature(first.attached_files) != files_signature(second.attached_files),
        prompt_diff=unified_text_diff(first.prompt, second.prompt, previous_label=first.id, current_label=second.id),
        output_diff=unified_text_diff(first.output, second.output, previous_label=first.id, current_label=second.id),
        output_similarity=round(matcher.ratio(), 3),
    )


def comparison_note(comparison: RunComparison, notes: str = "", key_insights: tuple[str, ...] = ()) -> ComparisonNote:
    """Turn a computed comparison into the record saved on the experiment."""
    return ComparisonNote(
        first_run_id=comparison.first_run_id,
        second_run_id=comparison.second_run_id,
        differences=comparison.differences,
        similarity_score=round(comparison.output_similarity * 100),
        key_insights=key_insights,
        notes=str(notes or "").strip(),
    )
