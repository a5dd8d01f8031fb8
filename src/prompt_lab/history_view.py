"""Helpers for rendering run history entries in the UI."""

from __future__ import annotations

from prompt_lab.models import ChangeMetadata, Experiment, ExperimentRun, LabNotebookEntry
from prompt_lab.run_tree import RunTreeNode, build_run_tree


def _display_or_dash(value: str | None) -> str:
    text = str(value or "").strip()
    return text if text else "-"


def format_run_status(run: ExperimentRun) -> str:
    if run.failed:
        return f"failed ({run.error_category})"
    if run.output:
        return "completed"
    return "running"


def format_run_header(run: ExperimentRun, run_number: int) -> str:
    """Build a compact header for collapsed run rows."""
    parameters = run.parameters
    return (
        f"run={run_number} | branch={_display_or_dash(run.branch_name)} | "
        f"model={parameters.model} | temp={parameters.temperature} | "
        f"max_tokens={parameters.max_tokens} | status={format_run_status(run)} | "
        f"ts={_display_or_dash(run.timestamp)}"
    )


def format_run_label(run: ExperimentRun, run_number: int) -> str:
    """Short label for fork-point pickers."""
    change = _display_or_dash(run.change_description)
    return f"Run {run_number} ({_display_or_dash(run.branch_name)}): {change}"


def render_run_tree(experiment: Experiment) -> list[str]:
    """Indented outline of the fork tree, one line per run."""
    numbers = {run.id: index + 1 for index, run in enumerate(experiment.runs)}
    lines: list[str] = []

    def visit(node: RunTreeNode) -> None:
        indent = "  " * node.depth
        marker = "└─ " if node.depth else ""
        lines.append(f"{indent}{marker}{format_run_label(node.run, numbers[node.run.id])}")
        for child in node.children:
            visit(child)

    for root in build_run_tree(experiment):
        visit(root)
    return lines


def format_experiment_title(experiment: Experiment) -> str:
    return f"{experiment.version} - {experiment.title} ({len(experiment.runs)} runs)"


def format_change_metadata(metadata: ChangeMetadata | None) -> str:
    if metadata is None:
        return "No change notes recorded."
    keep = "keep" if metadata.keep_this_version else "discard"
    return (
        f"Changed: {_display_or_dash(metadata.what_changed)} | Why: {_display_or_dash(metadata.why_changed)} | "
        f"Improved: {metadata.did_it_improve} | Verdict: {keep}"
    )


def format_notebook_entry(entry: LabNotebookEntry) -> str:
    """One-line notebook listing: star, title, category, date, tags."""
    star = "* " if entry.starred else ""
    tags = " ".join(f"#{tag}" for tag in entry.tags)
    line = f"{star}{entry.title} [{entry.category}] {entry.timestamp[:10]}"
    return f"{line} {tags}" if tags else line
