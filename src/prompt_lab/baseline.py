"""Resolve the reference snapshot a candidate edit is compared against."""

from __future__ import annotations

from dataclasses import dataclass, field

from prompt_lab.models import AttachedFile, Experiment, ExperimentRun, RunParameters
from prompt_lab.serializer import block_content_map, parse_prompt


@dataclass(frozen=True)
class Baseline:
    """Parameters, block content, and files of the comparison reference."""

    parameters: RunParameters | None
    block_content: dict[str, str] = field(default_factory=dict)
    files: tuple[AttachedFile, ...] = ()
    source_run_id: str | None = None


def find_run(experiment: Experiment, run_id: str | None) -> ExperimentRun | None:
    """Return the run with the given id, or None when absent."""
    if not run_id:
        return None
    for run in experiment.runs:
        if run.id == run_id:
            return run
    return None


def run_block_content(run: ExperimentRun) -> dict[str, str]:
    """Block content of a run, reparsing the flat prompt for legacy records."""
    if run.blocks:
        return block_content_map(run.blocks)
    return block_content_map(parse_prompt(run.prompt, True))


def baseline_from_run(run: ExperimentRun) -> Baseline:
    return Baseline(
        parameters=run.parameters,
        block_content=run_block_content(run),
        files=tuple(run.attached_files),
        source_run_id=run.id,
    )


def resolve_baseline(experiment: Experiment, selected_fork_run_id: str | None = None) -> Baseline:
    """Resolve the baseline: selected fork run, else latest run, else the block snapshot."""
    fork_run = find_run(experiment, selected_fork_run_id)
    if fork_run is not None:
        return baseline_from_run(fork_run)
    if experiment.runs:
        return baseline_from_run(experiment.runs[-1])
    return Baseline(parameters=None, block_content=dict(experiment.block_content or {}))
