"""Run creation, fork lineage, and experiment versioning.

Experiments are never edited in place: every operation here returns a new
Experiment value with the change applied. Runs are only ever appended, and
after creation only their output, error category, evaluation, and notes
change.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable

from prompt_lab.baseline import find_run
from prompt_lab.change_validator import (
    Candidate,
    ValidationError,
    ValidationErrorCode,
    ValidationResult,
)
from prompt_lab.models import (
    MAIN_BRANCH,
    ChangeMetadata,
    ComparisonNote,
    Experiment,
    ExperimentAnalysis,
    ExperimentRun,
    RunEvaluation,
    new_record_id,
    utc_now_iso,
)
from prompt_lab.serializer import block_content_map, serialize_blocks

DEFAULT_EXPERIMENT_TITLE = "Prompt Experiment"


@dataclass
class RunTreeNode:
    """One run positioned in the fork tree."""

    run: ExperimentRun
    depth: int = 0
    children: list[RunTreeNode] = field(default_factory=list)


def normalize_title(title: str) -> str:
    return " ".join(str(title or "").split()).casefold()


def is_duplicate_title(title: str, existing: Iterable[Experiment], *, exclude_id: str | None = None) -> bool:
    """True when another experiment already uses this title, ignoring case and spacing."""
    normalized = normalize_title(title)
    return any(
        normalize_title(experiment.title) == normalized
        for experiment in existing
        if experiment.id != exclude_id
    )


def next_child_version(parent: Experiment, existing: Iterable[Experiment]) -> tuple[str, Experiment]:
    """Allocate the next version label for a child of `parent`.

    The count of versions already issued is kept on the parent so siblings get
    distinct labels. Experiments imported without a counter fall back to
    counting the children present in `existing`.
    """
    known_children = sum(1 for experiment in existing if experiment.parent_version == parent.id)
    issued = max(parent.child_versions_issued, known_children)
    updated_parent = replace(parent, child_versions_issued=issued + 1)
    return f"v{issued + 2}", updated_parent


def _make_run(
    candidate: Candidate,
    *,
    parent_run_id: str | None,
    branch_name: str,
    change_description: str | None,
) -> ExperimentRun:
    return ExperimentRun(
        id=new_record_id(),
        prompt=serialize_blocks(candidate.blocks),
        parameters=candidate.parameters,
        attached_files=tuple(candidate.files),
        parent_run_id=parent_run_id,
        branch_name=branch_name,
        change_description=change_description,
        blocks=tuple(candidate.blocks),
    )


def create_experiment(
    title: str,
    candidate: Candidate,
    existing: Iterable[Experiment],
    *,
    hypothesis: str = "",
    objective: str = "",
    description: str = "",
    parent: Experiment | None = None,
) -> tuple[Experiment, Experiment | None]:
    """Create an experiment with its first run attached.

    Returns the new experiment and, when derived from `parent`, the parent
    updated with its advanced version counter.
    """
    existing_list = list(existing)
    resolved_title = str(title or "").strip() or DEFAULT_EXPERIMENT_TITLE
    if is_duplicate_title(resolved_title, existing_list):
        raise ValidationError(ValidationErrorCode.DUPLICATE_TITLE)

    if parent is None:
        version, updated_parent = "v1", None
    else:
        version, updated_parent = next_child_version(parent, existing_list)

    first_run = _make_run(
        candidate,
        parent_run_id=None,
        branch_name=MAIN_BRANCH,
        change_description=None,
    )
    experiment = Experiment(
        id=new_record_id(),
        title=resolved_title,
        hypothesis=str(hypothesis or "").strip(),
        objective=str(objective or "").strip(),
        description=str(description or "").strip(),
        runs=(first_run,),
        version=version,
        parent_version=parent.id if parent is not None else None,
        block_content=block_content_map(candidate.blocks),
    )
    return experiment, updated_parent


def create_run(
    experiment: Experiment,
    candidate: Candidate,
    validation: ValidationResult,
    fork_run_id: str | None = None,
    *,
    branch_name: str | None = None,
) -> tuple[ExperimentRun, Experiment]:
    """Append a new run forked from `fork_run_id` (or the latest run)."""
    validation.raise_for_rejection()

    parent = find_run(experiment, fork_run_id) or experiment.latest_run
    iteration_number = len(experiment.runs) + 1
    resolved_branch = str(branch_name or "").strip()
    if not resolved_branch:
        resolved_branch = MAIN_BRANCH if parent is None else f"iteration-{iteration_number}"
    change_description = validation.changes[0] if validation.changes else f"Iteration {iteration_number}"

    run = _make_run(
        candidate,
        parent_run_id=parent.id if parent is not None else None,
        branch_name=resolved_branch,
        change_description=change_description,
    )
    return run, replace(experiment, runs=experiment.runs + (run,))


def _replace_run(experiment: Experiment, run_id: str, **changes: object) -> Experiment:
    if find_run(experiment, run_id) is None:
        raise KeyError(f"Run {run_id} is not part of experiment {experiment.id}.")
    runs = tuple(replace(run, **changes) if run.id == run_id else run for run in experiment.runs)
    return replace(experiment, runs=runs)


def record_run_output(
    experiment: Experiment,
    run_id: str,
    output: str,
    error_category: str | None = None,
) -> Experiment:
    """Store a run's output (or error marker) on a copy of the experiment."""
    return _replace_run(experiment, run_id, output=output, error_category=error_category)


def evaluate_run(experiment: Experiment, run_id: str, evaluation: RunEvaluation) -> Experiment:
    return _replace_run(experiment, run_id, evaluation=evaluation)


def annotate_run(experiment: Experiment, run_id: str, notes: str) -> Experiment:
    return _replace_run(experiment, run_id, notes=str(notes or "").strip())


def append_note(experiment: Experiment, text: str) -> Experiment:
    """Append one entry to the experiment's narrative log."""
    entry = str(text or "").strip()
    if not entry:
        return experiment
    notes = f"{experiment.notes}\n\n{entry}" if experiment.notes.strip() else entry
    return replace(experiment, notes=notes)


def set_change_metadata(experiment: Experiment, metadata: ChangeMetadata | None) -> Experiment:
    """Attach the change-impact note describing how this version differs from its parent."""
    return replace(experiment, change_metadata=metadata)


def record_comparison(experiment: Experiment, note: ComparisonNote) -> Experiment:
    """Save a comparison, replacing any earlier one for the same pair of runs."""
    for run_id in (note.first_run_id, note.second_run_id):
        if find_run(experiment, run_id) is None:
            raise KeyError(f"Run {run_id} is not part of experiment {experiment.id}.")
    analysis = experiment.analysis or ExperimentAnalysis()
    kept = tuple(
        existing
        for existing in analysis.run_comparisons
        if not existing.covers(note.first_run_id, note.second_run_id)
    )
    return replace(experiment, analysis=replace(analysis, run_comparisons=kept + (note,), timestamp=utc_now_iso()))


def saved_comparison(experiment: Experiment, first_run_id: str, second_run_id: str) -> ComparisonNote | None:
    if experiment.analysis is None:
        return None
    for note in experiment.analysis.run_comparisons:
        if note.covers(first_run_id, second_run_id):
            return note
    return None


def record_findings(
    experiment: Experiment,
    key_findings: Iterable[str],
    recommendations: Iterable[str] = (),
) -> Experiment:
    """Store the closing findings of an experiment, keeping saved comparisons."""
    analysis = experiment.analysis or ExperimentAnalysis()
    return replace(
        experiment,
        analysis=replace(
            analysis,
            key_findings=tuple(item.strip() for item in key_findings if item.strip()),
            recommendations=tuple(item.strip() for item in recommendations if item.strip()),
            timestamp=utc_now_iso(),
        ),
    )


def effective_parent_id(experiment: Experiment, index: int) -> str | None:
    """Parent of the run at `index`; legacy runs continue the preceding run."""
    run = experiment.runs[index]
    # Parents always precede their children; anything else is treated as legacy.
    earlier_ids = {earlier.id for earlier in experiment.runs[:index]}
    if run.parent_run_id in earlier_ids:
        return run.parent_run_id
    if index == 0:
        return None
    return experiment.runs[index - 1].id


def build_run_tree(experiment: Experiment) -> list[RunTreeNode]:
    """Arrange runs into fork trees, returning the root nodes in creation order."""
    nodes = {run.id: RunTreeNode(run=run) for run in experiment.runs}
    roots: list[RunTreeNode] = []
    for index, run in enumerate(experiment.runs):
        node = nodes[run.id]
        parent_id = effective_parent_id(experiment, index)
        if parent_id is None:
            roots.append(node)
            continue
        parent_node = nodes[parent_id]
        node.depth = parent_node.depth + 1
        parent_node.children.append(node)
    return roots


def branch_names(experiment: Experiment) -> list[str]:
    """Distinct branch names in order of first appearance."""
    names: list[str] = []
    for run in experiment.runs:
        name = run.branch_name or MAIN_BRANCH
        if name not in names:
            names.append(name)
    return names


def lineage(experiment: Experiment, run_id: str) -> list[ExperimentRun]:
    """Runs from the tree root down to `run_id`, inclusive."""
    index_by_id = {run.id: index for index, run in enumerate(experiment.runs)}
    if run_id not in index_by_id:
        raise KeyError(f"Run {run_id} is not part of experiment {experiment.id}.")
    chain: list[ExperimentRun] = []
    current: str | None = run_id
    while current is not None:
        index = index_by_id[current]
        chain.append(experiment.runs[index])
        current = effective_parent_id(experiment, index)
    chain.reverse()
    return chain
