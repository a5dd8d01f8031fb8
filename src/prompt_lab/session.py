"""Iteration session: one value holding the candidate edit, fork pointer, and stage.

Every operation returns a new session with the baseline and validation
recomputed from scratch, so the UI never tracks "which field changed" flags of
its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
import logging
from typing import Iterable

from prompt_lab.baseline import Baseline, find_run, resolve_baseline
from prompt_lab.blocks import default_block_states, get_block_definition, required_block_ids
from prompt_lab.change_validator import Candidate, ValidationResult, validate_change
from prompt_lab.models import Experiment, ExperimentRun, RunParameters
from prompt_lab.run_tree import create_experiment, create_run, record_run_output
from prompt_lab.serializer import parse_prompt

LOGGER = logging.getLogger("prompt_lab.session")


class WorkflowStage(str, Enum):
    SETUP = "setup"
    BUILDING = "building"
    LOADING = "loading"
    EVALUATION = "evaluation"
    ITERATION = "iteration"
    COMPARISON = "comparison"


_TRANSITIONS: dict[WorkflowStage, frozenset[WorkflowStage]] = {
    WorkflowStage.SETUP: frozenset({WorkflowStage.BUILDING, WorkflowStage.LOADING}),
    WorkflowStage.BUILDING: frozenset({WorkflowStage.LOADING}),
    WorkflowStage.LOADING: frozenset({WorkflowStage.EVALUATION}),
    WorkflowStage.EVALUATION: frozenset(
        {WorkflowStage.ITERATION, WorkflowStage.LOADING, WorkflowStage.COMPARISON}
    ),
    WorkflowStage.ITERATION: frozenset(
        {WorkflowStage.EVALUATION, WorkflowStage.LOADING, WorkflowStage.COMPARISON}
    ),
    WorkflowStage.COMPARISON: frozenset({WorkflowStage.ITERATION, WorkflowStage.EVALUATION}),
}


class SessionError(Exception):
    """Workflow operation not permitted in the current stage."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class IterationSession:
    """Current candidate, fork pointer, workflow stage, and derived validation."""

    experiment: Experiment | None = None
    candidate: Candidate = field(default_factory=Candidate)
    fork_run_id: str | None = None
    stage: WorkflowStage = WorkflowStage.SETUP
    active_run_id: str | None = None
    baseline: Baseline | None = None
    validation: ValidationResult | None = None

    @property
    def is_run_in_flight(self) -> bool:
        return self.stage == WorkflowStage.LOADING

    @property
    def can_run(self) -> bool:
        if self.is_run_in_flight:
            return False
        if self.experiment is None:
            return True
        return self.validation is not None and self.validation.allowed

    @property
    def active_run(self) -> ExperimentRun | None:
        if self.experiment is None:
            return None
        return find_run(self.experiment, self.active_run_id)


def _recompute(session: IterationSession) -> IterationSession:
    if session.experiment is None:
        return replace(session, baseline=None, validation=None)
    baseline = resolve_baseline(session.experiment, session.fork_run_id)
    validation = validate_change(session.candidate, baseline, session.experiment, session.fork_run_id)
    return replace(session, baseline=baseline, validation=validation)


def _transition(session: IterationSession, target: WorkflowStage) -> IterationSession:
    if session.stage == target:
        return session
    if target not in _TRANSITIONS[session.stage]:
        raise SessionError(f"Cannot move from {session.stage.value} to {target.value}.")
    LOGGER.info("stage_transition from=%s to=%s", session.stage.value, target.value)
    return replace(session, stage=target)


def candidate_from_run(run: ExperimentRun) -> Candidate:
    """Seed a candidate edit from a stored run, reparsing legacy flat prompts."""
    blocks = run.blocks or parse_prompt(run.prompt, True)
    return Candidate(parameters=run.parameters, blocks=tuple(blocks), files=tuple(run.attached_files))


def new_session(candidate: Candidate | None = None) -> IterationSession:
    if candidate is None:
        candidate = Candidate(parameters=RunParameters(), blocks=default_block_states())
    return IterationSession(candidate=candidate)


def open_experiment(experiment: Experiment) -> IterationSession:
    """Resume an experiment with the fork pointer on its latest run."""
    latest = experiment.latest_run
    if latest is None:
        session = IterationSession(experiment=experiment, stage=WorkflowStage.BUILDING)
        return _recompute(replace(session, candidate=new_session().candidate))
    session = IterationSession(
        experiment=experiment,
        candidate=candidate_from_run(latest),
        fork_run_id=latest.id,
        stage=WorkflowStage.EVALUATION,
    )
    return _recompute(session)


def update_candidate(session: IterationSession, candidate: Candidate) -> IterationSession:
    """Replace the candidate edit and revalidate it."""
    next_session = replace(session, candidate=candidate)
    if session.stage == WorkflowStage.SETUP:
        next_session = _transition(next_session, WorkflowStage.BUILDING)
    elif session.stage in (WorkflowStage.EVALUATION, WorkflowStage.COMPARISON):
        next_session = _transition(next_session, WorkflowStage.ITERATION)
    return _recompute(next_session)


def select_fork(session: IterationSession, run_id: str) -> IterationSession:
    """Point the next iteration at `run_id` as its baseline and parent."""
    if session.experiment is None or find_run(session.experiment, run_id) is None:
        raise SessionError(f"Run {run_id} is not part of the current experiment.")
    return _recompute(replace(session, fork_run_id=run_id))


def start_experiment(
    session: IterationSession,
    title: str,
    existing: Iterable[Experiment],
    *,
    hypothesis: str = "",
    objective: str = "",
    description: str = "",
    parent: Experiment | None = None,
) -> tuple[IterationSession, ExperimentRun, Experiment | None]:
    """Create an experiment from the candidate and put its first run in flight."""
    if session.is_run_in_flight:
        raise SessionError("A run is already in progress.")
    if session.experiment is not None:
        raise SessionError("An experiment is already open in this session.")
    experiment, updated_parent = create_experiment(
        title,
        session.candidate,
        existing,
        hypothesis=hypothesis,
        objective=objective,
        description=description,
        parent=parent,
    )
    first_run = experiment.runs[0]
    next_session = replace(
        session,
        experiment=experiment,
        fork_run_id=first_run.id,
        active_run_id=first_run.id,
    )
    next_session = _transition(next_session, WorkflowStage.LOADING)
    LOGGER.info("experiment_created id=%s version=%s run_id=%s", experiment.id, experiment.version, first_run.id)
    return _recompute(next_session), first_run, updated_parent


def begin_run(session: IterationSession, *, branch_name: str | None = None) -> tuple[IterationSession, ExperimentRun]:
    """Validate the candidate, append a run, and advance the fork pointer to it."""
    if session.is_run_in_flight:
        raise SessionError("A run is already in progress.")
    if session.experiment is None or session.validation is None:
        raise SessionError("Start an experiment before creating runs.")
    run, experiment = create_run(
        session.experiment,
        session.candidate,
        session.validation,
        session.fork_run_id,
        branch_name=branch_name,
    )
    next_session = replace(session, experiment=experiment, fork_run_id=run.id, active_run_id=run.id)
    next_session = _transition(next_session, WorkflowStage.LOADING)
    LOGGER.info(
        "run_created experiment_id=%s run_id=%s parent_run_id=%s change=%s",
        experiment.id,
        run.id,
        run.parent_run_id or "none",
        run.change_description or "none",
    )
    return _recompute(next_session), run


def complete_run(
    session: IterationSession,
    output: str,
    *,
    error_category: str | None = None,
) -> IterationSession:
    """Record the in-flight run's output (or error marker) and move to evaluation."""
    if session.experiment is None or session.active_run_id is None or not session.is_run_in_flight:
        raise SessionError("No run is in progress.")
    experiment = record_run_output(session.experiment, session.active_run_id, output, error_category)
    next_session = replace(session, experiment=experiment, active_run_id=None)
    return _recompute(_transition(next_session, WorkflowStage.EVALUATION))


def replace_experiment(session: IterationSession, experiment: Experiment) -> IterationSession:
    """Swap in an updated copy of the same experiment (evaluation, notes)."""
    if session.experiment is None or session.experiment.id != experiment.id:
        raise SessionError("Experiment does not match the open session.")
    return _recompute(replace(session, experiment=experiment))


def start_iteration(session: IterationSession) -> IterationSession:
    return _recompute(_transition(session, WorkflowStage.ITERATION))


def enter_comparison(session: IterationSession) -> IterationSession:
    """Move to run comparison; needs at least two runs."""
    if session.experiment is None or len(session.experiment.runs) < 2:
        raise SessionError("Comparison needs at least two runs.")
    return _transition(session, WorkflowStage.COMPARISON)


def run_blocked_reason(session: IterationSession, candidate_error: str | None = None) -> str | None:
    """Why the Run action is unavailable, or None when a run may start.

    `candidate_error` is the last rejection of the edited values; while it is
    set the session candidate no longer matches what the user sees.
    """
    if candidate_error:
        return candidate_error
    if session.is_run_in_flight:
        return "A run is already in progress."
    content = {block.id: block.content for block in session.candidate.blocks}
    for block_id in required_block_ids():
        if not content.get(block_id, "").strip():
            return f"Fill in the {get_block_definition(block_id).display_name} block before running."
    if not session.can_run:
        return session.validation.reason if session.validation is not None else "Run is not available."
    return None


def ensure_can_delete(session: IterationSession, experiment_id: str) -> None:
    """Refuse to delete the open experiment while one of its runs is executing."""
    if (
        session.is_run_in_flight
        and session.experiment is not None
        and session.experiment.id == experiment_id
    ):
        raise SessionError("Wait for the current run to finish before deleting this experiment.")


def close_experiment(session: IterationSession) -> IterationSession:
    """Leave the open experiment and start over with a blank candidate."""
    if session.experiment is None:
        raise SessionError("No experiment is open.")
    if session.is_run_in_flight:
        raise SessionError("A run is already in progress.")
    LOGGER.info("experiment_closed id=%s runs=%d", session.experiment.id, len(session.experiment.runs))
    return new_session()
