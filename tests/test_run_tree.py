"""Run creation, fork tree, and versioning tests."""

from __future__ import annotations

from dataclasses import replace

import pytest

from prompt_lab.baseline import resolve_baseline
from prompt_lab.change_validator import (
    Candidate,
    ValidationError,
    ValidationErrorCode,
    validate_change,
)
from prompt_lab.models import (
    BlockState,
    ChangeMetadata,
    ComparisonNote,
    Experiment,
    ExperimentRun,
    RunEvaluation,
    RunParameters,
)
from prompt_lab.run_tree import (
    DEFAULT_EXPERIMENT_TITLE,
    annotate_run,
    append_note,
    branch_names,
    build_run_tree,
    create_experiment,
    create_run,
    evaluate_run,
    is_duplicate_title,
    lineage,
    next_child_version,
    record_comparison,
    record_findings,
    record_run_output,
    saved_comparison,
    set_change_metadata,
)

TASK = (BlockState(id="task", content="List three colors."),)


def _candidate(*, temperature: float = 0.7, task: str = "List three colors.") -> Candidate:
    return Candidate(parameters=RunParameters(temperature=temperature), blocks=(BlockState(id="task", content=task),))


def _add_run(experiment: Experiment, candidate: Candidate, fork: str | None, **kwargs) -> tuple[ExperimentRun, Experiment]:
    validation = validate_change(candidate, resolve_baseline(experiment, fork), experiment, fork)
    return create_run(experiment, candidate, validation, fork, **kwargs)


def test_create_experiment_attaches_first_run() -> None:
    experiment, updated_parent = create_experiment("Colors", _candidate(), [], hypothesis=" fewer words ")

    assert updated_parent is None
    assert experiment.version == "v1"
    assert experiment.hypothesis == "fewer words"
    assert experiment.block_content == {"task": "List three colors."}
    first = experiment.runs[0]
    assert first.parent_run_id is None
    assert first.branch_name == "main"
    assert first.prompt == "Task:\nList three colors."
    assert first.blocks == TASK


def test_create_experiment_defaults_blank_title() -> None:
    experiment, _ = create_experiment("   ", _candidate(), [])

    assert experiment.title == DEFAULT_EXPERIMENT_TITLE


def test_duplicate_title_is_rejected_ignoring_case_and_spacing() -> None:
    existing, _ = create_experiment("Test", _candidate(), [])

    with pytest.raises(ValidationError) as excinfo:
        create_experiment(" test ", _candidate(), [existing])

    assert excinfo.value.code == ValidationErrorCode.DUPLICATE_TITLE
    assert is_duplicate_title("TEST", [existing], exclude_id=existing.id) is False


def test_sibling_versions_are_distinct_when_parent_is_updated() -> None:
    parent, _ = create_experiment("Base", _candidate(), [])

    first_child, parent = create_experiment("Child A", _candidate(), [parent], parent=parent)
    second_child, parent = create_experiment("Child B", _candidate(), [parent, first_child], parent=parent)

    assert first_child.version == "v2"
    assert second_child.version == "v3"
    assert first_child.parent_version == parent.id
    assert parent.child_versions_issued == 2


def test_version_counter_from_stale_parent_snapshot_repeats() -> None:
    parent, _ = create_experiment("Base", _candidate(), [])

    first_version, _ = next_child_version(parent, [parent])
    second_version, _ = next_child_version(parent, [parent])

    assert first_version == "v2"
    assert second_version == "v2"


def test_version_counter_counts_imported_children_without_counter() -> None:
    parent = Experiment(id="p", title="Parent")
    child = Experiment(id="c", title="Child", version="v2", parent_version="p")

    version, updated = next_child_version(parent, [parent, child])

    assert version == "v3"
    assert updated.child_versions_issued == 2


def test_create_run_links_to_fork_and_describes_change() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    first = experiment.runs[0]

    run, experiment = _add_run(experiment, _candidate(temperature=0.9), first.id)

    assert run.parent_run_id == first.id
    assert run.branch_name == "iteration-2"
    assert run.change_description == "Temperature: 0.7 → 0.9"
    assert experiment.runs[-1] is run


def test_create_run_honors_branch_name() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    run, _ = _add_run(experiment, _candidate(task="List four colors."), experiment.runs[0].id, branch_name="wording")

    assert run.branch_name == "wording"


def test_create_run_rejects_invalid_candidate_without_mutation() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    with pytest.raises(ValidationError):
        _add_run(experiment, _candidate(), experiment.runs[0].id)

    assert len(experiment.runs) == 1


def test_fork_tree_and_lineage() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    root = experiment.runs[0]
    child_a, experiment = _add_run(experiment, _candidate(temperature=0.9), root.id)
    child_b, experiment = _add_run(experiment, _candidate(temperature=0.3), root.id)
    grandchild, experiment = _add_run(experiment, _candidate(temperature=0.3, task="List colors."), child_b.id)

    roots = build_run_tree(experiment)

    assert [node.run.id for node in roots] == [root.id]
    assert [node.run.id for node in roots[0].children] == [child_a.id, child_b.id]
    assert roots[0].children[1].children[0].run.id == grandchild.id
    assert roots[0].children[1].children[0].depth == 2
    assert [run.id for run in lineage(experiment, grandchild.id)] == [root.id, child_b.id, grandchild.id]


def test_legacy_runs_without_parents_form_a_chain() -> None:
    runs = tuple(
        ExperimentRun(id=f"r{index}", prompt="Task:\nx", parameters=RunParameters()) for index in range(3)
    )
    experiment = Experiment(id="legacy", title="Legacy", runs=runs)

    roots = build_run_tree(experiment)

    assert len(roots) == 1
    assert roots[0].children[0].run.id == "r1"
    assert roots[0].children[0].children[0].run.id == "r2"
    assert [run.id for run in lineage(experiment, "r2")] == ["r0", "r1", "r2"]


def test_lineage_rejects_unknown_run() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    with pytest.raises(KeyError):
        lineage(experiment, "missing")


def test_branch_names_in_first_appearance_order() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    _, experiment = _add_run(experiment, _candidate(temperature=0.9), experiment.runs[0].id, branch_name="warm")

    assert branch_names(experiment) == ["main", "warm"]


def test_run_updates_only_touch_output_evaluation_and_notes() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    run_id = experiment.runs[0].id

    updated = record_run_output(experiment, run_id, "red, green, blue")
    updated = evaluate_run(updated, run_id, RunEvaluation(rating=4, tags=("concise",)))
    updated = annotate_run(updated, run_id, "  good baseline ")

    run = updated.runs[0]
    assert run.output == "red, green, blue"
    assert run.evaluation is not None and run.evaluation.rating == 4
    assert run.notes == "good baseline"
    assert replace(run, output="", evaluation=None, notes="") == experiment.runs[0]
    assert experiment.runs[0].output == ""


def test_record_output_for_unknown_run_raises() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    with pytest.raises(KeyError):
        record_run_output(experiment, "missing", "text")


def test_append_note_builds_narrative_log() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    updated = append_note(append_note(experiment, "Tried warmer."), "Cooler was better.")

    assert updated.notes == "Tried warmer.\n\nCooler was better."
    assert append_note(updated, "   ") is updated


def test_change_metadata_is_attached_and_validated() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [], description="Warm vs cool palettes")

    updated = set_change_metadata(
        experiment,
        ChangeMetadata(what_changed=" Warmer temperature ", why_changed="More variety", did_it_improve="no"),
    )

    assert experiment.description == "Warm vs cool palettes"
    assert experiment.change_metadata is None
    assert updated.change_metadata is not None
    assert updated.change_metadata.what_changed == "Warmer temperature"
    with pytest.raises(ValueError, match="verdict"):
        ChangeMetadata(did_it_improve="maybe")  # type: ignore[arg-type]


def test_saved_comparison_is_replaced_for_the_same_pair() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    first = experiment.runs[0]
    second, experiment = _add_run(experiment, _candidate(temperature=1.1), first.id)

    experiment = record_comparison(experiment, ComparisonNote(first.id, second.id, similarity_score=40, notes="old"))
    experiment = record_comparison(experiment, ComparisonNote(second.id, first.id, similarity_score=55, notes="new"))

    assert experiment.analysis is not None
    assert len(experiment.analysis.run_comparisons) == 1
    note = saved_comparison(experiment, first.id, second.id)
    assert note is not None and note.notes == "new"
    assert saved_comparison(experiment, first.id, "missing") is None


def test_comparison_rejects_unknown_runs_and_bad_scores() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])

    with pytest.raises(KeyError):
        record_comparison(experiment, ComparisonNote(experiment.runs[0].id, "missing"))
    with pytest.raises(ValueError, match="Similarity"):
        ComparisonNote("a", "b", similarity_score=101)


def test_findings_keep_saved_comparisons() -> None:
    experiment, _ = create_experiment("Colors", _candidate(), [])
    run_id = experiment.runs[0].id
    experiment = record_comparison(experiment, ComparisonNote(run_id, run_id, similarity_score=100))

    experiment = record_findings(experiment, ["Cool wins", "  "], ["Try pastel"])

    assert experiment.analysis is not None
    assert experiment.analysis.key_findings == ("Cool wins",)
    assert experiment.analysis.recommendations == ("Try pastel",)
    assert len(experiment.analysis.run_comparisons) == 1
