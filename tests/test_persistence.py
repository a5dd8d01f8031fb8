"""Experiment store tests."""

from __future__ import annotations

from dataclasses import replace
import json

import pytest

from prompt_lab.change_validator import Candidate
from prompt_lab.models import (
    AttachedFile,
    BlockState,
    ChangeMetadata,
    ComparisonNote,
    RunEvaluation,
    RunParameters,
)
from prompt_lab.persistence import ExperimentStore, PersistenceError, experiment_from_dict
from prompt_lab.run_tree import (
    create_experiment,
    evaluate_run,
    record_comparison,
    record_findings,
    record_run_output,
    set_change_metadata,
)


def _experiment(title: str = "Stored"):
    candidate = Candidate(
        parameters=RunParameters(model="gpt-4o", temperature=0.4, max_tokens=800),
        blocks=(BlockState(id="task", content="Explain tides.", is_collapsed=False),),
        files=(AttachedFile(name="moon.txt", size=4, content="moon"),),
    )
    experiment, _ = create_experiment(title, candidate, [], hypothesis="Shorter is clearer")
    run_id = experiment.runs[0].id
    experiment = record_run_output(experiment, run_id, "Tides follow the moon.")
    return evaluate_run(experiment, run_id, RunEvaluation(rating=5, quality="excellent", tags=("clear",)))


def test_missing_file_is_an_empty_store(tmp_path) -> None:
    assert ExperimentStore(tmp_path / "none.json").load_all() == []


def test_save_and_load_preserve_experiment(tmp_path) -> None:
    store = ExperimentStore(tmp_path / "data" / "experiments.json")
    experiment = _experiment()

    store.save(experiment)
    loaded = store.load_all()

    assert loaded == [experiment]
    payload = json.loads((tmp_path / "data" / "experiments.json").read_text(encoding="utf-8"))
    assert payload["schema_version"] == 1


def test_save_replaces_by_id_and_delete_removes(tmp_path) -> None:
    store = ExperimentStore(tmp_path / "experiments.json")
    first = _experiment("First")
    second = _experiment("Second")
    store.save(first)
    store.save(second)

    renamed = replace(first, notes="revisited")
    store.save(renamed)
    assert [item.notes for item in store.load_all()] == ["revisited", ""]

    store.delete(first.id)
    assert [item.id for item in store.load_all()] == [second.id]


def test_export_then_import_replaces_contents(tmp_path) -> None:
    source = ExperimentStore(tmp_path / "source.json")
    source.save(_experiment())
    blob = source.export_all()

    target = ExperimentStore(tmp_path / "target.json")
    target.save(_experiment("Other"))

    assert target.import_all(blob) is True
    assert [item.title for item in target.load_all()] == ["Stored"]


@pytest.mark.parametrize("blob", ["not json", "[]", '{"experiments": {}}', '{"schema_version": 99, "experiments": []}'])
def test_import_rejects_unusable_blobs(tmp_path, blob: str) -> None:
    store = ExperimentStore(tmp_path / "experiments.json")
    store.save(_experiment())

    assert store.import_all(blob) is False
    assert len(store.load_all()) == 1


def test_corrupt_file_raises_persistence_error(tmp_path) -> None:
    path = tmp_path / "experiments.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(PersistenceError):
        ExperimentStore(path).load_all()


def test_legacy_camel_case_record_is_imported() -> None:
    payload = {
        "id": "1700000000000",
        "title": "Old export",
        "timestamp": 1700000000000,
        "blockContent": {"task": "Old task"},
        "parentVersion": None,
        "runs": [
            {
                "id": "1700000000001",
                "prompt": "Task:\nOld task",
                "model": "gpt-4o",
                "temperature": 1.2,
                "maxTokens": 500,
                "output": "done",
                "parentRunId": None,
                "branchName": "main",
                "attachedFiles": [{"name": "a.txt", "size": 2, "content": "hi"}],
                "runNotes": "legacy note",
                "evaluation": {"rating": 0, "quality": "good"},
            }
        ],
    }

    experiment = experiment_from_dict(payload)

    assert experiment.version == "v1"
    assert experiment.block_content == {"task": "Old task"}
    assert experiment.timestamp.startswith("2023-11-14")
    run = experiment.runs[0]
    assert run.parameters == RunParameters(model="gpt-4o", temperature=1.2, max_tokens=500)
    assert run.attached_files == (AttachedFile(name="a.txt", size=2, content="hi"),)
    assert run.notes == "legacy note"
    assert run.evaluation is None
    assert run.blocks == ()


def test_legacy_experiment_without_runs_loads() -> None:
    experiment = experiment_from_dict({"id": "e1"})

    assert experiment.runs == ()
    assert experiment.title == "Legacy Experiment"


def test_change_metadata_and_analysis_survive_save(tmp_path) -> None:
    store = ExperimentStore(tmp_path / "experiments.json")
    experiment = _experiment()
    run_id = experiment.runs[0].id
    experiment = replace(experiment, description="Compare tone against clarity.")
    experiment = set_change_metadata(
        experiment,
        ChangeMetadata(what_changed="Dropped the persona", why_changed="Too chatty", did_it_improve="mixed"),
    )
    experiment = record_comparison(
        experiment,
        ComparisonNote(first_run_id=run_id, second_run_id=run_id, differences=("none",), similarity_score=100),
    )
    experiment = record_findings(experiment, ["Short prompts win"], ["Keep the task block terse"])

    store.save(experiment)
    loaded = store.load_all()[0]

    assert loaded == experiment
    assert loaded.change_metadata is not None and loaded.change_metadata.keep_this_version is True
    assert loaded.analysis is not None and loaded.analysis.key_findings == ("Short prompts win",)


def test_legacy_change_metadata_and_analysis_are_imported() -> None:
    payload = {
        "id": "1700000000000",
        "title": "Old export",
        "description": "Persona test",
        "changeMetadata": {
            "whatChanged": "Added a persona",
            "whyChanged": "Friendlier tone",
            "didItImprove": "yes",
            "keepThisVersion": False,
            "timestamp": 1700000000000,
        },
        "analysis": {
            "runComparisons": [
                {
                    "run1Id": "a",
                    "run2Id": "b",
                    "differences": ["Longer"],
                    "similarityScore": 72.6,
                    "keyInsights": ["Persona adds words"],
                    "notes": "",
                },
                {"run1Id": "a", "similarityScore": 10},
            ],
            "keyFindings": ["Tone shifted"],
            "recommendations": [],
            "timestamp": 1700000000000,
        },
    }

    experiment = experiment_from_dict(payload)

    assert experiment.description == "Persona test"
    metadata = experiment.change_metadata
    assert metadata is not None
    assert (metadata.what_changed, metadata.did_it_improve, metadata.keep_this_version) == (
        "Added a persona",
        "yes",
        False,
    )
    assert experiment.analysis is not None
    assert experiment.analysis.run_comparisons == (
        ComparisonNote(
            first_run_id="a",
            second_run_id="b",
            differences=("Longer",),
            similarity_score=73,
            key_insights=("Persona adds words",),
        ),
    )
    assert experiment.analysis.key_findings == ("Tone shifted",)


def test_unknown_improvement_verdict_is_dropped() -> None:
    experiment = experiment_from_dict({"id": "e1", "changeMetadata": {"didItImprove": "maybe"}})

    assert experiment.change_metadata is None


def _stored_record_with_null_file_size() -> dict[str, object]:
    run = {"id": "r1", "prompt": "Task:\nx", "attached_files": [{"name": "a.txt", "size": None}]}
    return {"schema_version": 1, "experiments": [{"id": "e1", "title": "Broken", "runs": [run]}]}


def test_malformed_record_raises_persistence_error(tmp_path) -> None:
    path = tmp_path / "experiments.json"
    path.write_text(json.dumps(_stored_record_with_null_file_size()), encoding="utf-8")
    store = ExperimentStore(path)

    with pytest.raises(PersistenceError, match="Could not load experiments"):
        store.load_all()
    with pytest.raises(PersistenceError):
        store.save(_experiment())


def test_import_rejects_malformed_record(tmp_path) -> None:
    store = ExperimentStore(tmp_path / "experiments.json")
    store.save(_experiment())

    assert store.import_all(json.dumps(_stored_record_with_null_file_size())) is False
    assert len(store.load_all()) == 1
