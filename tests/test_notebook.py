"""Lab notebook store and finishing-summary tests."""

from __future__ import annotations

import json

import pytest

from prompt_lab.change_validator import Candidate
from prompt_lab.models import BlockState, Experiment, LabNotebookEntry, RunParameters
from prompt_lab.notebook import build_summary_entry, experiment_tag, finish_experiment, summary_content
from prompt_lab.persistence import NotebookStore, PersistenceError
from prompt_lab.session import (
    SessionError,
    WorkflowStage,
    complete_run,
    new_session,
    start_experiment,
    update_candidate,
)


class RecordingNotebook:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.entries: list[LabNotebookEntry] = []

    def save_entry(self, entry: LabNotebookEntry) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.entries.append(entry)


def _entry(entry_id: str, timestamp: str, **changes) -> LabNotebookEntry:
    return LabNotebookEntry(id=entry_id, title=f"Entry {entry_id}", timestamp=timestamp, **changes)


def _finished_run_session(title: str = "Persona Testing"):
    candidate = Candidate(
        parameters=RunParameters(),
        blocks=(
            BlockState(id="task", content="Summarize the safety report."),
            BlockState(id="persona", content="You are a careful editor."),
        ),
    )
    session, _, _ = start_experiment(update_candidate(new_session(), candidate), title, [])
    return complete_run(session, "Summary.")


def test_entry_requires_title_and_known_category() -> None:
    with pytest.raises(ValueError, match="title"):
        LabNotebookEntry(id="1", title="  ")
    with pytest.raises(ValueError, match="category"):
        LabNotebookEntry(id="1", title="Note", category="rumor")  # type: ignore[arg-type]

    entry = LabNotebookEntry(id="1", title=" Note ", tags=("a", " a ", "", "b"))
    assert entry.title == "Note"
    assert entry.tags == ("a", "b")


def test_missing_notebook_file_is_empty(tmp_path) -> None:
    assert NotebookStore(tmp_path / "notebook.json").load_entries() == []


def test_save_entry_upserts_and_lists_newest_first(tmp_path) -> None:
    store = NotebookStore(tmp_path / "data" / "notebook.json")
    store.save_entry(_entry("1", "2024-01-01T00:00:00+00:00"))
    store.save_entry(_entry("2", "2024-02-01T00:00:00+00:00", category="insight"))
    store.save_entry(_entry("1", "2024-01-01T00:00:00+00:00", starred=True))

    entries = store.load_entries()

    assert [entry.id for entry in entries] == ["2", "1"]
    assert entries[1].starred is True
    payload = json.loads((tmp_path / "data" / "notebook.json").read_text(encoding="utf-8"))
    assert payload["schema_version"] == 1
    assert len(payload["entries"]) == 2


def test_delete_entry_removes_only_that_entry(tmp_path) -> None:
    store = NotebookStore(tmp_path / "notebook.json")
    store.save_entry(_entry("1", "2024-01-01T00:00:00+00:00"))
    store.save_entry(_entry("2", "2024-02-01T00:00:00+00:00"))

    store.delete_entry("1")

    assert [entry.id for entry in store.load_entries()] == ["2"]


def test_export_then_import_replaces_notebook(tmp_path) -> None:
    source = NotebookStore(tmp_path / "source.json")
    source.save_entry(_entry("1", "2024-01-01T00:00:00+00:00", related_experiments=("e1",)))
    target = NotebookStore(tmp_path / "target.json")
    target.save_entry(_entry("9", "2024-03-01T00:00:00+00:00"))

    assert target.import_notebook(source.export_notebook()) is True

    assert target.load_entries() == source.load_entries()


def test_import_accepts_legacy_notebook_export(tmp_path) -> None:
    blob = json.dumps(
        {
            "entries": [
                {
                    "id": "1700000000000",
                    "title": "Temperature drift",
                    "content": "Higher temperature rambles.",
                    "category": "failure-analysis",
                    "tags": ["temperature"],
                    "timestamp": 1700000000000,
                    "starred": True,
                    "relatedExperiments": ["42"],
                }
            ],
            "lastUpdated": 1700000000000,
        }
    )
    store = NotebookStore(tmp_path / "notebook.json")

    assert store.import_notebook(blob) is True

    (entry,) = store.load_entries()
    assert entry.category == "failure-analysis"
    assert entry.related_experiments == ("42",)
    assert entry.timestamp.startswith("2023-11-14")


@pytest.mark.parametrize(
    "blob",
    ["not json", '{"experiments": []}', '{"entries": [{"title": "no id"}]}', '{"entries": [{"id": "1", "title": ""}]}'],
)
def test_import_rejects_unusable_notebook(tmp_path, blob: str) -> None:
    store = NotebookStore(tmp_path / "notebook.json")
    store.save_entry(_entry("1", "2024-01-01T00:00:00+00:00"))

    assert store.import_notebook(blob) is False
    assert len(store.load_entries()) == 1


def test_corrupt_notebook_raises_persistence_error(tmp_path) -> None:
    path = tmp_path / "notebook.json"
    path.write_text('{"entries": [{"id": "1", "title": "x", "category": "rumor"}]}', encoding="utf-8")

    with pytest.raises(PersistenceError):
        NotebookStore(path).load_entries()


def test_summary_entry_describes_the_experiment() -> None:
    experiment = _finished_run_session().experiment
    assert experiment is not None

    entry = build_summary_entry(experiment, key_findings="Personas help.", next_steps="Try examples.")

    assert entry.title == "Persona Testing"
    assert entry.category == "takeaway"
    assert entry.tags == ("experiment-summary", "persona-testing")
    assert entry.related_experiments == (experiment.id,)
    assert entry.content.startswith("## Key Findings\nPersonas help.")
    assert "- **Runs Completed:** 1" in entry.content
    assert "- **Blocks Used:** Task, Persona / Role" in entry.content


def test_summary_content_without_blocks_says_not_available() -> None:
    bare = Experiment(id="e", title="  ")

    assert "- **Blocks Used:** N/A" in summary_content(bare)
    assert experiment_tag(bare) == "experiment"


def test_finish_experiment_saves_entry_and_resets_session() -> None:
    session = _finished_run_session()
    notebook = RecordingNotebook()
    entry = build_summary_entry(session.experiment, title="Wrap-up")

    next_session, finished = finish_experiment(
        session, entry, notebook, key_findings="Personas help.\nShorter is better.", next_steps="Try examples."
    )

    assert notebook.entries == [entry]
    assert next_session.experiment is None
    assert next_session.stage == WorkflowStage.SETUP
    assert finished.id == session.experiment.id
    assert finished.analysis is not None
    assert finished.analysis.key_findings == ("Personas help.", "Shorter is better.")
    assert finished.analysis.recommendations == ("Try examples.",)


def test_finish_experiment_keeps_session_when_notebook_write_fails() -> None:
    session = _finished_run_session()
    entry = build_summary_entry(session.experiment)

    with pytest.raises(PersistenceError):
        finish_experiment(session, entry, RecordingNotebook(fail=True))


def test_finish_experiment_needs_an_idle_open_experiment() -> None:
    entry = LabNotebookEntry(id="1", title="Nothing")
    with pytest.raises(SessionError, match="No experiment"):
        finish_experiment(new_session(), entry, RecordingNotebook())

    candidate = Candidate(parameters=RunParameters(), blocks=(BlockState(id="task", content="Go."),))
    loading, _, _ = start_experiment(update_candidate(new_session(), candidate), "Busy", [])
    notebook = RecordingNotebook()
    with pytest.raises(SessionError, match="in progress"):
        finish_experiment(loading, entry, notebook)
    assert notebook.entries == []
