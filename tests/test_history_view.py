from prompt_lab.history_view import (
    format_change_metadata,
    format_experiment_title,
    format_notebook_entry,
    format_run_header,
    format_run_label,
    render_run_tree,
)
from prompt_lab.models import ChangeMetadata, Experiment, ExperimentRun, LabNotebookEntry, RunParameters


def _run(run_id: str, **kwargs) -> ExperimentRun:
    return ExperimentRun(id=run_id, prompt="Task:\nHi", parameters=RunParameters(), **kwargs)


def test_format_run_header_fields() -> None:
    run = _run("r1", branch_name="main", output="Hello", timestamp="2026-02-06T11:00:00+00:00")

    header = format_run_header(run, 1)

    assert "run=1" in header
    assert "branch=main" in header
    assert "model=gpt-4o-mini" in header
    assert "temp=0.7" in header
    assert "max_tokens=1000" in header
    assert "status=completed" in header
    assert "ts=2026-02-06T11:00:00+00:00" in header


def test_format_run_header_defaults_for_missing_values() -> None:
    header = format_run_header(_run("r1", timestamp=""), 3)

    assert "branch=-" in header
    assert "status=running" in header
    assert "ts=-" in header


def test_format_run_header_shows_failure_category() -> None:
    header = format_run_header(_run("r1", output="[Error: timeout] late", error_category="timeout"), 2)

    assert "status=failed (timeout)" in header


def test_format_run_label_uses_change_description() -> None:
    run = _run("r2", branch_name="iteration-2", change_description="Temperature: 0.7 → 0.9")

    assert format_run_label(run, 2) == "Run 2 (iteration-2): Temperature: 0.7 → 0.9"


def test_render_run_tree_indents_forks() -> None:
    experiment = Experiment(
        id="e",
        title="Tree",
        runs=(
            _run("r1", branch_name="main"),
            _run("r2", parent_run_id="r1", branch_name="a", change_description="first"),
            _run("r3", parent_run_id="r1", branch_name="b", change_description="second"),
            _run("r4", parent_run_id="r3", branch_name="b", change_description="third"),
        ),
    )

    assert render_run_tree(experiment) == [
        "Run 1 (main): -",
        "  └─ Run 2 (a): first",
        "  └─ Run 3 (b): second",
        "    └─ Run 4 (b): third",
    ]
    assert format_experiment_title(experiment) == "v1 - Tree (4 runs)"


def test_format_change_metadata() -> None:
    metadata = ChangeMetadata(what_changed="Shorter task", did_it_improve="yes", keep_this_version=False)

    assert format_change_metadata(None) == "No change notes recorded."
    assert format_change_metadata(metadata) == "Changed: Shorter task | Why: - | Improved: yes | Verdict: discard"


def test_format_notebook_entry() -> None:
    entry = LabNotebookEntry(
        id="1",
        title="Persona wrap-up",
        category="takeaway",
        tags=("experiment-summary", "persona"),
        timestamp="2024-05-02T10:00:00+00:00",
        starred=True,
    )

    assert format_notebook_entry(entry) == "* Persona wrap-up [takeaway] 2024-05-02 #experiment-summary #persona"
    assert format_notebook_entry(LabNotebookEntry(id="2", title="Plain", timestamp="2024-05-03")) == (
        "Plain [observation] 2024-05-03"
    )
