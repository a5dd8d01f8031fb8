"""Lab notebook: closing summaries written when an experiment is finished."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from prompt_lab.baseline import run_block_content
from prompt_lab.blocks import block_ids, display_name_for
from prompt_lab.models import Experiment, LabNotebookEntry, new_record_id
from prompt_lab.run_tree import record_findings
from prompt_lab.session import IterationSession, close_experiment

LOGGER = logging.getLogger("prompt_lab.notebook")

SUMMARY_TAG = "experiment-summary"
DEFAULT_SUMMARY_TITLE = "Experiment Summary"


class NotebookSaver(Protocol):
    def save_entry(self, entry: LabNotebookEntry) -> None: ...


def experiment_tag(experiment: Experiment) -> str:
    """Tag naming the experiment, e.g. ``persona-testing`` for "Persona Testing"."""
    slug = re.sub(r"\s+", "-", experiment.title.strip().lower())
    return slug or "experiment"


def blocks_used(experiment: Experiment) -> list[str]:
    """Display names of every block that carried content in any run."""
    used: set[str] = set()
    for run in experiment.runs:
        used.update(block_id for block_id, content in run_block_content(run).items() if content.strip())
    return [display_name_for(block_id) for block_id in block_ids() if block_id in used]


def summary_content(
    experiment: Experiment,
    *,
    key_findings: str = "",
    what_worked: str = "",
    what_did_not_work: str = "",
    next_steps: str = "",
) -> str:
    """Markdown body of a finishing summary."""
    blocks = ", ".join(blocks_used(experiment)) or "N/A"
    sections = [
        f"## Key Findings\n{key_findings.strip()}",
        f"## What Worked\n{what_worked.strip()}",
        f"## What Didn't Work\n{what_did_not_work.strip()}",
        f"## Next Steps / Future Directions\n{next_steps.strip()}",
        "## Experiment Details\n"
        f"- **Runs Completed:** {len(experiment.runs)}\n"
        f"- **Date:** {experiment.timestamp[:10]}\n"
        f"- **Blocks Used:** {blocks}",
    ]
    return "\n\n".join(sections)


def build_summary_entry(
    experiment: Experiment,
    *,
    title: str = "",
    key_findings: str = "",
    what_worked: str = "",
    what_did_not_work: str = "",
    next_steps: str = "",
) -> LabNotebookEntry:
    return LabNotebookEntry(
        id=new_record_id(),
        title=title.strip() or experiment.title or DEFAULT_SUMMARY_TITLE,
        content=summary_content(
            experiment,
            key_findings=key_findings,
            what_worked=what_worked,
            what_did_not_work=what_did_not_work,
            next_steps=next_steps,
        ),
        category="takeaway",
        tags=(SUMMARY_TAG, experiment_tag(experiment)),
        related_experiments=(experiment.id,),
    )


def finish_experiment(
    session: IterationSession,
    entry: LabNotebookEntry,
    notebook: NotebookSaver,
    *,
    key_findings: str = "",
    next_steps: str = "",
) -> tuple[IterationSession, Experiment]:
    """Write the summary entry and close the experiment.

    Returns the fresh session and the experiment with its findings recorded,
    for the caller to persist. A failed notebook write raises
    PersistenceError and leaves the session open.
    """
    next_session = close_experiment(session)
    notebook.save_entry(entry)
    finished = record_findings(session.experiment, key_findings.splitlines(), next_steps.splitlines())  # type: ignore[arg-type]
    LOGGER.info("experiment_finished id=%s entry_id=%s", finished.id, entry.id)
    return next_session, finished
