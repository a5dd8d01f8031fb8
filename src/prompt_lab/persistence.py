"""JSON file store for experiments.

The file holds a versioned envelope::

    {"schema_version": 1, "last_updated": "...", "experiments": [...]}

Imports also accept exports from the earlier browser build of the tool
(camelCase keys, flat model/temperature/maxTokens on runs, epoch-millisecond
timestamps, experiments without runs).

The lab notebook lives in a separate file with the same envelope, holding
``entries`` instead of ``experiments``.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path

from prompt_lab.models import (
    AttachedFile,
    BlockState,
    ChangeMetadata,
    ComparisonNote,
    Experiment,
    ExperimentAnalysis,
    ExperimentRun,
    LabNotebookEntry,
    RunEvaluation,
    RunParameters,
    utc_now_iso,
)

LOGGER = logging.getLogger("prompt_lab.persistence")

SCHEMA_VERSION = 1
SUPPORTED_SCHEMA_VERSIONS = {SCHEMA_VERSION}
# Errors a malformed record can raise while being rebuilt into models.
RECORD_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


class PersistenceError(Exception):
    """Storage failure; callers log it and keep the in-memory state."""


def _pick(payload: dict[str, object], *keys: str, default: object = None) -> object:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _timestamp_text(value: object) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Legacy exports stored epoch milliseconds.
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc).isoformat()
    text = str(value or "").strip()
    return text or utc_now_iso()


def _serialize_run(run: ExperimentRun) -> dict[str, object]:
    return {
        "id": run.id,
        "timestamp": run.timestamp,
        "prompt": run.prompt,
        "parameters": {
            "model": run.parameters.model,
            "temperature": run.parameters.temperature,
            "max_tokens": run.parameters.max_tokens,
        },
        "output": run.output,
        "attached_files": [
            {"name": item.name, "size": item.size, "content": item.content} for item in run.attached_files
        ],
        "parent_run_id": run.parent_run_id,
        "branch_name": run.branch_name,
        "change_description": run.change_description,
        "evaluation": None
        if run.evaluation is None
        else {
            "rating": run.evaluation.rating,
            "quality": run.evaluation.quality,
            "feedback": run.evaluation.feedback,
            "tags": list(run.evaluation.tags),
            "timestamp": run.evaluation.timestamp,
        },
        "blocks": [
            {"id": block.id, "content": block.content, "is_collapsed": block.is_collapsed} for block in run.blocks
        ],
        "error_category": run.error_category,
        "notes": run.notes,
    }


def _serialize_change_metadata(metadata: ChangeMetadata | None) -> dict[str, object] | None:
    if metadata is None:
        return None
    return {
        "what_changed": metadata.what_changed,
        "why_changed": metadata.why_changed,
        "did_it_improve": metadata.did_it_improve,
        "keep_this_version": metadata.keep_this_version,
        "timestamp": metadata.timestamp,
    }


def _serialize_analysis(analysis: ExperimentAnalysis | None) -> dict[str, object] | None:
    if analysis is None:
        return None
    return {
        "run_comparisons": [
            {
                "first_run_id": note.first_run_id,
                "second_run_id": note.second_run_id,
                "differences": list(note.differences),
                "similarity_score": note.similarity_score,
                "key_insights": list(note.key_insights),
                "notes": note.notes,
            }
            for note in analysis.run_comparisons
        ],
        "key_findings": list(analysis.key_findings),
        "recommendations": list(analysis.recommendations),
        "timestamp": analysis.timestamp,
    }


def experiment_to_dict(experiment: Experiment) -> dict[str, object]:
    return {
        "id": experiment.id,
        "title": experiment.title,
        "timestamp": experiment.timestamp,
        "hypothesis": experiment.hypothesis,
        "objective": experiment.objective,
        "runs": [_serialize_run(run) for run in experiment.runs],
        "version": experiment.version,
        "parent_version": experiment.parent_version,
        "block_content": experiment.block_content,
        "notes": experiment.notes,
        "child_versions_issued": experiment.child_versions_issued,
        "description": experiment.description,
        "change_metadata": _serialize_change_metadata(experiment.change_metadata),
        "analysis": _serialize_analysis(experiment.analysis),
    }


def _deserialize_evaluation(payload: object) -> RunEvaluation | None:
    if not isinstance(payload, dict):
        return None
    try:
        return RunEvaluation(
            rating=int(payload.get("rating", 0)),
            quality=str(payload.get("quality", "good")),  # type: ignore[arg-type]
            feedback=str(payload.get("feedback", "")),
            tags=tuple(str(tag) for tag in payload.get("tags", []) or []),
            timestamp=_timestamp_text(payload.get("timestamp")),
        )
    except ValueError:
        LOGGER.warning("Dropping unusable run evaluation: %r", payload)
        return None


def _deserialize_run(payload: object) -> ExperimentRun:
    if not isinstance(payload, dict):
        raise ValueError("Each run must be an object")
    if "id" not in payload:
        raise ValueError("Run is missing required field: id")

    raw_parameters = payload.get("parameters")
    source = raw_parameters if isinstance(raw_parameters, dict) else payload
    parameters = RunParameters(
        model=str(_pick(source, "model", default=RunParameters().model)),
        temperature=float(_pick(source, "temperature", default=RunParameters().temperature)),  # type: ignore[arg-type]
        max_tokens=int(_pick(source, "max_tokens", "maxTokens", default=RunParameters().max_tokens)),  # type: ignore[arg-type]
    )

    raw_files = _pick(payload, "attached_files", "attachedFiles", default=[])
    files = tuple(
        AttachedFile(name=str(item.get("name", "")), size=int(item.get("size", 0)), content=str(item.get("content", "")))
        for item in raw_files  # type: ignore[union-attr]
        if isinstance(item, dict)
    )
    raw_blocks = payload.get("blocks") or []
    blocks = tuple(
        BlockState(
            id=str(item.get("id", "")),
            content=str(item.get("content", "")),
            is_collapsed=bool(item.get("is_collapsed", True)),
        )
        for item in raw_blocks  # type: ignore[union-attr]
        if isinstance(item, dict)
    )
    parent_run_id = _pick(payload, "parent_run_id", "parentRunId")
    branch_name = _pick(payload, "branch_name", "branchName")
    change_description = _pick(payload, "change_description", "changeDescription")
    error_category = payload.get("error_category")

    return ExperimentRun(
        id=str(payload["id"]),
        timestamp=_timestamp_text(payload.get("timestamp")),
        prompt=str(payload.get("prompt", "")),
        parameters=parameters,
        output=str(payload.get("output", "") or ""),
        attached_files=files,
        parent_run_id=str(parent_run_id) if parent_run_id else None,
        branch_name=str(branch_name) if branch_name else None,
        change_description=str(change_description) if change_description else None,
        evaluation=_deserialize_evaluation(payload.get("evaluation")),
        blocks=blocks,
        error_category=str(error_category) if error_category else None,
        notes=str(_pick(payload, "notes", "runNotes", default="")),
    )


def _text_list(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value)


def _deserialize_change_metadata(payload: object) -> ChangeMetadata | None:
    if not isinstance(payload, dict):
        return None
    try:
        return ChangeMetadata(
            what_changed=str(_pick(payload, "what_changed", "whatChanged", default="")),
            why_changed=str(_pick(payload, "why_changed", "whyChanged", default="")),
            did_it_improve=str(_pick(payload, "did_it_improve", "didItImprove", default="unknown")),  # type: ignore[arg-type]
            keep_this_version=bool(_pick(payload, "keep_this_version", "keepThisVersion", default=True)),
            timestamp=_timestamp_text(payload.get("timestamp")),
        )
    except ValueError:
        LOGGER.warning("Dropping unusable change metadata: %r", payload)
        return None


def _deserialize_comparison(payload: dict[str, object]) -> ComparisonNote | None:
    first_run_id = _pick(payload, "first_run_id", "run1Id")
    second_run_id = _pick(payload, "second_run_id", "run2Id")
    try:
        if not first_run_id or not second_run_id:
            raise ValueError("comparison is missing its run ids")
        return ComparisonNote(
            first_run_id=str(first_run_id),
            second_run_id=str(second_run_id),
            differences=_text_list(payload.get("differences")),
            similarity_score=round(float(_pick(payload, "similarity_score", "similarityScore", default=0))),  # type: ignore[arg-type]
            key_insights=_text_list(_pick(payload, "key_insights", "keyInsights")),
            notes=str(payload.get("notes", "") or ""),
        )
    except ValueError:
        LOGGER.warning("Dropping unusable run comparison: %r", payload)
        return None


def _deserialize_analysis(payload: object) -> ExperimentAnalysis | None:
    if not isinstance(payload, dict):
        return None
    raw_comparisons = _pick(payload, "run_comparisons", "runComparisons", default=[])
    comparisons = (
        _deserialize_comparison(item)
        for item in (raw_comparisons if isinstance(raw_comparisons, list) else [])
        if isinstance(item, dict)
    )
    return ExperimentAnalysis(
        run_comparisons=tuple(note for note in comparisons if note is not None),
        key_findings=_text_list(_pick(payload, "key_findings", "keyFindings")),
        recommendations=_text_list(payload.get("recommendations")),
        timestamp=_timestamp_text(payload.get("timestamp")),
    )


def experiment_from_dict(payload: object) -> Experiment:
    """Build an Experiment from a stored or legacy-exported record."""
    if not isinstance(payload, dict):
        raise ValueError("Each experiment must be an object")
    if "id" not in payload:
        raise ValueError("Experiment is missing required field: id")

    raw_runs = payload.get("runs") or []
    if not isinstance(raw_runs, list):
        raise ValueError("Experiment field 'runs' must be a list")
    raw_block_content = _pick(payload, "block_content", "blockContent")
    block_content = (
        {str(key): str(value) for key, value in raw_block_content.items()}
        if isinstance(raw_block_content, dict)
        else None
    )
    parent_version = _pick(payload, "parent_version", "parentVersion")

    return Experiment(
        id=str(payload["id"]),
        title=str(payload.get("title", "") or "Legacy Experiment"),
        timestamp=_timestamp_text(payload.get("timestamp")),
        hypothesis=str(payload.get("hypothesis", "") or ""),
        objective=str(payload.get("objective", "") or ""),
        runs=tuple(_deserialize_run(item) for item in raw_runs),
        version=str(payload.get("version", "") or "v1"),
        parent_version=str(parent_version) if parent_version else None,
        block_content=block_content,
        notes=str(payload.get("notes", "") or ""),
        child_versions_issued=int(_pick(payload, "child_versions_issued", default=0)),  # type: ignore[arg-type]
        description=str(payload.get("description", "") or ""),
        change_metadata=_deserialize_change_metadata(_pick(payload, "change_metadata", "changeMetadata")),
        analysis=_deserialize_analysis(payload.get("analysis")),
    )


def notebook_entry_to_dict(entry: LabNotebookEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "title": entry.title,
        "content": entry.content,
        "category": entry.category,
        "tags": list(entry.tags),
        "timestamp": entry.timestamp,
        "starred": entry.starred,
        "related_experiments": list(entry.related_experiments),
    }


def notebook_entry_from_dict(payload: object) -> LabNotebookEntry:
    """Build a notebook entry from a stored or legacy-exported record."""
    if not isinstance(payload, dict):
        raise ValueError("Each notebook entry must be an object")
    if "id" not in payload:
        raise ValueError("Notebook entry is missing required field: id")
    return LabNotebookEntry(
        id=str(payload["id"]),
        title=str(payload.get("title", "") or ""),
        content=str(payload.get("content", "") or ""),
        category=str(payload.get("category", "") or "observation"),  # type: ignore[arg-type]
        tags=_text_list(payload.get("tags")),
        timestamp=_timestamp_text(payload.get("timestamp")),
        starred=bool(payload.get("starred", False)),
        related_experiments=_text_list(_pick(payload, "related_experiments", "relatedExperiments")),
    )


def _envelope_items(text: str, field_name: str) -> list[object]:
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("Store file root must be an object")
    if "schema_version" in payload:
        schema_version = int(payload["schema_version"])
        if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            supported = ", ".join(str(v) for v in sorted(SUPPORTED_SCHEMA_VERSIONS))
            raise ValueError(f"Unsupported schema_version={schema_version}; supported versions: {supported}")
    items = payload.get(field_name)
    if not isinstance(items, list):
        raise ValueError(f"Store file field '{field_name}' must be a list")
    return items


def _parse_envelope(text: str) -> list[Experiment]:
    return [experiment_from_dict(item) for item in _envelope_items(text, "experiments")]


def _parse_notebook(text: str) -> list[LabNotebookEntry]:
    return [notebook_entry_from_dict(item) for item in _envelope_items(text, "entries")]


def _render(field_name: str, items: list[dict[str, object]]) -> str:
    payload = {
        "schema_version": SCHEMA_VERSION,
        "last_updated": utc_now_iso(),
        field_name: items,
    }
    return json.dumps(payload, indent=2, ensure_ascii=True) + "\n"


def _render_envelope(experiments: list[Experiment]) -> str:
    return _render("experiments", [experiment_to_dict(experiment) for experiment in experiments])


def _render_notebook(entries: list[LabNotebookEntry]) -> str:
    return _render("entries", [notebook_entry_to_dict(entry) for entry in entries])


def _write_atomically(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        temp_path.write_text(text, encoding="utf-8")
        os.replace(temp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Could not write {path}: {exc}") from exc


class ExperimentStore:
    """Key-value store of experiments backed by one JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load_all(self) -> list[Experiment]:
        """Load every stored experiment; a missing file means an empty store."""
        if not self.path.exists():
            return []
        try:
            return _parse_envelope(self.path.read_text(encoding="utf-8"))
        except (OSError, *RECORD_ERRORS) as exc:
            raise PersistenceError(f"Could not load experiments from {self.path}: {exc}") from exc

    def _write_all(self, experiments: list[Experiment]) -> None:
        _write_atomically(self.path, _render_envelope(experiments))

    def save(self, experiment: Experiment) -> None:
        """Insert or replace one experiment by id."""
        experiments = self.load_all()
        for index, existing in enumerate(experiments):
            if existing.id == experiment.id:
                experiments[index] = experiment
                break
        else:
            experiments.append(experiment)
        self._write_all(experiments)
        LOGGER.info("experiment_saved id=%s runs=%d path=%s", experiment.id, len(experiment.runs), self.path)

    def delete(self, experiment_id: str) -> None:
        experiments = self.load_all()
        remaining = [experiment for experiment in experiments if experiment.id != experiment_id]
        self._write_all(remaining)
        LOGGER.info(
            "experiment_deleted id=%s removed=%d path=%s",
            experiment_id,
            len(experiments) - len(remaining),
            self.path,
        )

    def export_all(self) -> str:
        return _render_envelope(self.load_all())

    def import_all(self, blob: str) -> bool:
        """Replace the store contents with an exported blob; False when it is unusable."""
        try:
            experiments = _parse_envelope(blob)
        except RECORD_ERRORS as exc:
            LOGGER.warning("experiment_import_rejected reason=%s", exc)
            return False
        try:
            self._write_all(experiments)
        except PersistenceError:
            LOGGER.exception("Import could not be written.")
            return False
        LOGGER.info("experiments_imported count=%d path=%s", len(experiments), self.path)
        return True


class NotebookStore:
    """Lab notebook entries backed by one JSON file, newest first."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load_entries(self) -> list[LabNotebookEntry]:
        if not self.path.exists():
            return []
        try:
            entries = _parse_notebook(self.path.read_text(encoding="utf-8"))
        except (OSError, *RECORD_ERRORS) as exc:
            raise PersistenceError(f"Could not load notebook from {self.path}: {exc}") from exc
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)

    def save_entry(self, entry: LabNotebookEntry) -> None:
        """Insert or replace one entry by id."""
        entries = self.load_entries()
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[index] = entry
                break
        else:
            entries.append(entry)
        _write_atomically(self.path, _render_notebook(entries))
        LOGGER.info("notebook_entry_saved id=%s category=%s path=%s", entry.id, entry.category, self.path)

    def delete_entry(self, entry_id: str) -> None:
        entries = self.load_entries()
        remaining = [entry for entry in entries if entry.id != entry_id]
        _write_atomically(self.path, _render_notebook(remaining))
        LOGGER.info(
            "notebook_entry_deleted id=%s removed=%d path=%s",
            entry_id,
            len(entries) - len(remaining),
            self.path,
        )

    def export_notebook(self) -> str:
        return _render_notebook(self.load_entries())

    def import_notebook(self, blob: str) -> bool:
        """Replace the notebook with an exported blob; False when it is unusable."""
        try:
            entries = _parse_notebook(blob)
        except RECORD_ERRORS as exc:
            LOGGER.warning("notebook_import_rejected reason=%s", exc)
            return False
        try:
            _write_atomically(self.path, _render_notebook(entries))
        except PersistenceError:
            LOGGER.exception("Notebook import could not be written.")
            return False
        LOGGER.info("notebook_imported count=%d path=%s", len(entries), self.path)
        return True
