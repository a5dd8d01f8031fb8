"""NiceGUI entrypoint for Prompt Lab."""

from __future__ import annotations

import logging
from pathlib import Path

from nicegui import ui
from nicegui.events import UploadEventArguments

from prompt_lab.baseline import find_run
from prompt_lab.blocks import BLOCK_CATALOG
from prompt_lab.change_validator import Candidate, ValidationError
from prompt_lab.config import (
    DEFAULT_DATA_FILE,
    DEFAULT_NOTEBOOK_FILE,
    DEFAULT_RUN_TIMEOUT_SECONDS,
    AppConfig,
    ConfigError,
    get_config,
)
from prompt_lab.diffs import RunComparison, compare_runs, comparison_note, unified_text_diff
from prompt_lab.engine import error_summary, finish_run, run_iteration, save_quietly
from prompt_lab.files import attach_file
from prompt_lab.history_view import (
    format_change_metadata,
    format_experiment_title,
    format_notebook_entry,
    format_run_header,
    format_run_label,
    render_run_tree,
)
from prompt_lab.llm_client import LLMClient
from prompt_lab.models import (
    DEFAULT_MODEL_CHOICES,
    EVALUATION_QUALITIES,
    IMPROVEMENT_VERDICTS,
    MAX_MAX_TOKENS,
    MAX_TEMPERATURE,
    MIN_MAX_TOKENS,
    MIN_TEMPERATURE,
    NOTEBOOK_CATEGORIES,
    AttachedFile,
    BlockState,
    ChangeMetadata,
    Experiment,
    LabNotebookEntry,
    RunEvaluation,
    RunParameters,
    new_record_id,
)
from prompt_lab.notebook import build_summary_entry, finish_experiment
from prompt_lab.persistence import ExperimentStore, NotebookStore, PersistenceError
from prompt_lab.run_tree import (
    annotate_run,
    append_note,
    branch_names,
    effective_parent_id,
    evaluate_run,
    record_comparison,
    saved_comparison,
    set_change_metadata,
)
from prompt_lab.session import (
    SessionError,
    candidate_from_run,
    ensure_can_delete,
    enter_comparison,
    new_session,
    open_experiment,
    replace_experiment,
    run_blocked_reason,
    select_fork,
    start_experiment,
    start_iteration,
    update_candidate,
)

LOG_FILE = Path("logs/app.log")
LOGGER = logging.getLogger("prompt_lab.ui")


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    target_path = path.resolve()
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            continue
        handler_path = Path(getattr(handler, "baseFilename", "")).resolve()
        if handler_path == target_path:
            return True
    return False


def _configure_logging() -> None:
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    for logger in (
        LOGGER,
        logging.getLogger("prompt_lab.llm_client"),
        logging.getLogger("prompt_lab.engine"),
        logging.getLogger("prompt_lab.session"),
        logging.getLogger("prompt_lab.persistence"),
        logging.getLogger("prompt_lab.notebook"),
    ):
        if not _has_file_handler(logger, LOG_FILE):
            file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False


def _load_config() -> tuple[AppConfig | None, str | None]:
    try:
        return get_config(), None
    except ConfigError as exc:
        LOGGER.warning("config_unavailable reason=%s", exc)
        return None, str(exc)


def build_ui() -> None:
    config, config_error = _load_config()
    store = ExperimentStore(config.data_file if config is not None else DEFAULT_DATA_FILE)
    notebook = NotebookStore(config.notebook_file if config is not None else DEFAULT_NOTEBOOK_FILE)
    client = LLMClient(config) if config is not None else None
    model_options = list(config.models if config is not None else DEFAULT_MODEL_CHOICES)
    timeout_seconds = config.run_timeout_seconds if config is not None else DEFAULT_RUN_TIMEOUT_SECONDS

    session = new_session()
    experiments: list[Experiment] = []
    notebook_entries: list[LabNotebookEntry] = []
    attached_files: list[AttachedFile] = []
    is_applying_state = False
    # Last rejection of the edited parameters; the session candidate is stale while set.
    candidate_error: str | None = None
    current_comparison: RunComparison | None = None

    ui.label("Prompt Lab").classes("text-2xl font-bold")

    with ui.card().classes("w-full"):
        ui.label("Status").classes("text-xl font-semibold")
        status_label = ui.label("Status: Idle")
        error_label = ui.label("Last error: None").classes("text-sm text-red-700")
        stage_label = ui.label(f"Stage: {session.stage.value}").classes("text-sm text-gray-700")

    def set_status(text: str) -> None:
        status_label.set_text(f"Status: {text}")

    def set_error(text: str) -> None:
        error_label.set_text(f"Last error: {text}")

    def upsert_experiment(experiment: Experiment | None) -> None:
        if experiment is None:
            return
        for index, existing in enumerate(experiments):
            if existing.id == experiment.id:
                experiments[index] = experiment
                return
        experiments.append(experiment)

    with ui.card().classes("w-full"):
        ui.label("Experiment").classes("text-xl font-semibold")
        library_select = ui.select(options={}, label="Open experiment", with_input=True).classes("w-full")
        title_input = ui.input(label="Title", placeholder="Prompt Experiment").classes("w-full")
        hypothesis_input = ui.textarea(
            label="Hypothesis",
            placeholder="What do you expect to change, and why?",
        ).props("autogrow").classes("w-full")
        objective_input = ui.textarea(label="Objective").props("autogrow").classes("w-full")
        description_input = ui.textarea(label="Description").props("autogrow").classes("w-full")
        parent_select = ui.select(options={}, label="Derive from (optional)", clearable=True).classes("w-full")
        experiment_label = ui.label("No experiment open.").classes("text-sm text-gray-700")
        branches_label = ui.label("").classes("text-sm text-gray-700")
        with ui.expansion("Experiment notes").classes("w-full"):
            notes_log_label = ui.label("").classes("text-sm whitespace-pre-wrap")
            note_input = ui.textarea(label="New note").props("autogrow").classes("w-full")
            ui.button("Add note", on_click=lambda: add_note_action()).props("size=sm")
        with ui.expansion("Change impact").classes("w-full"):
            change_summary_label = ui.label("").classes("text-sm text-gray-700")
            what_changed_input = ui.input(label="What changed").classes("w-full")
            why_changed_input = ui.input(label="Why").classes("w-full")
            with ui.row().classes("w-full gap-4"):
                improved_select = ui.select(
                    options=list(IMPROVEMENT_VERDICTS),
                    value="unknown",
                    label="Did it improve?",
                ).classes("w-40")
                keep_checkbox = ui.checkbox("Keep this version", value=True)
            ui.button("Save change notes", on_click=lambda: save_change_metadata_action()).props("size=sm")

    with ui.card().classes("w-full"):
        ui.label("Prompt Blocks").classes("text-xl font-semibold")
        block_inputs: dict[str, ui.textarea] = {}
        for definition in BLOCK_CATALOG:
            label = f"{definition.display_name} (required)" if definition.is_required else definition.display_name
            with ui.expansion(label, value=definition.is_required).classes("w-full"):
                ui.label(definition.description).classes("text-xs text-gray-600")
                block_inputs[definition.id] = ui.textarea(
                    placeholder=definition.placeholder,
                ).props("autogrow").classes("w-full")

    with ui.card().classes("w-full"):
        ui.label("Parameters").classes("text-xl font-semibold")
        with ui.row().classes("w-full gap-4"):
            model_select = ui.select(
                options=model_options,
                value=config.default_model if config is not None else model_options[0],
                label="Model",
            ).classes("w-64")
            temperature_input = ui.number(
                label="Temperature",
                value=RunParameters().temperature,
                min=MIN_TEMPERATURE,
                max=MAX_TEMPERATURE,
                step=0.1,
            ).classes("w-40")
            max_tokens_input = ui.number(
                label="Max tokens",
                value=RunParameters().max_tokens,
                min=MIN_MAX_TOKENS,
                max=MAX_MAX_TOKENS,
                step=100,
            ).classes("w-40")
        files_label = ui.label("Attached files: (none)").classes("text-sm text-gray-700")

    with ui.card().classes("w-full"):
        ui.label("Iteration").classes("text-xl font-semibold")
        fork_select = ui.select(options={}, label="Fork from run").classes("w-full")
        branch_input = ui.input(label="Branch name (optional)").classes("w-full")
        validation_label = ui.label("Fill in the Task block to start an experiment.").classes("text-sm")
        with ui.row().classes("w-full gap-2"):
            run_button = ui.button("Run")
            ui.button("New experiment", on_click=lambda: reset_session_action())
        with ui.expansion("Finish experiment").classes("w-full"):
            summary_title_input = ui.input(label="Summary title").classes("w-full")
            key_findings_input = ui.textarea(label="Key findings (one per line)").props("autogrow").classes("w-full")
            what_worked_input = ui.textarea(label="What worked well").props("autogrow").classes("w-full")
            what_failed_input = ui.textarea(label="What didn't work").props("autogrow").classes("w-full")
            next_steps_input = ui.textarea(label="Next steps (one per line)").props("autogrow").classes("w-full")
            ui.button("Finish and add to lab notebook", on_click=lambda: finish_experiment_action()).props("size=sm")

    with ui.card().classes("w-full"):
        ui.label("Runs").classes("text-xl font-semibold")
        tree_label = ui.label("").classes("font-mono whitespace-pre text-sm")
        runs_container = ui.column().classes("w-full gap-2")

    with ui.card().classes("w-full"):
        ui.label("Compare").classes("text-xl font-semibold")
        with ui.row().classes("w-full gap-4"):
            compare_first_select = ui.select(options={}, label="First run").classes("w-64")
            compare_second_select = ui.select(options={}, label="Second run").classes("w-64")
            compare_button = ui.button("Compare")
        compare_summary_label = ui.label("").classes("text-sm whitespace-pre")
        compare_prompt_diff = ui.textarea(label="Prompt diff").props("readonly autogrow").classes("w-full")
        compare_output_diff = ui.textarea(label="Output diff").props("readonly autogrow").classes("w-full")
        compare_notes_input = ui.textarea(label="Comparison notes").props("autogrow").classes("w-full")
        with ui.row().classes("w-full gap-2"):
            ui.button("Save comparison", on_click=lambda: save_comparison_action()).props("size=sm")
            ui.button("Back to iteration", on_click=lambda: leave_comparison_action()).props("size=sm")

    def candidate_from_ui() -> Candidate:
        parameters = RunParameters(
            model=str(model_select.value or ""),
            temperature=float(temperature_input.value if temperature_input.value is not None else 0.0),
            max_tokens=int(max_tokens_input.value or 0),
        )
        blocks = tuple(
            BlockState(id=block_id, content=str(element.value or ""), is_collapsed=not str(element.value or "").strip())
            for block_id, element in block_inputs.items()
        )
        return Candidate(parameters=parameters, blocks=blocks, files=tuple(attached_files))

    def apply_candidate(candidate: Candidate) -> None:
        nonlocal is_applying_state, candidate_error
        candidate_error = None
        is_applying_state = True
        try:
            for block_id, element in block_inputs.items():
                element.value = candidate.content_for(block_id)
            if candidate.parameters.model not in model_select.options:
                model_select.options.append(candidate.parameters.model)
                model_select.update()
            model_select.value = candidate.parameters.model
            temperature_input.value = candidate.parameters.temperature
            max_tokens_input.value = candidate.parameters.max_tokens
            attached_files.clear()
            attached_files.extend(candidate.files)
        finally:
            is_applying_state = False

    def refresh_validation() -> None:
        stage_label.set_text(f"Stage: {session.stage.value}")
        names = ", ".join(f"{item.name} ({item.size} bytes)" for item in attached_files)
        files_label.set_text(f"Attached files: {names or '(none)'}")
        blocked_reason = run_blocked_reason(session, candidate_error)
        if session.is_run_in_flight:
            validation_label.set_text("Run in progress...")
        elif blocked_reason is not None:
            validation_label.set_text(f"Blocked: {blocked_reason}")
        elif session.experiment is None:
            validation_label.set_text("Ready to start a new experiment.")
        elif session.validation is not None:
            validation_label.set_text(f"Ready: {'; '.join(session.validation.changes)}")
        if blocked_reason is None:
            run_button.enable()
        else:
            run_button.disable()

    def refresh_library() -> None:
        options = {experiment.id: format_experiment_title(experiment) for experiment in experiments}
        library_select.set_options(options)
        parent_select.set_options(options)

    def render_runs() -> None:
        experiment = session.experiment
        runs_container.clear()
        if experiment is None:
            experiment_label.set_text("No experiment open.")
            branches_label.set_text("")
            notes_log_label.set_text("")
            change_summary_label.set_text("")
            tree_label.set_text("")
            fork_select.set_options({})
            compare_first_select.set_options({})
            compare_second_select.set_options({})
            with runs_container:
                ui.label("No runs yet. Start an experiment to populate this panel.").classes("text-sm text-gray-600")
            return

        experiment_label.set_text(format_experiment_title(experiment))
        branches_label.set_text(f"Branches: {', '.join(branch_names(experiment))}")
        notes_log_label.set_text(experiment.notes or "(no notes yet)")
        change_summary_label.set_text(format_change_metadata(experiment.change_metadata))
        tree_label.set_text("\n".join(render_run_tree(experiment)))
        run_options = {run.id: format_run_label(run, index + 1) for index, run in enumerate(experiment.runs)}
        fork_select.set_options(run_options, value=session.fork_run_id)
        compare_first_select.set_options(run_options)
        compare_second_select.set_options(run_options)

        with runs_container:
            for index, run in enumerate(experiment.runs):
                with ui.expansion(format_run_header(run, index + 1)).classes("w-full"):
                    if run.change_description:
                        ui.label(run.change_description).classes("text-sm text-gray-700")
                    ui.textarea(label="Prompt", value=run.prompt).props("readonly autogrow").classes("w-full")
                    ui.textarea(label="Output", value=run.output).props("readonly autogrow").classes("w-full")

                    parent = find_run(experiment, effective_parent_id(experiment, index))
                    if parent is not None and run.output:
                        diff_text = unified_text_diff(
                            parent.output,
                            run.output,
                            previous_label="parent",
                            current_label="this run",
                        )
                        ui.textarea(
                            label="Output diff vs parent",
                            value=diff_text or "(no differences)",
                        ).props("readonly autogrow").classes("w-full")

                    evaluation = run.evaluation
                    with ui.row().classes("w-full gap-4"):
                        rating_input = ui.number(
                            label="Rating (1-5)",
                            value=evaluation.rating if evaluation is not None else None,
                            min=1,
                            max=5,
                            step=1,
                        ).classes("w-32")
                        quality_select = ui.select(
                            options=list(EVALUATION_QUALITIES),
                            value=evaluation.quality if evaluation is not None else "good",
                            label="Quality",
                        ).classes("w-40")
                        tags_input = ui.input(
                            label="Tags (comma separated)",
                            value=", ".join(evaluation.tags) if evaluation is not None else "",
                        ).classes("w-64")
                    feedback_input = ui.textarea(
                        label="Feedback",
                        value=evaluation.feedback if evaluation is not None else "",
                    ).props("autogrow").classes("w-full")
                    notes_input = ui.textarea(label="Run notes", value=run.notes).props("autogrow").classes("w-full")

                    def save_evaluation_click(
                        run_id: str = run.id,
                        rating=rating_input,
                        quality=quality_select,
                        tags=tags_input,
                        feedback=feedback_input,
                        notes=notes_input,
                    ) -> None:
                        save_evaluation_action(
                            run_id,
                            rating=rating.value,
                            quality=str(quality.value or "good"),
                            tags=str(tags.value or ""),
                            feedback=str(feedback.value or ""),
                            notes=str(notes.value or ""),
                        )

                    ui.button("Save evaluation", on_click=save_evaluation_click).props("size=sm")

    def refresh_notebook() -> None:
        notebook_select.set_options({entry.id: format_notebook_entry(entry) for entry in notebook_entries})
        notebook_container.clear()
        with notebook_container:
            if not notebook_entries:
                ui.label("The lab notebook is empty.").classes("text-sm text-gray-600")
            for entry in notebook_entries:
                with ui.expansion(format_notebook_entry(entry)).classes("w-full"):
                    ui.markdown(entry.content or "_(empty)_")

    def refresh_all() -> None:
        refresh_library()
        render_runs()
        refresh_validation()
        refresh_notebook()

    def refresh_candidate() -> None:
        nonlocal session, candidate_error
        if is_applying_state or session.is_run_in_flight:
            return
        try:
            session = update_candidate(session, candidate_from_ui())
            candidate_error = None
            set_error("None")
        except ValueError as exc:
            candidate_error = str(exc)
            set_error(candidate_error)
        except SessionError as exc:
            LOGGER.exception("Candidate update rejected.")
            set_error(exc.message)
        refresh_validation()

    def register_candidate_refresh(element: ui.element) -> None:
        element.on_value_change(lambda _event: refresh_candidate())

    def reload_experiments() -> None:
        try:
            loaded = store.load_all()
        except PersistenceError as exc:
            LOGGER.exception("Loading experiments failed.")
            set_error(str(exc))
            ui.notify("Loading saved experiments failed.", type="negative")
            return
        experiments.clear()
        experiments.extend(loaded)

    def reload_notebook() -> None:
        try:
            loaded = notebook.load_entries()
        except PersistenceError as exc:
            LOGGER.exception("Loading the lab notebook failed.")
            set_error(str(exc))
            ui.notify("Loading the lab notebook failed.", type="negative")
            return
        notebook_entries[:] = loaded

    def apply_change_metadata(metadata: ChangeMetadata | None) -> None:
        what_changed_input.value = metadata.what_changed if metadata is not None else ""
        why_changed_input.value = metadata.why_changed if metadata is not None else ""
        improved_select.value = metadata.did_it_improve if metadata is not None else "unknown"
        keep_checkbox.value = metadata.keep_this_version if metadata is not None else True

    def clear_experiment_form() -> None:
        title_input.value = ""
        hypothesis_input.value = ""
        objective_input.value = ""
        description_input.value = ""
        parent_select.value = None
        note_input.value = ""
        apply_change_metadata(None)
        for element in (
            summary_title_input,
            key_findings_input,
            what_worked_input,
            what_failed_input,
            next_steps_input,
        ):
            element.value = ""

    def reset_session_action() -> None:
        nonlocal session, current_comparison
        if session.is_run_in_flight:
            ui.notify("Wait for the current run to finish.", type="warning")
            return
        session = new_session()
        current_comparison = None
        apply_candidate(session.candidate)
        clear_experiment_form()
        set_status("Idle")
        set_error("None")
        refresh_all()

    def open_experiment_action(experiment_id: str | None) -> None:
        nonlocal session, current_comparison
        if is_applying_state or not experiment_id:
            return
        if session.is_run_in_flight:
            ui.notify("Wait for the current run to finish.", type="warning")
            return
        experiment = next((item for item in experiments if item.id == experiment_id), None)
        if experiment is None:
            return
        session = open_experiment(experiment)
        current_comparison = None
        apply_candidate(session.candidate)
        title_input.value = experiment.title
        hypothesis_input.value = experiment.hypothesis
        objective_input.value = experiment.objective
        description_input.value = experiment.description
        apply_change_metadata(experiment.change_metadata)
        set_status("Idle")
        set_error("None")
        refresh_all()
        LOGGER.info("experiment_opened id=%s runs=%d", experiment.id, len(experiment.runs))

    def select_fork_action(run_id: str | None) -> None:
        nonlocal session
        if is_applying_state or not run_id or session.experiment is None or run_id == session.fork_run_id:
            return
        if session.is_run_in_flight:
            return
        run = find_run(session.experiment, run_id)
        if run is None:
            return
        try:
            # Forking loads the fork point's state into the editor.
            session = update_candidate(select_fork(session, run_id), candidate_from_run(run))
        except SessionError as exc:
            LOGGER.exception("Fork selection rejected.")
            set_error(exc.message)
            return
        apply_candidate(session.candidate)
        refresh_validation()

    async def run_action() -> None:
        nonlocal session
        if client is None:
            set_error(config_error or "Configuration error.")
            ui.notify("Set OPENAI_API_KEY before running prompts.", type="negative")
            return
        blocked_reason = run_blocked_reason(session, candidate_error)
        if blocked_reason is not None:
            ui.notify(blocked_reason, type="warning")
            return
        try:
            set_status("Running")
            set_error("None")
            if session.experiment is None:
                parent = next((item for item in experiments if item.id == parent_select.value), None)
                session, _, updated_parent = start_experiment(
                    session,
                    str(title_input.value or ""),
                    experiments,
                    hypothesis=str(hypothesis_input.value or ""),
                    objective=str(objective_input.value or ""),
                    description=str(description_input.value or ""),
                    parent=parent,
                )
                if updated_parent is not None:
                    upsert_experiment(updated_parent)
                    save_quietly(store, updated_parent)
                upsert_experiment(session.experiment)
                save_quietly(store, session.experiment)
                refresh_all()
                session, outcome = await finish_run(session, client, store, timeout_seconds=timeout_seconds)
            else:
                run_button.disable()
                validation_label.set_text("Run in progress...")
                session, outcome = await run_iteration(
                    session,
                    client,
                    store,
                    branch_name=str(branch_input.value or "").strip() or None,
                    timeout_seconds=timeout_seconds,
                )
            upsert_experiment(session.experiment)
            branch_input.value = ""
            if outcome.ok:
                set_status("Idle")
                ui.notify("Run completed.", type="positive")
            else:
                set_status("Error")
                set_error(error_summary(outcome))
                ui.notify(f"Run failed: {outcome.error_category}", type="negative")
        except ValidationError as exc:
            set_status("Idle")
            set_error(exc.message)
            ui.notify(exc.message, type="warning")
        except SessionError as exc:
            LOGGER.exception("Run rejected by the session.")
            set_status("Error")
            set_error(exc.message)
            ui.notify(exc.message, type="negative")
        except Exception as exc:
            LOGGER.exception("Run failed unexpectedly.")
            set_status("Error")
            set_error(f"Run failed: {exc}")
            ui.notify("Run failed.", type="negative")
        refresh_all()

    def save_evaluation_action(
        run_id: str,
        *,
        rating: object,
        quality: str,
        tags: str,
        feedback: str,
        notes: str,
    ) -> None:
        nonlocal session
        if session.experiment is None:
            return
        try:
            experiment = session.experiment
            if rating is not None:
                evaluation = RunEvaluation(
                    rating=int(rating),
                    quality=quality,  # type: ignore[arg-type]
                    feedback=feedback.strip(),
                    tags=tuple(tag for tag in tags.split(",")),
                )
                experiment = evaluate_run(experiment, run_id, evaluation)
            experiment = annotate_run(experiment, run_id, notes)
            session = replace_experiment(session, experiment)
            upsert_experiment(experiment)
            if save_quietly(store, experiment):
                ui.notify("Evaluation saved.", type="positive")
            else:
                ui.notify("Evaluation kept in memory but could not be saved.", type="warning")
        except ValueError as exc:
            set_error(str(exc))
            ui.notify(str(exc), type="warning")
        except (KeyError, SessionError) as exc:
            LOGGER.exception("Saving evaluation failed.")
            set_error(str(exc))
            ui.notify("Saving evaluation failed.", type="negative")
        refresh_all()

    def store_experiment_update(experiment: Experiment, success_message: str) -> None:
        nonlocal session
        session = replace_experiment(session, experiment)
        upsert_experiment(experiment)
        if save_quietly(store, experiment):
            ui.notify(success_message, type="positive")
        else:
            ui.notify("Change kept in memory but could not be saved.", type="warning")

    def add_note_action() -> None:
        if session.experiment is None:
            ui.notify("Open an experiment before adding notes.", type="warning")
            return
        text = str(note_input.value or "").strip()
        if not text:
            return
        try:
            store_experiment_update(append_note(session.experiment, text), "Note added.")
        except SessionError as exc:
            LOGGER.exception("Adding a note failed.")
            set_error(exc.message)
            return
        note_input.value = ""
        refresh_all()

    def save_change_metadata_action() -> None:
        if session.experiment is None:
            ui.notify("Open an experiment before recording change notes.", type="warning")
            return
        try:
            metadata = ChangeMetadata(
                what_changed=str(what_changed_input.value or ""),
                why_changed=str(why_changed_input.value or ""),
                did_it_improve=str(improved_select.value or "unknown"),  # type: ignore[arg-type]
                keep_this_version=bool(keep_checkbox.value),
            )
            store_experiment_update(set_change_metadata(session.experiment, metadata), "Change notes saved.")
        except ValueError as exc:
            set_error(str(exc))
            ui.notify(str(exc), type="warning")
            return
        except SessionError as exc:
            LOGGER.exception("Saving change notes failed.")
            set_error(exc.message)
            return
        refresh_all()

    def compare_action() -> None:
        nonlocal session, current_comparison
        experiment = session.experiment
        if experiment is None:
            return
        first = find_run(experiment, compare_first_select.value)
        second = find_run(experiment, compare_second_select.value)
        if first is None or second is None:
            ui.notify("Pick two runs to compare.", type="warning")
            return
        try:
            session = enter_comparison(session)
        except SessionError as exc:
            ui.notify(exc.message, type="warning")
            return
        comparison = compare_runs(first, second)
        current_comparison = comparison
        lines = list(comparison.differences) or ["No parameter, block, or file differences."]
        lines.append(f"Output similarity: {comparison.output_similarity:.0%}")
        compare_summary_label.set_text("\n".join(lines))
        compare_prompt_diff.value = comparison.prompt_diff or "(identical prompts)"
        compare_output_diff.value = comparison.output_diff or "(identical outputs)"
        saved = saved_comparison(experiment, first.id, second.id)
        compare_notes_input.value = saved.notes if saved is not None else ""
        refresh_validation()

    def save_comparison_action() -> None:
        experiment = session.experiment
        if experiment is None or current_comparison is None:
            ui.notify("Compare two runs first.", type="warning")
            return
        try:
            note = comparison_note(current_comparison, notes=str(compare_notes_input.value or ""))
            store_experiment_update(record_comparison(experiment, note), "Comparison saved.")
        except (KeyError, SessionError) as exc:
            LOGGER.exception("Saving the comparison failed.")
            set_error(str(exc))
            ui.notify("Saving the comparison failed.", type="negative")
            return
        refresh_all()

    def leave_comparison_action() -> None:
        nonlocal session
        try:
            session = start_iteration(session)
        except SessionError as exc:
            ui.notify(exc.message, type="warning")
            return
        refresh_validation()

    def finish_experiment_action() -> None:
        nonlocal session, current_comparison
        experiment = session.experiment
        if experiment is None:
            ui.notify("Open an experiment before finishing it.", type="warning")
            return
        entry = build_summary_entry(
            experiment,
            title=str(summary_title_input.value or ""),
            key_findings=str(key_findings_input.value or ""),
            what_worked=str(what_worked_input.value or ""),
            what_did_not_work=str(what_failed_input.value or ""),
            next_steps=str(next_steps_input.value or ""),
        )
        try:
            session, finished = finish_experiment(
                session,
                entry,
                notebook,
                key_findings=str(key_findings_input.value or ""),
                next_steps=str(next_steps_input.value or ""),
            )
        except SessionError as exc:
            ui.notify(exc.message, type="warning")
            return
        except PersistenceError as exc:
            LOGGER.exception("Writing the notebook summary failed.")
            set_error(str(exc))
            ui.notify("The summary could not be saved; the experiment stays open.", type="negative")
            return
        current_comparison = None
        upsert_experiment(finished)
        save_quietly(store, finished)
        reload_notebook()
        apply_candidate(session.candidate)
        clear_experiment_form()
        set_status("Idle")
        refresh_all()
        ui.notify("Experiment finished and summarized in the lab notebook.", type="positive")

    def attach_file_action(event: UploadEventArguments) -> None:
        try:
            attached = attach_file(event.name, event.content.read())
            attached_files[:] = [item for item in attached_files if item.name != attached.name] + [attached]
            refresh_candidate()
            ui.notify(f"Attached {attached.name}.", type="positive")
        except Exception as exc:
            LOGGER.exception("Attaching file failed.")
            set_error(f"Attach failed: {exc}")
            ui.notify("Attaching file failed.", type="negative")

    def clear_files_action() -> None:
        attached_files.clear()
        refresh_candidate()

    def export_action() -> None:
        try:
            ui.download(store.export_all().encode("utf-8"), "experiments.json")
        except PersistenceError as exc:
            LOGGER.exception("Export failed.")
            set_error(str(exc))
            ui.notify("Export failed.", type="negative")

    def delete_action() -> None:
        nonlocal session
        experiment_id = library_select.value
        if not experiment_id:
            ui.notify("Pick an experiment to delete.", type="warning")
            return
        try:
            ensure_can_delete(session, experiment_id)
        except SessionError as exc:
            ui.notify(exc.message, type="warning")
            return
        try:
            store.delete(experiment_id)
        except PersistenceError as exc:
            LOGGER.exception("Delete failed.")
            set_error(str(exc))
            ui.notify("Delete failed.", type="negative")
            return
        experiments[:] = [item for item in experiments if item.id != experiment_id]
        if session.experiment is not None and session.experiment.id == experiment_id:
            reset_session_action()
        library_select.value = None
        refresh_all()
        ui.notify("Experiment deleted.", type="positive")

    def import_action(event: UploadEventArguments) -> None:
        try:
            payload_text = event.content.read().decode("utf-8")
        except UnicodeDecodeError:
            ui.notify("Import failed: file is not UTF-8 text.", type="negative")
            return
        if not store.import_all(payload_text):
            set_error(f"Import rejected: {event.name}")
            ui.notify("Import failed: unrecognized experiment file.", type="negative")
            return
        reload_experiments()
        refresh_all()
        ui.notify(f"Imported experiments from {event.name}", type="positive")

    def add_notebook_entry_action() -> None:
        try:
            entry = LabNotebookEntry(
                id=new_record_id(),
                title=str(entry_title_input.value or ""),
                content=str(entry_content_input.value or ""),
                category=str(entry_category_select.value or "observation"),  # type: ignore[arg-type]
                tags=tuple(str(entry_tags_input.value or "").split(",")),
                starred=bool(entry_starred_checkbox.value),
                related_experiments=(session.experiment.id,) if session.experiment is not None else (),
            )
        except ValueError as exc:
            ui.notify(str(exc), type="warning")
            return
        try:
            notebook.save_entry(entry)
        except PersistenceError as exc:
            LOGGER.exception("Saving notebook entry failed.")
            set_error(str(exc))
            ui.notify("Saving the notebook entry failed.", type="negative")
            return
        entry_title_input.value = ""
        entry_content_input.value = ""
        entry_tags_input.value = ""
        entry_starred_checkbox.value = False
        reload_notebook()
        refresh_notebook()
        ui.notify("Notebook entry saved.", type="positive")

    def delete_notebook_entry_action() -> None:
        entry_id = notebook_select.value
        if not entry_id:
            ui.notify("Pick a notebook entry to delete.", type="warning")
            return
        try:
            notebook.delete_entry(entry_id)
        except PersistenceError as exc:
            LOGGER.exception("Deleting notebook entry failed.")
            set_error(str(exc))
            ui.notify("Deleting the notebook entry failed.", type="negative")
            return
        notebook_select.value = None
        reload_notebook()
        refresh_notebook()

    def export_notebook_action() -> None:
        try:
            ui.download(notebook.export_notebook().encode("utf-8"), "lab-notebook.json")
        except PersistenceError as exc:
            LOGGER.exception("Notebook export failed.")
            set_error(str(exc))
            ui.notify("Notebook export failed.", type="negative")

    def import_notebook_action(event: UploadEventArguments) -> None:
        try:
            payload_text = event.content.read().decode("utf-8")
        except UnicodeDecodeError:
            ui.notify("Import failed: file is not UTF-8 text.", type="negative")
            return
        if not notebook.import_notebook(payload_text):
            set_error(f"Notebook import rejected: {event.name}")
            ui.notify("Import failed: unrecognized notebook file.", type="negative")
            return
        reload_notebook()
        refresh_notebook()
        ui.notify(f"Imported lab notebook from {event.name}", type="positive")

    with ui.card().classes("w-full"):
        ui.label("Lab Notebook").classes("text-xl font-semibold")
        notebook_container = ui.column().classes("w-full gap-2")
        with ui.expansion("New entry").classes("w-full"):
            entry_title_input = ui.input(label="Title").classes("w-full")
            with ui.row().classes("w-full gap-4"):
                entry_category_select = ui.select(
                    options=list(NOTEBOOK_CATEGORIES),
                    value="observation",
                    label="Category",
                ).classes("w-48")
                entry_tags_input = ui.input(label="Tags (comma separated)").classes("w-64")
                entry_starred_checkbox = ui.checkbox("Starred", value=False)
            entry_content_input = ui.textarea(label="Content (markdown)").props("autogrow").classes("w-full")
            ui.button("Save entry", on_click=add_notebook_entry_action).props("size=sm")
        with ui.row().classes("w-full gap-2 items-center"):
            notebook_select = ui.select(options={}, label="Entry").classes("w-96")
            ui.button("Delete entry", on_click=delete_notebook_entry_action).props("size=sm color=negative")
            ui.button("Export notebook", on_click=export_notebook_action).props("size=sm")
        ui.label("Import notebook (replaces the saved entries)").classes("text-sm text-gray-700")
        ui.upload(on_upload=import_notebook_action, auto_upload=True).props("accept=.json").classes("w-full")

    with ui.card().classes("w-full"):
        ui.label("Files and Persistence").classes("text-xl font-semibold")
        ui.label("Attach a text file to the next run").classes("text-sm text-gray-700")
        ui.upload(on_upload=attach_file_action, auto_upload=True).classes("w-full")
        with ui.row().classes("w-full gap-2"):
            ui.button("Clear attached files", on_click=clear_files_action).props("size=sm")
            ui.button("Export experiments", on_click=export_action).props("size=sm")
            ui.button("Delete selected experiment", on_click=delete_action).props("size=sm color=negative")
        ui.label("Import experiments (replaces the saved library)").classes("text-sm text-gray-700")
        ui.upload(on_upload=import_action, auto_upload=True).props("accept=.json").classes("w-full")

    run_button.on_click(run_action)
    compare_button.on_click(compare_action)
    library_select.on_value_change(lambda event: open_experiment_action(event.value))
    fork_select.on_value_change(lambda event: select_fork_action(event.value))
    for editable in [*block_inputs.values(), model_select, temperature_input, max_tokens_input]:
        register_candidate_refresh(editable)

    if config_error:
        set_error(config_error)
    reload_experiments()
    reload_notebook()
    refresh_all()


def main() -> None:
    host = "127.0.0.1"
    port = 8080
    _configure_logging()
    print(f"Starting Prompt Lab at http://{host}:{port}")
    build_ui()
    ui.run(host=host, port=port, title="Prompt Lab", show=False, reload=False)


if __name__ == "__main__":
    main()
