"""Run execution: assemble the payload, race generation against the timeout.

Generation is the only blocking step. It runs in a worker thread and is raced
against a wall-clock timeout; when the timeout wins, the thread is left to
finish in the background and its result is discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Iterable, Protocol

from prompt_lab.llm_client import LLMError, LLMResponse, describe_error
from prompt_lab.models import AttachedFile, Experiment, ExperimentRun
from prompt_lab.persistence import PersistenceError
from prompt_lab.session import IterationSession, SessionError, begin_run, complete_run

LOGGER = logging.getLogger("prompt_lab.engine")

RUN_TIMEOUT_SECONDS = 30.0


class GenerationClient(Protocol):
    def generate_text(self, *, prompt: str, model: str, temperature: float, max_tokens: int) -> LLMResponse: ...


class ExperimentSaver(Protocol):
    def save(self, experiment: Experiment) -> None: ...


@dataclass(frozen=True)
class RunOutcome:
    """Output of one execution; `error_category` is set when it failed."""

    output: str
    error_category: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_category is None


def format_error_output(category: str, message: str) -> str:
    return f"[Error: {category}] {message}"


def build_generation_prompt(prompt: str, files: Iterable[AttachedFile] = ()) -> str:
    """Append attached file text to the user-visible prompt."""
    sections = [prompt] if prompt else []
    for attached in files:
        sections.append(f"[ATTACHED FILE: {attached.name}]\n{attached.content}\n[END ATTACHED FILE]")
    return "\n\n".join(sections)


async def execute_run(
    run: ExperimentRun,
    client: GenerationClient,
    *,
    timeout_seconds: float = RUN_TIMEOUT_SECONDS,
) -> RunOutcome:
    """Execute one run; failures come back as an error outcome, never raised."""
    payload = build_generation_prompt(run.prompt, run.attached_files)
    parameters = run.parameters
    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(
                client.generate_text,
                prompt=payload,
                model=parameters.model,
                temperature=parameters.temperature,
                max_tokens=parameters.max_tokens,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        message = f"No response within {timeout_seconds:g} seconds."
        LOGGER.warning("run_timeout run_id=%s timeout_seconds=%s", run.id, timeout_seconds)
        return RunOutcome(format_error_output("timeout", message), "timeout", message)
    except LLMError as exc:
        LOGGER.warning("run_failed run_id=%s category=%s", run.id, exc.category)
        return RunOutcome(format_error_output(exc.category, exc.message), exc.category, exc.message)
    except Exception as exc:
        LOGGER.exception("run_failed run_id=%s category=unknown", run.id)
        message = str(exc) or exc.__class__.__name__
        return RunOutcome(format_error_output("unknown", message), "unknown", message)

    LOGGER.info("run_succeeded run_id=%s output_chars=%d", run.id, len(response.text))
    if not response.text:
        return RunOutcome("No response generated")
    return RunOutcome(response.text)


def save_quietly(store: ExperimentSaver | None, experiment: Experiment | None) -> bool:
    """Persist an experiment; failures are logged and never interrupt the session."""
    if store is None or experiment is None:
        return False
    try:
        store.save(experiment)
    except PersistenceError:
        LOGGER.exception("Saving experiment %s failed; in-memory state is kept.", experiment.id)
        return False
    return True


async def finish_run(
    session: IterationSession,
    client: GenerationClient,
    store: ExperimentSaver | None = None,
    *,
    timeout_seconds: float = RUN_TIMEOUT_SECONDS,
) -> tuple[IterationSession, RunOutcome]:
    """Execute the session's in-flight run and record its outcome."""
    run = session.active_run
    if run is None:
        raise SessionError("No run is in progress.")
    outcome = await execute_run(run, client, timeout_seconds=timeout_seconds)
    next_session = complete_run(session, outcome.output, error_category=outcome.error_category)
    # Saved only after the in-memory transition above.
    save_quietly(store, next_session.experiment)
    return next_session, outcome


async def run_iteration(
    session: IterationSession,
    client: GenerationClient,
    store: ExperimentSaver | None = None,
    *,
    branch_name: str | None = None,
    timeout_seconds: float = RUN_TIMEOUT_SECONDS,
) -> tuple[IterationSession, RunOutcome]:
    """Create a run from the validated candidate, execute it, and save the result.

    Raises ValidationError or SessionError before anything is created when the
    candidate is not a permitted single change.
    """
    loading_session, _ = begin_run(session, branch_name=branch_name)
    save_quietly(store, loading_session.experiment)
    return await finish_run(loading_session, client, store, timeout_seconds=timeout_seconds)


def error_summary(outcome: RunOutcome) -> str:
    """User-facing explanation for a failed outcome, empty for successes."""
    if outcome.ok:
        return ""
    explanation, suggestions = describe_error(outcome.error_category or "unknown")
    return f"{explanation} Suggestions: {'; '.join(suggestions)}."
