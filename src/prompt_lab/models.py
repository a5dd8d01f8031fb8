"""Canonical experiment, run, and block records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import threading
import time
from typing import Literal

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODEL_CHOICES: tuple[str, ...] = ("gpt-4o-mini", "gpt-4o")
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
MIN_MAX_TOKENS = 100
MAX_MAX_TOKENS = 4000
MAIN_BRANCH = "main"

EvaluationQuality = Literal["excellent", "good", "fair", "poor"]
EVALUATION_QUALITIES: tuple[str, ...] = ("excellent", "good", "fair", "poor")
ImprovementVerdict = Literal["yes", "no", "mixed", "unknown"]
IMPROVEMENT_VERDICTS: tuple[str, ...] = ("yes", "no", "mixed", "unknown")
NotebookCategory = Literal[
    "hypothesis",
    "observation",
    "methodology",
    "failure-analysis",
    "insight",
    "takeaway",
    "future-direction",
]
NOTEBOOK_CATEGORIES: tuple[str, ...] = (
    "hypothesis",
    "observation",
    "methodology",
    "failure-analysis",
    "insight",
    "takeaway",
    "future-direction",
)

_ID_LOCK = threading.Lock()
_last_issued_id = 0


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_record_id() -> str:
    """Return a timestamp-derived id that sorts by creation and never repeats."""
    global _last_issued_id
    with _ID_LOCK:
        candidate = time.time_ns() // 1000
        if candidate <= _last_issued_id:
            candidate = _last_issued_id + 1
        _last_issued_id = candidate
    return str(candidate)


@dataclass(frozen=True)
class BlockState:
    """Editing state for one prompt block."""

    id: str
    content: str = ""
    is_collapsed: bool = True


@dataclass(frozen=True)
class RunParameters:
    """Generation parameters for one run."""

    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    def __post_init__(self) -> None:
        model = str(self.model or "").strip()
        if not model:
            raise ValueError("Model must be a non-empty identifier.")
        temperature = float(self.temperature)
        if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
            raise ValueError(
                f"Temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}, got {temperature}."
            )
        max_tokens = int(self.max_tokens)
        if max_tokens != float(self.max_tokens):
            raise ValueError(f"Max tokens must be a whole number, got {self.max_tokens!r}.")
        if not MIN_MAX_TOKENS <= max_tokens <= MAX_MAX_TOKENS:
            raise ValueError(
                f"Max tokens must be between {MIN_MAX_TOKENS} and {MAX_MAX_TOKENS}, got {max_tokens}."
            )
        # Normalize numeric types coming from UI widgets and JSON payloads.
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "temperature", temperature)
        object.__setattr__(self, "max_tokens", max_tokens)


@dataclass(frozen=True)
class AttachedFile:
    """A file attached to a run; identity for diffing is (name, size)."""

    name: str
    size: int
    content: str = ""

    @property
    def signature(self) -> str:
        return f"{self.name}:{self.size}"


@dataclass(frozen=True)
class RunEvaluation:
    """User assessment of one run output."""

    rating: int
    quality: EvaluationQuality = "good"
    feedback: str = ""
    tags: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not 1 <= int(self.rating) <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}.")
        if self.quality not in EVALUATION_QUALITIES:
            raise ValueError(f"Unsupported evaluation quality: {self.quality}")
        object.__setattr__(self, "rating", int(self.rating))
        object.__setattr__(self, "tags", tuple(str(tag).strip() for tag in self.tags if str(tag).strip()))


@dataclass(frozen=True)
class ExperimentRun:
    """One recorded attempt at executing an assembled prompt."""

    id: str
    prompt: str
    parameters: RunParameters
    timestamp: str = field(default_factory=utc_now_iso)
    output: str = ""
    attached_files: tuple[AttachedFile, ...] = ()
    parent_run_id: str | None = None
    branch_name: str | None = None
    change_description: str | None = None
    evaluation: RunEvaluation | None = None
    # Structured blocks behind `prompt`; empty for records imported from flat text.
    blocks: tuple[BlockState, ...] = ()
    error_category: str | None = None
    notes: str = ""

    @property
    def failed(self) -> bool:
        return self.error_category is not None


@dataclass(frozen=True)
class ChangeMetadata:
    """What a derived version changed, why, and whether it helped."""

    what_changed: str = ""
    why_changed: str = ""
    did_it_improve: ImprovementVerdict = "unknown"
    keep_this_version: bool = True
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if self.did_it_improve not in IMPROVEMENT_VERDICTS:
            raise ValueError(f"Unsupported improvement verdict: {self.did_it_improve}")
        object.__setattr__(self, "what_changed", str(self.what_changed or "").strip())
        object.__setattr__(self, "why_changed", str(self.why_changed or "").strip())
        object.__setattr__(self, "keep_this_version", bool(self.keep_this_version))


@dataclass(frozen=True)
class ComparisonNote:
    """A saved side-by-side reading of two runs."""

    first_run_id: str
    second_run_id: str
    differences: tuple[str, ...] = ()
    similarity_score: int = 0
    key_insights: tuple[str, ...] = ()
    notes: str = ""

    def __post_init__(self) -> None:
        score = int(self.similarity_score)
        if not 0 <= score <= 100:
            raise ValueError(f"Similarity score must be between 0 and 100, got {self.similarity_score}.")
        object.__setattr__(self, "similarity_score", score)
        object.__setattr__(self, "differences", tuple(str(item) for item in self.differences))
        object.__setattr__(self, "key_insights", tuple(str(item) for item in self.key_insights))

    def covers(self, first_run_id: str, second_run_id: str) -> bool:
        return {self.first_run_id, self.second_run_id} == {first_run_id, second_run_id}


@dataclass(frozen=True)
class ExperimentAnalysis:
    run_comparisons: tuple[ComparisonNote, ...] = ()
    key_findings: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class Experiment:
    """Aggregate of runs sharing one hypothesis."""

    id: str
    title: str
    timestamp: str = field(default_factory=utc_now_iso)
    hypothesis: str = ""
    objective: str = ""
    runs: tuple[ExperimentRun, ...] = ()
    version: str = "v1"
    parent_version: str | None = None
    block_content: dict[str, str] | None = None
    notes: str = ""
    child_versions_issued: int = 0
    description: str = ""
    change_metadata: ChangeMetadata | None = None
    analysis: ExperimentAnalysis | None = None

    @property
    def latest_run(self) -> ExperimentRun | None:
        return self.runs[-1] if self.runs else None


@dataclass(frozen=True)
class LabNotebookEntry:
    """A note kept across experiments, such as the summary written on finishing one."""

    id: str
    title: str
    content: str = ""
    category: NotebookCategory = "observation"
    tags: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now_iso)
    starred: bool = False
    related_experiments: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not str(self.title or "").strip():
            raise ValueError("Notebook entries need a title.")
        if self.category not in NOTEBOOK_CATEGORIES:
            raise ValueError(f"Unsupported notebook category: {self.category}")
        object.__setattr__(self, "title", str(self.title).strip())
        object.__setattr__(self, "tags", tuple(dict.fromkeys(str(tag).strip() for tag in self.tags if str(tag).strip())))
        object.__setattr__(self, "related_experiments", tuple(str(item) for item in self.related_experiments))
