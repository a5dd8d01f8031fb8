"""Runtime configuration loading from environment and optional .env file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from prompt_lab.models import DEFAULT_MODEL_CHOICES

REQUIRED_ENV_VARS = ("OPENAI_API_KEY",)
DEFAULT_RUN_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_DATA_FILE = "data/experiments.json"
DEFAULT_NOTEBOOK_FILE = "data/notebook.json"


class ConfigError(Exception):
    """Configuration loading error with user-facing message text."""


@dataclass(frozen=True)
class AppConfig:
    """Application config contract for model, API, and storage settings."""

    openai_api_key: str
    models: tuple[str, ...] = DEFAULT_MODEL_CHOICES
    default_model: str = DEFAULT_MODEL_CHOICES[0]
    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    data_file: Path = Path(DEFAULT_DATA_FILE)
    notebook_file: Path = Path(DEFAULT_NOTEBOOK_FILE)

    def __repr__(self) -> str:
        return (
            "AppConfig("
            "openai_api_key='***REDACTED***', "
            f"models={self.models!r}, "
            f"default_model={self.default_model!r}, "
            f"run_timeout_seconds={self.run_timeout_seconds!r}, "
            f"max_retries={self.max_retries!r}, "
            f"data_file={str(self.data_file)!r}, "
            f"notebook_file={str(self.notebook_file)!r})"
        )


def _parse_env_line(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None

    key, raw_value = stripped.split("=", 1)
    key = key.strip()
    value = raw_value.strip()
    if not key:
        return None

    if value and value[0] == value[-1] and value[0] in {'"', "'"}:
        value = value[1:-1]
    return key, value


def _load_dotenv(dotenv_path: Path) -> None:
    if not dotenv_path.exists():
        return

    for line in dotenv_path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(line)
        if parsed is None:
            continue
        key, value = parsed
        os.environ.setdefault(key, value)


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if value:
        return value
    raise KeyError(name)


def _optional_env(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _optional_float_env(name: str, default: float) -> float:
    value = _optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ConfigError(
            f"Configuration error: {name} must be a valid float, got {value!r}."
        ) from exc
    if parsed <= 0:
        raise ConfigError(f"Configuration error: {name} must be greater than 0, got {value!r}.")
    return parsed


def _optional_int_env(name: str, default: int) -> int:
    value = _optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigError(
            f"Configuration error: {name} must be a valid integer, got {value!r}."
        ) from exc
    if parsed < 0:
        raise ConfigError(f"Configuration error: {name} must not be negative, got {value!r}.")
    return parsed


def _model_list_env(name: str) -> tuple[str, ...]:
    value = _optional_env(name)
    if value is None:
        return DEFAULT_MODEL_CHOICES
    models = tuple(dict.fromkeys(item.strip() for item in value.split(",") if item.strip()))
    if not models:
        raise ConfigError(f"Configuration error: {name} must list at least one model.")
    return models


def get_config() -> AppConfig:
    """Load config from environment variables and `.env` in repo root."""
    _load_dotenv(Path(".env"))

    missing: list[str] = []
    values: dict[str, str] = {}
    for var_name in REQUIRED_ENV_VARS:
        try:
            values[var_name] = _require_env(var_name)
        except KeyError:
            missing.append(var_name)

    if missing:
        missing_text = ", ".join(missing)
        raise ConfigError(
            "Configuration error: missing required environment variables: "
            f"{missing_text}. Set them in your shell or in `.env`."
        )

    models = _model_list_env("LLM_MODELS")
    default_model = _optional_env("DEFAULT_LLM_MODEL") or models[0]
    if default_model not in models:
        raise ConfigError(
            f"Configuration error: DEFAULT_LLM_MODEL={default_model!r} is not one of LLM_MODELS "
            f"({', '.join(models)})."
        )

    return AppConfig(
        openai_api_key=values["OPENAI_API_KEY"],
        models=models,
        default_model=default_model,
        run_timeout_seconds=_optional_float_env("RUN_TIMEOUT_SECONDS", DEFAULT_RUN_TIMEOUT_SECONDS),
        max_retries=_optional_int_env("LLM_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        data_file=Path(_optional_env("PROMPT_LAB_DATA_FILE") or DEFAULT_DATA_FILE).expanduser(),
        notebook_file=Path(_optional_env("PROMPT_LAB_NOTEBOOK_FILE") or DEFAULT_NOTEBOOK_FILE).expanduser(),
    )
