"""Generation adapter: OpenAI chat completions with normalized errors."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Literal

from prompt_lab.config import AppConfig

ErrorCategory = Literal["rate_limited", "overloaded", "auth", "model_not_found", "timeout", "unknown"]
ERROR_CATEGORIES: tuple[str, ...] = ("rate_limited", "overloaded", "auth", "model_not_found", "timeout", "unknown")

LOGGER = logging.getLogger("prompt_lab.llm_client")
if not LOGGER.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    LOGGER.addHandler(handler)
LOGGER.setLevel(logging.INFO)
LOGGER.propagate = False

_ERROR_DESCRIPTIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "overloaded": (
        "The model is currently overloaded. This is temporary and usually resolves shortly.",
        ("Wait a few minutes and try again", "Try a different model"),
    ),
    "rate_limited": (
        "Rate limit reached. Please wait a moment before trying again.",
        ("Wait a few minutes before trying again", "Reduce the frequency of your requests"),
    ),
    "auth": (
        "Authentication failed. Check OPENAI_API_KEY and model access.",
        ("Check that your API key is correct", "Make sure the key has access to the selected model"),
    ),
    "model_not_found": (
        "The requested model is not available for this API key.",
        ("Pick another model from the model list", "Check the LLM_MODELS setting"),
    ),
    "timeout": (
        "The model did not respond in time.",
        ("Try again", "Lower the max tokens setting"),
    ),
    "unknown": (
        "An unexpected error occurred. Please try again.",
        ("Check your internet connection", "Try again in a few moments"),
    ),
}


@dataclass(frozen=True)
class LLMResponse:
    """Normalized response contract for generation calls."""

    text: str
    model_used: str
    request_id: str | None = None
    usage_input_tokens: int | None = None
    usage_output_tokens: int | None = None


class LLMError(Exception):
    """Normalized error carrying a user-readable message and category."""

    def __init__(self, message: str, category: ErrorCategory) -> None:
        super().__init__(message)
        self.message = message
        self.category = category


def classify_error_message(message: str) -> ErrorCategory:
    """Map a free-form provider error message to an error category."""
    text = str(message or "").lower()
    if "503" in text or "overloaded" in text:
        return "overloaded"
    if "429" in text or "rate limit" in text:
        return "rate_limited"
    if "401" in text or "403" in text or "api key" in text:
        return "auth"
    if "404" in text or "not found" in text or "not supported" in text:
        return "model_not_found"
    if "timed out" in text or "timeout" in text:
        return "timeout"
    return "unknown"


def describe_error(category: str) -> tuple[str, tuple[str, ...]]:
    """Return an explanation and suggestions for an error category."""
    return _ERROR_DESCRIPTIONS.get(category, _ERROR_DESCRIPTIONS["unknown"])


class LLMClient:
    """Executes one prompt against one model; retries transient failures."""

    def __init__(self, config: AppConfig, timeout_seconds: float | None = None, max_retries: int | None = None) -> None:
        self.config = config
        self.timeout_seconds = config.run_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.max_retries = max(0, config.max_retries if max_retries is None else max_retries)

    def _log_request(
        self,
        *,
        model: str,
        prompt: str,
        outcome: Literal["success", "error"],
        error_category: str | None,
        attempt: int,
    ) -> None:
        LOGGER.info(
            "llm_request model=%s prompt_chars=%d attempt=%d outcome=%s error_category=%s",
            model,
            len(prompt),
            attempt + 1,
            outcome,
            error_category or "none",
        )

    @staticmethod
    def _extract_token_count(usage: object, primary_key: str, fallback_key: str) -> int | None:
        if usage is None:
            return None
        value = getattr(usage, primary_key, None)
        if value is None:
            value = getattr(usage, fallback_key, None)
        return value if isinstance(value, int) else None

    @staticmethod
    def _compact_error_message(error: BaseException, *, max_chars: int = 320) -> str:
        compact = " ".join(str(error).split())
        if len(compact) <= max_chars:
            return compact
        return f"{compact[: max_chars - 3]}..."

    def _backoff(self, attempt: int) -> None:
        time.sleep(0.4 * (attempt + 1))

    def generate_text(
        self,
        *,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        """Generate text with OpenAI and return normalized response data."""
        try:
            from openai import (
                APIConnectionError,
                APIStatusError,
                APITimeoutError,
                AuthenticationError,
                BadRequestError,
                NotFoundError,
                OpenAI,
                PermissionDeniedError,
                RateLimitError,
            )
        except ModuleNotFoundError as exc:
            raise LLMError(
                "OpenAI client dependency is missing. Install project requirements.",
                "unknown",
            ) from exc

        client = OpenAI(api_key=self.config.openai_api_key, timeout=self.timeout_seconds)
        messages = [{"role": "user", "content": prompt}]

        for attempt in range(self.max_retries + 1):
            try:
                token_field = "max_completion_tokens"
                include_temperature = True
                completion = None
                for _ in range(3):
                    request: dict[str, object] = {"model": model, "messages": messages}
                    if include_temperature:
                        request["temperature"] = temperature
                    request[token_field] = max_tokens
                    try:
                        completion = client.chat.completions.create(**request)
                        break
                    except BadRequestError as retry_exc:
                        message = str(retry_exc)
                        changed = False
                        if token_field == "max_completion_tokens" and "max_completion_tokens" in message:
                            token_field = "max_tokens"
                            changed = True
                        if include_temperature and "temperature" in message and "default (1)" in message:
                            include_temperature = False
                            changed = True
                        if not changed:
                            raise
                if completion is None:
                    raise LLMError("Unable to prepare a compatible OpenAI request.", "unknown")

                text = completion.choices[0].message.content or ""
                request_id_raw = getattr(completion, "id", None)
                usage = getattr(completion, "usage", None)
                self._log_request(model=model, prompt=prompt, outcome="success", error_category=None, attempt=attempt)
                return LLMResponse(
                    text=text,
                    model_used=model,
                    request_id=str(request_id_raw) if request_id_raw is not None else None,
                    usage_input_tokens=self._extract_token_count(usage, "prompt_tokens", "input_tokens"),
                    usage_output_tokens=self._extract_token_count(usage, "completion_tokens", "output_tokens"),
                )
            except (AuthenticationError, PermissionDeniedError) as exc:
                self._log_request(model=model, prompt=prompt, outcome="error", error_category="auth", attempt=attempt)
                raise LLMError(describe_error("auth")[0], "auth") from exc
            except NotFoundError as exc:
                self._log_request(
                    model=model, prompt=prompt, outcome="error", error_category="model_not_found", attempt=attempt
                )
                raise LLMError(f"Model {model!r} was not found or is not available.", "model_not_found") from exc
            except RateLimitError as exc:
                if attempt < self.max_retries:
                    self._backoff(attempt)
                    continue
                self._log_request(
                    model=model, prompt=prompt, outcome="error", error_category="rate_limited", attempt=attempt
                )
                raise LLMError(describe_error("rate_limited")[0], "rate_limited") from exc
            except APITimeoutError as exc:
                if attempt < self.max_retries:
                    self._backoff(attempt)
                    continue
                self._log_request(model=model, prompt=prompt, outcome="error", error_category="timeout", attempt=attempt)
                raise LLMError(describe_error("timeout")[0], "timeout") from exc
            except APIConnectionError as exc:
                if attempt < self.max_retries:
                    self._backoff(attempt)
                    continue
                self._log_request(model=model, prompt=prompt, outcome="error", error_category="unknown", attempt=attempt)
                raise LLMError("Network error while contacting OpenAI.", "unknown") from exc
            except APIStatusError as exc:
                status_code = getattr(exc, "status_code", None)
                detail = self._compact_error_message(exc)
                if status_code is not None and status_code >= 500:
                    if attempt < self.max_retries:
                        self._backoff(attempt)
                        continue
                    self._log_request(
                        model=model, prompt=prompt, outcome="error", error_category="overloaded", attempt=attempt
                    )
                    raise LLMError(f"OpenAI server error (status {status_code}): {detail}", "overloaded") from exc
                category = classify_error_message(f"{status_code} {detail}")
                self._log_request(model=model, prompt=prompt, outcome="error", error_category=category, attempt=attempt)
                raise LLMError(f"OpenAI API error (status {status_code}): {detail}", category) from exc
            except LLMError as exc:
                self._log_request(
                    model=model, prompt=prompt, outcome="error", error_category=exc.category, attempt=attempt
                )
                raise
            except Exception as exc:
                category = classify_error_message(str(exc))
                self._log_request(model=model, prompt=prompt, outcome="error", error_category=category, attempt=attempt)
                raise LLMError(f"Unexpected LLM request failure: {self._compact_error_message(exc)}", category) from exc

        raise LLMError("Unexpected LLM request failure.", "unknown")
