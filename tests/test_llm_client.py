"""Error normalization tests for the generation adapter."""

from __future__ import annotations

import pytest

from prompt_lab.config import AppConfig
from prompt_lab.llm_client import ERROR_CATEGORIES, LLMClient, LLMError, classify_error_message, describe_error


@pytest.mark.parametrize(
    ("message", "category"),
    [
        ("Error 503: The model is overloaded", "overloaded"),
        ("429 Too Many Requests", "rate_limited"),
        ("You hit the rate limit for this org", "rate_limited"),
        ("Incorrect API key provided", "auth"),
        ("403 Forbidden", "auth"),
        ("The model `gpt-9` does not exist or was not found", "model_not_found"),
        ("This model is not supported for chat", "model_not_found"),
        ("Request timed out.", "timeout"),
        ("Something odd happened", "unknown"),
        ("", "unknown"),
    ],
)
def test_classify_error_message(message: str, category: str) -> None:
    assert classify_error_message(message) == category


def test_every_category_has_description_and_suggestions() -> None:
    for category in ERROR_CATEGORIES:
        text, suggestions = describe_error(category)
        assert text
        assert suggestions


def test_describe_unknown_category_falls_back() -> None:
    assert describe_error("martian") == describe_error("unknown")


def test_llm_error_carries_category() -> None:
    error = LLMError("slow down", "rate_limited")

    assert error.message == "slow down"
    assert error.category == "rate_limited"
    assert str(error) == "slow down"


def test_client_takes_limits_from_config() -> None:
    config = AppConfig(openai_api_key="key", run_timeout_seconds=12.0, max_retries=4)

    client = LLMClient(config)
    overridden = LLMClient(config, timeout_seconds=3.0, max_retries=-1)

    assert client.timeout_seconds == 12.0
    assert client.max_retries == 4
    assert overridden.timeout_seconds == 3.0
    assert overridden.max_retries == 0
