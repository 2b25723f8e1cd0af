from __future__ import annotations

import pytest
import requests

from emotion_engine.config import ConfigurationError
from emotion_engine.evaluation.models import MediaPayload
from emotion_engine.infrastructure.llm import client as client_module
from emotion_engine.infrastructure.llm import (
    AuthError,
    ExhaustedRetries,
    OpenRouterClient,
    RateLimited,
    TransientError,
    classify_error,
)


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def ok_payload(content: str = '{"boredom": 4}', usage=None) -> dict:
    return {
        "model": "moonshotai/kimi-k2.5",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": usage if usage is not None else {"prompt_tokens": 1000, "completion_tokens": 500, "total_tokens": 1500},
    }


def scripted_post(monkeypatch, outcomes):
    """Replace requests.post with a function replaying responses or raising exceptions."""
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    return calls


def make_client(max_retries: int = 2, **kwargs):
    sleeps = []
    oracle = OpenRouterClient(api_key="sk-test", max_retries=max_retries, sleep=sleeps.append, **kwargs)
    return oracle, sleeps


def test_successful_call_reports_tokens_and_cost(monkeypatch) -> None:
    calls = scripted_post(monkeypatch, [FakeResponse(200, ok_payload())])
    oracle, sleeps = make_client()

    response = oracle.evaluate("rate this", MediaPayload(kind="image", data="QUJD", format="png"))

    assert response.raw_text == '{"boredom": 4}'
    assert response.tokens_used == 1500
    assert response.cost_units == pytest.approx(1000 / 1e6 * 0.5 + 500 / 1e6 * 2.0)
    assert sleeps == []

    body = calls[0]["json"]
    assert calls[0]["url"].endswith("/chat/completions")
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-test"
    assert body["model"] == "moonshotai/kimi-k2.5"
    content = body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "rate this"}
    assert content[1]["image_url"]["url"] == "data:image/png;base64,QUJD"
    assert "response_format" not in body


def test_total_tokens_only_priced_at_prompt_rate(monkeypatch) -> None:
    scripted_post(monkeypatch, [FakeResponse(200, ok_payload(usage={"total_tokens": 2000}))])
    oracle, _ = make_client()

    response = oracle.evaluate("rate this")

    assert response.tokens_used == 2000
    assert response.cost_units == pytest.approx(2000 / 1e6 * 0.5)


def test_json_mode_and_audio_payload(monkeypatch) -> None:
    calls = scripted_post(monkeypatch, [FakeResponse(200, ok_payload())])
    oracle, _ = make_client(use_json_mode=True)

    oracle.evaluate("listen", MediaPayload(kind="audio", data="UklGRg==", format="wav"))

    body = calls[0]["json"]
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["content"][1] == {
        "type": "input_audio", "input_audio": {"data": "UklGRg==", "format": "wav"}
    }


def test_auth_failure_is_not_retried(monkeypatch) -> None:
    calls = scripted_post(monkeypatch, [FakeResponse(401, {"error": {"message": "Invalid API key"}})])
    oracle, sleeps = make_client(max_retries=3)

    with pytest.raises(AuthError, match="Invalid API key"):
        oracle.evaluate("rate this")

    assert len(calls) == 1
    assert sleeps == []


def test_rate_limit_backs_off_linearly_then_gives_up(monkeypatch) -> None:
    limited = lambda: FakeResponse(429, {"error": {"message": "slow down"}})
    calls = scripted_post(monkeypatch, [limited(), limited(), limited()])
    oracle, sleeps = make_client(max_retries=3)

    with pytest.raises(ExhaustedRetries) as excinfo:
        oracle.evaluate("rate this")

    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]
    assert isinstance(excinfo.value.last_error, RateLimited)
    assert excinfo.value.attempts == 3


def test_timeout_is_retried_and_can_recover(monkeypatch) -> None:
    scripted_post(monkeypatch, [requests.Timeout("read timed out"), FakeResponse(200, ok_payload())])
    oracle, sleeps = make_client(max_retries=2)

    response = oracle.evaluate("rate this")

    assert response.raw_text == '{"boredom": 4}'
    assert sleeps == [1.0]


def test_error_envelope_with_ok_status_is_classified(monkeypatch) -> None:
    scripted_post(monkeypatch, [FakeResponse(200, {"error": {"code": 403, "message": "Key disabled"}})])
    oracle, _ = make_client()

    with pytest.raises(AuthError):
        oracle.evaluate("rate this")


def test_malformed_body_is_transient(monkeypatch) -> None:
    scripted_post(monkeypatch, [FakeResponse(200, {"choices": []}), FakeResponse(502, None, text="Bad gateway")])
    oracle, sleeps = make_client(max_retries=2)

    with pytest.raises(ExhaustedRetries) as excinfo:
        oracle.evaluate("rate this")

    assert isinstance(excinfo.value.last_error, TransientError)
    assert "502" in str(excinfo.value.last_error)
    assert sleeps == [1.0]


def test_classify_error() -> None:
    assert isinstance(classify_error(401, "x"), AuthError)
    assert isinstance(classify_error(403, "x"), AuthError)
    assert isinstance(classify_error(429, "x"), RateLimited)
    assert isinstance(classify_error(500, "x"), TransientError)
    assert isinstance(classify_error(None, "x"), TransientError)


def test_client_requires_key_and_attempts() -> None:
    with pytest.raises(ConfigurationError):
        OpenRouterClient(api_key="")
    with pytest.raises(ConfigurationError):
        OpenRouterClient(api_key="sk-test", max_retries=0)


@pytest.mark.parametrize("usage", ["n/a", [1, 2], {"total_tokens": "unknown"}, {"prompt_tokens": None, "completion_tokens": True}])
def test_malformed_usage_keeps_reply_and_counts_nothing(monkeypatch, usage) -> None:
    payload = ok_payload()
    payload["usage"] = usage
    scripted_post(monkeypatch, [FakeResponse(200, payload)])
    oracle, sleeps = make_client()

    response = oracle.evaluate("rate this")

    assert response.raw_text == '{"boredom": 4}'
    assert response.tokens_used == 0
    assert response.cost_units == 0
    assert sleeps == []


def test_partially_valid_usage_uses_usable_counts(monkeypatch) -> None:
    scripted_post(monkeypatch, [FakeResponse(200, ok_payload(usage={"prompt_tokens": "800", "completion_tokens": "lots"}))])
    oracle, _ = make_client()

    response = oracle.evaluate("rate this")

    assert response.tokens_used == 800
    assert response.cost_units == pytest.approx(800 / 1e6 * 0.5)


def test_system_prompt_is_sent_as_separate_message(monkeypatch) -> None:
    calls = scripted_post(monkeypatch, [FakeResponse(200, ok_payload())])
    oracle, _ = make_client()

    oracle.evaluate("rate this", MediaPayload(kind="image", data="QUJD"), system_prompt="You are role-playing.")

    messages = calls[0]["json"]["messages"]
    assert messages[0] == {"role": "system", "content": "You are role-playing."}
    assert messages[1]["role"] == "user"
    assert messages[1]["content"][0] == {"type": "text", "text": "rate this"}
    assert len(messages) == 2


def test_custom_backoff_bases(monkeypatch) -> None:
    scripted_post(monkeypatch, [
        FakeResponse(429, {"error": {"message": "slow down"}}),
        requests.ConnectionError("reset"),
        FakeResponse(200, ok_payload()),
    ])
    oracle, sleeps = make_client(max_retries=3, rate_limit_base_delay=0.5, retry_base_delay=0.25)

    oracle.evaluate("rate this")

    assert sleeps == [0.5, 0.5]
