from __future__ import annotations

import pytest

from emotion_engine.config import ConfigurationError
from emotion_engine.evaluation.engine import PromptBuilder
from emotion_engine.evaluation.models import MediaPayload, Stimulus
from emotion_engine.evaluation.orchestrator import PersonaEvaluationOrchestrator
from emotion_engine.evaluation.schemas import RunStatus, ScrollIntent
from emotion_engine.evaluation.testing import (
    MockEvaluationClient,
    create_test_persona,
    create_test_stimuli,
    oracle_json,
)
from emotion_engine.infrastructure.llm import AuthError, ExhaustedRetries, TransientError
from emotion_engine.infrastructure.llm import client as client_module


def make_orchestrator(replies, **kwargs):
    client = MockEvaluationClient(replies)
    sleeps = []
    orchestrator = PersonaEvaluationOrchestrator(
        persona=create_test_persona(), client=client, sleep=sleeps.append, **kwargs
    )
    return orchestrator, client, sleeps


def test_impatient_viewer_leaves_early() -> None:
    orchestrator, client, _ = make_orchestrator([
        oracle_json(boredom=7, excitement=3, scroll_intent="maybe", attention=3),
        oracle_json(boredom=9, excitement=2, scroll_intent="yes", attention=0, thought="Bye."),
    ])

    run = orchestrator.run(create_test_stimuli((0, 2000, 4000, 6000)))

    assert run.status == RunStatus.ABANDONED
    assert len(run.states) == 2
    assert client.call_count == 2
    assert run.stimulus_count == 4
    assert run.abandonment_state.timestamp_ms == 2000
    assert run.abandonment_state.narrative_thought == "Bye."
    assert run.states[-1].has_left


def test_full_run_completes_with_continuity() -> None:
    orchestrator, client, sleeps = make_orchestrator(
        [oracle_json(boredom=3), oracle_json(boredom=6, excitement=4), oracle_json(boredom=6, excitement=4)],
        inter_stimulus_delay=0.2,
    )

    run = orchestrator.run(create_test_stimuli((0, 3000, 6000)))

    assert run.status == RunStatus.COMPLETED
    assert [s.stimulus_index for s in run.states] == [0, 1, 2]
    assert [s.timestamp_ms for s in run.states] == [0, 3000, 6000]
    assert run.states[0].state_change == "initial"
    assert run.states[1].state_change == "more bored (+3 boredom), less excited (-2 excitement)"
    assert run.states[2].state_change == "stable"
    assert run.states[2].cumulative_boredom == 15
    assert run.total_tokens == 300
    assert run.total_cost == pytest.approx(0.003)
    assert sleeps == [0.2, 0.2]

    # The opening prompt carries no history, later ones do
    assert "OPENING FRAME" in client.request_history[0]["prompt"]
    assert "Your emotional state from 0.0 seconds in" in client.request_history[1]["prompt"]
    assert client.request_history[0]["payload"] is not None


def test_auth_failure_on_first_stimulus_aborts_with_empty_trajectory() -> None:
    orchestrator, client, _ = make_orchestrator([AuthError("Invalid API key")])

    run = orchestrator.run(create_test_stimuli())

    assert run.status == RunStatus.ABORTED
    assert run.states == ()
    assert run.is_incomplete
    assert "Invalid API key" in run.abort_reason
    assert client.call_count == 1


def test_auth_failure_mid_run_keeps_collected_states() -> None:
    orchestrator, client, _ = make_orchestrator([oracle_json(), AuthError("Key revoked")])

    run = orchestrator.run(create_test_stimuli((0, 1000, 2000)))

    assert run.status == RunStatus.ABORTED
    assert len(run.states) == 1
    assert client.call_count == 2


def test_failed_step_is_recorded_without_poisoning_context() -> None:
    orchestrator, client, _ = make_orchestrator([
        oracle_json(boredom=4, thought="Okay so far."),
        ExhaustedRetries(TransientError("Request timeout"), 2),
        oracle_json(boredom=6),
    ])

    run = orchestrator.run(create_test_stimuli((0, 3000, 6000)))

    assert run.status == RunStatus.COMPLETED
    assert len(run.states) == 3
    failed = run.states[1]
    assert failed.failed
    assert failed.degraded
    assert failed.error == "Request timeout"
    assert set(failed.scores.values()) == {5.0}
    assert failed.scroll_intent == ScrollIntent.NO
    assert run.failed_count == 1
    assert run.evaluated_count == 2

    third_prompt = client.request_history[2]["prompt"]
    assert "Your emotional state from 0.0 seconds in" in third_prompt
    assert '"Okay so far."' in third_prompt
    assert "(6.0s since last frame)" in third_prompt


def test_unparseable_reply_becomes_neutral_state() -> None:
    orchestrator, client, _ = make_orchestrator([oracle_json(boredom=2), "no comment", oracle_json(boredom=3)])

    run = orchestrator.run(create_test_stimuli((0, 1000, 2000)))

    assert run.states[1].parse_method == "neutral"
    assert not run.states[1].failed
    assert run.states[1].degraded
    assert "Your emotional state from 0.0 seconds in" in client.request_history[2]["prompt"]


def test_invalid_queue_fails_before_any_call() -> None:
    orchestrator, client, _ = make_orchestrator([])
    payload = MediaPayload(kind="image", data="QUJD")

    with pytest.raises(ConfigurationError):
        orchestrator.run([])
    with pytest.raises(ConfigurationError):
        orchestrator.run([Stimulus(0, 5000, payload), Stimulus(1, 1000, payload)])
    with pytest.raises(ConfigurationError):
        orchestrator.run([Stimulus(1, 0, payload)])
    with pytest.raises(ConfigurationError):
        orchestrator.run([Stimulus(0, -1, payload)])
    assert client.call_count == 0


def test_oversized_queue_is_rejected() -> None:
    orchestrator, client, _ = make_orchestrator([], max_stimuli=2)

    with pytest.raises(ConfigurationError, match="Too many stimuli"):
        orchestrator.run(create_test_stimuli((0, 1000, 2000)))
    assert client.call_count == 0


def test_constructor_requires_client_or_key() -> None:
    with pytest.raises(ConfigurationError):
        PersonaEvaluationOrchestrator(persona=create_test_persona())
    with pytest.raises(ConfigurationError):
        PersonaEvaluationOrchestrator(persona=create_test_persona(), client=MockEvaluationClient([]), lenses=())


def test_run_with_report_and_metrics() -> None:
    orchestrator, _, _ = make_orchestrator([
        oracle_json(boredom=9, excitement=2, patience=2),
        ExhaustedRetries(TransientError("boom"), 2),
    ])

    run, report = orchestrator.run_with_report(create_test_stimuli((0, 2000)))

    assert report.summary.status == RunStatus.COMPLETED
    assert report.summary.failed_count == 1
    assert len(report.timeline) == 2
    assert report.timeline[1].failed
    assert report.recommendations[0].issue == "Early Abandonment Risk"

    metrics = orchestrator.get_metrics()
    assert metrics["runs_started"] == 1
    assert metrics["runs_completed"] == 1
    assert metrics["stimuli_evaluated"] == 1
    assert metrics["stimuli_failed"] == 1
    orchestrator.reset_metrics()
    assert orchestrator.get_metrics()["runs_started"] == 0


def test_impatient_teenager_scenario_report_covers_only_evaluated_states() -> None:
    orchestrator, client, _ = make_orchestrator([
        oracle_json(boredom=2, excitement=7),
        oracle_json(boredom=9, scroll_intent="yes", attention=0),
    ])

    run, report = orchestrator.run_with_report(create_test_stimuli((0, 3000, 6000)))

    assert len(run.states) == 2
    assert client.call_count == 2
    assert run.status == RunStatus.ABANDONED
    # per-state friction 3.0 and 4.375
    assert report.friction_index == 37
    assert report.summary.abandonment_timestamp_ms == 3000


def test_persona_context_travels_as_system_message() -> None:
    orchestrator, client, _ = make_orchestrator([oracle_json(), oracle_json()])
    persona = create_test_persona()

    orchestrator.run(create_test_stimuli((0, 1000)))

    expected = PromptBuilder().system_prompt(persona)
    assert [call["system_prompt"] for call in client.request_history] == [expected, expected]
    assert persona.base_prompt in expected
    assert persona.base_prompt not in client.request_history[0]["prompt"]
    assert "Stay in character as The Impatient Teenager" in client.request_history[1]["prompt"]


class StubResponse:
    def __init__(self, status_code: int, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self):
        return self._payload


def stub_post(monkeypatch, responses):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append(json)
        return responses.pop(0)

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    return calls


def reply_with_usage(usage) -> StubResponse:
    return StubResponse(200, {
        "model": "moonshotai/kimi-k2.5",
        "choices": [{"message": {"role": "assistant", "content": oracle_json()}}],
        "usage": usage,
    })


def test_malformed_usage_does_not_break_the_run(monkeypatch) -> None:
    stub_post(monkeypatch, [reply_with_usage("n/a"), reply_with_usage({"total_tokens": "unknown"})])
    orchestrator = PersonaEvaluationOrchestrator(
        persona=create_test_persona(), api_key="sk-test", sleep=lambda _: None
    )

    run = orchestrator.run(create_test_stimuli((0, 1000)))

    assert run.status == RunStatus.COMPLETED
    assert run.evaluated_count == 2
    assert run.total_tokens == 0


def test_backoff_bases_reach_the_http_client(monkeypatch) -> None:
    stub_post(monkeypatch, [
        StubResponse(429, {"error": {"message": "slow down"}}),
        StubResponse(500, {"error": {"message": "upstream"}}),
        reply_with_usage({"total_tokens": 10}),
    ])
    sleeps = []
    orchestrator = PersonaEvaluationOrchestrator(
        persona=create_test_persona(), api_key="sk-test", max_retries=3,
        rate_limit_base_delay=0.3, retry_base_delay=0.1, sleep=sleeps.append,
    )

    run = orchestrator.run(create_test_stimuli((0,)))

    assert run.status == RunStatus.COMPLETED
    assert orchestrator.client.rate_limit_base_delay == 0.3
    assert orchestrator.client.retry_base_delay == 0.1
    assert sleeps == [pytest.approx(0.3), pytest.approx(0.2)]
