from __future__ import annotations

import json
import sys

import pytest

from emotion_engine import __main__ as cli
from emotion_engine.evaluation.testing import oracle_json
from emotion_engine.infrastructure.llm import client as client_module


class StubResponse:
    def __init__(self, status_code: int, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self):
        return self._payload


def ok_reply(**scores) -> StubResponse:
    return StubResponse(200, {
        "model": "moonshotai/kimi-k2.5",
        "choices": [{"message": {"role": "assistant", "content": oracle_json(**scores)}}],
        "usage": {"prompt_tokens": 1000, "completion_tokens": 200, "total_tokens": 1200},
    })


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """A run directory holding a one-frame manifest, with the API key set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.delenv("EMOTION_ENGINE_MODEL", raising=False)
    (tmp_path / "f0.jpg").write_bytes(b"frame-0")
    (tmp_path / "manifest.json").write_text(json.dumps({"stimuli": [{"timestamp_ms": 0, "path": "f0.jpg"}]}))
    return tmp_path


def stub_post(monkeypatch, responses):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append(json)
        return responses.pop(0)

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    return calls


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["emotion-engine", *args])
    cli.main()


def test_completed_run_writes_report(workspace, monkeypatch, capsys) -> None:
    calls = stub_post(monkeypatch, [ok_reply(boredom=3, excitement=7)])

    run_cli(monkeypatch, "manifest.json", "--output=report.json", "--lenses=boredom,excitement,clarity")

    report = json.loads((workspace / "report.json").read_text())
    assert report["summary"]["status"] == "completed"
    assert report["summary"]["incomplete"] is False
    assert isinstance(report["frictionIndex"], int)
    assert {"boredom", "excitement", "clarity"} <= {p["axis"] for p in report["radarData"]}
    assert len(report["timeline"]) == 1
    assert len(calls) == 1
    assert calls[0]["messages"][0]["role"] == "system"
    assert "The Impatient Teenager" in capsys.readouterr().out
    assert (workspace / "_runs" / "evaluation.log").exists()


def test_missing_api_key_exits_with_configuration_error(workspace, monkeypatch, capsys) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY")
    calls = stub_post(monkeypatch, [])

    with pytest.raises(SystemExit) as excinfo:
        run_cli(monkeypatch, "manifest.json")

    assert excinfo.value.code == 1
    assert "OPENROUTER_API_KEY" in capsys.readouterr().out
    assert calls == []


@pytest.mark.parametrize("args", [
    ["manifest.json", "--lenses=boredom,sarcasm"],
    ["manifest.json", "--model=not-a-model"],
    ["manifest.json", "--persona=unknown-persona"],
    ["missing.json"],
])
def test_bad_arguments_exit_before_any_call(workspace, monkeypatch, args) -> None:
    calls = stub_post(monkeypatch, [])

    with pytest.raises(SystemExit) as excinfo:
        run_cli(monkeypatch, *args)

    assert excinfo.value.code == 1
    assert calls == []


def test_usage_without_manifest(monkeypatch, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(monkeypatch)
    assert excinfo.value.code == 1
    assert "Usage:" in capsys.readouterr().out

    with pytest.raises(SystemExit) as excinfo:
        run_cli(monkeypatch, "--help")
    assert excinfo.value.code == 0


def test_rejected_key_aborts_with_status_two(workspace, monkeypatch) -> None:
    stub_post(monkeypatch, [StubResponse(401, {"error": {"message": "Invalid API key"}})])

    with pytest.raises(SystemExit) as excinfo:
        run_cli(monkeypatch, "manifest.json", "--output=report.json")

    assert excinfo.value.code == 2
    report = json.loads((workspace / "report.json").read_text())
    assert report["summary"]["status"] == "aborted"
    assert report["summary"]["incomplete"] is True
    assert "Invalid API key" in report["summary"]["abortReason"]
    assert report["timeline"] == []


def test_persona_file_and_json_mode(workspace, monkeypatch) -> None:
    (workspace / "persona.json").write_text(json.dumps({
        "id": "skeptical-cfo",
        "display_name": "The Skeptical CFO",
        "description": "Wants numbers, not adjectives.",
        "base_prompt": "You are a chief financial officer reviewing a vendor pitch.",
    }))
    calls = stub_post(monkeypatch, [ok_reply()])

    run_cli(monkeypatch, "manifest.json", "--persona-file=persona.json", "--json-mode",
            "--model=gpt-4o", "--output=report.json")

    body = calls[0]
    assert body["model"] == "openai/gpt-4o"
    assert body["response_format"] == {"type": "json_object"}
    assert "The Skeptical CFO" in body["messages"][0]["content"]
    report = json.loads((workspace / "report.json").read_text())
    assert report["summary"]["personaId"] == "skeptical-cfo"
    assert report["summary"]["model"] == "gpt-4o"
