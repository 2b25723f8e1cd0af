"""
Testing infrastructure with a scripted oracle for the evaluation pipeline.
"""
import json
from typing import Dict, Any, List, Optional, Union, Iterable

from .models import MediaPayload, Stimulus, EmotionState, EvaluationRun
from .schemas import ScrollIntent, RunStatus
from ..config import Persona
from ..infrastructure.llm import OracleResponse

ScriptedReply = Union[str, OracleResponse, Exception]


class MockEvaluationClient:
    """
    Stand-in for OpenRouterClient that replays scripted replies in order.

    A string becomes the raw oracle text, an OracleResponse is returned as is,
    and an exception instance is raised (e.g. ExhaustedRetries or AuthError).
    """

    def __init__(self, replies: List[ScriptedReply], tokens_per_call: int = 100,
                 cost_per_call: float = 0.001):
        self.replies = list(replies)
        self.tokens_per_call = tokens_per_call
        self.cost_per_call = cost_per_call
        self.request_history: List[Dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.request_history)

    def evaluate(self, prompt_text: str, payload=None, system_prompt: Optional[str] = None) -> OracleResponse:
        """Return (or raise) the next scripted reply."""
        self.request_history.append({"prompt": prompt_text, "payload": payload, "system_prompt": system_prompt})

        if not self.replies:
            reply: ScriptedReply = oracle_json()
        else:
            reply = self.replies.pop(0)

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, OracleResponse):
            return reply
        return OracleResponse(
            raw_text=reply,
            tokens_used=self.tokens_per_call,
            cost_units=self.cost_per_call,
            model="mock/oracle",
        )


def oracle_json(patience: float = 6, boredom: float = 4, excitement: float = 6,
                frustration: float = 3, clarity: float = 7,
                thought: str = "Okay, keep going.", scroll_intent: str = "no",
                attention: float = 10, state_change: Optional[str] = None,
                **extra: Any) -> str:
    """Build a clean JSON oracle reply."""
    data: Dict[str, Any] = {
        "patience": patience,
        "boredom": boredom,
        "excitement": excitement,
        "frustration": frustration,
        "clarity": clarity,
        "currentThought": thought,
        "scrollIntent": scroll_intent,
        "attentionRemaining": attention,
    }
    if state_change is not None:
        data["stateChange"] = state_change
    data.update(extra)
    return json.dumps(data)


def create_test_persona() -> Persona:
    return Persona.from_preset("impatient-teenager")


def create_test_stimuli(timestamps_ms: Iterable[int] = (0, 3000, 6000)) -> List[Stimulus]:
    """Build a StimulusQueue with tiny fake image payloads."""
    return [
        Stimulus(index=i, timestamp_ms=ts, payload=MediaPayload(kind="image", data=f"ZnJhbWU{i}", format="jpeg"))
        for i, ts in enumerate(timestamps_ms)
    ]


def make_state(index: int, timestamp_ms: int, failed: bool = False, **scores: float) -> EmotionState:
    """Build an EmotionState directly, for aggregation tests."""
    return EmotionState(
        stimulus_index=index,
        timestamp_ms=timestamp_ms,
        scores=dict(scores),
        scroll_intent=ScrollIntent.NO,
        state_change="initial" if index == 0 else "stable",
        parse_method="neutral" if failed else "json",
        failed=failed,
        error="scripted failure" if failed else None,
    )


def make_run(states: Iterable[EmotionState], status: RunStatus = RunStatus.COMPLETED,
             stimulus_count: Optional[int] = None) -> EvaluationRun:
    states = tuple(states)
    return EvaluationRun(
        persona_id="impatient-teenager",
        model="kimi-2.5-vision",
        status=status,
        states=states,
        stimulus_count=stimulus_count if stimulus_count is not None else len(states),
    )
