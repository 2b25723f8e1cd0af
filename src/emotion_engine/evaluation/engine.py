"""
Prompt building and single-stimulus evaluation.
"""
import logging
from typing import Dict, Iterable, Optional, Tuple

from .models import Stimulus, EmotionState
from .prompts import EvaluationPrompts, PromptFormatter
from .schemas import ParsedEmotion, parse_emotion_response
from ..config import Persona, DEFAULT_LENSES
from ..infrastructure.llm import OpenRouterClient, OracleResponse

logger = logging.getLogger("prompt_engine")

# Smallest score movement worth mentioning in a state change
CHANGE_THRESHOLD = 1.0

_RISING = {
    "boredom": "more bored",
    "frustration": "more frustrated",
    "excitement": "more excited",
    "patience": "more patient",
    "clarity": "clearer",
    "trust": "more trusting",
    "skepticism": "more skeptical",
    "anxiety": "more anxious",
    "empowerment": "more empowered",
    "confidence": "more confident",
}

_FALLING = {
    "boredom": "less bored",
    "frustration": "less frustrated",
    "excitement": "less excited",
    "patience": "less patient",
    "clarity": "more confused",
    "trust": "less trusting",
    "skepticism": "less skeptical",
    "anxiety": "calmer",
    "empowerment": "less empowered",
    "confidence": "less confident",
}


class PromptBuilder:
    """Builds oracle instructions; identical inputs always give identical text."""

    def __init__(self, axes: Iterable[str] = DEFAULT_LENSES):
        self.axes: Tuple[str, ...] = tuple(axes)

    def build(self, persona: Persona, stimulus: Stimulus,
              previous_state: Optional[EmotionState] = None) -> str:
        """
        Build the prompt for one stimulus.

        Args:
            persona: Viewer archetype for the run
            stimulus: Frame or clip being evaluated
            previous_state: Last successful state, or None for an opening prompt

        Returns:
            Prompt text ending with the JSON-only directive
        """
        lens_block = PromptFormatter.format_lens_block(self.axes)

        if previous_state is None:
            body = EvaluationPrompts.opening_prompt(
                display_name=persona.display_name,
                timestamp_label=PromptFormatter.format_seconds(stimulus.timestamp_ms),
                lens_block=lens_block,
            )
            fields = PromptFormatter.required_fields(self.axes, continuation=False)
        else:
            delta_ms = max(0, stimulus.timestamp_ms - previous_state.timestamp_ms)
            body = EvaluationPrompts.continuation_prompt(
                display_name=persona.display_name,
                previous_label=PromptFormatter.format_seconds(previous_state.timestamp_ms),
                previous_scores=PromptFormatter.format_previous_scores(previous_state.scores, self.axes),
                previous_thought=previous_state.narrative_thought or "(no thought recorded)",
                previous_intent=previous_state.scroll_intent.value,
                previous_attention=f"{previous_state.attention_remaining_seconds:g}",
                elapsed_label=PromptFormatter.format_seconds(stimulus.timestamp_ms),
                delta_label=PromptFormatter.format_seconds(delta_ms),
                lens_block=lens_block,
            )
            fields = PromptFormatter.required_fields(self.axes, continuation=True)

        return f"{body}\n\n{EvaluationPrompts.json_directive(fields)}"

    def system_prompt(self, persona: Persona) -> str:
        """Persona setup sent once per call as the system message."""
        return PromptFormatter.build_persona_context(persona)


def describe_state_change(previous: EmotionState, current_scores: Dict[str, float]) -> str:
    """
    Summarize how scores moved relative to the preceding state.

    Axes are listed largest movement first; "stable" when nothing moved
    by at least CHANGE_THRESHOLD.
    """
    deltas = []
    for axis, value in current_scores.items():
        if axis not in previous.scores:
            continue
        delta = value - previous.scores[axis]
        if abs(delta) >= CHANGE_THRESHOLD:
            deltas.append((axis, delta))

    if not deltas:
        return "stable"

    deltas.sort(key=lambda item: -abs(item[1]))
    parts = []
    for axis, delta in deltas:
        words = (_RISING if delta > 0 else _FALLING).get(axis, f"{axis} {'up' if delta > 0 else 'down'}")
        parts.append(f"{words} ({delta:+g} {axis})")
    return ", ".join(parts)


class StimulusEvaluator:
    """Runs prompt -> oracle -> parser for a single stimulus."""

    def __init__(self, client: OpenRouterClient, prompt_builder: PromptBuilder):
        self.client = client
        self.prompt_builder = prompt_builder

    @property
    def axes(self) -> Tuple[str, ...]:
        return self.prompt_builder.axes

    def evaluate(self, persona: Persona, stimulus: Stimulus,
                 previous_state: Optional[EmotionState]) -> Tuple[ParsedEmotion, OracleResponse]:
        """
        Evaluate one stimulus.

        Oracle errors propagate to the caller; parse problems never do.
        """
        prompt = self.prompt_builder.build(persona, stimulus, previous_state)
        logger.debug("Prompt for stimulus %d:\n%s", stimulus.index, prompt)

        response = self.client.evaluate(prompt, stimulus.payload,
                                        system_prompt=self.prompt_builder.system_prompt(persona))
        logger.info("Raw oracle response for stimulus %d: %s", stimulus.index, response.raw_text)

        parsed = parse_emotion_response(response.raw_text, self.axes)
        if parsed.error:
            logger.warning("Stimulus %d degraded to neutral defaults: %s", stimulus.index, parsed.error)
        return parsed, response
