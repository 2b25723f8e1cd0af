"""
Evaluation prompt templates and generation.

This module contains all the prompt templates sent to the oracle,
keeping them separate from the evaluation logic for easier maintenance and editing.
"""

from typing import Dict, Iterable, List, Tuple

from ..config import LENS_DESCRIPTIONS, Persona


class EvaluationPrompts:
    """Collection of all persona evaluation prompts."""

    @staticmethod
    def persona_context_template() -> str:
        """System message that sets up the persona for the whole run."""
        return """
{base_prompt}

You are role-playing: {display_name}
Persona: {description}
Core Conflict: {conflict}

Rate on a 0-10 scale where 5 is neutral. Never be artificially positive.
        """.strip()

    @staticmethod
    def opening_prompt(display_name: str, timestamp_label: str, lens_block: str) -> str:
        """Prompt for the first stimulus of a run; no history is referenced."""
        return f"""
Stay in character as {display_name}.

This is the OPENING FRAME at {timestamp_label} seconds.

You have never seen this video before. What's your immediate, gut reaction?

Rate your emotional state (0-10 scale):
{lens_block}

Also provide:
- currentThought: Your immediate reaction (1 sentence, in your own voice)
- scrollIntent: Are you about to scroll? (yes/no/maybe)
- attentionRemaining: Estimated seconds before you scroll (number)
        """.strip()

    @staticmethod
    def continuation_prompt(
        display_name: str,
        previous_label: str,
        previous_scores: str,
        previous_thought: str,
        previous_intent: str,
        previous_attention: str,
        elapsed_label: str,
        delta_label: str,
        lens_block: str,
    ) -> str:
        """Prompt for every stimulus after the first, restating the prior state."""
        return f"""
Stay in character as {display_name}.

**Your emotional state from {previous_label} seconds in:**
{previous_scores}
- Your thought: "{previous_thought}"
- Scroll intent: {previous_intent}
- Attention remaining: ~{previous_attention}s

You've been watching for {elapsed_label} seconds total ({delta_label}s since last frame).

**Now you see this next frame:**

How has your emotional state changed? Stay consistent with how you felt,
but let this frame move you if it earns it. Consider:
- Did it get better or worse?
- Are you more or less likely to scroll now?
- Is your patience depleted?

Rate your UPDATED emotional state (0-10 scale):
{lens_block}

Also provide:
- currentThought: Your updated reaction (1 sentence, in your own voice)
- stateChange: How you changed from before (brief, e.g., "more bored", "slightly intrigued", "about to scroll")
- scrollIntent: Are you about to scroll? (yes/no/maybe)
- attentionRemaining: Estimated seconds before you scroll (number, 0 if scrolling now)
        """.strip()

    @staticmethod
    def json_directive(fields: List[str]) -> str:
        """Closing instruction; always the last thing in a prompt."""
        example = ", ".join(f'"{name}": ...' for name in fields)
        return f"""
Respond with ONLY a minified JSON object (no prose, no code fences) containing exactly these fields:
{", ".join(fields)}
Example shape: {{{example}}}
        """.strip()


class PromptFormatter:
    """Helper class for formatting prompt fragments."""

    @staticmethod
    def format_seconds(timestamp_ms: int) -> str:
        return f"{timestamp_ms / 1000.0:.1f}"

    @staticmethod
    def format_lens_block(axes: Iterable[str]) -> str:
        """One rubric line per emotion axis."""
        return "\n".join(f"- {axis}: {LENS_DESCRIPTIONS.get(axis, axis)}" for axis in axes)

    @staticmethod
    def level_label(axis: str, value: float) -> str:
        """Coarse label so the persona notices depleted or spiking axes."""
        if axis == "patience":
            return "LOW" if value <= 3 else "OK" if value >= 7 else "medium"
        if axis in ("boredom", "frustration", "anxiety", "skepticism"):
            return "HIGH" if value >= 7 else "low" if value <= 3 else "medium"
        return "GOOD" if value >= 6 else "low"

    @staticmethod
    def format_previous_scores(scores: Dict[str, float], axes: Iterable[str]) -> str:
        lines = []
        for axis in axes:
            if axis not in scores:
                continue
            value = scores[axis]
            lines.append(f"- {axis.capitalize()}: {value:g}/10 ({PromptFormatter.level_label(axis, value)})")
        return "\n".join(lines)

    @staticmethod
    def build_persona_context(persona: Persona) -> str:
        return EvaluationPrompts.persona_context_template().format(
            base_prompt=persona.base_prompt,
            display_name=persona.display_name,
            description=persona.description,
            conflict=persona.conflict or "none stated",
        )

    @staticmethod
    def required_fields(axes: Tuple[str, ...], continuation: bool) -> List[str]:
        fields = list(axes) + ["currentThought", "scrollIntent", "attentionRemaining"]
        if continuation:
            fields.insert(len(axes) + 1, "stateChange")
        return fields
