"""
Structured schemas, run state and response parsing for the evaluation pipeline.
"""
import json
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, Iterable, List, Tuple, TYPE_CHECKING

from ..config import (
    DEFAULT_LENSES, LENS_DESCRIPTIONS, NEUTRAL_SCORE, SCORE_MIN, SCORE_MAX,
    DEFAULT_SCROLL_INTENT, DEFAULT_ATTENTION_SECONDS,
)

if TYPE_CHECKING:
    from .models import EmotionState

logger = logging.getLogger("response_parser")


class ScrollIntent(str, Enum):
    """Whether the persona is about to abandon the content."""
    YES = "yes"
    NO = "no"
    MAYBE = "maybe"


class RunStatus(str, Enum):
    """Terminal state of an evaluation run."""
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    ABORTED = "aborted"


@dataclass
class EvaluationState:
    """Mutable bookkeeping owned by the orchestrator's control loop."""
    previous_state: Optional['EmotionState'] = None
    last_entry: Optional['EmotionState'] = None
    cumulative_boredom: float = 0.0
    total_cost: float = 0.0
    total_tokens: int = 0
    status: RunStatus = RunStatus.COMPLETED
    abort_reason: Optional[str] = None

    def record_usage(self, cost: float, tokens: int):
        """Add one oracle call to the running totals."""
        self.total_cost += cost
        self.total_tokens += tokens

    def abort(self, reason: str):
        self.status = RunStatus.ABORTED
        self.abort_reason = reason

    def abandon(self):
        self.status = RunStatus.ABANDONED


@dataclass
class ParsedEmotion:
    """Normalized oracle judgment; the caller fills index, timestamp and cost."""
    scores: Dict[str, float] = field(default_factory=dict)
    narrative_thought: str = ""
    scroll_intent: ScrollIntent = ScrollIntent(DEFAULT_SCROLL_INTENT)
    attention_remaining_seconds: float = DEFAULT_ATTENTION_SECONDS
    self_reported_change: str = ""
    method: str = "json"
    error: Optional[str] = None


def clamp_score(value: float) -> float:
    """Clamp a score to the closed [0, 10] range."""
    return max(SCORE_MIN, min(SCORE_MAX, value))


_LEADING_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


def coerce_number(value: Any) -> Optional[float]:
    """Best-effort numeric conversion; returns None for anything unusable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if not match:
            return None
        number = float(match.group(1))
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def neutral_scores(axes: Iterable[str] = DEFAULT_LENSES) -> Dict[str, float]:
    return {axis: NEUTRAL_SCORE for axis in axes}


def normalize_scroll_intent(value: Any) -> Optional[ScrollIntent]:
    if isinstance(value, bool):
        return ScrollIntent.YES if value else ScrollIntent.NO
    if isinstance(value, str):
        try:
            return ScrollIntent(value.strip().lower())
        except ValueError:
            return None
    return None


_FENCE = re.compile(r"```(?:json|JSON)?\s*")

_THOUGHT_KEYS = ("currentThought", "thought", "narrativeThought", "rationale")
_ATTENTION_KEYS = ("attentionRemaining", "attentionRemainingSeconds", "attention_remaining")
_CHANGE_KEYS = ("stateChange", "state_change")


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fence markers and surrounding whitespace."""
    return _FENCE.sub("", text).strip()


def find_balanced_object(text: str) -> Optional[str]:
    """
    Return the earliest-starting balanced {...} substring, honouring JSON string quoting.

    Single pass over the text; returns None when no opening brace is ever closed.
    """
    first = text.find("{")
    if first == -1:
        return None

    open_at: List[int] = []
    best: Optional[Tuple[int, int]] = None
    in_string = False
    escaped = False
    for i in range(first, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            open_at.append(i)
        elif ch == "}" and open_at:
            start = open_at.pop()
            if not open_at:
                return text[start:i + 1]
            if best is None or start < best[0]:
                best = (start, i + 1)
    return text[best[0]:best[1]] if best else None


def _first_present(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _from_mapping(data: Dict[str, Any], axes: Tuple[str, ...], method: str) -> ParsedEmotion:
    """Build a ParsedEmotion from decoded JSON, filling neutral defaults."""
    nested = data.get("scores") if isinstance(data.get("scores"), dict) else {}

    def raw_score(axis: str) -> Any:
        value = data.get(axis)
        if value is None:
            value = nested.get(axis)
        return value

    scores: Dict[str, float] = {}
    for axis in axes:
        number = coerce_number(raw_score(axis))
        if number is None:
            logger.debug("Axis %s missing or non-numeric, using neutral default", axis)
            number = NEUTRAL_SCORE
        scores[axis] = clamp_score(number)

    # Keep extra known lenses the oracle volunteered
    for axis in LENS_DESCRIPTIONS:
        if axis in scores:
            continue
        number = coerce_number(raw_score(axis))
        if number is not None:
            scores[axis] = clamp_score(number)

    thought = _first_present(data, _THOUGHT_KEYS)
    intent = normalize_scroll_intent(_first_present(data, ("scrollIntent", "scroll_intent")))
    attention = coerce_number(_first_present(data, _ATTENTION_KEYS))
    change = _first_present(data, _CHANGE_KEYS)

    return ParsedEmotion(
        scores=scores,
        narrative_thought=thought.strip() if isinstance(thought, str) else "",
        scroll_intent=intent or ScrollIntent(DEFAULT_SCROLL_INTENT),
        attention_remaining_seconds=max(0.0, attention) if attention is not None else DEFAULT_ATTENTION_SECONDS,
        self_reported_change=change.strip() if isinstance(change, str) else "",
        method=method,
    )


def _number_pattern(key: str) -> "re.Pattern[str]":
    return re.compile(
        rf'(?<![A-Za-z_])"?{key}"?\s*[:=]\s*"?(-?\d+(?:\.\d+)?)',
        re.IGNORECASE,
    )


def _string_pattern(keys: Tuple[str, ...]) -> "re.Pattern[str]":
    alternatives = "|".join(keys)
    return re.compile(
        rf'(?<![A-Za-z_])"?(?:{alternatives})"?\s*[:=]\s*"((?:[^"\\]|\\.)*)"',
        re.IGNORECASE,
    )


_SCROLL_PATTERN = re.compile(r'(?<![A-Za-z_])"?scroll_?intent"?\s*[:=]\s*"?(yes|no|maybe)\b', re.IGNORECASE)
_ATTENTION_PATTERN = re.compile(
    r'(?<![A-Za-z_])"?attention_?remaining(?:_?seconds)?"?\s*[:=]\s*"?(-?\d+(?:\.\d+)?)', re.IGNORECASE
)
_THOUGHT_PATTERN = _string_pattern(_THOUGHT_KEYS)
_CHANGE_PATTERN = _string_pattern(_CHANGE_KEYS)


def _from_regex(text: str, axes: Tuple[str, ...]) -> ParsedEmotion:
    """Field-by-field extraction from prose; anything not found stays neutral."""
    found = 0
    scores: Dict[str, float] = {}
    for axis in axes:
        match = _number_pattern(axis).search(text)
        if match:
            found += 1
            scores[axis] = clamp_score(float(match.group(1)))
        else:
            scores[axis] = NEUTRAL_SCORE

    for axis in LENS_DESCRIPTIONS:
        if axis in scores:
            continue
        match = _number_pattern(axis).search(text)
        if match:
            found += 1
            scores[axis] = clamp_score(float(match.group(1)))

    parsed = ParsedEmotion(scores=scores, method="regex")

    thought = _THOUGHT_PATTERN.search(text)
    if thought:
        found += 1
        parsed.narrative_thought = thought.group(1).replace('\\"', '"').strip()

    scroll = _SCROLL_PATTERN.search(text)
    if scroll:
        found += 1
        parsed.scroll_intent = ScrollIntent(scroll.group(1).lower())

    attention = _ATTENTION_PATTERN.search(text)
    if attention:
        found += 1
        parsed.attention_remaining_seconds = max(0.0, float(attention.group(1)))

    change = _CHANGE_PATTERN.search(text)
    if change:
        found += 1
        parsed.self_reported_change = change.group(1).strip()

    if not found:
        parsed.method = "neutral"
        parsed.error = "No recognizable fields in oracle response"
    return parsed


def parse_emotion_response(raw_response: Optional[str],
                           axes: Iterable[str] = DEFAULT_LENSES) -> ParsedEmotion:
    """
    Parse oracle text into a normalized emotional judgment.

    Tries, in order: the whole (fence-stripped) text as JSON, the first
    balanced ``{...}`` substring, then field-by-field regex extraction.
    Never raises; the worst case is an all-neutral result with ``error`` set.

    Args:
        raw_response: Free text returned by the oracle
        axes: Emotion axes that must always be present in ``scores``

    Returns:
        ParsedEmotion with every requested axis clamped to [0, 10]
    """
    axes = tuple(axes)
    if not raw_response or not raw_response.strip():
        logger.warning("Empty oracle response, using neutral defaults")
        return ParsedEmotion(
            scores=neutral_scores(axes), method="neutral", error="Empty oracle response"
        )

    text = strip_code_fences(raw_response)

    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return _from_mapping(data, axes, "json")
        logger.warning("Oracle JSON was %s, not an object", type(data).__name__)
    except json.JSONDecodeError as e:
        logger.debug("Direct JSON parse failed: %s", e)

    candidate = find_balanced_object(text)
    if candidate is not None:
        try:
            data = json.loads(candidate)
            if isinstance(data, dict):
                logger.debug("Parsed JSON from embedded object")
                return _from_mapping(data, axes, "embedded_json")
        except json.JSONDecodeError as e:
            logger.warning("Embedded object parse failed: %s", e)

    logger.warning("Falling back to regex extraction for response: %r", raw_response[:200])
    return _from_regex(text, axes)
