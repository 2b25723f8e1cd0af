"""
Trajectory aggregation: friction index, radar averages, timeline and recommendations.
All functions are pure; an empty trajectory yields defaults, never an error.
"""
import math
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .models import (
    EmotionState, EvaluationRun, RadarPoint, TimelineEntry, Recommendation,
    Report, ReportSummary,
)
from .schemas import RunStatus
from ..config import NEUTRAL_SCORE, POSITIVE_LENSES

logger = logging.getLogger("metrics")

EARLY_WINDOW_MS = 10000
HIGH_BOREDOM = 8
LOW_PEAK_EXCITEMENT = 6
LOW_PATIENCE = 3

_SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def _usable(states: Sequence[EmotionState]) -> List[EmotionState]:
    return [s for s in states if not s.degraded]


def state_friction(state: EmotionState) -> float:
    """
    Friction contribution of one state on the 0-10 scale.

    Mean of a negative composite (boredom, frustration, 10 - patience,
    10 - clarity) and an inverted positive composite (10 - excitement plus
    10 - any other positive lens present).
    """
    s = state.scores
    negative = np.mean([
        s.get("boredom", NEUTRAL_SCORE),
        s.get("frustration", NEUTRAL_SCORE),
        10 - s.get("patience", NEUTRAL_SCORE),
        10 - s.get("clarity", NEUTRAL_SCORE),
    ])
    inverted = [10 - s.get("excitement", NEUTRAL_SCORE)]
    inverted.extend(10 - s[axis] for axis in POSITIVE_LENSES if axis != "excitement" and axis in s)
    return float((negative + np.mean(inverted)) / 2)


def friction_index(states: Sequence[EmotionState]) -> int:
    """Average per-state friction scaled to an integer in [0, 100]."""
    usable = _usable(states)
    if not usable:
        return 0
    mean_friction = float(np.mean([state_friction(s) for s in usable]))
    return int(max(0, min(100, _round_half_up(mean_friction * 10))))


def radar_data(states: Sequence[EmotionState]) -> Tuple[RadarPoint, ...]:
    """
    Per-axis averages over the states that reported each axis.

    Axes appear in first-seen order; absence is ignored rather than counted as zero.
    """
    usable = _usable(states)
    axes: List[str] = []
    for state in usable:
        for axis in state.scores:
            if axis not in axes:
                axes.append(axis)
    if not axes:
        return ()

    matrix = np.full((len(usable), len(axes)), np.nan)
    for row, state in enumerate(usable):
        for col, axis in enumerate(axes):
            if axis in state.scores:
                matrix[row, col] = state.scores[axis]

    averages = np.nanmean(matrix, axis=0)
    return tuple(
        RadarPoint(axis=axis, average_value=_round_half_up(float(avg), 1))
        for axis, avg in zip(axes, averages)
    )


def timeline(states: Sequence[EmotionState]) -> Tuple[TimelineEntry, ...]:
    """One entry per state, in trajectory order, with no aggregation."""
    return tuple(
        TimelineEntry(
            timestamp_ms=s.timestamp_ms,
            scores=dict(s.scores),
            scroll_intent=s.scroll_intent,
            failed=s.degraded,
        )
        for s in states
    )


def _peak(states: Sequence[EmotionState], axis: str) -> Optional[EmotionState]:
    """First state holding the maximum value of ``axis``."""
    best: Optional[EmotionState] = None
    for state in states:
        if axis not in state.scores:
            continue
        if best is None or state.scores[axis] > best.scores[axis]:
            best = state
    return best


def recommendations(states: Sequence[EmotionState],
                    persona_name: str = "This viewer") -> Tuple[Recommendation, ...]:
    """Rule-based, severity-sorted recommendations; each rule fires at most once."""
    usable = _usable(states)
    if not usable:
        return ()

    found: List[Recommendation] = []

    early = next(
        (s for s in usable
         if s.timestamp_ms < EARLY_WINDOW_MS and s.scores.get("boredom", 0) >= HIGH_BOREDOM),
        None,
    )
    if early is not None:
        found.append(Recommendation(
            severity="high",
            issue="Early Abandonment Risk",
            description=f"{persona_name} would scroll away at {early.timestamp_ms / 1000:.1f}s due to high boredom",
            action="Cut the opening sequence. Jump directly to engaging content within 3 seconds.",
            timestamp_ms=early.timestamp_ms,
        ))

    peak = _peak(usable, "excitement")
    if peak is not None and peak.scores["excitement"] < LOW_PEAK_EXCITEMENT:
        found.append(Recommendation(
            severity="medium",
            issue="Low Peak Engagement",
            description=f"Maximum excitement only reached {peak.scores['excitement']:g}/10",
            action="Add more dynamic visuals or pattern interrupts to increase engagement.",
            timestamp_ms=peak.timestamp_ms,
        ))

    low_patience = [s for s in usable if "patience" in s.scores and s.scores["patience"] <= LOW_PATIENCE]
    if len(low_patience) > len(usable) / 2:
        found.append(Recommendation(
            severity="medium",
            issue="Persistent Patience Issues",
            description=f"{len(low_patience)}/{len(usable)} moments show low patience",
            action="Pacing is too slow for this demographic. Consider faster cuts or removing filler content.",
        ))

    return tuple(sorted(found, key=lambda r: _SEVERITY_RANK.get(r.severity, len(_SEVERITY_RANK))))


def build_report(run: EvaluationRun, persona_name: Optional[str] = None) -> Report:
    """Aggregate a finalized run into an immutable report."""
    states = run.states
    usable = _usable(states)

    peak_boredom = _peak(usable, "boredom")
    peak_excitement = _peak(usable, "excitement")
    left = run.abandonment_state

    summary = ReportSummary(
        persona_id=run.persona_id,
        model=run.model,
        status=run.status,
        stimulus_count=run.stimulus_count,
        evaluated_count=run.evaluated_count,
        failed_count=run.failed_count,
        total_cost=run.total_cost,
        total_tokens=run.total_tokens,
        duration_seconds=run.duration_seconds,
        abandonment_timestamp_ms=left.timestamp_ms if left else None,
        peak_boredom=(peak_boredom.timestamp_ms, peak_boredom.scores["boredom"]) if peak_boredom else None,
        peak_excitement=(peak_excitement.timestamp_ms, peak_excitement.scores["excitement"]) if peak_excitement else None,
        incomplete=run.status == RunStatus.ABORTED,
        abort_reason=run.abort_reason,
    )

    report = Report(
        friction_index=friction_index(states),
        radar_data=radar_data(states),
        timeline=timeline(states),
        recommendations=recommendations(states, persona_name or run.persona_id),
        summary=summary,
    )
    logger.info("Report for %s: friction %d, %d recommendation(s)",
                run.persona_id, report.friction_index, len(report.recommendations))
    return report
