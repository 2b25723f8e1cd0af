"""
Data models for the evaluation pipeline.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Tuple, Any

from .schemas import ScrollIntent, RunStatus


@dataclass(frozen=True)
class MediaPayload:
    """Encoded media for one stimulus (base64 data, never decoded here)."""
    kind: str  # "image" or "audio"
    data: str
    format: str = "jpeg"

    def data_url(self) -> str:
        """Return the payload as a data URL (images only)."""
        return f"data:image/{self.format};base64,{self.data}"


@dataclass(frozen=True)
class Stimulus:
    """One timestamped frame or short clip."""
    index: int
    timestamp_ms: int
    payload: MediaPayload

    @property
    def timestamp_seconds(self) -> float:
        return self.timestamp_ms / 1000.0


@dataclass(frozen=True)
class EmotionState:
    """Persona's emotional state after one stimulus."""
    stimulus_index: int
    timestamp_ms: int
    scores: Dict[str, float]
    narrative_thought: str = ""
    scroll_intent: ScrollIntent = ScrollIntent.NO
    attention_remaining_seconds: float = 10.0
    cumulative_boredom: float = 0.0
    state_change: str = "initial"
    cost_units: float = 0.0
    tokens_used: int = 0
    # What the oracle itself said changed, kept apart from the derived descriptor
    self_reported_change: str = ""
    parse_method: str = "json"
    failed: bool = False
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """True for oracle failures and responses that yielded nothing usable."""
        return self.failed or self.parse_method == "neutral"

    @property
    def has_left(self) -> bool:
        """True when the viewer has scrolled away."""
        return self.scroll_intent == ScrollIntent.YES and self.attention_remaining_seconds <= 0


@dataclass(frozen=True)
class EvaluationRun:
    """Finalized trajectory for one persona over one stimulus queue."""
    persona_id: str
    model: str
    status: RunStatus
    states: Tuple[EmotionState, ...]
    stimulus_count: int
    total_cost: float = 0.0
    total_tokens: int = 0
    duration_seconds: float = 0.0
    abort_reason: Optional[str] = None

    @property
    def evaluated_count(self) -> int:
        return sum(1 for s in self.states if not s.failed)

    @property
    def failed_count(self) -> int:
        return sum(1 for s in self.states if s.failed)

    @property
    def is_incomplete(self) -> bool:
        return self.status == RunStatus.ABORTED

    @property
    def abandonment_state(self) -> Optional[EmotionState]:
        if self.status != RunStatus.ABANDONED or not self.states:
            return None
        return self.states[-1]


@dataclass(frozen=True)
class RadarPoint:
    axis: str
    average_value: float


@dataclass(frozen=True)
class TimelineEntry:
    timestamp_ms: int
    scores: Dict[str, float]
    scroll_intent: ScrollIntent = ScrollIntent.NO
    failed: bool = False


@dataclass(frozen=True)
class Recommendation:
    severity: str  # "high" or "medium"
    issue: str
    description: str
    action: str
    timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class ReportSummary:
    """Run-level totals reported next to the derived metrics."""
    persona_id: str = ""
    model: str = ""
    status: RunStatus = RunStatus.COMPLETED
    stimulus_count: int = 0
    evaluated_count: int = 0
    failed_count: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    duration_seconds: float = 0.0
    abandonment_timestamp_ms: Optional[int] = None
    peak_boredom: Optional[Tuple[int, float]] = None
    peak_excitement: Optional[Tuple[int, float]] = None
    incomplete: bool = False
    abort_reason: Optional[str] = None


@dataclass(frozen=True)
class Report:
    """Final aggregated metrics for a run."""
    friction_index: int = 0
    radar_data: Tuple[RadarPoint, ...] = ()
    timeline: Tuple[TimelineEntry, ...] = ()
    recommendations: Tuple[Recommendation, ...] = ()
    summary: ReportSummary = field(default_factory=ReportSummary)

    def as_dict(self) -> Dict[str, Any]:
        """Represent the report as a JSON-ready dictionary."""
        s = self.summary
        return {
            "frictionIndex": self.friction_index,
            "radarData": [{"axis": p.axis, "averageValue": p.average_value} for p in self.radar_data],
            "timeline": [
                {
                    "timestamp": t.timestamp_ms,
                    "scores": dict(t.scores),
                    "scrollIntent": t.scroll_intent.value,
                    "failed": t.failed,
                }
                for t in self.timeline
            ],
            "recommendations": [
                {
                    "severity": r.severity,
                    "issue": r.issue,
                    "description": r.description,
                    "action": r.action,
                    "time": r.timestamp_ms,
                }
                for r in self.recommendations
            ],
            "summary": {
                "personaId": s.persona_id,
                "model": s.model,
                "status": s.status.value,
                "incomplete": s.incomplete,
                "abortReason": s.abort_reason,
                "stimulusCount": s.stimulus_count,
                "processedCount": s.evaluated_count,
                "failedCount": s.failed_count,
                "totalCost": round(s.total_cost, 4),
                "totalTokens": s.total_tokens,
                "duration": round(s.duration_seconds, 3),
                "abandonmentTimestamp": s.abandonment_timestamp_ms,
                "peakBoredom": list(s.peak_boredom) if s.peak_boredom else None,
                "peakExcitement": list(s.peak_excitement) if s.peak_excitement else None,
            },
        }
