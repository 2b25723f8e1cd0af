"""
Event-driven notifications for evaluation runs.
"""
import logging
from abc import ABC
from typing import Dict, Any, List, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger("events")


class EventType(str, Enum):
    """Types of evaluation events."""
    RUN_STARTED = "run_started"
    STIMULUS_EVALUATED = "stimulus_evaluated"
    STIMULUS_FAILED = "stimulus_failed"
    VIEWER_ABANDONED = "viewer_abandoned"
    RUN_ABORTED = "run_aborted"
    RUN_COMPLETED = "run_completed"


@dataclass
class EvaluationEvent(ABC):
    """Base class for all evaluation events."""
    event_type: EventType
    run_id: str
    timestamp: float
    data: Dict[str, Any]


@dataclass
class RunStartedEvent(EvaluationEvent):
    """Event fired when a run begins."""
    def __init__(self, run_id: str, timestamp: float, persona_id: str, stimulus_count: int, model: str):
        super().__init__(
            event_type=EventType.RUN_STARTED,
            run_id=run_id,
            timestamp=timestamp,
            data={"persona_id": persona_id, "stimulus_count": stimulus_count, "model": model}
        )


@dataclass
class StimulusEvaluatedEvent(EvaluationEvent):
    """Event fired after a stimulus produced a state."""
    def __init__(self, run_id: str, timestamp: float, stimulus_index: int,
                 scores: Dict[str, float], scroll_intent: str, cost: float, tokens: int):
        super().__init__(
            event_type=EventType.STIMULUS_EVALUATED,
            run_id=run_id,
            timestamp=timestamp,
            data={
                "stimulus_index": stimulus_index,
                "scores": scores,
                "scroll_intent": scroll_intent,
                "cost": cost,
                "tokens": tokens,
            }
        )


@dataclass
class StimulusFailedEvent(EvaluationEvent):
    """Event fired when a stimulus exhausted its retries."""
    def __init__(self, run_id: str, timestamp: float, stimulus_index: int, error_message: str):
        super().__init__(
            event_type=EventType.STIMULUS_FAILED,
            run_id=run_id,
            timestamp=timestamp,
            data={"stimulus_index": stimulus_index, "error_message": error_message}
        )


@dataclass
class ViewerAbandonedEvent(EvaluationEvent):
    """Event fired when the persona scrolls away."""
    def __init__(self, run_id: str, timestamp: float, stimulus_index: int,
                 timestamp_ms: int, thought: str):
        super().__init__(
            event_type=EventType.VIEWER_ABANDONED,
            run_id=run_id,
            timestamp=timestamp,
            data={"stimulus_index": stimulus_index, "timestamp_ms": timestamp_ms, "thought": thought}
        )


@dataclass
class RunAbortedEvent(EvaluationEvent):
    """Event fired when a run stops on an authentication failure."""
    def __init__(self, run_id: str, timestamp: float, reason: str, state_count: int):
        super().__init__(
            event_type=EventType.RUN_ABORTED,
            run_id=run_id,
            timestamp=timestamp,
            data={"reason": reason, "state_count": state_count}
        )


@dataclass
class RunCompletedEvent(EvaluationEvent):
    """Event fired when a run finishes (completed or abandoned)."""
    def __init__(self, run_id: str, timestamp: float, status: str, state_count: int,
                 total_cost: float, total_tokens: int):
        super().__init__(
            event_type=EventType.RUN_COMPLETED,
            run_id=run_id,
            timestamp=timestamp,
            data={
                "status": status,
                "state_count": state_count,
                "total_cost": total_cost,
                "total_tokens": total_tokens,
            }
        )


EventHandler = Callable[[EvaluationEvent], None]


class EvaluationEventBus:
    """Event bus for evaluation progress notifications."""

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._global_handlers: List[EventHandler] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Subscribe to specific event type.

        Args:
            event_type: Type of event to listen for
            handler: Function to call when event occurs
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler to {event_type}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)
        logger.debug("Subscribed global handler")

    def emit(self, event: EvaluationEvent) -> None:
        """
        Emit an event to all subscribers.

        A failing handler is logged and never interrupts the run.
        """
        logger.debug(f"Emitting event: {event.event_type} for run {event.run_id}")

        for handler in self._handlers.get(event.event_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.event_type}: {e}")

        for handler in self._global_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in global event handler: {e}")


class EventLogger:
    """Logs all events for debugging and analysis."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger("event_logger")
        self.logger.setLevel(log_level)

    def handle_event(self, event: EvaluationEvent) -> None:
        """Log event details."""
        self.logger.info(f"Event: {event.event_type} | Run: {event.run_id} | Data: {event.data}")


class RunMetrics:
    """Collects counters and spend from evaluation events."""

    def __init__(self):
        self.reset()

    def handle_event(self, event: EvaluationEvent) -> None:
        """Update metrics based on event."""
        if event.event_type == EventType.RUN_STARTED:
            self.runs_started += 1
        elif event.event_type == EventType.STIMULUS_EVALUATED:
            self.stimuli_evaluated += 1
            self.total_tokens += int(event.data.get("tokens", 0))
            self.total_cost += float(event.data.get("cost", 0.0))
        elif event.event_type == EventType.STIMULUS_FAILED:
            self.stimuli_failed += 1
        elif event.event_type == EventType.VIEWER_ABANDONED:
            self.runs_abandoned += 1
        elif event.event_type == EventType.RUN_ABORTED:
            self.runs_aborted += 1
        elif event.event_type == EventType.RUN_COMPLETED:
            self.runs_completed += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics snapshot."""
        return {
            "runs_started": self.runs_started,
            "runs_completed": self.runs_completed,
            "runs_abandoned": self.runs_abandoned,
            "runs_aborted": self.runs_aborted,
            "stimuli_evaluated": self.stimuli_evaluated,
            "stimuli_failed": self.stimuli_failed,
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
        }

    def reset(self) -> None:
        """Reset all metrics to zero."""
        self.runs_started = 0
        self.runs_completed = 0
        self.runs_abandoned = 0
        self.runs_aborted = 0
        self.stimuli_evaluated = 0
        self.stimuli_failed = 0
        self.total_tokens = 0
        self.total_cost = 0.0
