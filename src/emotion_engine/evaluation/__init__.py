"""Persona evaluation components.

This module contains the business logic for walking a video's stimuli as a
synthetic viewer, including orchestration, prompting, parsing and aggregation.
"""

# Core orchestrator class
from .orchestrator import PersonaEvaluationOrchestrator

# Data models
from .models import (
    MediaPayload, Stimulus, EmotionState, EvaluationRun,
    RadarPoint, TimelineEntry, Recommendation, ReportSummary, Report
)

# Structured schemas and state management
from .schemas import (
    ScrollIntent, RunStatus, EvaluationState, ParsedEmotion, parse_emotion_response
)

# Prompting and single-stimulus evaluation
from .engine import PromptBuilder, StimulusEvaluator, describe_state_change

# Aggregation
from .metrics import friction_index, radar_data, timeline, recommendations, build_report

# Event system
from .events import (
    EvaluationEventBus, EventLogger, RunMetrics,
    EventType, EvaluationEvent, RunStartedEvent,
    StimulusEvaluatedEvent, StimulusFailedEvent,
    ViewerAbandonedEvent, RunAbortedEvent, RunCompletedEvent
)

__all__ = [
    # Orchestrator
    "PersonaEvaluationOrchestrator",

    # Data models
    "MediaPayload", "Stimulus", "EmotionState", "EvaluationRun",
    "RadarPoint", "TimelineEntry", "Recommendation", "ReportSummary", "Report",

    # Schemas and state
    "ScrollIntent", "RunStatus", "EvaluationState", "ParsedEmotion",
    "parse_emotion_response",

    # Prompting
    "PromptBuilder", "StimulusEvaluator", "describe_state_change",

    # Aggregation
    "friction_index", "radar_data", "timeline", "recommendations", "build_report",

    # Events
    "EvaluationEventBus", "EventLogger", "RunMetrics",
    "EventType", "EvaluationEvent", "RunStartedEvent",
    "StimulusEvaluatedEvent", "StimulusFailedEvent",
    "ViewerAbandonedEvent", "RunAbortedEvent", "RunCompletedEvent",
]
