"""
Emotion Engine: synthetic-viewer evaluation of short-form video.

Walks a video's frames in order as a persona, asks a vision model how the
viewer feels at each moment, and aggregates the trajectory into a report.
"""

__version__ = "1.0.0"

# Main entry points
from .evaluation.orchestrator import PersonaEvaluationOrchestrator
from .evaluation.models import EmotionState, EvaluationRun, Report

__all__ = ["PersonaEvaluationOrchestrator", "EmotionState", "EvaluationRun", "Report"]
