"""Infrastructure components for the Emotion Engine.

This module contains low-level technical components that provide
foundational capabilities for the evaluation pipeline.
"""

# Oracle infrastructure
from .llm import OpenRouterClient

# Stimulus loading
from .data import load_stimulus_queue, validate_stimulus_queue

__all__ = [
    # Oracle client
    "OpenRouterClient",

    # Frame source
    "load_stimulus_queue", "validate_stimulus_queue",
]
