"""
Data infrastructure for loading stimulus queues.
"""

from .stimuli import (
    build_stimulus_queue, encode_media_file, load_stimulus_queue, validate_stimulus_queue
)

__all__ = [
    'build_stimulus_queue',
    'encode_media_file',
    'load_stimulus_queue',
    'validate_stimulus_queue',
]
