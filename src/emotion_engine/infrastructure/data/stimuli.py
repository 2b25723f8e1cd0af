"""
Stimulus queue loading and validation.
Turns a manifest of already-extracted frames/clips into an ordered StimulusQueue.
"""
import os
import json
import base64
import logging
from typing import List, Sequence, Dict, Any

from ...config import ConfigurationError, MAX_STIMULI
from ...evaluation.models import MediaPayload, Stimulus

logger = logging.getLogger("stimuli")

IMAGE_FORMATS = {".jpg": "jpeg", ".jpeg": "jpeg", ".png": "png", ".webp": "webp"}
AUDIO_FORMATS = {".mp3": "mp3", ".wav": "wav", ".ogg": "ogg", ".m4a": "m4a"}


def encode_media_file(path: str) -> MediaPayload:
    """Base64-encode a frame or clip, inferring its kind from the extension."""
    ext = os.path.splitext(path)[1].lower()
    if ext in IMAGE_FORMATS:
        kind, fmt = "image", IMAGE_FORMATS[ext]
    elif ext in AUDIO_FORMATS:
        kind, fmt = "audio", AUDIO_FORMATS[ext]
    else:
        raise ConfigurationError(f"Unsupported media type for {path}")

    try:
        with open(path, "rb") as f:
            data = base64.b64encode(f.read()).decode("ascii")
    except OSError as e:
        raise ConfigurationError(f"Could not read stimulus {path}: {e}") from e

    return MediaPayload(kind=kind, data=data, format=fmt)


def validate_stimulus_queue(stimuli: Sequence[Stimulus], max_stimuli: int = MAX_STIMULI) -> None:
    """
    Check that a queue can be evaluated.

    Raises:
        ConfigurationError: Empty or oversized queue, negative or
            decreasing timestamps, or indices that are not 0..N-1
    """
    if not stimuli:
        raise ConfigurationError("No stimuli provided")
    if len(stimuli) > max_stimuli:
        raise ConfigurationError(f"Too many stimuli ({len(stimuli)}, max {max_stimuli})")

    previous_ts = -1
    for position, stimulus in enumerate(stimuli):
        if stimulus.index != position:
            raise ConfigurationError(
                f"Stimulus at position {position} has index {stimulus.index}"
            )
        if stimulus.timestamp_ms < 0:
            raise ConfigurationError(f"Stimulus {position} has a negative timestamp")
        if stimulus.timestamp_ms < previous_ts:
            raise ConfigurationError(
                f"Timestamps must be non-decreasing (stimulus {position}: "
                f"{stimulus.timestamp_ms}ms after {previous_ts}ms)"
            )
        previous_ts = stimulus.timestamp_ms


def build_stimulus_queue(entries: Sequence[Dict[str, Any]], base_dir: str = ".",
                         max_stimuli: int = MAX_STIMULI) -> List[Stimulus]:
    """Build and validate a queue from manifest entries ({timestamp_ms, path})."""
    stimuli: List[Stimulus] = []
    for position, entry in enumerate(entries):
        if "path" not in entry or "timestamp_ms" not in entry:
            raise ConfigurationError(f"Manifest entry {position} needs 'path' and 'timestamp_ms'")
        try:
            timestamp_ms = int(entry["timestamp_ms"])
        except (TypeError, ValueError):
            raise ConfigurationError(f"Manifest entry {position} has a non-integer timestamp")

        path = entry["path"]
        if not os.path.isabs(path):
            path = os.path.join(base_dir, path)

        stimuli.append(Stimulus(index=position, timestamp_ms=timestamp_ms,
                                payload=encode_media_file(path)))

    validate_stimulus_queue(stimuli, max_stimuli)
    logger.info("Loaded %d stimuli spanning %dms", len(stimuli), stimuli[-1].timestamp_ms)
    return stimuli


def load_stimulus_queue(manifest_path: str, max_stimuli: int = MAX_STIMULI) -> List[Stimulus]:
    """
    Load a StimulusQueue from a JSON manifest.

    The manifest is either a list of entries or ``{"stimuli": [...]}``;
    relative paths are resolved against the manifest's directory.
    """
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read manifest {manifest_path}: {e}") from e

    entries = manifest.get("stimuli") if isinstance(manifest, dict) else manifest
    if not isinstance(entries, list):
        raise ConfigurationError(f"Manifest {manifest_path} has no stimulus list")

    base_dir = os.path.dirname(os.path.abspath(manifest_path))
    return build_stimulus_queue(entries, base_dir, max_stimuli)
