"""
Emotion Engine Configuration System
===================================

This file contains ALL configuration for the persona evaluation pipeline.
- User settings at the top (things users might want to change)
- Internal constants at the bottom (technical defaults)
"""
import json
import os
from dataclasses import dataclass
from typing import Dict, Any, List, Tuple


class ConfigurationError(ValueError):
    """Raised for invalid run configuration before any evaluation call is made."""


# =============================================================================
# USER SETTINGS - Edit these to customize evaluation runs
# =============================================================================

# REQUIRED: Set your OpenRouter API key (or export OPENROUTER_API_KEY)
OPENROUTER_API_KEY = "your-api-key"  # Change this!

# Evaluation settings
DEFAULT_MODEL = "kimi-2.5-vision"
DEFAULT_PERSONA = "impatient-teenager"
DEFAULT_LENSES = ("patience", "boredom", "excitement", "frustration", "clarity")
USE_JSON_MODE = False

# Retry settings
MAX_RETRIES = 2
REQUEST_TIMEOUT = 60.0

# Logging
WORKDIR = "./_runs"
LOG_FILE = "./_runs/evaluation.log"
LOG_LEVEL = "INFO"


# =============================================================================
# PERSONA SYSTEM
# =============================================================================

@dataclass(frozen=True)
class Persona:
    """A viewer archetype the oracle role-plays for a whole run."""
    id: str
    display_name: str
    description: str
    conflict: str
    base_prompt: str

    @classmethod
    def from_preset(cls, persona_id: str) -> 'Persona':
        """Create a persona from the built-in presets."""
        preset = PERSONA_PRESETS.get(persona_id)
        if preset is None:
            known = ", ".join(sorted(PERSONA_PRESETS))
            raise ConfigurationError(f"Unknown persona: {persona_id} (known: {known})")
        return cls(id=persona_id, **preset)

    @classmethod
    def from_file(cls, path: str) -> 'Persona':
        """Load a custom persona definition from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read persona file {path}: {e}") from e

        missing = [k for k in ("id", "display_name", "description", "base_prompt") if not data.get(k)]
        if missing:
            raise ConfigurationError(f"Persona file {path} is missing: {', '.join(missing)}")

        return cls(
            id=str(data["id"]),
            display_name=str(data["display_name"]),
            description=str(data["description"]),
            conflict=str(data.get("conflict", "")),
            base_prompt=str(data["base_prompt"]),
        )


PERSONA_PRESETS: Dict[str, Dict[str, str]] = {
    "impatient-teenager": {
        "display_name": "The Impatient Teenager",
        "description": "A 16-19 year old heavy TikTok/YouTube Shorts consumer with zero tolerance for slow content.",
        "conflict": "Abandons if hook takes >3 seconds",
        "base_prompt": """
You are a 17-year-old Gen Z viewer. You watch 200+ short-form videos per day.

You have ZERO patience for:
- Logo animations or intro sequences
- Slow buildup to the main content
- Corporate speak or buzzwords
- Poor video quality or boring visuals
- Videos that don't get to the point immediately

You will happily scroll away if bored. Be brutally honest.
        """.strip(),
    },
}


# =============================================================================
# INTERNAL CONSTANTS - Don't change these unless you know what you're doing
# =============================================================================

# OpenRouter
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
HTTP_REFERER = "https://opentruth.local"
X_TITLE = "OpenTruth Emotion Engine"
TEMPERATURE = 0.3
MAX_OUTPUT_TOKENS = 4096

# Backoff (seconds, multiplied by the attempt number)
RATE_LIMIT_BASE_DELAY = 2.0
RETRY_BASE_DELAY = 1.0
INTER_STIMULUS_DELAY = 0.2

# Run limits
MAX_STIMULI = 100

# Neutral defaults for anything the oracle fails to report
NEUTRAL_SCORE = 5.0
SCORE_MIN = 0.0
SCORE_MAX = 10.0
DEFAULT_SCROLL_INTENT = "no"
DEFAULT_ATTENTION_SECONDS = 10.0

# Pricing per 1M tokens
MODELS: Dict[str, Dict[str, Any]] = {
    "kimi-2.5-vision": {
        "id": "moonshotai/kimi-k2.5",
        "name": "Kimi K2.5",
        "vision": True,
        "context_window": 256000,
        "pricing": {"prompt": 0.5, "completion": 2.0},
    },
    "claude-3.5-sonnet": {
        "id": "anthropic/claude-3.5-sonnet",
        "name": "Claude 3.5 Sonnet",
        "vision": True,
        "context_window": 200000,
        "pricing": {"prompt": 3.0, "completion": 15.0},
    },
    "gpt-4o": {
        "id": "openai/gpt-4o",
        "name": "GPT-4o",
        "vision": True,
        "context_window": 128000,
        "pricing": {"prompt": 2.5, "completion": 10.0},
    },
    "llama-3.2-vision": {
        "id": "meta-llama/llama-3.2-90b-vision-instruct",
        "name": "Llama 3.2 Vision",
        "vision": True,
        "context_window": 128000,
        "pricing": {"prompt": 0.9, "completion": 0.9},
    },
}

LENS_DESCRIPTIONS: Dict[str, str] = {
    "patience": "How long will you wait before scrolling? (0-10, 10 = very patient)",
    "boredom": "How bored are you right now? (0-10, 10 = extremely bored)",
    "excitement": "How excited/engaged are you? (0-10, 10 = extremely excited)",
    "frustration": "How frustrated are you? (0-10, 10 = extremely frustrated)",
    "clarity": "How clear is what's happening? (0-10, 10 = very clear)",
    "trust": "How much trust do you feel? (0-10, 10 = complete trust)",
    "skepticism": "How skeptical/doubtful are you? (0-10, 10 = extremely skeptical)",
    "anxiety": "How anxious/worried are you? (0-10, 10 = extreme anxiety)",
    "empowerment": "How empowered/in-control do you feel? (0-10, 10 = fully empowered)",
    "confidence": "How confident are you in what you are seeing? (0-10, 10 = very confident)",
}

# Axes where a high value is good for retention
POSITIVE_LENSES = ("excitement", "trust", "empowerment", "confidence")


# =============================================================================
# MAIN CONFIG OBJECT
# =============================================================================

@dataclass
class Config:
    """Main configuration object."""
    api_key: str
    model: str = DEFAULT_MODEL
    persona_id: str = DEFAULT_PERSONA
    lenses: Tuple[str, ...] = DEFAULT_LENSES
    use_json_mode: bool = USE_JSON_MODE
    max_retries: int = MAX_RETRIES
    request_timeout: float = REQUEST_TIMEOUT
    rate_limit_base_delay: float = RATE_LIMIT_BASE_DELAY
    retry_base_delay: float = RETRY_BASE_DELAY
    inter_stimulus_delay: float = INTER_STIMULUS_DELAY
    max_stimuli: int = MAX_STIMULI
    workdir: str = WORKDIR
    log_file: str = LOG_FILE
    log_level: str = LOG_LEVEL

    def get_persona(self) -> Persona:
        """Get the configured persona."""
        return Persona.from_preset(self.persona_id)

    def get_model_info(self) -> Dict[str, Any]:
        """Get pricing and routing information for the configured model."""
        return get_model_info(self.model)


def get_model_info(model_key: str) -> Dict[str, Any]:
    """Look up a model entry, falling back to the default model."""
    return MODELS.get(model_key) or MODELS[DEFAULT_MODEL]


def parse_lenses(value: str) -> Tuple[str, ...]:
    """Parse a comma separated lens list, rejecting unknown lens names."""
    lenses: List[str] = [p.strip().lower() for p in value.split(",") if p.strip()]
    if not lenses:
        raise ConfigurationError("At least one emotion lens is required")
    unknown = [l for l in lenses if l not in LENS_DESCRIPTIONS]
    if unknown:
        raise ConfigurationError(f"Unknown emotion lens(es): {', '.join(unknown)}")
    return tuple(dict.fromkeys(lenses))


def get_config() -> Config:
    """Load configuration."""
    api_key = os.getenv("OPENROUTER_API_KEY") or OPENROUTER_API_KEY
    model = os.getenv("EMOTION_ENGINE_MODEL") or DEFAULT_MODEL
    log_level = os.getenv("EMOTION_ENGINE_LOG_LEVEL") or LOG_LEVEL

    if not api_key or api_key == "your-api-key":
        raise ConfigurationError("Please set OPENROUTER_API_KEY in config.py or as environment variable")

    if model not in MODELS:
        raise ConfigurationError(f"Unknown model: {model} (known: {', '.join(sorted(MODELS))})")

    return Config(api_key=api_key, model=model, log_level=log_level)
