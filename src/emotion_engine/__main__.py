#!/usr/bin/env python3
"""
Main entry point for the Emotion Engine.
Allows running the package with: python -m emotion_engine <manifest.json>
"""
import json
import os
import sys

from .config import get_config, parse_lenses, Persona, MODELS, ConfigurationError
from .infrastructure.data import load_stimulus_queue
from . import PersonaEvaluationOrchestrator

USAGE = ("Usage: python -m emotion_engine <manifest.json> [--persona=ID | --persona-file=PATH] "
         "[--model=KEY] [--lenses=a,b,c] [--output=report.json] [--json-mode]")


def main():
    """Command-line interface for the evaluation orchestrator."""

    positional = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    if not positional or "--help" in sys.argv:
        print(USAGE)
        sys.exit(0 if "--help" in sys.argv else 1)
    manifest_path = positional[0]

    # Load configuration from environment
    try:
        config = get_config()
    except ConfigurationError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)

    persona_file = None
    output_path = None
    for arg in sys.argv[1:]:
        if arg.startswith("--persona="):
            config.persona_id = arg.split("=", 1)[1]
        elif arg.startswith("--persona-file="):
            persona_file = arg.split("=", 1)[1]
        elif arg.startswith("--model="):
            config.model = arg.split("=", 1)[1]
        elif arg.startswith("--lenses="):
            try:
                config.lenses = parse_lenses(arg.split("=", 1)[1])
            except ConfigurationError as e:
                print(f"❌ {e}")
                sys.exit(1)
        elif arg.startswith("--output="):
            output_path = arg.split("=", 1)[1]
        elif arg == "--json-mode":
            config.use_json_mode = True

    if config.model not in MODELS:
        print(f"❌ Unknown model: {config.model}. Use one of: {', '.join(sorted(MODELS))}")
        sys.exit(1)

    try:
        persona = Persona.from_file(persona_file) if persona_file else config.get_persona()
        stimuli = load_stimulus_queue(manifest_path, config.max_stimuli)
    except ConfigurationError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)

    os.makedirs(config.workdir, exist_ok=True)

    model_info = config.get_model_info()
    print(f"🎭 Persona: {persona.display_name}")
    print(f"🤖 Model: {model_info['name']} ({model_info['id']})")
    print(f"🔍 Lenses: {', '.join(config.lenses)}")
    if config.use_json_mode:
        print("🧾 JSON mode: structured output requested from the model")

    orchestrator = PersonaEvaluationOrchestrator(
        persona=persona,
        api_key=config.api_key,
        model=config.model,
        lenses=config.lenses,
        max_retries=config.max_retries,
        request_timeout=config.request_timeout,
        rate_limit_base_delay=config.rate_limit_base_delay,
        retry_base_delay=config.retry_base_delay,
        use_json_mode=config.use_json_mode,
        inter_stimulus_delay=config.inter_stimulus_delay,
        max_stimuli=config.max_stimuli,
        log_file=config.log_file,
        log_level=config.log_level,
    )

    # Run the evaluation; results are displayed by run_with_report()
    result, report = orchestrator.run_with_report(stimuli)

    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report.as_dict(), f, indent=2)
        print(f"💾 Report saved to: {output_path}")

    if result.is_incomplete:
        sys.exit(2)


if __name__ == "__main__":
    main()
