"""
Sequential persona evaluation orchestrator.
"""
import logging
import time
from datetime import datetime
from typing import Optional, List, Sequence, Callable, Tuple

from .models import Stimulus, EmotionState, EvaluationRun, Report
from .schemas import EvaluationState, RunStatus, ScrollIntent, ParsedEmotion, neutral_scores
from .engine import PromptBuilder, StimulusEvaluator, describe_state_change
from .metrics import build_report
from .events import (
    EvaluationEventBus, EventLogger, RunMetrics,
    RunStartedEvent, StimulusEvaluatedEvent, StimulusFailedEvent,
    ViewerAbandonedEvent, RunAbortedEvent, RunCompletedEvent,
)
from ..infrastructure.llm import OpenRouterClient, OracleResponse, OracleError, AuthError
from ..infrastructure.data import validate_stimulus_queue
from ..utils import setup_logging
from ..config import (
    Persona, ConfigurationError, DEFAULT_MODEL, DEFAULT_LENSES, MAX_RETRIES,
    REQUEST_TIMEOUT, INTER_STIMULUS_DELAY, MAX_STIMULI, DEFAULT_ATTENTION_SECONDS,
    RATE_LIMIT_BASE_DELAY, RETRY_BASE_DELAY,
)

logger = logging.getLogger("orchestrator")


class PersonaEvaluationOrchestrator:
    """
    Walks a stimulus queue strictly in order, one oracle call at a time.

    Each prompt is conditioned on the last successful emotional state, so
    the persona can grow bored, lose patience or recover over the video.
    Per-stimulus oracle failures become degraded states and the run goes on;
    an authentication failure aborts the run with whatever was collected.
    """

    def __init__(self,
                 persona: Persona,
                 api_key: Optional[str] = None,
                 model: str = DEFAULT_MODEL,
                 lenses: Sequence[str] = DEFAULT_LENSES,
                 client: Optional[OpenRouterClient] = None,
                 max_retries: int = MAX_RETRIES,
                 request_timeout: float = REQUEST_TIMEOUT,
                 rate_limit_base_delay: float = RATE_LIMIT_BASE_DELAY,
                 retry_base_delay: float = RETRY_BASE_DELAY,
                 use_json_mode: bool = False,
                 inter_stimulus_delay: float = INTER_STIMULUS_DELAY,
                 max_stimuli: int = MAX_STIMULI,
                 log_file: Optional[str] = None,
                 log_level: str = "DEBUG",
                 sleep: Callable[[float], None] = time.sleep):

        if persona is None:
            raise ConfigurationError("A persona is required")
        if not lenses:
            raise ConfigurationError("At least one emotion lens is required")

        self.persona = persona
        self.model = model
        self.inter_stimulus_delay = inter_stimulus_delay
        self.max_stimuli = max_stimuli
        self.log_file = log_file
        self._sleep = sleep

        if log_file:
            setup_logging(log_file, log_level)

        # Initialize event system
        self.event_bus = EvaluationEventBus()
        self.event_logger = EventLogger()
        self.metrics = RunMetrics()
        self.event_bus.subscribe_all(self.event_logger.handle_event)
        self.event_bus.subscribe_all(self.metrics.handle_event)

        # Initialize oracle client
        if client is None:
            if not api_key:
                raise ConfigurationError("api_key is required when no client is supplied")
            client = OpenRouterClient(
                api_key=api_key,
                model=model,
                max_retries=max_retries,
                timeout=request_timeout,
                rate_limit_base_delay=rate_limit_base_delay,
                retry_base_delay=retry_base_delay,
                use_json_mode=use_json_mode,
                sleep=sleep,
            )
        self.client = client

        self.prompt_builder = PromptBuilder(lenses)
        self.evaluator = StimulusEvaluator(self.client, self.prompt_builder)

    def run(self, stimuli: Sequence[Stimulus]) -> EvaluationRun:
        """
        Evaluate every stimulus in order until the queue ends or the viewer leaves.

        Args:
            stimuli: Ordered StimulusQueue from the frame source

        Returns:
            EvaluationRun with the trajectory and its terminal status

        Raises:
            ConfigurationError: Before any oracle call, for an unusable queue
        """
        validate_stimulus_queue(stimuli, self.max_stimuli)

        run_id = f"{self.persona.id}-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
        state = EvaluationState()
        states: List[EmotionState] = []
        started = time.monotonic()

        self.event_bus.emit(RunStartedEvent(run_id, time.time(), self.persona.id, len(stimuli), self.model))

        print(f"\n🎬 Evaluating {len(stimuli)} stimuli as {self.persona.display_name}")
        if self.log_file:
            print(f"📝 Detailed logs: {self.log_file}")
        print("=" * 50)

        try:
            for position, stimulus in enumerate(stimuli):
                print(f"   [{position + 1}/{len(stimuli)}] {stimulus.timestamp_seconds:.1f}s... ", end="")

                try:
                    parsed, response = self.evaluator.evaluate(self.persona, stimulus, state.previous_state)
                except AuthError as e:
                    print("🔒 auth failed")
                    logger.error("Authentication failed at stimulus %d, aborting run: %s", stimulus.index, e)
                    state.abort(str(e))
                    self.event_bus.emit(RunAbortedEvent(run_id, time.time(), str(e), len(states)))
                    break
                except OracleError as e:
                    cause = getattr(e, "last_error", None) or e
                    print(f"❌ {cause}")
                    logger.error("Stimulus %d failed: %s", stimulus.index, e)
                    emotion = self._degraded_state(stimulus, str(cause), state)
                    states.append(emotion)
                    state.last_entry = emotion
                    self.event_bus.emit(StimulusFailedEvent(run_id, time.time(), stimulus.index, str(cause)))
                else:
                    emotion = self._assemble_state(stimulus, parsed, response, state)
                    states.append(emotion)
                    state.last_entry = emotion
                    state.record_usage(emotion.cost_units, emotion.tokens_used)
                    if not emotion.degraded:
                        state.previous_state = emotion

                    print(self._progress_line(emotion))
                    self.event_bus.emit(StimulusEvaluatedEvent(
                        run_id, time.time(), stimulus.index, dict(emotion.scores),
                        emotion.scroll_intent.value, emotion.cost_units, emotion.tokens_used
                    ))

                    if emotion.has_left:
                        print(f"\n   🚨 SCROLL DETECTED at {stimulus.timestamp_seconds:.1f}s, stopping evaluation")
                        logger.info("Viewer left at stimulus %d (%dms)", stimulus.index, stimulus.timestamp_ms)
                        state.abandon()
                        self.event_bus.emit(ViewerAbandonedEvent(
                            run_id, time.time(), stimulus.index, stimulus.timestamp_ms, emotion.narrative_thought
                        ))
                        break

                # Rate limit protection
                if self.inter_stimulus_delay > 0 and position < len(stimuli) - 1:
                    self._sleep(self.inter_stimulus_delay)

        except Exception as e:
            logger.error("Evaluation run %s failed with error: %s", run_id, e)
            raise

        result = EvaluationRun(
            persona_id=self.persona.id,
            model=self.model,
            status=state.status,
            states=tuple(states),
            stimulus_count=len(stimuli),
            total_cost=state.total_cost,
            total_tokens=state.total_tokens,
            duration_seconds=time.monotonic() - started,
            abort_reason=state.abort_reason,
        )

        if result.status != RunStatus.ABORTED:
            self.event_bus.emit(RunCompletedEvent(
                run_id, time.time(), result.status.value, len(states),
                result.total_cost, result.total_tokens
            ))

        logger.info(
            "Run %s finished: %s, %d/%d states, %d failed, $%.4f, %d tokens",
            run_id, result.status.value, len(states), len(stimuli),
            result.failed_count, result.total_cost, result.total_tokens
        )
        return result

    def run_with_report(self, stimuli: Sequence[Stimulus]) -> Tuple[EvaluationRun, Report]:
        """Run the evaluation and aggregate its trajectory into a report."""
        result = self.run(stimuli)
        report = build_report(result, self.persona.display_name)
        self._display_results(result, report)
        return result, report

    def _assemble_state(self, stimulus: Stimulus, parsed: ParsedEmotion,
                        response: OracleResponse, state: EvaluationState) -> EmotionState:
        """Fill index, timestamp, cost and derived fields around a parsed judgment."""
        degraded = parsed.method == "neutral"
        if not degraded:
            state.cumulative_boredom += parsed.scores.get("boredom", 0.0)

        if stimulus.index == 0 or state.last_entry is None:
            change = "initial"
        else:
            change = describe_state_change(state.last_entry, parsed.scores)

        return EmotionState(
            stimulus_index=stimulus.index,
            timestamp_ms=stimulus.timestamp_ms,
            scores=dict(parsed.scores),
            narrative_thought=parsed.narrative_thought,
            scroll_intent=parsed.scroll_intent,
            attention_remaining_seconds=parsed.attention_remaining_seconds,
            cumulative_boredom=state.cumulative_boredom,
            state_change=change,
            cost_units=response.cost_units,
            tokens_used=response.tokens_used,
            self_reported_change=parsed.self_reported_change,
            parse_method=parsed.method,
            error=parsed.error,
        )

    def _degraded_state(self, stimulus: Stimulus, error: str, state: EvaluationState) -> EmotionState:
        """Neutral placeholder for a stimulus whose oracle call never succeeded."""
        return EmotionState(
            stimulus_index=stimulus.index,
            timestamp_ms=stimulus.timestamp_ms,
            scores=neutral_scores(self.prompt_builder.axes),
            narrative_thought="",
            scroll_intent=ScrollIntent.NO,
            attention_remaining_seconds=DEFAULT_ATTENTION_SECONDS,
            cumulative_boredom=state.cumulative_boredom,
            state_change="initial" if stimulus.index == 0 else "evaluation failed",
            parse_method="neutral",
            failed=True,
            error=error,
        )

    @staticmethod
    def _progress_line(emotion: EmotionState) -> str:
        boredom = emotion.scores.get("boredom")
        excitement = emotion.scores.get("excitement")
        parts = []
        if boredom is not None:
            parts.append(f"B{boredom:g}")
        if excitement is not None:
            parts.append(f"E{excitement:g}")
        if emotion.scroll_intent == ScrollIntent.YES:
            parts.append("⚠️SCROLL")
        if emotion.degraded:
            parts.append("(neutral)")
        parts.append(f"(${emotion.cost_units:.4f})")
        return " ".join(parts)

    def _display_results(self, result: EvaluationRun, report: Report):
        """Display final run results."""
        print("\n" + "=" * 50)
        if result.status == RunStatus.ABORTED:
            print("🚫 RUN ABORTED")
            print("=" * 50)
            print(f"🛑 Reason: {result.abort_reason}")
        elif result.status == RunStatus.ABANDONED:
            print("🚨 VIEWER ABANDONED")
            print("=" * 50)
            left = result.abandonment_state
            print(f"⏱️  Scrolled away at {left.timestamp_ms / 1000:.1f}s: \"{left.narrative_thought}\"")
        else:
            print("🎯 EVALUATION COMPLETE")
            print("=" * 50)

        print(f"📊 Friction Index: {report.friction_index}/100")
        print(f"🎞️  States: {len(result.states)}/{result.stimulus_count} ({result.failed_count} failed)")
        print(f"💰 Total cost: ${result.total_cost:.4f} ({result.total_tokens} tokens)")
        for rec in report.recommendations:
            print(f"💡 [{rec.severity}] {rec.issue}: {rec.action}")

        if self.log_file:
            print(f"📁 Full details logged to: {self.log_file}")

    def get_metrics(self):
        """Get current session metrics."""
        return self.metrics.get_metrics()

    def reset_metrics(self):
        """Reset session metrics."""
        self.metrics.reset()
