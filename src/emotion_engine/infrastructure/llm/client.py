"""
OpenRouter REST client for oracle evaluations.
"""
import json
import time
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable

import requests

from ...config import (
    OPENROUTER_BASE_URL, HTTP_REFERER, X_TITLE, DEFAULT_MODEL, TEMPERATURE,
    MAX_OUTPUT_TOKENS, MAX_RETRIES, REQUEST_TIMEOUT, RATE_LIMIT_BASE_DELAY,
    RETRY_BASE_DELAY, ConfigurationError, get_model_info,
)

logger = logging.getLogger("llm_client")


class OracleError(Exception):
    """Base class for oracle call failures."""


class AuthError(OracleError):
    """Credentials were rejected; every later call would fail the same way."""


class RateLimited(OracleError):
    """The oracle asked us to slow down."""


class TransientError(OracleError):
    """Timeouts, connection drops, server errors or malformed responses."""


class ExhaustedRetries(OracleError):
    """All attempts failed; ``last_error`` holds the final underlying error."""

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True)
class OracleResponse:
    """Raw oracle text plus token accounting for one call."""
    raw_text: str
    tokens_used: int = 0
    cost_units: float = 0.0
    model: str = ""


def classify_error(status_code: Optional[int], message: str) -> OracleError:
    """Map an HTTP status (or error-envelope code) to the oracle error taxonomy."""
    if status_code in (401, 403):
        return AuthError(message)
    if status_code == 429:
        return RateLimited(message)
    return TransientError(message)


def _token_count(usage: Dict[str, Any], key: str) -> int:
    """Read one usage counter; anything that is not a non-negative number counts as 0."""
    value = usage.get(key)
    if isinstance(value, bool):
        return 0
    try:
        count = int(value or 0)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring non-numeric usage %s=%r", key, value)
        return 0
    return max(0, count)


class OpenRouterClient:
    """REST-based client for OpenRouter chat completions with retry/backoff."""

    def __init__(self,
                 api_key: str,
                 model: str = DEFAULT_MODEL,
                 base_url: str = OPENROUTER_BASE_URL,
                 max_retries: int = MAX_RETRIES,
                 timeout: float = REQUEST_TIMEOUT,
                 rate_limit_base_delay: float = RATE_LIMIT_BASE_DELAY,
                 retry_base_delay: float = RETRY_BASE_DELAY,
                 temperature: float = TEMPERATURE,
                 max_output_tokens: int = MAX_OUTPUT_TOKENS,
                 use_json_mode: bool = False,
                 sleep: Callable[[float], None] = time.sleep):
        if not api_key:
            raise ConfigurationError("api_key is required for oracle calls")
        if max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")

        self.api_key = api_key
        self.model = model
        self.model_info = get_model_info(model)
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.rate_limit_base_delay = rate_limit_base_delay
        self.retry_base_delay = retry_base_delay
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.use_json_mode = use_json_mode
        self._sleep = sleep

    def estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Estimate USD cost from the pricing table (prices are per 1M tokens)."""
        pricing = self.model_info["pricing"]
        return (prompt_tokens / 1_000_000) * pricing["prompt"] + \
               (completion_tokens / 1_000_000) * pricing["completion"]

    def evaluate(self, prompt_text: str, payload=None, system_prompt: Optional[str] = None) -> OracleResponse:
        """
        Send one prompt (plus optional media) to the oracle, retrying per policy.

        Args:
            prompt_text: Full instruction text from the prompt builder
            payload: MediaPayload for the stimulus, or None for text-only calls
            system_prompt: Persona setup sent as a separate system message

        Returns:
            OracleResponse with the raw text and cost accounting

        Raises:
            AuthError: Immediately, without retrying
            ExhaustedRetries: When every attempt failed with a retryable error
        """
        body = self._build_request(prompt_text, payload, system_prompt)
        last_error: Optional[OracleError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return self._post(body)
            except AuthError:
                logger.error("Oracle rejected credentials, not retrying")
                raise
            except RateLimited as e:
                last_error = e
                delay = self.rate_limit_base_delay * attempt
                logger.warning("Rate limited (attempt %d/%d): %s", attempt, self.max_retries, e)
            except TransientError as e:
                last_error = e
                delay = self.retry_base_delay * attempt
                logger.warning("Request failed (attempt %d/%d): %s", attempt, self.max_retries, e)

            if attempt < self.max_retries:
                logger.debug("Backing off %.1fs before retry", delay)
                self._sleep(delay)

        raise ExhaustedRetries(last_error, self.max_retries)

    def _build_request(self, prompt_text: str, payload, system_prompt: Optional[str] = None) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt_text}]
        if payload is not None:
            content.append(self._media_part(payload))

        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})

        body: Dict[str, Any] = {
            "model": self.model_info["id"],
            "messages": messages,
            "temperature": float(self.temperature),
            "max_tokens": int(self.max_output_tokens),
        }
        if self.use_json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    @staticmethod
    def _media_part(payload) -> Dict[str, Any]:
        """Convert a MediaPayload into a chat content part."""
        if payload.kind == "audio":
            return {"type": "input_audio", "input_audio": {"data": payload.data, "format": payload.format}}
        return {"type": "image_url", "image_url": {"url": payload.data_url(), "detail": "high"}}

    def _post(self, body: Dict[str, Any]) -> OracleResponse:
        """Make one HTTP request and translate every failure into an OracleError."""
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": HTTP_REFERER,
            "X-Title": X_TITLE,
        }

        try:
            resp = requests.post(url, headers=headers, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientError(f"Request timeout: {e}") from e
        except requests.RequestException as e:
            raise TransientError(f"Transport error: {e}") from e

        try:
            resp_json = resp.json()
        except ValueError:
            if resp.status_code >= 400:
                raise classify_error(resp.status_code, f"HTTP {resp.status_code}: {resp.text[:200]}")
            raise TransientError(f"Invalid JSON response: {resp.text[:200]}")

        if resp.status_code >= 400:
            raise classify_error(resp.status_code, self._error_message(resp_json, resp.status_code))

        if isinstance(resp_json, dict) and resp_json.get("error"):
            error = resp_json["error"]
            code = error.get("code") if isinstance(error, dict) else None
            try:
                code = int(code) if code is not None else None
            except (TypeError, ValueError):
                code = None
            raise classify_error(code, self._error_message(resp_json, code))

        return self._parse_response(resp_json)

    @staticmethod
    def _error_message(resp_json: Any, status: Optional[int]) -> str:
        if isinstance(resp_json, dict) and isinstance(resp_json.get("error"), dict):
            message = resp_json["error"].get("message")
            if message:
                return str(message)
        return f"HTTP {status}"

    def _parse_response(self, resp_json: Any) -> OracleResponse:
        """Extract choices[0].message.content and usage totals."""
        try:
            text = resp_json["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise TransientError(
                f"Malformed oracle response: {json.dumps(resp_json, separators=(',', ':'))[:200]}"
            )
        if not isinstance(text, str):
            raise TransientError("Oracle message content was not text")

        usage = resp_json.get("usage")
        if not isinstance(usage, dict):
            if usage is not None:
                logger.warning("Ignoring malformed usage block: %r", usage)
            usage = {}
        prompt_tokens = _token_count(usage, "prompt_tokens")
        completion_tokens = _token_count(usage, "completion_tokens")
        total_tokens = _token_count(usage, "total_tokens") or (prompt_tokens + completion_tokens)

        if prompt_tokens or completion_tokens:
            cost = self.estimate_cost(prompt_tokens, completion_tokens)
        else:
            cost = self.estimate_cost(total_tokens, 0)

        logger.debug("Raw oracle output: %r", text)
        return OracleResponse(
            raw_text=text,
            tokens_used=total_tokens,
            cost_units=cost,
            model=str(resp_json.get("model") or self.model_info["id"]),
        )
