"""
Kindred — LLMClient: Gemini completion wrapper

Thin text-completion client used by the compatibility scorer:

- Multi-model fallback chain with exponential-backoff retry (tenacity)
- Optional JSON mode (``response_mime_type="application/json"``)
- Payment / quota failures classified as ``LLMQuotaExceededError`` so the
  caller can apply its degraded policy
- Robust JSON response parsing with multiple fallback strategies

Model fallback chain:
    GEMINI_MODEL_PRIMARY -> GEMINI_MODEL_FALLBACK -> GEMINI_MODEL_STABLE
"""

from __future__ import annotations

import json
import re

import google.generativeai as genai
import structlog
from google.generativeai.types import HarmBlockThreshold, HarmCategory
from json_repair import repair_json
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.exceptions import LLMError, LLMQuotaExceededError, LLMResponseError

logger = structlog.get_logger("kindred.llm_service")

_MAX_ATTEMPTS = 4

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

# Substrings that identify an exhausted paid tier.  Gemini rate limits
# ("429 Resource has been exhausted (e.g. check quota).") are not among them.
_QUOTA_MARKERS: tuple[str, ...] = (
    "402",
    "payment required",
    "billing",
    "insufficient credits",
)


def is_quota_error(exc: BaseException) -> bool:
    """Return True if the exception signals a payment or quota failure."""
    if isinstance(exc, LLMQuotaExceededError):
        return True
    exc_str = str(exc).lower()
    return any(marker in exc_str for marker in _QUOTA_MARKERS)


def is_retryable_api_error(exc: BaseException) -> bool:
    """Return True if the exception signals a retryable Gemini API error.

    Retries HTTP 429 (rate limit) and 500/503 (server-side transient)
    errors.  Quota exhaustion is excluded: retrying a paid-tier failure
    only delays the degraded fallback.
    """
    if is_quota_error(exc):
        return False

    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True

    return False


def parse_json_response(text: str) -> dict:
    """Parse a JSON object from raw LLM output.

    Pipeline:
    1. Direct ``json.loads`` on the raw text
    2. Markdown code-fence extraction
    3. First ``{`` to last ``}`` extraction
    4. ``json_repair`` on the cleaned text, then on the brace candidate

    Raises
    ------
    LLMResponseError
        If no strategy yields a JSON object.
    """
    if not text or not text.strip():
        raise LLMResponseError("Empty response text, cannot parse JSON")

    cleaned = text.strip()

    try:
        result = json.loads(cleaned)
        if isinstance(result, dict):
            return result
    except (json.JSONDecodeError, TypeError):
        pass

    fence_match = _FENCE_PATTERN.search(cleaned)
    if fence_match:
        cleaned = fence_match.group(1).strip()
        try:
            result = json.loads(cleaned)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, TypeError):
            pass

    candidate = None
    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    if first_brace >= 0 and last_brace > first_brace:
        candidate = cleaned[first_brace : last_brace + 1]
        try:
            result = json.loads(candidate)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, TypeError):
            pass

    for source in (cleaned, candidate):
        if source is None:
            continue
        try:
            result = json.loads(repair_json(source))
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.debug("json_repair_failed", error=str(exc))
            continue
        if isinstance(result, dict):
            logger.info("json_parsed_via_repair", original_preview=cleaned[:80])
            return result

    raise LLMResponseError(
        f"Failed to parse JSON from LLM response. Preview: {cleaned[:200]}"
    )


class LLMClient:
    """Gemini-backed text completion with a model fallback chain."""

    def __init__(self) -> None:
        settings = get_settings()

        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._model_chain: list[str] = [
            settings.GEMINI_MODEL_PRIMARY,
            settings.GEMINI_MODEL_FALLBACK,
            settings.GEMINI_MODEL_STABLE,
        ]
        self._default_temperature = settings.LLM_DEFAULT_TEMPERATURE
        self._default_max_tokens = settings.LLM_DEFAULT_MAX_TOKENS

        # Profile text legitimately discusses sexuality; blocking it would
        # turn every carnal-score prompt into an empty response.
        self._safety_settings = {
            HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
        }

        logger.info("llm_client_initialised", model_chain=self._model_chain)

    # ── Public API ────────────────────────────────────────────────────────

    async def complete(
        self,
        prompt: str,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the completion text for ``prompt``.

        Each model in the chain is tried in turn.  A quota failure stops
        the chain immediately since the fallback models share billing.

        Raises
        ------
        LLMQuotaExceededError
            The provider reported a payment or quota failure.
        LLMError
            Every model in the chain failed.
        """
        generation_config = genai.GenerationConfig(
            temperature=(
                temperature if temperature is not None else self._default_temperature
            ),
            max_output_tokens=max_tokens or self._default_max_tokens,
            response_mime_type="application/json" if json_mode else "text/plain",
        )

        last_exception: BaseException | None = None
        for model_name in self._model_chain:
            try:
                return await self._call_with_retry(
                    model_name, prompt, generation_config
                )
            except Exception as exc:
                if is_quota_error(exc):
                    logger.warning("llm_quota_exceeded", model=model_name, error=str(exc))
                    raise LLMQuotaExceededError(str(exc)) from exc
                last_exception = exc
                logger.warning(
                    "llm_model_failed_trying_next",
                    model=model_name,
                    error=str(exc),
                )

        raise LLMError(f"All models in the chain failed. Last error: {last_exception}")

    # ── Internals ─────────────────────────────────────────────────────────

    async def _call_with_retry(
        self,
        model_name: str,
        prompt: str,
        generation_config: "genai.GenerationConfig",
    ) -> str:
        """Call one Gemini model with tenacity retry on transient errors.

        Exponential backoff: 1s initial wait, 2x multiplier, 30s max wait.
        """
        model = genai.GenerativeModel(model_name)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable_api_error),
                stop=stop_after_attempt(_MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=1, min=1, max=30, exp_base=2),
                reraise=True,
            ):
                with attempt:
                    logger.debug(
                        "llm_call_attempt",
                        model=model_name,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    response = await model.generate_content_async(
                        prompt,
                        safety_settings=self._safety_settings,
                        generation_config=generation_config,
                    )

                    if not response.candidates:
                        raise ValueError(
                            f"Gemini returned no candidates for model "
                            f"{model_name}. Prompt feedback: "
                            f"{response.prompt_feedback}"
                        )

                    text = response.text
                    if not text or not text.strip():
                        raise ValueError(
                            f"Gemini returned empty text for model {model_name}"
                        )

                    return text
        except RetryError as retry_err:
            logger.error(
                "llm_retry_exhausted",
                model=model_name,
                attempts=_MAX_ATTEMPTS,
                last_error=str(retry_err.last_attempt.exception()),
            )
            raise retry_err.last_attempt.exception() from retry_err
