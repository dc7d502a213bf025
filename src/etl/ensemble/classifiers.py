"""Sentiment classifier models for the scoring ensemble.

Each model reads a review text and commits to a sentiment bucket
first, then a score within that bucket's band. Models reached over
HTTP use an OpenAI-compatible chat-completions endpoint.
"""

import json
import logging
import re
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from src.etl.aggregation.schemas import SENTIMENT_BUCKETS, EnsembleVote
from src.etl.ensemble.buckets import DEFAULT_BAND_WIDTH, build_bands, clamp_to_bucket
from src.settings.ensemble import EnsembleSettings

logger = logging.getLogger(__name__)


class ClassifierError(Exception):
    """Transient classifier failure (timeout, HTTP error); retryable."""

    pass


# =============================================================================
# CONSTANTS
# =============================================================================

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "high": 1.0,
    "medium": 0.7,
    "low": 0.4,
}
"""Verbal model confidence to vote weight."""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

SYSTEM_PROMPT = """You are a theatre critic review classifier.
Read the review and decide how favorable the critic is toward the production.

First choose exactly one bucket, then a score inside that bucket's range:
{bands}

Judge the critic's overall verdict, not plot summary or praise for individual
performers. If the text is not a review of the production (an ad, a listing,
an unrelated article) answer {{"scoreable": false}}.

Answer with JSON only:
{{"bucket": "<bucket>", "score": <integer>, "confidence": "high|medium|low"}}"""
"""System prompt template; {bands} lists the bucket ranges."""


# =============================================================================
# REVIEW CONTEXT
# =============================================================================


@dataclass(frozen=True)
class ReviewContext:
    """Context shown to the model alongside the review text.

    Attributes:
        production_title: Production reviewed.
        outlet_name: Publication.
        critic_name: Critic byline.
    """

    production_title: str
    outlet_name: str = ""
    critic_name: str = ""


# =============================================================================
# MODEL PROTOCOL
# =============================================================================


@runtime_checkable
class SentimentModel(Protocol):
    """A classifier model taking part in the ensemble.

    classify returns a vote, or None when the model declines to score
    the text. It raises ClassifierError (or times out) on transient
    failures, which the scorer retries.
    """

    name: str

    async def classify(self, text: str, context: ReviewContext) -> EnsembleVote | None: ...


# =============================================================================
# RESPONSE PARSING
# =============================================================================


def build_system_prompt(band_width: int = DEFAULT_BAND_WIDTH) -> str:
    """Render the system prompt with the configured bands."""
    bands = build_bands(band_width)
    lines = [f"- {b}: {bands[b].low}-{bands[b].high}" for b in SENTIMENT_BUCKETS]
    return SYSTEM_PROMPT.format(bands="\n".join(lines))


def build_user_prompt(text: str, context: ReviewContext, max_chars: int) -> str:
    """Render the user prompt for one review.

    Args:
        text: Review text (excerpt or full text).
        context: Production and byline context.
        max_chars: Truncation length for the text.

    Returns:
        Prompt string.
    """
    body = text.strip()
    if len(body) > max_chars:
        body = body[:max_chars].rsplit(" ", 1)[0] + " [...]"
    header = f"Production: {context.production_title}"
    if context.outlet_name:
        header += f"\nOutlet: {context.outlet_name}"
    if context.critic_name:
        header += f"\nCritic: {context.critic_name}"
    return f"{header}\n\nReview:\n{body}"


def parse_vote(
    model: str,
    content: str | None,
    band_width: int = DEFAULT_BAND_WIDTH,
) -> EnsembleVote | None:
    """Parse a model answer into a vote.

    Tolerates code fences and surrounding prose. Bucket names are
    case-insensitive; out-of-band scores are clamped into the band.

    Args:
        model: Model identifier.
        content: Raw model answer.
        band_width: Band half-width for clamping.

    Returns:
        EnsembleVote, or None for a rejection or malformed answer.
    """
    if not content:
        return None

    match = _JSON_OBJECT.search(content)
    if not match:
        logger.warning("%s: no JSON object in answer", model)
        return None
    try:
        data: dict[str, Any] = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("%s: malformed JSON answer", model)
        return None

    if data.get("scoreable") is False:
        logger.info("%s: text rejected as not scoreable", model)
        return None

    bucket = _match_bucket(data.get("bucket"))
    if bucket is None:
        logger.warning("%s: unknown bucket %r", model, data.get("bucket"))
        return None

    try:
        score = float(data["score"])
    except (KeyError, TypeError, ValueError):
        score = float(build_bands(band_width)[bucket].anchor)
        logger.info("%s: no usable score, using %s anchor", model, bucket)

    try:
        return EnsembleVote(
            model=model,
            bucket=bucket,
            score=clamp_to_bucket(score, bucket, band_width),
            confidence=_confidence_weight(data.get("confidence")),
        )
    except ValidationError as e:
        logger.warning("%s: invalid vote: %s", model, e)
        return None


def _match_bucket(value: object) -> str | None:
    """Match a bucket name case-insensitively."""
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for bucket in SENTIMENT_BUCKETS:
        if bucket.lower() == wanted:
            return bucket
    return None


def _confidence_weight(value: object) -> float:
    """Convert a verbal or numeric model confidence to a weight."""
    if isinstance(value, int | float):
        return max(0.0, min(1.0, float(value)))
    if isinstance(value, str):
        return CONFIDENCE_WEIGHTS.get(value.strip().lower(), CONFIDENCE_WEIGHTS["medium"])
    return CONFIDENCE_WEIGHTS["medium"]


# =============================================================================
# HTTP CLASSIFIER
# =============================================================================


class ChatCompletionClassifier:
    """Classifier model behind an OpenAI-compatible chat endpoint.

    Usage:
        async with ChatCompletionClassifier("gpt-4o-mini", config) as model:
            vote = await model.classify(text, context)

    Attributes:
        name: Model identifier sent to the endpoint.
    """

    def __init__(
        self,
        name: str,
        config: EnsembleSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize classifier.

        Args:
            name: Model identifier.
            config: Ensemble settings (endpoint, key, timeouts).
            client: Shared HTTP client; one is created if None.
        """
        self.name = name
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._system_prompt = build_system_prompt(config.band_width)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "ChatCompletionClassifier":
        """Enter context and create HTTP client if needed."""
        if self._client is None:
            self._client = self._build_client(self._config)
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Exit context and close an owned HTTP client."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this classifier created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _build_client(config: EnsembleSettings) -> httpx.AsyncClient:
        """Create an HTTP client for the chat endpoint."""
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_seconds,
            headers=headers,
        )

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    async def classify(self, text: str, context: ReviewContext) -> EnsembleVote | None:
        """Classify one review text.

        Args:
            text: Review text.
            context: Production and byline context.

        Returns:
            EnsembleVote, or None when the model declines or answers
            with malformed JSON.

        Raises:
            ClassifierError: On timeout or HTTP failure.
        """
        if self._client is None:
            self._client = self._build_client(self._config)

        payload = {
            "model": self.name,
            "temperature": self._config.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": self._system_prompt},
                {
                    "role": "user",
                    "content": build_user_prompt(text, context, self._config.max_text_chars),
                },
            ],
        }
        content = await self._post(payload)
        return parse_vote(self.name, content, self._config.band_width)

    async def _post(self, payload: dict[str, Any]) -> str | None:
        """Send a chat-completions request and return the answer text.

        Raises:
            ClassifierError: On timeout, transport or HTTP error.
        """
        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            logger.warning("%s: request timeout", self.name)
            raise ClassifierError(f"{self.name} timed out") from e
        except httpx.HTTPError as e:
            raise ClassifierError(f"{self.name} transport error: {e}") from e

        if response.status_code != 200:
            raise ClassifierError(f"{self.name} returned HTTP {response.status_code}")

        try:
            return response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("%s: unexpected response shape", self.name)
            return None


def build_models(
    config: EnsembleSettings,
    client: httpx.AsyncClient | None = None,
) -> list[ChatCompletionClassifier]:
    """Build HTTP classifiers for every configured model.

    Args:
        config: Ensemble settings.
        client: Optional shared HTTP client.

    Returns:
        Up to three classifiers.
    """
    return [ChatCompletionClassifier(name, config, client) for name in config.model_names]
