"""Ensemble sentiment scoring for reviews without a usable rating.

Every configured model is invoked concurrently with a per-call
timeout and bounded randomized-backoff retry; a model exhausting its
retries counts as not responding. Votes are resolved by
resolve_consensus, which keeps the outcome deterministic for a given
set of votes.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from src.etl.aggregation.schemas import (
    CanonicalReview,
    EnsembleVote,
    LLMScore,
    Production,
    ReviewShard,
)
from src.etl.ensemble.classifiers import ClassifierError, ReviewContext, SentimentModel
from src.etl.ensemble.consensus import resolve_consensus
from src.etl.errors import EnsembleUnavailable, ErrorRecord
from src.etl.normalization.ratings import clamp_score, derive_polarity

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MAX_MODELS = 3
"""Models taking part in one ensemble vote."""

DEFAULT_TIMEOUT_SECONDS = 30.0
"""Per-call model timeout."""

DEFAULT_MAX_ATTEMPTS = 3
"""Attempts per model call."""

RETRY_WAIT_MAX_SECONDS = 8.0
"""Upper bound of the randomized exponential backoff."""


# =============================================================================
# SCORING STATISTICS
# =============================================================================


@dataclass
class EnsembleStats:
    """Statistics for ensemble scoring.

    Attributes:
        attempted: Reviews sent to the ensemble.
        scored: Reviews that received an ensemble score.
        unavailable: Reviews left unrated (no model responded).
        needs_review: Scores flagged for human review.
        by_consensus: Scored reviews per consensus kind.
        model_failures: Model calls that exhausted retries.
    """

    attempted: int = 0
    scored: int = 0
    unavailable: int = 0
    needs_review: int = 0
    by_consensus: dict[str, int] = field(default_factory=dict)
    model_failures: int = 0

    def log_summary(self) -> None:
        """Log ensemble statistics."""
        logger.info(
            "Ensemble: %d attempted, %d scored, %d unavailable, %d need review, "
            "%d model failures (%s)",
            self.attempted,
            self.scored,
            self.unavailable,
            self.needs_review,
            self.model_failures,
            ", ".join(f"{k}={v}" for k, v in sorted(self.by_consensus.items())),
        )


# =============================================================================
# ENSEMBLE SCORER
# =============================================================================


class EnsembleScorer:
    """Scores review texts with a multi-model ensemble.

    Attributes:
        models: Classifier models (at most three are used).
        timeout_seconds: Per-call timeout.
        max_attempts: Attempts per model call.
        stats: Scoring statistics.
    """

    def __init__(
        self,
        models: list[SentimentModel],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_wait_max: float = RETRY_WAIT_MAX_SECONDS,
    ) -> None:
        """Initialize scorer.

        Args:
            models: Classifier models.
            timeout_seconds: Per-call timeout.
            max_attempts: Attempts per model call.
            retry_wait_max: Backoff ceiling in seconds.
        """
        if len(models) > MAX_MODELS:
            logger.warning("%d models configured, using the first %d", len(models), MAX_MODELS)
        self.models = list(models[:MAX_MODELS])
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_wait_max = retry_wait_max
        self.stats = EnsembleStats()

    # =========================================================================
    # Public API
    # =========================================================================

    async def score_text(
        self,
        text: str,
        context: ReviewContext,
        production_id: str | None = None,
    ) -> LLMScore:
        """Score one review text.

        Args:
            text: Review text.
            context: Production and byline context.
            production_id: Production for error reporting.

        Returns:
            Consensus LLMScore.

        Raises:
            EnsembleUnavailable: If no model produced a vote.
        """
        results = await asyncio.gather(
            *(self._call_model(model, text, context) for model in self.models)
        )
        votes = [vote for vote in results if vote is not None]
        return resolve_consensus(votes, production_id)

    async def score_review(
        self,
        review: CanonicalReview,
        production: Production,
    ) -> CanonicalReview:
        """Fill in an ensemble score on an unrated review.

        The previous ensemble result, if any, is replaced. The review's
        designation bonus is added on top of the consensus score.

        Args:
            review: Review to score (modified in place).
            production: Production reviewed.

        Returns:
            The scored review.

        Raises:
            EnsembleUnavailable: If the review has no text or no model
                responded; the review is flagged and left unrated.
        """
        text = review.text
        self.stats.attempted += 1
        try:
            if not text or not text.strip():
                raise EnsembleUnavailable(
                    f"No review text for {review.key.as_string()}", production.id
                )
            result = await self.score_text(text, self._context(review, production), production.id)
        except EnsembleUnavailable:
            self.stats.unavailable += 1
            review.add_flag(EnsembleUnavailable.code)
            raise

        self._apply(review, result)
        self.stats.scored += 1
        self.stats.by_consensus[result.consensus] = (
            self.stats.by_consensus.get(result.consensus, 0) + 1
        )
        if result.needs_review:
            self.stats.needs_review += 1
        return review

    async def score_shard(self, shard: ReviewShard, rescore: bool = False) -> list[ErrorRecord]:
        """Score every review in a shard that lacks an explicit rating.

        Args:
            shard: Shard to update in place.
            rescore: Also rescore reviews already scored by the ensemble.

        Returns:
            Error records for reviews left unrated.
        """
        errors: list[ErrorRecord] = []
        for review in shard.reviews:
            if not self.needs_scoring(review, rescore):
                continue
            try:
                await self.score_review(review, shard.production)
            except EnsembleUnavailable as e:
                logger.warning("%s: %s", review.key.as_string(), e.message)
                errors.append(ErrorRecord.from_exception(e, review.key.as_string()))
        return errors

    @staticmethod
    def needs_scoring(review: CanonicalReview, rescore: bool = False) -> bool:
        """Check if a review should go through the ensemble."""
        if review.score_source == "unrated":
            return True
        return rescore and review.score_source == "ensemble"

    def reset(self) -> None:
        """Reset statistics for a new run."""
        self.stats = EnsembleStats()

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _call_model(
        self,
        model: SentimentModel,
        text: str,
        context: ReviewContext,
    ) -> EnsembleVote | None:
        """Invoke one model with timeout and retries.

        Returns:
            The model's vote, or None if it declined, failed or
            exhausted its retries.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((ClassifierError, TimeoutError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(multiplier=0.5, max=self.retry_wait_max),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(
                        model.classify(text, context),
                        timeout=self.timeout_seconds,
                    )
        except RetryError as e:
            self.stats.model_failures += 1
            logger.warning(
                "%s: no response after %d attempts (%s)",
                model.name,
                self.max_attempts,
                e.last_attempt.exception(),
            )
        except Exception as e:
            self.stats.model_failures += 1
            logger.error("%s: unexpected classifier error: %s", model.name, e)
        return None

    @staticmethod
    def _context(review: CanonicalReview, production: Production) -> ReviewContext:
        """Build prompt context for a review."""
        return ReviewContext(
            production_title=production.title,
            outlet_name=review.outlet_name or review.outlet_id,
            critic_name=review.critic_name,
        )

    @staticmethod
    def _apply(review: CanonicalReview, result: LLMScore) -> None:
        """Write an ensemble result onto a review."""
        score = clamp_score(result.score + review.designation_bonus)
        review.llm_score = result
        review.base_score = result.score
        review.score = score
        review.bucket = result.bucket
        review.polarity = derive_polarity(score)
        review.score_source = "ensemble"
        review.remove_flag(EnsembleUnavailable.code)
