import re
import json
import logging
from typing import Optional, Tuple

from stgtrade.core.types import AgentRole, SentimentMetrics

logger = logging.getLogger(__name__)

SCORE_PATTERN = re.compile(r"\[SCORE:\s*(\d+)\]", re.IGNORECASE)
# Non-greedy object body, closed by the first "}]"
SENTIMENT_METRICS_PATTERN = re.compile(r"\[SENTIMENT_METRICS:\s*(\{[\s\S]*?\})\]", re.IGNORECASE)


def extract_score(text: Optional[str]) -> Optional[int]:
    """First `[SCORE: N]` token as an int, or None."""
    if not text:
        return None
    match = SCORE_PATTERN.search(text)
    if match is None:
        return None
    return int(match.group(1))


def extract_sentiment_metrics(text: Optional[str]) -> Optional[SentimentMetrics]:
    """First `[SENTIMENT_METRICS: {...}]` token parsed into SentimentMetrics.

    Malformed JSON or a block missing a numeric field is a silent miss (None).
    """
    if not text:
        return None
    match = SENTIMENT_METRICS_PATTERN.search(text)
    if match is None:
        return None
    raw = match.group(1)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("Ignoring unparseable sentiment metrics block: %s", e)
        return None
    if not isinstance(payload, dict):
        logger.debug("Ignoring non-object sentiment metrics block")
        return None
    try:
        return SentimentMetrics.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Sentiment metrics block has unexpected shape: %s", e)
        return None


class SignalExtractor:
    """Applies the per-role extraction rule to a finished stage's text.

    Every role may carry a score; only the sentiment analyst's metrics are kept.
    """

    METRICS_ROLES = frozenset({AgentRole.SENTIMENT_ANALYST})

    def extract(self, role: AgentRole, text: str) -> Tuple[Optional[int], Optional[SentimentMetrics]]:
        score = extract_score(text)
        metrics = extract_sentiment_metrics(text) if role in self.METRICS_ROLES else None
        return score, metrics
