"""Tests for score and sentiment metrics extraction."""
from stgtrade.core.types import AgentRole, SentimentMetrics
from stgtrade.calculators.signal_extractor import SignalExtractor, extract_score, extract_sentiment_metrics

METRICS_TEXT = '[SENTIMENT_METRICS: {"score":0.4,"confidence":0.8,"intensity":3,"decay":0.1,"disagreement":0.2}]'


class TestExtractScore:

    def test_case_insensitive_tag(self):
        assert extract_score("... [Score: 87] ...") == 87

    def test_first_match_wins(self):
        assert extract_score("[SCORE: 12] later [SCORE: 99]") == 12

    def test_whitespace_after_colon_is_optional(self):
        assert extract_score("[score:5]") == 5

    def test_absent(self):
        assert extract_score("no tag here") is None
        assert extract_score("[SCORE: high]") is None
        assert extract_score("") is None
        assert extract_score(None) is None


class TestExtractSentimentMetrics:

    def test_parses_exact_object(self):
        metrics = extract_sentiment_metrics(METRICS_TEXT)
        assert metrics == SentimentMetrics(score=0.4, confidence=0.8, intensity=3.0, decay=0.1, disagreement=0.2)

    def test_embedded_in_prose_and_multiline(self):
        text = (
            "Summary of the tape.\n[sentiment_metrics: {\n  \"score\": -0.3,\n  \"confidence\": 0.5,\n"
            "  \"intensity\": 7,\n  \"decay\": 0.4,\n  \"disagreement\": 0.6\n}]\nEnd."
        )
        metrics = extract_sentiment_metrics(text)
        assert metrics.score == -0.3
        assert metrics.intensity == 7.0

    def test_invalid_json_is_a_silent_miss(self):
        assert extract_sentiment_metrics("[SENTIMENT_METRICS: {invalid}]") is None

    def test_missing_field_is_a_silent_miss(self):
        assert extract_sentiment_metrics('[SENTIMENT_METRICS: {"score": 0.1, "confidence": 0.5}]') is None

    def test_non_numeric_field_is_a_silent_miss(self):
        text = '[SENTIMENT_METRICS: {"score":"high","confidence":0.8,"intensity":3,"decay":0.1,"disagreement":0.2}]'
        assert extract_sentiment_metrics(text) is None

    def test_absent(self):
        assert extract_sentiment_metrics("nothing to see") is None
        assert extract_sentiment_metrics(None) is None


class TestSignalExtractor:

    def test_metrics_kept_only_for_sentiment_analyst(self):
        extractor = SignalExtractor()
        text = f"[SCORE: 65]\n{METRICS_TEXT}"

        score, metrics = extractor.extract(AgentRole.SENTIMENT_ANALYST, text)
        assert score == 65
        assert metrics is not None

        score, metrics = extractor.extract(AgentRole.FUNDAMENTAL_ANALYST, text)
        assert score == 65
        assert metrics is None

    def test_nothing_found(self):
        assert SignalExtractor().extract(AgentRole.BULL_RESEARCHER, "plain prose") == (None, None)
