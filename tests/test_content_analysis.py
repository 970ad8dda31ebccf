import pytest

from recall.models import MemoryType, Sentiment
from recall.services.content_analysis import ContentAnalyzer, estimate_tokens


def test_workout_request_is_episodic_and_uncompressed():
    analyzer = ContentAnalyzer()
    text = "I want a 30 minute upper body strength workout"

    analysis = analyzer.analyze(text, is_query=True)

    assert analyzer.classify(analysis, text, is_query=True) == MemoryType.episodic
    assert analysis.compressed == text
    assert analysis.is_request is True
    assert analysis.inferred_intent == "request"
    assert 0.0 <= analysis.importance <= 1.0


def test_keywords_ranked_by_frequency_without_stop_words():
    analyzer = ContentAnalyzer()
    text = "Squats and squats, then deadlifts. Squats with row and deadlifts."

    analysis = analyzer.analyze(text, is_query=False)

    assert analysis.keywords == ["squats", "deadlifts"]


def test_concepts_capped_in_order_of_appearance():
    analyzer = ContentAnalyzer()
    text = "Strength training improves muscle endurance and database performance tuning"

    analysis = analyzer.analyze(text, is_query=False)

    assert analysis.concepts == ["strength", "training", "muscle", "endurance", "database"]
    assert analysis.topic == "strength"


def test_query_bonus_raises_importance():
    analyzer = ContentAnalyzer()
    text = "Plan a progressive overload cycle for bench press"

    as_query = analyzer.analyze(text, is_query=True)
    as_response = analyzer.analyze(text, is_query=False)

    assert as_query.importance - as_response.importance == pytest.approx(0.2)
    assert as_response.inferred_intent == "response"


def test_sentiment_word_lists():
    analyzer = ContentAnalyzer()

    assert analyzer.analyze("This plan was great and really helpful", False).sentiment == Sentiment.positive
    assert analyzer.analyze("My knee pain is a real problem", False).sentiment == Sentiment.negative
    assert analyzer.analyze("Rest day tomorrow", False).sentiment == Sentiment.neutral


def test_short_text_over_char_limit_is_truncated_head_and_tail():
    analyzer = ContentAnalyzer()
    text = "steady " * 45

    compressed = analyzer.compress(text)

    assert " ... " in compressed
    assert len(compressed) < len(text)


def test_long_text_uses_aggressive_compression():
    analyzer = ContentAnalyzer()
    filler = "Athletes often chat about the weather and weekend plans between the sets today."
    sentences = (
        ["The training plan starts with a long warm up routine for every athlete."]
        + [filler] * 15
        + ["The key point is progressive overload for strength."]
        + [filler] * 15
        + ["Finish with a short cooldown walk."]
    )
    text = " ".join(sentences)
    assert estimate_tokens(text) >= 200

    analysis = analyzer.analyze(text, is_query=False)

    assert "progressive overload" in analysis.compressed
    assert "weather" not in analysis.compressed
    assert "cooldown walk" in analysis.compressed
    assert analysis.compressed_token_count < analysis.token_count
    assert analysis.compression_ratio < 0.5


def test_classification_rule_order():
    analyzer = ContentAnalyzer()
    cases = [
        ("Strength training builds muscle endurance.", MemoryType.semantic),
        ("Sounds good, thanks!", MemoryType.working),
        ("Remember to hydrate well before and after each long run outside.", MemoryType.short_term),
        ("How many sets should I do?", MemoryType.episodic),
    ]
    for text, expected in cases:
        is_query = expected == MemoryType.episodic
        analysis = analyzer.analyze(text, is_query=is_query)
        assert analyzer.classify(analysis, text, is_query=is_query) == expected, text


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
