"""
Tests for the text analysis pipeline: rule strategies, model response
parsers and the strategy chain.
"""
import logging

from conftest import FakeLLM, MODEL_REPLIES

from todolist.analysis import (
    TextAnalyzer,
    categorize_by_keywords,
    estimate_time_by_rules,
    has_deadline,
    parse_category_response,
    parse_minutes_response,
    parse_priority_response,
    parse_sentiment_response,
    priority_by_keywords,
    run_strategies,
    sentiment_by_lexicon,
)
from todolist.lexicon import score_text
from todolist.schema import Annotation, Category, PriorityLevel


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Category
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCategorizeByKeywords:
    def test_highest_count_wins(self):
        assert categorize_by_keywords("Buy groceries at the store") == Category.SHOPPING

    def test_tie_goes_to_first_declared(self):
        """'email' (Work) and 'mom' (Personal) tie; Work is declared first."""
        assert categorize_by_keywords("email mom") == Category.WORK

    def test_no_keywords_is_personal(self):
        assert categorize_by_keywords("zzz") == Category.PERSONAL

    def test_case_insensitive(self):
        assert categorize_by_keywords("PAY the ELECTRIC BILL") == Category.FINANCE


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Priority
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestPriorityByKeywords:
    def test_urgent_beats_everything(self):
        p = priority_by_keywords("urgent: maybe finish the report whenever, deadline tomorrow")
        assert p.level == PriorityLevel.URGENT
        assert p.score == 4
        assert p.color == "#ff4444"

    def test_high_keyword(self):
        assert priority_by_keywords("Submit tax forms by tomorrow").level == PriorityLevel.HIGH

    def test_date_means_high(self):
        assert priority_by_keywords("Dentist on 3/14").level == PriorityLevel.HIGH
        assert priority_by_keywords("Renew passport in August").level == PriorityLevel.HIGH

    def test_low_keyword(self):
        assert priority_by_keywords("maybe repaint the fence someday").level == PriorityLevel.LOW

    def test_default_normal(self):
        p = priority_by_keywords("water the plants")
        assert p.level == PriorityLevel.NORMAL
        assert p.score == 2

    def test_keywords_match_whole_words(self):
        """'known' contains 'now' but is not an urgency word."""
        assert priority_by_keywords("list known issues").level == PriorityLevel.NORMAL

    def test_decimal_is_not_a_date(self):
        assert not has_deadline("take 1.5 tablets")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sentiment
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSentimentByLexicon:
    def test_positive(self):
        s = sentiment_by_lexicon("Thank grandma, so grateful")
        assert s.mood == "positive"
        assert s.score == 5
        assert s.words == ["thank", "grateful"]

    def test_slightly_positive(self):
        assert sentiment_by_lexicon("thank the neighbors").mood == "slightly positive"

    def test_neutral(self):
        s = sentiment_by_lexicon("water the plants")
        assert s.mood == "neutral"
        assert s.score == 0
        assert s.words == []

    def test_slightly_negative(self):
        assert sentiment_by_lexicon("feeling sad today").mood == "slightly negative"

    def test_negative(self):
        assert sentiment_by_lexicon("terrible awful paperwork").mood == "negative"

    def test_negator_flips_valence(self):
        score, words = score_text("not happy about this")
        assert score == -3
        assert words == ["happy"]

    def test_only_the_negated_occurrence_flips(self):
        score, _ = score_text("happy today, not happy tomorrow")
        assert score == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Time estimate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestEstimateTimeByRules:
    def test_keyword_lookup(self):
        t = estimate_time_by_rules("Send email to the landlord")
        assert t.minutes == 15
        assert t.display == "15m"
        assert t.confidence == "high"

    def test_explicit_number(self):
        t = estimate_time_by_rules("Write 20 page essay")
        assert t.minutes == 20
        assert t.confidence == "high"

    def test_number_out_of_range_ignored(self):
        t = estimate_time_by_rules("Walk 500 steps")
        assert t.minutes == 30
        assert t.confidence == "medium"

    def test_quick_halves_and_rounds(self):
        assert estimate_time_by_rules("quick email").minutes == 8

    def test_quick_floor(self):
        assert estimate_time_by_rules("quick 6 minute stretch").minutes == 5

    def test_long_extends(self):
        assert estimate_time_by_rules("long meeting").minutes == 90

    def test_many_words_extends(self):
        t = estimate_time_by_rules(
            "Prepare the slides and notes for the big client meeting next Monday morning"
        )
        assert t.minutes == 72
        assert t.display == "1h 12m"

    def test_minutes_always_integral(self):
        for text in ["quick email", "long call", "fast study session", "detailed report",
                     "write up three long detailed paragraphs about the quarterly fix list"]:
            assert isinstance(estimate_time_by_rules(text).minutes, int)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Model response parsers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_parse_category_response():
    assert parse_category_response("Finance") == Category.FINANCE
    assert parse_category_response("Category: Shopping.") == Category.SHOPPING
    assert parse_category_response("no idea") == Category.PERSONAL


def test_parse_priority_response():
    assert parse_priority_response("High").level == PriorityLevel.HIGH
    assert parse_priority_response("low priority").level == PriorityLevel.LOW
    assert parse_priority_response("Normal").level == PriorityLevel.NORMAL


def test_parse_sentiment_response():
    assert parse_sentiment_response("Positive").score == 3
    assert parse_sentiment_response("negative").score == -3
    assert parse_sentiment_response("meh").mood == "neutral"


def test_parse_minutes_response_clamps():
    assert parse_minutes_response("About 1000 minutes").minutes == 480
    assert parse_minutes_response("3").minutes == 5
    assert parse_minutes_response("not sure").minutes == 30
    assert parse_minutes_response("90").display == "1h 30m"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Strategy chain / TextAnalyzer
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_run_strategies_falls_through_in_order():
    def broken(text):
        raise RuntimeError("down")

    result = run_strategies("demo", [("first", broken), ("second", str.upper)], "abc", "default")
    assert result == "ABC"


def test_run_strategies_default_when_all_fail():
    def broken(text):
        raise RuntimeError("down")

    assert run_strategies("demo", [("only", broken)], "abc", "default") == "default"


class TestTextAnalyzer:
    def test_model_answers_are_used(self):
        llm = FakeLLM(replies=MODEL_REPLIES)
        annotation = TextAnalyzer(llm).analyze("Buy groceries today")

        assert isinstance(annotation, Annotation)
        assert annotation.category == Category.HEALTH
        assert annotation.priority.level == PriorityLevel.LOW
        assert annotation.sentiment.mood == "positive"
        assert annotation.time_estimate.minutes == 45
        assert len(llm.calls) == 4

    def test_model_failure_falls_back_to_rules(self, caplog):
        llm = FakeLLM()  # every call fails
        with caplog.at_level(logging.WARNING, logger="todolist.analysis"):
            annotation = TextAnalyzer(llm).analyze("Buy groceries today")

        assert annotation.category == Category.SHOPPING
        assert annotation.priority.level == PriorityLevel.URGENT
        assert annotation.time_estimate.minutes == 60
        assert "trying next" in caplog.text

    def test_unconfigured_client_is_skipped(self):
        llm = FakeLLM(replies=MODEL_REPLIES, configured=False)
        annotation = TextAnalyzer(llm).analyze("Pay the phone bill")

        assert llm.calls == []
        assert annotation.category == Category.FINANCE

    def test_no_client_uses_rules(self):
        analyzer = TextAnalyzer()
        assert analyzer.categorize("Finish homework for class") == Category.EDUCATION
        assert analyzer.estimate_time("Finish homework for class").minutes == 60

    def test_partial_model_failure(self):
        """Only the failing operation falls back."""
        llm = FakeLLM(replies={"categoriz": "Work"})
        annotation = TextAnalyzer(llm).analyze("maybe water the plants")

        assert annotation.category == Category.WORK
        assert annotation.priority.level == PriorityLevel.LOW
