"""
Tests for dashboard statistics and suggestions.
"""
from todolist.analysis import TextAnalyzer
from todolist.insights import build_insights, get_suggestions, sentiment_overview, subtask_completion
from todolist.schema import Sentiment, Todo

ANALYZER = TextAnalyzer()


def todo(text, completed=False, parent=None, todo_id=None):
    t = Todo(user_id="u1", todo_id=todo_id or text, text=text, completed=completed,
             parent_todo_id=parent)
    return t.apply_annotation(ANALYZER.analyze(text))


def scored(score):
    return Todo(user_id="u1", todo_id=str(score), text="x",
                sentiment=Sentiment(mood="", emoji="", color="", score=score))


def test_build_insights_over_incomplete_todos():
    todos = [
        todo("Buy groceries today"),          # Shopping, urgent, 60m
        todo("Buy new shoes"),                # Shopping, normal, 30m
        todo("Pay the phone bill"),           # Finance, normal, 30m
        todo("Study for exam", completed=True),
    ]
    insights = build_insights(todos)

    assert insights["incomplete"] == 3
    assert insights["categories"][0] == ("Shopping", 2)
    assert ("Education", 1) not in insights["categories"]
    assert insights["priorities"] == {"urgent": 1, "high": 0, "normal": 2, "low": 0}
    assert insights["total_time"] == "2h 0m"


def test_categories_limited_to_top_three():
    todos = [todo(t) for t in ["Buy milk", "Buy bread", "Pay bill", "Study maths",
                               "Clean kitchen", "Doctor visit"]]
    assert len(build_insights(todos)["categories"]) == 3


def test_sentiment_overview():
    assert sentiment_overview([scored(3), scored(2)])["message"] == "Great vibes today!"
    assert sentiment_overview([scored(-3), scored(-2)])["mood"] == "stressful"
    assert sentiment_overview([scored(1), scored(-1)])["message"] == "Balanced workload"
    assert sentiment_overview([])["mood"] == "neutral"


def test_subtask_completion():
    todos = [
        todo("Plan party", todo_id="p"),
        todo("Send invites", completed=True, parent="p"),
        todo("Order cake", parent="p"),
        todo("Book venue", completed=True, parent="p"),
        todo("Buy balloons", parent="p"),
    ]
    assert subtask_completion(todos) == 50
    assert subtask_completion([todo("Plan party")]) == 0


class TestSuggestions:
    PREVIOUS = [todo(t) for t in ["Buy milk", "Buy milk", "Call mom", "Pay rent", "Buy bread"]]

    def test_short_input_gives_nothing(self):
        assert get_suggestions("", self.PREVIOUS) == []
        assert get_suggestions("b", self.PREVIOUS) == []

    def test_prefix_matches(self):
        suggestions = get_suggestions("buy mi", self.PREVIOUS)
        assert suggestions[0] == "Buy milk"
        assert suggestions.count("Buy milk") == 1

    def test_typo_matches(self):
        assert "Call mom" in get_suggestions("cal mom", self.PREVIOUS)

    def test_unrelated_input(self):
        assert get_suggestions("quarterly taxes", self.PREVIOUS) == []

    def test_at_most_five(self):
        previous = [todo(f"Buy item {i}") for i in range(8)]
        assert len(get_suggestions("buy item", previous)) == 5
