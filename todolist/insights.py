"""
Dashboard statistics over a user's todos, and "did you mean" suggestions
from previously entered todo texts.
"""
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, List, Tuple

from .schema import PriorityLevel, Todo
from .todos import total_estimated_time

SUGGESTION_THRESHOLD = 0.6
MAX_SUGGESTIONS = 5
TOP_CATEGORIES = 3


def category_stats(todos: Iterable[Todo]) -> List[Tuple[str, int]]:
    """(category, count) pairs, most common first."""
    stats: Dict[str, int] = {}
    for todo in todos:
        if todo.category is None:
            continue
        stats[todo.category.value] = stats.get(todo.category.value, 0) + 1
    # sorted() is stable: equal counts keep first-seen order
    return sorted(stats.items(), key=lambda kv: kv[1], reverse=True)


def priority_stats(todos: Iterable[Todo]) -> Dict[str, int]:
    stats = {level.value: 0 for level in PriorityLevel}
    for todo in todos:
        if todo.priority is not None:
            stats[todo.priority.level.value] += 1
    return stats


def sentiment_overview(todos: List[Todo]) -> Dict[str, Any]:
    if not todos:
        return {"mood": "neutral", "message": "", "average": 0.0}
    avg = sum(t.sentiment.score if t.sentiment else 0 for t in todos) / len(todos)
    if avg > 1:
        mood, message = "positive", "Great vibes today!"
    elif avg < -1:
        mood, message = "stressful", "Challenging tasks ahead"
    else:
        mood, message = "balanced", "Balanced workload"
    return {"mood": mood, "message": message, "average": round(avg, 2)}


def subtask_completion(todos: Iterable[Todo]) -> int:
    """Percentage of subtasks completed, 0 when there are none."""
    subtasks = [t for t in todos if t.is_subtask]
    if not subtasks:
        return 0
    done = sum(1 for t in subtasks if t.completed)
    return round(done * 100 / len(subtasks))


def build_insights(todos: List[Todo]) -> Dict[str, Any]:
    """Everything the insights panel shows, computed over incomplete todos."""
    incomplete = [t for t in todos if not t.completed]
    return {
        "incomplete": len(incomplete),
        "categories": category_stats(incomplete)[:TOP_CATEGORIES],
        "priorities": priority_stats(incomplete),
        "sentiment": sentiment_overview(incomplete),
        "total_time": total_estimated_time(incomplete),
        "subtask_completion": subtask_completion(todos),
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Suggestions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _similarity(query: str, candidate: str) -> float:
    """
    Best of whole-string ratio and ratio against word windows of the
    query's length, so a short query can match the start of a long todo.
    """
    if query in candidate:
        return 1.0
    best = SequenceMatcher(None, query, candidate).ratio()
    words = candidate.split()
    width = max(1, len(query.split()))
    for i in range(len(words)):
        window = " ".join(words[i:i + width])
        best = max(best, SequenceMatcher(None, query, window).ratio())
    return best


def get_suggestions(current_text: str, previous_todos: Iterable[Todo]) -> List[str]:
    """Up to five previous todo texts similar to what is being typed."""
    if not current_text or len(current_text) < 2:
        return []
    query = current_text.strip().lower()

    scored: List[Tuple[float, str]] = []
    seen = set()
    for todo in previous_todos:
        key = todo.text.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        score = _similarity(query, key)
        if score >= SUGGESTION_THRESHOLD:
            scored.append((score, todo.text))

    scored.sort(key=lambda s: s[0], reverse=True)
    return [text for _, text in scored[:MAX_SUGGESTIONS]]
