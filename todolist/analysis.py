"""
Text analysis pipeline: category, priority, sentiment and time estimate.

Each operation is an ordered list of strategies. The hosted model is tried
first; the keyword/lexicon rules always answer, so an operation never fails,
only its accuracy varies.

Can be used from:
  - the HTTP server (todo create / edit / re-analysis)
  - the vision pipeline (one call per extracted line)
  - tests, with a fake model client
"""
import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .lexicon import score_text
from .schema import (
    Annotation,
    Category,
    Priority,
    PriorityLevel,
    Sentiment,
    TimeEstimate,
    priority_for,
)

logger = logging.getLogger(__name__)

Strategy = Callable[[str], Any]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Prompts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

CATEGORY_PROMPT = (
    "You are an expert at categorizing tasks. Analyze the task and return ONLY the most "
    "appropriate category from this list: Work, Personal, Shopping, Health, Education, "
    "Finance, Home. Return just the category name, nothing else."
)

PRIORITY_PROMPT = (
    "You are an expert at determining task priority. Analyze the urgency and importance "
    "of the task. Return ONLY one of these priority levels: High, Normal, Low. Consider "
    "deadlines, urgency words, and business impact. Return just the priority level, "
    "nothing else."
)

SENTIMENT_PROMPT = (
    "You are an expert at analyzing emotional sentiment in tasks. Determine if the task "
    "conveys positive, negative, or neutral sentiment. Return ONLY the sentiment "
    "(positive, negative, or neutral), nothing else."
)

TIME_PROMPT = (
    "You are an expert at estimating how long tasks take. Based on the task description, "
    "estimate the time needed in minutes. Consider complexity, typical duration for "
    "similar tasks, and any context clues. Return ONLY a number representing minutes, "
    "nothing else."
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Rule tables
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

CATEGORY_KEYWORDS = {
    Category.WORK: ["meeting", "email", "deadline", "project", "boss", "client",
                    "presentation", "report", "office", "work"],
    Category.PERSONAL: ["call", "friend", "family", "birthday", "mom", "dad",
                        "dinner", "lunch", "visit"],
    Category.SHOPPING: ["buy", "shop", "groceries", "store", "purchase", "order",
                        "amazon", "pick up"],
    Category.HEALTH: ["doctor", "appointment", "gym", "exercise", "medicine",
                      "workout", "run", "dentist"],
    Category.EDUCATION: ["study", "learn", "course", "class", "homework", "read",
                         "book", "exam", "test"],
    Category.FINANCE: ["pay", "bill", "bank", "money", "budget", "tax", "invoice",
                       "payment"],
    Category.HOME: ["clean", "fix", "repair", "wash", "laundry", "dishes",
                    "organize", "vacuum"],
}

URGENT_KEYWORDS = ["urgent", "asap", "immediately", "now", "today", "emergency",
                   "critical", "important"]
HIGH_KEYWORDS = ["deadline", "tomorrow", "soon", "priority", "must", "need to"]
LOW_KEYWORDS = ["whenever", "maybe", "someday", "eventually", "if possible"]

DATE_PATTERN = re.compile(
    r"\b("
    r"today|tonight|tomorrow|yesterday|deadline|due|eod|eow"
    r"|next (week|month|year)|this (week|weekend|month)"
    r"|(mon|tues|wednes|thurs|fri|satur|sun)day"
    r"|jan(uary)?|feb(ruary)?|march|apr(il)?|june?|july?|aug(ust)?"
    r"|sep(t|tember)?|oct(ober)?|nov(ember)?|dec(ember)?"
    r"|\d{1,2}/\d{1,2}(/\d{2,4})?"
    r"|\d{4}-\d{2}-\d{2}"
    r")\b",
    re.IGNORECASE,
)

# Checked in this order; first substring match wins
TIME_ESTIMATES: List[Tuple[str, int]] = [
    ("email", 15),
    ("meeting", 60),
    ("call", 30),
    ("shop", 45),
    ("groceries", 60),
    ("clean", 30),
    ("exercise", 45),
    ("gym", 60),
    ("study", 90),
    ("read", 30),
    ("fix", 45),
    ("pay bill", 10),
    ("appointment", 60),
    ("presentation", 120),
    ("report", 90),
    ("homework", 60),
]

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "fifteen": 15,
    "twenty": 20, "thirty": 30, "forty": 40, "forty-five": 45, "fifty": 50,
    "sixty": 60, "ninety": 90,
}

DEFAULT_MINUTES = 30
MIN_MINUTES = 5
MAX_MINUTES = 480

SENTIMENT_BANDS = {
    "positive": ("😊", "#4CAF50"),
    "slightly positive": ("🙂", "#8BC34A"),
    "neutral": ("😐", "#9E9E9E"),
    "slightly negative": ("😕", "#FF9800"),
    "negative": ("😟", "#f44336"),
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _has_keyword(text: str, keyword: str) -> bool:
    return re.search(r"\b" + re.escape(keyword) + r"\b", text) is not None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Rule-based strategies (never raise)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def categorize_by_keywords(text: str) -> Category:
    """Category with the most keyword hits; first declared wins ties; Personal on none."""
    lower = text.lower()
    best, best_score = Category.PERSONAL, 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        score = sum(1 for k in keywords if k in lower)
        if score > best_score:
            best, best_score = category, score
    return best


def has_deadline(text: str) -> bool:
    return DATE_PATTERN.search(text) is not None


def priority_by_keywords(text: str) -> Priority:
    lower = text.lower()
    if any(_has_keyword(lower, k) for k in URGENT_KEYWORDS):
        return priority_for(PriorityLevel.URGENT)
    if any(_has_keyword(lower, k) for k in HIGH_KEYWORDS) or has_deadline(text):
        return priority_for(PriorityLevel.HIGH)
    if any(_has_keyword(lower, k) for k in LOW_KEYWORDS):
        return priority_for(PriorityLevel.LOW)
    return priority_for(PriorityLevel.NORMAL)


def sentiment_for_score(score: float, words: Sequence[str] = ()) -> Sentiment:
    if score > 2:
        mood = "positive"
    elif score < -2:
        mood = "negative"
    elif score > 0:
        mood = "slightly positive"
    elif score < 0:
        mood = "slightly negative"
    else:
        mood = "neutral"
    emoji, color = SENTIMENT_BANDS[mood]
    return Sentiment(mood=mood, emoji=emoji, color=color, score=score, words=list(words))


def sentiment_by_lexicon(text: str) -> Sentiment:
    score, words = score_text(text)
    return sentiment_for_score(score, words)


def _first_number(lower: str) -> Optional[int]:
    match = re.search(r"\d+", lower)
    if match:
        return int(match.group())
    for token in re.findall(r"[a-z]+(?:-[a-z]+)?", lower):
        if token in NUMBER_WORDS:
            return NUMBER_WORDS[token]
    return None


def estimate_time_by_rules(text: str) -> TimeEstimate:
    lower = text.lower()
    minutes: float = DEFAULT_MINUTES
    matched = False

    for keyword, estimate in TIME_ESTIMATES:
        if keyword in lower:
            minutes = estimate
            matched = True
            break

    if not matched:
        number = _first_number(lower)
        if number is not None and 0 < number < MAX_MINUTES:
            minutes = number
            matched = True

    if "quick" in lower or "fast" in lower:
        minutes = max(MIN_MINUTES, minutes * 0.5)
    elif "long" in lower or "detailed" in lower:
        minutes = minutes * 1.5

    if len(text.split(" ")) > 10:
        minutes = minutes * 1.2

    return TimeEstimate.of(_round_half_up(minutes), "high" if matched else "medium")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Model response parsers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def parse_category_response(response: str) -> Category:
    """Exact label, else first label contained in the response, else Personal."""
    response = response.strip()
    for category in Category:
        if response == category.value:
            return category
    lower = response.lower()
    for category in Category:
        if category.value.lower() in lower:
            return category
    return Category.PERSONAL


def parse_priority_response(response: str) -> Priority:
    lower = response.lower()
    if "high" in lower or "urgent" in lower:
        return priority_for(PriorityLevel.HIGH)
    if "low" in lower:
        return priority_for(PriorityLevel.LOW)
    return priority_for(PriorityLevel.NORMAL)


def parse_sentiment_response(response: str) -> Sentiment:
    lower = response.lower()
    if "positive" in lower:
        return Sentiment(mood="positive", emoji="😊", color="#4CAF50", score=3)
    if "negative" in lower:
        return Sentiment(mood="negative", emoji="😞", color="#F44336", score=-3)
    return Sentiment(mood="neutral", emoji="😐", color="#9E9E9E", score=0)


def parse_minutes_response(response: str) -> TimeEstimate:
    match = re.search(r"\d+", response)
    minutes = int(match.group()) if match else DEFAULT_MINUTES
    minutes = max(MIN_MINUTES, min(MAX_MINUTES, minutes))
    return TimeEstimate.of(minutes, "high")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Strategy chain
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def run_strategies(operation: str, strategies: Sequence[Tuple[str, Strategy]],
                   text: str, default: Any) -> Any:
    """Try each (label, strategy) in order; return the first result, else default."""
    for label, strategy in strategies:
        try:
            return strategy(text)
        except Exception as e:
            logger.warning(f"{operation}: {label} strategy failed ({e}), trying next")
    return default


class TextAnalyzer:
    """
    Runs the four annotation operations over a model client.

    With no client (or an unconfigured one) only the rule strategies run.
    """

    def __init__(self, llm=None):
        self.llm = llm

    def _model_strategy(self, system: str, template: str, parse: Callable[[str], Any]) -> Strategy:
        def strategy(text: str) -> Any:
            return parse(self.llm.complete(template.format(text=text), system=system))
        return strategy

    def _chain(self, system: str, template: str, parse: Callable[[str], Any],
               fallback: Strategy) -> List[Tuple[str, Strategy]]:
        chain: List[Tuple[str, Strategy]] = []
        if self.llm is not None and getattr(self.llm, "configured", True):
            chain.append(("model", self._model_strategy(system, template, parse)))
        chain.append(("rules", fallback))
        return chain

    def categorize(self, text: str) -> Category:
        chain = self._chain(CATEGORY_PROMPT, 'Categorize this task: "{text}"',
                            parse_category_response, categorize_by_keywords)
        return run_strategies("categorize", chain, text, Category.PERSONAL)

    def predict_priority(self, text: str) -> Priority:
        chain = self._chain(PRIORITY_PROMPT, 'What priority level should this task have: "{text}"',
                            parse_priority_response, priority_by_keywords)
        return run_strategies("priority", chain, text, priority_for(PriorityLevel.NORMAL))

    def analyze_sentiment(self, text: str) -> Sentiment:
        chain = self._chain(SENTIMENT_PROMPT, 'Analyze the sentiment of this task: "{text}"',
                            parse_sentiment_response, sentiment_by_lexicon)
        return run_strategies("sentiment", chain, text, sentiment_for_score(0))

    def estimate_time(self, text: str) -> TimeEstimate:
        chain = self._chain(TIME_PROMPT, 'How many minutes should this task take: "{text}"',
                            parse_minutes_response, estimate_time_by_rules)
        return run_strategies("time estimate", chain, text,
                              TimeEstimate.of(DEFAULT_MINUTES, "medium"))

    def analyze(self, text: str) -> Annotation:
        """Run all four operations concurrently and compose the annotation."""
        with ThreadPoolExecutor(max_workers=4) as pool:
            category = pool.submit(self.categorize, text)
            priority = pool.submit(self.predict_priority, text)
            sentiment = pool.submit(self.analyze_sentiment, text)
            time_estimate = pool.submit(self.estimate_time, text)
            return Annotation(
                category=category.result(),
                priority=priority.result(),
                sentiment=sentiment.result(),
                time_estimate=time_estimate.result(),
            )
