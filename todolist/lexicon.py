"""
Offline sentiment scoring over the AFINN-165 word list.

Valences run -5 .. +5 and are summed over the matched words. A negator
directly before a scored word flips its sign.
"""
import re
from functools import lru_cache
from typing import List, Tuple

from afinn import Afinn

NEGATORS = {"not", "no", "never", "dont", "don't", "cannot", "can't",
            "won't", "isn't", "wasn't", "aren't", "didn't", "doesn't", "without"}

TOKEN = re.compile(r"[a-z']+")


@lru_cache(maxsize=1)
def _afinn() -> Afinn:
    # The word list is read from disk once; the instance is read-only afterwards
    return Afinn(language="en")


def _negated(lower: str, start: int) -> bool:
    previous = TOKEN.findall(lower[:start])
    return bool(previous) and previous[-1] in NEGATORS


def score_text(text: str) -> Tuple[int, List[str]]:
    """
    Returns (score, scored_words) in order of appearance.
    """
    lower = (text or "").lower()
    afinn = _afinn()
    words = afinn.find_all(lower)
    valences = afinn.scores(lower)

    score = 0
    cursor = 0
    for word, valence in zip(words, valences):
        match = re.compile(rf"\b{re.escape(word)}\b").search(lower, cursor)
        valence = int(valence)
        if match is not None:
            cursor = match.end()
            if _negated(lower, match.start()):
                valence = -valence
        score += valence
    return score, list(words)
