"""
Split one line of input into several todos.

"buy milk, walk dog and call mom" becomes three todos. Splitting is
conservative: unless at least two usable pieces come out, the input is
returned untouched as a single todo.
"""
import re
from typing import List

# Applied in order; each pass splits the pieces produced by the previous one
SEPARATORS = [
    re.compile(r"\s+and\s+", re.IGNORECASE),
    re.compile(r"\s*,\s*"),
    re.compile(r"\s*;\s*"),
    re.compile(r"\s+then\s+", re.IGNORECASE),
    re.compile(r"\s+also\s+", re.IGNORECASE),
    re.compile(r"\s*[•·◦▪*]\s*"),
    re.compile(r"(?:^|\s+)\d+[.)]\s+"),
    re.compile(r"(?:^|\s+)[-–—]\s+"),
]

CONNECTORS = {"and", "then", "also", "or"}

LEADING_MARKER = re.compile(r"^(?:[-–—*•·◦▪]+|\d+[.)])\s*")
LEADING_CONNECTOR = re.compile(r"^(?:and|then|also|or)\s+", re.IGNORECASE)


def _sentence_case(piece: str) -> str:
    return piece[0].upper() + piece[1:].lower()


def split_multiple_todos(text: str) -> List[str]:
    """Split text into todos; fall back to [text.strip()] when fewer than two remain."""
    original = (text or "").strip()
    if not original:
        return []

    pieces = [original]
    for pattern in SEPARATORS:
        next_pieces = []
        for piece in pieces:
            next_pieces.extend(pattern.split(piece))
        pieces = next_pieces

    todos = []
    for piece in pieces:
        piece = piece.strip()
        if len(piece) <= 2 or piece.lower() in CONNECTORS:
            continue
        piece = LEADING_MARKER.sub("", piece).strip()
        piece = LEADING_CONNECTOR.sub("", piece).strip()
        if len(piece) <= 2:
            continue
        todos.append(_sentence_case(piece))

    if len(todos) < 2:
        return [original]
    return todos
