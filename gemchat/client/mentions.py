"""``@`` mention detection and completion for the chat input."""
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Mention:
    start: int  # index of the '@'
    query: str  # text typed after the '@'


def find_mention(text: str, cursor: Optional[int] = None) -> Optional[Mention]:
    """Mention being typed at the cursor, if any

    The last ``@`` before the cursor counts when it starts the text or follows
    whitespace, and nothing between it and the cursor is a space.
    """
    if cursor is None:
        cursor = len(text)
    before = text[:cursor]
    at = before.rfind("@")
    if at == -1:
        return None
    if at > 0 and not before[at - 1].isspace():
        return None
    query = before[at + 1:]
    if " " in query:
        return None
    return Mention(start=at, query=query)


def apply_mention(text: str, mention: Mention, cursor: Optional[int], selection: str) -> str:
    """Replace the ``@query`` at the cursor with the chosen completion"""
    if cursor is None:
        cursor = len(text)
    return text[:mention.start] + selection + " " + text[cursor:]


def cycle_index(current: int, step: int, count: int) -> int:
    """Arrow-key navigation through a result list, wrapping at both ends"""
    if count <= 0:
        return 0
    return (current + step) % count


def highlight_match(text: str, query: str) -> Tuple[str, str, str]:
    """Split text around the first case-insensitive occurrence of query"""
    if not query:
        return text, "", ""
    index = text.lower().find(query.lower())
    if index == -1:
        return text, "", ""
    end = index + len(query)
    return text[:index], text[index:end], text[end:]
