import re
import json
import logging
from typing import List

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json\n?|\n?```")
_LIST_MARKER_RE = re.compile(r"^(?:[-*]|\d+\.)\s*")


def strip_code_fences(text: str) -> str:
    """Remove markdown ```json fences the model likes to wrap JSON in"""
    return _FENCE_RE.sub("", text).strip()


def extract_lines(text: str) -> List[str]:
    """Turn a bulleted or numbered list into bare lines"""
    lines = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        cleaned = _LIST_MARKER_RE.sub("", line.strip()).strip().strip("\"'").strip()
        if cleaned:
            lines.append(cleaned)
    return lines


def parse_string_list(text: str, limit: int, require_question: bool = False) -> List[str]:
    """Parse a model reply that should be a JSON array of strings

    Falls back to line extraction when the reply is not a JSON array; in that
    case ``require_question`` keeps only lines ending in ``?``.
    """
    try:
        parsed = json.loads(strip_code_fences(text))
        if not isinstance(parsed, list):
            raise ValueError("Response is not an array")
        return [str(item).strip() for item in parsed if str(item).strip()][:limit]
    except (ValueError, TypeError) as e:
        logger.debug(f"Falling back to line extraction: {e}")

    lines = extract_lines(text)
    if require_question:
        lines = [line for line in lines if line.endswith("?")]
    return lines[:limit]
