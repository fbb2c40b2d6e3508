import re
from typing import List, Union

from ..core.models import ArtifactRead

_FENCE_RE = re.compile(r"```([\w+#.-]*)[^\n]*\n(.*?)```", re.DOTALL)

Segment = Union[str, ArtifactRead]


def split_artifacts(content: str) -> List[Segment]:
    """Split assistant text into prose segments and fenced code artifacts

    An unterminated fence (a reply still streaming) stays in the prose.
    """
    segments: List[Segment] = []
    position = 0
    for match in _FENCE_RE.finditer(content):
        prose = content[position:match.start()]
        if prose.strip():
            segments.append(prose)
        segments.append(
            ArtifactRead(
                type="code",
                language=match.group(1) or None,
                content=match.group(2).rstrip("\n"),
            )
        )
        position = match.end()
    tail = content[position:]
    if tail.strip():
        segments.append(tail)
    return segments

