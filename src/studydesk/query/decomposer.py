"""Split a user message into the individual questions it asks."""
from __future__ import annotations

import re
from typing import List

MIN_QUESTION_CHARS = 5

_PREFIX_RE = re.compile(
    r"""^\s*(?:
        [-*](?=\s)\s*           # - or * bullets
      | •\s*
      | \(\d+\)\s*               # (1)
      | \d+[.)](?!\d)\s*         # 1. or 1)
      | q\d+\s*[:.)]\s*          # Q1:
    )""",
    re.IGNORECASE | re.VERBOSE,
)

BOILERPLATE_LINES = frozenset(
    {
        "answer the following questions",
        "answer the following question",
        "please answer the following questions",
        "please answer the following question",
        "answer these questions",
        "please answer these questions",
        "questions",
    }
)


def _strip_prefix(line: str) -> str:
    previous = None
    stripped = line.strip()
    # "1. - foo" carries two prefixes.
    while previous != stripped:
        previous = stripped
        stripped = _PREFIX_RE.sub("", stripped, count=1).strip()
    return stripped


def _is_boilerplate(line: str) -> bool:
    return line.rstrip(":").strip().lower() in BOILERPLATE_LINES


def decompose(message: str) -> List[str]:
    """Return the ordered sub-questions of ``message``.

    Lines are stripped of bullet and numbering prefixes; short lines and
    instructional boilerplate are discarded. When nothing survives, the whole
    message is treated as a single question.
    """

    if message is None or not message.strip():
        raise ValueError("Message must not be empty")

    questions: List[str] = []
    for raw_line in message.splitlines():
        line = _strip_prefix(raw_line)
        if len(line) < MIN_QUESTION_CHARS or _is_boilerplate(line):
            continue
        questions.append(line)

    if not questions:
        return [message.strip()]
    return questions


__all__ = ["BOILERPLATE_LINES", "MIN_QUESTION_CHARS", "decompose"]
