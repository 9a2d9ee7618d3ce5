from __future__ import annotations

import re

_WORD = re.compile(r"[a-zA-Z0-9]+")


def slugify(text: str) -> str:
    """Return a human readable slug for a title or name.

    Each space separated word contributes its first alphanumeric run,
    lower-cased; words without one are dropped.
    """
    words: list[str] = []
    for word in text.split(" "):
        match = _WORD.search(word)
        if match:
            words.append(match.group(0).lower())
    return "-".join(words)
