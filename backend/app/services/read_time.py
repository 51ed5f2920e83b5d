from __future__ import annotations

import math

DEFAULT_WORDS_PER_MINUTE = 200


def estimate_read_time_minutes(
    raw_content: str,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> int:
    """Whole minutes needed to read ``raw_content``, rounded up.

    Words are counted on the raw markup, so anchor and markup tokens count as
    words too. Empty content reads in zero minutes.
    """
    if raw_content is None:
        raise TypeError("raw_content must be a string")
    if words_per_minute < 1:
        raise ValueError("words_per_minute must be positive")
    word_count = len(raw_content.split())
    return math.ceil(word_count / words_per_minute)
