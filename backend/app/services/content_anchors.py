"""Literal grammar shared by the resolver, the lexer and stored documents.

Persisted documents already contain these anchors, so the shapes below must
stay bit-exact:

- image anchor: ``![<alt text>](image:<id>)``
- color span:   ``{color:<#rrggbb | name>}<text>{/color}``
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_ALT_TEXT = "Blog image"
IMAGE_TARGET_SCHEME = "image:"

COLOR_CLOSE = "{/color}"
COLOR_OPEN_PATTERN = re.compile(r"\{color:(#[0-9A-Fa-f]{6}|[a-zA-Z]+)\}")

# General anchor shape: any `![...](...)` on a single line. Alt text may hold
# one level of balanced brackets (`![Figure [1]](...)`) or an unpaired `[`.
ANCHOR_SHAPE_PATTERN = re.compile(
    r"!\[((?:[^\[\]\n]|\[[^\[\]\n]*\]|\[(?![^\[\]\n]*\][^(]))*)\]\(([^)\n]+)\)"
)


@dataclass(frozen=True)
class AnchorOccurrence:
    start: int
    end: int
    raw: str
    alt_text: str
    target: str

    @property
    def asset_id(self) -> str | None:
        return image_target_id(self.target)


def normalize_alt_text(alt_text: str | None) -> str:
    if alt_text is None:
        return DEFAULT_ALT_TEXT
    normalized = alt_text.strip()
    return normalized or DEFAULT_ALT_TEXT


def build_image_anchor(alt_text: str | None, image_id: str) -> str:
    return f"![{normalize_alt_text(alt_text)}]({IMAGE_TARGET_SCHEME}{image_id})"


def image_target_id(target: str) -> str | None:
    """Return the id of an ``image:<id>`` target, or None for any other target."""
    stripped = target.strip()
    if not stripped.startswith(IMAGE_TARGET_SCHEME):
        return None
    image_id = stripped[len(IMAGE_TARGET_SCHEME) :].strip()
    return image_id or None


def match_anchor_at(text: str, position: int) -> AnchorOccurrence | None:
    match = ANCHOR_SHAPE_PATTERN.match(text, position)
    if match is None:
        return None
    return AnchorOccurrence(
        start=match.start(),
        end=match.end(),
        raw=match.group(0),
        alt_text=match.group(1),
        target=match.group(2),
    )


def find_anchor_occurrences(text: str) -> list[AnchorOccurrence]:
    return [
        AnchorOccurrence(
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
            alt_text=match.group(1),
            target=match.group(2),
        )
        for match in ANCHOR_SHAPE_PATTERN.finditer(text)
    ]


def find_literal_spans(text: str, needle: str) -> list[tuple[int, int]]:
    """Non-overlapping spans of every literal occurrence of ``needle``."""
    if not needle:
        return []
    spans: list[tuple[int, int]] = []
    cursor = text.find(needle)
    while cursor != -1:
        spans.append((cursor, cursor + len(needle)))
        cursor = text.find(needle, cursor + len(needle))
    return spans


def replace_spans(text: str, replacements: list[tuple[int, int, str]]) -> str:
    """Rebuild ``text`` with each ``(start, end, value)`` span swapped out.

    Spans must not overlap; they are applied in positional order.
    """
    if not replacements:
        return text
    pieces: list[str] = []
    cursor = 0
    for start, end, value in sorted(replacements, key=lambda item: item[0]):
        pieces.append(text[cursor:start])
        pieces.append(value)
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)
