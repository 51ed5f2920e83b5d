"""Lexer for the blog markup language.

``lex_blocks`` walks the markup line by line and yields a flat stream of block
tokens, list containers included as explicit open/close markers. Text-bearing
blocks carry their inline tokens, which are also flat: constructs that wrap
other content (bold, italic, color spans, links) are emitted as open/close
pairs around the tokens of their body.

Nothing here raises on malformed input. An unmatched delimiter simply stays
in the surrounding text run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from backend.app.services.content_anchors import (
    COLOR_CLOSE,
    COLOR_OPEN_PATTERN,
    match_anchor_at,
)

InlineKind = Literal[
    "text",
    "strong_open",
    "strong_close",
    "em_open",
    "em_close",
    "color_open",
    "color_close",
    "link_open",
    "link_close",
    "code",
    "image",
]
BlockKind = Literal[
    "heading",
    "paragraph",
    "blockquote",
    "code_block",
    "html",
    "list_open",
    "list_item",
    "list_close",
]

FENCE = "```"

_HEADING_PATTERN = re.compile(r"^(#{1,4}) (.*)$")
_UNORDERED_ITEM_PATTERN = re.compile(r"^[-*] ")
_ORDERED_ITEM_PATTERN = re.compile(r"^\d+\. ")
_BLOCKQUOTE_PREFIX = "> "
_OPEN_TAG_PATTERN = re.compile(r"^<[a-zA-Z][a-zA-Z0-9-]*")
_BLOCK_TAG_PATTERN = re.compile(
    r"<(?:article|aside|blockquote|details|div|figcaption|figure|footer|h[1-6]|header|hr"
    r"|iframe|img|li|nav|ol|p|picture|pre|section|summary|table|tbody|td|th|thead|tr|ul"
    r"|video)\b",
    re.IGNORECASE,
)
_FENCE_LANGUAGE_PATTERN = re.compile(r"^[A-Za-z0-9_+#.-]+$")
# A fence is a run of three or more backticks; the whole run is one delimiter.
_FENCE_RUN_PATTERN = re.compile(r"`{3,}")
_LINK_PATTERN = re.compile(r"\[([^\]\n]*)\]\(([^)\n]*)\)")


@dataclass(frozen=True)
class InlineToken:
    kind: InlineKind
    text: str = ""
    attribute: str = ""
    alt_text: str = ""


@dataclass(frozen=True)
class BlockToken:
    kind: BlockKind
    text: str = ""
    level: int = 0
    ordered: bool = False
    language: str | None = None
    inline: tuple[InlineToken, ...] = ()


class ListState(Enum):
    NORMAL = "normal"
    IN_UNORDERED_LIST = "in_unordered_list"
    IN_ORDERED_LIST = "in_ordered_list"


def lex_blocks(markup: str) -> list[BlockToken]:
    lines = markup.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    tokens: list[BlockToken] = []
    state = ListState.NORMAL
    index = 0

    while index < len(lines):
        line = lines[index].strip()
        index += 1

        if not line:
            state = _close_list(state, tokens)
            continue

        if _UNORDERED_ITEM_PATTERN.match(line):
            state = _enter_list(state, ListState.IN_UNORDERED_LIST, tokens)
            tokens.append(_text_block("list_item", line[2:], ordered=False))
            continue

        ordered_match = _ORDERED_ITEM_PATTERN.match(line)
        if ordered_match is not None:
            state = _enter_list(state, ListState.IN_ORDERED_LIST, tokens)
            tokens.append(_text_block("list_item", line[ordered_match.end() :], ordered=True))
            continue

        state = _close_list(state, tokens)

        if line.startswith(FENCE):
            fence = _lex_fence(lines, index - 1)
            if fence is not None:
                block, resume_at = fence
                tokens.append(block)
                index = resume_at
                continue

        heading_match = _HEADING_PATTERN.match(line)
        if heading_match is not None:
            tokens.append(
                _text_block("heading", heading_match.group(2), level=len(heading_match.group(1)))
            )
            continue

        if line.startswith(_BLOCKQUOTE_PREFIX):
            tokens.append(_text_block("blockquote", line[len(_BLOCKQUOTE_PREFIX) :]))
            continue

        if _OPEN_TAG_PATTERN.match(line) and ">" not in line:
            line, index = _merge_split_tag(lines, line, index)

        if _BLOCK_TAG_PATTERN.search(line):
            tokens.append(_text_block("html", line))
            continue

        tokens.append(_text_block("paragraph", line))

    _close_list(state, tokens)
    return tokens


def lex_inline(text: str) -> list[InlineToken]:
    tokens: list[InlineToken] = []
    buffer: list[str] = []
    position = 0

    while position < len(text):
        char = text[position]
        lexed: tuple[list[InlineToken], int] | None = None
        if char == "{":
            lexed = _lex_color_span(text, position)
        elif char == "!":
            lexed = _lex_image(text, position)
        elif char == "[":
            lexed = _lex_link(text, position)
        elif char == "`":
            lexed = _lex_code(text, position)
        elif char == "*":
            lexed = _lex_emphasis(text, position)

        if lexed is None:
            buffer.append(char)
            position += 1
            continue

        if buffer:
            tokens.append(InlineToken(kind="text", text="".join(buffer)))
            buffer = []
        inner_tokens, position = lexed
        tokens.extend(inner_tokens)

    if buffer:
        tokens.append(InlineToken(kind="text", text="".join(buffer)))
    return _merge_text_runs(tokens)


def _text_block(
    kind: BlockKind,
    text: str,
    *,
    level: int = 0,
    ordered: bool = False,
) -> BlockToken:
    return BlockToken(
        kind=kind,
        text=text,
        level=level,
        ordered=ordered,
        inline=tuple(lex_inline(text)),
    )


def _enter_list(state: ListState, target: ListState, tokens: list[BlockToken]) -> ListState:
    if state is target:
        return state
    _close_list(state, tokens)
    tokens.append(BlockToken(kind="list_open", ordered=target is ListState.IN_ORDERED_LIST))
    return target


def _close_list(state: ListState, tokens: list[BlockToken]) -> ListState:
    if state is not ListState.NORMAL:
        tokens.append(BlockToken(kind="list_close", ordered=state is ListState.IN_ORDERED_LIST))
    return ListState.NORMAL


def _lex_fence(lines: list[str], start: int) -> tuple[BlockToken, int] | None:
    """Lex a fenced code block opening at ``lines[start]``.

    Returns the block and the index of the next line to lex, or None when the
    fence is never closed. Text trailing a closing fence is written back into
    ``lines`` so it is lexed as an ordinary line.
    """
    opening_line = lines[start].strip()
    opening = _FENCE_RUN_PATTERN.match(opening_line)
    if opening is None:
        return None
    rest = opening_line[opening.end() :]
    same_line_close = _FENCE_RUN_PATTERN.search(rest)
    if same_line_close is not None:
        lines[start] = rest[same_line_close.end() :]
        return BlockToken(kind="code_block", text=rest[: same_line_close.start()]), start

    info = rest.strip()
    language: str | None = None
    body: list[str] = []
    if info and _FENCE_LANGUAGE_PATTERN.match(info):
        language = info
    elif info:
        body.append(info)

    for cursor in range(start + 1, len(lines)):
        candidate = lines[cursor].strip()
        closing = _FENCE_RUN_PATTERN.match(candidate)
        if closing is not None:
            lines[cursor] = candidate[closing.end() :]
            body.extend(lines[start + 1 : cursor])
            return BlockToken(kind="code_block", text="\n".join(body), language=language), cursor
    return None


def _merge_split_tag(lines: list[str], first_line: str, index: int) -> tuple[str, int]:
    """Join a tag opened on ``first_line`` with the lines up to its ``>``.

    Only the contiguous non-blank lines after ``first_line`` are searched. When
    none of them closes the tag, nothing is consumed and ``first_line`` is
    lexed on its own.
    """
    for cursor in range(index, len(lines)):
        fragment = lines[cursor].strip()
        if not fragment:
            break
        if ">" in fragment:
            merged = [first_line, *(line.strip() for line in lines[index : cursor + 1])]
            return " ".join(merged), cursor + 1
    return first_line, index


def _lex_color_span(text: str, position: int) -> tuple[list[InlineToken], int] | None:
    opening = COLOR_OPEN_PATTERN.match(text, position)
    if opening is None:
        return None

    depth = 1
    cursor = opening.end()
    while True:
        close_at = text.find(COLOR_CLOSE, cursor)
        if close_at == -1:
            return None
        nested = COLOR_OPEN_PATTERN.search(text, cursor, close_at)
        if nested is not None:
            depth += 1
            cursor = nested.end()
            continue
        depth -= 1
        if depth == 0:
            break
        cursor = close_at + len(COLOR_CLOSE)

    tokens = [InlineToken(kind="color_open", attribute=opening.group(1))]
    tokens.extend(lex_inline(text[opening.end() : close_at]))
    tokens.append(InlineToken(kind="color_close"))
    return tokens, close_at + len(COLOR_CLOSE)


def _lex_image(text: str, position: int) -> tuple[list[InlineToken], int] | None:
    occurrence = match_anchor_at(text, position)
    if occurrence is None:
        return None
    token = InlineToken(
        kind="image",
        text=occurrence.raw,
        attribute=occurrence.target,
        alt_text=occurrence.alt_text,
    )
    return [token], occurrence.end


def _lex_link(text: str, position: int) -> tuple[list[InlineToken], int] | None:
    match = _LINK_PATTERN.match(text, position)
    if match is None:
        return None
    tokens = [InlineToken(kind="link_open", attribute=match.group(2).strip())]
    tokens.extend(lex_inline(match.group(1)))
    tokens.append(InlineToken(kind="link_close"))
    return tokens, match.end()


def _lex_code(text: str, position: int) -> tuple[list[InlineToken], int] | None:
    close_at = text.find("`", position + 1)
    if close_at <= position + 1:
        return None
    return [InlineToken(kind="code", text=text[position + 1 : close_at])], close_at + 1


def _lex_emphasis(text: str, position: int) -> tuple[list[InlineToken], int] | None:
    if text.startswith("**", position):
        close_at = text.find("**", position + 2)
        if close_at <= position + 2:
            return None
        tokens = [InlineToken(kind="strong_open")]
        tokens.extend(lex_inline(text[position + 2 : close_at]))
        tokens.append(InlineToken(kind="strong_close"))
        return tokens, close_at + 2

    close_at = _find_single_star(text, position + 1)
    if close_at is None or close_at == position + 1:
        return None
    tokens = [InlineToken(kind="em_open")]
    tokens.extend(lex_inline(text[position + 1 : close_at]))
    tokens.append(InlineToken(kind="em_close"))
    return tokens, close_at + 1


def _find_single_star(text: str, start: int) -> int | None:
    # Double stars belong to bold spans nested inside the italic run.
    cursor = start
    while cursor < len(text):
        if text[cursor] != "*":
            cursor += 1
            continue
        if text.startswith("**", cursor):
            cursor += 2
            continue
        return cursor
    return None


def _merge_text_runs(tokens: list[InlineToken]) -> list[InlineToken]:
    merged: list[InlineToken] = []
    for token in tokens:
        if token.kind == "text" and merged and merged[-1].kind == "text":
            merged[-1] = InlineToken(kind="text", text=merged[-1].text + token.text)
            continue
        merged.append(token)
    return merged
