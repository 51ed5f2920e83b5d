from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from html import escape

from backend.app.repositories.content_repository import ContentImage
from backend.app.services.content_anchors import (
    DEFAULT_ALT_TEXT,
    image_target_id,
    normalize_alt_text,
)
from backend.app.services.markup_lexer import BlockToken, InlineToken, lex_blocks

# Bump whenever rendered output changes for any input; stored renderings with
# another version are regenerated on read and by the regeneration script.
CONVERTER_VERSION = 2

# Class names are consumed by the storefront front end and must not drift.
HEADING_CLASSES: dict[int, str] = {
    1: "text-3xl font-bold my-6 text-gray-900",
    2: "text-2xl font-bold my-5 text-gray-800",
    3: "text-xl font-bold my-4 text-gray-700",
    4: "text-lg font-bold my-3 text-gray-600",
}
PARAGRAPH_CLASS = "my-4 leading-relaxed text-gray-700"
STRONG_CLASS = "font-bold text-gray-900"
EM_CLASS = "italic text-gray-800"
LINK_CLASS = "text-blue-600 hover:text-blue-800 underline transition-colors"
INLINE_CODE_CLASS = (
    "bg-gray-100 px-2 py-1 rounded text-sm font-mono border border-gray-300 text-gray-800"
)
BLOCKQUOTE_CLASS = "border-l-4 border-blue-500 pl-4 py-2 my-4 text-gray-600 italic bg-blue-50 rounded-r-lg"
CODE_BLOCK_CLASS = "bg-gray-900 text-white p-4 rounded my-4 overflow-x-auto"
UNORDERED_LIST_CLASS = "list-disc ml-6 my-4 space-y-2"
ORDERED_LIST_CLASS = "list-decimal ml-6 my-4 space-y-2"
LIST_ITEM_CLASS = "text-gray-700"
IMAGE_CONTAINER_CLASS = "blog-image-container my-6 text-center"
IMAGE_CLASS = "max-w-full h-auto rounded-lg shadow-md mx-auto"
IMAGE_STYLE = "max-height: 500px; object-fit: contain;"
IMAGE_CAPTION_CLASS = "text-sm text-gray-600 mt-2 italic"


@dataclass(frozen=True)
class RenderedMarkup:
    html: str
    bound_asset_ids: tuple[str, ...]
    unbound_anchor_count: int


@dataclass(frozen=True)
class _ImageSource:
    url: str
    alt_text: str


class ImageBinder:
    """Maps image anchor tokens, in document order, onto document images.

    A token binds to an image by its ``image:<asset id>`` target, by a legacy
    bare ``(<asset id>)`` target, or by equalling the image's stored anchor.
    Images still unbound are then paired positionally with the ``image:``
    anchors that nothing claimed: the k-th leftover image takes the k-th
    leftover anchor. That pairing is a heuristic and can pick the wrong image
    when alt texts repeat and upload order differs from text order.
    """

    def __init__(self, images: Sequence[ContentImage]) -> None:
        self._images = tuple(images)
        self._by_asset_id: dict[str, ContentImage] = {}
        self._by_anchor: dict[str, ContentImage] = {}
        for image in self._images:
            self._by_asset_id.setdefault(image.asset_id, image)
            if image.anchor:
                self._by_anchor.setdefault(image.anchor, image)

    def bind(self, tokens: Sequence[InlineToken]) -> dict[int, ContentImage]:
        bound: dict[int, ContentImage] = {}
        used_asset_ids: set[str] = set()
        leftovers: list[int] = []

        for offset, token in enumerate(tokens):
            image = self._direct_match(token)
            if image is not None:
                bound[offset] = image
                used_asset_ids.add(image.asset_id)
            elif image_target_id(token.attribute) is not None:
                leftovers.append(offset)

        unbound_images = [image for image in self._images if image.asset_id not in used_asset_ids]
        for offset, image in zip(leftovers, unbound_images, strict=False):
            bound[offset] = image
        return bound

    def _direct_match(self, token: InlineToken) -> ContentImage | None:
        target = token.attribute.strip()
        asset_id = image_target_id(target)
        if asset_id is not None and asset_id in self._by_asset_id:
            return self._by_asset_id[asset_id]
        if target in self._by_asset_id:
            return self._by_asset_id[target]
        return self._by_anchor.get(token.text)


def convert_markup(markup: str, images: Sequence[ContentImage] = ()) -> str:
    """Convert blog markup to HTML; pure and deterministic."""
    return render_markup(markup, images).html


def render_markup(markup: str, images: Sequence[ContentImage] = ()) -> RenderedMarkup:
    if markup is None:
        raise TypeError("markup must be a string")
    if not markup:
        return RenderedMarkup(html="", bound_asset_ids=(), unbound_anchor_count=0)

    blocks = lex_blocks(markup)
    image_tokens = [
        token for block in blocks for token in block.inline if token.kind == "image"
    ]
    binding = ImageBinder(images).bind(image_tokens)
    sources: dict[int, _ImageSource] = {}
    unbound = 0
    for offset, token in enumerate(image_tokens):
        image = binding.get(offset)
        if image is not None:
            sources[id(token)] = _ImageSource(url=image.url, alt_text=image.alt_text)
        elif image_target_id(token.attribute) is None:
            sources[id(token)] = _ImageSource(
                url=token.attribute.strip(),
                alt_text=normalize_alt_text(token.alt_text),
            )
        else:
            unbound += 1

    renderer = _HtmlRenderer(sources)
    html = "\n".join(line for block in blocks for line in renderer.render_block(block))
    bound_asset_ids = tuple(dict.fromkeys(image.asset_id for image in binding.values()))
    return RenderedMarkup(html=html, bound_asset_ids=bound_asset_ids, unbound_anchor_count=unbound)


def render_image_container(url: str, alt_text: str) -> str:
    alt = normalize_alt_text(alt_text)
    caption = ""
    if alt != DEFAULT_ALT_TEXT:
        caption = f'<p class="{IMAGE_CAPTION_CLASS}">{escape(alt, quote=False)}</p>'
    image_tag = (
        f'<img src="{escape(url)}" alt="{escape(alt)}" class="{IMAGE_CLASS}" '
        f'style="{IMAGE_STYLE}" loading="lazy" />'
    )
    return f'<div class="{IMAGE_CONTAINER_CLASS}">{image_tag}{caption}</div>'


class _HtmlRenderer:
    def __init__(self, sources: dict[int, _ImageSource]) -> None:
        # Keyed by token identity: equal anchors at different places may bind
        # to different images.
        self._sources = sources

    def render_block(self, block: BlockToken) -> list[str]:
        if block.kind == "list_open":
            css = ORDERED_LIST_CLASS if block.ordered else UNORDERED_LIST_CLASS
            return [f'<{_list_tag(block)} class="{css}">']
        if block.kind == "list_close":
            return [f"</{_list_tag(block)}>"]
        if block.kind == "code_block":
            language = (
                f' class="language-{escape(block.language)}"' if block.language is not None else ""
            )
            code = escape(block.text, quote=False)
            return [f'<pre class="{CODE_BLOCK_CLASS}"><code{language}>{code}</code></pre>']

        body = self._render_inline(block.inline)
        if block.kind == "heading":
            level = block.level
            return [f'<h{level} class="{HEADING_CLASSES[level]}">{body}</h{level}>']
        if block.kind == "blockquote":
            return [f'<blockquote class="{BLOCKQUOTE_CLASS}">{body}</blockquote>']
        if block.kind == "list_item":
            return [f'<li class="{LIST_ITEM_CLASS}">{body}</li>']
        if block.kind == "html" or self._holds_image_container(block.inline):
            return [body]
        return [f'<p class="{PARAGRAPH_CLASS}">{body}</p>']

    def _holds_image_container(self, tokens: Sequence[InlineToken]) -> bool:
        return any(token.kind == "image" and id(token) in self._sources for token in tokens)

    def _render_inline(self, tokens: Sequence[InlineToken]) -> str:
        parts: list[str] = []
        for token in tokens:
            kind = token.kind
            if kind == "text":
                parts.append(token.text)
            elif kind == "strong_open":
                parts.append(f'<strong class="{STRONG_CLASS}">')
            elif kind == "strong_close":
                parts.append("</strong>")
            elif kind == "em_open":
                parts.append(f'<em class="{EM_CLASS}">')
            elif kind == "em_close":
                parts.append("</em>")
            elif kind == "color_open":
                parts.append(f'<span style="color: {token.attribute};">')
            elif kind == "color_close":
                parts.append("</span>")
            elif kind == "link_open":
                parts.append(
                    f'<a href="{escape(token.attribute)}" class="{LINK_CLASS}" '
                    'target="_blank" rel="noopener noreferrer">'
                )
            elif kind == "link_close":
                parts.append("</a>")
            elif kind == "code":
                parts.append(
                    f'<code class="{INLINE_CODE_CLASS}">{escape(token.text, quote=False)}</code>'
                )
            elif kind == "image":
                source = self._sources.get(id(token))
                if source is None:
                    # Unresolved placeholder text stays visible to the author.
                    parts.append(token.text)
                else:
                    parts.append(render_image_container(source.url, source.alt_text))
        return "".join(parts)


def _list_tag(block: BlockToken) -> str:
    return "ol" if block.ordered else "ul"
