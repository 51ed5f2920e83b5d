from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal

from backend.app.repositories.content_repository import ContentImage
from backend.app.services.content_anchors import (
    AnchorOccurrence,
    build_image_anchor,
    find_anchor_occurrences,
    find_literal_spans,
    normalize_alt_text,
    replace_spans,
)

LOGGER = logging.getLogger("blog_content.placeholder_resolver")

ResolutionMethod = Literal["exact", "identifier", "positional", "existing", "unresolved"]


@dataclass(frozen=True)
class UploadedAsset:
    """A completed upload reported by the asset-upload subsystem."""

    asset_id: str
    url: str
    alt_text: str | None = None
    temporary_id: str | None = None
    ordinal_index: int | None = None


@dataclass(frozen=True)
class AnchorResolution:
    asset_id: str
    method: ResolutionMethod
    anchor: str | None
    replaced: str | None


@dataclass(frozen=True)
class ResolutionResult:
    content: str
    images: tuple[ContentImage, ...]
    resolutions: tuple[AnchorResolution, ...]

    @property
    def unresolved_asset_ids(self) -> tuple[str, ...]:
        return tuple(item.asset_id for item in self.resolutions if item.method == "unresolved")


def resolve_placeholders(
    raw_content: str,
    uploads: Sequence[UploadedAsset],
    *,
    existing_images: Sequence[ContentImage] = (),
) -> ResolutionResult:
    """Rewrite temporary upload anchors in ``raw_content`` into permanent ones.

    Each upload is matched in order of preference:

    1. its permanent anchor (or any anchor on its asset id) is already present;
    2. the exact temporary anchor ``![alt](image:<temporary id>)``, every
       literal occurrence replaced;
    3. any anchor targeting ``image:<temporary id>`` whose alt text drifted;
    4. positional fallback: the j-th upload still unmatched takes the j-th
       anchor-shaped substring that no known asset claims, whatever its alt
       text. An explicit ``ordinal_index`` overrides j.

    Every target span is located against the input string before anything is
    rewritten, so upload order never changes the result. Uploads left without
    a target are attached with ``anchor=None`` and logged; nothing is raised.
    """
    if raw_content is None:
        raise TypeError("raw_content must be a string")

    occurrences = find_anchor_occurrences(raw_content)
    known_asset_ids = {image.asset_id for image in existing_images}
    known_asset_ids.update(upload.asset_id for upload in uploads)
    known_anchors = {image.anchor for image in existing_images if image.anchor}

    claimed: list[tuple[int, int]] = []
    replacements: list[tuple[int, int, str]] = []
    outcomes: dict[int, AnchorResolution] = {}
    pending: list[int] = []

    for index, upload in enumerate(uploads):
        permanent = build_image_anchor(upload.alt_text, upload.asset_id)
        outcome = _match_existing(upload, occurrences, claimed)
        if outcome is None:
            outcome = _match_exact(upload, permanent, raw_content, claimed, replacements)
        if outcome is None:
            outcome = _match_identifier(upload, permanent, occurrences, claimed, replacements)
        if outcome is None:
            pending.append(index)
            continue
        outcomes[index] = outcome

    candidates = [
        occurrence
        for occurrence in occurrences
        if occurrence.asset_id not in known_asset_ids
        and occurrence.raw not in known_anchors
        and not _overlaps_any(occurrence.start, occurrence.end, claimed)
    ]
    taken: set[int] = set()
    for fallback_rank, index in enumerate(pending):
        upload = uploads[index]
        permanent = build_image_anchor(upload.alt_text, upload.asset_id)
        candidate_index = (
            upload.ordinal_index if upload.ordinal_index is not None else fallback_rank
        )
        if 0 <= candidate_index < len(candidates) and candidate_index not in taken:
            taken.add(candidate_index)
            target = candidates[candidate_index]
            claimed.append((target.start, target.end))
            replacements.append((target.start, target.end, permanent))
            outcomes[index] = AnchorResolution(
                asset_id=upload.asset_id,
                method="positional",
                anchor=permanent,
                replaced=target.raw,
            )
            LOGGER.info(
                "content image resolved positionally asset_id=%s candidate_index=%s",
                upload.asset_id,
                candidate_index,
            )
            continue

        LOGGER.warning(
            "content image anchor unresolved asset_id=%s temporary_id=%s candidates=%s",
            upload.asset_id,
            upload.temporary_id,
            len(candidates),
        )
        outcomes[index] = AnchorResolution(
            asset_id=upload.asset_id,
            method="unresolved",
            anchor=None,
            replaced=None,
        )

    resolutions = tuple(outcomes[index] for index in range(len(uploads)))
    return ResolutionResult(
        content=replace_spans(raw_content, replacements),
        images=_merge_images(existing_images, uploads, resolutions),
        resolutions=resolutions,
    )


def _match_existing(
    upload: UploadedAsset,
    occurrences: Sequence[AnchorOccurrence],
    claimed: list[tuple[int, int]],
) -> AnchorResolution | None:
    matches = [occurrence for occurrence in occurrences if occurrence.asset_id == upload.asset_id]
    if not matches:
        return None
    for occurrence in matches:
        claimed.append((occurrence.start, occurrence.end))
    return AnchorResolution(
        asset_id=upload.asset_id,
        method="existing",
        anchor=matches[0].raw,
        replaced=None,
    )


def _match_exact(
    upload: UploadedAsset,
    permanent: str,
    raw_content: str,
    claimed: list[tuple[int, int]],
    replacements: list[tuple[int, int, str]],
) -> AnchorResolution | None:
    if not upload.temporary_id:
        return None
    temporary = build_image_anchor(upload.alt_text, upload.temporary_id)
    spans = [
        span
        for span in find_literal_spans(raw_content, temporary)
        if not _overlaps_any(span[0], span[1], claimed)
    ]
    if not spans:
        return None
    for start, end in spans:
        claimed.append((start, end))
        replacements.append((start, end, permanent))
    return AnchorResolution(
        asset_id=upload.asset_id,
        method="exact",
        anchor=permanent,
        replaced=temporary,
    )


def _match_identifier(
    upload: UploadedAsset,
    permanent: str,
    occurrences: Sequence[AnchorOccurrence],
    claimed: list[tuple[int, int]],
    replacements: list[tuple[int, int, str]],
) -> AnchorResolution | None:
    if not upload.temporary_id:
        return None
    matches = [
        occurrence
        for occurrence in occurrences
        if occurrence.asset_id == upload.temporary_id
        and not _overlaps_any(occurrence.start, occurrence.end, claimed)
    ]
    if not matches:
        return None
    for occurrence in matches:
        claimed.append((occurrence.start, occurrence.end))
        replacements.append((occurrence.start, occurrence.end, permanent))
    return AnchorResolution(
        asset_id=upload.asset_id,
        method="identifier",
        anchor=permanent,
        replaced=matches[0].raw,
    )


def _merge_images(
    existing_images: Sequence[ContentImage],
    uploads: Sequence[UploadedAsset],
    resolutions: Sequence[AnchorResolution],
) -> tuple[ContentImage, ...]:
    merged = list(existing_images)
    positions = {image.asset_id: offset for offset, image in enumerate(merged)}
    next_position = max((image.position for image in merged), default=-1) + 1

    for upload, resolution in zip(uploads, resolutions, strict=True):
        offset = positions.get(upload.asset_id)
        if offset is not None:
            # Re-reported assets keep their slot; only the anchor may change.
            if resolution.anchor is not None:
                merged[offset] = replace(merged[offset], anchor=resolution.anchor)
            continue
        positions[upload.asset_id] = len(merged)
        merged.append(
            ContentImage(
                asset_id=upload.asset_id,
                url=upload.url,
                alt_text=normalize_alt_text(upload.alt_text),
                anchor=resolution.anchor,
                position=next_position,
            )
        )
        next_position += 1
    return tuple(merged)


def _overlaps_any(start: int, end: int, ranges: Sequence[tuple[int, int]]) -> bool:
    return any(start < other_end and other_start < end for other_start, other_end in ranges)
