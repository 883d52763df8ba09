"""Bounding-box geometry utilities.

Character positions inside an OCR line are mapped to pixels by linear
interpolation across the line box, i.e. every character is assumed to be
the same width.  This is a known-imprecise heuristic for proportional
fonts; callers should treat the resulting boxes as approximate.
"""

from __future__ import annotations

from typing import Optional

from piilens.models.schemas import BBox, BoundingBox, OCRLine


def boxes_intersect(region: BoundingBox, line_box: BBox) -> bool:
    """Strict rectangle intersection; touching edges do not count."""
    return (
        region.x < line_box.x1
        and region.x + region.width > line_box.x0
        and region.y < line_box.y1
        and region.y + region.height > line_box.y0
    )


def interpolate_span(line: OCRLine, start: int, end: int) -> BoundingBox:
    """Approximate box of characters ``[start, end)`` within *line*."""
    n_chars = len(line.text)
    width = max(0.0, line.bbox.width)
    char_width = width / n_chars if n_chars else 0.0
    return BoundingBox(
        x=line.bbox.x0 + start * char_width,
        y=line.bbox.y0,
        width=max(0, end - start) * char_width,
        height=max(0.0, line.bbox.height),
    )


def pad_box(bbox: BBox, padding: float) -> BoundingBox:
    """Grow *bbox* by *padding* on every side, flooring the origin at 0."""
    x = max(0.0, bbox.x0 - padding)
    y = max(0.0, bbox.y0 - padding)
    return BoundingBox(
        x=x,
        y=y,
        width=max(0.0, bbox.x1 + padding - x),
        height=max(0.0, bbox.y1 + padding - y),
    )


def union_box(lines: list[OCRLine]) -> Optional[BBox]:
    """Smallest box covering every line, or None for no lines."""
    if not lines:
        return None
    return BBox(
        x0=min(line.bbox.x0 for line in lines),
        y0=min(line.bbox.y0 for line in lines),
        x1=max(line.bbox.x1 for line in lines),
        y1=max(line.bbox.y1 for line in lines),
    )


def locate_text(text: str, lines: list[OCRLine]) -> Optional[tuple[int, BoundingBox]]:
    """Find *text* in the first line containing it (case-insensitive).

    Returns ``(line_index, box)`` or None when no line contains it.
    """
    needle = text.lower()
    if not needle:
        return None
    for idx, line in enumerate(lines):
        pos = line.text.lower().find(needle)
        if pos >= 0:
            return idx, interpolate_span(line, pos, pos + len(text))
    return None
