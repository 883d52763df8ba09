"""Combining and cross-validating layer outputs.

``combine`` is the plain union used between stages; ``ensemble_merge``
is the final voting step that only keeps what at least two layers saw.
Both key detections by ``(type, text)``.
"""

from __future__ import annotations

from typing import Iterable

from piilens.detection.detection_config import MIN_AGREEING_SOURCES
from piilens.models.schemas import (
    Detection,
    DetectionMetadata,
    LayerResult,
    OCRResult,
    PIIType,
    clamp_confidence,
)

Key = tuple[PIIType, str]


def _successful(layer_results: Iterable[LayerResult]) -> list[LayerResult]:
    return [r for r in layer_results if r.success]


def _ranked(detections: Iterable[Detection], max_detections: int) -> list[Detection]:
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    return ordered[:max_detections]


def dedup_best(detections: Iterable[Detection]) -> list[Detection]:
    """One detection per key: the highest-confidence one (first wins ties)."""
    best: dict[Key, Detection] = {}
    for det in detections:
        current = best.get(det.key)
        if current is None or det.confidence > current.confidence:
            best[det.key] = det
    return list(best.values())


def combine(layer_results: Iterable[LayerResult], max_detections: int) -> list[Detection]:
    """Union of successful layers, deduplicated, sorted and capped.

    Applying it to its own output (wrapped in a single layer) returns the
    same list.
    """
    pooled = [d for r in _successful(layer_results) for d in r.detections]
    return _ranked(dedup_best(pooled), max_detections)


def ensemble_merge(
    layer_results: Iterable[LayerResult],
    boost: float,
    max_detections: int,
) -> list[Detection]:
    """Cross-validate: keep keys reported by ≥2 distinct successful layers.

    The survivor is the group's best member, re-scored to
    ``min(mean * boost, 1.0)`` and marked verified.
    """
    groups: dict[Key, list[tuple[str, Detection]]] = {}
    for result in _successful(layer_results):
        for det in result.detections:
            groups.setdefault(det.key, []).append((result.layer, det))

    merged: list[Detection] = []
    for members in groups.values():
        if len({layer for layer, _ in members}) < MIN_AGREEING_SOURCES:
            continue
        best = max((d for _, d in members), key=lambda d: d.confidence)
        mean = sum(d.confidence for _, d in members) / len(members)
        merged.append(best.model_copy(update={
            "confidence": clamp_confidence(min(mean * boost, 1.0)),
            "verified": True,
        }))
    return _ranked(merged, max_detections)


def layer_contributions(layer_results: Iterable[LayerResult]) -> dict[str, int]:
    return {r.layer: len(r.detections) for r in _successful(layer_results)}


def cross_validation_score(
    layer_results: Iterable[LayerResult],
    detections: list[Detection],
) -> float:
    """Share of final detections confirmed by two or more layers."""
    if not detections:
        return 0.0
    seen: dict[Key, set[str]] = {}
    for result in _successful(layer_results):
        for det in result.detections:
            seen.setdefault(det.key, set()).add(result.layer)
    confirmed = sum(1 for d in detections if len(seen.get(d.key, ())) >= MIN_AGREEING_SOURCES)
    return round(confirmed / len(detections), 4)


def build_metadata(
    ocr_result: OCRResult,
    layer_results: list[LayerResult],
    detections: list[Detection],
) -> DetectionMetadata:
    sources: dict[str, int] = {}
    for det in detections:
        sources[det.source.value] = sources.get(det.source.value, 0) + 1
    return DetectionMetadata(
        total_lines=len(ocr_result.lines),
        total_characters=len(ocr_result.text),
        detection_sources=sources,
        layer_contributions=layer_contributions(layer_results),
        cross_validation_score=cross_validation_score(layer_results, detections),
    )
