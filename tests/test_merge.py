"""Tests for combining layer outputs and the ensemble vote."""

from __future__ import annotations

import pytest

from piilens.detection.merge import (
    build_metadata,
    combine,
    cross_validation_score,
    dedup_best,
    ensemble_merge,
    layer_contributions,
)
from piilens.errors import make_error
from piilens.models.schemas import (
    Detection,
    DetectionSource,
    LayerResult,
    PIIErrorType,
    PIIType,
)
from piilens.ocr.text_source import PlainTextOCR


def det(pii_type=PIIType.SSN, text="123-45-6789", confidence=0.9, source=DetectionSource.PATTERN):
    return Detection(type=pii_type, text=text, confidence=confidence, source=source)


def layer(name, *detections, success=True):
    error = None if success else make_error(PIIErrorType.PROCESSING, "boom", layer=name)
    return LayerResult(layer=name, detections=list(detections), success=success, error=error)


class TestCombine:
    def test_dedup_keeps_highest(self):
        low, high = det(confidence=0.7), det(confidence=0.9)
        assert dedup_best([low, high]) == [high]

    def test_dedup_first_wins_ties(self):
        a = det(source=DetectionSource.PATTERN)
        b = det(source=DetectionSource.SPECIALIZED)
        assert dedup_best([a, b]) == [a]

    def test_sorted_and_capped(self):
        results = [
            layer("pattern", det(text="a", confidence=0.6), det(text="b", confidence=0.9)),
            layer("specialized", det(text="c", confidence=0.8)),
        ]
        assert [d.text for d in combine(results, max_detections=10)] == ["b", "c", "a"]
        assert [d.text for d in combine(results, max_detections=2)] == ["b", "c"]

    def test_failed_layers_ignored(self):
        results = [layer("pattern", det()), layer("llm", det(text="x"), success=False)]
        assert [d.text for d in combine(results, 10)] == ["123-45-6789"]

    def test_idempotent(self):
        results = [
            layer("pattern", det(confidence=0.7), det(PIIType.EMAIL, "a@b.co", 0.85)),
            layer("specialized", det(confidence=0.95)),
        ]
        once = combine(results, 10)
        assert combine([layer("combined", *once)], 10) == once

    def test_same_text_different_types_are_distinct(self):
        results = [layer("pattern", det(PIIType.NUMERICAL_DATA, "06/03/1981"), det(PIIType.DATE_OF_BIRTH, "06/03/1981"))]
        assert len(combine(results, 10)) == 2


class TestEnsemble:
    def test_single_layer_dropped(self):
        assert ensemble_merge([layer("pattern", det())], boost=1.2, max_detections=10) == []

    def test_two_layers_agree(self):
        results = [
            layer("pattern", det(confidence=0.7)),
            layer("specialized", det(confidence=0.9, source=DetectionSource.SPECIALIZED)),
        ]
        merged = ensemble_merge(results, boost=1.2, max_detections=10)
        assert len(merged) == 1
        assert merged[0].confidence == pytest.approx(0.96)
        assert merged[0].verified is True
        assert merged[0].source == DetectionSource.SPECIALIZED

    def test_boost_capped_at_one(self):
        results = [layer("pattern", det(confidence=0.95)), layer("vision", det(confidence=0.95))]
        assert ensemble_merge(results, boost=1.2, max_detections=10)[0].confidence == 1.0

    def test_repeats_within_one_layer_do_not_count(self):
        results = [layer("pattern", det(confidence=0.7), det(confidence=0.8))]
        assert ensemble_merge(results, boost=1.2, max_detections=10) == []

    def test_failed_layer_does_not_vote(self):
        results = [layer("pattern", det()), layer("llm", det(), success=False)]
        assert ensemble_merge(results, boost=1.2, max_detections=10) == []

    def test_mixed(self):
        results = [
            layer("pattern", det(), det(PIIType.EMAIL, "a@b.co", 0.85)),
            layer("llm", det(confidence=0.8, source=DetectionSource.LLM)),
        ]
        merged = ensemble_merge(results, boost=1.0, max_detections=10)
        assert [(d.type, d.confidence) for d in merged] == [(PIIType.SSN, pytest.approx(0.85))]


class TestMetadata:
    RESULTS = [
        layer("pattern", det(), det(PIIType.EMAIL, "a@b.co", 0.85)),
        layer("specialized", det(source=DetectionSource.SPECIALIZED)),
        layer("llm", det(text="ignored"), success=False),
    ]

    def test_layer_contributions(self):
        assert layer_contributions(self.RESULTS) == {"pattern": 2, "specialized": 1}

    def test_cross_validation_score(self):
        final = combine(self.RESULTS, 10)
        assert cross_validation_score(self.RESULTS, final) == 0.5
        assert cross_validation_score(self.RESULTS, []) == 0.0

    def test_build_metadata(self):
        ocr = PlainTextOCR.recognize_sync("SSN 123-45-6789\nmail a@b.co")
        final = combine(self.RESULTS, 10)
        meta = build_metadata(ocr, self.RESULTS, final)
        assert meta.total_lines == 2
        assert meta.total_characters == len(ocr.text)
        assert meta.detection_sources == {"pattern": 2}
        assert meta.cross_validation_score == 0.5
