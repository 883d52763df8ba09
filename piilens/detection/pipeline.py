"""PII detection pipeline: runs every layer over one image and merges them.

Stage order::

    vision ∥ OCR → region classification → pattern ∥ specialized
      → combine → LLM detection ∥ LLM verification → ensemble merge
      → obscure

Each stage with a time budget runs as its own task and races against
its timeout and the caller's ``cancel_event``.  A stage that times out,
raises or is cancelled by its timeout becomes a failed ``LayerResult``
with a recorded ``PIIError``; the run carries on without it.  OCR is
load-bearing: when it fails, the text layers see an empty document.

The only exception ``detect`` raises is ``InputValidationError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from piilens.cache import ResultCache, content_hash
from piilens.config import Settings
from piilens.detection.llm_detector import LLMDetector
from piilens.detection.merge import build_metadata, combine, ensemble_merge
from piilens.detection.pattern_detector import PatternDetector
from piilens.detection.region_classifier import RegionClassifier
from piilens.detection.specialized_detector import SpecializedDetector
from piilens.errors import InputValidationError, PIILensError, make_error
from piilens.llm.providers import build_providers
from piilens.models.schemas import (
    CacheStatsResponse,
    Detection,
    DetectionResult,
    LayerResult,
    ObscuringResult,
    OCRResult,
    PIIError,
    PIIErrorType,
    TokenStatsResponse,
    VisionRegion,
)
from piilens.obscurer.engine import ObscuringEngine

logger = logging.getLogger(__name__)

ImageSource = Union[str, bytes]


class OCREngine(Protocol):
    async def recognize(self, image_source: ImageSource) -> OCRResult: ...


class VisionDetector(Protocol):
    async def detect_regions(self, image_source: ImageSource) -> list[VisionRegion]: ...


class _Cancelled(Exception):
    """Raised internally when the caller's cancel event fires."""


def _mean(detections: list[Detection]) -> float:
    if not detections:
        return 0.0
    return round(sum(d.confidence for d in detections) / len(detections), 4)


class _Run:
    """Mutable bookkeeping for one ``detect`` call."""

    def __init__(self, cancel_event: Optional[asyncio.Event]):
        self.cancel_event = cancel_event
        self.errors: list[PIIError] = []
        self.layers: list[LayerResult] = []
        self.ocr_result = OCRResult.empty()

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise _Cancelled()

    def add_layer(self, result: LayerResult) -> None:
        self.layers.append(result)
        if result.error is not None:
            self.errors.append(result.error)


class DetectionPipeline:
    """Multi-layer detector.  Collaborators are injected; defaults come from settings."""

    def __init__(
        self,
        settings: Settings,
        ocr: OCREngine,
        vision: Optional[VisionDetector] = None,
        pattern_detector: Optional[PatternDetector] = None,
        specialized_detector: Optional[SpecializedDetector] = None,
        region_classifier: Optional[RegionClassifier] = None,
        llm_detector: Optional[LLMDetector] = None,
        obscurer: Optional[ObscuringEngine] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.settings = settings
        self.ocr = ocr
        self.vision = vision
        self.pattern_detector = pattern_detector or PatternDetector(
            settings.confidence_threshold, settings.max_detections,
        )
        self.specialized_detector = specialized_detector or SpecializedDetector(
            settings.confidence_threshold, settings.max_detections,
        )
        self.region_classifier = region_classifier or RegionClassifier()

        wants_llm = settings.llm.enabled or settings.verification.enabled
        if llm_detector is None and wants_llm:
            llm_detector = LLMDetector(build_providers(settings.llm), settings.llm)
        self.llm_detector = llm_detector

        self.obscurer = obscurer or ObscuringEngine(settings.obscuring)
        if cache is None and settings.cache.enabled:
            cache = ResultCache(settings.cache.ttl_seconds)
        self.cache = cache

    # ── Public API ────────────────────────────────────────────────

    async def detect(
        self,
        image_source: ImageSource,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DetectionResult:
        """Run every enabled layer over *image_source*.

        Raises:
            InputValidationError: *image_source* is empty or not str/bytes.
        """
        self._validate_input(image_source)

        key = content_hash(image_source) if self.cache is not None else None
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Cache hit for %s", key)
                return cached

        t0 = time.perf_counter()
        run = _Run(cancel_event)
        try:
            detections, obscured = await self._run_stages(image_source, run)
        except _Cancelled:
            run.errors.append(make_error(
                PIIErrorType.PROCESSING, "Detection cancelled", layer="pipeline",
            ))
            return DetectionResult(
                success=False,
                detections=[],
                errors=run.errors,
                processing_time=(time.perf_counter() - t0) * 1000,
                metadata=build_metadata(run.ocr_result, run.layers, []),
            )

        result = DetectionResult(
            success=not run.errors,
            detections=detections,
            errors=run.errors,
            processing_time=(time.perf_counter() - t0) * 1000,
            metadata=build_metadata(run.ocr_result, run.layers, detections),
            obscured=obscured,
        )
        logger.info(
            "Detection finished: %d detections, %d errors in %.0fms",
            len(detections), len(run.errors), result.processing_time,
            extra={"detections": len(detections), "duration_ms": round(result.processing_time, 1)},
        )
        if key is not None:
            self.cache.put(key, result)
        return result

    def clear_cache(self) -> int:
        return self.cache.clear() if self.cache is not None else 0

    def cache_stats(self) -> CacheStatsResponse:
        if self.cache is None:
            return CacheStatsResponse(size=0, ttl_seconds=0.0, hits=0, misses=0)
        return self.cache.stats()

    def clear_tokens(self) -> int:
        """Forget every token; cached results holding those tokens are dropped too."""
        self.clear_cache()
        return self.obscurer.clear_tokens()

    def token_stats(self) -> TokenStatsResponse:
        return self.obscurer.token_stats()

    def provider_stats(self) -> list[dict[str, Any]]:
        return self.llm_detector.provider_stats() if self.llm_detector is not None else []

    async def aclose(self) -> None:
        if self.llm_detector is not None:
            await self.llm_detector.aclose()

    # ── Stages ────────────────────────────────────────────────────

    @staticmethod
    def _validate_input(image_source: Any) -> None:
        if not isinstance(image_source, (str, bytes)):
            raise InputValidationError(
                "Image source must be str or bytes",
                details={"received": type(image_source).__name__},
            )
        if isinstance(image_source, str) and not image_source.strip():
            raise InputValidationError("Image source is empty")
        if isinstance(image_source, bytes) and not image_source:
            raise InputValidationError("Image source is empty")

    async def _run_stages(
        self, image_source: ImageSource, run: _Run,
    ) -> tuple[list[Detection], list[ObscuringResult]]:
        s = self.settings
        run.check_cancelled()

        # Vision ∥ OCR
        vision_on = s.vision.enabled and self.vision is not None
        vision_out, _ = await self._gather(
            self._vision_stage(image_source, run) if vision_on else _nothing(),
            self._ocr_stage(image_source, run),
        )
        text = run.ocr_result.text

        # Region classification
        if vision_out is not None:
            regions, elapsed = vision_out
            found = self.region_classifier.classify(regions, run.ocr_result)
            run.add_layer(LayerResult(
                layer="vision", detections=found, confidence=_mean(found), processing_time=elapsed,
            ))

        # Pattern ∥ Specialized
        text_layers = []
        if s.pattern.enabled:
            text_layers.append(self._layer(
                "pattern", asyncio.to_thread(self.pattern_detector.detect, run.ocr_result),
                s.pattern.timeout, PIIErrorType.PROCESSING, run,
            ))
        if s.specialized.enabled:
            text_layers.append(self._layer(
                "specialized", asyncio.to_thread(self.specialized_detector.detect, run.ocr_result),
                s.specialized.timeout, PIIErrorType.PROCESSING, run,
            ))
        await self._gather(*text_layers, keep=run.add_layer)

        combined = combine(run.layers, s.max_detections)

        # LLM detection ∥ verification
        llm_layers = []
        if self.llm_detector is not None and text.strip():
            lines = run.ocr_result.lines
            if s.llm.enabled:
                llm_layers.append(self._llm_layer(
                    "llm", self.llm_detector.detect(text, lines=lines), s.llm.timeout, run,
                ))
            if s.verification.enabled and combined:
                llm_layers.append(self._llm_layer(
                    "verification", self.llm_detector.verify(text, combined, lines=lines),
                    s.verification.timeout, run,
                ))
        await self._gather(*llm_layers, keep=run.add_layer)

        run.check_cancelled()

        # Ensemble merge
        if s.ensemble.enabled:
            merged, error, _ = await self._guarded(
                "ensemble",
                asyncio.to_thread(ensemble_merge, run.layers, s.ensemble.boost, s.max_detections),
                s.ensemble.timeout, PIIErrorType.PROCESSING, run,
            )
            if error is not None:
                run.errors.append(error)
                merged = []
            final = merged
        else:
            final = combine(run.layers, s.max_detections)

        # Obscure
        obscured: list[ObscuringResult] = []
        if s.obscuring.enabled and final:
            out, error, _ = await self._guarded(
                "obscuring", asyncio.to_thread(self._obscure_all, final),
                s.obscuring.timeout, PIIErrorType.PROCESSING, run,
            )
            if error is not None:
                run.errors.append(error)
            else:
                obscured, obscure_errors = out
                run.errors.extend(obscure_errors)

        return final, obscured

    def _obscure_all(self, detections: list[Detection]) -> tuple[list[ObscuringResult], list[PIIError]]:
        technique = self.settings.obscuring.default_technique
        results: list[ObscuringResult] = []
        errors: list[PIIError] = []
        for det in detections:
            try:
                results.append(self.obscurer.obscure(det, technique))
            except PIILensError as e:
                errors.append(e.to_record(layer="obscuring"))
                results.append(self.obscurer.error_result(det.text, technique, e.message))
        return results, errors

    # ── Task plumbing ─────────────────────────────────────────────

    @staticmethod
    async def _gather(*coros: Awaitable, keep: Optional[Callable[[Any], None]] = None) -> list:
        """Await *coros* concurrently; cancellation in any of them wins.

        Results of the coroutines that did finish are handed to *keep*
        before a cancellation is re-raised, so their errors are reported.
        """
        results = await asyncio.gather(*coros, return_exceptions=True)
        failure = next((item for item in results if isinstance(item, BaseException)), None)
        if keep is not None:
            for item in results:
                if not isinstance(item, BaseException):
                    keep(item)
        if failure is not None:
            raise failure
        return list(results)

    async def _vision_stage(
        self, image_source: ImageSource, run: _Run,
    ) -> Optional[tuple[list[VisionRegion], float]]:
        regions, error, elapsed = await self._guarded(
            "vision", self.vision.detect_regions(image_source),
            self.settings.vision.timeout, PIIErrorType.VISION, run,
        )
        if error is not None:
            run.add_layer(LayerResult(layer="vision", success=False, error=error, processing_time=elapsed))
            return None
        return regions or [], elapsed

    async def _ocr_stage(self, image_source: ImageSource, run: _Run) -> None:
        result, error, _ = await self._guarded(
            "ocr", self.ocr.recognize(image_source),
            self.settings.ocr_timeout, PIIErrorType.OCR, run,
        )
        if error is not None:
            run.errors.append(error)
        run.ocr_result = result if isinstance(result, OCRResult) else OCRResult.empty()

    async def _guarded(
        self,
        stage: str,
        work: Awaitable,
        timeout: float,
        error_type: PIIErrorType,
        run: _Run,
    ) -> tuple[Any, Optional[PIIError], float]:
        """Run *work* under *timeout*; return ``(value, error, elapsed_ms)``.

        Raises ``_Cancelled`` if the run's cancel event fires first.
        """
        t0 = time.perf_counter()
        task = asyncio.ensure_future(work)
        value, error = None, None
        try:
            value = await _race(task, timeout, run.cancel_event)
        except asyncio.TimeoutError:
            error = make_error(error_type, f"{stage} timed out after {timeout}s", layer=stage,
                               details={"timeout": timeout})
        except PIILensError as e:
            error = make_error(e.error_type, e.message, layer=stage, details=e.details)
        except _Cancelled:
            raise
        except Exception as e:
            logger.debug("%s failed", stage, exc_info=True)
            error = make_error(error_type, f"{type(e).__name__}: {e}", layer=stage)
        elapsed = (time.perf_counter() - t0) * 1000
        if error is None:
            logger.info("%s finished in %.0fms", stage, elapsed,
                        extra={"layer": stage, "duration_ms": round(elapsed, 1)})
        return value, error, elapsed

    async def _layer(
        self, layer: str, work: Awaitable, timeout: float, error_type: PIIErrorType, run: _Run,
    ) -> LayerResult:
        detections, error, elapsed = await self._guarded(layer, work, timeout, error_type, run)
        if error is not None:
            return LayerResult(layer=layer, success=False, error=error, processing_time=elapsed)
        return LayerResult(
            layer=layer, detections=detections, confidence=_mean(detections), processing_time=elapsed,
        )

    async def _llm_layer(self, layer: str, work: Awaitable, timeout: float, run: _Run) -> LayerResult:
        outcome, error, elapsed = await self._guarded(layer, work, timeout, PIIErrorType.LLM, run)
        if error is not None:
            return LayerResult(layer=layer, success=False, error=error, processing_time=elapsed)
        return LayerResult(
            layer=layer,
            detections=outcome.detections,
            confidence=_mean(outcome.detections),
            processing_time=elapsed,
            provider=outcome.provider,
        )


async def _nothing() -> None:
    return None


async def _race(task: asyncio.Future, timeout: float, cancel_event: Optional[asyncio.Event]) -> Any:
    """Wait for *task*, its timeout or *cancel_event*, whichever comes first.

    The losing task is cancelled; its partial work is discarded.
    """
    waiter: Optional[asyncio.Future] = None
    if cancel_event is not None:
        if cancel_event.is_set():
            task.cancel()
            raise _Cancelled()
        waiter = asyncio.ensure_future(cancel_event.wait())

    pending = {task} if waiter is None else {task, waiter}
    try:
        done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if waiter is not None:
            waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    if waiter is not None and waiter in done:
        raise _Cancelled()
    raise asyncio.TimeoutError()
