"""Detection pipeline constants.

Magic numbers shared by the pattern, specialized and vision layers and by
the merge step live here.  Values that operators are expected to tune
(thresholds, timeouts, TTLs) are in :mod:`piilens.config` instead.
"""

from __future__ import annotations

# =============================================================================
# PATTERN ENGINE
# =============================================================================

MAX_MATCHES_PER_PATTERN: int = 10
"""Matches taken per pattern per OCR line.
Bounds the cost of pathological lines (long digit runs, repeated labels)."""

PATTERN_CONFIDENCE_FLOOR: float = 0.60
"""Lower clamp applied to every pattern confidence score."""

PATTERN_CONFIDENCE_CEIL: float = 0.95
"""Upper clamp applied to every pattern confidence score.
Pattern matches alone never claim more than 0.95; certainty above that is
reserved for cross-layer agreement."""

DEFAULT_PATTERN_CONFIDENCE: float = 0.70
"""Score for types without a dedicated scoring rule."""

# =============================================================================
# DOCUMENT-LEVEL DETECTIONS
# =============================================================================

CARD_DOCUMENT_TEXT: str = "CREDIT CARD DOCUMENT"
"""Text of the whole-card detection emitted next to every card number."""

CARD_DOCUMENT_PADDING: float = 80.0
"""Pixels added on every side of the card-number line to cover the card image."""

CARD_DOCUMENT_CONFIDENCE: float = 0.95

LICENSE_DOCUMENT_TEXT: str = "DRIVER LICENSE DOCUMENT"
"""Text of the whole-document detection emitted for licence/ID cards."""

LICENSE_DOCUMENT_PADDING: float = 20.0
"""Pixels added around the union of all OCR lines for licence documents."""

LICENSE_DOCUMENT_CONFIDENCE: float = 0.95

# =============================================================================
# CONTEXT
# =============================================================================

CONTEXT_LINES: int = 1
"""Neighbouring OCR lines (each side) included in a match's scoring context."""

# =============================================================================
# LLM LAYER
# =============================================================================

LLM_MAX_PROMPT_CHARS: int = 8000
"""Input text is truncated to this many characters before prompting."""

LLM_ENSEMBLE_BOOST: float = 1.1
"""Multiplier on the mean confidence of findings agreed by ≥2 providers."""

LLM_DEFAULT_BOX: tuple[float, float, float, float] = (0.0, 0.0, 100.0, 30.0)
"""(x, y, width, height) used when a finding cannot be located on the image."""

MIN_AGREEING_SOURCES: int = 2
"""Independent layers (or providers) required for an ensembled detection."""
