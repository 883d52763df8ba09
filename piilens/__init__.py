"""piilens: multi-layer PII detection and obscuring for OCR'd images."""

__version__ = "0.1.0"
