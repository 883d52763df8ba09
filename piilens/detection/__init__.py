"""Detection package."""


def __getattr__(name: str):
    """Lazy re-export so that ``from piilens.detection import DetectionPipeline``
    works without importing the LLM and obscuring stacks up front."""
    if name == "DetectionPipeline":
        from piilens.detection.pipeline import DetectionPipeline  # noqa: F811
        return DetectionPipeline
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
