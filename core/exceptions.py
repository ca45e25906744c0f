"""
Named errors raised by the pipeline.
"""


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class AlreadyRunning(PipelineError):
    """``start_all`` was called while the orchestrator is starting or running."""


class UnknownCollector(PipelineError):
    """A collector name that was never registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown collector: {name}")
        self.name = name


class ConfigError(PipelineError):
    """Configuration file missing or invalid."""


class FetchError(PipelineError):
    """An external fetch failed after retries or timed out."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class NormalizationError(PipelineError):
    """A fetched item could not be turned into a record."""
