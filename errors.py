"""
Error types raised by the test statistics pipeline.
"""


class AnalyzerError(Exception):
    """Base class for all errors surfaced by a run."""


class ProjectLookupError(AnalyzerError):
    """The named project does not exist for the configured account."""

    def __init__(self, name: str):
        super().__init__(f"Project not found: {name}")
        self.name = name


class TransportError(AnalyzerError):
    """A remote call failed: non-success status, network error or malformed payload."""

    def __init__(self, message: str, url: str = '', status: int = 0):
        super().__init__(message)
        self.url = url
        self.status = status


class StatsSealedError(AnalyzerError):
    """Raised when a TestStats table is folded more than once."""
