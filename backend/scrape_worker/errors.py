"""
Worker Error Types

Failures raised inside the enrichment pipeline. Everything below
WorkerError is caught at the JobProcessor boundary and converted into
an ``error`` status write; none of them should reach the scheduler.

A lost claim is not an error: JobStore.claim() simply returns False.
"""


class WorkerError(Exception):
    """Base class for enrichment pipeline failures."""


class ExtractionError(WorkerError):
    """A single page extraction attempt failed (navigation, short content)."""


class ScrapeFailure(WorkerError):
    """The page extractor exhausted its retries."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Scraper Error: {cause}")


class ParseError(WorkerError):
    """The model response could not be parsed as a JSON object."""


class RefineFailure(WorkerError):
    """The AI call failed or returned unusable output."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Refiner Error: {cause}")


class TimeoutFailure(WorkerError):
    """The whole-job deadline expired."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        minutes = timeout_seconds / 60
        label = f"{minutes:g}m" if timeout_seconds >= 60 else f"{timeout_seconds:g}s"
        super().__init__(f"Job processing timed out ({label})")


class PersistFailure(WorkerError):
    """Writing the job result back to the store failed."""
