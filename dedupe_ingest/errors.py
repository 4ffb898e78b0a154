"""Exception taxonomy for the ingestion pipeline.

Cycle-scoped errors (source, sink read) abort a cycle before any write.
Batch-scoped errors (write) are recorded and never abort the cycle.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for pipeline errors"""
    pass


class InvalidConfiguration(IngestError, ValueError):
    """Rejected settings; raised before a cycle starts"""
    pass


class SourceError(IngestError):
    """Upstream source could not produce a snapshot"""
    pass


class SourceUnavailable(SourceError):
    pass


class SourceTimeout(SourceError):
    pass


class SinkUnavailable(IngestError):
    """Existing keys could not be read from the sink"""
    pass


class WriteError(IngestError):
    """Base class for batch append failures signalled by a sink writer"""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RetryableWriteError(WriteError):
    """Transient failure (rate limit, dropped connection); the batch may be retried"""
    pass


class PermanentWriteError(WriteError):
    """The batch was rejected and must not be retried in this cycle"""
    pass
