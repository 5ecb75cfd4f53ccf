"""Error taxonomy for the design-context pipeline.

Every error carries a machine-readable ``status`` and a ``details`` dict so
the driver can report failed node ids and reasons without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DesignContextError(Exception):
    """Base class for all pipeline errors."""

    status = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, **self.details}


class InvalidInputError(DesignContextError):
    """Missing identifiers, malformed coordinates, or an oversized batch."""

    status = "invalid_input"


class NodeNotFoundError(DesignContextError):
    """Requested node id is absent from the fetched subtree."""

    status = "node_not_found"

    def __init__(
        self,
        message: str,
        file_key: Optional[str] = None,
        node_id: Optional[str] = None,
        available: Optional[List[str]] = None,
    ):
        super().__init__(message, file_key=file_key, node_id=node_id, available=available)
        self.file_key = file_key
        self.node_id = node_id
        self.available = available or []


class FigmaClientError(DesignContextError):
    """Raised when a Figma API call fails."""

    status = "remote_error"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        file_key: Optional[str] = None,
        node_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message,
            operation=operation,
            file_key=file_key,
            node_id=node_id,
            status_code=status_code,
        )
        self.operation = operation
        self.file_key = file_key
        self.node_id = node_id
        self.status_code = status_code


class RemoteUnavailableError(FigmaClientError):
    """Network failure or 5xx after the retry budget is exhausted."""

    status = "remote_unavailable"


class RateLimitExceededError(FigmaClientError):
    """Token bucket stayed empty past the wait bound, or Figma returned 429."""

    status = "rate_limited"


class PartialFailureError(DesignContextError):
    """Batch operation where some items failed.

    Never raised by the pipeline itself; attached to batch results so callers
    that prefer exceptions can raise it.
    """

    status = "partial_failure"

    def __init__(self, message: str, failed: List[Dict[str, Any]], results: List[Any]):
        super().__init__(message, failed=failed)
        self.failed = failed
        self.results = results


class FilesystemError(DesignContextError):
    """No materialization strategy could place the file."""

    status = "filesystem_error"


class OperationCancelledError(DesignContextError):
    """The driver cancelled the invocation between two units of work."""

    status = "cancelled"
