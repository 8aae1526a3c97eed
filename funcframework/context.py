"""Per-invocation context handed to event, CloudEvent and typed functions."""

import time
from datetime import datetime
from typing import Any, Optional

from funcframework.interfaces import Metadata, Resource
from funcframework.logging_utils import LoggingIDs


class Context:
    """Request-scoped values for one function invocation.

    Carries the background event metadata (when the request was a background
    event), the optional deadline and the logging identifiers of the request.
    The deadline is advisory: user code that ignores it keeps running.
    """

    def __init__(
        self,
        metadata: Optional[Metadata] = None,
        deadline: Optional[float] = None,
        logging_ids: Optional[LoggingIDs] = None,
        request: Any = None,
    ) -> None:
        self.metadata = metadata
        self.deadline = deadline
        self.logging_ids = logging_ids
        self.request = request

    @classmethod
    def with_timeout(
        cls,
        timeout: Optional[float],
        logging_ids: Optional[LoggingIDs] = None,
        request: Any = None,
    ) -> "Context":
        """Create a context whose deadline is ``timeout`` seconds from now."""
        deadline = time.monotonic() + timeout if timeout else None
        return cls(deadline=deadline, logging_ids=logging_ids, request=request)

    def with_metadata(self, metadata: Metadata) -> "Context":
        """Return a copy of this context carrying background event metadata."""
        return Context(
            metadata=metadata,
            deadline=self.deadline,
            logging_ids=self.logging_ids,
            request=self.request,
        )

    def time_remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        """True once the deadline has elapsed."""
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def event_id(self) -> str:
        return self.metadata.event_id if self.metadata else ""

    @property
    def event_type(self) -> str:
        return self.metadata.event_type if self.metadata else ""

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.metadata.timestamp if self.metadata else None

    @property
    def resource(self) -> Optional[Resource]:
        return self.metadata.resource if self.metadata else None

    @property
    def execution_id(self) -> str:
        return self.logging_ids.execution_id if self.logging_ids else ""

    def __repr__(self) -> str:
        return (
            f"Context(metadata={self.metadata!r}, deadline={self.deadline!r}, "
            f"logging_ids={self.logging_ids!r})"
        )
