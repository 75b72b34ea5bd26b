"""Progress events emitted by discovery and orchestration.

The core only produces ``ReviewEvent`` values and hands them to an
``EventSink``; transports (SSE, CLI console) decide how to render them.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """Event vocabulary shared by the streaming endpoints."""

    STATUS = "status"
    INFO = "info"
    PRS_FOUND = "prs_found"
    PR_STATUS = "pr_status"
    REVIEW_TRIGGERED = "review_triggered"
    CLI_OUTPUT = "cli_output"
    REVIEW_SAVED = "review_saved"
    REVIEW_ERROR = "review_error"
    SESSION_EVENT = "session_event"
    DONE = "done"
    ERROR = "error"


@dataclass
class ReviewEvent:
    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        """Flatten into ``{"type": kind, **data}``."""
        return {"type": self.kind.value, **self.data}

    def to_sse(self) -> dict[str, str]:
        return {"data": json.dumps(self.to_frame(), default=str)}


EventSink = Callable[[ReviewEvent], Awaitable[None]]


async def null_sink(event: ReviewEvent) -> None:
    return None


def event(kind: EventKind, **data: Any) -> ReviewEvent:
    return ReviewEvent(kind=kind, data=data)
