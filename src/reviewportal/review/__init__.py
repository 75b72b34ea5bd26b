"""PR discovery and progress event vocabulary."""

from reviewportal.review.discovery import (
    DiscoveryResult,
    PRClassification,
    PRDiscovery,
    PRReviewStatus,
    PullRequestCandidate,
    classify,
)
from reviewportal.review.events import EventKind, EventSink, ReviewEvent, event, null_sink

__all__ = [
    "DiscoveryResult",
    "EventKind",
    "EventSink",
    "PRClassification",
    "PRDiscovery",
    "PRReviewStatus",
    "PullRequestCandidate",
    "ReviewEvent",
    "classify",
    "event",
    "null_sink",
]
