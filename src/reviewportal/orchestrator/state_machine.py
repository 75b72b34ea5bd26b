"""Review run state machine.

One review attempt for one pull request moves through::

    QUEUED -> CLONING -> RUNNING_AGENT -> SAVING_OUTPUT -> REMOVING_LABEL -> DONE

``FAILED`` is reachable from every non-terminal state. ``PARTIAL`` is
reached from SAVING_OUTPUT when the agent succeeded but its artifact was
missing or unreadable.
"""

from __future__ import annotations

from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class ReviewState(str, Enum):
    QUEUED = "queued"
    CLONING = "cloning"
    RUNNING_AGENT = "running_agent"
    SAVING_OUTPUT = "saving_output"
    REMOVING_LABEL = "removing_label"
    DONE = "done"
    PARTIAL = "partial"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted.

    Attributes:
        current: The current review state.
        target: The attempted target state.
        review_id: The review that failed to transition.
    """

    def __init__(self, current: ReviewState, target: ReviewState, review_id: str | None = None):
        self.current = current
        self.target = target
        self.review_id = review_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if review_id:
            msg += f" for review {review_id}"
        super().__init__(msg)


VALID_TRANSITIONS: dict[ReviewState, set[ReviewState]] = {
    ReviewState.QUEUED: {ReviewState.CLONING, ReviewState.FAILED},
    ReviewState.CLONING: {ReviewState.RUNNING_AGENT, ReviewState.FAILED},
    ReviewState.RUNNING_AGENT: {ReviewState.SAVING_OUTPUT, ReviewState.FAILED},
    ReviewState.SAVING_OUTPUT: {
        ReviewState.REMOVING_LABEL,
        ReviewState.PARTIAL,
        ReviewState.FAILED,
    },
    ReviewState.REMOVING_LABEL: {ReviewState.DONE, ReviewState.FAILED},
    ReviewState.DONE: set(),
    ReviewState.PARTIAL: set(),
    ReviewState.FAILED: set(),
}

TERMINAL_STATES = frozenset({ReviewState.DONE, ReviewState.PARTIAL, ReviewState.FAILED})


def validate_transition(current: ReviewState, target: ReviewState) -> bool:
    """Validate if a state transition is allowed.

    Args:
        current: Current review state.
        target: Target review state.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


class ReviewStateTracker:
    """In-memory state of a single review attempt.

    Records every state entered so callers and tests can inspect the path
    a run took.
    """

    def __init__(self, review_id: str) -> None:
        self.review_id = review_id
        self.state = ReviewState.QUEUED
        self.history: list[ReviewState] = [ReviewState.QUEUED]
        self.logger = logger.bind(component="ReviewStateTracker", review_id=review_id)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: ReviewState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the transition is not valid.
        """
        if not validate_transition(self.state, target):
            raise InvalidTransitionError(self.state, target, self.review_id)
        self.logger.info("review_transition", from_state=self.state.value, to_state=target.value)
        self.state = target
        self.history.append(target)

    def fail(self) -> None:
        """Move to FAILED unless already terminal."""
        if not self.is_terminal:
            self.advance(ReviewState.FAILED)
