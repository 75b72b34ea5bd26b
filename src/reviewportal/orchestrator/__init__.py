"""Review orchestration: state machine, runs, poller and onboarding."""

from reviewportal.orchestrator.initializer import (
    InitResult,
    ProjectInitializer,
    SyncResult,
    sync_projects,
)
from reviewportal.orchestrator.poller import GitHubPoller, PollResult
from reviewportal.orchestrator.publisher import (
    PublishResult,
    ReviewPublisher,
    build_review_request,
    comment_payload,
    review_event_for,
)
from reviewportal.orchestrator.recovery import StaleClaimReconciler
from reviewportal.orchestrator.review_runner import (
    OutcomeStatus,
    ReviewClaim,
    ReviewOrchestrator,
    ReviewOutcome,
    ReviewTarget,
    new_review_id,
    new_session_id,
)
from reviewportal.orchestrator.services import PortalServices, build_services
from reviewportal.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    ReviewState,
    ReviewStateTracker,
    validate_transition,
)
from reviewportal.orchestrator.tasks import TaskRegistry

__all__ = [
    "GitHubPoller",
    "InitResult",
    "InvalidTransitionError",
    "OutcomeStatus",
    "PollResult",
    "PortalServices",
    "ProjectInitializer",
    "PublishResult",
    "ReviewClaim",
    "ReviewOrchestrator",
    "ReviewOutcome",
    "ReviewPublisher",
    "ReviewState",
    "ReviewStateTracker",
    "ReviewTarget",
    "StaleClaimReconciler",
    "SyncResult",
    "TaskRegistry",
    "VALID_TRANSITIONS",
    "build_review_request",
    "build_services",
    "comment_payload",
    "new_review_id",
    "new_session_id",
    "review_event_for",
    "sync_projects",
    "validate_transition",
]
