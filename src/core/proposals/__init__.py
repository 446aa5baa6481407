from src.core.proposals.models import (
    ProposalCreateRequest,
    ProposalDetailResponse,
    ProposalEvent,
    ProposalListResponse,
    ProposalSummary,
    ProposalTransactionResponse,
    ProposalVote,
    ProposalVoteRequest,
    ProposalVoteResponse,
)
from src.core.proposals.notifications import LoggingNotificationSink, NotificationSink
from src.core.proposals.repository import ProposalRepository
from src.core.proposals.service import (
    ProposalAuthorizationError,
    ProposalConflictError,
    ProposalLifecycleError,
    ProposalNotFoundError,
    ProposalStateConflictError,
    ProposalTransitionError,
    ProposalValidationError,
    ProposalVotingService,
)

__all__ = [
    "LoggingNotificationSink",
    "NotificationSink",
    "ProposalAuthorizationError",
    "ProposalConflictError",
    "ProposalCreateRequest",
    "ProposalDetailResponse",
    "ProposalEvent",
    "ProposalLifecycleError",
    "ProposalListResponse",
    "ProposalNotFoundError",
    "ProposalRepository",
    "ProposalStateConflictError",
    "ProposalSummary",
    "ProposalTransactionResponse",
    "ProposalTransitionError",
    "ProposalValidationError",
    "ProposalVote",
    "ProposalVoteRequest",
    "ProposalVoteResponse",
    "ProposalVotingService",
]
