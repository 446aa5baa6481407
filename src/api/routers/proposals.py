from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from src.api.observability import record_proposal_transition
from src.api.routers import chain_config, proposals_config
from src.api.routers.governance_runtime import get_safe_info_cache
from src.api.routers.proposal_http_errors import raise_proposal_http_exception
from src.api.routers.runtime_utils import (
    assert_feature_enabled,
    raise_store_unavailable,
)
from src.core.multisig.errors import SafeServiceUnavailableError
from src.core.proposals import (
    ProposalCreateRequest,
    ProposalDetailResponse,
    ProposalLifecycleError,
    ProposalListResponse,
    ProposalRepository,
    ProposalTransactionResponse,
    ProposalVoteRequest,
    ProposalVoteResponse,
    ProposalVotingService,
)
from src.core.proposals.models import (
    ProposalEventsResponse,
    ProposalExecutedRequest,
    ProposalExpirySweepResponse,
    ProposalStatus,
    ProposalType,
)

router = APIRouter(tags=["Council Governance Proposals"])

_REPOSITORY: Optional[ProposalRepository] = None
_SERVICE: Optional[ProposalVotingService] = None


def _build_repository() -> ProposalRepository:
    try:
        return proposals_config.build_repository()
    except RuntimeError as exc:
        raise_store_unavailable(exc)


def get_proposal_voting_service() -> ProposalVotingService:
    global _REPOSITORY
    global _SERVICE
    if _SERVICE is None:
        registry_address = chain_config.council_registry_address()
        if not registry_address:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="COUNCIL_REGISTRY_ADDRESS_REQUIRED",
            )
        if _REPOSITORY is None:
            _REPOSITORY = _build_repository()
        _SERVICE = ProposalVotingService(
            repository=_REPOSITORY,
            safe_info=get_safe_info_cache(),
            registry_address=registry_address,
            on_transition=record_proposal_transition,
        )
    return _SERVICE


def reset_proposal_voting_service_for_tests() -> None:
    global _REPOSITORY
    global _SERVICE
    _REPOSITORY = None
    _SERVICE = None


def _assert_proposals_enabled() -> None:
    assert_feature_enabled(
        name="GOVERNANCE_PROPOSALS_ENABLED",
        default=True,
        detail="GOVERNANCE_PROPOSALS_DISABLED",
    )


ProposalIdPath = Annotated[
    str,
    Path(description="Governance proposal identifier.", examples=["gp_3f9c2a1b7d4e"]),
]


@router.post(
    "/governance/proposals",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Governance Proposal",
    description=(
        "Validates the type-specific payload, checks the proposer is a current Safe owner, "
        "snapshots the Safe threshold and opens a seven day voting window."
    ),
)
def create_proposal(
    payload: ProposalCreateRequest,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalDetailResponse:
    _assert_proposals_enabled()
    try:
        return service.create_proposal(
            proposal_type=payload.proposal_type,
            proposer_address=payload.proposer_address,
            payload=payload.payload,
        )
    except (ProposalLifecycleError, SafeServiceUnavailableError) as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/governance/proposals",
    response_model=ProposalListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Governance Proposals",
    description="Lists proposals newest first with optional filters and cursor pagination.",
)
def list_proposals(
    status_filter: Annotated[
        Optional[ProposalStatus],
        Query(alias="status", description="Proposal status filter.", examples=["pending"]),
    ] = None,
    proposal_type: Annotated[
        Optional[ProposalType],
        Query(description="Proposal type filter.", examples=["add_member"]),
    ] = None,
    council_id: Annotated[
        Optional[str],
        Query(description="Target council id filter.", examples=["0x" + "ab" * 32]),
    ] = None,
    limit: Annotated[
        int,
        Query(description="Page size.", ge=1, le=100, examples=[20]),
    ] = 20,
    cursor: Annotated[
        Optional[str],
        Query(description="Opaque cursor from previous list response.", examples=["gp_123"]),
    ] = None,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalListResponse:
    _assert_proposals_enabled()
    return service.list_proposals(
        status=status_filter,
        proposal_type=proposal_type,
        council_id=council_id,
        limit=limit,
        cursor=cursor,
    )


@router.get(
    "/governance/proposals/pending",
    response_model=ProposalListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Votable Proposals",
    description="Returns pending proposals whose voting window is still open.",
)
def list_pending_proposals(
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalListResponse:
    _assert_proposals_enabled()
    return service.list_pending_proposals()


@router.post(
    "/governance/proposals/expire",
    response_model=ProposalExpirySweepResponse,
    status_code=status.HTTP_200_OK,
    summary="Expire Overdue Proposals",
    description="Moves every pending proposal past its voting deadline to expired.",
)
def expire_overdue_proposals(
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalExpirySweepResponse:
    _assert_proposals_enabled()
    expired = service.expire_overdue_proposals()
    return ProposalExpirySweepResponse(expired_proposal_ids=expired)


@router.get(
    "/governance/proposals/{proposal_id}",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Governance Proposal",
    description=(
        "Returns the proposal with its votes. Pending proposals past their deadline are "
        "expired on read."
    ),
)
def get_proposal(
    proposal_id: ProposalIdPath,
    viewer_address: Annotated[
        Optional[str],
        Query(
            description="Optional signer address used to fill my_vote.",
            pattern=r"^0x[a-fA-F0-9]{40}$",
            examples=["0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"],
        ),
    ] = None,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalDetailResponse:
    _assert_proposals_enabled()
    try:
        return service.get_proposal(proposal_id=proposal_id, viewer_address=viewer_address)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/governance/proposals/{proposal_id}/votes",
    response_model=ProposalVoteResponse,
    status_code=status.HTTP_200_OK,
    summary="Cast Vote",
    description=(
        "Records or changes a signer's vote and resolves the proposal when the threshold "
        "is met, rejection becomes certain, or the deadline has passed. Approval returns "
        "the encoded Safe call."
    ),
)
def cast_vote(
    proposal_id: ProposalIdPath,
    payload: ProposalVoteRequest,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalVoteResponse:
    _assert_proposals_enabled()
    try:
        return service.cast_vote(
            proposal_id=proposal_id,
            voter_address=payload.voter_address,
            choice=payload.choice,
        )
    except (ProposalLifecycleError, SafeServiceUnavailableError) as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/governance/proposals/{proposal_id}/events",
    response_model=ProposalEventsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Proposal Audit Events",
    description="Returns the append-only audit trail of the proposal.",
)
def list_proposal_events(
    proposal_id: ProposalIdPath,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalEventsResponse:
    _assert_proposals_enabled()
    try:
        return service.list_events(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/governance/proposals/{proposal_id}/transaction-data",
    response_model=ProposalTransactionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Encoded Safe Call",
    description="Returns the registry call an approved proposal executes through the Safe.",
)
def get_transaction_data(
    proposal_id: ProposalIdPath,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalTransactionResponse:
    _assert_proposals_enabled()
    try:
        return service.get_transaction_data(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/governance/proposals/{proposal_id}/executed",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark Proposal Executed",
    description=(
        "Records that the approved proposal's Safe transaction was executed. "
        "Repeating the call with the same hash is a no-op."
    ),
)
def mark_proposal_executed(
    proposal_id: ProposalIdPath,
    payload: ProposalExecutedRequest,
    service: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> ProposalDetailResponse:
    _assert_proposals_enabled()
    try:
        return service.mark_executed(
            proposal_id=proposal_id,
            safe_tx_hash=payload.safe_tx_hash,
            actor_address=payload.actor_address,
        )
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)
