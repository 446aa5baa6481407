import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from src.api.observability import record_multisig_execution
from src.api.routers import chain_config, proposals_config
from src.api.routers.governance_runtime import get_chain_client, get_safe_info_cache
from src.api.routers.multisig_http_errors import raise_multisig_http_exception
from src.api.routers.proposal_http_errors import raise_proposal_http_exception
from src.api.routers.proposals import get_proposal_voting_service
from src.api.routers.runtime_utils import (
    assert_feature_enabled,
    raise_store_unavailable,
)
from src.core.multisig import (
    ExecutionPendingError,
    ExecutionResult,
    ExecutionRevertedError,
    MultisigCoordinator,
    MultisigError,
    MultisigTransactionRecord,
    MultisigTransactionRepository,
    NonceConflictError,
    PreparedTransaction,
    RelayPendingResponse,
    TransactionQueue,
)
from src.core.multisig.models import (
    MultisigExecuteRequest,
    MultisigPrepareRequest,
    MultisigSignatureRequest,
    MultisigTransactionStatus,
)
from src.core.proposals import ProposalLifecycleError, ProposalVotingService
from src.core.proposals.service import SYSTEM_ACTOR

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Safe Multisig Coordination"])

_REPOSITORY: Optional[MultisigTransactionRepository] = None
_COORDINATOR: Optional[MultisigCoordinator] = None


def _build_repository() -> MultisigTransactionRepository:
    try:
        return proposals_config.build_multisig_repository()
    except RuntimeError as exc:
        raise_store_unavailable(exc)


def _mark_proposal_executed(record: MultisigTransactionRecord) -> None:
    get_proposal_voting_service().mark_executed(
        proposal_id=record.proposal_id,
        safe_tx_hash=record.safe_tx_hash,
        actor_address=SYSTEM_ACTOR,
    )


def get_multisig_coordinator() -> MultisigCoordinator:
    global _REPOSITORY
    global _COORDINATOR
    if _COORDINATOR is None:
        if _REPOSITORY is None:
            _REPOSITORY = _build_repository()
        w3 = get_chain_client()
        _COORDINATOR = MultisigCoordinator(
            repository=_REPOSITORY,
            safe_info=get_safe_info_cache(),
            executor=chain_config.build_safe_executor(w3),
            relay=chain_config.build_signature_relay(),
            chain_id=chain_config.safe_chain_id(),
            on_executed=_mark_proposal_executed,
        )
    return _COORDINATOR


def reset_multisig_coordinator_for_tests() -> None:
    global _REPOSITORY
    global _COORDINATOR
    _REPOSITORY = None
    _COORDINATOR = None


def _assert_multisig_enabled() -> None:
    assert_feature_enabled(
        name="MULTISIG_COORDINATION_ENABLED",
        default=True,
        detail="MULTISIG_COORDINATION_DISABLED",
    )


SafeTxHashPath = Annotated[
    str,
    Path(
        description="EIP-712 Safe transaction hash.",
        pattern=r"^0x[a-fA-F0-9]{64}$",
        examples=["0x" + "cd" * 32],
    ),
]


@router.post(
    "/multisig/transactions",
    response_model=PreparedTransaction,
    status_code=status.HTTP_200_OK,
    summary="Prepare Safe Transaction",
    description=(
        "Encodes the approved proposal's registry call, binds it to a Safe nonce and "
        "records it for signature collection. Other open transactions at the same nonce "
        "are returned as conflicts."
    ),
)
def prepare_transaction(
    payload: MultisigPrepareRequest,
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
    proposals: Annotated[ProposalVotingService, Depends(get_proposal_voting_service)] = None,
) -> PreparedTransaction:
    _assert_multisig_enabled()
    try:
        encoded = proposals.get_transaction_data(proposal_id=payload.proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)
    try:
        return coordinator.prepare_transaction(
            encoded=encoded.transaction_data,
            proposed_by=payload.proposed_by,
            proposal_id=payload.proposal_id,
            nonce=payload.nonce,
        )
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.get(
    "/multisig/transactions",
    response_model=List[MultisigTransactionRecord],
    status_code=status.HTTP_200_OK,
    summary="List Safe Transactions",
    description="Lists tracked Safe transactions for the configured Safe.",
)
def list_transactions(
    status_filter: Annotated[
        Optional[MultisigTransactionStatus],
        Query(alias="status", description="Tracking status filter.", examples=["open"]),
    ] = None,
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> List[MultisigTransactionRecord]:
    _assert_multisig_enabled()
    try:
        return coordinator.list_transactions(status=status_filter)
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.get(
    "/multisig/transactions/executable",
    response_model=TransactionQueue,
    status_code=status.HTTP_200_OK,
    summary="Get Execution Queue",
    description=(
        "Groups open transactions against the live Safe nonce. Transactions below the "
        "nonce are marked superseded."
    ),
)
def get_execution_queue(
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> TransactionQueue:
    _assert_multisig_enabled()
    try:
        return coordinator.list_executable()
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.get(
    "/multisig/transactions/relay-pending",
    response_model=RelayPendingResponse,
    status_code=status.HTTP_200_OK,
    summary="List Relay Pending Transactions",
    description="Reads unexecuted transactions from the Safe Transaction Service.",
)
def list_relay_pending(
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> RelayPendingResponse:
    _assert_multisig_enabled()
    try:
        return coordinator.list_relay_pending()
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.get(
    "/multisig/transactions/{safe_tx_hash}",
    response_model=MultisigTransactionRecord,
    status_code=status.HTTP_200_OK,
    summary="Get Safe Transaction",
    description="Returns the tracked transaction with its collected confirmations.",
)
def get_transaction(
    safe_tx_hash: SafeTxHashPath,
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> MultisigTransactionRecord:
    _assert_multisig_enabled()
    try:
        return coordinator.get_transaction(safe_tx_hash=safe_tx_hash)
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.post(
    "/multisig/transactions/{safe_tx_hash}/signatures",
    response_model=MultisigTransactionRecord,
    status_code=status.HTTP_200_OK,
    summary="Submit Owner Signature",
    description=(
        "Verifies the signature recovers to the submitting owner and stores it. "
        "Resubmitting a signature from the same owner is a no-op."
    ),
)
def submit_signature(
    safe_tx_hash: SafeTxHashPath,
    payload: MultisigSignatureRequest,
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> MultisigTransactionRecord:
    _assert_multisig_enabled()
    try:
        return coordinator.collect_signature(
            safe_tx_hash=safe_tx_hash,
            signer_address=payload.signer_address,
            signature=payload.signature,
        )
    except MultisigError as exc:
        raise_multisig_http_exception(exc)


@router.post(
    "/multisig/transactions/{safe_tx_hash}/execute",
    response_model=ExecutionResult,
    status_code=status.HTTP_200_OK,
    summary="Execute Safe Transaction",
    description=(
        "Submits execTransaction with owner signatures sorted by address and waits for the "
        "receipt. A competing execution at the same nonce surfaces as NONCE_CONFLICT."
    ),
)
def execute_transaction(
    safe_tx_hash: SafeTxHashPath,
    payload: Optional[MultisigExecuteRequest] = None,
    coordinator: Annotated[MultisigCoordinator, Depends(get_multisig_coordinator)] = None,
) -> ExecutionResult:
    _assert_multisig_enabled()
    request = payload or MultisigExecuteRequest()
    try:
        result = coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=request.timeout_seconds)
    except MultisigError as exc:
        record_multisig_execution(_execution_outcome(exc))
        logger.warning(
            "Safe transaction execution failed",
            extra={"extra_fields": {"safe_tx_hash": safe_tx_hash, "error": str(exc)}},
        )
        raise_multisig_http_exception(exc)
    record_multisig_execution("executed")
    return result


def _execution_outcome(exc: MultisigError) -> str:
    if isinstance(exc, ExecutionRevertedError):
        return "reverted"
    if isinstance(exc, ExecutionPendingError):
        return "pending"
    if isinstance(exc, NonceConflictError):
        return "nonce_conflict"
    return "rejected"
