import pytest
from fastapi import HTTPException

from src.api.routers.runtime_utils import HTTP_422_UNPROCESSABLE
from src.api.routers.multisig_http_errors import raise_multisig_http_exception
from src.core.multisig.errors import (
    ExecutionPendingError,
    ExecutionRevertedError,
    InsufficientSignaturesError,
    InvalidSignatureError,
    MultisigNotFoundError,
    NonceConflictError,
    SafeServiceUnavailableError,
    SignerNotOwnerError,
    TransactionClosedError,
    TransactionQueuedError,
)

CHAIN_TX_HASH = "0x" + "ee" * 32


@pytest.mark.parametrize(
    ("exc", "expected_status"),
    [
        (MultisigNotFoundError("SAFE_TRANSACTION_NOT_FOUND"), 404),
        (NonceConflictError("NONCE_CONFLICT"), 409),
        (TransactionQueuedError("TRANSACTION_QUEUED"), 409),
        (TransactionClosedError("TRANSACTION_NOT_OPEN"), 409),
        (SignerNotOwnerError("SIGNER_NOT_OWNER"), HTTP_422_UNPROCESSABLE),
        (InvalidSignatureError("SIGNATURE_SIGNER_MISMATCH"), HTTP_422_UNPROCESSABLE),
        (InsufficientSignaturesError("INSUFFICIENT_SIGNATURES"), HTTP_422_UNPROCESSABLE),
        (SafeServiceUnavailableError("SAFE_RPC_UNAVAILABLE: nonce"), 503),
    ],
)
def test_raise_multisig_http_exception_maps_domain_errors(
    exc: Exception, expected_status: int
) -> None:
    with pytest.raises(HTTPException) as caught:
        raise_multisig_http_exception(exc)
    assert caught.value.status_code == expected_status
    assert caught.value.detail == str(exc)


def test_execution_outcomes_carry_chain_transaction_hash() -> None:
    with pytest.raises(HTTPException) as pending:
        raise_multisig_http_exception(
            ExecutionPendingError("EXECUTION_PENDING", chain_tx_hash=CHAIN_TX_HASH)
        )
    with pytest.raises(HTTPException) as reverted:
        raise_multisig_http_exception(
            ExecutionRevertedError("EXECUTION_REVERTED: GS013", chain_tx_hash=None)
        )

    assert pending.value.status_code == 409
    assert pending.value.detail == {"code": "EXECUTION_PENDING", "chain_tx_hash": CHAIN_TX_HASH}
    assert reverted.value.status_code == 502
    assert reverted.value.detail == {"code": "EXECUTION_REVERTED", "chain_tx_hash": None}


def test_raise_multisig_http_exception_reraises_unknown_error() -> None:
    with pytest.raises(RuntimeError, match="boom"):
        raise_multisig_http_exception(RuntimeError("boom"))
