from typing import NoReturn

from fastapi import HTTPException, status

from src.api.routers.runtime_utils import HTTP_422_UNPROCESSABLE
from src.core.multisig import (
    ExecutionPendingError,
    ExecutionRevertedError,
    MultisigConflictError,
    MultisigNotFoundError,
    MultisigValidationError,
    SafeServiceUnavailableError,
)


def raise_multisig_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, MultisigNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, MultisigConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, MultisigValidationError):
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc)) from exc
    if isinstance(exc, ExecutionPendingError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": str(exc), "chain_tx_hash": exc.chain_tx_hash},
        ) from exc
    if isinstance(exc, ExecutionRevertedError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "EXECUTION_REVERTED", "chain_tx_hash": exc.chain_tx_hash},
        ) from exc
    if isinstance(exc, SafeServiceUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    raise exc
