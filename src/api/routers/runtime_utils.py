import os
from typing import NoReturn

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)

STORE_DSN_REQUIRED = "GOVERNANCE_POSTGRES_DSN_REQUIRED"
STORE_CONNECTION_FAILED = "GOVERNANCE_POSTGRES_CONNECTION_FAILED"


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def assert_feature_enabled(*, name: str, default: bool, detail: str) -> None:
    if not env_flag(name, default):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def raise_store_unavailable(exc: RuntimeError) -> NoReturn:
    """Report a store that could not be built as 503.

    Only the missing-DSN case is surfaced verbatim; driver and connection
    failures collapse into one detail so DSNs never reach clients.
    """
    detail = str(exc)
    if detail != STORE_DSN_REQUIRED:
        detail = STORE_CONNECTION_FAILED
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail) from exc
