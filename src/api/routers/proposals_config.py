import os
import warnings
from typing import cast

from src.core.multisig.protocols import MultisigTransactionRepository
from src.core.proposals.repository import ProposalRepository
from src.infrastructure.multisig import (
    InMemoryMultisigTransactionRepository,
    PostgresMultisigTransactionRepository,
)
from src.infrastructure.proposals import InMemoryProposalRepository, PostgresProposalRepository


def governance_store_backend_name() -> str:
    backend = os.getenv("GOVERNANCE_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    warnings.warn(
        "GOVERNANCE_STORE_BACKEND legacy runtime backend (IN_MEMORY) is deprecated; "
        "use POSTGRES.",
        DeprecationWarning,
        stacklevel=2,
    )
    return "IN_MEMORY"


def governance_postgres_dsn() -> str:
    return os.getenv("GOVERNANCE_POSTGRES_DSN", "").strip()


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def _required_dsn() -> str:
    dsn = governance_postgres_dsn()
    if not dsn:
        raise RuntimeError("GOVERNANCE_POSTGRES_DSN_REQUIRED")
    return dsn


def build_repository() -> ProposalRepository:
    if governance_store_backend_name() == "POSTGRES":
        dsn = _required_dsn()
        try:
            return cast(ProposalRepository, PostgresProposalRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("GOVERNANCE_POSTGRES_CONNECTION_FAILED") from exc
    return cast(ProposalRepository, InMemoryProposalRepository())


def build_multisig_repository() -> MultisigTransactionRepository:
    if governance_store_backend_name() == "POSTGRES":
        dsn = _required_dsn()
        try:
            return cast(
                MultisigTransactionRepository, PostgresMultisigTransactionRepository(dsn=dsn)
            )
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("GOVERNANCE_POSTGRES_CONNECTION_FAILED") from exc
    return cast(MultisigTransactionRepository, InMemoryMultisigTransactionRepository())
