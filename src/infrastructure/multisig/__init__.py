from src.infrastructure.multisig.in_memory import InMemoryMultisigTransactionRepository
from src.infrastructure.multisig.postgres import PostgresMultisigTransactionRepository

__all__ = [
    "InMemoryMultisigTransactionRepository",
    "PostgresMultisigTransactionRepository",
]
