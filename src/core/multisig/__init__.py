from src.core.multisig.coordinator import MultisigCoordinator
from src.core.multisig.errors import (
    ExecutionPendingError,
    ExecutionRevertedError,
    ExecutionTimeoutError,
    InsufficientSignaturesError,
    InvalidSignatureError,
    MultisigConflictError,
    MultisigError,
    MultisigNotFoundError,
    MultisigValidationError,
    NonceConflictError,
    SafeServiceUnavailableError,
    SignerNotOwnerError,
    TransactionClosedError,
    TransactionQueuedError,
)
from src.core.multisig.models import (
    EncodedCall,
    ExecutionResult,
    MultisigTransactionRecord,
    PreparedTransaction,
    RelayPendingResponse,
    SafeInfo,
    SafeTransaction,
    TransactionQueue,
)
from src.core.multisig.protocols import (
    MultisigTransactionRepository,
    SafeExecutor,
    SafeReader,
    SignatureRelay,
)
from src.core.multisig.safe_info import SafeInfoCache

__all__ = [
    "EncodedCall",
    "ExecutionPendingError",
    "ExecutionResult",
    "ExecutionRevertedError",
    "ExecutionTimeoutError",
    "InsufficientSignaturesError",
    "InvalidSignatureError",
    "MultisigConflictError",
    "MultisigCoordinator",
    "MultisigError",
    "MultisigNotFoundError",
    "MultisigTransactionRecord",
    "MultisigTransactionRepository",
    "MultisigValidationError",
    "NonceConflictError",
    "PreparedTransaction",
    "RelayPendingResponse",
    "SafeExecutor",
    "SafeInfo",
    "SafeInfoCache",
    "SafeReader",
    "SafeServiceUnavailableError",
    "SafeTransaction",
    "SignatureRelay",
    "SignerNotOwnerError",
    "TransactionClosedError",
    "TransactionQueue",
    "TransactionQueuedError",
]
