class MultisigError(Exception):
    pass


class MultisigValidationError(MultisigError):
    pass


class SignerNotOwnerError(MultisigValidationError):
    pass


class InvalidSignatureError(MultisigValidationError):
    pass


class InsufficientSignaturesError(MultisigValidationError):
    pass


class MultisigConflictError(MultisigError):
    pass


class NonceConflictError(MultisigConflictError):
    pass


class TransactionQueuedError(MultisigConflictError):
    pass


class TransactionClosedError(MultisigConflictError):
    pass


class MultisigNotFoundError(MultisigError):
    pass


class ExecutionRevertedError(MultisigError):
    def __init__(self, message: str, *, chain_tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.chain_tx_hash = chain_tx_hash


class ExecutionPendingError(MultisigError):
    def __init__(self, message: str, *, chain_tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.chain_tx_hash = chain_tx_hash


class SafeServiceUnavailableError(MultisigError):
    pass


class ExecutionTimeoutError(Exception):
    """Raised by executors when a receipt did not arrive in time."""
