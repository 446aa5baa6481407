from datetime import datetime
from typing import Any, Optional, Protocol

from src.core.multisig.models import (
    ExecutionReceipt,
    MultisigTransactionRecord,
    MultisigTransactionStatus,
    SafeConfirmation,
    SafeTransaction,
)


class SafeReader(Protocol):
    def get_safe_address(self) -> str: ...

    def get_owners(self) -> list[str]: ...

    def get_threshold(self) -> int: ...

    def get_nonce(self) -> int: ...

    def get_transaction_hash(self, tx: SafeTransaction) -> str: ...


class SafeExecutor(Protocol):
    def submit(self, tx: SafeTransaction, *, signatures: str) -> str: ...

    def wait_for_receipt(self, chain_tx_hash: str, *, timeout: float) -> ExecutionReceipt: ...

    def get_receipt(self, chain_tx_hash: str) -> Optional[ExecutionReceipt]: ...


class SignatureRelay(Protocol):
    def propose_transaction(
        self,
        *,
        safe_address: str,
        tx: SafeTransaction,
        safe_tx_hash: str,
        sender: str,
        signature: str,
    ) -> None: ...

    def confirm_transaction(self, *, safe_tx_hash: str, signature: str) -> None: ...

    def list_pending_transactions(self, *, safe_address: str) -> list[dict[str, Any]]: ...


class MultisigTransactionRepository(Protocol):
    def save_transaction(self, record: MultisigTransactionRecord) -> bool: ...

    def get_transaction(self, *, safe_tx_hash: str) -> Optional[MultisigTransactionRecord]: ...

    def list_transactions(
        self,
        *,
        safe_address: str,
        status: Optional[MultisigTransactionStatus],
        nonce: Optional[int] = None,
    ) -> list[MultisigTransactionRecord]: ...

    def add_confirmation(self, *, safe_tx_hash: str, confirmation: SafeConfirmation) -> bool: ...

    def set_chain_tx_hash(self, *, safe_tx_hash: str, chain_tx_hash: str) -> None: ...

    def update_status(
        self,
        *,
        safe_tx_hash: str,
        expected_status: MultisigTransactionStatus,
        status: MultisigTransactionStatus,
        executed_at: Optional[datetime] = None,
    ) -> bool: ...
