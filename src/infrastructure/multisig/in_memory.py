from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.multisig.models import (
    MultisigTransactionRecord,
    MultisigTransactionStatus,
    SafeConfirmation,
)
from src.core.multisig.protocols import MultisigTransactionRepository


class InMemoryMultisigTransactionRepository(MultisigTransactionRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: dict[str, MultisigTransactionRecord] = {}

    def save_transaction(self, record: MultisigTransactionRecord) -> bool:
        with self._lock:
            if record.safe_tx_hash in self._transactions:
                return False
            self._transactions[record.safe_tx_hash] = deepcopy(record)
            return True

    def get_transaction(self, *, safe_tx_hash: str) -> Optional[MultisigTransactionRecord]:
        with self._lock:
            record = self._transactions.get(safe_tx_hash)
            return deepcopy(record) if record is not None else None

    def list_transactions(
        self,
        *,
        safe_address: str,
        status: Optional[MultisigTransactionStatus],
        nonce: Optional[int] = None,
    ) -> list[MultisigTransactionRecord]:
        wanted = safe_address.lower()
        with self._lock:
            rows = [
                deepcopy(row)
                for row in self._transactions.values()
                if row.safe_address.lower() == wanted
                and (status is None or row.status == status)
                and (nonce is None or row.nonce == nonce)
            ]
        return sorted(rows, key=lambda x: (x.nonce, x.created_at, x.safe_tx_hash))

    def add_confirmation(self, *, safe_tx_hash: str, confirmation: SafeConfirmation) -> bool:
        with self._lock:
            record = self._transactions.get(safe_tx_hash)
            if record is None or record.confirmed_by(confirmation.owner):
                return False
            record.confirmations.append(deepcopy(confirmation))
            return True

    def set_chain_tx_hash(self, *, safe_tx_hash: str, chain_tx_hash: str) -> None:
        with self._lock:
            record = self._transactions.get(safe_tx_hash)
            if record is not None:
                record.chain_tx_hash = chain_tx_hash

    def update_status(
        self,
        *,
        safe_tx_hash: str,
        expected_status: MultisigTransactionStatus,
        status: MultisigTransactionStatus,
        executed_at: Optional[datetime] = None,
    ) -> bool:
        with self._lock:
            record = self._transactions.get(safe_tx_hash)
            if record is None or record.status != expected_status:
                return False
            record.status = status
            if executed_at is not None:
                record.executed_at = executed_at
            return True
