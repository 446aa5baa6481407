import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from src.core.multisig.errors import (
    ExecutionPendingError,
    ExecutionRevertedError,
    ExecutionTimeoutError,
    InsufficientSignaturesError,
    MultisigConflictError,
    MultisigNotFoundError,
    MultisigValidationError,
    NonceConflictError,
    SafeServiceUnavailableError,
    SignerNotOwnerError,
    TransactionClosedError,
    TransactionQueuedError,
)
from src.core.multisig.encoding import describe_call
from src.core.multisig.hashing import compute_safe_tx_hash
from src.core.multisig.models import (
    EncodedCall,
    ExecutionReceipt,
    ExecutionResult,
    MultisigTransactionRecord,
    MultisigTransactionStatus,
    PreparedTransaction,
    RelayPendingResponse,
    SafeConfirmation,
    SafeTransaction,
    TransactionQueue,
)
from src.core.multisig.protocols import (
    MultisigTransactionRepository,
    SafeExecutor,
    SignatureRelay,
)
from src.core.multisig.safe_info import SafeInfoCache
from src.core.multisig.signatures import sort_and_concat_signatures, verify_owner_signature

logger = logging.getLogger(__name__)


class MultisigCoordinator:
    def __init__(
        self,
        *,
        repository: MultisigTransactionRepository,
        safe_info: SafeInfoCache,
        executor: Optional[SafeExecutor] = None,
        relay: Optional[SignatureRelay] = None,
        chain_id: Optional[int] = None,
        on_executed: Optional[Callable[[MultisigTransactionRecord], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._safe_info = safe_info
        self._reader = safe_info.reader
        self._executor = executor
        self._relay = relay
        self._chain_id = chain_id
        self._on_executed = on_executed
        self._clock = clock or _utc_now

    def prepare_transaction(
        self,
        *,
        encoded: EncodedCall,
        proposed_by: str,
        proposal_id: Optional[str] = None,
        nonce: Optional[int] = None,
    ) -> PreparedTransaction:
        info = self._safe_info.get(force_refresh=True)
        if not info.has_owner(proposed_by):
            raise SignerNotOwnerError("SIGNER_NOT_OWNER")
        if nonce is None:
            nonce = info.nonce
        elif nonce < info.nonce:
            raise MultisigValidationError("NONCE_ALREADY_USED")

        tx = SafeTransaction(to=encoded.to, value=encoded.value, data=encoded.data, nonce=nonce)
        safe_tx_hash = self._reader.get_transaction_hash(tx).lower()
        if self._chain_id is not None:
            offline_hash = compute_safe_tx_hash(
                tx, safe_address=info.address, chain_id=self._chain_id
            )
            if offline_hash != safe_tx_hash:
                logger.error(
                    "Safe transaction hash mismatch",
                    extra={
                        "extra_fields": {
                            "safe_address": info.address,
                            "chain_id": self._chain_id,
                            "onchain_hash": safe_tx_hash,
                            "offline_hash": offline_hash,
                        }
                    },
                )
                raise MultisigValidationError("SAFE_TX_HASH_MISMATCH")

        record = MultisigTransactionRecord(
            safe_tx_hash=safe_tx_hash,
            safe_address=info.address,
            transaction=tx,
            proposal_id=proposal_id,
            description=encoded.description,
            proposed_by=proposed_by.lower(),
            created_at=self._clock(),
        )
        created = self._repository.save_transaction(record)
        stored = self._require(safe_tx_hash)
        conflicts = [
            item
            for item in self._repository.list_transactions(
                safe_address=info.address, status="open", nonce=nonce
            )
            if item.safe_tx_hash != safe_tx_hash
        ]
        if conflicts:
            logger.warning(
                "Nonce conflict detected",
                extra={
                    "extra_fields": {
                        "safe_tx_hash": safe_tx_hash,
                        "nonce": nonce,
                        "conflicting_hashes": [item.safe_tx_hash for item in conflicts],
                    }
                },
            )
        logger.info(
            "Safe transaction prepared",
            extra={
                "extra_fields": {
                    "safe_tx_hash": safe_tx_hash,
                    "nonce": nonce,
                    "proposal_id": proposal_id,
                    "function": describe_call(encoded.data),
                    "created": created,
                }
            },
        )
        return PreparedTransaction(record=stored, conflicts=conflicts, created=created)

    def collect_signature(
        self, *, safe_tx_hash: str, signer_address: str, signature: str
    ) -> MultisigTransactionRecord:
        record = self._require(safe_tx_hash)
        if record.status != "open":
            raise TransactionClosedError("TRANSACTION_NOT_OPEN")
        if not self._safe_info.is_owner(signer_address):
            raise SignerNotOwnerError("SIGNER_NOT_OWNER")
        verified = verify_owner_signature(
            safe_tx_hash=record.safe_tx_hash,
            signer_address=signer_address,
            signature=signature,
        )
        if record.confirmed_by(verified.owner):
            return record

        confirmation = SafeConfirmation(
            owner=verified.owner,
            signature=verified.signature,
            submitted_at=self._clock(),
        )
        added = self._repository.add_confirmation(
            safe_tx_hash=record.safe_tx_hash, confirmation=confirmation
        )
        if added:
            logger.info(
                "Safe confirmation collected",
                extra={
                    "extra_fields": {
                        "safe_tx_hash": record.safe_tx_hash,
                        "owner": verified.owner,
                        "signature_kind": verified.kind,
                        "confirmations": len(record.confirmations) + 1,
                    }
                },
            )
            if self._relay is not None:
                self._forward_to_relay(record, confirmation)
        return self._require(record.safe_tx_hash)

    def get_transaction(self, *, safe_tx_hash: str) -> MultisigTransactionRecord:
        return self._require(safe_tx_hash)

    def list_transactions(
        self, *, status: Optional[MultisigTransactionStatus]
    ) -> list[MultisigTransactionRecord]:
        info = self._safe_info.get()
        return self._repository.list_transactions(safe_address=info.address, status=status)

    def list_relay_pending(self) -> RelayPendingResponse:
        if self._relay is None:
            raise MultisigValidationError("RELAY_NOT_CONFIGURED")
        info = self._safe_info.get()
        return RelayPendingResponse(
            safe_address=info.address,
            items=self._relay.list_pending_transactions(safe_address=info.address),
        )

    def list_executable(self) -> TransactionQueue:
        info = self._safe_info.get(force_refresh=True)
        queue = TransactionQueue(current_nonce=info.nonce)
        reconciled: list[str] = []
        for record in self._repository.list_transactions(
            safe_address=info.address, status="open"
        ):
            if record.nonce < info.nonce:
                if record.chain_tx_hash is not None and self._held_for_receipt(record):
                    reconciled.append(record.safe_tx_hash)
                elif self._repository.update_status(
                    safe_tx_hash=record.safe_tx_hash,
                    expected_status="open",
                    status="superseded",
                ):
                    queue.superseded.append(record.model_copy(update={"status": "superseded"}))
            elif record.nonce == info.nonce:
                queue.executable.append(record)
            else:
                queue.queued.append(record)
        queue.queued.sort(key=lambda item: (item.nonce, item.created_at))
        if queue.superseded:
            logger.info(
                "Dead Safe transactions superseded",
                extra={
                    "extra_fields": {
                        "current_nonce": info.nonce,
                        "superseded": [item.safe_tx_hash for item in queue.superseded],
                    }
                },
            )
        if reconciled:
            logger.info(
                "Submitted Safe transactions reconciled against receipts",
                extra={
                    "extra_fields": {"current_nonce": info.nonce, "safe_tx_hashes": reconciled}
                },
            )
        return queue

    def execute(self, *, safe_tx_hash: str, timeout: float) -> ExecutionResult:
        if self._executor is None:
            raise MultisigValidationError("EXECUTOR_NOT_CONFIGURED")
        record = self._require(safe_tx_hash)
        if record.status == "executed":
            raise TransactionClosedError("TRANSACTION_ALREADY_EXECUTED")
        if record.chain_tx_hash is not None:
            settled = self._resume_submission(record)
            if settled is not None:
                return settled
        if record.status == "superseded":
            raise NonceConflictError("NONCE_CONFLICT")

        info = self._safe_info.get(force_refresh=True)
        if record.nonce < info.nonce:
            self._supersede(record)
            raise NonceConflictError("NONCE_CONFLICT")
        if record.nonce > info.nonce:
            raise TransactionQueuedError("TRANSACTION_QUEUED")

        confirmations = [
            (item.owner, item.signature)
            for item in record.confirmations
            if info.has_owner(item.owner)
        ]
        if len(confirmations) < info.threshold:
            raise InsufficientSignaturesError("INSUFFICIENT_SIGNATURES")
        signatures = sort_and_concat_signatures(confirmations)

        try:
            chain_tx_hash = self._executor.submit(record.transaction, signatures=signatures)
        except ExecutionRevertedError:
            if self._nonce_advanced(record):
                self._supersede(record)
                raise NonceConflictError("NONCE_CONFLICT") from None
            raise
        self._repository.set_chain_tx_hash(
            safe_tx_hash=record.safe_tx_hash, chain_tx_hash=chain_tx_hash
        )
        logger.info(
            "Safe transaction submitted",
            extra={
                "extra_fields": {
                    "safe_tx_hash": record.safe_tx_hash,
                    "chain_tx_hash": chain_tx_hash,
                    "nonce": record.nonce,
                }
            },
        )

        try:
            receipt = self._executor.wait_for_receipt(chain_tx_hash, timeout=timeout)
        except ExecutionTimeoutError:
            receipt = self._resolve_after_timeout(record, chain_tx_hash)

        if not receipt.succeeded:
            if self._nonce_advanced(record):
                self._supersede(record)
                raise NonceConflictError("NONCE_CONFLICT")
            raise ExecutionRevertedError("EXECUTION_REVERTED", chain_tx_hash=chain_tx_hash)
        return self._finalize(record, chain_tx_hash)

    def _resume_submission(self, record: MultisigTransactionRecord) -> Optional[ExecutionResult]:
        """Settle an earlier submission before anything is sent again.

        Returns None only when the earlier submission is known to have reverted
        while the Safe nonce is still unused, so a fresh submission is safe.
        """
        chain_tx_hash = record.chain_tx_hash
        receipt = self._lookup_receipt(record, chain_tx_hash)
        if receipt.succeeded:
            return self._finalize(record, chain_tx_hash)
        if self._nonce_advanced(record):
            self._supersede(record)
            raise NonceConflictError("NONCE_CONFLICT")
        logger.warning(
            "Previous Safe submission reverted",
            extra={
                "extra_fields": {
                    "safe_tx_hash": record.safe_tx_hash,
                    "chain_tx_hash": chain_tx_hash,
                    "nonce": record.nonce,
                }
            },
        )
        return None

    def _resolve_after_timeout(
        self, record: MultisigTransactionRecord, chain_tx_hash: str
    ) -> ExecutionReceipt:
        logger.warning(
            "Execution receipt wait timed out",
            extra={
                "extra_fields": {
                    "safe_tx_hash": record.safe_tx_hash,
                    "chain_tx_hash": chain_tx_hash,
                }
            },
        )
        return self._lookup_receipt(record, chain_tx_hash)

    def _lookup_receipt(
        self, record: MultisigTransactionRecord, chain_tx_hash: str
    ) -> ExecutionReceipt:
        receipt = self._executor.get_receipt(chain_tx_hash)
        if receipt is not None:
            return receipt
        if self._nonce_advanced(record):
            # the nonce may move between the two reads
            receipt = self._executor.get_receipt(chain_tx_hash)
            if receipt is not None:
                return receipt
            self._supersede(record)
            raise NonceConflictError("NONCE_CONFLICT")
        raise ExecutionPendingError("EXECUTION_PENDING", chain_tx_hash=chain_tx_hash)

    def _held_for_receipt(self, record: MultisigTransactionRecord) -> bool:
        if self._executor is None:
            return True
        receipt = self._executor.get_receipt(record.chain_tx_hash)
        if receipt is None:
            return True
        if receipt.succeeded:
            self._finalize(record, record.chain_tx_hash)
            return True
        return False

    def _finalize(self, record: MultisigTransactionRecord, chain_tx_hash: str) -> ExecutionResult:
        executed_at = self._clock()
        claimed = any(
            self._repository.update_status(
                safe_tx_hash=record.safe_tx_hash,
                expected_status=expected,
                status="executed",
                executed_at=executed_at,
            )
            for expected in ("open", "superseded")
        )
        executed = self._require(record.safe_tx_hash)
        if executed.status != "executed":
            logger.error(
                "Mined Safe transaction could not be marked executed",
                extra={
                    "extra_fields": {
                        "safe_tx_hash": record.safe_tx_hash,
                        "chain_tx_hash": chain_tx_hash,
                        "status": executed.status,
                    }
                },
            )
            raise MultisigConflictError("STATE_CONFLICT: status changed concurrently")
        superseded: list[str] = []
        for other in self._repository.list_transactions(
            safe_address=record.safe_address, status="open", nonce=record.nonce
        ):
            if self._repository.update_status(
                safe_tx_hash=other.safe_tx_hash,
                expected_status="open",
                status="superseded",
            ):
                superseded.append(other.safe_tx_hash)
        self._safe_info.invalidate()
        logger.info(
            "Safe transaction executed",
            extra={
                "extra_fields": {
                    "safe_tx_hash": record.safe_tx_hash,
                    "chain_tx_hash": chain_tx_hash,
                    "nonce": record.nonce,
                    "superseded": superseded,
                    "claimed": claimed,
                }
            },
        )
        if claimed and self._on_executed is not None and executed.proposal_id is not None:
            try:
                self._on_executed(executed)
            except Exception:
                logger.exception(
                    "Executed callback failed",
                    extra={
                        "extra_fields": {
                            "safe_tx_hash": executed.safe_tx_hash,
                            "proposal_id": executed.proposal_id,
                        }
                    },
                )
        return ExecutionResult(
            safe_tx_hash=record.safe_tx_hash,
            chain_tx_hash=chain_tx_hash,
            nonce=record.nonce,
            proposal_id=record.proposal_id,
            superseded=superseded,
        )

    def _forward_to_relay(
        self, record: MultisigTransactionRecord, confirmation: SafeConfirmation
    ) -> None:
        try:
            if not record.confirmations:
                self._relay.propose_transaction(
                    safe_address=record.safe_address,
                    tx=record.transaction,
                    safe_tx_hash=record.safe_tx_hash,
                    sender=confirmation.owner,
                    signature=confirmation.signature,
                )
            else:
                self._relay.confirm_transaction(
                    safe_tx_hash=record.safe_tx_hash, signature=confirmation.signature
                )
        except SafeServiceUnavailableError as exc:
            logger.warning(
                "Signature relay unavailable",
                extra={
                    "extra_fields": {
                        "safe_tx_hash": record.safe_tx_hash,
                        "owner": confirmation.owner,
                        "error": str(exc),
                    }
                },
            )

    def _nonce_advanced(self, record: MultisigTransactionRecord) -> bool:
        return self._safe_info.get(force_refresh=True).nonce > record.nonce

    def _supersede(self, record: MultisigTransactionRecord) -> None:
        if self._repository.update_status(
            safe_tx_hash=record.safe_tx_hash, expected_status="open", status="superseded"
        ):
            logger.warning(
                "Safe transaction superseded",
                extra={
                    "extra_fields": {"safe_tx_hash": record.safe_tx_hash, "nonce": record.nonce}
                },
            )

    def _require(self, safe_tx_hash: str) -> MultisigTransactionRecord:
        record = self._repository.get_transaction(safe_tx_hash=safe_tx_hash.lower())
        if record is None:
            raise MultisigNotFoundError("SAFE_TRANSACTION_NOT_FOUND")
        return record


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
