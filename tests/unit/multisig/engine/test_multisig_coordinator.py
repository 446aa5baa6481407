import logging

import pytest
from eth_utils import to_checksum_address

from src.core.multisig.coordinator import MultisigCoordinator
from src.core.multisig.encoding import ADD_MEMBER_SIGNATURE, encode_call
from src.core.multisig.errors import (
    ExecutionPendingError,
    ExecutionRevertedError,
    InsufficientSignaturesError,
    InvalidSignatureError,
    MultisigNotFoundError,
    MultisigValidationError,
    NonceConflictError,
    SignerNotOwnerError,
    TransactionClosedError,
    TransactionQueuedError,
)
from src.core.multisig.hashing import compute_safe_tx_hash
from src.core.multisig.models import EncodedCall, ExecutionReceipt
from src.core.multisig.safe_info import SafeInfoCache
from src.infrastructure.multisig import InMemoryMultisigTransactionRepository
from tests.factories import (
    CHAIN_ID,
    CHAIN_TX_HASH,
    COUNCIL_ID,
    OUTSIDER,
    OWNERS,
    REGISTRY_ADDRESS,
    SAFE_ADDRESS,
    FakeSafeExecutor,
    FakeSafeReader,
    FakeSignatureRelay,
    MutableClock,
    sign_prefixed_hash,
    sign_typed_hash,
)

A, B, C = OWNERS


class _Harness:
    def __init__(self, *, chain_id=CHAIN_ID, with_executor=True, on_executed=None):
        self.clock = MutableClock()
        self.reader = FakeSafeReader()
        self.executor = FakeSafeExecutor(self.reader)
        self.relay = FakeSignatureRelay()
        self.repository = InMemoryMultisigTransactionRepository()
        self.executed = []
        self.coordinator = MultisigCoordinator(
            repository=self.repository,
            safe_info=SafeInfoCache(reader=self.reader, clock=self.clock),
            executor=self.executor if with_executor else None,
            relay=self.relay,
            chain_id=chain_id,
            on_executed=on_executed or self.executed.append,
            clock=self.clock,
        )

    def prepare(self, member: str = "0x" + "12" * 20, nonce=None, proposal_id="gp_1"):
        return self.coordinator.prepare_transaction(
            encoded=_encoded(member), proposed_by=A, proposal_id=proposal_id, nonce=nonce
        )

    def sign(self, safe_tx_hash: str, *indexes: int):
        for index in indexes:
            self.coordinator.collect_signature(
                safe_tx_hash=safe_tx_hash,
                signer_address=OWNERS[index],
                signature=sign_typed_hash(index, safe_tx_hash),
            )


def _encoded(member: str) -> EncodedCall:
    return EncodedCall(
        to=REGISTRY_ADDRESS,
        data=encode_call(
            ADD_MEMBER_SIGNATURE, [bytes.fromhex(COUNCIL_ID[2:]), to_checksum_address(member)]
        ),
        description=f"addMember({COUNCIL_ID}, {member})",
    )


def test_prepare_binds_current_nonce_and_is_idempotent():
    harness = _Harness()
    harness.reader.nonce = 5

    prepared = harness.prepare()
    again = harness.prepare()

    record = prepared.record
    assert prepared.created is True
    assert again.created is False
    assert again.record.safe_tx_hash == record.safe_tx_hash
    assert record.nonce == 5
    assert record.status == "open"
    assert record.proposed_by == A.lower()
    assert record.safe_tx_hash == compute_safe_tx_hash(
        record.transaction, safe_address=SAFE_ADDRESS, chain_id=CHAIN_ID
    )


def test_prepare_logs_the_registry_function_being_called(caplog):
    harness = _Harness()

    with caplog.at_level(logging.INFO):
        harness.prepare()

    prepared = [record for record in caplog.records if record.msg == "Safe transaction prepared"]
    assert prepared[0].extra_fields["function"] == "addMember"


def test_prepare_reports_other_transactions_at_the_same_nonce():
    harness = _Harness()
    first = harness.prepare(member="0x" + "12" * 20)
    second = harness.prepare(member="0x" + "34" * 20)

    assert first.conflicts == []
    assert [item.safe_tx_hash for item in second.conflicts] == [first.record.safe_tx_hash]


def test_prepare_accepts_future_nonce_and_refuses_used_nonce():
    harness = _Harness()
    harness.reader.nonce = 3

    assert harness.prepare(nonce=4).record.nonce == 4
    with pytest.raises(MultisigValidationError, match="NONCE_ALREADY_USED"):
        harness.prepare(nonce=2)


def test_prepare_requires_owner_and_matching_offline_hash():
    harness = _Harness()
    with pytest.raises(SignerNotOwnerError, match="SIGNER_NOT_OWNER"):
        harness.coordinator.prepare_transaction(
            encoded=_encoded("0x" + "12" * 20), proposed_by=OUTSIDER.address
        )

    mismatched = _Harness(chain_id=1)
    with pytest.raises(MultisigValidationError, match="SAFE_TX_HASH_MISMATCH"):
        mismatched.prepare()


def test_collect_signature_stores_relays_and_dedupes():
    harness = _Harness()
    safe_tx_hash = harness.prepare().record.safe_tx_hash

    harness.sign(safe_tx_hash, 0)
    record = harness.coordinator.collect_signature(
        safe_tx_hash=safe_tx_hash,
        signer_address=B,
        signature=sign_prefixed_hash(1, safe_tx_hash),
    )
    repeated = harness.coordinator.collect_signature(
        safe_tx_hash=safe_tx_hash,
        signer_address=A,
        signature=sign_typed_hash(0, safe_tx_hash),
    )

    assert [item.owner for item in record.confirmations] == [A.lower(), B.lower()]
    assert len(repeated.confirmations) == 2
    assert len(harness.relay.proposed) == 1
    assert harness.relay.proposed[0]["sender"] == A.lower()
    assert harness.relay.proposed[0]["safe_tx_hash"] == safe_tx_hash
    assert [item["safe_tx_hash"] for item in harness.relay.confirmed] == [safe_tx_hash]


def test_collect_signature_rejects_outsiders_and_forgeries():
    harness = _Harness()
    safe_tx_hash = harness.prepare().record.safe_tx_hash

    with pytest.raises(SignerNotOwnerError):
        harness.coordinator.collect_signature(
            safe_tx_hash=safe_tx_hash,
            signer_address=OUTSIDER.address,
            signature=sign_typed_hash(0, safe_tx_hash),
        )
    with pytest.raises(InvalidSignatureError, match="SIGNATURE_SIGNER_MISMATCH"):
        harness.coordinator.collect_signature(
            safe_tx_hash=safe_tx_hash,
            signer_address=B,
            signature=sign_typed_hash(0, safe_tx_hash),
        )
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).confirmations == []


def test_relay_outage_does_not_block_signature_collection(caplog):
    harness = _Harness()
    harness.relay.unavailable = True
    safe_tx_hash = harness.prepare().record.safe_tx_hash

    with caplog.at_level(logging.WARNING):
        harness.sign(safe_tx_hash, 0)

    assert len(harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).confirmations) == 1
    assert "Signature relay unavailable" in caplog.text


def test_execute_submits_sorted_signatures_and_supersedes_conflicts():
    harness = _Harness()
    winner = harness.prepare(member="0x" + "12" * 20).record.safe_tx_hash
    loser = harness.prepare(member="0x" + "34" * 20, proposal_id="gp_2").record.safe_tx_hash
    harness.sign(winner, 2, 0)

    result = harness.coordinator.execute(safe_tx_hash=winner, timeout=5)

    assert result.chain_tx_hash == CHAIN_TX_HASH
    assert result.nonce == 0
    assert result.proposal_id == "gp_1"
    assert result.superseded == [loser]
    _, signatures = harness.executor.submissions[0]
    owners = sorted([A.lower(), C.lower()], key=lambda owner: int(owner, 16))
    expected = [
        item.signature.removeprefix("0x")
        for owner in owners
        for item in harness.coordinator.get_transaction(safe_tx_hash=winner).confirmations
        if item.owner == owner
    ]
    assert signatures == "0x" + "".join(expected)
    executed = harness.coordinator.get_transaction(safe_tx_hash=winner)
    assert executed.status == "executed"
    assert executed.chain_tx_hash == CHAIN_TX_HASH
    assert executed.executed_at == harness.clock.now
    assert harness.coordinator.get_transaction(safe_tx_hash=loser).status == "superseded"
    assert [record.safe_tx_hash for record in harness.executed] == [winner]

    with pytest.raises(TransactionClosedError, match="TRANSACTION_ALREADY_EXECUTED"):
        harness.coordinator.execute(safe_tx_hash=winner, timeout=5)
    with pytest.raises(NonceConflictError):
        harness.coordinator.execute(safe_tx_hash=loser, timeout=5)
    with pytest.raises(TransactionClosedError, match="TRANSACTION_NOT_OPEN"):
        harness.sign(loser, 1)


def test_execute_requires_threshold_signatures_from_current_owners():
    harness = _Harness()
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)
    harness.reader.owners = [OWNERS[0], OWNERS[2]]

    with pytest.raises(InsufficientSignaturesError, match="INSUFFICIENT_SIGNATURES"):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    assert harness.executor.submissions == []


def test_execute_refuses_queued_and_dead_transactions():
    harness = _Harness()
    queued = harness.prepare(nonce=1).record.safe_tx_hash
    with pytest.raises(TransactionQueuedError, match="TRANSACTION_QUEUED"):
        harness.coordinator.execute(safe_tx_hash=queued, timeout=5)

    dead = harness.prepare(member="0x" + "34" * 20).record.safe_tx_hash
    harness.reader.nonce = 1
    with pytest.raises(NonceConflictError, match="NONCE_CONFLICT"):
        harness.coordinator.execute(safe_tx_hash=dead, timeout=5)
    assert harness.coordinator.get_transaction(safe_tx_hash=dead).status == "superseded"


def test_execute_requires_configured_executor_and_known_hash():
    harness = _Harness(with_executor=False)
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    with pytest.raises(MultisigValidationError, match="EXECUTOR_NOT_CONFIGURED"):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    with pytest.raises(MultisigNotFoundError, match="SAFE_TRANSACTION_NOT_FOUND"):
        _Harness().coordinator.execute(safe_tx_hash="0x" + "00" * 32, timeout=5)


class _CompetingExecutor(FakeSafeExecutor):
    def submit(self, tx, *, signatures):
        self.reader.nonce = tx.nonce + 1
        raise ExecutionRevertedError("EXECUTION_REVERTED: GS026")


def test_revert_after_competing_execution_is_a_nonce_conflict():
    harness = _Harness()
    harness.coordinator._executor = _CompetingExecutor(harness.reader)
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with pytest.raises(NonceConflictError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "superseded"


def test_revert_without_nonce_change_keeps_transaction_open():
    harness = _Harness()
    harness.executor.revert_on_submit = True
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with pytest.raises(ExecutionRevertedError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "open"


def test_failed_receipt_reports_revert_with_chain_hash():
    harness = _Harness()
    harness.executor.receipt_succeeded = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with pytest.raises(ExecutionRevertedError) as caught:
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert caught.value.chain_tx_hash == CHAIN_TX_HASH
    record = harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash)
    assert record.status == "open"
    assert record.chain_tx_hash == CHAIN_TX_HASH


def test_timeout_without_receipt_is_pending():
    harness = _Harness()
    harness.executor.time_out = True
    harness.executor.advance_nonce = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with pytest.raises(ExecutionPendingError) as caught:
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert str(caught.value) == "EXECUTION_PENDING"
    assert caught.value.chain_tx_hash == CHAIN_TX_HASH
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "open"


def test_timeout_resolved_by_late_receipt_executes():
    harness = _Harness()
    harness.executor.time_out = True
    harness.executor.receipt_after_timeout = ExecutionReceipt(
        chain_tx_hash=CHAIN_TX_HASH, succeeded=True, block_number=101
    )
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    result = harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert result.chain_tx_hash == CHAIN_TX_HASH
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "executed"


def test_timeout_with_nonce_consumed_elsewhere_is_a_nonce_conflict():
    harness = _Harness()
    harness.executor.time_out = True
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with pytest.raises(NonceConflictError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "superseded"


def test_retry_while_submission_pending_does_not_resubmit():
    harness = _Harness()
    harness.executor.time_out = True
    harness.executor.advance_nonce = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    for _ in range(2):
        with pytest.raises(ExecutionPendingError) as caught:
            harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
        assert caught.value.chain_tx_hash == CHAIN_TX_HASH

    assert len(harness.executor.submissions) == 1
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "open"


def test_retry_finalizes_pending_submission_once_mined():
    harness = _Harness()
    harness.executor.time_out = True
    harness.executor.advance_nonce = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)
    with pytest.raises(ExecutionPendingError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    harness.reader.nonce = 1
    harness.executor.receipt_after_timeout = ExecutionReceipt(
        chain_tx_hash=CHAIN_TX_HASH, succeeded=True, block_number=101
    )
    result = harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert result.chain_tx_hash == CHAIN_TX_HASH
    assert len(harness.executor.submissions) == 1
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "executed"
    assert [record.safe_tx_hash for record in harness.executed] == [safe_tx_hash]


def test_retry_after_reverted_receipt_submits_again():
    harness = _Harness()
    harness.executor.receipt_succeeded = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)
    with pytest.raises(ExecutionRevertedError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    harness.executor.receipt_after_timeout = ExecutionReceipt(
        chain_tx_hash=CHAIN_TX_HASH, succeeded=False, block_number=100
    )
    harness.executor.receipt_succeeded = True
    harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert len(harness.executor.submissions) == 2
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "executed"


class _ListingExecutor(FakeSafeExecutor):
    def __init__(self, reader, list_executable):
        super().__init__(reader)
        self.list_executable = list_executable
        self.queues = []

    def wait_for_receipt(self, chain_tx_hash, *, timeout):
        self.queues.append(self.list_executable())
        return super().wait_for_receipt(chain_tx_hash, timeout=timeout)


def test_queue_read_during_receipt_wait_keeps_mined_transaction():
    harness = _Harness()
    executor = _ListingExecutor(harness.reader, harness.coordinator.list_executable)
    harness.coordinator._executor = executor
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert executor.queues[0].current_nonce == 1
    assert executor.queues[0].superseded == []
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "executed"
    assert len(harness.executed) == 1


class _SupersedingExecutor(FakeSafeExecutor):
    def __init__(self, reader, repository):
        super().__init__(reader)
        self.repository = repository

    def wait_for_receipt(self, chain_tx_hash, *, timeout):
        for record in self.repository.list_transactions(safe_address=SAFE_ADDRESS, status="open"):
            self.repository.update_status(
                safe_tx_hash=record.safe_tx_hash, expected_status="open", status="superseded"
            )
        return super().wait_for_receipt(chain_tx_hash, timeout=timeout)


def test_mined_transaction_superseded_meanwhile_is_still_marked_executed():
    harness = _Harness()
    harness.coordinator._executor = _SupersedingExecutor(harness.reader, harness.repository)
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    result = harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert result.safe_tx_hash == safe_tx_hash
    record = harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash)
    assert record.status == "executed"
    assert record.executed_at == harness.clock.now
    assert len(harness.executed) == 1


def test_failing_executed_callback_does_not_undo_execution(caplog):
    def _explode(_record):
        raise RuntimeError("proposal store down")

    harness = _Harness(on_executed=_explode)
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)

    with caplog.at_level(logging.ERROR):
        result = harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)

    assert result.safe_tx_hash == safe_tx_hash
    assert "Executed callback failed" in caplog.text


def test_list_executable_partitions_by_live_nonce():
    harness = _Harness()
    dead = harness.prepare(member="0x" + "12" * 20, nonce=0).record.safe_tx_hash
    ready = harness.prepare(member="0x" + "34" * 20, nonce=1).record.safe_tx_hash
    later = harness.prepare(member="0x" + "56" * 20, nonce=3).record.safe_tx_hash
    harness.reader.nonce = 1

    queue = harness.coordinator.list_executable()

    assert queue.current_nonce == 1
    assert [item.safe_tx_hash for item in queue.superseded] == [dead]
    assert [item.safe_tx_hash for item in queue.executable] == [ready]
    assert [item.safe_tx_hash for item in queue.queued] == [later]
    assert [
        item.safe_tx_hash for item in harness.coordinator.list_transactions(status="open")
    ] == [ready, later]


def test_list_executable_settles_submitted_transactions_by_receipt():
    harness = _Harness()
    harness.executor.time_out = True
    harness.executor.advance_nonce = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)
    with pytest.raises(ExecutionPendingError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    harness.reader.nonce = 1

    unmined = harness.coordinator.list_executable()
    status_while_unmined = harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status
    harness.executor.receipt_after_timeout = ExecutionReceipt(
        chain_tx_hash=CHAIN_TX_HASH, succeeded=True, block_number=101
    )
    mined = harness.coordinator.list_executable()

    assert unmined.superseded == []
    assert status_while_unmined == "open"
    assert mined.superseded == []
    assert harness.coordinator.get_transaction(safe_tx_hash=safe_tx_hash).status == "executed"
    assert len(harness.executed) == 1


def test_list_executable_supersedes_submission_with_failed_receipt():
    harness = _Harness()
    harness.executor.receipt_succeeded = False
    safe_tx_hash = harness.prepare().record.safe_tx_hash
    harness.sign(safe_tx_hash, 0, 1)
    with pytest.raises(ExecutionRevertedError):
        harness.coordinator.execute(safe_tx_hash=safe_tx_hash, timeout=5)
    harness.executor.receipt_after_timeout = ExecutionReceipt(
        chain_tx_hash=CHAIN_TX_HASH, succeeded=False, block_number=100
    )
    harness.reader.nonce = 1

    queue = harness.coordinator.list_executable()

    assert [item.safe_tx_hash for item in queue.superseded] == [safe_tx_hash]
    assert harness.executed == []


def test_list_relay_pending_requires_relay():
    harness = _Harness()
    harness.relay.pending = [{"safeTxHash": "0x" + "ab" * 32, "nonce": 0}]

    listing = harness.coordinator.list_relay_pending()

    assert listing.safe_address == SAFE_ADDRESS
    assert listing.items == harness.relay.pending

    harness.coordinator._relay = None
    with pytest.raises(MultisigValidationError, match="RELAY_NOT_CONFIGURED"):
        harness.coordinator.list_relay_pending()
