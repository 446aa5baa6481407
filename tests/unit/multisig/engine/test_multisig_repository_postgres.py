from datetime import datetime, timezone

import pytest

import src.infrastructure.multisig.postgres as postgres_module
from src.core.multisig.models import (
    MultisigTransactionRecord,
    SafeConfirmation,
    SafeTransaction,
)
from src.infrastructure.multisig.postgres import PostgresMultisigTransactionRepository

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
SAFE = "0x" + "5a" * 20

_COLUMNS = [
    "safe_tx_hash",
    "safe_address",
    "nonce",
    "transaction_json",
    "proposal_id",
    "description",
    "proposed_by",
    "status",
    "chain_tx_hash",
    "created_at",
    "executed_at",
]


class _FakeCursor:
    def __init__(self, row=None, rows=None):
        self._row = row
        self._rows = rows or []

    def fetchone(self):
        return self._row

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self):
        self.transactions = {}
        self.confirmations = {}
        self.schema_migrations = {}
        self.commits = 0
        self.rollbacks = 0

    def execute(self, query, args=None):
        sql = " ".join(str(query).split())
        if sql.startswith("SELECT pg_advisory_") or sql.startswith("CREATE"):
            return _FakeCursor()
        if "FROM schema_migrations" in sql:
            rows = [
                {"version": version, "checksum": checksum}
                for (namespace, version), checksum in self.schema_migrations.items()
                if namespace == args[0]
            ]
            return _FakeCursor(rows=sorted(rows, key=lambda row: row["version"]))
        if "INSERT INTO schema_migrations" in sql:
            self.schema_migrations[(args[1], args[0])] = args[2]
            return _FakeCursor()
        if "INSERT INTO multisig_transactions" in sql:
            if args[0] in self.transactions:
                return _FakeCursor()
            self.transactions[args[0]] = dict(zip(_COLUMNS, args))
            return _FakeCursor({"safe_tx_hash": args[0]})
        if "INSERT INTO multisig_confirmations" in sql:
            key = (args[0], args[1])
            if key in self.confirmations:
                return _FakeCursor()
            self.confirmations[key] = {
                "safe_tx_hash": args[0],
                "owner": args[1],
                "signature": args[2],
                "submitted_at": args[3],
            }
            return _FakeCursor({"owner": args[1]})
        if "SET chain_tx_hash" in sql:
            self.transactions[args[1]]["chain_tx_hash"] = args[0]
            return _FakeCursor()
        if "SET status" in sql:
            row = self.transactions.get(args[2])
            if row is None or row["status"] != args[3]:
                return _FakeCursor()
            row["status"] = args[0]
            if args[1] is not None:
                row["executed_at"] = args[1]
            return _FakeCursor({"safe_tx_hash": args[2]})
        if "FROM multisig_transactions WHERE safe_tx_hash = %s" in sql:
            row = self.transactions.get(args[0])
            return _FakeCursor(dict(row) if row else None)
        if "FROM multisig_transactions WHERE safe_address = %s" in sql:
            rows = [dict(row) for row in self.transactions.values()]
            rows = [row for row in rows if row["safe_address"] == args[0]]
            arg_index = 1
            for column in ("status", "nonce"):
                if f"{column} = %s" in sql:
                    rows = [row for row in rows if row[column] == args[arg_index]]
                    arg_index += 1
            return _FakeCursor(
                rows=sorted(
                    rows, key=lambda row: (row["nonce"], row["created_at"], row["safe_tx_hash"])
                )
            )
        if "FROM multisig_confirmations" in sql:
            rows = [
                dict(row) for row in self.confirmations.values() if row["safe_tx_hash"] in args[0]
            ]
            rows.sort(key=lambda row: (row["submitted_at"], row["owner"]))
            return _FakeCursor(rows=rows)
        raise AssertionError(f"Unexpected SQL: {sql}")

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        return None


def _record(safe_tx_hash: str, *, nonce: int = 0, confirmations=()) -> MultisigTransactionRecord:
    return MultisigTransactionRecord(
        safe_tx_hash=safe_tx_hash,
        safe_address=SAFE.upper().replace("0X", "0x"),
        transaction=SafeTransaction(to="0x" + "7e" * 20, data="0x1234", nonce=nonce),
        proposal_id="gp_1",
        description="addMember(...)",
        proposed_by="0xaa",
        confirmations=list(confirmations),
        created_at=NOW,
    )


def _confirmation(owner: str) -> SafeConfirmation:
    return SafeConfirmation(owner=owner, signature="0x" + "1b" * 65, submitted_at=NOW)


def _repository(monkeypatch):
    connection = _FakeConnection()
    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: object())
    monkeypatch.setattr(PostgresMultisigTransactionRepository, "_connect", lambda self: connection)
    repository = PostgresMultisigTransactionRepository(dsn="postgresql://u:p@localhost:5432/db")
    return repository, connection


def test_postgres_multisig_repository_requires_dsn_and_driver(monkeypatch):
    with pytest.raises(RuntimeError, match="GOVERNANCE_POSTGRES_DSN_REQUIRED"):
        PostgresMultisigTransactionRepository(dsn="")

    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: None)
    with pytest.raises(RuntimeError, match="GOVERNANCE_POSTGRES_DRIVER_MISSING"):
        PostgresMultisigTransactionRepository(dsn="postgresql://u:p@localhost:5432/db")


def test_postgres_multisig_repository_applies_migrations(monkeypatch):
    _, connection = _repository(monkeypatch)
    assert ("multisig", "multisig:0001") in connection.schema_migrations


def test_postgres_multisig_save_get_and_duplicate(monkeypatch):
    repository, connection = _repository(monkeypatch)
    record = _record("0x01", nonce=3, confirmations=[_confirmation("0xaa")])

    assert repository.save_transaction(record) is True
    assert repository.save_transaction(record) is False
    assert connection.rollbacks == 1

    stored = repository.get_transaction(safe_tx_hash="0x01")
    assert stored.safe_address == SAFE
    assert stored.transaction == record.transaction
    assert stored.nonce == 3
    assert [item.owner for item in stored.confirmations] == ["0xaa"]
    assert stored.created_at == NOW
    assert stored.executed_at is None
    assert repository.get_transaction(safe_tx_hash="0x02") is None


def test_postgres_multisig_confirmations_and_status(monkeypatch):
    repository, _ = _repository(monkeypatch)
    repository.save_transaction(_record("0x01"))

    assert repository.add_confirmation(safe_tx_hash="0x01", confirmation=_confirmation("0xbb"))
    assert not repository.add_confirmation(
        safe_tx_hash="0x01", confirmation=_confirmation("0xbb")
    )
    repository.set_chain_tx_hash(safe_tx_hash="0x01", chain_tx_hash="0xee")
    assert repository.update_status(
        safe_tx_hash="0x01", expected_status="open", status="executed", executed_at=NOW
    )
    assert not repository.update_status(
        safe_tx_hash="0x01", expected_status="open", status="superseded"
    )

    stored = repository.get_transaction(safe_tx_hash="0x01")
    assert (stored.status, stored.chain_tx_hash, stored.executed_at) == ("executed", "0xee", NOW)
    assert [item.owner for item in stored.confirmations] == ["0xbb"]


def test_postgres_multisig_list_filters(monkeypatch):
    repository, _ = _repository(monkeypatch)
    repository.save_transaction(_record("0x02", nonce=0))
    repository.save_transaction(_record("0x01", nonce=0))
    repository.save_transaction(_record("0x03", nonce=1))
    repository.update_status(safe_tx_hash="0x02", expected_status="open", status="superseded")

    everything = repository.list_transactions(safe_address=SAFE, status=None)
    open_at_zero = repository.list_transactions(safe_address=SAFE, status="open", nonce=0)

    assert [row.safe_tx_hash for row in everything] == ["0x01", "0x02", "0x03"]
    assert [row.safe_tx_hash for row in open_at_zero] == ["0x01"]
    assert repository.list_transactions(safe_address="0x" + "00" * 20, status=None) == []
