from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Optional

from src.core.multisig.models import (
    MultisigTransactionRecord,
    MultisigTransactionStatus,
    SafeConfirmation,
    SafeTransaction,
)
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_TRANSACTION_COLUMNS = """
    safe_tx_hash,
    safe_address,
    nonce,
    transaction_json,
    proposal_id,
    description,
    proposed_by,
    status,
    chain_tx_hash,
    created_at,
    executed_at
"""


class PostgresMultisigTransactionRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("GOVERNANCE_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("GOVERNANCE_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def save_transaction(self, record: MultisigTransactionRecord) -> bool:
        query = f"""
            INSERT INTO multisig_transactions (
                {_TRANSACTION_COLUMNS}
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (safe_tx_hash) DO NOTHING
            RETURNING safe_tx_hash
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    record.safe_tx_hash,
                    record.safe_address.lower(),
                    record.nonce,
                    record.transaction.model_dump_json(),
                    record.proposal_id,
                    record.description,
                    record.proposed_by,
                    record.status,
                    record.chain_tx_hash,
                    record.created_at.isoformat(),
                    _optional_iso(record.executed_at),
                ),
            ).fetchone()
            if row is None:
                connection.rollback()
                return False
            for confirmation in record.confirmations:
                self._insert_confirmation(
                    connection=connection,
                    safe_tx_hash=record.safe_tx_hash,
                    confirmation=confirmation,
                )
            connection.commit()
        return True

    def get_transaction(self, *, safe_tx_hash: str) -> Optional[MultisigTransactionRecord]:
        query = f"""
            SELECT {_TRANSACTION_COLUMNS}
            FROM multisig_transactions
            WHERE safe_tx_hash = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (safe_tx_hash,)).fetchone()
            if row is None:
                return None
            confirmations = self._list_confirmations(
                connection=connection, safe_tx_hashes=[safe_tx_hash]
            )
        return _to_transaction(row, confirmations.get(safe_tx_hash, []))

    def list_transactions(
        self,
        *,
        safe_address: str,
        status: Optional[MultisigTransactionStatus],
        nonce: Optional[int] = None,
    ) -> list[MultisigTransactionRecord]:
        where_clauses = ["safe_address = %s"]
        args: list[Any] = [safe_address.lower()]
        if status is not None:
            where_clauses.append("status = %s")
            args.append(status)
        if nonce is not None:
            where_clauses.append("nonce = %s")
            args.append(nonce)
        query = f"""
            SELECT {_TRANSACTION_COLUMNS}
            FROM multisig_transactions
            WHERE {' AND '.join(where_clauses)}
            ORDER BY nonce ASC, created_at ASC, safe_tx_hash ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
            confirmations = self._list_confirmations(
                connection=connection,
                safe_tx_hashes=[row["safe_tx_hash"] for row in rows],
            )
        return [_to_transaction(row, confirmations.get(row["safe_tx_hash"], [])) for row in rows]

    def add_confirmation(self, *, safe_tx_hash: str, confirmation: SafeConfirmation) -> bool:
        with closing(self._connect()) as connection:
            inserted = self._insert_confirmation(
                connection=connection,
                safe_tx_hash=safe_tx_hash,
                confirmation=confirmation,
            )
            connection.commit()
        return inserted

    def set_chain_tx_hash(self, *, safe_tx_hash: str, chain_tx_hash: str) -> None:
        query = """
            UPDATE multisig_transactions SET
                chain_tx_hash=%s
            WHERE safe_tx_hash = %s
        """
        with closing(self._connect()) as connection:
            connection.execute(query, (chain_tx_hash, safe_tx_hash))
            connection.commit()

    def update_status(
        self,
        *,
        safe_tx_hash: str,
        expected_status: MultisigTransactionStatus,
        status: MultisigTransactionStatus,
        executed_at: Optional[datetime] = None,
    ) -> bool:
        query = """
            UPDATE multisig_transactions SET
                status=%s,
                executed_at=COALESCE(%s, executed_at)
            WHERE safe_tx_hash = %s AND status = %s
            RETURNING safe_tx_hash
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (status, _optional_iso(executed_at), safe_tx_hash, expected_status),
            ).fetchone()
            connection.commit()
        return row is not None

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="multisig")

    def _insert_confirmation(
        self, *, connection, safe_tx_hash: str, confirmation: SafeConfirmation
    ) -> bool:
        query = """
            INSERT INTO multisig_confirmations (
                safe_tx_hash,
                owner,
                signature,
                submitted_at
            ) VALUES (%s, %s, %s, %s)
            ON CONFLICT (safe_tx_hash, owner) DO NOTHING
            RETURNING owner
        """
        row = connection.execute(
            query,
            (
                safe_tx_hash,
                confirmation.owner,
                confirmation.signature,
                confirmation.submitted_at.isoformat(),
            ),
        ).fetchone()
        return row is not None

    def _list_confirmations(
        self, *, connection, safe_tx_hashes: list[str]
    ) -> dict[str, list[SafeConfirmation]]:
        if not safe_tx_hashes:
            return {}
        query = """
            SELECT safe_tx_hash, owner, signature, submitted_at
            FROM multisig_confirmations
            WHERE safe_tx_hash = ANY(%s)
            ORDER BY submitted_at ASC, owner ASC
        """
        grouped: dict[str, list[SafeConfirmation]] = {}
        for row in connection.execute(query, (safe_tx_hashes,)).fetchall():
            grouped.setdefault(row["safe_tx_hash"], []).append(
                SafeConfirmation(
                    owner=row["owner"],
                    signature=row["signature"],
                    submitted_at=datetime.fromisoformat(row["submitted_at"]),
                )
            )
        return grouped


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _to_transaction(row, confirmations: list[SafeConfirmation]) -> MultisigTransactionRecord:
    return MultisigTransactionRecord(
        safe_tx_hash=row["safe_tx_hash"],
        safe_address=row["safe_address"],
        transaction=SafeTransaction.model_validate_json(row["transaction_json"]),
        proposal_id=row["proposal_id"],
        description=row["description"],
        proposed_by=row["proposed_by"],
        status=row["status"],
        confirmations=confirmations,
        chain_tx_hash=row["chain_tx_hash"],
        created_at=datetime.fromisoformat(row["created_at"]),
        executed_at=(
            datetime.fromisoformat(row["executed_at"]) if row["executed_at"] is not None else None
        ),
    )
