import json
from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Optional

from src.core.proposals.models import (
    ProposalEventRecord,
    ProposalRecord,
    ProposalStatus,
    VoteChoice,
    VoteRecord,
    VoteWriteResult,
)
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_PROPOSAL_COLUMNS = """
    proposal_id,
    proposal_type,
    status,
    target_key,
    council_name,
    council_description,
    council_vertical,
    council_id,
    member_address,
    member_name,
    member_description,
    member_email,
    proposer_address,
    votes_aye,
    votes_nay,
    votes_abstain,
    threshold,
    created_at,
    expires_at,
    resolved_at,
    executed_at,
    safe_tx_hash
"""


class PostgresProposalRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("GOVERNANCE_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("GOVERNANCE_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def create_proposal(self, proposal: ProposalRecord, event: ProposalEventRecord) -> bool:
        query = f"""
            INSERT INTO governance_proposals (
                {_PROPOSAL_COLUMNS}
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            ON CONFLICT DO NOTHING
            RETURNING proposal_id
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, _proposal_params(proposal)).fetchone()
            if row is None:
                connection.rollback()
                return False
            self._insert_event(connection=connection, event=event)
            connection.commit()
        return True

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM governance_proposals
            WHERE proposal_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_proposal(row)

    def list_proposals(
        self,
        *,
        status: Optional[str],
        proposal_type: Optional[str],
        council_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]:
        where_clauses = []
        args: list[str] = []
        if status is not None:
            where_clauses.append("status = %s")
            args.append(status)
        if proposal_type is not None:
            where_clauses.append("proposal_type = %s")
            args.append(proposal_type)
        if council_id is not None:
            where_clauses.append("council_id = %s")
            args.append(council_id)
        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM governance_proposals
            {where_sql}
            ORDER BY created_at DESC, proposal_id DESC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        proposals = [_to_proposal(row) for row in rows]
        proposals = [proposal for proposal in proposals if proposal is not None]
        if cursor:
            cursor_index = next(
                (
                    index
                    for index, proposal in enumerate(proposals)
                    if proposal.proposal_id == cursor
                ),
                None,
            )
            if cursor_index is None:
                return [], None
            proposals = proposals[cursor_index + 1 :]
        page = proposals[:limit]
        next_cursor = page[-1].proposal_id if len(proposals) > limit else None
        return page, next_cursor

    def list_overdue_pending(self, *, now: datetime) -> list[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM governance_proposals
            WHERE status = 'pending'
            ORDER BY expires_at ASC, proposal_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query).fetchall()
        proposals = [_to_proposal(row) for row in rows]
        return [
            proposal
            for proposal in proposals
            if proposal is not None and proposal.expires_at < now
        ]

    def record_vote(
        self,
        *,
        proposal_id: str,
        voter_address: str,
        choice: VoteChoice,
        voted_at: datetime,
    ) -> VoteWriteResult:
        lock_query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM governance_proposals
            WHERE proposal_id = %s
            FOR UPDATE
        """
        previous_query = """
            SELECT choice
            FROM governance_votes
            WHERE proposal_id = %s AND voter_address = %s
        """
        upsert_query = """
            INSERT INTO governance_votes (
                proposal_id,
                voter_address,
                choice,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (proposal_id, voter_address) DO UPDATE SET
                choice=excluded.choice,
                updated_at=excluded.updated_at
            RETURNING proposal_id, voter_address, choice, created_at, updated_at
        """
        tally_query = """
            SELECT choice, COUNT(*) AS vote_count
            FROM governance_votes
            WHERE proposal_id = %s
            GROUP BY choice
        """
        counters_query = f"""
            UPDATE governance_proposals SET
                votes_aye=%s,
                votes_nay=%s,
                votes_abstain=%s
            WHERE proposal_id = %s
            RETURNING {_PROPOSAL_COLUMNS}
        """
        with closing(self._connect()) as connection:
            proposal = _to_proposal(connection.execute(lock_query, (proposal_id,)).fetchone())
            if proposal is None or proposal.status != "pending":
                connection.rollback()
                return VoteWriteResult(proposal=proposal, recorded=False)
            previous = connection.execute(previous_query, (proposal_id, voter_address)).fetchone()
            vote_row = connection.execute(
                upsert_query,
                (
                    proposal_id,
                    voter_address,
                    choice,
                    voted_at.isoformat(),
                    voted_at.isoformat(),
                ),
            ).fetchone()
            tally = {
                str(row["choice"]): int(row["vote_count"])
                for row in connection.execute(tally_query, (proposal_id,)).fetchall()
            }
            updated = connection.execute(
                counters_query,
                (
                    tally.get("aye", 0),
                    tally.get("nay", 0),
                    tally.get("abstain", 0),
                    proposal_id,
                ),
            ).fetchone()
            connection.commit()
        return VoteWriteResult(
            proposal=_to_proposal(updated),
            vote=_to_vote(vote_row),
            previous_choice=previous["choice"] if previous is not None else None,
            recorded=True,
        )

    def list_votes(self, *, proposal_id: str) -> list[VoteRecord]:
        query = """
            SELECT proposal_id, voter_address, choice, created_at, updated_at
            FROM governance_votes
            WHERE proposal_id = %s
            ORDER BY created_at ASC, voter_address ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (proposal_id,)).fetchall()
        return [_to_vote(row) for row in rows]

    def transition_status(
        self,
        *,
        proposal_id: str,
        expected_status: ProposalStatus,
        proposal: ProposalRecord,
        event: ProposalEventRecord,
    ) -> Optional[ProposalRecord]:
        query = f"""
            UPDATE governance_proposals SET
                status=%s,
                resolved_at=%s,
                executed_at=%s,
                safe_tx_hash=%s
            WHERE proposal_id = %s AND status = %s
            RETURNING {_PROPOSAL_COLUMNS}
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    proposal.status,
                    _optional_iso(proposal.resolved_at),
                    _optional_iso(proposal.executed_at),
                    proposal.safe_tx_hash,
                    proposal_id,
                    expected_status,
                ),
            ).fetchone()
            if row is None:
                connection.rollback()
                return None
            self._insert_event(connection=connection, event=event)
            connection.commit()
        return _to_proposal(row)

    def append_event(self, event: ProposalEventRecord) -> None:
        with closing(self._connect()) as connection:
            self._insert_event(connection=connection, event=event)
            connection.commit()

    def list_events(self, *, proposal_id: str) -> list[ProposalEventRecord]:
        query = """
            SELECT
                event_id,
                proposal_id,
                event_type,
                from_status,
                to_status,
                actor_address,
                occurred_at,
                details_json
            FROM governance_proposal_events
            WHERE proposal_id = %s
            ORDER BY occurred_at ASC, event_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (proposal_id,)).fetchall()
        return [_to_event(row) for row in rows]

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="governance")

    def _insert_event(self, *, connection, event: ProposalEventRecord) -> None:
        query = """
            INSERT INTO governance_proposal_events (
                event_id,
                proposal_id,
                event_type,
                from_status,
                to_status,
                actor_address,
                occurred_at,
                details_json
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (event_id) DO NOTHING
        """
        connection.execute(
            query,
            (
                event.event_id,
                event.proposal_id,
                event.event_type,
                event.from_status,
                event.to_status,
                event.actor_address,
                event.occurred_at.isoformat(),
                _json_dump(event.details_json),
            ),
        )


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _proposal_params(proposal: ProposalRecord) -> tuple:
    return (
        proposal.proposal_id,
        proposal.proposal_type,
        proposal.status,
        proposal.target_key,
        proposal.council_name,
        proposal.council_description,
        proposal.council_vertical,
        proposal.council_id,
        proposal.member_address,
        proposal.member_name,
        proposal.member_description,
        proposal.member_email,
        proposal.proposer_address,
        proposal.votes_aye,
        proposal.votes_nay,
        proposal.votes_abstain,
        proposal.threshold,
        proposal.created_at.isoformat(),
        proposal.expires_at.isoformat(),
        _optional_iso(proposal.resolved_at),
        _optional_iso(proposal.executed_at),
        proposal.safe_tx_hash,
    )


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _json_dump(value: dict) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _to_proposal(row) -> Optional[ProposalRecord]:
    if row is None:
        return None
    return ProposalRecord(
        proposal_id=row["proposal_id"],
        proposal_type=row["proposal_type"],
        status=row["status"],
        target_key=row["target_key"],
        council_name=row["council_name"],
        council_description=row["council_description"],
        council_vertical=row["council_vertical"],
        council_id=row["council_id"],
        member_address=row["member_address"],
        member_name=row["member_name"],
        member_description=row["member_description"],
        member_email=row["member_email"],
        proposer_address=row["proposer_address"],
        votes_aye=int(row["votes_aye"]),
        votes_nay=int(row["votes_nay"]),
        votes_abstain=int(row["votes_abstain"]),
        threshold=int(row["threshold"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
        resolved_at=_optional_datetime(row["resolved_at"]),
        executed_at=_optional_datetime(row["executed_at"]),
        safe_tx_hash=row["safe_tx_hash"],
    )


def _to_vote(row) -> VoteRecord:
    return VoteRecord(
        proposal_id=row["proposal_id"],
        voter_address=row["voter_address"],
        choice=row["choice"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_event(row) -> ProposalEventRecord:
    return ProposalEventRecord(
        event_id=row["event_id"],
        proposal_id=row["proposal_id"],
        event_type=row["event_type"],
        from_status=row["from_status"],
        to_status=row["to_status"],
        actor_address=row["actor_address"],
        occurred_at=datetime.fromisoformat(row["occurred_at"]),
        details_json=json.loads(row["details_json"]),
    )
