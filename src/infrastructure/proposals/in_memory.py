from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.proposals.models import (
    ProposalEventRecord,
    ProposalRecord,
    ProposalStatus,
    VoteChoice,
    VoteRecord,
    VoteWriteResult,
)
from src.core.proposals.repository import ProposalRepository


class InMemoryProposalRepository(ProposalRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._proposals: dict[str, ProposalRecord] = {}
        self._votes: dict[str, dict[str, VoteRecord]] = {}
        self._events: dict[str, list[ProposalEventRecord]] = {}

    def create_proposal(self, proposal: ProposalRecord, event: ProposalEventRecord) -> bool:
        with self._lock:
            for existing in self._proposals.values():
                if (
                    existing.status == "pending"
                    and existing.proposal_type == proposal.proposal_type
                    and existing.target_key == proposal.target_key
                ):
                    return False
            self._proposals[proposal.proposal_id] = deepcopy(proposal)
            self._votes[proposal.proposal_id] = {}
            self._events.setdefault(proposal.proposal_id, []).append(deepcopy(event))
            return True

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            return deepcopy(proposal) if proposal is not None else None

    def list_proposals(
        self,
        *,
        status: Optional[str],
        proposal_type: Optional[str],
        council_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]:
        with self._lock:
            rows = list(self._proposals.values())

        rows = sorted(rows, key=lambda x: (x.created_at, x.proposal_id), reverse=True)

        if status is not None:
            rows = [row for row in rows if row.status == status]
        if proposal_type is not None:
            rows = [row for row in rows if row.proposal_type == proposal_type]
        if council_id is not None:
            rows = [row for row in rows if row.council_id == council_id]

        if cursor:
            row_ids = [row.proposal_id for row in rows]
            if cursor not in row_ids:
                return [], None
            rows = rows[row_ids.index(cursor) + 1 :]

        page = rows[:limit]
        next_cursor = page[-1].proposal_id if len(rows) > limit else None
        return [deepcopy(row) for row in page], next_cursor

    def list_overdue_pending(self, *, now: datetime) -> list[ProposalRecord]:
        with self._lock:
            rows = [
                deepcopy(row)
                for row in self._proposals.values()
                if row.status == "pending" and row.expires_at < now
            ]
        return sorted(rows, key=lambda x: (x.expires_at, x.proposal_id))

    def record_vote(
        self,
        *,
        proposal_id: str,
        voter_address: str,
        choice: VoteChoice,
        voted_at: datetime,
    ) -> VoteWriteResult:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                return VoteWriteResult(recorded=False)
            if proposal.status != "pending":
                return VoteWriteResult(proposal=deepcopy(proposal), recorded=False)

            votes = self._votes.setdefault(proposal_id, {})
            previous = votes.get(voter_address)
            vote = VoteRecord(
                proposal_id=proposal_id,
                voter_address=voter_address,
                choice=choice,
                created_at=previous.created_at if previous is not None else voted_at,
                updated_at=voted_at,
            )
            votes[voter_address] = vote

            choices = [item.choice for item in votes.values()]
            proposal.votes_aye = choices.count("aye")
            proposal.votes_nay = choices.count("nay")
            proposal.votes_abstain = choices.count("abstain")
            return VoteWriteResult(
                proposal=deepcopy(proposal),
                vote=deepcopy(vote),
                previous_choice=previous.choice if previous is not None else None,
                recorded=True,
            )

    def list_votes(self, *, proposal_id: str) -> list[VoteRecord]:
        with self._lock:
            votes = list(self._votes.get(proposal_id, {}).values())
        return [deepcopy(vote) for vote in sorted(votes, key=lambda x: x.created_at)]

    def transition_status(
        self,
        *,
        proposal_id: str,
        expected_status: ProposalStatus,
        proposal: ProposalRecord,
        event: ProposalEventRecord,
    ) -> Optional[ProposalRecord]:
        with self._lock:
            current = self._proposals.get(proposal_id)
            if current is None or current.status != expected_status:
                return None
            stored = proposal.model_copy(
                update={
                    "votes_aye": current.votes_aye,
                    "votes_nay": current.votes_nay,
                    "votes_abstain": current.votes_abstain,
                }
            )
            self._proposals[proposal_id] = deepcopy(stored)
            self._events.setdefault(proposal_id, []).append(deepcopy(event))
            return deepcopy(stored)

    def append_event(self, event: ProposalEventRecord) -> None:
        with self._lock:
            events = self._events.setdefault(event.proposal_id, [])
            events.append(deepcopy(event))

    def list_events(self, *, proposal_id: str) -> list[ProposalEventRecord]:
        with self._lock:
            events = self._events.get(proposal_id, [])
            return [deepcopy(event) for event in events]
