from datetime import datetime
from typing import Optional, Protocol

from src.core.proposals.models import (
    ProposalEventRecord,
    ProposalRecord,
    ProposalStatus,
    VoteChoice,
    VoteRecord,
    VoteWriteResult,
)


class ProposalRepository(Protocol):
    def create_proposal(self, proposal: ProposalRecord, event: ProposalEventRecord) -> bool: ...

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]: ...

    def list_proposals(
        self,
        *,
        status: Optional[str],
        proposal_type: Optional[str],
        council_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]: ...

    def list_overdue_pending(self, *, now: datetime) -> list[ProposalRecord]: ...

    def record_vote(
        self,
        *,
        proposal_id: str,
        voter_address: str,
        choice: VoteChoice,
        voted_at: datetime,
    ) -> VoteWriteResult: ...

    def list_votes(self, *, proposal_id: str) -> list[VoteRecord]: ...

    def transition_status(
        self,
        *,
        proposal_id: str,
        expected_status: ProposalStatus,
        proposal: ProposalRecord,
        event: ProposalEventRecord,
    ) -> Optional[ProposalRecord]: ...

    def append_event(self, event: ProposalEventRecord) -> None: ...

    def list_events(self, *, proposal_id: str) -> list[ProposalEventRecord]: ...
