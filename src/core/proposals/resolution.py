from datetime import datetime, timedelta

from src.core.proposals.models import ProposalEventType, ProposalRecord, ProposalStatus

VOTING_PERIOD = timedelta(days=7)


TRANSITION_MAP: dict[ProposalStatus, set[ProposalStatus]] = {
    "pending": {"approved", "rejected", "expired"},
    "approved": {"executed"},
}

EVENT_BY_STATUS: dict[ProposalStatus, ProposalEventType] = {
    "approved": "APPROVED",
    "rejected": "REJECTED",
    "expired": "EXPIRED",
    "executed": "EXECUTED",
}


def can_transition(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    return to_status in TRANSITION_MAP.get(from_status, set())


def is_overdue(proposal: ProposalRecord, *, now: datetime) -> bool:
    return proposal.status == "pending" and now > proposal.expires_at


def resolve_status(
    *,
    votes_aye: int,
    votes_nay: int,
    threshold: int,
    total_signers: int,
    expires_at: datetime,
    now: datetime,
) -> ProposalStatus:
    """Outcome of a pending proposal given its current tally.

    Expiry wins over any tally. A proposal is rejected once the signers who
    have not voted nay can no longer reach the threshold; abstentions stay
    convertible to aye and do not count toward rejection.
    """
    if now > expires_at:
        return "expired"
    if votes_aye >= threshold:
        return "approved"
    if votes_nay > total_signers - threshold:
        return "rejected"
    return "pending"


def build_target_key(
    *,
    proposal_type: str,
    council_name: str | None = None,
    council_id: str | None = None,
    member_address: str | None = None,
) -> str:
    if proposal_type == "create_council":
        return f"create_council:{(council_name or '').strip().casefold()}"
    if proposal_type == "delete_council":
        return f"delete_council:{(council_id or '').lower()}"
    return f"{proposal_type}:{(council_id or '').lower()}:{(member_address or '').lower()}"
