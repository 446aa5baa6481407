from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.core.multisig.models import EncodedCall

ProposalType = Literal[
    "create_council",
    "delete_council",
    "add_member",
    "remove_member",
]

ProposalStatus = Literal[
    "pending",
    "approved",
    "rejected",
    "expired",
    "executed",
]

VoteChoice = Literal["aye", "nay", "abstain"]

ProposalEventType = Literal[
    "CREATED",
    "VOTE_CAST",
    "APPROVED",
    "REJECTED",
    "EXPIRED",
    "EXECUTED",
]

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
COUNCIL_ID_PATTERN = r"^0x[a-fA-F0-9]{64}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CreateCouncilPayload(BaseModel):
    council_name: str = Field(
        min_length=1,
        max_length=255,
        description="Display name of the council to create.",
        examples=["DeFi Claims Council"],
    )
    council_description: str = Field(
        min_length=1,
        max_length=2000,
        description="Council mandate description.",
        examples=["Reviews claims raised against DeFi agents."],
    )
    council_vertical: str = Field(
        min_length=1,
        max_length=100,
        description="Vertical the council validates claims for.",
        examples=["defi"],
    )


class DeleteCouncilPayload(BaseModel):
    council_id: str = Field(
        pattern=COUNCIL_ID_PATTERN,
        description="bytes32 council identifier as 0x-prefixed hex.",
        examples=["0x" + "ab" * 32],
    )


class AddMemberPayload(BaseModel):
    council_id: str = Field(
        pattern=COUNCIL_ID_PATTERN,
        description="bytes32 council identifier as 0x-prefixed hex.",
        examples=["0x" + "ab" * 32],
    )
    member_address: str = Field(
        pattern=ADDRESS_PATTERN,
        description="Address of the member to add.",
        examples=["0x1111111111111111111111111111111111111111"],
    )
    member_name: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Optional member display name.",
        examples=["Alice"],
    )
    member_description: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Optional member description.",
        examples=["Smart contract auditor"],
    )
    member_email: Optional[str] = Field(
        default=None,
        pattern=EMAIL_PATTERN,
        max_length=255,
        description="Optional member contact email.",
        examples=["alice@example.org"],
    )


class RemoveMemberPayload(BaseModel):
    council_id: str = Field(
        pattern=COUNCIL_ID_PATTERN,
        description="bytes32 council identifier as 0x-prefixed hex.",
        examples=["0x" + "ab" * 32],
    )
    member_address: str = Field(
        pattern=ADDRESS_PATTERN,
        description="Address of the member to remove.",
        examples=["0x1111111111111111111111111111111111111111"],
    )


PROPOSAL_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "create_council": CreateCouncilPayload,
    "delete_council": DeleteCouncilPayload,
    "add_member": AddMemberPayload,
    "remove_member": RemoveMemberPayload,
}


class ProposalCreateRequest(BaseModel):
    proposal_type: str = Field(
        description="Governance action type.",
        examples=["add_member"],
    )
    proposer_address: str = Field(
        pattern=ADDRESS_PATTERN,
        description="Safe owner creating the proposal.",
        examples=["0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"],
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific payload, validated against the proposal type.",
        examples=[
            {
                "council_id": "0x" + "ab" * 32,
                "member_address": "0x1111111111111111111111111111111111111111",
                "member_name": "Alice",
            }
        ],
    )


class ProposalVoteRequest(BaseModel):
    voter_address: str = Field(
        pattern=ADDRESS_PATTERN,
        description="Safe owner casting the vote.",
        examples=["0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"],
    )
    choice: VoteChoice = Field(description="Vote choice.", examples=["aye"])


class ProposalExecutedRequest(BaseModel):
    actor_address: str = Field(
        pattern=ADDRESS_PATTERN,
        description="Safe owner reporting the execution.",
        examples=["0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"],
    )
    safe_tx_hash: str = Field(
        pattern=COUNCIL_ID_PATTERN,
        description="Executed Safe transaction hash.",
        examples=["0x" + "cd" * 32],
    )


class ProposalSummary(BaseModel):
    proposal_id: str = Field(description="Proposal identifier.", examples=["gp_001"])
    proposal_type: ProposalType = Field(description="Governance action type.")
    status: ProposalStatus = Field(description="Current proposal status.", examples=["pending"])
    council_name: Optional[str] = Field(default=None, description="Council name.")
    council_description: Optional[str] = Field(default=None, description="Council description.")
    council_vertical: Optional[str] = Field(default=None, description="Council vertical.")
    council_id: Optional[str] = Field(default=None, description="Target council id.")
    member_address: Optional[str] = Field(default=None, description="Target member address.")
    member_name: Optional[str] = Field(default=None, description="Target member name.")
    proposer_address: str = Field(description="Proposer address.")
    votes_aye: int = Field(description="Aye vote count.", examples=[1])
    votes_nay: int = Field(description="Nay vote count.", examples=[0])
    votes_abstain: int = Field(description="Abstain vote count.", examples=[0])
    threshold: int = Field(description="Aye votes required, snapshotted at creation.")
    created_at: str = Field(description="UTC ISO8601 creation timestamp.")
    expires_at: str = Field(description="UTC ISO8601 voting deadline.")
    resolved_at: Optional[str] = Field(default=None, description="UTC ISO8601 resolution time.")
    executed_at: Optional[str] = Field(default=None, description="UTC ISO8601 execution time.")
    safe_tx_hash: Optional[str] = Field(default=None, description="Executed Safe tx hash.")
    my_vote: Optional[VoteChoice] = Field(
        default=None,
        description="Vote of the requesting signer when a viewer address is supplied.",
    )


class ProposalVote(BaseModel):
    voter_address: str = Field(description="Voter address.")
    choice: VoteChoice = Field(description="Current vote choice.")
    voted_at: str = Field(description="UTC ISO8601 first vote timestamp.")
    updated_at: str = Field(description="UTC ISO8601 last change timestamp.")


class ProposalEvent(BaseModel):
    event_id: str = Field(description="Audit event identifier.", examples=["gpe_001"])
    proposal_id: str = Field(description="Proposal identifier.")
    event_type: ProposalEventType = Field(description="Audit event type.")
    from_status: Optional[ProposalStatus] = Field(default=None, description="Previous status.")
    to_status: ProposalStatus = Field(description="Status after the event.")
    actor_address: str = Field(description="Actor that triggered the event.")
    occurred_at: str = Field(description="UTC ISO8601 event timestamp.")
    details: Dict[str, Any] = Field(default_factory=dict, description="Structured details.")


class ProposalDetailResponse(BaseModel):
    proposal: ProposalSummary = Field(description="Proposal snapshot.")
    votes: List[ProposalVote] = Field(default_factory=list, description="Votes by signer.")


class ProposalListResponse(BaseModel):
    items: List[ProposalSummary] = Field(description="Proposals, newest first.")
    next_cursor: Optional[str] = Field(default=None, description="Cursor for the next page.")


class ProposalEventsResponse(BaseModel):
    proposal_id: str = Field(description="Proposal identifier.")
    events: List[ProposalEvent] = Field(description="Audit events in occurrence order.")


class ProposalVoteResponse(BaseModel):
    proposal: ProposalSummary = Field(description="Proposal snapshot after the vote.")
    vote: ProposalVote = Field(description="Vote as recorded.")
    resolved: bool = Field(description="Whether this call resolved the proposal.")
    transaction_data: Optional[EncodedCall] = Field(
        default=None,
        description="Encoded Safe call, present when this vote approved the proposal.",
    )


class ProposalTransactionResponse(BaseModel):
    proposal_id: str = Field(description="Proposal identifier.")
    transaction_data: EncodedCall = Field(description="Encoded Safe call for the proposal.")


class ProposalExpirySweepResponse(BaseModel):
    expired_proposal_ids: List[str] = Field(
        default_factory=list, description="Proposals moved to expired by this sweep."
    )


class ProposalRecord(BaseModel):
    proposal_id: str = Field(description="Internal proposal identifier.", examples=["gp_001"])
    proposal_type: ProposalType = Field(description="Internal proposal type.")
    status: ProposalStatus = Field(description="Internal proposal status.")
    target_key: str = Field(description="Internal semantic target key for the pending guard.")
    council_name: Optional[str] = Field(default=None, description="Internal council name.")
    council_description: Optional[str] = Field(
        default=None, description="Internal council description."
    )
    council_vertical: Optional[str] = Field(default=None, description="Internal vertical.")
    council_id: Optional[str] = Field(default=None, description="Internal council id.")
    member_address: Optional[str] = Field(default=None, description="Internal member address.")
    member_name: Optional[str] = Field(default=None, description="Internal member name.")
    member_description: Optional[str] = Field(
        default=None, description="Internal member description."
    )
    member_email: Optional[str] = Field(default=None, description="Internal member email.")
    proposer_address: str = Field(description="Internal proposer address.")
    votes_aye: int = Field(default=0, description="Internal aye counter.")
    votes_nay: int = Field(default=0, description="Internal nay counter.")
    votes_abstain: int = Field(default=0, description="Internal abstain counter.")
    threshold: int = Field(description="Internal threshold snapshot.")
    created_at: datetime = Field(description="Internal creation timestamp.")
    expires_at: datetime = Field(description="Internal voting deadline.")
    resolved_at: Optional[datetime] = Field(default=None, description="Internal resolution time.")
    executed_at: Optional[datetime] = Field(default=None, description="Internal execution time.")
    safe_tx_hash: Optional[str] = Field(default=None, description="Internal Safe tx hash.")

    @property
    def total_votes(self) -> int:
        return self.votes_aye + self.votes_nay + self.votes_abstain


class VoteRecord(BaseModel):
    proposal_id: str = Field(description="Internal proposal identifier.")
    voter_address: str = Field(description="Internal voter address.")
    choice: VoteChoice = Field(description="Internal vote choice.")
    created_at: datetime = Field(description="Internal first vote timestamp.")
    updated_at: datetime = Field(description="Internal last change timestamp.")


class ProposalEventRecord(BaseModel):
    event_id: str = Field(description="Internal event identifier.", examples=["gpe_001"])
    proposal_id: str = Field(description="Internal proposal identifier.")
    event_type: ProposalEventType = Field(description="Internal event type.")
    from_status: Optional[ProposalStatus] = Field(default=None, description="Internal from.")
    to_status: ProposalStatus = Field(description="Internal to.")
    actor_address: str = Field(description="Internal actor address.")
    occurred_at: datetime = Field(description="Internal event timestamp.")
    details_json: Dict[str, Any] = Field(
        default_factory=dict, description="Internal structured details JSON."
    )


class VoteWriteResult(BaseModel):
    proposal: Optional[ProposalRecord] = Field(
        default=None,
        description="Internal proposal snapshot after the write, None when not found.",
    )
    vote: Optional[VoteRecord] = Field(
        default=None, description="Internal vote as stored, None when not recorded."
    )
    previous_choice: Optional[VoteChoice] = Field(
        default=None, description="Internal prior choice of the same voter."
    )
    recorded: bool = Field(description="Internal flag: vote was written.")
