import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from src.core.multisig.encoding import CallEncodingError, encode_for_proposal
from src.core.multisig.models import EncodedCall, SafeInfo
from src.core.multisig.safe_info import SafeInfoCache
from src.core.proposals.models import (
    PROPOSAL_PAYLOAD_MODELS,
    ProposalDetailResponse,
    ProposalEvent,
    ProposalEventRecord,
    ProposalEventType,
    ProposalEventsResponse,
    ProposalListResponse,
    ProposalRecord,
    ProposalStatus,
    ProposalSummary,
    ProposalTransactionResponse,
    ProposalVote,
    ProposalVoteResponse,
    VoteChoice,
    VoteRecord,
)
from src.core.proposals.notifications import (
    LoggingNotificationSink,
    NotificationKind,
    NotificationSink,
    ProposalNotification,
)
from src.core.proposals.repository import ProposalRepository
from src.core.proposals.resolution import (
    EVENT_BY_STATUS,
    VOTING_PERIOD,
    build_target_key,
    can_transition,
    is_overdue,
    resolve_status,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class ProposalLifecycleError(Exception):
    pass


class ProposalNotFoundError(ProposalLifecycleError):
    pass


class ProposalValidationError(ProposalLifecycleError):
    pass


class ProposalAuthorizationError(ProposalValidationError):
    pass


class ProposalConflictError(ProposalLifecycleError):
    pass


class ProposalStateConflictError(ProposalLifecycleError):
    pass


class ProposalTransitionError(ProposalLifecycleError):
    pass


class ProposalVotingService:
    def __init__(
        self,
        *,
        repository: ProposalRepository,
        safe_info: SafeInfoCache,
        registry_address: str,
        notifier: Optional[NotificationSink] = None,
        voting_period: timedelta = VOTING_PERIOD,
        clock: Optional[Callable[[], datetime]] = None,
        on_transition: Optional[Callable[[ProposalStatus], None]] = None,
    ) -> None:
        self._repository = repository
        self._safe_info = safe_info
        self._registry_address = registry_address
        self._notifier = notifier or LoggingNotificationSink()
        self._voting_period = voting_period
        self._clock = clock or _utc_now
        self._on_transition = on_transition

    def create_proposal(
        self,
        *,
        proposal_type: str,
        proposer_address: str,
        payload: dict[str, Any],
    ) -> ProposalDetailResponse:
        payload_model = PROPOSAL_PAYLOAD_MODELS.get(proposal_type)
        if payload_model is None:
            raise ProposalValidationError("UNSUPPORTED_PROPOSAL_TYPE")
        try:
            parsed = payload_model.model_validate(payload).model_dump()
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ProposalValidationError(f"INVALID_PAYLOAD: {location}") from exc

        info = self._require_signer(proposer_address)
        now = self._clock()
        self.expire_overdue_proposals()

        council_id = parsed.get("council_id")
        member_address = parsed.get("member_address")
        proposal = ProposalRecord(
            proposal_id=f"gp_{uuid.uuid4().hex[:12]}",
            proposal_type=proposal_type,
            status="pending",
            target_key=build_target_key(
                proposal_type=proposal_type,
                council_name=parsed.get("council_name"),
                council_id=council_id,
                member_address=member_address,
            ),
            council_name=parsed.get("council_name"),
            council_description=parsed.get("council_description"),
            council_vertical=parsed.get("council_vertical"),
            council_id=council_id.lower() if council_id else None,
            member_address=member_address.lower() if member_address else None,
            member_name=parsed.get("member_name"),
            member_description=parsed.get("member_description"),
            member_email=parsed.get("member_email"),
            proposer_address=proposer_address.lower(),
            threshold=info.threshold,
            created_at=now,
            expires_at=now + self._voting_period,
        )
        event = self._build_event(
            proposal_id=proposal.proposal_id,
            event_type="CREATED",
            from_status=None,
            to_status="pending",
            actor_address=proposal.proposer_address,
            occurred_at=now,
            details={"threshold": info.threshold, "total_signers": len(info.owners)},
        )
        if not self._repository.create_proposal(proposal, event):
            raise ProposalConflictError("DUPLICATE_PENDING_PROPOSAL")
        self._record_transition("pending")

        logger.info(
            "Proposal created",
            extra={
                "extra_fields": {
                    "proposal_id": proposal.proposal_id,
                    "proposal_type": proposal.proposal_type,
                    "proposer_address": proposal.proposer_address,
                    "threshold": proposal.threshold,
                }
            },
        )
        self._notify(
            "vote_required",
            proposal,
            recipients=[
                owner.lower()
                for owner in info.owners
                if owner.lower() != proposal.proposer_address
            ],
        )
        return ProposalDetailResponse(proposal=self._to_summary(proposal), votes=[])

    def cast_vote(
        self,
        *,
        proposal_id: str,
        voter_address: str,
        choice: VoteChoice,
    ) -> ProposalVoteResponse:
        info = self._require_signer(voter_address)
        voter = voter_address.lower()
        proposal = self._repository.get_proposal(proposal_id=proposal_id)
        if proposal is None:
            raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
        if proposal.status != "pending":
            raise ProposalStateConflictError("PROPOSAL_NOT_PENDING")

        now = self._clock()
        result = self._repository.record_vote(
            proposal_id=proposal_id,
            voter_address=voter,
            choice=choice,
            voted_at=now,
        )
        if result.proposal is None:
            raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
        if not result.recorded or result.vote is None:
            raise ProposalStateConflictError("PROPOSAL_NOT_PENDING")

        updated = result.proposal
        late = now > updated.expires_at
        self._repository.append_event(
            self._build_event(
                proposal_id=proposal_id,
                event_type="VOTE_CAST",
                from_status="pending",
                to_status="pending",
                actor_address=voter,
                occurred_at=now,
                details={
                    "choice": choice,
                    "previous_choice": result.previous_choice,
                    "late": late,
                    "votes_aye": updated.votes_aye,
                    "votes_nay": updated.votes_nay,
                    "votes_abstain": updated.votes_abstain,
                },
            )
        )
        if updated.threshold != info.threshold:
            logger.warning(
                "Proposal threshold snapshot is stale",
                extra={
                    "extra_fields": {
                        "proposal_id": proposal_id,
                        "snapshot_threshold": updated.threshold,
                        "safe_threshold": info.threshold,
                    }
                },
            )

        next_status = resolve_status(
            votes_aye=updated.votes_aye,
            votes_nay=updated.votes_nay,
            threshold=updated.threshold,
            total_signers=len(info.owners),
            expires_at=updated.expires_at,
            now=now,
        )
        resolved = False
        transaction_data: Optional[EncodedCall] = None
        if next_status != "pending":
            transitioned = self._transition(
                updated,
                to_status=next_status,
                actor_address=SYSTEM_ACTOR if next_status == "expired" else voter,
                occurred_at=now,
                details={
                    "votes_aye": updated.votes_aye,
                    "votes_nay": updated.votes_nay,
                    "votes_abstain": updated.votes_abstain,
                    "total_signers": len(info.owners),
                },
            )
            if transitioned is not None:
                updated = transitioned
                resolved = True
                if next_status == "approved":
                    transaction_data = self._encode(updated)
            else:
                updated = self._require_proposal(proposal_id)

        logger.info(
            "Vote recorded",
            extra={
                "extra_fields": {
                    "proposal_id": proposal_id,
                    "voter_address": voter,
                    "choice": choice,
                    "late": late,
                    "status": updated.status,
                }
            },
        )
        return ProposalVoteResponse(
            proposal=self._to_summary(updated, my_vote=result.vote.choice),
            vote=self._to_vote(result.vote),
            resolved=resolved,
            transaction_data=transaction_data,
        )

    def get_proposal(
        self, *, proposal_id: str, viewer_address: Optional[str] = None
    ) -> ProposalDetailResponse:
        proposal = self._expire_if_overdue(self._require_proposal(proposal_id))
        votes = self._repository.list_votes(proposal_id=proposal_id)
        my_vote = None
        if viewer_address is not None:
            viewer = viewer_address.lower()
            my_vote = next((vote.choice for vote in votes if vote.voter_address == viewer), None)
        return ProposalDetailResponse(
            proposal=self._to_summary(proposal, my_vote=my_vote),
            votes=[self._to_vote(vote) for vote in votes],
        )

    def list_proposals(
        self,
        *,
        status: Optional[str],
        proposal_type: Optional[str],
        council_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> ProposalListResponse:
        self.expire_overdue_proposals()
        rows, next_cursor = self._repository.list_proposals(
            status=status,
            proposal_type=proposal_type,
            council_id=council_id.lower() if council_id else None,
            limit=limit,
            cursor=cursor,
        )
        return ProposalListResponse(
            items=[self._to_summary(row) for row in rows], next_cursor=next_cursor
        )

    def list_pending_proposals(self) -> ProposalListResponse:
        now = self._clock()
        items: list[ProposalSummary] = []
        cursor: Optional[str] = None
        while True:
            rows, cursor = self._repository.list_proposals(
                status="pending",
                proposal_type=None,
                council_id=None,
                limit=100,
                cursor=cursor,
            )
            items.extend(self._to_summary(row) for row in rows if not is_overdue(row, now=now))
            if cursor is None:
                break
        return ProposalListResponse(items=items, next_cursor=None)

    def list_events(self, *, proposal_id: str) -> ProposalEventsResponse:
        self._require_proposal(proposal_id)
        events = self._repository.list_events(proposal_id=proposal_id)
        return ProposalEventsResponse(
            proposal_id=proposal_id,
            events=[self._to_event(event) for event in events],
        )

    def get_transaction_data(self, *, proposal_id: str) -> ProposalTransactionResponse:
        proposal = self._require_proposal(proposal_id)
        if proposal.status != "approved":
            raise ProposalStateConflictError("PROPOSAL_NOT_APPROVED")
        return ProposalTransactionResponse(
            proposal_id=proposal_id,
            transaction_data=self._encode(proposal),
        )

    def mark_executed(
        self,
        *,
        proposal_id: str,
        safe_tx_hash: str,
        actor_address: str,
    ) -> ProposalDetailResponse:
        if actor_address != SYSTEM_ACTOR:
            self._require_signer(actor_address)
        proposal = self._require_proposal(proposal_id)
        safe_tx_hash = safe_tx_hash.lower()
        if proposal.status == "executed" and proposal.safe_tx_hash == safe_tx_hash:
            return self.get_proposal(proposal_id=proposal_id)
        now = self._clock()
        transitioned = self._transition(
            proposal,
            to_status="executed",
            actor_address=actor_address.lower(),
            occurred_at=now,
            details={"safe_tx_hash": safe_tx_hash},
            executed_at=now,
            safe_tx_hash=safe_tx_hash,
        )
        if transitioned is None:
            raise ProposalStateConflictError("STATE_CONFLICT: status changed concurrently")
        logger.info(
            "Proposal executed",
            extra={
                "extra_fields": {
                    "proposal_id": proposal_id,
                    "safe_tx_hash": safe_tx_hash,
                }
            },
        )
        return self.get_proposal(proposal_id=proposal_id)

    def expire_overdue_proposals(self) -> list[str]:
        now = self._clock()
        expired: list[str] = []
        for proposal in self._repository.list_overdue_pending(now=now):
            if self._expire(proposal, now=now) is not None:
                expired.append(proposal.proposal_id)
        if expired:
            logger.info(
                "Overdue proposals expired",
                extra={"extra_fields": {"proposal_ids": expired, "count": len(expired)}},
            )
        return expired

    def _expire_if_overdue(self, proposal: ProposalRecord) -> ProposalRecord:
        now = self._clock()
        if not is_overdue(proposal, now=now):
            return proposal
        expired = self._expire(proposal, now=now)
        if expired is not None:
            return expired
        return self._require_proposal(proposal.proposal_id)

    def _expire(self, proposal: ProposalRecord, *, now: datetime) -> Optional[ProposalRecord]:
        return self._transition(
            proposal,
            to_status="expired",
            actor_address=SYSTEM_ACTOR,
            occurred_at=now,
            details={
                "expires_at": proposal.expires_at.isoformat(),
                "votes_aye": proposal.votes_aye,
                "threshold": proposal.threshold,
            },
        )

    def _transition(
        self,
        proposal: ProposalRecord,
        *,
        to_status: ProposalStatus,
        actor_address: str,
        occurred_at: datetime,
        details: dict[str, Any],
        **updates: Any,
    ) -> Optional[ProposalRecord]:
        if not can_transition(proposal.status, to_status):
            raise ProposalTransitionError("INVALID_TRANSITION")
        if proposal.status == "pending":
            updates["resolved_at"] = occurred_at
        updated = proposal.model_copy(update={"status": to_status, **updates})
        event = self._build_event(
            proposal_id=proposal.proposal_id,
            event_type=EVENT_BY_STATUS[to_status],
            from_status=proposal.status,
            to_status=to_status,
            actor_address=actor_address,
            occurred_at=occurred_at,
            details=details,
        )
        stored = self._repository.transition_status(
            proposal_id=proposal.proposal_id,
            expected_status=proposal.status,
            proposal=updated,
            event=event,
        )
        if stored is None:
            return None
        self._record_transition(to_status)
        if proposal.status == "pending":
            self._notify("proposal_resolved", stored, recipients=[stored.proposer_address])
        return stored

    def _record_transition(self, to_status: ProposalStatus) -> None:
        if self._on_transition is not None:
            self._on_transition(to_status)

    def _require_signer(self, address: str) -> SafeInfo:
        info = self._safe_info.get(force_refresh=True)
        if not info.has_owner(address):
            raise ProposalAuthorizationError("NOT_A_SIGNER")
        return info

    def _require_proposal(self, proposal_id: str) -> ProposalRecord:
        proposal = self._repository.get_proposal(proposal_id=proposal_id)
        if proposal is None:
            raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
        return proposal

    def _encode(self, proposal: ProposalRecord) -> EncodedCall:
        try:
            return encode_for_proposal(proposal, registry_address=self._registry_address)
        except CallEncodingError as exc:
            raise ProposalValidationError(str(exc)) from exc

    def _notify(
        self, kind: NotificationKind, proposal: ProposalRecord, *, recipients: list[str]
    ) -> None:
        try:
            self._notifier.notify(
                ProposalNotification(
                    kind=kind,
                    proposal_id=proposal.proposal_id,
                    proposal_type=proposal.proposal_type,
                    status=proposal.status,
                    recipients=recipients,
                    details={"expires_at": proposal.expires_at.isoformat()},
                )
            )
        except Exception:
            logger.exception(
                "Proposal notification failed",
                extra={"extra_fields": {"proposal_id": proposal.proposal_id, "kind": kind}},
            )

    def _build_event(
        self,
        *,
        proposal_id: str,
        event_type: ProposalEventType,
        from_status: Optional[ProposalStatus],
        to_status: ProposalStatus,
        actor_address: str,
        occurred_at: datetime,
        details: dict[str, Any],
    ) -> ProposalEventRecord:
        return ProposalEventRecord(
            event_id=f"gpe_{uuid.uuid4().hex[:12]}",
            proposal_id=proposal_id,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            actor_address=actor_address,
            occurred_at=occurred_at,
            details_json=details,
        )

    def _to_summary(
        self, proposal: ProposalRecord, *, my_vote: Optional[VoteChoice] = None
    ) -> ProposalSummary:
        return ProposalSummary(
            proposal_id=proposal.proposal_id,
            proposal_type=proposal.proposal_type,
            status=proposal.status,
            council_name=proposal.council_name,
            council_description=proposal.council_description,
            council_vertical=proposal.council_vertical,
            council_id=proposal.council_id,
            member_address=proposal.member_address,
            member_name=proposal.member_name,
            proposer_address=proposal.proposer_address,
            votes_aye=proposal.votes_aye,
            votes_nay=proposal.votes_nay,
            votes_abstain=proposal.votes_abstain,
            threshold=proposal.threshold,
            created_at=proposal.created_at.isoformat(),
            expires_at=proposal.expires_at.isoformat(),
            resolved_at=proposal.resolved_at.isoformat() if proposal.resolved_at else None,
            executed_at=proposal.executed_at.isoformat() if proposal.executed_at else None,
            safe_tx_hash=proposal.safe_tx_hash,
            my_vote=my_vote,
        )

    def _to_vote(self, vote: VoteRecord) -> ProposalVote:
        return ProposalVote(
            voter_address=vote.voter_address,
            choice=vote.choice,
            voted_at=vote.created_at.isoformat(),
            updated_at=vote.updated_at.isoformat(),
        )

    def _to_event(self, event: ProposalEventRecord) -> ProposalEvent:
        return ProposalEvent(
            event_id=event.event_id,
            proposal_id=event.proposal_id,
            event_type=event.event_type,
            from_status=event.from_status,
            to_status=event.to_status,
            actor_address=event.actor_address,
            occurred_at=event.occurred_at.isoformat(),
            details=event.details_json,
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
