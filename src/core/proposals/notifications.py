import logging
from typing import Any, Dict, List, Literal, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

NotificationKind = Literal["vote_required", "proposal_resolved"]


class ProposalNotification(BaseModel):
    kind: NotificationKind = Field(description="Notification kind.")
    proposal_id: str = Field(description="Proposal identifier.")
    proposal_type: str = Field(description="Governance action type.")
    status: str = Field(description="Proposal status at notification time.")
    recipients: List[str] = Field(default_factory=list, description="Signer addresses.")
    details: Dict[str, Any] = Field(default_factory=dict, description="Structured details.")


class NotificationSink(Protocol):
    def notify(self, notification: ProposalNotification) -> None: ...


class LoggingNotificationSink:
    def notify(self, notification: ProposalNotification) -> None:
        logger.info(
            "Proposal notification",
            extra={"extra_fields": notification.model_dump(mode="json")},
        )
