from typing import TYPE_CHECKING, Any, Optional

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from src.core.multisig.models import EncodedCall

if TYPE_CHECKING:
    from src.core.proposals.models import ProposalRecord

CREATE_COUNCIL_SIGNATURE = "createCouncil(string,string,string,uint256,uint256,uint256,uint256)"
CLOSE_COUNCIL_SIGNATURE = "closeCouncil(bytes32)"
ADD_MEMBER_SIGNATURE = "addMember(bytes32,address)"
REMOVE_MEMBER_SIGNATURE = "removeMember(bytes32,address)"

DEFAULT_QUORUM_PERCENTAGE = 51
DEFAULT_CLAIM_DEPOSIT_PERCENTAGE = 10
DEFAULT_VOTING_PERIOD_SECONDS = 7 * 24 * 60 * 60
DEFAULT_EVIDENCE_PERIOD_SECONDS = 3 * 24 * 60 * 60

_SIGNATURE_BY_TYPE = {
    "create_council": CREATE_COUNCIL_SIGNATURE,
    "delete_council": CLOSE_COUNCIL_SIGNATURE,
    "add_member": ADD_MEMBER_SIGNATURE,
    "remove_member": REMOVE_MEMBER_SIGNATURE,
}

KNOWN_SELECTORS: dict[str, str] = {
    "0x" + function_signature_to_4byte_selector(signature).hex(): signature
    for signature in _SIGNATURE_BY_TYPE.values()
}


class CallEncodingError(ValueError):
    pass


def encode_call(signature: str, args: list[Any]) -> str:
    arg_types = signature[signature.index("(") + 1 : -1]
    types = [item for item in arg_types.split(",") if item]
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(types, args)).hex()


def encode_for_proposal(proposal: "ProposalRecord", *, registry_address: str) -> EncodedCall:
    signature = _SIGNATURE_BY_TYPE.get(proposal.proposal_type)
    if signature is None:
        raise CallEncodingError("UNSUPPORTED_PROPOSAL_TYPE")

    if proposal.proposal_type == "create_council":
        if not (proposal.council_name and proposal.council_description):
            raise CallEncodingError("CREATE_COUNCIL_PAYLOAD_INCOMPLETE")
        args: list[Any] = [
            proposal.council_name,
            proposal.council_description,
            proposal.council_vertical or "",
            DEFAULT_QUORUM_PERCENTAGE,
            DEFAULT_CLAIM_DEPOSIT_PERCENTAGE,
            DEFAULT_VOTING_PERIOD_SECONDS,
            DEFAULT_EVIDENCE_PERIOD_SECONDS,
        ]
        description = f"createCouncil({proposal.council_name})"
    elif proposal.proposal_type == "delete_council":
        args = [_council_id_bytes(proposal.council_id)]
        description = f"closeCouncil({proposal.council_id})"
    else:
        if proposal.member_address is None:
            raise CallEncodingError("MEMBER_ADDRESS_REQUIRED")
        args = [
            _council_id_bytes(proposal.council_id),
            to_checksum_address(proposal.member_address),
        ]
        name = signature.split("(", 1)[0]
        description = f"{name}({proposal.council_id}, {proposal.member_address})"

    return EncodedCall(
        to=to_checksum_address(registry_address),
        data=encode_call(signature, args),
        value=0,
        description=description,
    )


def describe_call(data: str) -> Optional[str]:
    if not data or len(data) < 10:
        return None
    signature = KNOWN_SELECTORS.get(data[:10].lower())
    if signature is None:
        return None
    return signature.split("(", 1)[0]


def _council_id_bytes(council_id: Optional[str]) -> bytes:
    if council_id is None:
        raise CallEncodingError("COUNCIL_ID_REQUIRED")
    raw = bytes.fromhex(council_id.removeprefix("0x"))
    if len(raw) != 32:
        raise CallEncodingError("COUNCIL_ID_MUST_BE_BYTES32")
    return raw
