from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

MultisigTransactionStatus = Literal["open", "executed", "superseded"]


class SafeInfo(BaseModel):
    address: str = Field(description="Safe contract address.")
    owners: List[str] = Field(description="Current Safe owners.")
    threshold: int = Field(description="Confirmations required to execute.", examples=[2])
    nonce: int = Field(description="Next Safe nonce.", examples=[7])
    fetched_at: datetime = Field(description="Time the snapshot was read from chain.")

    def has_owner(self, address: str) -> bool:
        wanted = address.lower()
        return any(owner.lower() == wanted for owner in self.owners)


class EncodedCall(BaseModel):
    to: str = Field(
        description="Target contract address.",
        examples=["0x2222222222222222222222222222222222222222"],
    )
    data: str = Field(description="0x-prefixed ABI-encoded calldata.", examples=["0x5a9c0f4f"])
    value: int = Field(default=0, description="Wei sent with the call.", examples=[0])
    description: str = Field(
        description="Human readable summary of the call.",
        examples=["addMember(0xabab...abab, 0x1111...1111)"],
    )


class SafeTransaction(BaseModel):
    to: str = Field(description="Call target.")
    value: int = Field(default=0, description="Wei value.")
    data: str = Field(default="0x", description="0x-prefixed calldata.")
    operation: int = Field(default=0, description="0 for CALL, 1 for DELEGATECALL.")
    safe_tx_gas: int = Field(default=0, description="Gas forwarded to the inner call.")
    base_gas: int = Field(default=0, description="Gas independent of the inner call.")
    gas_price: int = Field(default=0, description="Refund gas price.")
    gas_token: str = Field(default=ZERO_ADDRESS, description="Refund token, zero for ETH.")
    refund_receiver: str = Field(default=ZERO_ADDRESS, description="Refund receiver.")
    nonce: int = Field(description="Safe nonce the transaction is bound to.")


class SafeConfirmation(BaseModel):
    owner: str = Field(description="Owner that produced the signature (lower-case hex).")
    signature: str = Field(description="Safe-adjusted 65 byte signature, 0x-prefixed.")
    submitted_at: datetime = Field(description="Time the signature was collected.")


class MultisigTransactionRecord(BaseModel):
    safe_tx_hash: str = Field(description="EIP-712 Safe transaction hash.")
    safe_address: str = Field(description="Safe the transaction targets.")
    transaction: SafeTransaction = Field(description="Canonical Safe transaction tuple.")
    proposal_id: Optional[str] = Field(default=None, description="Linked governance proposal.")
    description: str = Field(default="", description="Human readable summary.")
    proposed_by: str = Field(description="Owner that prepared the transaction.")
    status: MultisigTransactionStatus = Field(default="open", description="Tracking status.")
    confirmations: List[SafeConfirmation] = Field(
        default_factory=list, description="Collected owner confirmations."
    )
    chain_tx_hash: Optional[str] = Field(
        default=None, description="Hash of the last execTransaction submission."
    )
    created_at: datetime = Field(description="Time the record was prepared.")
    executed_at: Optional[datetime] = Field(default=None, description="Execution time.")

    @property
    def nonce(self) -> int:
        return self.transaction.nonce

    def confirmed_by(self, owner: str) -> bool:
        wanted = owner.lower()
        return any(item.owner == wanted for item in self.confirmations)


class PreparedTransaction(BaseModel):
    record: MultisigTransactionRecord = Field(description="Prepared transaction record.")
    conflicts: List[MultisigTransactionRecord] = Field(
        default_factory=list,
        description="Other open transactions bound to the same nonce.",
    )
    created: bool = Field(description="False when the hash was already tracked.")


class TransactionQueue(BaseModel):
    current_nonce: int = Field(description="On-chain Safe nonce at read time.")
    executable: List[MultisigTransactionRecord] = Field(
        default_factory=list,
        description="Open transactions at the current nonce; several form a conflict set.",
    )
    queued: List[MultisigTransactionRecord] = Field(
        default_factory=list, description="Open transactions at future nonces."
    )
    superseded: List[MultisigTransactionRecord] = Field(
        default_factory=list, description="Transactions found dead in this pass."
    )


class ExecutionResult(BaseModel):
    safe_tx_hash: str = Field(description="Executed Safe transaction hash.")
    chain_tx_hash: str = Field(description="Ethereum transaction hash of execTransaction.")
    nonce: int = Field(description="Nonce consumed by the execution.")
    proposal_id: Optional[str] = Field(default=None, description="Linked proposal.")
    superseded: List[str] = Field(
        default_factory=list, description="Conflict set members marked superseded."
    )


class RelayPendingResponse(BaseModel):
    safe_address: str = Field(description="Safe the listing was read for.")
    items: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Unexecuted transactions as reported by the Safe Transaction Service.",
    )


class ExecutionReceipt(BaseModel):
    chain_tx_hash: str = Field(description="Transaction hash.")
    succeeded: bool = Field(description="Receipt status == 1.")
    block_number: Optional[int] = Field(default=None, description="Inclusion block.")


class MultisigPrepareRequest(BaseModel):
    proposal_id: str = Field(description="Approved proposal to encode.", examples=["gp_001"])
    proposed_by: str = Field(
        pattern=r"^0x[a-fA-F0-9]{40}$",
        description="Safe owner preparing the transaction.",
        examples=["0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"],
    )
    nonce: Optional[int] = Field(
        default=None,
        ge=0,
        description="Explicit nonce to queue behind pending work; defaults to the Safe nonce.",
        examples=[None],
    )


class MultisigSignatureRequest(BaseModel):
    signer_address: str = Field(
        pattern=r"^0x[a-fA-F0-9]{40}$",
        description="Safe owner submitting the signature.",
        examples=["0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"],
    )
    signature: str = Field(
        pattern=r"^0x[a-fA-F0-9]{130}$",
        description="65 byte signature over the safeTxHash.",
        examples=["0x" + "00" * 65],
    )


class MultisigExecuteRequest(BaseModel):
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=900,
        description="Seconds to wait for the execution receipt.",
        examples=[120.0],
    )
