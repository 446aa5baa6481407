from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from src.core.multisig.models import SafeTransaction

DOMAIN_SEPARATOR_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)


def hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))


def compute_domain_separator(*, safe_address: str, chain_id: int) -> bytes:
    return keccak(
        encode(
            ["bytes32", "uint256", "address"],
            [DOMAIN_SEPARATOR_TYPEHASH, chain_id, to_checksum_address(safe_address)],
        )
    )


def compute_safe_tx_hash(tx: SafeTransaction, *, safe_address: str, chain_id: int) -> str:
    """EIP-712 hash a Safe (v1.3+) signs for ``execTransaction``.

    Mirrors ``Safe.getTransactionHash`` so the value can be checked offline.
    """
    struct_hash = keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                to_checksum_address(tx.to),
                tx.value,
                keccak(hex_to_bytes(tx.data)),
                tx.operation,
                tx.safe_tx_gas,
                tx.base_gas,
                tx.gas_price,
                to_checksum_address(tx.gas_token),
                to_checksum_address(tx.refund_receiver),
                tx.nonce,
            ],
        )
    )
    domain_separator = compute_domain_separator(safe_address=safe_address, chain_id=chain_id)
    return "0x" + keccak(b"\x19\x01" + domain_separator + struct_hash).hex()
