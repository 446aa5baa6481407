from typing import Literal, NamedTuple

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError

from src.core.multisig.errors import InvalidSignatureError
from src.core.multisig.hashing import hex_to_bytes

SignatureKind = Literal["eip712", "eth_sign", "approved_hash"]

SIGNATURE_LENGTH = 65


class VerifiedSignature(NamedTuple):
    owner: str
    signature: str
    kind: SignatureKind


def split_signature(signature: str) -> tuple[int, int, int]:
    try:
        raw = hex_to_bytes(signature)
    except ValueError as exc:
        raise InvalidSignatureError("SIGNATURE_NOT_HEX") from exc
    if len(raw) != SIGNATURE_LENGTH:
        raise InvalidSignatureError("SIGNATURE_LENGTH_INVALID")
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    return r, s, raw[64]


def join_signature(r: int, s: int, v: int) -> str:
    return "0x" + (r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v])).hex()


def adjust_signature_for_safe(signature: str) -> str:
    """Convert an eth_sign signature to the form Safe expects.

    Safe marks eth_sign signatures with ``v + 4`` so that it verifies them
    against the prefixed message hash. Signatures already carrying 31/32 pass
    through unchanged.
    """
    r, s, v = split_signature(signature)
    if v in (27, 28):
        return join_signature(r, s, v + 4)
    if v in (31, 32):
        return join_signature(r, s, v)
    raise InvalidSignatureError("UNSUPPORTED_SIGNATURE_V")


def recover_signer(safe_tx_hash: str, signature: str) -> tuple[str, SignatureKind]:
    """Recover the owner a Safe-formatted signature belongs to."""
    r, s, v = split_signature(signature)
    message_hash = hex_to_bytes(safe_tx_hash)
    if v == 1:
        return _address_from_word(r), "approved_hash"
    if v in (27, 28):
        return _recover_hash(message_hash, v=v, r=r, s=s), "eip712"
    if v in (31, 32):
        try:
            owner = Account.recover_message(
                encode_defunct(primitive=message_hash), vrs=(v - 4, r, s)
            )
        except (BadSignature, ValidationError, ValueError) as exc:
            raise InvalidSignatureError("SIGNATURE_RECOVERY_FAILED") from exc
        return owner.lower(), "eth_sign"
    raise InvalidSignatureError("UNSUPPORTED_SIGNATURE_V")


def verify_owner_signature(
    *, safe_tx_hash: str, signer_address: str, signature: str
) -> VerifiedSignature:
    """Check that ``signature`` was produced by ``signer_address`` over the hash.

    A wallet signature with v 27/28 is either an EIP-712 typed-data signature
    over the hash itself or an eth_sign signature over the prefixed hash. Both
    recoveries are tried and the eth_sign form is adjusted for Safe.
    """
    wanted = signer_address.lower()
    _, _, v = split_signature(signature)
    if v in (27, 28):
        owner, kind = recover_signer(safe_tx_hash, signature)
        if owner == wanted:
            return VerifiedSignature(owner=owner, signature=signature.lower(), kind=kind)
        adjusted = adjust_signature_for_safe(signature)
        owner, kind = recover_signer(safe_tx_hash, adjusted)
    elif v == 1:
        # approved-hash confirmations only prove ownership on chain
        raise InvalidSignatureError("APPROVED_HASH_NOT_ACCEPTED")
    else:
        adjusted = signature.lower()
        owner, kind = recover_signer(safe_tx_hash, adjusted)
    if owner != wanted:
        raise InvalidSignatureError("SIGNATURE_SIGNER_MISMATCH")
    return VerifiedSignature(owner=owner, signature=adjusted, kind=kind)


def sort_and_concat_signatures(confirmations: list[tuple[str, str]]) -> str:
    """Concatenate ``(owner, signature)`` pairs ordered by owner address.

    Safe's ``checkSignatures`` requires strictly ascending owners.
    """
    ordered = sorted(confirmations, key=lambda item: int(item[0], 16))
    return "0x" + "".join(signature.removeprefix("0x") for _, signature in ordered)


def _recover_hash(message_hash: bytes, *, v: int, r: int, s: int) -> str:
    try:
        public_key = keys.Signature(vrs=(v - 27, r, s)).recover_public_key_from_msg_hash(
            message_hash
        )
    except (BadSignature, ValidationError, ValueError) as exc:
        raise InvalidSignatureError("SIGNATURE_RECOVERY_FAILED") from exc
    return public_key.to_checksum_address().lower()


def _address_from_word(word: int) -> str:
    return "0x" + word.to_bytes(32, "big")[12:].hex()
