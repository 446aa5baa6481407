import logging
from typing import Any, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from src.core.multisig.errors import (
    ExecutionRevertedError,
    ExecutionTimeoutError,
    SafeServiceUnavailableError,
)
from src.core.multisig.hashing import hex_to_bytes
from src.core.multisig.models import ExecutionReceipt, SafeTransaction
from src.infrastructure.chain.safe_abi import SAFE_ABI

logger = logging.getLogger(__name__)


def build_web3(*, rpc_url: str, timeout_seconds: float) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds}))


def _safe_tx_args(tx: SafeTransaction) -> list[Any]:
    return [
        Web3.to_checksum_address(tx.to),
        tx.value,
        hex_to_bytes(tx.data),
        tx.operation,
        tx.safe_tx_gas,
        tx.base_gas,
        tx.gas_price,
        Web3.to_checksum_address(tx.gas_token),
        Web3.to_checksum_address(tx.refund_receiver),
    ]


class Web3SafeReader:
    def __init__(self, *, w3: Web3, safe_address: str) -> None:
        self._w3 = w3
        self._safe_address = Web3.to_checksum_address(safe_address)
        self._contract = w3.eth.contract(address=self._safe_address, abi=SAFE_ABI)

    def get_safe_address(self) -> str:
        return self._safe_address

    def get_owners(self) -> list[str]:
        return list(self._call("getOwners"))

    def get_threshold(self) -> int:
        return int(self._call("getThreshold"))

    def get_nonce(self) -> int:
        return int(self._call("nonce"))

    def get_transaction_hash(self, tx: SafeTransaction) -> str:
        value = self._call("getTransactionHash", *_safe_tx_args(tx), tx.nonce)
        return Web3.to_hex(value)

    def _call(self, function_name: str, *args: Any) -> Any:
        try:
            return getattr(self._contract.functions, function_name)(*args).call()
        except (OSError, Web3Exception) as exc:
            logger.warning(
                "Safe read failed",
                extra={
                    "extra_fields": {
                        "safe_address": self._safe_address,
                        "function": function_name,
                        "error": str(exc),
                    }
                },
            )
            raise SafeServiceUnavailableError(f"SAFE_RPC_UNAVAILABLE: {function_name}") from exc


class Web3SafeExecutor:
    def __init__(self, *, w3: Web3, safe_address: str, private_key: str) -> None:
        self._w3 = w3
        self._safe_address = Web3.to_checksum_address(safe_address)
        self._contract = w3.eth.contract(address=self._safe_address, abi=SAFE_ABI)
        self._account = Account.from_key(private_key)

    @property
    def executor_address(self) -> str:
        return self._account.address

    def submit(self, tx: SafeTransaction, *, signatures: str) -> str:
        function = self._contract.functions.execTransaction(
            *_safe_tx_args(tx), hex_to_bytes(signatures)
        )
        try:
            transaction = function.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": self._w3.eth.get_transaction_count(self._account.address, "pending"),
                    "value": 0,
                }
            )
            signed = self._account.sign_transaction(transaction)
            chain_tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise ExecutionRevertedError(f"EXECUTION_REVERTED: {exc}") from exc
        except (OSError, Web3Exception) as exc:
            raise SafeServiceUnavailableError("SAFE_RPC_UNAVAILABLE: execTransaction") from exc
        return Web3.to_hex(chain_tx_hash)

    def wait_for_receipt(self, chain_tx_hash: str, *, timeout: float) -> ExecutionReceipt:
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(chain_tx_hash, timeout=timeout)
        except TimeExhausted as exc:
            raise ExecutionTimeoutError(chain_tx_hash) from exc
        except (OSError, Web3Exception) as exc:
            raise SafeServiceUnavailableError("SAFE_RPC_UNAVAILABLE: receipt") from exc
        return _to_receipt(chain_tx_hash, receipt)

    def get_receipt(self, chain_tx_hash: str) -> Optional[ExecutionReceipt]:
        try:
            receipt = self._w3.eth.get_transaction_receipt(chain_tx_hash)
        except TransactionNotFound:
            return None
        except (OSError, Web3Exception) as exc:
            raise SafeServiceUnavailableError("SAFE_RPC_UNAVAILABLE: receipt") from exc
        return _to_receipt(chain_tx_hash, receipt)


def _to_receipt(chain_tx_hash: str, receipt: Any) -> ExecutionReceipt:
    return ExecutionReceipt(
        chain_tx_hash=chain_tx_hash,
        succeeded=int(receipt["status"]) == 1,
        block_number=receipt.get("blockNumber"),
    )
