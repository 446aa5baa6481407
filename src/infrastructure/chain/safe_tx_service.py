import logging
from typing import Any, Optional

import httpx
from eth_utils import to_checksum_address

from src.core.multisig.errors import SafeServiceUnavailableError
from src.core.multisig.models import SafeTransaction

logger = logging.getLogger(__name__)

SAFE_TX_SERVICE_URLS = {
    8453: "https://safe-transaction-base.safe.global",
    84532: "https://safe-transaction-base-sepolia.safe.global",
}

RELAY_ORIGIN = "council-governance"


def default_safe_tx_service_url(chain_id: int) -> Optional[str]:
    return SAFE_TX_SERVICE_URLS.get(chain_id)


class SafeTransactionServiceClient:
    """Relays collected signatures to the Safe Transaction Service.

    The service lets owners using the Safe web UI see confirmations gathered
    here; local records stay authoritative.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
        )

    def propose_transaction(
        self,
        *,
        safe_address: str,
        tx: SafeTransaction,
        safe_tx_hash: str,
        sender: str,
        signature: str,
    ) -> None:
        safe = to_checksum_address(safe_address)
        payload = {
            "to": to_checksum_address(tx.to),
            "value": str(tx.value),
            "data": tx.data,
            "operation": tx.operation,
            "safeTxGas": str(tx.safe_tx_gas),
            "baseGas": str(tx.base_gas),
            "gasPrice": str(tx.gas_price),
            "gasToken": to_checksum_address(tx.gas_token),
            "refundReceiver": to_checksum_address(tx.refund_receiver),
            "nonce": tx.nonce,
            "contractTransactionHash": safe_tx_hash,
            "sender": to_checksum_address(sender),
            "signature": signature,
            "origin": RELAY_ORIGIN,
        }
        self._post(f"/api/v1/safes/{safe}/multisig-transactions/", payload)

    def confirm_transaction(self, *, safe_tx_hash: str, signature: str) -> None:
        self._post(
            f"/api/v1/multisig-transactions/{safe_tx_hash}/confirmations/",
            {"signature": signature},
        )

    def list_pending_transactions(self, *, safe_address: str) -> list[dict[str, Any]]:
        safe = to_checksum_address(safe_address)
        try:
            response = self._client.get(
                f"/api/v1/safes/{safe}/multisig-transactions/",
                params={"executed": "false"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SafeServiceUnavailableError("SAFE_TX_SERVICE_UNAVAILABLE") from exc
        return list(response.json().get("results", []))

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, payload: dict[str, Any]) -> None:
        try:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Safe Transaction Service rejected request",
                extra={
                    "extra_fields": {
                        "path": path,
                        "status_code": exc.response.status_code,
                        "body": exc.response.text[:500],
                    }
                },
            )
            raise SafeServiceUnavailableError(
                f"SAFE_TX_SERVICE_REJECTED: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SafeServiceUnavailableError("SAFE_TX_SERVICE_UNAVAILABLE") from exc
