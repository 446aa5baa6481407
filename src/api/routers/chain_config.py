import os
from datetime import timedelta
from typing import Optional

from web3 import Web3

from src.core.multisig.protocols import SafeExecutor, SafeReader, SignatureRelay
from src.core.multisig.safe_info import DEFAULT_SAFE_INFO_TTL, SafeInfoCache
from src.infrastructure.chain import (
    SafeTransactionServiceClient,
    Web3SafeExecutor,
    Web3SafeReader,
    build_web3,
    default_safe_tx_service_url,
)

DEFAULT_RPC_TIMEOUT_SECONDS = 10.0


def safe_address() -> str:
    return os.getenv("SAFE_ADDRESS", "").strip()


def safe_rpc_url() -> str:
    return os.getenv("SAFE_RPC_URL", "").strip()


def council_registry_address() -> str:
    return os.getenv("COUNCIL_REGISTRY_ADDRESS", "").strip()


def safe_executor_private_key() -> str:
    return os.getenv("SAFE_EXECUTOR_PRIVATE_KEY", "").strip()


def safe_chain_id() -> Optional[int]:
    value = os.getenv("SAFE_CHAIN_ID")
    if value is None or not value.strip():
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed >= 1 else None


def safe_info_cache_ttl() -> timedelta:
    value = os.getenv("SAFE_INFO_CACHE_TTL_SECONDS")
    if value is None:
        return DEFAULT_SAFE_INFO_TTL
    try:
        parsed = int(value)
    except ValueError:
        return DEFAULT_SAFE_INFO_TTL
    return timedelta(seconds=parsed) if parsed >= 0 else DEFAULT_SAFE_INFO_TTL


def safe_rpc_timeout_seconds() -> float:
    value = os.getenv("SAFE_RPC_TIMEOUT_SECONDS")
    if value is None:
        return DEFAULT_RPC_TIMEOUT_SECONDS
    try:
        parsed = float(value)
    except ValueError:
        return DEFAULT_RPC_TIMEOUT_SECONDS
    return parsed if parsed > 0 else DEFAULT_RPC_TIMEOUT_SECONDS


def safe_tx_service_url() -> Optional[str]:
    configured = os.getenv("SAFE_TX_SERVICE_URL", "").strip()
    if configured:
        return configured
    chain_id = safe_chain_id()
    if chain_id is None:
        return None
    return default_safe_tx_service_url(chain_id)


def build_chain_client() -> Web3:
    rpc_url = safe_rpc_url()
    if not rpc_url:
        raise RuntimeError("SAFE_RPC_URL_REQUIRED")
    return build_web3(rpc_url=rpc_url, timeout_seconds=safe_rpc_timeout_seconds())


def build_safe_reader(w3: Web3) -> SafeReader:
    address = safe_address()
    if not address:
        raise RuntimeError("SAFE_ADDRESS_REQUIRED")
    return Web3SafeReader(w3=w3, safe_address=address)


def build_safe_info_cache(reader: SafeReader) -> SafeInfoCache:
    return SafeInfoCache(reader=reader, ttl=safe_info_cache_ttl())


def build_safe_executor(w3: Web3) -> Optional[SafeExecutor]:
    private_key = safe_executor_private_key()
    if not private_key:
        return None
    return Web3SafeExecutor(w3=w3, safe_address=safe_address(), private_key=private_key)


def build_signature_relay() -> Optional[SignatureRelay]:
    base_url = safe_tx_service_url()
    if base_url is None:
        return None
    return SafeTransactionServiceClient(
        base_url=base_url, timeout_seconds=safe_rpc_timeout_seconds()
    )
