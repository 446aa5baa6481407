from typing import Optional

from fastapi import HTTPException, status
from web3 import Web3

from src.api.routers import chain_config
from src.core.multisig.safe_info import SafeInfoCache

_CHAIN_CLIENT: Optional[Web3] = None
_SAFE_INFO: Optional[SafeInfoCache] = None


def get_chain_client() -> Web3:
    global _CHAIN_CLIENT
    if _CHAIN_CLIENT is None:
        try:
            _CHAIN_CLIENT = chain_config.build_chain_client()
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
    return _CHAIN_CLIENT


def get_safe_info_cache() -> SafeInfoCache:
    """Shared by the voting service and the multisig coordinator so both see one snapshot."""
    global _SAFE_INFO
    if _SAFE_INFO is None:
        w3 = get_chain_client()
        try:
            reader = chain_config.build_safe_reader(w3)
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        _SAFE_INFO = chain_config.build_safe_info_cache(reader)
    return _SAFE_INFO


def reset_governance_runtime_for_tests() -> None:
    global _CHAIN_CLIENT
    global _SAFE_INFO
    _CHAIN_CLIENT = None
    _SAFE_INFO = None
