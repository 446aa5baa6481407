from src.infrastructure.chain.safe_tx_service import (
    SafeTransactionServiceClient,
    default_safe_tx_service_url,
)
from src.infrastructure.chain.web3_safe import Web3SafeExecutor, Web3SafeReader, build_web3

__all__ = [
    "SafeTransactionServiceClient",
    "Web3SafeExecutor",
    "Web3SafeReader",
    "build_web3",
    "default_safe_tx_service_url",
]
