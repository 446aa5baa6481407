from __future__ import annotations

import os

from src.api.routers.chain_config import council_registry_address, safe_address, safe_rpc_url
from src.api.routers.proposals_config import (
    governance_postgres_dsn,
    governance_store_backend_name,
)

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if governance_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_GOVERNANCE_POSTGRES")
    if not governance_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_GOVERNANCE_POSTGRES_DSN")
    if not safe_rpc_url():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_SAFE_RPC_URL")
    if not safe_address():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_SAFE_ADDRESS")
    if not council_registry_address():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_COUNCIL_REGISTRY_ADDRESS")
