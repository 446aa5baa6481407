import pytest
from fastapi.testclient import TestClient

import src.api.persistence_profile as persistence_profile
from src.api.main import app
from src.api.persistence_profile import (
    app_persistence_profile_name,
    validate_persistence_profile_guardrails,
)


def test_persistence_profile_defaults_to_local(monkeypatch):
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    assert app_persistence_profile_name() == "LOCAL"


def test_persistence_profile_unknown_value_falls_back_to_local(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "staging")
    assert app_persistence_profile_name() == "LOCAL"


def test_local_profile_skips_guardrails(monkeypatch):
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    monkeypatch.delenv("SAFE_RPC_URL", raising=False)
    monkeypatch.delenv("GOVERNANCE_POSTGRES_DSN", raising=False)

    validate_persistence_profile_guardrails()


def test_production_profile_requires_governance_postgres(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("GOVERNANCE_STORE_BACKEND", "IN_MEMORY")

    with pytest.warns(DeprecationWarning):
        with pytest.raises(RuntimeError) as exc:
            validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_GOVERNANCE_POSTGRES"


@pytest.mark.parametrize(
    ("missing_env", "expected"),
    [
        ("GOVERNANCE_POSTGRES_DSN", "PERSISTENCE_PROFILE_REQUIRES_GOVERNANCE_POSTGRES_DSN"),
        ("SAFE_RPC_URL", "PERSISTENCE_PROFILE_REQUIRES_SAFE_RPC_URL"),
        ("SAFE_ADDRESS", "PERSISTENCE_PROFILE_REQUIRES_SAFE_ADDRESS"),
        ("COUNCIL_REGISTRY_ADDRESS", "PERSISTENCE_PROFILE_REQUIRES_COUNCIL_REGISTRY_ADDRESS"),
    ],
)
def test_production_profile_requires_each_setting(monkeypatch, missing_env, expected):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.delenv(missing_env, raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == expected


def test_production_profile_allows_complete_configuration(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")

    validate_persistence_profile_guardrails()


def test_startup_fails_fast_without_safe_rpc_in_production(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.delenv("SAFE_RPC_URL", raising=False)

    with pytest.raises(RuntimeError) as exc:
        with TestClient(app):
            pass
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_SAFE_RPC_URL"


def test_profile_guardrails_check_backend_before_dsn(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setattr(persistence_profile, "governance_store_backend_name", lambda: "IN_MEMORY")
    monkeypatch.setattr(persistence_profile, "governance_postgres_dsn", lambda: "")

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_GOVERNANCE_POSTGRES"
