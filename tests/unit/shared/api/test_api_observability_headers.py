import json
import logging
import re

from fastapi.testclient import TestClient

from src.api.main import app
from src.api.observability import (
    MULTISIG_EXECUTIONS,
    PROPOSAL_TRANSITIONS,
    JsonFormatter,
    correlation_id_var,
    record_multisig_execution,
    record_proposal_transition,
)

INBOUND_TRACEPARENT = "00-1234567890abcdef1234567890abcdef-00f067aa0ba902b7-01"


def test_observability_headers_preserve_inbound_correlation_and_trace_context():
    with TestClient(app) as client:
        response = client.get(
            "/health",
            headers={
                "X-Correlation-Id": "corr-inbound-123",
                "X-Request-Id": "req-inbound-123",
                "traceparent": INBOUND_TRACEPARENT,
            },
        )

    assert response.status_code == 200
    assert response.headers["X-Correlation-Id"] == "corr-inbound-123"
    assert response.headers["X-Request-Id"] == "req-inbound-123"
    assert response.headers["X-Trace-Id"] == "1234567890abcdef1234567890abcdef"
    assert response.headers["traceparent"] == INBOUND_TRACEPARENT


def test_observability_headers_generate_ids_when_missing():
    with TestClient(app) as client:
        response = client.get("/health", headers={"traceparent": "garbage"})

    assert response.status_code == 200
    assert re.fullmatch(r"corr_[0-9a-f]{12}", response.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", response.headers["X-Request-Id"])
    assert re.fullmatch(r"[0-9a-f]{32}", response.headers["X-Trace-Id"])
    assert re.fullmatch(
        r"00-[0-9a-f]{32}-0000000000000001-01",
        response.headers["traceparent"],
    )


def test_metrics_endpoint_exposes_governance_counters():
    before = PROPOSAL_TRANSITIONS.labels(to_status="approved")._value.get()
    record_proposal_transition("approved")
    record_multisig_execution("nonce_conflict")

    with TestClient(app) as client:
        body = client.get("/metrics").text

    assert PROPOSAL_TRANSITIONS.labels(to_status="approved")._value.get() == before + 1
    assert MULTISIG_EXECUTIONS.labels(outcome="nonce_conflict")._value.get() >= 1
    assert 'governance_proposal_transitions_total{to_status="approved"}' in body
    assert 'governance_multisig_executions_total{outcome="nonce_conflict"}' in body


def test_json_formatter_merges_extra_fields_and_context(monkeypatch):
    monkeypatch.setenv("SERVICE_NAME", "council-governance-test")
    record = logging.LogRecord(
        name="src.core.proposals.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Vote recorded",
        args=(),
        exc_info=None,
    )
    record.extra_fields = {"proposal_id": "gp_1", "choice": "aye"}
    token = correlation_id_var.set("corr-1")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        correlation_id_var.reset(token)

    assert payload["service"] == "council-governance-test"
    assert payload["message"] == "Vote recorded"
    assert payload["proposal_id"] == "gp_1"
    assert payload["correlation_id"] == "corr-1"
    assert payload["safe_address"]
    assert "request_id" not in payload
