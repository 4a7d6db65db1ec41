"""Tests for JSON log formatting and request/job context binding."""

import json
import logging

from fastapi.testclient import TestClient

from app.logging_config import _JsonFormatter, job_context
from app.main import app

client = TestClient(app)


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_extras():
    line = _JsonFormatter().format(_record(step="classify"))
    data = json.loads(line)
    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["logger"] == "app.test"
    assert data["step"] == "classify"


def test_job_context_binds_job_id():
    formatter = _JsonFormatter()
    with job_context("job-123"):
        inside = json.loads(formatter.format(_record()))
    outside = json.loads(formatter.format(_record()))
    assert inside["job_id"] == "job-123"
    assert "job_id" not in outside


def test_request_id_echoed():
    resp = client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-ID"] == "abc123"


def test_request_id_generated():
    resp = client.get("/api/health")
    assert len(resp.headers["X-Request-ID"]) == 32
