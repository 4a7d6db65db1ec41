"""Tests for the /functions/v1 endpoints.

Tests cover:
  process-jobs    — response shapes for every outcome
  jobs-create     — API key auth, membership check, payload validation
  jobs-claim      — worker key, FIFO claim
  jobs-report     — remote result write-back
  generate-prompt — gateway passthrough and error mapping
"""

import json
from contextlib import ExitStack, contextmanager
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.deps import hash_key
from app.main import app
from app.models import Base
from app.models.api_key import ApiKey
from app.models.job import (
    Job,
    JobRun,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_QUEUED,
)
from app.models.prompt_submission import PromptSubmission, SUBMISSION_STATUS_PACKAGED
from app.models.user import MEMBER_STATUS_ACTIVE, MEMBER_STATUS_PENDING, User
from prompt_packager.client import GatewayError
from prompt_packager.prompts import CLASSIFY_SYSTEM

client = TestClient(app)

WORKER_KEY = "worker-secret"
WORKER_HEADERS = {"x-worker-key": WORKER_KEY}


# ---------------------------------------------------------------------------
# DB + auth helpers
# ---------------------------------------------------------------------------


def _make_test_db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


@contextmanager
def _use_db(session_factory):
    with ExitStack() as stack:
        for target in (
            "app.deps.get_db",
            "app.api.functions.get_db",
            "app.services.job_processor.get_db",
        ):
            stack.enter_context(patch(target, session_factory))
        stack.enter_context(patch.object(settings, "worker_key", WORKER_KEY))
        yield


def _create_member(session_factory, status=MEMBER_STATUS_ACTIVE, raw_key="member-key") -> int:
    s = session_factory()
    user = User(email=f"{raw_key}@example.com", name="Member", member_status=status)
    s.add(user)
    s.commit()
    s.add(ApiKey(user_id=user.id, name="test", key_hash=hash_key(raw_key)))
    s.commit()
    user_id = user.id
    s.close()
    return user_id


def _create_job(session_factory, **kwargs) -> str:
    s = session_factory()
    job = Job(type=kwargs.pop("type", "package_prompt"), payload_json=kwargs.pop("payload_json", {}), **kwargs)
    s.add(job)
    s.commit()
    job_id = job.id
    s.close()
    return job_id


async def _fake_chat(system_prompt: str, user_message: str) -> str:
    if system_prompt == CLASSIFY_SYSTEM:
        return json.dumps({"summary": "S", "tags": ["x"], "complexity": "simple"})
    return "STANDARDIZED"


# ---------------------------------------------------------------------------
# OPTIONS
# ---------------------------------------------------------------------------


def test_options_returns_200():
    for name in ("process-jobs", "jobs-create", "jobs-claim", "jobs-report", "generate-prompt"):
        resp = client.options(f"/functions/v1/{name}")
        assert resp.status_code == 200


def test_cors_preflight_from_any_origin():
    resp = client.options(
        "/functions/v1/process-jobs",
        headers={
            "Origin": "https://cron.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-worker-key, content-type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]


def test_cors_headers_on_function_response():
    SF = _make_test_db()
    with _use_db(SF):
        resp = client.post("/functions/v1/process-jobs", headers={"Origin": "https://cron.example.com"})
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"


# ---------------------------------------------------------------------------
# process-jobs
# ---------------------------------------------------------------------------


def test_process_jobs_empty_queue():
    SF = _make_test_db()
    with _use_db(SF):
        resp = client.post("/functions/v1/process-jobs")
    assert resp.status_code == 200
    assert resp.json() == {"message": "No jobs in queue"}


def test_process_jobs_success():
    SF = _make_test_db()
    job_id = _create_job(SF, payload_json={"title": "T", "raw_prompt": "R"})
    with _use_db(SF), patch("app.services.job_processor.make_chat_fn", return_value=_fake_chat):
        resp = client.post("/functions/v1/process-jobs")

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "job_id": job_id}
    s = SF()
    assert s.get(Job, job_id).status == JOB_STATUS_COMPLETED
    s.close()


def test_process_jobs_already_claimed():
    SF = _make_test_db()
    _create_job(SF)
    with _use_db(SF), patch("app.services.job_processor._job_service.claim", return_value=False):
        resp = client.post("/functions/v1/process-jobs")
    assert resp.json() == {"message": "Job already claimed"}


def test_process_jobs_unknown_type():
    SF = _make_test_db()
    job_id = _create_job(SF, type="send_email")
    with _use_db(SF):
        resp = client.post("/functions/v1/process-jobs")

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is False
    assert body["job_id"] == job_id
    assert "Unsupported job type" in body["error"]


def test_process_jobs_unexpected_error_returns_500():
    with patch("app.api.functions.process_next_job", new=AsyncMock(side_effect=RuntimeError("db down"))):
        resp = client.post("/functions/v1/process-jobs")
    assert resp.status_code == 500
    assert resp.json() == {"error": "db down"}


def test_process_jobs_worker_key_when_required():
    SF = _make_test_db()
    with _use_db(SF), patch.object(settings, "process_jobs_require_worker_key", True):
        assert client.post("/functions/v1/process-jobs").status_code == 401
        resp = client.post("/functions/v1/process-jobs", headers=WORKER_HEADERS)
    assert resp.json() == {"message": "No jobs in queue"}


# ---------------------------------------------------------------------------
# jobs-create
# ---------------------------------------------------------------------------


def test_jobs_create_requires_api_key():
    SF = _make_test_db()
    with _use_db(SF):
        resp = client.post("/functions/v1/jobs-create", json={"type": "package_prompt", "payload": {}})
    assert resp.status_code == 401
    assert "error" in resp.json()


def test_jobs_create_requires_active_membership():
    SF = _make_test_db()
    _create_member(SF, status=MEMBER_STATUS_PENDING)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-create",
            json={"type": "package_prompt", "payload": {}},
            headers={"Authorization": "Bearer member-key"},
        )
    assert resp.status_code == 403
    assert resp.json() == {"error": "Active membership required"}


def test_jobs_create_queues_job():
    SF = _make_test_db()
    _create_member(SF)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-create",
            json={"type": "package_prompt", "payload": {"title": "T", "raw_prompt": "R"}},
            headers={"Authorization": "Bearer member-key"},
        )
    assert resp.status_code == 200
    job = resp.json()["job"]
    assert job["status"] == "queued"
    assert job["payload_json"] == {"title": "T", "raw_prompt": "R"}


def test_jobs_create_missing_fields():
    SF = _make_test_db()
    _create_member(SF)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-create",
            json={"type": "package_prompt"},
            headers={"Authorization": "Bearer member-key"},
        )
    assert resp.status_code == 400
    assert resp.json() == {"error": "type and payload required"}


def test_jobs_create_unknown_type():
    SF = _make_test_db()
    _create_member(SF)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-create",
            json={"type": "send_email", "payload": {}},
            headers={"Authorization": "Bearer member-key"},
        )
    assert resp.status_code == 400
    assert "Unsupported job type" in resp.json()["error"]


def test_jobs_create_malformed_body():
    SF = _make_test_db()
    _create_member(SF)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-create",
            json={"type": "package_prompt", "payload": "not an object"},
            headers={"Authorization": "Bearer member-key"},
        )
    assert resp.status_code == 400
    assert "error" in resp.json()


# ---------------------------------------------------------------------------
# jobs-claim / jobs-report
# ---------------------------------------------------------------------------


def test_jobs_claim_requires_worker_key():
    SF = _make_test_db()
    with _use_db(SF):
        resp = client.post("/functions/v1/jobs-claim", headers={"x-worker-key": "wrong"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_jobs_claim_rejects_everyone_without_configured_key():
    SF = _make_test_db()
    with _use_db(SF), patch.object(settings, "worker_key", ""):
        resp = client.post("/functions/v1/jobs-claim", headers={"x-worker-key": ""})
    assert resp.status_code == 401


def test_jobs_claim_empty_and_claimed():
    SF = _make_test_db()
    with _use_db(SF):
        assert client.post("/functions/v1/jobs-claim", headers=WORKER_HEADERS).json() == {"job": None}

        job_id = _create_job(SF)
        job = client.post("/functions/v1/jobs-claim", headers=WORKER_HEADERS).json()["job"]
    assert job["id"] == job_id
    assert job["status"] == JOB_STATUS_PROCESSING


def test_jobs_report_completes_job_and_submission():
    SF = _make_test_db()
    user_id = _create_member(SF)
    s = SF()
    submission = PromptSubmission(submitted_by=user_id, title="T", raw_prompt="R")
    s.add(submission)
    s.commit()
    submission_id = submission.id
    s.close()
    job_id = _create_job(SF, status=JOB_STATUS_PROCESSING, payload_json={"submission_id": submission_id})

    report = {
        "job_id": job_id,
        "standardized_prompt_text": "STANDARDIZED",
        "summary": "S",
        "tags": ["x"],
        "complexity": "simple",
        "steps": [
            {"step": "standardize", "input_snippet": "R", "output_snippet": "STANDARDIZED", "success": True},
            {"step": "classify", "input_snippet": "STANDARDIZED", "output_snippet": "{}", "success": False},
        ],
    }
    with _use_db(SF):
        resp = client.post("/functions/v1/jobs-report", json=report, headers=WORKER_HEADERS)

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    s = SF()
    job = s.get(Job, job_id)
    assert job.status == JOB_STATUS_COMPLETED
    assert job.degraded is True
    assert s.query(JobRun).filter(JobRun.job_id == job_id).count() == 2
    packaged = s.get(PromptSubmission, submission_id)
    assert packaged.status == SUBMISSION_STATUS_PACKAGED
    assert packaged.packaged_prompt == "STANDARDIZED"
    s.close()


def test_jobs_report_error_fails_job():
    SF = _make_test_db()
    job_id = _create_job(SF, status=JOB_STATUS_PROCESSING)
    with _use_db(SF):
        resp = client.post(
            "/functions/v1/jobs-report",
            json={"job_id": job_id, "error": "Unsupported job type: 'x'", "steps": []},
            headers=WORKER_HEADERS,
        )
    assert resp.json() == {"success": True}
    s = SF()
    job = s.get(Job, job_id)
    assert job.status == JOB_STATUS_FAILED
    assert job.error_message == "Unsupported job type: 'x'"
    s.close()


def _report_for(job_id: str) -> dict:
    return {
        "job_id": job_id,
        "standardized_prompt_text": "STANDARDIZED",
        "summary": "S",
        "tags": ["x"],
        "complexity": "simple",
        "steps": [
            {"step": "standardize", "input_snippet": "R", "output_snippet": "STANDARDIZED", "success": True},
            {"step": "classify", "input_snippet": "STANDARDIZED", "output_snippet": "{}", "success": True},
        ],
    }


def test_jobs_report_duplicate_is_rejected():
    SF = _make_test_db()
    job_id = _create_job(SF, status=JOB_STATUS_PROCESSING)
    with _use_db(SF):
        first = client.post("/functions/v1/jobs-report", json=_report_for(job_id), headers=WORKER_HEADERS)
        second = client.post("/functions/v1/jobs-report", json=_report_for(job_id), headers=WORKER_HEADERS)

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json() == {"error": "Job not in processing"}
    s = SF()
    assert s.get(Job, job_id).status == JOB_STATUS_COMPLETED
    assert s.query(JobRun).filter(JobRun.job_id == job_id).count() == 2
    s.close()


def test_jobs_report_for_unclaimed_job_is_rejected():
    SF = _make_test_db()
    job_id = _create_job(SF)
    with _use_db(SF):
        done = client.post("/functions/v1/jobs-report", json=_report_for(job_id), headers=WORKER_HEADERS)
        failed = client.post(
            "/functions/v1/jobs-report",
            json={"job_id": job_id, "error": "late", "steps": []},
            headers=WORKER_HEADERS,
        )

    assert done.status_code == 409
    assert failed.status_code == 409
    s = SF()
    job = s.get(Job, job_id)
    assert job.status == JOB_STATUS_QUEUED
    assert job.error_message is None
    assert s.query(JobRun).count() == 0
    s.close()


def test_jobs_report_validation():
    SF = _make_test_db()
    with _use_db(SF):
        missing = client.post("/functions/v1/jobs-report", json={}, headers=WORKER_HEADERS)
        unknown = client.post("/functions/v1/jobs-report", json={"job_id": "nope"}, headers=WORKER_HEADERS)
    assert missing.status_code == 400
    assert missing.json() == {"error": "job_id required"}
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Job not found"}


# ---------------------------------------------------------------------------
# generate-prompt
# ---------------------------------------------------------------------------


def test_generate_prompt_not_configured():
    with patch.object(settings, "ai_gateway_api_key", ""):
        resp = client.post("/functions/v1/generate-prompt", json={"system": "s", "message": "m"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "AI not configured"}


def test_generate_prompt_returns_text():
    mock_call = AsyncMock(return_value="generated")
    with patch.object(settings, "ai_gateway_api_key", "key"), patch("app.api.functions.call_ai", new=mock_call):
        resp = client.post("/functions/v1/generate-prompt", json={"system": "s", "message": "m"})

    assert resp.json() == {"text": "generated"}
    args, kwargs = mock_call.call_args
    assert args[1:] == ("s", "m")
    assert kwargs["max_tokens"] == settings.ai_generate_max_tokens


def test_generate_prompt_empty_output():
    with patch.object(settings, "ai_gateway_api_key", "key"), patch(
        "app.api.functions.call_ai", new=AsyncMock(return_value="")
    ):
        resp = client.post("/functions/v1/generate-prompt", json={"system": "s", "message": "m"})
    assert resp.json() == {"text": "No output generated."}


def test_generate_prompt_gateway_error():
    err = GatewayError("AI call failed (429): rate limited", status_code=429)
    with patch.object(settings, "ai_gateway_api_key", "key"), patch(
        "app.api.functions.call_ai", new=AsyncMock(side_effect=err)
    ):
        resp = client.post("/functions/v1/generate-prompt", json={"system": "s", "message": "m"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "AI gateway error: AI call failed (429): rate limited"}
