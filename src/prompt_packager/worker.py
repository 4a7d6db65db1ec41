# Remote packaging worker
# Polls jobs-claim, runs the pipeline with model calls routed through
# generate-prompt, and posts the outcome to jobs-report.
# Authenticates with the shared x-worker-key secret only (no database or gateway credentials)

import asyncio
import logging
from typing import Any, Optional

import httpx

from prompt_packager.pipeline import package_prompt
from prompt_packager.state import InvalidPayloadError, PackagedResult, UnknownJobTypeError, parse_payload

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0


class WorkerError(RuntimeError):
    """A functions endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class FunctionsClient:
    """Thin httpx wrapper around the claim / report / generate functions."""

    def __init__(
        self,
        functions_url: str,
        worker_key: str,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=functions_url.rstrip("/"),
            headers={"x-worker-key": worker_key},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "FunctionsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, label: str, body: dict | None = None) -> dict:
        resp = await self._client.post(path, json=body if body is not None else {})
        if not resp.is_success:
            raise WorkerError(f"{label} failed ({resp.status_code}): {resp.text}", resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise WorkerError(f"{label} returned invalid JSON: {resp.text[:200]}", resp.status_code) from e
        if not isinstance(data, dict):
            raise WorkerError(f"{label} returned {type(data).__name__}, expected an object", resp.status_code)
        return data

    async def claim_job(self) -> dict | None:
        """Claim the next queued job; None when the queue is empty."""
        data = await self._post("/jobs-claim", "Claim")
        return data.get("job")

    async def report_result(self, report: dict) -> dict:
        return await self._post("/jobs-report", "Report", report)

    async def generate(self, system_prompt: str, user_message: str) -> str:
        """ChatFn backed by the generate-prompt function."""
        data = await self._post(
            "/generate-prompt", "AI call", {"system": system_prompt, "message": user_message}
        )
        return data.get("text", "")


async def poll_once(client: FunctionsClient) -> str | None:
    """Claim, process and report one job. Returns its id, or None if idle."""
    job = await client.claim_job()
    if not job:
        return None

    job_id = job.get("id")
    if not job_id:
        raise WorkerError("Claim returned a job without an id")
    logger.info("Claimed job %s (type: %s)", job_id, job.get("type"), extra={"job_id": job_id})

    try:
        payload = parse_payload(job.get("type", ""), job.get("payload_json"))
    except (UnknownJobTypeError, InvalidPayloadError) as e:
        logger.error("Rejected job %s: %s", job_id, e, extra={"job_id": job_id})
        await client.report_result({"job_id": job_id, "error": str(e), "steps": []})
        return job_id

    result: PackagedResult = await package_prompt(payload, client.generate, job_id=job_id)
    await client.report_result(result.to_report())
    logger.info("Reported job %s as completed", job_id, extra={"job_id": job_id})
    return job_id


async def run_worker(
    client: FunctionsClient,
    interval: float = DEFAULT_POLL_INTERVAL,
    stop: asyncio.Event | None = None,
) -> None:
    """Poll until ``stop`` is set.

    After a processed job the next poll runs immediately; an empty queue or an
    error waits ``interval`` seconds.
    """
    stop = stop or asyncio.Event()
    logger.info("Packaging worker started (polling every %ss)", interval)
    while not stop.is_set():
        try:
            job_id = await poll_once(client)
        except (httpx.HTTPError, WorkerError) as e:
            logger.error("Worker error: %s", e)
            job_id = None
        except Exception:
            logger.exception("Unexpected worker error")
            job_id = None

        if job_id is not None:
            continue
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("Packaging worker stopped")
