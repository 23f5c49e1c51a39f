"""Staged-upload bulk jobs: stage, upload, submit, poll, read results.

One job is created per create batch and per update batch. A job that fails is
not retried within the run; the next scheduled run picks the items up again.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from catalog_sync.config import settings
from catalog_sync.errors import BulkJobError, BulkJobTimeoutError, TransportError
from catalog_sync.services.platform_client import PlatformClient
from catalog_sync.services.platform_queries import (
    BULK_OPERATION_RUN_MUTATION,
    BULK_OPERATION_STATUS,
    BULK_PRODUCT_SET,
    STAGED_UPLOADS_CREATE,
)

logger = logging.getLogger(__name__)


class BulkJobState(str, Enum):
    STAGING = "STAGING"
    UPLOADING = "UPLOADING"
    SUBMITTED = "SUBMITTED"
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


TERMINAL_STATES = {BulkJobState.COMPLETED, BulkJobState.FAILED, BulkJobState.CANCELED}


@dataclass
class BulkJob:
    id: str
    status: str
    object_count: int = 0
    result_url: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATES}


@dataclass
class BulkOutcome:
    operation: str
    batch_size: int
    job: Optional[BulkJob] = None
    processed_count: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    transitions: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.job is not None and self.job.status == BulkJobState.COMPLETED.value


StateCallback = Callable[[BulkJobState, Optional[BulkJob]], Awaitable[None]]


def build_jsonl(inputs: list[dict[str, Any]]) -> str:
    """One self-contained ``{"input": ...}`` mutation variable set per line."""
    return "\n".join(json.dumps({"input": item}, separators=(",", ":"), default=str) for item in inputs)


def parse_result_lines(content: str) -> list[dict[str, Any]]:
    results = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            parsed = json.loads(line)
        except ValueError:
            logger.warning("Discarding unparseable bulk result line: %.200s", line)
            continue
        if isinstance(parsed, dict):
            results.append(parsed)
    return results


def result_payload(result: dict[str, Any]) -> dict[str, Any]:
    return ((result.get("data") or {}).get("productSet")) or {}


class BulkJobManager:
    def __init__(
        self,
        client: PlatformClient,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        on_state: Optional[StateCallback] = None,
    ) -> None:
        self._client = client
        self._poll_interval = settings.bulk_poll_interval_seconds if poll_interval is None else poll_interval
        self._max_attempts = max_attempts or settings.bulk_poll_max_attempts
        self._on_state = on_state

    async def run(self, inputs: list[dict[str, Any]], operation: str) -> BulkOutcome:
        """Drive one batch to a terminal job status.

        Raises BulkJobError when staging, upload or submission fails and
        BulkJobTimeoutError when polling runs out of attempts.
        """
        outcome = BulkOutcome(operation=operation, batch_size=len(inputs))
        logger.info("Starting bulk %s job for %d products", operation, len(inputs))

        await self._transition(outcome, BulkJobState.STAGING)
        content = build_jsonl(inputs).encode("utf-8")
        target = await self.stage(len(content))
        staged_path = _staged_path(target)

        await self._transition(outcome, BulkJobState.UPLOADING)
        try:
            await self._client.upload_staged(target["url"], target.get("parameters") or [], content)
        except TransportError as e:
            raise BulkJobError(f"Bulk {operation} payload upload failed: {e}") from e

        job = await self.submit(staged_path)
        await self._transition(outcome, BulkJobState.SUBMITTED, job)
        logger.info("Bulk %s job started: %s", operation, job.id)

        job = await self.poll(job, outcome)
        outcome.job = job

        if job.status == BulkJobState.COMPLETED.value:
            await self._collect_results(outcome)
        else:
            logger.error("Bulk %s job %s ended %s: %s", operation, job.id, job.status, job.error_code or "unknown error")
            outcome.succeeded = 0
            outcome.failed = outcome.batch_size
        return outcome

    async def stage(self, file_size: int) -> dict[str, Any]:
        try:
            data = await self._client.request(
                STAGED_UPLOADS_CREATE,
                {
                    "input": [
                        {
                            "resource": "BULK_MUTATION_VARIABLES",
                            "filename": "bulk-operation.jsonl",
                            "mimeType": "text/jsonl",
                            "httpMethod": "POST",
                            "fileSize": str(file_size),
                        }
                    ]
                },
            )
        except TransportError as e:
            raise BulkJobError(f"Staged upload request failed: {e}") from e

        payload = data.get("stagedUploadsCreate") or {}
        if payload.get("userErrors"):
            raise BulkJobError(f"Staged upload rejected: {payload['userErrors']}")
        targets = payload.get("stagedTargets") or []
        if not targets or not targets[0].get("url"):
            raise BulkJobError("No staged upload target returned")
        return targets[0]

    async def submit(self, staged_path: str) -> BulkJob:
        try:
            data = await self._client.request(
                BULK_OPERATION_RUN_MUTATION, {"mutation": BULK_PRODUCT_SET, "stagedUploadPath": staged_path}
            )
        except TransportError as e:
            raise BulkJobError(f"Bulk job submission failed: {e}") from e

        payload = data.get("bulkOperationRunMutation") or {}
        if payload.get("userErrors"):
            raise BulkJobError(f"Bulk job submission rejected: {payload['userErrors']}")
        operation = payload.get("bulkOperation")
        if not operation or not operation.get("id"):
            raise BulkJobError("Bulk job submission returned no operation")
        return _to_job(operation)

    async def status(self, job_id: str) -> BulkJob:
        data = await self._client.request(BULK_OPERATION_STATUS, {"id": job_id})
        node = data.get("node")
        if not node:
            raise BulkJobError(f"Bulk operation {job_id} not found")
        return _to_job(node)

    async def poll(self, job: BulkJob, outcome: Optional[BulkOutcome] = None) -> BulkJob:
        if job.is_terminal:
            return job

        for attempt in range(1, self._max_attempts + 1):
            try:
                job = await self.status(job.id)
            except TransportError as e:
                raise BulkJobError(f"Could not poll bulk job {job.id}: {e}") from e
            logger.info("Bulk job %s status %s, objects %d (poll %d)", job.id, job.status, job.object_count, attempt)
            if outcome is not None:
                await self._transition(outcome, _state_of(job), job)
            if job.is_terminal:
                return job
            await asyncio.sleep(self._poll_interval)

        raise BulkJobTimeoutError(f"Bulk job {job.id} still {job.status} after {self._max_attempts} polls")

    async def _collect_results(self, outcome: BulkOutcome) -> None:
        job = outcome.job
        if job.result_url:
            try:
                outcome.results = parse_result_lines(await self._client.fetch_text(job.result_url))
            except TransportError as e:
                logger.warning("Could not fetch bulk job results for %s: %s", job.id, e)

        # Known heuristic: the reported counter is trusted unless it is exactly zero
        if job.object_count:
            outcome.processed_count = job.object_count
        else:
            outcome.processed_count = len(outcome.results)

        rejected = sum(1 for r in outcome.results if result_payload(r).get("userErrors"))
        processed = min(outcome.processed_count, outcome.batch_size)
        outcome.failed = rejected
        outcome.succeeded = max(processed - rejected, 0)
        logger.info(
            "Bulk %s job %s completed: processed=%d rejected=%d",
            outcome.operation, job.id, outcome.processed_count, rejected,
        )

    async def _transition(self, outcome: BulkOutcome, state: BulkJobState, job: Optional[BulkJob] = None) -> None:
        outcome.transitions.append(state.value)
        if self._on_state is not None:
            await self._on_state(state, job)


def _to_job(node: dict[str, Any]) -> BulkJob:
    try:
        object_count = int(node.get("objectCount") or 0)
    except (TypeError, ValueError):
        object_count = 0
    return BulkJob(
        id=node["id"],
        status=node.get("status") or BulkJobState.CREATED.value,
        object_count=object_count,
        result_url=node.get("url"),
        error_code=node.get("errorCode"),
    )


def _state_of(job: BulkJob) -> BulkJobState:
    try:
        return BulkJobState(job.status)
    except ValueError:
        return BulkJobState.RUNNING


def _staged_path(target: dict[str, Any]) -> str:
    for param in target.get("parameters") or []:
        if param.get("name") == "key":
            return param["value"]
    if target.get("resourceUrl"):
        return target["resourceUrl"]
    raise BulkJobError("Staged upload target has no key parameter")
