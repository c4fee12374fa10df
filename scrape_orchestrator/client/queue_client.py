"""Typed async client for the Job Queue Service HTTP surface."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx

from ..batches.models import Batch, BatchCreated, InconsistentProgress
from ..errors import ServiceRejection, TransportError, ValidationError
from ..jobs.models import DiveValidation, JobKind, JobListing, JobSnapshot, NotFound
from ..monitoring.metrics import BATCH_SNAPSHOTS_DROPPED_TOTAL, REQUEST_LATENCY
from .models import BatchFromDiveRequest, CorpusLinkRequest, DiveRequest, MassScrapeRequest, PreviewRequest

logger = logging.getLogger(__name__)


def _error_messages(body: Any, fallback: str) -> List[str]:
    if isinstance(body, Mapping):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return [str(item) for item in errors]
        for key in ("error", "message"):
            if body.get(key):
                return [str(body[key])]
    return [fallback]


def _looks_not_found(messages: List[str]) -> bool:
    return any("not found" in message.lower() for message in messages)


class JobQueueClient:
    """Request/response boundary; no retries and no interpretation of job state."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "JobQueueClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.debug("Request failed", extra={"operation": operation, "path": path, "error": str(exc)})
            raise TransportError(f"{operation} failed: {exc}", operation=operation) from exc
        finally:
            REQUEST_LATENCY.labels(operation=operation).observe(time.perf_counter() - start)
        return response

    @staticmethod
    def _envelope(response: httpx.Response) -> Any:
        """Return the ``data`` member of a successful envelope or raise ``ServiceRejection``."""

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        status = response.status_code
        if status == 404:
            raise ServiceRejection(_error_messages(body, "Not found"), status_code=status, not_found=True)
        if not response.is_success:
            messages = _error_messages(body, f"HTTP {status}")
            raise ServiceRejection(messages, status_code=status)
        if body is None:
            raise ServiceRejection(["Service returned a non-JSON body"], status_code=status)
        if isinstance(body, Mapping) and body.get("success") is False:
            messages = _error_messages(body, "Request rejected by service")
            raise ServiceRejection(messages, status_code=status, not_found=_looks_not_found(messages))
        if isinstance(body, Mapping):
            return body.get("data", body)
        return body

    async def _create(self, operation: str, path: str, payload: Dict[str, Any]) -> Mapping[str, Any]:
        response = await self._request(operation, "POST", path, json=payload)
        try:
            data = self._envelope(response)
        except ServiceRejection as exc:
            if exc.status_code is not None and exc.status_code >= 500:
                raise
            raise ValidationError(exc.errors) from exc
        return data if isinstance(data, Mapping) else {}

    # Jobs

    async def create_job(self, kind: JobKind, config: Union[DiveRequest, PreviewRequest]) -> str:
        if kind is JobKind.FULL_DIVE:
            path = "/api/dive"
        elif kind is JobKind.PREVIEW_DIVE:
            path = "/api/dive/preview"
            config = PreviewRequest(url=config.url)
        else:
            raise ValueError(f"{kind.value} jobs are created through mass-scrape batches")

        response = await self._request("create_job", "POST", path, json=config.to_payload())
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if response.status_code >= 500:
            raise ServiceRejection(_error_messages(body, f"HTTP {response.status_code}"), status_code=response.status_code)
        if not isinstance(body, Mapping) or not body.get("success") or not body.get("jobId"):
            raise ValidationError(_error_messages(body, "Unknown error"))
        job_id = str(body["jobId"])
        logger.info("Created job", extra={"job_id": job_id, "kind": kind.value})
        return job_id

    async def validate_dive(self, config: DiveRequest) -> DiveValidation:
        response = await self._request("validate_dive", "POST", "/api/dive/validate", json=config.to_payload())
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if response.status_code >= 500 or not isinstance(body, Mapping):
            raise ServiceRejection(_error_messages(body, f"HTTP {response.status_code}"), status_code=response.status_code)
        return DiveValidation(
            valid=bool(body.get("success")),
            errors=[str(item) for item in body.get("errors") or []],
            warnings=[str(item) for item in body.get("warnings") or []],
        )

    async def get_progress(self, job_id: str) -> Union[JobSnapshot, NotFound]:
        response = await self._request("get_progress", "GET", f"/api/dive/progress/{job_id}")
        try:
            data = self._envelope(response)
        except ServiceRejection as exc:
            if exc.not_found:
                return NotFound(job_id)
            raise
        if not isinstance(data, Mapping):
            data = {}
        return JobSnapshot.from_payload(job_id, data)

    async def delete_job(self, job_id: str) -> None:
        response = await self._request("delete_job", "DELETE", f"/api/jobs/{job_id}")
        self._envelope(response)

    async def list_jobs(self) -> JobListing:
        response = await self._request("list_jobs", "GET", "/api/jobs")
        data = self._envelope(response)
        return JobListing.from_payload(data if isinstance(data, Mapping) else {})

    # Batches

    async def create_batch(self, request: MassScrapeRequest) -> BatchCreated:
        data = await self._create("create_batch", "/api/mass-scrape", request.to_payload())
        return self._batch_created(data)

    async def create_batch_from_dive(self, request: BatchFromDiveRequest) -> BatchCreated:
        data = await self._create("create_batch_from_dive", "/api/mass-scrape/from-dive", request.to_payload())
        return self._batch_created(data)

    @staticmethod
    def _batch_created(data: Mapping[str, Any]) -> BatchCreated:
        batch_id = data.get("batchId")
        if not batch_id:
            raise ServiceRejection(["Service did not return a batch id"])
        job_ids = [str(job_id) for job_id in data.get("jobIds") or []]
        created = BatchCreated(
            batch_id=str(batch_id),
            total=int(data.get("total") or len(job_ids)),
            corpus_id=data.get("corpusId") or None,
            job_ids=job_ids,
        )
        logger.info("Created batch", extra={"batch_id": created.batch_id, "total": created.total})
        return created

    async def list_batches(self) -> List[Batch]:
        response = await self._request("list_batches", "GET", "/api/mass-scrape")
        data = self._envelope(response)
        batches: List[Batch] = []
        for item in data if isinstance(data, list) else []:
            if not isinstance(item, Mapping):
                continue
            try:
                batches.append(self._read_batch(item))
            except InconsistentProgress as exc:
                BATCH_SNAPSHOTS_DROPPED_TOTAL.inc()
                logger.warning("Dropping inconsistent batch snapshot: %s", exc, extra={"batch_id": item.get("id")})
            except ValueError as exc:
                logger.warning("Dropping unreadable batch snapshot: %s", exc)
        return batches

    async def get_batch(self, batch_id: str) -> Batch:
        response = await self._request("get_batch", "GET", f"/api/mass-scrape/{batch_id}")
        data = self._envelope(response)
        if not isinstance(data, Mapping):
            raise ServiceRejection([f"Unreadable batch payload for {batch_id}"])
        payload = dict(data)
        payload.setdefault("id", batch_id)
        try:
            return self._read_batch(payload)
        except ValueError as exc:
            if isinstance(exc, InconsistentProgress):
                BATCH_SNAPSHOTS_DROPPED_TOTAL.inc()
            raise ServiceRejection([str(exc)], status_code=response.status_code) from exc

    @staticmethod
    def _read_batch(payload: Mapping[str, Any]) -> Batch:
        try:
            return Batch.from_payload(payload)
        except InconsistentProgress as exc:
            # A cancel removes jobs without counting them; keep the batch.
            batch = Batch.from_payload(payload, normalize=True)
            BATCH_SNAPSHOTS_DROPPED_TOTAL.inc()
            logger.warning(
                "Normalised undercounted batch snapshot: %s",
                exc,
                extra={"batch_id": batch.id, "pending": batch.progress.pending},
            )
            return batch

    async def cancel_batch(self, batch_id: str) -> None:
        response = await self._request("cancel_batch", "DELETE", f"/api/mass-scrape/{batch_id}/cancel")
        self._envelope(response)

    async def delete_batch(self, batch_id: str) -> None:
        response = await self._request("delete_batch", "DELETE", f"/api/mass-scrape/{batch_id}")
        self._envelope(response)

    # Corpus

    async def link_batch_to_corpus(
        self,
        batch_id: str,
        corpus_name: Optional[str] = None,
        corpus_description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> str:
        request = CorpusLinkRequest(corpus_name=corpus_name, corpus_description=corpus_description, corpus_tags=tags)
        response = await self._request(
            "link_batch_to_corpus", "POST", f"/api/corpus/from-batch/{batch_id}", json=request.to_payload()
        )
        data = self._envelope(response)
        corpus_id = data.get("corpusId") if isinstance(data, Mapping) else None
        if not corpus_id:
            raise ServiceRejection([f"Service did not return a corpus id for batch {batch_id}"])
        return str(corpus_id)


__all__ = ["JobQueueClient"]
