"""Validation and shaping of creation requests before they reach the service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..batches.models import BatchCreated
from ..client.models import (
    BatchFromDiveRequest,
    CorpusLinkRequest,
    DiveRequest,
    MassScrapeRequest,
    PreviewRequest,
    ScrapeOptions,
)
from ..errors import OrchestratorError, ValidationError
from ..url_tools import filter_valid_urls
from .models import DiveValidation, JobKind
from .state_machine import JobStateMachine

if TYPE_CHECKING:
    from ..batches.linker import CorpusLinker
    from ..client.queue_client import JobQueueClient
    from .board import JobBoard
    from .tracker import JobTracker

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

NO_VALID_URLS = "Please provide at least one valid URL"


def default_batch_name(now: Optional[datetime] = None) -> str:
    return f"Batch - {(now or datetime.now()):%Y-%m-%d %H:%M:%S}"


def _coerce(model: Type[ModelT], value: Union[ModelT, Mapping[str, Any]]) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            message = str(error.get("msg", "invalid value"))
            # pydantic prefixes messages raised from validators with "Value error, "
            message = message.removeprefix("Value error, ")
            messages.append(f"{location}: {message}" if location else message)
        raise ValidationError(messages) from exc


class JobSubmitter:
    """Turns user input into service requests and hands new ids to the tracker."""

    def __init__(
        self,
        client: "JobQueueClient",
        tracker: "JobTracker",
        linker: Optional["CorpusLinker"] = None,
        *,
        board: Optional["JobBoard"] = None,
    ) -> None:
        self.client = client
        self.tracker = tracker
        self.linker = linker
        self.board = board

    async def submit_dive(self, config: Union[DiveRequest, Mapping[str, Any]]) -> JobStateMachine:
        request = _coerce(DiveRequest, config)
        job_id = await self.client.create_job(JobKind.FULL_DIVE, request)
        self._wake_board()
        return self.tracker.track(job_id, JobKind.FULL_DIVE)

    async def submit_preview(self, url: str) -> JobStateMachine:
        request = _coerce(PreviewRequest, {"url": url})
        job_id = await self.client.create_job(JobKind.PREVIEW_DIVE, request)
        self._wake_board()
        return self.tracker.track(job_id, JobKind.PREVIEW_DIVE)

    async def validate_dive(self, config: Union[DiveRequest, Mapping[str, Any]]) -> DiveValidation:
        request = _coerce(DiveRequest, config)
        return await self.client.validate_dive(request)

    async def submit_mass_scrape(
        self,
        urls: Iterable[str],
        batch_name: Optional[str] = None,
        options: Union[ScrapeOptions, Mapping[str, Any], None] = None,
        create_corpus: bool = False,
        corpus_name: Optional[str] = None,
        corpus_description: Optional[str] = None,
        corpus_tags: Optional[List[str]] = None,
    ) -> BatchCreated:
        """Create a mass-scrape batch from the well-formed URLs in ``urls``.

        Malformed entries are dropped silently; if nothing is left a
        ``ValidationError`` is raised without contacting the service.
        """

        valid_urls = self._valid_urls(urls)
        request = _coerce(
            MassScrapeRequest,
            {
                "urls": valid_urls,
                "batch_name": (batch_name or "").strip() or default_batch_name(),
                "options": options if options is not None else ScrapeOptions(),
                "create_corpus": True if create_corpus else None,
                "corpus_name": corpus_name if create_corpus else None,
                "corpus_description": corpus_description if create_corpus else None,
                "corpus_tags": corpus_tags if create_corpus and corpus_tags else None,
            },
        )
        created = await self.client.create_batch(request)
        self._wake_board()
        if create_corpus:
            self._register_link(
                created,
                CorpusLinkRequest(
                    corpus_name=corpus_name,
                    corpus_description=corpus_description,
                    corpus_tags=corpus_tags or None,
                ),
            )
        return created

    async def submit_batch_from_dive(
        self,
        dive_job_id: str,
        selected_urls: Iterable[str],
        batch_name: Optional[str] = None,
        options: Union[ScrapeOptions, Mapping[str, Any], None] = None,
        create_corpus: bool = False,
        corpus_name: Optional[str] = None,
        corpus_description: Optional[str] = None,
        wait_for_link: bool = False,
    ) -> BatchCreated:
        """Scrape pages selected from a finished dive's sitemap.

        With ``wait_for_link`` the call also waits for the batch to settle and
        links it to its corpus before returning. A failed wait or link is
        logged and stored on ``link_error`` of the returned ``BatchCreated``.
        """

        valid_urls = self._valid_urls(selected_urls)
        if create_corpus:
            corpus_name = corpus_name or f"Corpus from dive {dive_job_id}"
            corpus_description = corpus_description or f"Content collected from dive {dive_job_id}"
        request = _coerce(
            BatchFromDiveRequest,
            {
                "dive_job_id": dive_job_id,
                "selected_urls": valid_urls,
                "batch_name": (batch_name or "").strip() or default_batch_name(),
                "options": options if options is not None else ScrapeOptions(),
                "create_corpus": True if create_corpus else None,
                "corpus_name": corpus_name if create_corpus else None,
                "corpus_description": corpus_description if create_corpus else None,
            },
        )
        created = await self.client.create_batch_from_dive(request)
        self._wake_board()
        if not create_corpus:
            return created

        link_request = CorpusLinkRequest(corpus_name=corpus_name, corpus_description=corpus_description)
        self._register_link(created, link_request)
        if wait_for_link and not created.corpus_id and self.linker is not None:
            try:
                created.corpus_id = await self.linker.link_when_settled(created.batch_id, link_request)
            except OrchestratorError as exc:
                # The batch exists; report the link problem instead of losing the id.
                logger.error("Linking batch %s to a corpus failed: %s", created.batch_id, exc)
                created.link_error = str(exc)
        return created

    @staticmethod
    def _valid_urls(urls: Iterable[str]) -> List[str]:
        if isinstance(urls, str):
            urls = [urls]
        valid_urls = filter_valid_urls(urls)
        if not valid_urls:
            raise ValidationError([NO_VALID_URLS])
        return valid_urls

    def _wake_board(self) -> None:
        if self.board is not None:
            self.board.wake()

    def _register_link(self, created: BatchCreated, request: CorpusLinkRequest) -> None:
        if created.corpus_id:
            return
        if self.linker is None:
            logger.warning("Corpus requested but no linker configured", extra={"batch_id": created.batch_id})
            return
        self.linker.register(created.batch_id, request)


__all__ = ["JobSubmitter", "default_batch_name", "NO_VALID_URLS"]
