"""API routes exposing sitemap parsing, results validation and classification runs."""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from contentclassifier.config import AppSettings, BackendConfig
from contentclassifier.errors import CredentialError, InvalidResultsFile, SitemapEmpty
from contentclassifier.models import ClassifiedPage
from contentclassifier.results import validate_results
from contentclassifier.services.classifier import ClassificationClient
from contentclassifier.services.crawler import ContentFetcher
from contentclassifier.services.queue import ProcessingQueue, format_eta
from contentclassifier.services.sitemap import parse_sitemap

logger = logging.getLogger(__name__)

router = APIRouter()


class SitemapRequest(BaseModel):
    sitemap: str


class SitemapResponse(BaseModel):
    urls: List[str] = Field(default_factory=list)
    count: int = 0


class ResultsValidationRequest(BaseModel):
    results: Any = None


class ResultsValidationResponse(BaseModel):
    count: int


class RunRequest(BaseModel):
    sitemap: str
    results: List[Any] | None = None
    backend: Optional[BackendConfig] = None


class ProcessingItem(BaseModel):
    url: str
    state: str
    data: ClassifiedPage | None = None
    error: str | None = None


class RunResponse(BaseModel):
    items: List[ProcessingItem] = Field(default_factory=list)
    progress: float = 0.0
    eta_seconds: float | None = None
    eta: str = ""
    running: bool = False
    results: List[ClassifiedPage] = Field(default_factory=list)


class RunRegistry:
    """Tracks the single active run and the most recent one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: ProcessingQueue | None = None
        self.latest: ProcessingQueue | None = None

    @property
    def active(self) -> ProcessingQueue | None:
        return self._active

    def claim(self, queue: ProcessingQueue) -> bool:
        with self._lock:
            if self._active is not None:
                return False
            self._active = queue
            self.latest = queue
            return True

    def release(self, queue: ProcessingQueue) -> None:
        with self._lock:
            if self._active is queue:
                self._active = None


registry = RunRegistry()

#: Shared so that exchanged Bedrock credentials are reused across runs.
classifier = ClassificationClient()


def _load_settings() -> AppSettings:
    try:
        return AppSettings.load_or_default()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _run_response(queue: ProcessingQueue) -> RunResponse:
    snapshot = queue.snapshot()
    return RunResponse(
        items=[
            ProcessingItem(url=item.url, state=item.state.value, data=item.data, error=item.error)
            for item in snapshot.items
        ],
        progress=snapshot.progress,
        eta_seconds=snapshot.eta_seconds,
        eta=format_eta(snapshot.eta_seconds) if snapshot.running else "",
        running=snapshot.running,
        results=list(queue.results),
    )


@router.post("/sitemap/parse", response_model=SitemapResponse)
async def parse_sitemap_text(payload: SitemapRequest) -> SitemapResponse:
    """Return the URLs listed in a pasted sitemap."""

    urls = parse_sitemap(payload.sitemap)
    return SitemapResponse(urls=urls, count=len(urls))


@router.post("/results/validate", response_model=ResultsValidationResponse)
async def validate_results_payload(payload: ResultsValidationRequest) -> ResultsValidationResponse:
    """Check that a previously exported results collection can be imported."""

    try:
        pages = validate_results(payload.results)
    except InvalidResultsFile as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ResultsValidationResponse(count=len(pages))


@router.post("/runs", response_model=RunResponse)
async def start_run(payload: RunRequest) -> RunResponse:
    """Classify every URL of the sitemap that is not already in ``results``."""

    if not payload.sitemap.strip():
        raise HTTPException(status_code=400, detail="Please provide a sitemap XML document.")

    try:
        prior = validate_results(payload.results) if payload.results is not None else []
    except InvalidResultsFile as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    settings = _load_settings()
    fetcher = ContentFetcher(
        timeout=settings.fetch_timeout,
        min_content_length=settings.min_content_length,
        max_content_length=settings.max_content_length,
    )

    try:
        queue = ProcessingQueue.from_sitemap(
            payload.sitemap,
            config=payload.backend or settings.backend,
            prior_results=prior,
            fetcher=fetcher,
            classifier=classifier,
        )
    except SitemapEmpty as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not registry.claim(queue):
        raise HTTPException(status_code=409, detail="A classification run is already in progress.")

    try:
        await run_in_threadpool(queue.run)
    except CredentialError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - unexpected failures surface as a 500
        logger.exception("Classification run failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        registry.release(queue)

    return _run_response(queue)


@router.get("/runs/current", response_model=RunResponse)
async def current_run() -> RunResponse:
    """Return the state of the active run, or of the most recent one."""

    queue = registry.active or registry.latest
    if queue is None:
        raise HTTPException(status_code=404, detail="No classification run has been started.")
    return _run_response(queue)


@router.post("/runs/stop", response_model=RunResponse)
async def stop_run() -> RunResponse:
    """Stop the active run after its current item."""

    queue = registry.active
    if queue is None:
        raise HTTPException(status_code=404, detail="No classification run is in progress.")
    queue.stop()
    return _run_response(queue)
