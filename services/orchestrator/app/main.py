"""FastAPI entrypoint for the generation orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as PydanticValidationError

from storybook_observability import (
    Notifier,
    log_context,
    setup_fastapi_metrics,
    setup_logging,
)
from storybook_providers import ImageProvider, ProviderError
from storybook_schemas import GenerationFailure, RegenerationCandidate
from storybook_store import EntityStore, create_store
from storybook_workflow import InvalidStateError, WorkflowError

from .batch import BatchGenerator, BatchRegistry
from .flows import run_character_generation, run_illustration_batch
from .jobs import CandidateRegistry, CharacterJob, IllustrationJob
from .models import (
    BatchRequest,
    BatchStarted,
    CharacterBatchRequest,
    ConfirmRequest,
    GenerateRequest,
    ProviderOverride,
)
from .providers import create_provider
from .storage import LocalObjectStorage, ObjectStorage, create_storage

SERVICE_NAME = "orchestrator"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storybook Orchestrator", version="0.3.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)

STORE: EntityStore = create_store()
STORAGE: ObjectStorage = create_storage()
CANDIDATES = CandidateRegistry()
BATCHES = BatchRegistry()
NOTIFIER = Notifier()

if isinstance(STORAGE, LocalObjectStorage):
    STORAGE.root.mkdir(parents=True, exist_ok=True)
    app.mount("/files", StaticFiles(directory=Path(STORAGE.root)), name="files")

ProviderBuilder = Callable[[Optional[ProviderOverride]], ImageProvider]


def get_store() -> EntityStore:
    return STORE


def get_storage() -> ObjectStorage:
    return STORAGE


def get_candidates() -> CandidateRegistry:
    return CANDIDATES


def get_batches() -> BatchRegistry:
    return BATCHES


def get_notifier() -> Notifier:
    return NOTIFIER


def get_provider_builder() -> ProviderBuilder:
    return create_provider


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Invalid request", "details": exc.errors()},
    )


@app.on_event("shutdown")
async def _close_store() -> None:
    await STORE.close()


def _provider(builder: ProviderBuilder, override: Optional[ProviderOverride]) -> ImageProvider:
    try:
        return builder(override)
    except (ProviderError, PydanticValidationError) as exc:
        logger.error("Image provider unavailable", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Image provider is not configured",
        ) from exc


def _outcome_response(outcome: Any) -> JSONResponse:
    if isinstance(outcome, GenerationFailure):
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": outcome.message, "failure": outcome.model_dump(mode="json")},
        )
    return JSONResponse(status_code=status.HTTP_200_OK, content=outcome.model_dump(mode="json"))


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/pages/{page_id}/generate", tags=["generation"])
async def generate_page(
    page_id: str,
    payload: Optional[GenerateRequest] = None,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    candidates: CandidateRegistry = Depends(get_candidates),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> JSONResponse:
    page = await store.require_page(page_id)
    provider = _provider(builder, payload.provider if payload else None)
    job = IllustrationJob(store, storage, provider, candidates=candidates)
    return _outcome_response(await job.run(page))


@app.post("/pages/{page_id}/regenerate", tags=["generation"])
async def regenerate_page(
    page_id: str,
    payload: Optional[GenerateRequest] = None,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    candidates: CandidateRegistry = Depends(get_candidates),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> JSONResponse:
    page = await store.require_page(page_id)
    provider = _provider(builder, payload.provider if payload else None)
    job = IllustrationJob(store, storage, provider, candidates=candidates)
    return _outcome_response(await job.regenerate(page))


@app.post("/pages/{page_id}/regeneration/confirm", tags=["generation"])
async def confirm_regeneration(
    page_id: str,
    payload: ConfirmRequest,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    candidates: CandidateRegistry = Depends(get_candidates),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> dict[str, Any]:
    provider = _provider(builder, None)
    job = IllustrationJob(store, storage, provider, candidates=candidates)
    result = await job.confirm(page_id, payload.decision)
    return {
        "decision": result.decision.value,
        "page": result.page.model_dump(mode="json"),
        "sketch": result.sketch.model_dump(mode="json") if result.sketch else None,
    }


@app.post("/pages/{page_id}/sketch", tags=["generation"])
async def regenerate_sketch(
    page_id: str,
    payload: Optional[GenerateRequest] = None,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    candidates: CandidateRegistry = Depends(get_candidates),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> JSONResponse:
    page = await store.require_page(page_id)
    provider = _provider(builder, payload.provider if payload else None)
    job = IllustrationJob(store, storage, provider, candidates=candidates)
    return _outcome_response(await job.generate_sketch(page))


@app.post(
    "/projects/{project_id}/batches",
    response_model=BatchStarted,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["batches"],
)
async def start_illustration_batch(
    project_id: str,
    payload: Optional[BatchRequest] = None,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    candidates: CandidateRegistry = Depends(get_candidates),
    batches: BatchRegistry = Depends(get_batches),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> BatchStarted:
    await store.require_project(project_id)
    if batches.active_for(project_id):
        raise InvalidStateError("A generation batch is already running for this project")

    payload = payload or BatchRequest()
    provider = _provider(builder, payload.provider)
    job = IllustrationJob(store, storage, provider, candidates=candidates)
    generator = BatchGenerator(job)
    handle = batches.start(
        generator,
        run_illustration_batch(project_id, job, generator, payload.page_ids),
        project_id=project_id,
        kind="illustrations",
    )
    with log_context(project_id=project_id, batch_id=generator.batch_id):
        logger.info("Dispatched illustration batch")
    return BatchStarted(
        batch_id=generator.batch_id, project_id=project_id, kind=handle.kind, state=handle.state
    )


@app.post(
    "/projects/{project_id}/characters/generate",
    response_model=BatchStarted,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["batches"],
)
async def start_character_generation(
    project_id: str,
    payload: Optional[CharacterBatchRequest] = None,
    store: EntityStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    batches: BatchRegistry = Depends(get_batches),
    notifier: Notifier = Depends(get_notifier),
    builder: ProviderBuilder = Depends(get_provider_builder),
) -> BatchStarted:
    await store.require_project(project_id)
    if batches.active_for(project_id):
        raise InvalidStateError("A generation batch is already running for this project")

    payload = payload or CharacterBatchRequest()
    provider = _provider(builder, payload.provider)
    job = CharacterJob(store, storage, provider)
    generator = BatchGenerator(job)
    handle = batches.start(
        generator,
        run_character_generation(project_id, job, generator, payload.character_ids, notifier),
        project_id=project_id,
        kind="characters",
    )
    with log_context(project_id=project_id, batch_id=generator.batch_id):
        logger.info("Dispatched character generation")
    return BatchStarted(
        batch_id=generator.batch_id, project_id=project_id, kind=handle.kind, state=handle.state
    )


@app.get("/batches/{batch_id}", tags=["batches"])
async def get_batch(batch_id: str, batches: BatchRegistry = Depends(get_batches)) -> dict[str, Any]:
    return batches.get(batch_id).snapshot()


@app.post("/batches/{batch_id}/cancel", tags=["batches"])
async def cancel_batch(batch_id: str, batches: BatchRegistry = Depends(get_batches)) -> dict[str, Any]:
    return batches.cancel(batch_id).snapshot()


@app.get(
    "/projects/{project_id}/candidates",
    response_model=List[RegenerationCandidate],
    tags=["generation"],
)
async def list_candidates(
    project_id: str, candidates: CandidateRegistry = Depends(get_candidates)
) -> List[RegenerationCandidate]:
    return candidates.for_project(project_id)
