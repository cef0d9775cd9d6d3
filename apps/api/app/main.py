"""Studio API for Storybook Studio: projects, pages, characters, feedback and sends."""
from __future__ import annotations

import io
import logging
import os
import re
import zipfile
from typing import Any, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storybook_observability import (
    Notifier,
    log_context,
    record_status_transition,
    setup_fastapi_metrics,
    setup_logging,
)
from storybook_providers.base import download_images
from storybook_providers.exceptions import ProviderError
from storybook_schemas import (
    Character,
    CharacterAction,
    IllustrationType,
    NotificationKind,
    Page,
    Project,
    ProjectStatus,
    PushReport,
    SendPhase,
    TextIntegration,
    TransitionAction,
    ViewerRole,
    utcnow,
)
from storybook_store import EntityStore, create_store
from storybook_workflow import (
    InvalidStateError,
    ReviewSession,
    ValidationError,
    WorkflowError,
    accept_admin_reply,
    add_admin_comment,
    add_admin_reply,
    add_customer_follow_up,
    apply_page_update,
    apply_transition,
    build_context,
    build_gating_input,
    build_pages,
    compute_gating,
    delete_admin_reply,
    edit_admin_reply,
    ensure_character_deletable,
    ensure_push_allowed,
    ensure_single_main,
    is_illustration_phase,
    normalize,
    push_entities,
    record_feedback,
    resolve_and_archive,
    send_to_customer,
    set_illustration_type,
    visible_pages,
)
from storybook_workflow.status import COMMITTED, Gating

ORCHESTRATOR_URL = os.getenv("ORCHESTRATOR_URL", "http://orchestrator:9100")
ORCHESTRATOR_TIMEOUT_SECONDS = float(os.getenv("ORCHESTRATOR_TIMEOUT", "60"))

MANUSCRIPT_PARSER_URL = os.getenv("MANUSCRIPT_PARSER_URL", "http://manuscript_parser:9200")
MANUSCRIPT_PARSER_TIMEOUT_SECONDS = float(os.getenv("MANUSCRIPT_PARSER_TIMEOUT", "30"))

DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("DOWNLOAD_TIMEOUT", "30"))

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("STORYBOOK_ALLOWED_ORIGINS", "http://localhost:3100").split(",")
    if origin.strip()
]

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3100").rstrip("/")

SERVICE_NAME = "api"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

STORE: EntityStore = create_store()
NOTIFIER = Notifier()

ADMIN_TRANSITIONS: dict[str, TransitionAction] = {
    "request_input": TransitionAction.REQUEST_INPUT,
    "approve_characters": TransitionAction.APPROVE_CHARACTERS,
    "skip_to_illustrations": TransitionAction.APPROVE_CHARACTERS,
    "characters_regenerated": TransitionAction.CHARACTERS_REGENERATED,
    "approve_illustrations": TransitionAction.APPROVE_ILLUSTRATIONS,
}

FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ServiceClient:
    """Thin JSON client for the internal services."""

    def __init__(
        self,
        base_url: str,
        timeout: float,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.request(method, path, json=payload)
        response.raise_for_status()
        return response.json()


class OrchestratorClient(ServiceClient):
    async def pending_candidates(self, project_id: str) -> list[str]:
        data = await self._request("GET", f"/projects/{project_id}/candidates")
        if not isinstance(data, list):
            raise httpx.HTTPError("Orchestrator returned unexpected payload")
        return [str(item.get("page_id")) for item in data if isinstance(item, dict)]

    async def start_character_generation(self, project_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/projects/{project_id}/characters/generate", {})


class ManuscriptParserClient(ServiceClient):
    async def parse(self, filename: str, content_base64: str) -> dict[str, Any]:
        data = await self._request(
            "POST", "/parse", {"filename": filename, "content_base64": content_base64}
        )
        if not isinstance(data, dict):
            raise httpx.HTTPError("Manuscript parser returned unexpected payload")
        return data


ORCHESTRATOR = OrchestratorClient(ORCHESTRATOR_URL, ORCHESTRATOR_TIMEOUT_SECONDS)
MANUSCRIPT_PARSER = ManuscriptParserClient(MANUSCRIPT_PARSER_URL, MANUSCRIPT_PARSER_TIMEOUT_SECONDS)


async def fetch_image(url: str) -> tuple[bytes, str]:
    images = await download_images([url], timeout=DOWNLOAD_TIMEOUT_SECONDS)
    return images[0]


def get_store() -> EntityStore:
    return STORE


def get_notifier() -> Notifier:
    return NOTIFIER


def get_orchestrator() -> OrchestratorClient:
    return ORCHESTRATOR


def get_manuscript_parser() -> ManuscriptParserClient:
    return MANUSCRIPT_PARSER


def get_image_fetcher():
    return fetch_image


class ProjectCreateRequest(BaseModel):
    book_title: str = Field("Untitled Project", min_length=1, max_length=300)
    author_firstname: Optional[str] = None
    author_lastname: Optional[str] = None
    author_email: Optional[str] = None
    author_phone: Optional[str] = None
    illustration_aspect_ratio: Optional[str] = None
    illustration_text_integration: Optional[TextIntegration] = None
    style_reference_urls: list[str] = Field(default_factory=list)
    main_character_name: Optional[str] = Field(None, max_length=200)


class ManuscriptRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_base64: str = Field(..., min_length=1)


class PageUpdateRequest(BaseModel):
    story_text: Optional[str] = None
    scene_description: Optional[str] = None
    character_ids: Optional[list[str]] = None
    character_actions: Optional[dict[str, CharacterAction]] = None


class IllustrationTypeRequest(BaseModel):
    illustration_type: Optional[IllustrationType] = None
    text_integration: Optional[TextIntegration] = None


class CharacterFields(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    role: Optional[str] = None
    story_role: Optional[str] = None
    appears_in: Optional[list[str]] = None
    age: Optional[str] = None
    gender: Optional[str] = None
    skin_color: Optional[str] = None
    hair_color: Optional[str] = None
    hair_style: Optional[str] = None
    eye_color: Optional[str] = None
    clothing: Optional[str] = None
    accessories: Optional[str] = None
    special_features: Optional[str] = None
    reference_photo_url: Optional[str] = None


class CharacterCreateRequest(CharacterFields):
    is_main: bool = False


class NoteRequest(BaseModel):
    note: str = Field(..., max_length=5000)


class TextRequest(BaseModel):
    text: str = Field(..., max_length=5000)


class SendRequest(BaseModel):
    phase: Optional[SendPhase] = None


class PageEditPayload(BaseModel):
    page_id: str
    story_text: Optional[str] = None
    scene_description: Optional[str] = None


class CharacterEditPayload(BaseModel):
    character_id: str
    fields: dict[str, str] = Field(default_factory=dict)


class CharacterFeedbackPayload(BaseModel):
    character_id: str
    note: str


class ReviewSubmitRequest(BaseModel):
    page_edits: list[PageEditPayload] = Field(default_factory=list)
    character_edits: list[CharacterEditPayload] = Field(default_factory=list)
    character_feedback: list[CharacterFeedbackPayload] = Field(default_factory=list)


class GatingResponse(BaseModel):
    status: ProjectStatus
    is_illustration_phase: bool
    is_character_phase: bool
    is_reviewable: bool
    is_processing: bool
    is_approved: bool
    send_button_disabled: bool
    send_label: Optional[str]
    status_tag: str
    revision_round: int
    allowed_actions: list[str]
    visible_page_count: int = 0

    @classmethod
    def from_gating(cls, gating: Gating, visible_page_count: int = 0) -> "GatingResponse":
        return cls(
            status=gating.status,
            is_illustration_phase=gating.is_illustration_phase,
            is_character_phase=gating.is_character_phase,
            is_reviewable=gating.is_reviewable,
            is_processing=gating.is_processing,
            is_approved=gating.is_approved,
            send_button_disabled=gating.send_button_disabled,
            send_label=gating.send_label,
            status_tag=gating.status_tag,
            revision_round=gating.revision_round,
            allowed_actions=sorted(action.value for action in gating.allowed_actions),
            visible_page_count=visible_page_count,
        )


class ProjectDetail(BaseModel):
    project: Project
    gating: GatingResponse
    page_count: int
    character_count: int


class ParseResult(BaseModel):
    pages: list[Page]
    page_count: int
    word_count: int


class ResolveResponse(BaseModel):
    resolved: bool
    page: Page


class SendResponse(BaseModel):
    phase: SendPhase
    previous_status: ProjectStatus
    status: ProjectStatus
    send_count: int
    incremented: bool
    notification: NotificationKind
    review_token: str
    review_url: str
    archived_feedback: int


class ReviewSubmitResponse(BaseModel):
    status: ProjectStatus
    previous_status: ProjectStatus
    message: str
    edited_page_ids: list[str]
    edited_character_ids: list[str]
    generation_started: bool = False


app = FastAPI(title="Storybook Studio API", version="0.3.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Workflow error", extra={"error": exc.message, "route": request.url.path})
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


def _review_url(project: Project) -> Optional[str]:
    if not project.review_token:
        return None
    return f"{PUBLIC_BASE_URL}/review/{project.review_token}"


async def _notify(
    notifier: Notifier, kind: NotificationKind, project: Project, **extra: Any
) -> None:
    payload: dict[str, Any] = {
        "project_id": project.id,
        "book_title": project.book_title,
        "author": project.author_name,
        "review_url": _review_url(project),
    }
    payload.update(extra)
    await notifier.send(kind, payload)


def _record_transition(project: Project, previous: ProjectStatus) -> None:
    if previous is project.status:
        return
    record_status_transition(previous.value, project.status.value, service_name=SERVICE_NAME)


async def _load_project_bundle(
    store: EntityStore, project_id: str
) -> tuple[Project, list[Page], list[Character]]:
    project = await store.require_project(project_id)
    pages = await store.list_pages(project_id)
    characters = await store.list_characters(project_id)
    return project, pages, characters


def _gating(project: Project, pages: list[Page], characters: list[Character]) -> Gating:
    return compute_gating(build_gating_input(project, pages, characters))


def _customer_page(page: Page) -> dict[str, Any]:
    return page.model_dump(
        mode="json", exclude={"illustration_url", "sketch_url", "generation_error"}
    )


def _customer_character(character: Character) -> dict[str, Any]:
    return character.model_dump(
        mode="json", exclude={"image_url", "sketch_url", "generation_error"}
    )


async def _mark_sketch_revision(store: EntityStore, project: Project) -> None:
    """Customer feedback on a sent sketch moves the project into revision."""

    if normalize(project.status) is not ProjectStatus.SKETCHES_REVIEW:
        return
    previous = apply_transition(project, TransitionAction.CUSTOMER_REQUESTED_SKETCH_REVISION)
    project.updated_at = utcnow()
    await store.save_project(project)
    _record_transition(project, previous)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness check."""

    return {"status": "ok"}


@app.get("/projects", response_model=list[Project], tags=["projects"])
async def list_projects(store: EntityStore = Depends(get_store)) -> list[Project]:
    return await store.list_projects()


@app.post("/projects", response_model=ProjectDetail, status_code=status.HTTP_201_CREATED, tags=["projects"])
async def create_project(
    payload: ProjectCreateRequest, store: EntityStore = Depends(get_store)
) -> ProjectDetail:
    project = Project(**payload.model_dump(mode="json", exclude={"main_character_name"}))
    await store.create_project(project)
    characters: list[Character] = []
    if payload.main_character_name and payload.main_character_name.strip():
        main = Character(
            project_id=project.id, name=payload.main_character_name.strip(), is_main=True
        )
        characters.append(await store.save_character(main))

    with log_context(project_id=project.id):
        logger.info("Project created", extra={"book_title": project.book_title})
    gating = _gating(project, [], characters)
    return ProjectDetail(
        project=project,
        gating=GatingResponse.from_gating(gating),
        page_count=0,
        character_count=len(characters),
    )


@app.get("/projects/{project_id}", response_model=ProjectDetail, tags=["projects"])
async def get_project(project_id: str, store: EntityStore = Depends(get_store)) -> ProjectDetail:
    project, pages, characters = await _load_project_bundle(store, project_id)
    gating = _gating(project, pages, characters)
    visible = visible_pages(ViewerRole.ADMIN, project.status, pages)
    return ProjectDetail(
        project=project,
        gating=GatingResponse.from_gating(gating, len(visible)),
        page_count=len(pages),
        character_count=len(characters),
    )


@app.get("/projects/{project_id}/gating", response_model=GatingResponse, tags=["projects"])
async def get_gating(
    project_id: str,
    role: ViewerRole = Query(ViewerRole.ADMIN),
    store: EntityStore = Depends(get_store),
) -> GatingResponse:
    project, pages, characters = await _load_project_bundle(store, project_id)
    gating = _gating(project, pages, characters)
    return GatingResponse.from_gating(gating, len(visible_pages(role, project.status, pages)))


@app.post("/projects/{project_id}/pages/parse", response_model=ParseResult, tags=["pages"])
async def parse_manuscript(
    project_id: str,
    payload: ManuscriptRequest,
    store: EntityStore = Depends(get_store),
    parser: ManuscriptParserClient = Depends(get_manuscript_parser),
) -> ParseResult:
    project = await store.require_project(project_id)
    if normalize(project.status) in COMMITTED:
        raise InvalidStateError(
            "Pages cannot be replaced after illustrations were sent to the customer"
        )

    with log_context(project_id=project_id):
        try:
            parsed = await parser.parse(payload.filename, payload.content_base64)
        except httpx.HTTPStatusError as exc:
            detail = "Manuscript could not be parsed"
            try:
                detail = exc.response.json().get("error") or detail
            except ValueError:
                pass
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc
        except httpx.HTTPError as exc:
            logger.exception("Manuscript parser request failed")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail="Manuscript parser unavailable"
            ) from exc

        pages = build_pages(project_id, parsed.get("pages") or [])
        if not pages:
            raise ValidationError("No pages found in manuscript")
        stored = await store.replace_pages(project_id, pages)
        logger.info("Manuscript parsed into pages", extra={"page_count": len(stored)})

    return ParseResult(
        pages=stored,
        page_count=len(stored),
        word_count=int(parsed.get("word_count") or 0),
    )


@app.get("/projects/{project_id}/pages", tags=["pages"])
async def list_pages(
    project_id: str,
    role: ViewerRole = Query(ViewerRole.ADMIN),
    store: EntityStore = Depends(get_store),
) -> list[dict[str, Any]]:
    project = await store.require_project(project_id)
    pages = visible_pages(role, project.status, await store.list_pages(project_id))
    if role is ViewerRole.CUSTOMER:
        return [_customer_page(page) for page in pages]
    return [page.model_dump(mode="json") for page in pages]


@app.patch("/pages/{page_id}", response_model=Page, tags=["pages"])
async def update_page(
    page_id: str, payload: PageUpdateRequest, store: EntityStore = Depends(get_store)
) -> Page:
    page = await store.require_page(page_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No changes supplied")
    apply_page_update(page, changes)
    return await store.save_page(page)


@app.post("/pages/{page_id}/illustration-type", response_model=Page, tags=["pages"])
async def update_illustration_type(
    page_id: str, payload: IllustrationTypeRequest, store: EntityStore = Depends(get_store)
) -> Page:
    page = await store.require_page(page_id)
    set_illustration_type(
        page, payload.illustration_type, text_integration=payload.text_integration
    )
    return await store.save_page(page)


@app.get("/projects/{project_id}/characters", response_model=list[Character], tags=["characters"])
async def list_characters(
    project_id: str, store: EntityStore = Depends(get_store)
) -> list[Character]:
    await store.require_project(project_id)
    return await store.list_characters(project_id)


@app.post(
    "/projects/{project_id}/characters",
    response_model=Character,
    status_code=status.HTTP_201_CREATED,
    tags=["characters"],
)
async def create_character(
    project_id: str, payload: CharacterCreateRequest, store: EntityStore = Depends(get_store)
) -> Character:
    await store.require_project(project_id)
    character = Character(project_id=project_id, **payload.model_dump(exclude_none=True))
    ensure_single_main(await store.list_characters(project_id), character)
    saved = await store.save_character(character)
    with log_context(project_id=project_id, character_id=saved.id):
        logger.info("Character created", extra={"is_main": saved.is_main})
    return saved


@app.patch("/characters/{character_id}", response_model=Character, tags=["characters"])
async def update_character(
    character_id: str, payload: CharacterFields, store: EntityStore = Depends(get_store)
) -> Character:
    await store.require_character(character_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No changes supplied")
    return await store.update_character_fields(character_id, changes)


@app.delete("/characters/{character_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["characters"])
async def delete_character(character_id: str, store: EntityStore = Depends(get_store)) -> Response:
    character = await store.require_character(character_id)
    ensure_character_deletable(character)
    await store.delete_character(character_id)
    logger.info(
        "Character deleted",
        extra={"project_id": character.project_id, "character_id": character_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/pages/{page_id}/feedback", response_model=Page, tags=["feedback"])
async def submit_page_feedback(
    page_id: str,
    payload: NoteRequest,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> Page:
    page = await store.require_page(page_id)
    project = await store.require_project(page.project_id)
    record_feedback(page, payload.note)
    await store.save_page(page)
    await _mark_sketch_revision(store, project)
    await _notify(
        notifier, NotificationKind.CUSTOMER_FEEDBACK, project, page_number=page.page_number
    )
    return page


@app.post("/pages/{page_id}/follow-up", response_model=Page, tags=["feedback"])
async def submit_follow_up(
    page_id: str,
    payload: TextRequest,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> Page:
    page = await store.require_page(page_id)
    project = await store.require_project(page.project_id)
    add_customer_follow_up(page, payload.text)
    await store.save_page(page)
    await _mark_sketch_revision(store, project)
    await _notify(
        notifier, NotificationKind.CUSTOMER_FEEDBACK, project, page_number=page.page_number
    )
    return page


@app.post("/pages/{page_id}/accept-reply", response_model=Page, tags=["feedback"])
async def accept_reply(
    page_id: str,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> Page:
    page = await store.require_page(page_id)
    project = await store.require_project(page.project_id)
    accept_admin_reply(page, revision_round=project.illustration_send_count)
    await store.save_page(page)
    await _notify(
        notifier, NotificationKind.CUSTOMER_ACCEPTED_REPLY, project, page_number=page.page_number
    )
    return page


@app.post("/pages/{page_id}/resolve", response_model=ResolveResponse, tags=["feedback"])
async def resolve_page_feedback(page_id: str, store: EntityStore = Depends(get_store)) -> ResolveResponse:
    page = await store.require_page(page_id)
    project = await store.require_project(page.project_id)
    resolved = resolve_and_archive(
        page, revision_round=project.illustration_send_count, convert_reply=True
    )
    if resolved:
        await store.save_page(page)
    return ResolveResponse(resolved=resolved, page=page)


@app.post("/pages/{page_id}/admin-reply", response_model=Page, tags=["feedback"])
async def create_admin_reply(
    page_id: str, payload: TextRequest, store: EntityStore = Depends(get_store)
) -> Page:
    page = await store.require_page(page_id)
    add_admin_reply(page, payload.text)
    return await store.save_page(page)


@app.put("/pages/{page_id}/admin-reply", response_model=Page, tags=["feedback"])
async def update_admin_reply(
    page_id: str, payload: TextRequest, store: EntityStore = Depends(get_store)
) -> Page:
    page = await store.require_page(page_id)
    edit_admin_reply(page, payload.text)
    return await store.save_page(page)


@app.delete("/pages/{page_id}/admin-reply", response_model=Page, tags=["feedback"])
async def remove_admin_reply(page_id: str, store: EntityStore = Depends(get_store)) -> Page:
    page = await store.require_page(page_id)
    delete_admin_reply(page)
    return await store.save_page(page)


@app.post("/pages/{page_id}/admin-comment", response_model=Page, tags=["feedback"])
async def create_admin_comment(
    page_id: str, payload: TextRequest, store: EntityStore = Depends(get_store)
) -> Page:
    page = await store.require_page(page_id)
    add_admin_comment(page, payload.text)
    return await store.save_page(page)


@app.post("/characters/{character_id}/feedback", response_model=Character, tags=["feedback"])
async def submit_character_feedback(
    character_id: str,
    payload: NoteRequest,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> Character:
    character = await store.require_character(character_id)
    project = await store.require_project(character.project_id)
    record_feedback(character, payload.note)
    await store.save_character(character)

    if normalize(project.status) is ProjectStatus.CHARACTER_REVIEW:
        previous = apply_transition(
            project, TransitionAction.CUSTOMER_REQUESTED_CHARACTER_REVISION
        )
        project.updated_at = utcnow()
        await store.save_project(project)
        _record_transition(project, previous)

    await _notify(
        notifier, NotificationKind.CUSTOMER_FEEDBACK, project, character_name=character.name
    )
    return character


@app.post("/projects/{project_id}/transitions/{action}", response_model=ProjectDetail, tags=["projects"])
async def run_transition(
    project_id: str, action: str, store: EntityStore = Depends(get_store)
) -> ProjectDetail:
    transition = ADMIN_TRANSITIONS.get(action)
    if transition is None:
        raise ValidationError(
            f"Unknown action {action!r}; expected one of {', '.join(sorted(ADMIN_TRANSITIONS))}"
        )

    project, pages, characters = await _load_project_bundle(store, project_id)
    context = build_context(
        pages, characters, illustration_phase=is_illustration_phase(project.status)
    )
    with log_context(project_id=project_id):
        previous = apply_transition(project, transition, context=context)
        project.updated_at = utcnow()
        await store.save_project(project)
        _record_transition(project, previous)

    gating = _gating(project, pages, characters)
    return ProjectDetail(
        project=project,
        gating=GatingResponse.from_gating(gating),
        page_count=len(pages),
        character_count=len(characters),
    )


@app.post("/projects/{project_id}/send", response_model=SendResponse, tags=["sending"])
async def send_project(
    project_id: str,
    payload: Optional[SendRequest] = None,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> SendResponse:
    project, pages, characters = await _load_project_bundle(store, project_id)
    with log_context(project_id=project_id):
        result = send_to_customer(
            project, pages, characters, phase=payload.phase if payload else None
        )
        project.updated_at = utcnow()
        await store.save_pages(pages)
        await store.save_characters(characters)
        await store.save_project(project)
        _record_transition(project, result.previous_status)
        await _notify(
            notifier,
            result.notification,
            project,
            send_count=result.send_count,
            revision_round=result.revision_round,
        )

    return SendResponse(
        phase=result.phase,
        previous_status=result.previous_status,
        status=result.status,
        send_count=result.send_count,
        incremented=result.incremented,
        notification=result.notification,
        review_token=result.review_token,
        review_url=_review_url(project) or "",
        archived_feedback=result.archived_feedback,
    )


@app.post("/projects/{project_id}/push", response_model=PushReport, tags=["sending"])
async def push_illustrations(
    project_id: str,
    store: EntityStore = Depends(get_store),
    orchestrator: OrchestratorClient = Depends(get_orchestrator),
) -> PushReport:
    project = await store.require_project(project_id)
    try:
        pending = await orchestrator.pending_candidates(project_id)
    except httpx.HTTPError as exc:
        logger.exception("Failed to check pending regenerations", extra={"project_id": project_id})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unable to verify pending regenerations",
        ) from exc
    ensure_push_allowed(project, SendPhase.ILLUSTRATIONS, pending)

    pages = await store.list_pages(project_id)
    with log_context(project_id=project_id):
        return await push_entities(pages, SendPhase.ILLUSTRATIONS, store.update_page_fields)


@app.post("/projects/{project_id}/characters/push", response_model=PushReport, tags=["sending"])
async def push_characters(project_id: str, store: EntityStore = Depends(get_store)) -> PushReport:
    project = await store.require_project(project_id)
    ensure_push_allowed(project, SendPhase.CHARACTERS)
    characters = await store.list_characters(project_id)
    with log_context(project_id=project_id):
        return await push_entities(characters, SendPhase.CHARACTERS, store.update_character_fields)


@app.get("/review/{token}", tags=["review"])
async def get_review(token: str, store: EntityStore = Depends(get_store)) -> dict[str, Any]:
    project = await store.require_project_by_token(token)
    pages = await store.list_pages(project.id)
    characters = await store.list_characters(project.id)
    gating = _gating(project, pages, characters)
    visible = visible_pages(ViewerRole.CUSTOMER, project.status, pages)
    return {
        "project": project.model_dump(
            mode="json", include={"id", "book_title", "status", "author_firstname", "author_lastname"}
        ),
        "gating": GatingResponse.from_gating(gating, len(visible)).model_dump(mode="json"),
        "pages": [_customer_page(page) for page in visible],
        "characters": [_customer_character(character) for character in characters],
    }


@app.post("/review/{token}/submit", response_model=ReviewSubmitResponse, tags=["review"])
async def submit_review(
    token: str,
    payload: ReviewSubmitRequest,
    store: EntityStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    orchestrator: OrchestratorClient = Depends(get_orchestrator),
) -> ReviewSubmitResponse:
    project = await store.require_project_by_token(token)
    pages = await store.list_pages(project.id)
    characters = await store.list_characters(project.id)

    session = ReviewSession(project, pages, characters)
    for edit in payload.page_edits:
        session.edit_page(
            edit.page_id, story_text=edit.story_text, scene_description=edit.scene_description
        )
    for edit in payload.character_edits:
        session.edit_character(edit.character_id, **edit.fields)
    for feedback in payload.character_feedback:
        session.character_feedback(feedback.character_id, feedback.note)

    result = session.submit()

    with log_context(project_id=project.id):
        edited_pages = set(result.edited_page_ids)
        edited_characters = set(result.edited_character_ids)
        await store.save_pages([page for page in result.pages if page.id in edited_pages])
        await store.save_characters(
            [character for character in result.characters if character.id in edited_characters]
        )
        await store.save_project(result.project)
        _record_transition(result.project, result.previous_status)
        await _notify(
            notifier,
            NotificationKind.CUSTOMER_SUBMISSION,
            result.project,
            status=result.status.value,
            edited_pages=len(edited_pages),
            edited_characters=len(edited_characters),
        )

        generation_started = False
        if result.needs_generation:
            try:
                await orchestrator.start_character_generation(project.id)
                generation_started = True
            except httpx.HTTPError as exc:
                logger.warning(
                    "Failed to start character generation", extra={"error": str(exc)}
                )

    return ReviewSubmitResponse(
        status=result.status,
        previous_status=result.previous_status,
        message=result.message,
        edited_page_ids=result.edited_page_ids,
        edited_character_ids=result.edited_character_ids,
        generation_started=generation_started,
    )


def _archive_name(title: str) -> str:
    cleaned = FILENAME_UNSAFE.sub("-", title).strip("-") or "project"
    return f"{cleaned}-illustrations.zip"


def _extension(content_type: str) -> str:
    subtype = (content_type or "image/png").split("/")[-1].lower()
    return {"jpeg": "jpg", "svg+xml": "svg"}.get(subtype, subtype or "png")


@app.get("/projects/{project_id}/download", tags=["download"])
async def download_project(
    project_id: str,
    store: EntityStore = Depends(get_store),
    fetch=Depends(get_image_fetcher),
) -> Response:
    """ZIP of every page's sketch and illustration, in ``Sketches/`` and ``Illustrations/``."""

    project = await store.require_project(project_id)
    pages = await store.list_pages(project_id)

    buffer = io.BytesIO()
    written = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for page in pages:
            for folder, url in (("Sketches", page.sketch_url), ("Illustrations", page.illustration_url)):
                if not url:
                    continue
                try:
                    data, content_type = await fetch(url)
                except (httpx.HTTPError, ProviderError) as exc:
                    logger.warning(
                        "Skipping image in download",
                        extra={"page_id": page.id, "folder": folder, "error": str(exc)},
                    )
                    continue
                archive.writestr(
                    f"{folder}/Page-{page.page_number}.{_extension(content_type)}", data
                )
                written += 1

    if not written:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No images available to download")

    logger.info("Built download archive", extra={"project_id": project_id, "file_count": written})
    return Response(
        content=buffer.getvalue(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{_archive_name(project.book_title)}"'},
    )
