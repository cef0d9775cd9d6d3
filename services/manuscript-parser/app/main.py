"""FastAPI service that turns an uploaded manuscript into a list of pages."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from typing import List, Optional

from docx import Document
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storybook_observability import (
    log_context,
    setup_fastapi_metrics,
    setup_logging,
)

app = FastAPI(title="Manuscript Parser", version="0.3.0")
SERVICE_NAME = "manuscript_parser"
setup_logging(SERVICE_NAME)
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"Illustration\s+(\d+)", re.IGNORECASE)
DESCRIPTION_PATTERN = re.compile(r"^description:\s*", re.IGNORECASE)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


class ParseRequest(BaseModel):
    """Incoming payload containing the manuscript to parse."""

    filename: str = Field(..., min_length=1, max_length=255)
    content_base64: str = Field(..., description="Base64 encoded manuscript content")


class ParsedPage(BaseModel):
    page_number: int = Field(..., ge=1)
    story_text: str = ""
    scene_description: Optional[str] = None
    description_auto_generated: bool = False


class ParseResponse(BaseModel):
    """Structured response returned to the API layer."""

    pages: List[ParsedPage] = Field(default_factory=list)
    page_count: int = Field(..., ge=0)
    word_count: int = Field(..., ge=0)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness probe."""

    return {"status": "ok"}


@app.post("/parse", response_model=ParseResponse, tags=["parse"])
def parse_manuscript(payload: ParseRequest) -> ParseResponse:
    """Decode the uploaded file and split it into pages."""
    with log_context(route="/parse", method="POST"):
        logger.info(
            "Parsing uploaded manuscript",
            extra={"document_filename": payload.filename},
        )

        try:
            raw_bytes = base64.b64decode(payload.content_base64, validate=True)
        except (ValueError, binascii.Error) as exc:
            logger.exception("Failed to decode base64 payload")
            raise HTTPException(status_code=400, detail="Invalid base64 encoding") from exc

        if not raw_bytes:
            raise HTTPException(status_code=400, detail="Document content is empty")

        try:
            text = extract_text(raw_bytes, payload.filename)
        except ValueError as exc:
            logger.warning("Unreadable manuscript", extra={"error": str(exc)})
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        if not text.strip():
            raise HTTPException(status_code=400, detail="Document contains no text")

        pages = parse_pages(text)
        if not pages:
            pages = paragraph_pages(text)

        word_total = sum(len(page.story_text.split()) for page in pages)
        logger.info(
            "Manuscript parsed successfully",
            extra={"page_count": len(pages), "word_count": word_total},
        )
        return ParseResponse(pages=pages, page_count=len(pages), word_count=word_total)


def extract_text(raw: bytes, filename: str) -> str:
    """Return the plain text of a docx or plaintext upload."""

    name = filename.lower()
    if name.endswith(".docx"):
        try:
            with io.BytesIO(raw) as buffer:
                document = Document(buffer)
        except Exception as exc:  # BadZipFile, KeyError or lxml errors
            raise ValueError("Unable to read .docx file") from exc
        return "\n".join(para.text for para in document.paragraphs)
    if name.endswith(".pdf") or name.endswith(".doc"):
        raise ValueError("Unsupported file type")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1", errors="ignore")


def parse_pages(text: str) -> list[ParsedPage]:
    """Split on ``Illustration N`` markers.

    Text after the marker on the same line starts the page's story text,
    anything before the first marker is ignored, and ``Description:`` lines
    set the scene description.
    """

    pages: list[ParsedPage] = []
    current: Optional[ParsedPage] = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        match = MARKER_PATTERN.search(line)
        if match:
            if current is not None:
                pages.append(current)
            current = ParsedPage(page_number=max(int(match.group(1)), 1))
            after = line[match.end():].strip()
            if after and not DESCRIPTION_PATTERN.match(after):
                current.story_text = after
            elif after:
                current.scene_description = DESCRIPTION_PATTERN.sub("", after).strip() or None
            continue

        if current is None:
            continue

        if DESCRIPTION_PATTERN.match(line):
            current.scene_description = DESCRIPTION_PATTERN.sub("", line).strip() or None
            continue

        current.story_text = f"{current.story_text} {line}" if current.story_text else line

    if current is not None:
        pages.append(current)

    pages.sort(key=lambda page: page.page_number)
    return pages


def paragraph_pages(text: str) -> list[ParsedPage]:
    """Fallback for manuscripts without markers: one page per paragraph."""

    blocks = re.split(r"\n\s*\n", text)
    if len(blocks) <= 1:
        blocks = text.splitlines()
    paragraphs = [" ".join(block.split()) for block in blocks if block.strip()]
    return [
        ParsedPage(page_number=index, story_text=paragraph)
        for index, paragraph in enumerate(paragraphs, start=1)
    ]
