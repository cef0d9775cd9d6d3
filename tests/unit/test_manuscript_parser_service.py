"""Tests for the manuscript parsing microservice."""

from __future__ import annotations

import base64
import importlib.util
import io
import sys
from pathlib import Path

import pytest
from docx import Document
from fastapi.testclient import TestClient

PARSER_MAIN = (
    Path(__file__).resolve().parents[2] / "services" / "manuscript-parser" / "app" / "main.py"
)
MODULE_NAME = "manuscript_parser_under_test"

SPEC = importlib.util.spec_from_file_location(MODULE_NAME, PARSER_MAIN)
if SPEC is None or SPEC.loader is None:
    raise RuntimeError("Failed to load manuscript parser module for testing")
manuscript_parser = importlib.util.module_from_spec(SPEC)
sys.modules[MODULE_NAME] = manuscript_parser
SPEC.loader.exec_module(manuscript_parser)

HTTPException = manuscript_parser.HTTPException
ParseRequest = manuscript_parser.ParseRequest
parse_manuscript = manuscript_parser.parse_manuscript


def _encode_text(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


MANUSCRIPT = """The Lighthouse Cat
by Robin Vale

Illustration 1
Milo wakes up as the fog rolls in.
Description: A small cat on a windowsill, fog outside.

Illustration 2 The lamp is broken!
Milo climbs the stairs.
Description: Spiral staircase, moonlight.
"""


def test_parse_marked_manuscript() -> None:
    response = parse_manuscript(
        ParseRequest(filename="story.txt", content_base64=_encode_text(MANUSCRIPT))
    )

    assert response.page_count == 2
    first, second = response.pages
    assert first.page_number == 1
    assert first.story_text == "Milo wakes up as the fog rolls in."
    assert first.scene_description == "A small cat on a windowsill, fog outside."
    assert second.story_text == "The lamp is broken! Milo climbs the stairs."
    assert second.scene_description == "Spiral staircase, moonlight."
    assert response.word_count == 16


def test_text_before_first_marker_is_ignored() -> None:
    pages = manuscript_parser.parse_pages("Title page\nIllustration 3\nHello")
    assert [(page.page_number, page.story_text) for page in pages] == [(3, "Hello")]


def test_manuscript_without_markers_falls_back_to_paragraphs() -> None:
    response = parse_manuscript(
        ParseRequest(
            filename="story.txt",
            content_base64=_encode_text("First paragraph\nstill first.\n\nSecond one."),
        )
    )

    assert [page.story_text for page in response.pages] == [
        "First paragraph still first.",
        "Second one.",
    ]


def test_parse_docx_manuscript() -> None:
    raw = _docx_bytes("Illustration 1", "Once upon a time.", "Description: A castle.")
    response = parse_manuscript(
        ParseRequest(
            filename="Story.DOCX", content_base64=base64.b64encode(raw).decode("ascii")
        )
    )

    assert response.page_count == 1
    assert response.pages[0].scene_description == "A castle."


def test_parse_rejects_invalid_base64() -> None:
    with pytest.raises(HTTPException) as exc:
        parse_manuscript(ParseRequest(filename="story.txt", content_base64="!!!"))
    assert exc.value.status_code == 400


def test_parse_rejects_empty_and_unsupported_files() -> None:
    with pytest.raises(HTTPException) as empty:
        parse_manuscript(ParseRequest(filename="story.txt", content_base64=""))
    assert "empty" in empty.value.detail.lower()

    with pytest.raises(HTTPException) as pdf:
        parse_manuscript(ParseRequest(filename="story.pdf", content_base64=_encode_text("x")))
    assert pdf.value.detail == "Unsupported file type"

    with pytest.raises(HTTPException) as broken:
        parse_manuscript(
            ParseRequest(filename="story.docx", content_base64=_encode_text("not a zip"))
        )
    assert broken.value.status_code == 400


def test_http_errors_use_error_envelope() -> None:
    client = TestClient(manuscript_parser.app)

    response = client.post(
        "/parse", json={"filename": "story.txt", "content_base64": _encode_text("   \n  ")}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Document contains no text"}
