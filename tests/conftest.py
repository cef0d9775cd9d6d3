"""Shared pytest configuration for the Storybook Studio project."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
for extra in (ROOT, ROOT / "libs" / "python"):
    if str(extra) not in sys.path:
        sys.path.insert(0, str(extra))

# Services read these at import time; tests never talk to real backends.
for variable in ("DATABASE_URL", "SLACK_WEBHOOK_URL", "IMAGE_PROVIDER"):
    os.environ.pop(variable, None)
os.environ["STORAGE_BACKEND"] = "memory"


@pytest.fixture(autouse=True)
def _isolated_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for variable in ("GEMINI_API_KEY", "OPENAI_API_KEY", "LOG_LEVEL"):
        monkeypatch.delenv(variable, raising=False)
