"""Shared fixtures: settings bound to a temporary SQLite store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import pytest_asyncio

from crowd_codes.core.config import Settings, get_settings
from crowd_codes.repositories.extraction_repository import ExtractionStore


TEST_PATTERNS = {
    "patterns": [
        {
            "id": "code-colon",
            "regex": r"\bcode\s*:\s*((?-i:[A-Z0-9]{3,20}))\b",
            "brand_hint": None,
            "confidence": 0.85,
        },
        {
            "id": "generic-code-token",
            "regex": r"\b((?-i:[A-Z]{3,}[0-9]{1,4}))\b",
            "brand_hint": None,
            "confidence": 0.6,
        },
    ]
}


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def patterns_file(tmp_path: Path) -> Path:
    path = tmp_path / "patterns.json"
    path.write_text(json.dumps(TEST_PATTERNS), encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path, patterns_file: Path) -> Settings:
    return Settings(
        _env_file=None,
        db_path=tmp_path / "data" / "codes.db",
        database_url=None,
        cloud_sql_instance_connection_name=None,
        youtube_api_key="yt-key",
        gemini_api_key=None,
        patterns_path=patterns_file,
        export_output_path=tmp_path / "out" / "codes.json",
        preview_llm_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def store(settings: Settings):
    setup = ExtractionStore(settings, create_if_missing=True)
    await setup.connect()
    await setup.initialize_schema()
    yield setup
    await setup.disconnect()
