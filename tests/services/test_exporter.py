"""Tests for the JSON snapshot export."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from crowd_codes.core.models import ExportSnapshot, ExtractedCode
from crowd_codes.services.exporter import run_export
from crowd_codes.services.identity import code_fingerprint


async def _store_code(store, code: str, brand: str, day: int) -> None:
    slug = brand.lower()
    found_at = datetime(2024, 5, day, tzinfo=UTC)
    record = ExtractedCode(
        id=code_fingerprint(code, slug, f"v{day}"),
        code=code,
        brand_name=brand,
        brand_slug=slug,
        confidence=0.85,
        source_channel="Chaine",
        source_video_id=f"v{day}",
        found_at=found_at,
    )
    async with store.transaction() as conn:
        await store.upsert_code(conn, record)
        await store.upsert_brand(conn, slug, brand, found_at)


@pytest.mark.asyncio
async def test_export_writes_newest_first(store, settings) -> None:
    await _store_code(store, "NIKE15", "Nike", 1)
    await _store_code(store, "ZARA10", "Zara", 3)
    await _store_code(store, "NIKE20", "Nike", 2)

    result = await run_export(settings)

    assert result.success is True
    assert result.total_codes == 3
    assert result.total_brands == 2
    assert result.output_path == settings.export_output_path

    text = settings.export_output_path.read_text(encoding="utf-8")
    assert text.startswith('{\n  "meta": {')
    snapshot = ExportSnapshot.model_validate_json(text)
    assert snapshot.meta.total_codes == 3
    assert snapshot.meta.total_brands == 2
    assert [code.code for code in snapshot.codes] == [
        "ZARA10",
        "NIKE20",
        "NIKE15",
    ]
    raw = json.loads(text)["codes"][0]
    assert set(raw) == {
        "id",
        "code",
        "brand_name",
        "brand_slug",
        "source_type",
        "source_channel",
        "source_video_id",
        "found_at",
        "confidence",
    }


@pytest.mark.asyncio
async def test_export_of_empty_store(store, settings, tmp_path) -> None:
    target = tmp_path / "elsewhere" / "codes.json"

    result = await run_export(settings, target)

    assert result.success is True
    snapshot = json.loads(target.read_text(encoding="utf-8"))
    assert snapshot["codes"] == []
    assert snapshot["meta"]["total_codes"] == 0


@pytest.mark.asyncio
async def test_export_does_not_modify_store(store, settings) -> None:
    await _store_code(store, "NIKE15", "Nike", 1)

    await run_export(settings)
    await run_export(settings)

    async with store.connection() as conn:
        brand = await store.get_brand(conn, "nike")
        codes = await store.get_codes_for_export(conn)
    assert brand.code_count == 1
    assert len(codes) == 1


@pytest.mark.asyncio
async def test_missing_store_is_config_error(settings) -> None:
    result = await run_export(settings)

    assert result.success is False
    assert result.error_code == "CONFIG_ERROR"
    assert not settings.export_output_path.exists()


@pytest.mark.asyncio
async def test_unwritable_target_is_write_error(store, settings, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    result = await run_export(settings, blocker / "codes.json")

    assert result.success is False
    assert result.error_code == "WRITE_ERROR"
