"""Tests for SQL query builders compiled against both dialects."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from crowd_codes.core.models import ParsedBy
from crowd_codes.db import sql_query_builder


NOW = datetime(2024, 5, 1, tzinfo=UTC)
DIALECTS = {"sqlite": sqlite.dialect(), "postgresql": postgresql.dialect()}


def _sql(stmt, dialect_name: str) -> str:
    return str(stmt.compile(dialect=DIALECTS[dialect_name])).lower()


@pytest.mark.parametrize("dialect_name", ["sqlite", "postgresql"])
def test_upsert_code_keeps_max_confidence(dialect_name) -> None:
    stmt = sql_query_builder.build_upsert_code(
        dialect_name,
        code_id="abc",
        code="NIKE15",
        brand_name="Nike",
        brand_slug="nike",
        source_type="youtube",
        source_channel="C",
        source_video_id="v",
        found_at=NOW,
        confidence=0.8,
    )
    sql = _sql(stmt, dialect_name)

    assert "insert into codes" in sql
    assert "on conflict (id) do update" in sql
    assert "case when" in sql
    assert "excluded.confidence > codes.confidence" in sql


@pytest.mark.parametrize("dialect_name", ["sqlite", "postgresql"])
def test_upsert_brand_increments_count(dialect_name) -> None:
    stmt = sql_query_builder.build_upsert_brand(
        dialect_name, slug="nike", name="Nike", first_seen_at=NOW
    )
    sql = _sql(stmt, dialect_name)

    assert "on conflict (slug) do update" in sql
    assert "brands.code_count +" in sql
    assert "name =" not in sql.split("do update")[1]


def test_upsert_raw_videos_does_not_reset_parsed() -> None:
    stmt = sql_query_builder.build_upsert_raw_videos("sqlite")
    update_clause = _sql(stmt, "sqlite").split("do update set")[1]

    assert "description = excluded.description" in update_clause
    assert "scraped_at = excluded.scraped_at" in update_clause
    assert "parsed" not in update_clause


def test_unsupported_dialect_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported database dialect"):
        sql_query_builder.build_upsert_raw_videos("mysql")


def test_pending_llm_select_groups_by_video() -> None:
    sql = _sql(sql_query_builder.build_pending_llm_videos_select(5), "sqlite")

    assert "group by parsing_logs.video_id" in sql
    assert "join raw_videos" in sql
    assert "limit" in sql


def test_mark_llm_parsed_only_touches_pending_rows() -> None:
    stmt = sql_query_builder.build_mark_llm_parsed_update("v", None)
    compiled = stmt.compile(dialect=DIALECTS["sqlite"])

    assert "where parsing_logs.video_id" in str(compiled).lower()
    assert str(ParsedBy.NONE) in compiled.params.values()
    assert str(ParsedBy.LLM) in compiled.params.values()


def test_parsing_logs_select_filters() -> None:
    plain = _sql(sql_query_builder.build_parsing_logs_select(), "sqlite")
    filtered = _sql(
        sql_query_builder.build_parsing_logs_select(
            video_id="v", parsed_by=ParsedBy.LLM
        ),
        "sqlite",
    )

    assert "where" not in plain
    assert "parsing_logs.video_id =" in filtered
    assert "parsing_logs.parsed_by =" in filtered


def test_export_select_orders_newest_first() -> None:
    sql = _sql(sql_query_builder.build_codes_for_export_select(), "sqlite")

    assert "order by codes.found_at desc, codes.id" in sql
