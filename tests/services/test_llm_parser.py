"""Tests for the Gemini fallback parser (SDK client faked)."""

from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors

from crowd_codes.core.errors import ConfigurationError, ResponseParseError
from crowd_codes.core.quota import QuotaBudget
from crowd_codes.services import llm_parser as llm_parser_module
from crowd_codes.services.identity import code_fingerprint
from crowd_codes.services.llm_parser import (
    LlmParser,
    parse_gemini_response,
    validate_regex,
)


def _gemini_text(payload, fenced: bool = False) -> str:
    text = json.dumps(payload)
    if fenced:
        text = f"```json\n{text}\n```"
    return text


class _FakeModels:
    def __init__(self, responses: list) -> None:
        self._responses = responses
        self.calls: list[dict] = []

    async def generate_content(self, *, model, contents, config):
        self.calls.append(
            {"model": model, "contents": contents, "config": config}
        )
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(text=response)


class _FakeGemini:
    """Stands in for ``genai.Client``; only ``aio.models`` is used."""

    def __init__(self, *responses) -> None:
        self.models = _FakeModels(list(responses))
        self.aio = SimpleNamespace(models=self.models)

    @property
    def calls(self) -> list[dict]:
        return self.models.calls


def _parser(fake: _FakeGemini, ceiling: int = 150) -> LlmParser:
    return LlmParser("gem-key", budget=QuotaBudget(ceiling), client=fake)


def _api_error(code: int, message: str) -> errors.APIError:
    return errors.APIError(
        code, {"error": {"code": code, "message": message, "status": "X"}}
    )


def test_blank_key_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
        LlmParser("")


def test_default_client_gets_key_and_timeout(monkeypatch) -> None:
    captured = {}

    def _client(**kwargs):
        captured.update(kwargs)
        return _FakeGemini()

    monkeypatch.setattr(llm_parser_module.genai, "Client", _client)

    LlmParser("gem-key", timeout=30.0)

    assert captured["api_key"] == "gem-key"
    assert captured["http_options"].timeout == 30000


def test_validate_regex() -> None:
    assert validate_regex(r"\b([A-Z]{3,}\d+)\b") is True
    assert validate_regex("(") is False
    assert validate_regex("   ") is False
    assert validate_regex(None) is False


def test_parse_gemini_response_strips_fence() -> None:
    text = _gemini_text({"codes": [{"code": "x"}], "reasoning": "r"}, True)

    parsed = parse_gemini_response(text)

    assert parsed["codes"] == [{"code": "x"}]
    assert parsed["suggested_regex"] is None
    assert parsed["reasoning"] == "r"


@pytest.mark.parametrize("text", [None, "", "nope", "[1, 2]"])
def test_parse_gemini_response_rejects_bad_text(text) -> None:
    with pytest.raises(ResponseParseError):
        parse_gemini_response(text)


@pytest.mark.asyncio
async def test_successful_extraction_maps_codes() -> None:
    fake = _FakeGemini(
        _gemini_text(
            {
                "codes": [
                    {"code": " nike15 ", "brand_name": "Nike"},
                    {"code": "SAVE", "confidence": 3},
                    {"code": "  ", "brand_name": "Blank"},
                    {"code": "ZARA10", "confidence": "high"},
                ],
                "suggested_regex": r"code\s+([A-Z]+\d+)",
                "reasoning": "found",
            },
            fenced=True,
        )
    )
    parser = _parser(fake)

    result = await parser.parse_description("Code promo nike15", "vid")

    assert result.success is True
    assert [code.code for code in result.codes] == ["NIKE15", "SAVE", "ZARA10"]
    nike, save, zara = result.codes
    assert nike.brand_slug == "nike"
    assert nike.confidence == 0.7
    assert nike.pattern_id == "llm-extraction"
    assert nike.id == code_fingerprint("NIKE15", "nike", "vid")
    assert save.brand_name == "Unknown"
    assert save.confidence == 1.0
    assert zara.confidence == 0.7
    assert result.suggested_regex == r"code\s+([A-Z]+\d+)"
    assert parser.get_quota_status() == {
        "calls_made": 1,
        "calls_remaining": 149,
        "is_exhausted": False,
    }


@pytest.mark.asyncio
async def test_request_shape() -> None:
    fake = _FakeGemini(_gemini_text({"codes": []}))

    await _parser(fake).parse_description("Une description", "vid")

    call = fake.calls[0]
    assert call["model"] == "gemini-2.5-flash"
    assert "Une description" in call["contents"]
    assert call["config"].response_mime_type == "application/json"
    assert call["config"].temperature == 0.1


@pytest.mark.asyncio
async def test_invalid_suggested_regex_is_dropped() -> None:
    fake = _FakeGemini(_gemini_text({"codes": [], "suggested_regex": "(["}))

    result = await _parser(fake).parse_description("text", "vid")

    assert result.success is True
    assert result.suggested_regex is None


@pytest.mark.asyncio
async def test_quota_exhausted_makes_no_request() -> None:
    fake = _FakeGemini()
    parser = _parser(fake, ceiling=0)

    result = await parser.parse_description("text", "vid")

    assert result.success is False
    assert result.reason == "quota_exhausted"
    assert fake.calls == []


@pytest.mark.asyncio
async def test_empty_description_makes_no_request() -> None:
    fake = _FakeGemini()
    parser = _parser(fake)

    result = await parser.parse_description("   ", "vid")

    assert result.reason == "empty_description"
    assert parser.get_calls_remaining() == 150
    assert fake.calls == []


@pytest.mark.asyncio
async def test_api_error_counts_call_and_reports_status() -> None:
    fake = _FakeGemini(_api_error(429, "slow down"))
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "api_error"
    assert result.error.startswith("HTTP 429")
    assert "slow down" in result.error
    assert parser.budget.used == 1


@pytest.mark.asyncio
async def test_empty_model_text_is_parse_error() -> None:
    fake = _FakeGemini(None)
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "parse_error"
    assert result.error == "No text in response"
    assert parser.budget.used == 1


@pytest.mark.asyncio
async def test_unparseable_model_text_is_parse_error() -> None:
    fake = _FakeGemini("{oops")
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "parse_error"
    assert result.error.startswith("JSON parse error")
    assert parser.budget.used == 1


@pytest.mark.asyncio
async def test_read_timeout_counts_call() -> None:
    request = httpx.Request("POST", "https://example.invalid")
    fake = _FakeGemini(httpx.ReadTimeout("slow", request=request))
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "timeout"
    assert parser.budget.used == 1


@pytest.mark.asyncio
async def test_connect_timeout_is_not_counted() -> None:
    request = httpx.Request("POST", "https://example.invalid")
    fake = _FakeGemini(httpx.ConnectTimeout("slow", request=request))
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "timeout"
    assert parser.budget.used == 0


@pytest.mark.asyncio
async def test_connection_failure_is_not_counted() -> None:
    request = httpx.Request("POST", "https://example.invalid")
    fake = _FakeGemini(httpx.ConnectError("refused", request=request))
    parser = _parser(fake)

    result = await parser.parse_description("text", "vid")

    assert result.reason == "error"
    assert parser.budget.used == 0


@pytest.mark.asyncio
async def test_exhausts_after_ceiling_calls() -> None:
    ok = _gemini_text({"codes": []})
    fake = _FakeGemini(ok, ok)
    parser = _parser(fake, ceiling=2)

    await parser.extract("a", "1")
    await parser.extract("b", "2")
    result = await parser.extract("c", "3")

    assert parser.is_quota_exhausted() is True
    assert result.quota_exhausted is True
    assert len(fake.calls) == 2
