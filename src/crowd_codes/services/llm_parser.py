"""Gemini fallback parser for descriptions the regex patterns missed."""

import json
import re
from typing import Any

import httpx
from google import genai
from google.genai import errors, types

from crowd_codes.core.errors import ConfigurationError, ResponseParseError
from crowd_codes.core.logger import get_logger
from crowd_codes.core.models import LLM_PATTERN_ID, ExtractedCode
from crowd_codes.core.quota import QuotaBudget
from crowd_codes.services.extractor import (
    REASON_API_ERROR,
    REASON_EMPTY_DESCRIPTION,
    REASON_ERROR,
    REASON_PARSE_ERROR,
    REASON_QUOTA_EXHAUSTED,
    REASON_TIMEOUT,
    ExtractionResult,
)
from crowd_codes.services.identity import (
    UNKNOWN_BRAND,
    code_fingerprint,
    normalize_code,
    slugify,
)


logger = get_logger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DAILY_QUOTA_LIMIT = 150
FETCH_TIMEOUT_SECONDS = 30.0
DEFAULT_CONFIDENCE = 0.7

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

PROMPT_TEMPLATE = """Tu es un assistant spécialisé dans l'extraction de codes promo depuis des descriptions YouTube françaises.

Analyse cette description et extrais les codes promo:

---
{description}
---

Retourne UNIQUEMENT un JSON valide avec ce format exact (pas de texte avant ou après):
{{
  "codes": [
    {{
      "code": "CODE123",
      "brand_name": "NomMarque",
      "confidence": 0.9
    }}
  ],
  "suggested_regex": "pattern regex pour matcher ce type de code ou null",
  "reasoning": "courte explication de ton analyse"
}}

Règles:
- Les codes promo sont généralement en MAJUSCULES
- Ils contiennent souvent des chiffres (ex: NIKE15, SUMMER20)
- Cherche les mots-clés: code, promo, réduction, coupon, -X%
- Si aucun code trouvé, retourne: {{ "codes": [], "suggested_regex": null, "reasoning": "..." }}
- Pour suggested_regex, propose un pattern regex Python valide dont le premier groupe capture le code"""


def validate_regex(pattern: Any) -> bool:
    """Check that a suggested pattern is a non-blank, compilable regex."""
    if not isinstance(pattern, str) or not pattern.strip():
        return False
    try:
        re.compile(pattern, re.IGNORECASE)
    except re.error:
        return False
    return True


def parse_gemini_response(text: Any) -> dict[str, Any]:
    """Extract the model's JSON payload from a generate_content reply.

    Args:
        text: ``response.text`` of the SDK reply.

    Returns:
        Dict with ``codes`` (list), ``suggested_regex`` and ``reasoning``.

    Raises:
        ResponseParseError: If there is no text or the text is not a JSON
            object.
    """
    if not text or not isinstance(text, str):
        raise ResponseParseError("No text in response")

    json_text = text.strip()
    fenced = _FENCED_JSON.search(json_text)
    if fenced:
        json_text = fenced.group(1).strip()

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as error:
        raise ResponseParseError(f"JSON parse error: {error}") from error
    if not isinstance(data, dict):
        raise ResponseParseError("JSON parse error: expected an object")

    codes = data.get("codes")
    return {
        "codes": codes if isinstance(codes, list) else [],
        "suggested_regex": data.get("suggested_regex") or None,
        "reasoning": data.get("reasoning") or "",
    }


def _coerce_confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return default
    if value != value:  # NaN
        return default
    return min(1.0, max(0.0, float(value)))


class LlmParser:
    """Quota-gated Gemini extractor.

    The call counter is charged once per request that reached the service,
    whatever the outcome, since those are what the provider bills.
    """

    def __init__(
        self,
        api_key: str,
        budget: QuotaBudget | None = None,
        client: genai.Client | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        default_confidence: float = DEFAULT_CONFIDENCE,
    ) -> None:
        """Initialize the parser.

        Args:
            api_key: Gemini API key.
            budget: Call budget for this run (default 150 calls).
            client: Optional Gemini client (tests inject a fake).
            model: Gemini model name.
            timeout: Per-request timeout in seconds.
            default_confidence: Confidence for codes returned without one.

        Raises:
            ConfigurationError: If the API key is missing or blank.
        """
        if not isinstance(api_key, str) or not api_key.strip():
            raise ConfigurationError("GEMINI_API_KEY is required")
        self._budget = budget or QuotaBudget(DAILY_QUOTA_LIMIT)
        self._client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self._model = model
        self._default_confidence = default_confidence

    @property
    def budget(self) -> QuotaBudget:
        return self._budget

    def is_quota_exhausted(self) -> bool:
        return self._budget.is_exhausted

    def get_calls_remaining(self) -> int:
        return self._budget.remaining

    def increment_call_count(self) -> None:
        self._budget.consume(1)

    def get_quota_status(self) -> dict[str, Any]:
        return {
            "calls_made": self._budget.used,
            "calls_remaining": self.get_calls_remaining(),
            "is_exhausted": self.is_quota_exhausted(),
        }

    @staticmethod
    def build_prompt(description: str) -> str:
        return PROMPT_TEMPLATE.format(description=description)

    async def _generate(self, description: str) -> Any:
        return await self._client.aio.models.generate_content(
            model=self._model,
            contents=self.build_prompt(description),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=0.1,
            ),
        )

    def _to_extracted_codes(
        self, raw_codes: list[Any], video_id: str
    ) -> list[ExtractedCode]:
        extracted = []
        for raw in raw_codes:
            if not isinstance(raw, dict):
                continue
            code = normalize_code(
                raw.get("code") if isinstance(raw.get("code"), str) else None
            )
            if not code:
                continue

            brand_name = raw.get("brand_name")
            if not isinstance(brand_name, str) or not brand_name.strip():
                brand_name = UNKNOWN_BRAND
            brand_name = brand_name.strip()
            brand_slug = slugify(brand_name)

            extracted.append(
                ExtractedCode(
                    id=code_fingerprint(code, brand_slug, video_id),
                    code=code,
                    brand_name=brand_name,
                    brand_slug=brand_slug,
                    confidence=_coerce_confidence(
                        raw.get("confidence"), self._default_confidence
                    ),
                    pattern_id=LLM_PATTERN_ID,
                )
            )
        return extracted

    async def parse_description(
        self, description: str | None, video_id: str
    ) -> ExtractionResult:
        """Ask Gemini for the codes in one description.

        Args:
            description: Video description text.
            video_id: Video id used for the code fingerprint.

        Returns:
            A successful result with codes and a validated suggested regex,
            or a failure carrying one of the extractor reason codes.
        """
        if self.is_quota_exhausted():
            return ExtractionResult.failure(REASON_QUOTA_EXHAUSTED)

        if not isinstance(description, str) or not description.strip():
            return ExtractionResult.failure(REASON_EMPTY_DESCRIPTION)

        try:
            response = await self._generate(description)
        except (httpx.ConnectTimeout, httpx.PoolTimeout):
            return ExtractionResult.failure(
                REASON_TIMEOUT, "Request timed out before connecting"
            )
        except (httpx.TimeoutException, TimeoutError):
            self.increment_call_count()
            return ExtractionResult.failure(
                REASON_TIMEOUT, "Request timed out"
            )
        except errors.APIError as error:
            self.increment_call_count()
            logger.debug(
                "[LLM] Gemini returned %s for video %s",
                error.code,
                video_id,
                extra={"error_code": "LLM_API_ERROR", "video_id": video_id},
            )
            return ExtractionResult.failure(
                REASON_API_ERROR, f"HTTP {error.code}: {error.message}"
            )
        except httpx.HTTPError as error:
            return ExtractionResult.failure(REASON_ERROR, str(error))

        self.increment_call_count()

        try:
            parsed = parse_gemini_response(response.text)
        except ResponseParseError as error:
            return ExtractionResult.failure(REASON_PARSE_ERROR, error.message)

        suggested = parsed["suggested_regex"]
        return ExtractionResult(
            success=True,
            codes=self._to_extracted_codes(parsed["codes"], video_id),
            suggested_regex=suggested if validate_regex(suggested) else None,
            reasoning=str(parsed["reasoning"]),
        )

    async def extract(
        self, description: str | None, video_id: str
    ) -> ExtractionResult:
        return await self.parse_description(description, video_id)
