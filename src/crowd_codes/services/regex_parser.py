"""Pattern-based promo code extraction from video descriptions."""

import json
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from crowd_codes.core.config import DEFAULT_PATTERNS_PATH
from crowd_codes.core.errors import ConfigurationError
from crowd_codes.core.models import ExtractedCode, Pattern
from crowd_codes.services.extractor import ExtractionResult
from crowd_codes.services.identity import (
    code_fingerprint,
    infer_brand_from_code,
    normalize_code,
    slugify,
    title_case,
)


MIN_CODE_LENGTH = 3


def _compile_pattern(entry: Any, path: Path, index: int) -> Pattern:
    """Validate one pattern entry and compile its regex."""
    if not isinstance(entry, dict):
        msg = f"Invalid pattern #{index} in {path}: expected an object"
        raise ConfigurationError(msg, details={"path": str(path)})

    try:
        compiled = re.compile(entry.get("regex", ""), re.IGNORECASE)
    except (re.error, TypeError) as error:
        msg = f"Pattern {entry.get('id', index)} in {path} does not compile"
        raise ConfigurationError(
            f"{msg}: {error}", details={"path": str(path)}
        ) from error

    try:
        return Pattern(
            id=entry["id"],
            regex=entry["regex"],
            confidence=entry["confidence"],
            brand_hint=entry.get("brand_hint"),
            compiled=compiled,
        )
    except (KeyError, ValidationError) as error:
        msg = f"Invalid pattern #{index} in {path}: {error}"
        raise ConfigurationError(msg, details={"path": str(path)}) from error


def load_patterns(path: Path | str = DEFAULT_PATTERNS_PATH) -> list[Pattern]:
    """Load and compile extraction patterns from a JSON file.

    Args:
        path: Path to the patterns file.

    Returns:
        Compiled patterns in file order.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not JSON,
            lacks a ``patterns`` array or holds an invalid entry.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as error:
        msg = f"Failed to read patterns file at {path}: {error}"
        raise ConfigurationError(msg, details={"path": str(path)}) from error

    try:
        data = json.loads(content)
    except json.JSONDecodeError as error:
        msg = f"Invalid JSON in patterns file {path}: {error}"
        raise ConfigurationError(msg, details={"path": str(path)}) from error

    if not isinstance(data, dict) or not isinstance(
        data.get("patterns"), list
    ):
        msg = f"Invalid patterns file {path}: missing patterns array"
        raise ConfigurationError(msg, details={"path": str(path)})

    return [
        _compile_pattern(entry, path, index)
        for index, entry in enumerate(data["patterns"])
    ]


class RegexParser:
    """Deterministic extractor applying configured patterns in order."""

    def __init__(
        self,
        patterns_path: Path | str = DEFAULT_PATTERNS_PATH,
        brand_prefix_min_letters: int = 3,
    ) -> None:
        """Initialize the parser.

        Args:
            patterns_path: Path to the patterns JSON file.
            brand_prefix_min_letters: Leading letters needed to infer a
                brand from a code when a pattern has no brand hint.
        """
        self._patterns = load_patterns(patterns_path)
        self._brand_prefix_min_letters = brand_prefix_min_letters

    @property
    def patterns(self) -> list[Pattern]:
        """Get the loaded patterns."""
        return list(self._patterns)

    def _resolve_brand(self, pattern: Pattern, raw: str, code: str) -> str:
        if pattern.uses_capture_group_brand:
            return title_case(raw.strip())
        if pattern.brand_hint:
            return pattern.brand_hint
        return infer_brand_from_code(code, self._brand_prefix_min_letters)

    def parse_description(
        self, description: Any, video_id: str = "unknown"
    ) -> list[ExtractedCode]:
        """Extract promo codes from a description.

        Codes are deduplicated by text: a later match only replaces an
        earlier one when its pattern has strictly higher confidence.

        Args:
            description: Video description text.
            video_id: Video id used for the code fingerprint.

        Returns:
            Extracted codes in first-seen order; empty for non-text input.
        """
        if not description or not isinstance(description, str):
            return []

        results: dict[str, ExtractedCode] = {}

        for pattern in self._patterns:
            for match in pattern.compiled.finditer(description):
                raw = match.group(1) if match.groups() else None
                code = normalize_code(raw)
                if len(code) < MIN_CODE_LENGTH:
                    continue

                existing = results.get(code)
                if existing and existing.confidence >= pattern.confidence:
                    continue

                brand_name = self._resolve_brand(pattern, raw or "", code)
                brand_slug = slugify(brand_name)

                results[code] = ExtractedCode(
                    id=code_fingerprint(code, brand_slug, video_id),
                    code=code,
                    brand_name=brand_name,
                    brand_slug=brand_slug,
                    confidence=pattern.confidence,
                    pattern_id=pattern.id,
                )

        return list(results.values())

    async def extract(
        self, description: str | None, video_id: str
    ) -> ExtractionResult:
        """Uniform extraction envelope; regex parsing never fails."""
        return ExtractionResult(
            success=True,
            codes=self.parse_description(description, video_id),
        )
