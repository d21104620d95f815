"""Slug, brand and fingerprint helpers shared by both parsers."""

import hashlib
import re
import unicodedata


UNKNOWN_BRAND = "Unknown"
UNKNOWN_SLUG = "unknown"
CODE_ID_LENGTH = 16

_APOSTROPHES = re.compile(r"['‘’ʼ]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str | None) -> str:
    """Generate a URL-safe slug from a brand name.

    Lowercase, accents stripped, apostrophes removed, every other run of
    non-alphanumerics collapsed to one hyphen, hyphens trimmed.

    Args:
        name: Display name (e.g., "L'Oréal").

    Returns:
        Slug such as "loreal", or "unknown" when nothing survives.
    """
    if not name or not isinstance(name, str):
        return UNKNOWN_SLUG

    decomposed = unicodedata.normalize("NFD", name.lower())
    stripped = "".join(
        char for char in decomposed if unicodedata.category(char) != "Mn"
    )
    stripped = _APOSTROPHES.sub("", stripped)
    slug = _NON_ALNUM.sub("-", stripped).strip("-")

    return slug or UNKNOWN_SLUG


def code_fingerprint(code: str, brand_slug: str, video_id: str) -> str:
    """Deterministic identity of a code found in a video.

    Args:
        code: Normalized (uppercase) promo code.
        brand_slug: Brand slug the code is attributed to.
        video_id: Source video id.

    Returns:
        First 16 hex characters of SHA-256 over "code:slug:video".
    """
    content = f"{code}:{brand_slug}:{video_id}"
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return digest[:CODE_ID_LENGTH]


def normalize_code(raw: str | None) -> str:
    """Uppercase and trim a raw code candidate."""
    return (raw or "").strip().upper()


def title_case(word: str) -> str:
    """First letter uppercase, the rest lowercase ("NIKE" -> "Nike")."""
    return word[:1].upper() + word[1:].lower()


def infer_brand_from_code(code: str, min_letters: int = 3) -> str:
    """Infer a brand name from the alphabetic prefix of a code.

    Args:
        code: Normalized promo code (e.g., "NIKE15").
        min_letters: Minimum length of the leading letter run.

    Returns:
        Title-cased prefix ("Nike") or "Unknown".
    """
    match = re.match(rf"[A-Za-z]{{{min_letters},}}", code)
    if match:
        return title_case(match.group(0))
    return UNKNOWN_BRAND
