"""Models for the read-only JSON snapshot consumed by the static site."""

from datetime import datetime

from pydantic import BaseModel


class ExportedCode(BaseModel):
    """A code as published to the presentation layer."""

    id: str
    code: str
    brand_name: str
    brand_slug: str
    source_type: str
    source_channel: str | None
    source_video_id: str | None
    found_at: datetime
    confidence: float


class ExportMeta(BaseModel):
    """Snapshot metadata."""

    generated_at: datetime
    total_codes: int
    total_brands: int


class ExportSnapshot(BaseModel):
    """The complete export document."""

    meta: ExportMeta
    codes: list[ExportedCode]
