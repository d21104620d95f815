"""Services for Crowd Codes."""

from crowd_codes.services.exporter import run_export
from crowd_codes.services.llm_parser import LlmParser
from crowd_codes.services.pipeline import run_parser
from crowd_codes.services.preview import run_preview
from crowd_codes.services.regex_parser import RegexParser
from crowd_codes.services.schema import initialize_database
from crowd_codes.services.scraper import run_scraper


__all__ = [
    "LlmParser",
    "RegexParser",
    "initialize_database",
    "run_export",
    "run_parser",
    "run_preview",
    "run_scraper",
]
