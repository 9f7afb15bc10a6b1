"""
Runtime settings, read from the environment (and a .env file if present).

FLOORGRID_SHEET_URL      spreadsheet web-app URL; empty means work offline
FLOORGRID_SHEET_TIMEOUT  request timeout in seconds (default 15)
FLOORGRID_LOG_LEVEL      logging level name (default WARNING)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    sheet_url: str = ""
    sheet_timeout: float = 15.0
    log_level: str = "WARNING"

    @property
    def offline(self) -> bool:
        return not self.sheet_url

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.WARNING


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Existing environment variables win over .env entries
    load_dotenv(dotenv_path)
    timeout = os.getenv("FLOORGRID_SHEET_TIMEOUT", "").strip()
    return Settings(
        sheet_url=os.getenv("FLOORGRID_SHEET_URL", "").strip(),
        sheet_timeout=float(timeout) if timeout else 15.0,
        log_level=os.getenv("FLOORGRID_LOG_LEVEL", "WARNING").strip() or "WARNING",
    )
