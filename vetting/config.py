from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from vetting.models import SectionType
from vetting.tally import TiePolicy

DEFAULT_REQUIRED_SECTIONS = (
    SectionType.EXECUTIVE_SUMMARY,
    SectionType.CANDIDATE_BACKGROUND,
    SectionType.OPPONENT_RESEARCH,
    SectionType.DISTRICT_DATA,
)


def _default_db_path() -> Path:
    override = os.getenv("VETTING_DB_PATH", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(__file__).parent / "data" / "vetting.db"


def _env_sections() -> list[SectionType]:
    raw = os.getenv("VETTING_REQUIRED_SECTIONS")
    if raw is None:
        return list(DEFAULT_REQUIRED_SECTIONS)
    return [SectionType(part.strip()) for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    database_path: Path = Field(default_factory=_default_db_path)

    tie_policy: TiePolicy = Field(
        default_factory=lambda: TiePolicy(os.getenv("VETTING_TIE_POLICY", TiePolicy.NO_POSITION.value).strip())
    )
    # Sections that must be completed before a vetting may enter board_vote
    required_sections_for_board_vote: list[SectionType] = Field(default_factory=_env_sections)

    organization_name: str = Field(default_factory=lambda: os.getenv("VETTING_ORG_NAME", "Republican Liberty Caucus"))
    organization_short_name: str = Field(default_factory=lambda: os.getenv("VETTING_ORG_SHORT_NAME", "RLC"))

    tavily_api_key: str | None = Field(default_factory=lambda: os.getenv("TAVILY_API_KEY") or None)
    search_min_delay: float = Field(
        default_factory=lambda: float(os.getenv("VETTING_SEARCH_MIN_DELAY", "1.0")), validate_default=True,
    )
    search_max_delay: float = 30.0
    request_timeout_seconds: float = 15.0

    orphan_after_minutes: int = Field(
        default_factory=lambda: int(os.getenv("VETTING_ORPHAN_AFTER_MINUTES", "30"))
    )
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    @field_validator("search_min_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("search delay must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
