from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CrawlRequest(BaseModel):
    """Body of ``POST /api/v1/crawls``."""

    mode: Literal["refresh", "full"] = "refresh"
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    # Comma-separated string or a list of CIKs.
    ciks: Optional[Union[str, List[Union[str, int]]]] = None
    workers: Optional[int] = Field(default=None, ge=1, le=20)
    # None falls back to CRAWL_DISCOVER.
    discover: Optional[bool] = None
    discover_limit: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_window(self) -> "CrawlRequest":
        if self.date_from and self.date_to and self.date_from >= self.date_to:
            raise ValueError("date_from must be before date_to")
        return self
