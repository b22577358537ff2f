"""Data models for postcard image resolution."""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

LocationKind = Literal["real", "fictional"]
ResolutionState = Literal["pending", "in_progress", "succeeded", "failed"]

# Progress labels, one per observable tier attempt
STAGE_SEARCHING = "searching"
STAGE_PAID = "generating via paid"
STAGE_POLLING = "polling"
STAGE_FREE = "generating via free"


class LocationRecord(BaseModel):
    """One extracted point of interest and its (eventual) image."""

    model_config = ConfigDict(populate_by_name=True)

    location: str
    location_en: str = Field(default="", alias="locationEn")
    kind: LocationKind = Field(default="real", alias="type")
    quote: str = ""
    image_query: str = Field(default="", alias="imageQuery")
    image_url: str = Field(default="", alias="imageUrl")  # Written once by the orchestrator
    mode: Literal["book", "place"] = "book"
    book_title: Optional[str] = Field(default=None, alias="bookTitle")

    @model_validator(mode="after")
    def fill_defaults(self) -> "LocationRecord":
        """English name falls back to the native one; query falls back to the name."""
        if not self.location_en:
            self.location_en = self.location
        if not self.image_query.strip():
            self.image_query = f"{self.location_en or self.location} atmospheric cinematic"
        return self


class ResolutionStatus(BaseModel):
    """Where one record's image resolution currently stands."""

    model_config = ConfigDict(frozen=True)

    state: ResolutionState = "pending"
    stage: Optional[str] = None  # Human-readable label while in_progress
    url: Optional[str] = None  # Final URL, or fallback URL when failed

    @property
    def is_terminal(self) -> bool:
        return self.state in ("succeeded", "failed")


class ResolutionTask(BaseModel):
    """Per-record unit of work tracked by a batch.

    Transitions only move forward: pending → in_progress → succeeded|failed.
    Once terminal, every further transition is refused.
    """

    index: int
    status: ResolutionStatus = ResolutionStatus()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, stage: str) -> bool:
        """Enter (or relabel) the in-progress state. Returns False if terminal."""
        if self.is_terminal:
            return False
        self.status = ResolutionStatus(state="in_progress", stage=stage)
        return True

    def finish(self, url: str, succeeded: bool) -> bool:
        """Move to a terminal state. Returns False if already terminal."""
        if self.is_terminal:
            return False
        self.status = ResolutionStatus(
            state="succeeded" if succeeded else "failed",
            url=url,
        )
        return True


class ResolutionEvent(BaseModel):
    """A status change for the record at ``index``."""

    model_config = ConfigDict(frozen=True)

    index: int
    status: ResolutionStatus

    @property
    def is_result(self) -> bool:
        return self.status.is_terminal
