"""Domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "ClassifiedPage",
    "ProcessingState",
    "ProcessingStatus",
    "QueueSnapshot",
    "TagSet",
]


class TagSet(BaseModel):
    """Category-prefixed tags assigned to a page, e.g. ``persona:caregiver``.

    Values are not checked against the taxonomy; any category may be empty.
    """

    model_config = ConfigDict(frozen=True)

    personas: List[str] = Field(default_factory=list)
    types: List[str] = Field(default_factory=list)
    stages: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)

    @field_validator("personas", "types", "stages", "topics", mode="before")
    @classmethod
    def _drop_duplicates(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            try:
                return list(dict.fromkeys(value))
            except TypeError:
                # unhashable entries are left for the str validation to reject
                return list(value)
        return value


class ClassifiedPage(BaseModel):
    """Classification of a single page."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str
    summary: str = ""
    tags: TagSet = Field(default_factory=TagSet)


class ProcessingState(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    CLASSIFYING = "classifying"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def resolved(self) -> bool:
        return self in (ProcessingState.COMPLETED, ProcessingState.ERROR)


@dataclass(slots=True)
class ProcessingStatus:
    """State of one URL while a run is active."""

    url: str
    state: ProcessingState = ProcessingState.PENDING
    data: Optional[ClassifiedPage] = None
    error: Optional[str] = None

    def copy(self) -> "ProcessingStatus":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "state": self.state.value,
            "data": self.data.model_dump() if self.data is not None else None,
            "error": self.error,
        }


@dataclass(slots=True)
class QueueSnapshot:
    """Point-in-time view of a queue published to observers."""

    items: List[ProcessingStatus] = field(default_factory=list)
    progress: float = 0.0
    eta_seconds: Optional[float] = None
    running: bool = False

    def count(self, state: ProcessingState) -> int:
        return sum(1 for item in self.items if item.state is state)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "progress": self.progress,
            "eta_seconds": self.eta_seconds,
            "running": self.running,
        }
