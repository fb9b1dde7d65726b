from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_DIFFICULTY = "EASY"
SLIDE_TITLE_PREFIX = "Step"


class ApiModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire and in storage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Slide(ApiModel):
    id: str
    title: str
    description: str
    image_url: Optional[str] = None
    created_at: datetime


class WorkshopFields(ApiModel):
    """User-supplied workshop metadata."""

    name: str = ""
    description: str = ""
    duration: Optional[str] = None
    difficulty: Optional[str] = None
    materials: Optional[str] = None
    objectives: Optional[str] = None
    purposes: Optional[str] = None
    science: Optional[str] = None
    technology: Optional[str] = None
    engineering: Optional[str] = None
    mathematics: Optional[str] = None


class WorkshopSummary(ApiModel):
    id: str
    name: str
    description: str
    duration: Optional[str] = None
    difficulty: str = DEFAULT_DIFFICULTY
    cover_image_url: Optional[str] = None
    created_at: Optional[datetime] = None


class WorkshopCreated(WorkshopSummary):
    materials: Optional[str] = None
    objectives: Optional[str] = None
    purposes: Optional[str] = None
    science: Optional[str] = None
    technology: Optional[str] = None
    engineering: Optional[str] = None
    mathematics: Optional[str] = None
    storage_folder: str


class Workshop(WorkshopCreated):
    updated_at: Optional[datetime] = None
    slides: List[Slide] = Field(default_factory=list)

    def to_created(self) -> WorkshopCreated:
        return WorkshopCreated.model_validate(self.model_dump(exclude={"updated_at", "slides"}))


# Fields returned by the projected scan. ``slides`` is deliberately absent.
SUMMARY_FIELDS = [to_camel(name) for name in WorkshopSummary.model_fields]


class SlideCreated(ApiModel):
    slide: Slide
    workshop: Workshop


class MessageResponse(ApiModel):
    message: str
    objects_deleted: int = 0
    incomplete: bool = False


class StoreStatus(ApiModel):
    connected: bool
    backend: str
    message: str


class StorageCheck(ApiModel):
    object_store: StoreStatus
    record_store: StoreStatus


@dataclass(frozen=True)
class ImageUpload:
    """An uploaded image held in memory."""

    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass(frozen=True)
class SlideAppend:
    """
    Result of appending a slide.

    ``workshop`` is authoritative: it is the record as returned by the atomic
    append. ``slide.title`` is advisory: it was computed from the slide count
    read before the append and may collide with a concurrent append.
    """

    slide: Slide
    workshop: Workshop

    @property
    def position(self) -> int:
        for index, existing in enumerate(self.workshop.slides, start=1):
            if existing.id == self.slide.id:
                return index
        raise LookupError(f"Slide {self.slide.id} missing from workshop {self.workshop.id}")

    @property
    def title_matches_position(self) -> bool:
        return self.slide.title == slide_title(self.position)

    def to_response(self) -> SlideCreated:
        return SlideCreated(slide=self.slide, workshop=self.workshop)


def slide_title(number: int) -> str:
    return f"{SLIDE_TITLE_PREFIX} {number}"


@dataclass
class DeletionReport:
    workshop_id: str
    objects_deleted: int
    truncated: bool

    def to_message(self) -> MessageResponse:
        return MessageResponse(
            message="Workshop deleted",
            objects_deleted=self.objects_deleted,
            incomplete=self.truncated,
        )


def record_to_dict(model: BaseModel) -> Dict[str, object]:
    """Serialize a model in the camelCase JSON layout used by the record store."""
    return model.model_dump(mode="json", by_alias=True)
