"""
Workshop orchestration across the object store and the record store.

This module owns the multi-step workflows of the API:
- Create: upload the cover image, then write the record
- Fetch and list: point read and projected scan
- Add slide: read, upload the optional image, then atomically append
- Delete: remove every blob under the storage folder, then the record

There are no transactions across the two stores. Consistency comes from the
ordering of side effects (blob before record on create, blobs before record
on delete) and from per-workflow compensation plans that undo an upload when
the record write that should follow it fails.

Every storage call is blocking network I/O; the service holds no locks and
keeps no per-request state, so one instance is shared by all requests.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from omegaconf import DictConfig

from .compensation import CompensationPlan
from .database import RecordStore, build_record_store
from .exceptions import (
    NotFoundError,
    PartialDeletionWarning,
    StorageError,
    UnsupportedMediaError,
    ValidationError,
)
from .models import (
    DEFAULT_DIFFICULTY,
    SUMMARY_FIELDS,
    DeletionReport,
    ImageUpload,
    Slide,
    SlideAppend,
    StorageCheck,
    StoreStatus,
    Workshop,
    WorkshopFields,
    WorkshopSummary,
    record_to_dict,
    slide_title,
)
from .s3_service import ObjectStore, build_object_store
from .utils import image_extension, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TYPES = ("image/jpeg", "image/png", "image/gif")
SLIDES_FIELD = "slides"


def new_id() -> str:
    """Random 128-bit identifier (UUID4, drawn from the OS CSPRNG)."""
    return str(uuid4())


class WorkshopService:
    """
    Coordinates workshop workflows over an object store and a record store.

    Both stores are injected; the service builds nothing itself, so tests and
    the HTTP layer decide which backends are in use.
    """

    def __init__(
        self,
        records: RecordStore,
        objects: ObjectStore,
        key_prefix: str = "workshops",
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_types: Iterable[str] = DEFAULT_ALLOWED_TYPES,
    ) -> None:
        self.records = records
        self.objects = objects
        self.key_prefix = key_prefix.strip("/")
        self.max_upload_bytes = max_upload_bytes
        self.allowed_types = frozenset(t.lower() for t in allowed_types)

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "WorkshopService":
        return cls(
            records=build_record_store(settings),
            objects=build_object_store(settings),
            key_prefix=settings.storage.key_prefix,
            max_upload_bytes=settings.uploads.max_bytes,
            allowed_types=list(settings.uploads.allowed_types),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def storage_folder(self, workshop_id: str) -> str:
        return f"{self.key_prefix}/{workshop_id}/"

    def _validate_image(self, image: Optional[ImageUpload], label: str) -> Optional[ImageUpload]:
        """Return the image if usable, None if absent; raise for bad uploads."""
        if image is None or not image.data:
            return None
        content_type = (image.content_type or "").lower()
        if content_type not in self.allowed_types:
            raise UnsupportedMediaError(
                f"Unsupported file type for {label}. Only images are accepted ({', '.join(sorted(self.allowed_types))}).",
                {"content_type": image.content_type or ""},
            )
        if len(image.data) > self.max_upload_bytes:
            raise ValidationError(
                f"{label.capitalize()} exceeds the maximum size of {self.max_upload_bytes} bytes",
                {"size": len(image.data)},
            )
        return image

    def _upload_image(self, folder: str, stem: str, image: ImageUpload) -> tuple[str, str]:
        key = f"{folder}{stem}-{uuid4()}{image_extension(image.filename, image.content_type)}"
        url = self.objects.upload(key, image.data, image.content_type or "application/octet-stream")
        return key, url

    def _delete_blob(self, key: str) -> None:
        result = self.objects.delete_many([key])
        if not result.ok:
            raise StorageError("Failed to delete object", {"key": key, "error": result.failed.get(key, "")})

    @staticmethod
    def _compensate(exc: StorageError, plan: CompensationPlan) -> Dict[str, Any]:
        return {**exc.details, "compensation": [result.as_dict() for result in plan.run()]}

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------
    def create_workshop(self, fields: WorkshopFields, cover: Optional[ImageUpload]) -> Workshop:
        if not fields.name or not fields.description:
            raise ValidationError("Name and description are required")
        cover = self._validate_image(cover, "cover image")
        if cover is None:
            raise ValidationError("A cover image is required")

        workshop_id = new_id()
        folder = self.storage_folder(workshop_id)
        plan = CompensationPlan(f"create-workshop {workshop_id}")

        cover_key, cover_url = self._upload_image(folder, "cover", cover)
        plan.add(f"delete cover image {cover_key}", lambda: self._delete_blob(cover_key))

        now = utc_now_iso()
        workshop = Workshop(
            id=workshop_id,
            **fields.model_dump(exclude={"difficulty"}),
            difficulty=fields.difficulty or DEFAULT_DIFFICULTY,
            cover_image_url=cover_url,
            storage_folder=folder,
            created_at=now,
            slides=[],
        )
        try:
            self.records.put(record_to_dict(workshop))
        except StorageError as exc:
            logger.error(f"Record write failed for workshop {workshop_id}; cover image {cover_key} already uploaded")
            raise StorageError("Failed to create workshop", self._compensate(exc, plan)) from exc
        plan.clear()

        logger.info(f"Created workshop {workshop_id} with cover {cover_key}")
        return workshop

    def get_workshop(self, workshop_id: str) -> Workshop:
        record = self.records.get(workshop_id)
        if not record:
            raise NotFoundError("Workshop not found", {"id": workshop_id})
        return Workshop.model_validate(record)

    def list_workshops(self) -> List[WorkshopSummary]:
        return [WorkshopSummary.model_validate(record) for record in self.records.scan_projected(SUMMARY_FIELDS)]

    def add_slide(self, workshop_id: str, description: str, image: Optional[ImageUpload] = None) -> SlideAppend:
        """
        Append a slide to a workshop.

        The slide title is computed from the slide count read here and is not
        re-checked at write time: two concurrent appends can both be titled
        "Step N". List membership is guaranteed by the atomic append; the
        returned ``SlideAppend`` exposes both.
        """
        if not description:
            raise ValidationError("Description is required")
        image = self._validate_image(image, "slide image")

        workshop = self.get_workshop(workshop_id)
        number = len(workshop.slides) + 1
        plan = CompensationPlan(f"add-slide {workshop_id}")

        image_url = None
        if image is not None:
            image_key, image_url = self._upload_image(workshop.storage_folder, "slide", image)
            plan.add(f"delete slide image {image_key}", lambda: self._delete_blob(image_key))

        slide = Slide(
            id=new_id(),
            title=slide_title(number),
            description=description,
            image_url=image_url,
            created_at=utc_now_iso(),
        )
        try:
            updated = self.records.append_to_list(workshop_id, SLIDES_FIELD, record_to_dict(slide))
        except StorageError as exc:
            raise StorageError("Failed to add slide", self._compensate(exc, plan)) from exc

        if updated is None:
            # Deleted between the read above and the append.
            logger.warning(f"Workshop {workshop_id} disappeared before slide append")
            compensation = [step.as_dict() for step in plan.run()]
            raise NotFoundError("Workshop not found", {"id": workshop_id, "compensation": compensation})
        plan.clear()

        result = SlideAppend(slide=slide, workshop=Workshop.model_validate(updated))
        if not result.title_matches_position:
            logger.warning(
                f"Slide {slide.id} titled '{slide.title}' landed at position {result.position} "
                f"of workshop {workshop_id} (concurrent append)"
            )
        logger.info(f"Added slide {slide.id} to workshop {workshop_id}")
        return result

    def delete_workshop(self, workshop_id: str) -> DeletionReport:
        """
        Delete every blob under the workshop's storage folder, then the record.

        If any blob fails to delete the record is kept so the operation can be
        retried. A truncated listing is reported, not raised: the record is
        still deleted and the remaining blobs are left behind.
        """
        workshop = self.get_workshop(workshop_id)
        listing = self.objects.list_keys(workshop.storage_folder)

        if listing.keys:
            result = self.objects.delete_many(listing.keys)
            if not result.ok:
                logger.error(f"Failed to delete {len(result.failed)} objects of workshop {workshop_id}; record kept")
                raise StorageError(
                    "Failed to delete workshop objects",
                    {"id": workshop_id, "failed": result.failed, "deleted": len(result.deleted)},
                )
        if listing.truncated:
            message = (
                f"Workshop {workshop_id} has more than {len(listing.keys)} objects; "
                "not all of them were deleted"
            )
            logger.warning(message)
            warnings.warn(message, PartialDeletionWarning, stacklevel=2)

        self.records.delete(workshop_id)
        logger.info(f"Deleted workshop {workshop_id} ({len(listing.keys)} objects)")
        return DeletionReport(workshop_id=workshop_id, objects_deleted=len(listing.keys), truncated=listing.truncated)

    def check_storage(self) -> StorageCheck:
        return StorageCheck(
            object_store=_store_status(self.objects.backend, self.objects.ping),
            record_store=_store_status(self.records.backend, self.records.ping),
        )


def _store_status(backend: str, ping) -> StoreStatus:
    try:
        message = ping()
    except StorageError as exc:
        logger.error(f"{backend} connectivity check failed: {exc.message} {exc.details}")
        return StoreStatus(connected=False, backend=backend, message=f"{exc.message}: {exc.details.get('error', '')}")
    return StoreStatus(connected=True, backend=backend, message=message)
