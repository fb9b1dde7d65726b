from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .configuration import cors_origins, is_production, load_settings
from .exceptions import NotFoundError, StorageError, UnsupportedMediaError, ValidationError, WorkshopError
from .models import (
    ImageUpload,
    MessageResponse,
    SlideCreated,
    StorageCheck,
    Workshop,
    WorkshopCreated,
    WorkshopFields,
    WorkshopSummary,
)
from .workshop_service import WorkshopService

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, str(settings.app.log_level).upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app.name, version=settings.app.version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    UnsupportedMediaError: 415,
    StorageError: 500,
}


@lru_cache(maxsize=1)
def get_workshop_service() -> WorkshopService:
    """Build the shared service on first use; the stores inside are safe to share across requests."""
    logger.info(
        f"Initializing workshop service (objects={settings.storage.object_backend}, "
        f"records={settings.storage.record_backend})"
    )
    return WorkshopService.from_settings(settings)


@app.exception_handler(WorkshopError)
async def workshop_error_handler(request: Request, exc: WorkshopError) -> JSONResponse:
    status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    content: Dict[str, Any] = {"detail": exc.message}
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.details}")
        if not is_production(settings):
            content["context"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    if is_production(settings):
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "context": {"error": str(exc)}})


async def _read_image(file: Optional[UploadFile], limit: int) -> Optional[ImageUpload]:
    """Read at most ``limit + 1`` bytes so an oversized upload is caught without buffering all of it."""
    if file is None:
        return None
    data = await file.read(limit + 1)
    await file.close()
    return ImageUpload(data=data, content_type=file.content_type, filename=file.filename)


@app.get("/")
def index() -> Dict[str, Any]:
    return {
        "message": f"{settings.app.name} running",
        "version": settings.app.version,
        "routes": {
            "health": "GET /healthz",
            "storage_check": "GET /storage/check",
            "workshops": {
                "create": "POST /workshops",
                "list": "GET /workshops",
                "get": "GET /workshops/{workshop_id}",
                "delete": "DELETE /workshops/{workshop_id}",
            },
            "slides": {"add": "POST /workshops/{workshop_id}/slides"},
        },
    }


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/storage/check", response_model=StorageCheck)
def storage_check(service: WorkshopService = Depends(get_workshop_service)) -> JSONResponse:
    check = service.check_storage()
    healthy = check.object_store.connected and check.record_store.connected
    return JSONResponse(status_code=200 if healthy else 503, content=check.model_dump(by_alias=True))


@app.post("/workshops", response_model=WorkshopCreated, status_code=201)
async def create_workshop(
    name: str = Form(""),
    description: str = Form(""),
    duration: Optional[str] = Form(None),
    difficulty: Optional[str] = Form(None),
    materials: Optional[str] = Form(None),
    objectives: Optional[str] = Form(None),
    purposes: Optional[str] = Form(None),
    science: Optional[str] = Form(None),
    technology: Optional[str] = Form(None),
    engineering: Optional[str] = Form(None),
    mathematics: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    service: WorkshopService = Depends(get_workshop_service),
) -> WorkshopCreated:
    fields = WorkshopFields(
        name=name.strip(),
        description=description.strip(),
        duration=duration or None,
        difficulty=difficulty or None,
        materials=materials or None,
        objectives=objectives or None,
        purposes=purposes or None,
        science=science or None,
        technology=technology or None,
        engineering=engineering or None,
        mathematics=mathematics or None,
    )
    image = await _read_image(cover, service.max_upload_bytes)
    workshop = await run_in_threadpool(service.create_workshop, fields, image)
    return workshop.to_created()


@app.get("/workshops", response_model=List[WorkshopSummary])
def list_workshops(service: WorkshopService = Depends(get_workshop_service)) -> List[WorkshopSummary]:
    return service.list_workshops()


@app.get("/workshops/{workshop_id}", response_model=Workshop)
def get_workshop(workshop_id: str, service: WorkshopService = Depends(get_workshop_service)) -> Workshop:
    return service.get_workshop(workshop_id)


@app.delete("/workshops/{workshop_id}", response_model=MessageResponse)
def delete_workshop(workshop_id: str, service: WorkshopService = Depends(get_workshop_service)) -> MessageResponse:
    return service.delete_workshop(workshop_id).to_message()


@app.post("/workshops/{workshop_id}/slides", response_model=SlideCreated, status_code=201)
async def add_slide(
    workshop_id: str,
    description: str = Form(""),
    image: Optional[UploadFile] = File(None),
    service: WorkshopService = Depends(get_workshop_service),
) -> SlideCreated:
    upload = await _read_image(image, service.max_upload_bytes)
    result = await run_in_threadpool(service.add_slide, workshop_id, description.strip(), upload)
    return result.to_response()
