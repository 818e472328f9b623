"""MyAnimeList import jobs and list export."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.config import settings
from mediashelf.database import get_db
from mediashelf.errors import NotFoundError
from mediashelf.models.tables import User
from mediashelf.services.collections import CacheTTLs
from mediashelf.services.exporter import CollectionExporter, export_filename
from mediashelf.services.import_jobs import ImportJobData
from mediashelf.services.importer import CollectionImportService, ImportItem

router = APIRouter()


class ImportItemIn(BaseModel):
    type: Literal["anime", "manga"]
    title: str = Field(..., min_length=1, max_length=500)
    status: str = ""
    score: Optional[float] = Field(None, ge=0, le=10)
    external_id: Optional[int] = None
    progress: Optional[int] = Field(None, ge=0)


class ImportRequest(BaseModel):
    items: list[ImportItemIn] = Field(default_factory=list, max_length=20000)


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


@router.post("/users/{user_id}/import/mal", status_code=202)
async def import_mal(
    user_id: int,
    body: ImportRequest,
    request: Request,
    response: Response,
    wait: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Queue a MAL list import. With wait=true the batch runs inline."""
    user = await _get_user(db, user_id)
    items = [ImportItem(**item.model_dump()) for item in body.items]

    if wait:
        service = CollectionImportService(
            db,
            request.app.state.cache,
            getattr(request.app.state, "metadata", None),
            CacheTTLs.from_settings(settings),
        )
        summary = await service.import_batch(user.id, items)
        response.status_code = 200
        return summary.to_dict()

    job = request.app.state.import_queue.enqueue(
        ImportJobData(user_id=user.id, user_email=user.email or "", username=user.username, items=items)
    )
    return {"job_id": job.id, "status": job.status, "total": len(items)}


@router.get("/import/jobs/{job_id}")
async def import_job_status(job_id: str, request: Request):
    return request.app.state.import_queue.get(job_id).to_dict()


@router.get("/users/{user_id}/export/mal")
async def export_mal(
    user_id: int,
    media_type: Literal["anime", "manga"] = Query("anime"),
    db: AsyncSession = Depends(get_db),
):
    """Download the collection as a MAL XML list."""
    await _get_user(db, user_id)
    xml = await CollectionExporter(db).export_collection(user_id, media_type)
    filename = export_filename(user_id, media_type)
    return Response(
        content=xml,
        media_type="application/xml; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
