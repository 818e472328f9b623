"""Collection endpoints: add, status change, rating, removal and cached reads."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.config import settings
from mediashelf.database import get_db
from mediashelf.services.collections import CacheTTLs, CollectionService

router = APIRouter()

MediaType = Literal["anime", "manga", "game"]
Status = Literal["completed", "watching", "plan-to-watch", "dropped", "on-hold"]


class CollectionEntryIn(BaseModel):
    media_id: int
    media_type: MediaType
    status: Status
    rating: Optional[float] = Field(None, ge=0, le=5)
    notes: Optional[str] = Field(None, max_length=5000)


class RatingIn(BaseModel):
    media_id: int
    media_type: MediaType
    rating: float = Field(..., ge=0, le=5)


class BulkCheckIn(BaseModel):
    media_type: MediaType
    media_ids: list[int] = Field(default_factory=list, max_length=500)


def _get_service(request: Request, db: AsyncSession) -> CollectionService:
    """Build the collection service for one request."""
    return CollectionService(
        db=db,
        cache=request.app.state.cache,
        ttls=CacheTTLs.from_settings(settings),
    )


def _entry_response(result, media_type: str) -> dict:
    return {"created": result.created, "entry": CollectionService.entry_dict(result.entry, media_type)}


@router.post("/users/{user_id}/collection")
async def upsert_entry(
    user_id: int,
    body: CollectionEntryIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Add a media or move it to another status. One entry per media."""
    service = _get_service(request, db)
    result = await service.upsert(
        user_id, body.media_id, body.media_type, body.status, body.rating, body.notes,
    )
    return _entry_response(result, body.media_type)


@router.post("/users/{user_id}/collection/add", status_code=201)
async def add_entry(
    user_id: int,
    body: CollectionEntryIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Add a media; 409 when it is already in the collection."""
    service = _get_service(request, db)
    result = await service.add(
        user_id, body.media_id, body.media_type, body.status, body.rating, body.notes,
    )
    return _entry_response(result, body.media_type)


@router.patch("/users/{user_id}/collection/rating")
async def update_rating(
    user_id: int,
    body: RatingIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    service = _get_service(request, db)
    rating = await service.update_rating(user_id, body.media_type, body.media_id, body.rating)
    return {"status": "ok", "rating": rating}


@router.delete("/users/{user_id}/collection/{media_type}/{media_id}", status_code=204)
async def remove_entry(
    user_id: int,
    media_type: MediaType,
    media_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    await _get_service(request, db).remove(user_id, media_type, media_id)
    return Response(status_code=204)


@router.get("/users/{user_id}/collection/check/{media_type}/{media_id}")
async def check_entry(
    user_id: int,
    media_type: MediaType,
    media_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).is_in_collection(user_id, media_type, media_id)


@router.post("/users/{user_id}/collection/check-bulk")
async def check_bulk(
    user_id: int,
    body: BulkCheckIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    found = await _get_service(request, db).check_bulk(user_id, body.media_type, body.media_ids)
    return {"found_ids": found}


@router.get("/users/{user_id}/collection/items")
async def list_items(
    user_id: int,
    request: Request,
    media_type: Optional[MediaType] = None,
    status: Optional[Status] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).list_items(user_id, media_type, status, page, limit)


@router.get("/users/{user_id}/collection/summary")
async def collection_summary(
    user_id: int,
    request: Request,
    view: Literal["own", "public"] = "own",
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).find_user_collections(user_id, own=view == "own")


@router.get("/users/{user_id}/collection/{media_type}/ratings")
async def ratings_distribution(
    user_id: int,
    media_type: MediaType,
    request: Request,
    status: Optional[Status] = None,
    view: Literal["own", "public"] = "own",
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).ratings_distribution(
        user_id, media_type, status, own=view == "own",
    )


@router.get("/media/{media_type}/{media_id}")
async def get_media(
    media_type: MediaType,
    media_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).get_media(media_type, media_id)


@router.get("/media/{media_type}/{media_id}/collectors")
async def media_collectors(
    media_type: MediaType,
    media_id: int,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    return await _get_service(request, db).media_collectors(media_type, media_id, page, limit)
