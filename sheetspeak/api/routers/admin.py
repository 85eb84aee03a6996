from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_session, get_storage, require_admin
from sheetspeak.services.admin import AdminStatsService
from sheetspeak.services.exceptions import InvalidRequest
from sheetspeak.services.storage import ObjectStorage

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/stats")
async def admin_stats(session: AsyncSession = Depends(get_session)) -> dict:
    return await AdminStatsService(session).stats()


@router.get("/usage")
async def admin_usage(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> dict:
    rows = await AdminStatsService(session).usage_rows(limit=limit, offset=offset)
    return {"usage": rows, "limit": limit, "offset": offset}


@router.get("/files")
async def admin_files(session: AsyncSession = Depends(get_session)) -> dict:
    return await AdminStatsService(session).file_rows()


@router.delete("/files")
async def admin_delete_file(
    file_id: str | None = Query(default=None, alias="id"),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> dict:
    if not file_id:
        raise InvalidRequest("File ID required")
    await AdminStatsService(session).delete_file(file_id, storage)
    return {"success": True}


__all__ = ["router"]
