"""Aggregate statistics for the admin dashboard."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.db.models.core import StoredFile, UsageRecord, User
from sheetspeak.logging import logger
from sheetspeak.services.documents import remove_stored_file
from sheetspeak.services.exceptions import NotFound
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.services.usage import UsageRecorder
from sheetspeak.utils.datetime import ensure_utc, utc_now


def format_character_count(characters: int) -> str:
    if characters < 1_000:
        return f"{characters} chars"
    if characters < 1_000_000:
        return f"{characters / 1_000:.1f}K chars"
    return f"{characters / 1_000_000:.1f}M chars"


def _email_name(email: str | None) -> str:
    return email.split("@")[0] if email else "Unknown"


class AdminStatsService:
    def __init__(self, session: AsyncSession, *, trend_days: int = 7) -> None:
        self.session = session
        self.trend_days = trend_days

    async def stats(self, now: datetime | None = None) -> dict[str, Any]:
        now = ensure_utc(now) or utc_now()
        one_day_ago = now - timedelta(days=1)
        recorder = UsageRecorder(self.session)

        total_users = await self._scalar(select(func.count(User.id)))
        total_files = await self._scalar(select(func.count(StoredFile.id)))
        completed_files = await self._scalar(
            select(func.count(StoredFile.id)).where(StoredFile.conversion_status == "completed")
        )
        daily_total = await recorder.total_since(one_day_ago)
        trends = await recorder.daily_history(None, days=self.trend_days, now=now)

        return {
            "totalUsers": total_users,
            "dailyTotal": daily_total,
            "trends": [item.as_dict() for item in trends],
            "users": await self._user_rows(one_day_ago),
            "totalFiles": total_files,
            "successRate": round(completed_files * 100 / total_files) if total_files else 0,
        }

    async def usage_rows(self, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
        stmt = (
            select(UsageRecord, User.email)
            .join(User, User.id == UsageRecord.user_id)
            .order_by(UsageRecord.synthesis_date.desc(), UsageRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return [
            {
                "id": record.id,
                "userId": record.user_id,
                "email": email,
                "charactersSynthesized": record.characters_synthesized,
                "voiceId": record.voice_id,
                "provider": record.provider,
                "synthesisDate": ensure_utc(record.synthesis_date).isoformat(),
            }
            for record, email in result.all()
        ]

    async def file_rows(self) -> dict[str, Any]:
        """Every stored file, newest first, with its owner and a readable size."""

        stmt = (
            select(StoredFile, User.email)
            .outerjoin(User, User.id == StoredFile.user_id)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
        )
        result = await self.session.execute(stmt)
        files = []
        for record, email in result.all():
            created_at = ensure_utc(record.created_at)
            files.append(
                {
                    "id": record.file_key,
                    "name": record.original_name,
                    "user": _email_name(email),
                    "status": record.conversion_status or "processing",
                    "createdAt": created_at.isoformat() if created_at else None,
                    "size": format_character_count(record.character_count or 0),
                }
            )
        completed = sum(1 for item in files if item["status"] == "completed")
        return {
            "files": files,
            "totalFiles": len(files),
            "successRate": round(completed * 100 / len(files)) if files else 0,
        }

    async def delete_file(self, file_key: str, storage: ObjectStorage) -> None:
        stmt = select(StoredFile).where(StoredFile.file_key == file_key)
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        if record is None:
            raise NotFound("File not found")
        await remove_stored_file(self.session, storage, record)
        logger.info("admin_file_deleted", file_id=file_key, owner_id=record.user_id)

    async def _user_rows(self, active_since: datetime) -> list[dict[str, Any]]:
        usage = (
            select(
                UsageRecord.user_id.label("user_id"),
                func.sum(UsageRecord.characters_synthesized).label("characters"),
                func.max(UsageRecord.synthesis_date).label("last_active"),
            )
            .group_by(UsageRecord.user_id)
            .subquery()
        )
        stmt = (
            select(User, usage.c.characters, usage.c.last_active)
            .outerjoin(usage, usage.c.user_id == User.id)
            .order_by(User.id)
        )
        result = await self.session.execute(stmt)
        rows = []
        for user, characters, last_active in result.all():
            last_active = ensure_utc(_as_datetime(last_active))
            rows.append(
                {
                    "id": user.id,
                    "email": user.email,
                    "username": user.username or _email_name(user.email),
                    "isActive": bool(last_active and last_active >= active_since),
                    "charactersUsed": int(characters or 0),
                    "lastActive": last_active.isoformat() if last_active else "Never",
                }
            )
        return rows

    async def _scalar(self, stmt) -> int:
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)


def _as_datetime(value: Any) -> datetime | None:
    # SQLite hands back aggregates over DateTime columns as strings.
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


__all__ = ["AdminStatsService", "format_character_count"]
