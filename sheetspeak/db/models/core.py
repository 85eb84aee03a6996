"""SQLAlchemy models mirroring the Postgres schema."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sheetspeak.db.base import Base, TimestampMixin
from sheetspeak.utils.datetime import utc_now

SUBSCRIPTION_STATUSES = (
    "active",
    "trialing",
    "past_due",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "unpaid",
    "paused",
)
CONVERSION_STATUSES = ("pending", "processing", "completed", "error")


class User(TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("auth_id", name="uq_users_auth_id"),)

    auth_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    username: Mapped[str | None] = mapped_column(String(64))
    role: Mapped[str] = mapped_column(
        Enum("user", "admin", name="user_role"), default="user", nullable=False
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    tts_settings: Mapped["UserTtsSettings | None"] = relationship(
        back_populates="user", uselist=False
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserTtsSettings(TimestampMixin, Base):
    __tablename__ = "user_tts_settings"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    tts_service: Mapped[str] = mapped_column(String(32), nullable=False, default="polly")
    # Custom vendor credential; presence exempts the user from quota checks.
    api_key: Mapped[str | None] = mapped_column(Text)
    aws_secret_key: Mapped[str | None] = mapped_column(Text)
    aws_region: Mapped[str | None] = mapped_column(String(32))
    aws_polly_voice: Mapped[str | None] = mapped_column(String(64))
    elevenlabs_voice_id: Mapped[str | None] = mapped_column(String(64))
    elevenlabs_stability: Mapped[float | None] = mapped_column()
    elevenlabs_similarity_boost: Mapped[float | None] = mapped_column()
    neuphonic_voice_id: Mapped[str | None] = mapped_column(String(64))
    neuphonic_lang_code: Mapped[str | None] = mapped_column(String(8))
    neuphonic_model: Mapped[str | None] = mapped_column(String(32))

    user: Mapped[User] = relationship(back_populates="tts_settings")

    @property
    def has_custom_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class SubscriptionTier(TimestampMixin, Base):
    __tablename__ = "subscription_tiers"
    __table_args__ = (UniqueConstraint("code", name="uq_subscription_tiers_code"),)

    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # Price in cents, passed to Stripe as unit_amount.
    monthly_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_character_limit: Mapped[int | None] = mapped_column(Integer)
    monthly_character_limit: Mapped[int | None] = mapped_column(Integer)
    yearly_character_limit: Mapped[int | None] = mapped_column(Integer)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_default: Mapped[bool] = mapped_column(default=False)
    is_active: Mapped[bool] = mapped_column(default=True)

    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="tier")


class Subscription(TimestampMixin, Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_id"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    tier_id: Mapped[int] = mapped_column(ForeignKey("subscription_tiers.id"))
    status: Mapped[str] = mapped_column(
        Enum(*SUBSCRIPTION_STATUSES, name="subscription_status"),
        default="active",
        nullable=False,
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255))
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(default=False)

    user: Mapped[User] = relationship(back_populates="subscriptions")
    tier: Mapped[SubscriptionTier] = relationship(back_populates="subscriptions")


class UsageRecord(Base):
    """One row per completed synthesis call. Append-only."""

    __tablename__ = "tts_usage"
    __table_args__ = (Index("ix_tts_usage_user_date", "user_id", "synthesis_date"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    characters_synthesized: Mapped[int] = mapped_column(Integer, nullable=False)
    voice_id: Mapped[str | None] = mapped_column(String(64))
    provider: Mapped[str] = mapped_column(String(32), default="polly", nullable=False)
    content_hash: Mapped[str | None] = mapped_column(String(64))
    synthesis_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    user: Mapped[User] = relationship()


class StoredFile(TimestampMixin, Base):
    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("file_key", name="uq_files_file_key"),
        Index("ix_files_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    file_key: Mapped[str] = mapped_column(
        String(36), nullable=False, default=lambda: str(uuid.uuid4())
    )
    file_path: Mapped[str | None] = mapped_column(String(512))
    file_type: Mapped[str] = mapped_column(String(64), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    character_count: Mapped[int] = mapped_column(Integer, default=0)
    conversion_status: Mapped[str] = mapped_column(
        Enum(*CONVERSION_STATUSES, name="conversion_status"),
        default="pending",
        nullable=False,
    )
    provider: Mapped[str | None] = mapped_column(String(32))
    voice_id: Mapped[str | None] = mapped_column(String(64))
    content_hash: Mapped[str | None] = mapped_column(String(64))
    audio_file_path: Mapped[str | None] = mapped_column(String(512))
    source_file_id: Mapped[int | None] = mapped_column(
        ForeignKey("files.id", ondelete="SET NULL")
    )
    conversion_error: Mapped[str | None] = mapped_column(Text)

    user: Mapped[User] = relationship()


class SpeechMessage(TimestampMixin, Base):
    """Text the user had spoken, linked to the generated audio file."""

    __tablename__ = "speech_messages"
    __table_args__ = (Index("ix_speech_messages_user_created", "user_id", "created_at"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    file_id: Mapped[int | None] = mapped_column(ForeignKey("files.id", ondelete="SET NULL"))
    text: Mapped[str] = mapped_column(Text, nullable=False)
    voice_id: Mapped[str | None] = mapped_column(String(64))
    tts_service: Mapped[str] = mapped_column(String(32), default="Amazon", nullable=False)
    characters: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    user: Mapped[User] = relationship()
    file: Mapped[StoredFile | None] = relationship()


__all__ = [
    "CONVERSION_STATUSES",
    "SUBSCRIPTION_STATUSES",
    "SpeechMessage",
    "StoredFile",
    "Subscription",
    "SubscriptionTier",
    "UsageRecord",
    "User",
    "UserTtsSettings",
]
