from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class Channel(Base):
    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    # opaque credential reference handed to the uploader
    refresh_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    niches: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True)
    videos_per_day: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    watermark: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    videos: Mapped[list["Video"]] = relationship(
        back_populates="channel", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def has_credential(self) -> bool:
        return bool(self.refresh_token)


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    channel_id: Mapped[str] = mapped_column(
        sa.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_id: Mapped[str | None] = mapped_column(sa.String(128), nullable=True, index=True)
    type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    niche: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    title: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    script: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="ready", index=True)
    error_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    youtube_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True, index=True)
    url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    file_path: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    thumbnail_path: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    channel: Mapped[Channel] = relationship(back_populates="videos")
