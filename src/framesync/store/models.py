"""SQLAlchemy models for framesync.

This module defines the database schema using SQLAlchemy ORM.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from framesync.core.config import DEFAULT_DEVICE_PATH
from framesync.core.types import ConnectionType, SyncPolicy


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class Device(Base):
    """Represents a registered photo frame."""

    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    connection_type: Mapped[str] = mapped_column(
        String(16), default=ConnectionType.USB.value, nullable=False
    )
    network_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    network_port: Mapped[int] = mapped_column(Integer, default=5555, nullable=False)
    device_path: Mapped[str] = mapped_column(Text, default=DEFAULT_DEVICE_PATH, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    mappings: Mapped[list[SyncMapping]] = relationship(
        "SyncMapping", back_populates="device", cascade="all, delete-orphan", passive_deletes=True
    )


class Source(Base):
    """Represents a configured photo source."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    config_json: Mapped[str] = mapped_column("config", Text, default="{}", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    mappings: Mapped[list[SyncMapping]] = relationship(
        "SyncMapping", back_populates="source", cascade="all, delete-orphan", passive_deletes=True
    )
    tokens: Mapped[list[OAuthToken]] = relationship(
        "OAuthToken", back_populates="source", cascade="all, delete-orphan", passive_deletes=True
    )

    # Indexes
    __table_args__ = (Index("idx_sources_type", "type"),)

    @property
    def config(self) -> dict[str, Any]:
        """Source-specific configuration."""
        if not self.config_json:
            return {}
        return dict(json.loads(self.config_json))


class OAuthToken(Base):
    """Stored OAuth credentials for a cloud source."""

    __tablename__ = "oauth_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str] = mapped_column(String(32), default="Bearer", nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    source: Mapped[Source] = relationship("Source", back_populates="tokens")

    __table_args__ = (UniqueConstraint("source_id", "provider", name="uq_tokens_source_provider"),)


class SyncMapping(Base):
    """Binds one source to one device under a sync policy."""

    __tablename__ = "sync_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    device_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    policy: Mapped[str] = mapped_column(
        "sync_mode", String(16), default=SyncPolicy.ADD_ONLY.value, nullable=False
    )
    max_photos: Mapped[int | None] = mapped_column(Integer, nullable=True)
    schedule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    source: Mapped[Source] = relationship("Source", back_populates="mappings")
    device: Mapped[Device] = relationship("Device", back_populates="mappings")
    synced_photos: Mapped[list[SyncedPhoto]] = relationship(
        "SyncedPhoto", back_populates="mapping", cascade="all, delete-orphan", passive_deletes=True
    )

    # Indexes
    __table_args__ = (
        UniqueConstraint("source_id", "device_id", name="uq_mappings_source_device"),
        Index("idx_sync_mappings_source", "source_id"),
        Index("idx_sync_mappings_device", "device_id"),
    )

    @property
    def sync_policy(self) -> SyncPolicy:
        """Policy as an enum member."""
        return SyncPolicy(self.policy)


class SyncedPhoto(Base):
    """A photo believed present on a device for one mapping (ledger entry)."""

    __tablename__ = "synced_photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mapping_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_mappings.id", ondelete="CASCADE"), nullable=False
    )
    source_photo_id: Mapped[str] = mapped_column(Text, nullable=False)
    source_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    mapping: Mapped[SyncMapping] = relationship("SyncMapping", back_populates="synced_photos")

    # Indexes
    __table_args__ = (
        UniqueConstraint("mapping_id", "source_photo_id", name="uq_synced_mapping_photo"),
        Index("idx_synced_photos_mapping", "mapping_id"),
        Index("idx_synced_photos_hash", "file_hash"),
    )


class SyncLog(Base):
    """Append-only run log entry."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mapping_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sync_mappings.id", ondelete="SET NULL"), nullable=True
    )
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[str | None] = mapped_column("details", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Indexes
    __table_args__ = (
        Index("idx_sync_logs_mapping", "mapping_id"),
        Index("idx_sync_logs_created", "created_at"),
    )

    @property
    def details(self) -> dict[str, Any] | None:
        """Structured details, if any were recorded."""
        if not self.details_json:
            return None
        return dict(json.loads(self.details_json))
