"""
Database models for the backup job ledger.

One row per accepted backup request. The row is the source of truth for the
job's status, so a re-delivered queue message can be recognised and dropped
and a failed job leaves a visible trace.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenant_backup.core.db import Base


def utc_now() -> datetime:
    """Current UTC time, naive; the ledger's DateTime columns carry no zone."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupStatus(str, PyEnum):
    """Backup job status enumeration"""
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class BackupJobRecord(Base):
    """Ledger row for one backup job. Source credentials are never stored here."""

    __tablename__ = "backup_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Client supplied key; a repeated key returns the existing job",
    )

    # Request
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    source_host: Mapped[str] = mapped_column(String(255), nullable=False)
    source_database: Mapped[str] = mapped_column(String(255), nullable=False)
    destination_bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    destination_prefix: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    include_assets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Job status
    status: Mapped[BackupStatus] = mapped_column(
        Enum(BackupStatus),
        nullable=False,
        default=BackupStatus.QUEUED,
        index=True,
    )
    deliveries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Queue deliveries seen"
    )
    celery_task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Results
    folder_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    document_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    archive_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    manifest_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    total_assets: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    archived_assets: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Error Handling
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utc_now, index=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<BackupJobRecord(id={self.id}, tenant_id={self.tenant_id}, "
            f"status={self.status})>"
        )
