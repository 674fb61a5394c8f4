# tenant_backup/backups/job_repository.py

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from tenant_backup.backups.exceptions import JobNotFoundError
from tenant_backup.backups.models import BackupJobRecord, BackupStatus, utc_now
from tenant_backup.backups.schemas import BackupArtifacts, BackupRequest
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)


class BackupJobRepository:
    """Data access for the backup job ledger."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self, request: BackupRequest, idempotency_key: Optional[str] = None
    ) -> BackupJobRecord:
        record = BackupJobRecord(
            idempotency_key=idempotency_key,
            tenant_id=request.tenant_id,
            recipient_email=str(request.recipient_email),
            source_host=request.source_connection.host,
            source_database=request.source_connection.database,
            destination_bucket=request.destination_bucket,
            destination_prefix=request.destination_prefix,
            include_assets=request.include_assets,
            status=BackupStatus.QUEUED,
            deliveries=0,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get(self, job_id: str) -> BackupJobRecord:
        record = self.db.get(BackupJobRecord, job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def get_by_idempotency_key(self, key: str) -> Optional[BackupJobRecord]:
        return (
            self.db.query(BackupJobRecord)
            .filter(BackupJobRecord.idempotency_key == key)
            .first()
        )

    def record_delivery(self, job_id: str) -> None:
        self.db.execute(
            update(BackupJobRecord)
            .where(BackupJobRecord.id == job_id)
            .values(deliveries=BackupJobRecord.deliveries + 1)
        )
        self.db.commit()

    def claim(
        self, job_id: str, task_id: Optional[str] = None, stale_after: Optional[int] = None
    ) -> bool:
        """
        Atomically move a job from QUEUED to RUNNING.

        With ``stale_after`` (seconds), a job left RUNNING for longer than that
        is taken over as well: its worker died without recording an outcome.

        Returns False when another delivery already claimed (or finished) it.
        """
        now = utc_now()
        claimable = BackupJobRecord.status == BackupStatus.QUEUED
        if stale_after is not None:
            claimable = or_(
                claimable,
                and_(
                    BackupJobRecord.status == BackupStatus.RUNNING,
                    BackupJobRecord.started_at < now - timedelta(seconds=stale_after),
                ),
            )

        values = {"status": BackupStatus.RUNNING, "started_at": now}
        if task_id:
            values["celery_task_id"] = task_id

        result = self.db.execute(
            update(BackupJobRecord)
            .where(BackupJobRecord.id == job_id, claimable)
            .values(**values)
        )
        self.db.commit()
        return result.rowcount == 1

    def fail_stale(self, stale_after: int, error_message: str) -> List[BackupJobRecord]:
        """
        Mark every job RUNNING for longer than ``stale_after`` seconds as FAILED.

        Each row is flipped with its own conditional UPDATE, so a job taken
        over by a redelivery in the meantime is left alone.
        """
        cutoff = utc_now() - timedelta(seconds=stale_after)
        is_stale = and_(
            BackupJobRecord.status == BackupStatus.RUNNING,
            BackupJobRecord.started_at < cutoff,
        )
        candidates = [
            job_id for (job_id,) in self.db.query(BackupJobRecord.id).filter(is_stale).all()
        ]

        failed = []
        for job_id in candidates:
            result = self.db.execute(
                update(BackupJobRecord)
                .where(BackupJobRecord.id == job_id, is_stale)
                .values(
                    status=BackupStatus.FAILED,
                    error_message=error_message,
                    completed_at=utc_now(),
                )
            )
            if result.rowcount == 1:
                failed.append(job_id)
        self.db.commit()

        return [self.get(job_id) for job_id in failed]

    def mark_succeeded(
        self, job_id: str, artifacts: BackupArtifacts, notification_sent: bool
    ) -> BackupJobRecord:
        record = self.get(job_id)
        record.status = BackupStatus.SUCCEEDED
        record.folder_path = artifacts.folder_path
        record.document_key = artifacts.document_key
        record.manifest_key = artifacts.manifest_key
        record.archive_key = artifacts.archive_key
        if artifacts.archive is not None:
            record.total_assets = artifacts.archive.total_assets
            record.archived_assets = artifacts.archive.archived_assets
        record.notification_sent = notification_sent
        record.error_message = None
        record.completed_at = utc_now()
        self.db.commit()
        return record

    def mark_failed(self, job_id: str, error_message: str) -> None:
        try:
            record = self.get(job_id)
            record.status = BackupStatus.FAILED
            record.error_message = error_message
            record.completed_at = utc_now()
            self.db.commit()
        except Exception as commit_error:
            logger.error(f"Failed to update backup job status: {commit_error}")
            self.db.rollback()
