### tenant_backup/backups/tasks.py

"""
Celery Tasks for Async Backup Processing

The intake endpoint only records the job and enqueues it; the worker pulls
jobs from the backup queue one at a time and runs them here.
"""

from typing import Optional, Tuple

from celery import shared_task
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_backup.backups.exceptions import BackupError
from tenant_backup.backups.job_repository import BackupJobRepository
from tenant_backup.backups.models import BackupJobRecord
from tenant_backup.backups.notifications import BackupNotifier
from tenant_backup.backups.schemas import BackupJob, BackupRequest
from tenant_backup.backups.services import BackupService
from tenant_backup.core.config import Settings, get_settings
from tenant_backup.core.db import SessionLocal
from tenant_backup.utils.logger import get_logger
from tenant_backup.utils.s3_utils import S3Utils

logger = get_logger(__name__)

STALE_JOB_ERROR = "Worker stopped before the backup finished"


def build_backup_service(settings: Settings, notifier: BackupNotifier) -> BackupService:
    return BackupService(settings, S3Utils(settings), notifier)


@shared_task(name="backups.process_backup", bind=True, acks_late=True)
def process_backup(self, **message):
    """
    Celery task running one backup job.

    This task:
    1. Counts the delivery and claims the job (QUEUED -> RUNNING)
    2. Drops the delivery if another one already claimed the job, unless
       that claim is older than the job time limit (its worker died)
    3. Runs the backup pipeline
    4. Marks the job SUCCEEDED, or FAILED and alerts the admins

    A failed job is never retried; it has to be resubmitted.

    Args:
        **message: BackupJob fields as enqueued by submit_backup

    Returns:
        dict: Result summary
    """
    settings = get_settings()
    job_id = message.get("job_id")
    db = SessionLocal()
    jobs = BackupJobRepository(db)
    job = None

    try:
        job = BackupJob.model_validate(message)

        jobs.record_delivery(job.job_id)
        if not jobs.claim(job.job_id, self.request.id, stale_after=settings.backup_time_limit):
            logger.warning(
                f"Backup job {job.job_id} already claimed by another delivery; skipping"
            )
            return {"status": "skipped", "job_id": job.job_id}

        logger.info(
            f"Starting backup job {job.job_id}: tenant={job.tenant_id}, "
            f"database={job.source_connection.database}, assets={job.include_assets}"
        )

        notifier = BackupNotifier(settings)
        service = build_backup_service(settings, notifier)
        result = service.run(job)

        jobs.mark_succeeded(job.job_id, result.artifacts, result.notification_sent)
        logger.info(f"Backup job {job.job_id} completed: {result.artifacts.folder_path}")

        return {
            "status": "success",
            "job_id": job.job_id,
            "folder_path": result.artifacts.folder_path,
            "section_counts": result.artifacts.section_counts,
            "notification_sent": result.notification_sent,
        }

    except Exception as e:
        error_message = e.message if isinstance(e, BackupError) else str(e)
        logger.error(f"Error in process_backup for job {job_id}: {error_message}", exc_info=True)

        db.rollback()
        if job_id:
            jobs.mark_failed(job_id, error_message)
        if job is not None:
            alerted = BackupNotifier(settings).alert_failure(
                job.job_id,
                job.tenant_id,
                job.source_connection.database,
                str(job.recipient_email),
                error_message,
            )
            if not alerted:
                logger.error(f"Backup failure alert not delivered for job {job_id}")

        return {"status": "failed", "job_id": job_id, "error": error_message}

    finally:
        db.close()


@shared_task(name="backups.fail_stale_jobs")
def fail_stale_jobs():
    """
    Periodic sweep: a job still RUNNING past the job time limit lost its
    worker. Mark it FAILED and alert the admins.
    """
    settings = get_settings()
    db = SessionLocal()

    try:
        stale = BackupJobRepository(db).fail_stale(settings.backup_time_limit, STALE_JOB_ERROR)
        if not stale:
            return {"status": "success", "failed_jobs": []}

        notifier = BackupNotifier(settings)
        for record in stale:
            logger.error(f"Backup job {record.id} exceeded the time limit; marked FAILED")
            notifier.alert_failure(
                record.id,
                record.tenant_id,
                record.source_database,
                record.recipient_email,
                STALE_JOB_ERROR,
            )

        return {"status": "success", "failed_jobs": [record.id for record in stale]}

    except Exception as e:
        logger.error(f"Error sweeping stale backup jobs: {e}", exc_info=True)
        db.rollback()
        return {"status": "failed", "error": str(e)}

    finally:
        db.close()


def submit_backup(
    db: Session,
    request: BackupRequest,
    settings: Settings,
    idempotency_key: Optional[str] = None,
) -> Tuple[BackupJobRecord, bool]:
    """
    Record a backup job and put it on the backup queue.

    Returns:
        (record, created); created is False when the idempotency key matched an
        existing job, which is returned without enqueueing again.
    """
    jobs = BackupJobRepository(db)

    if idempotency_key:
        existing = jobs.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(f"Idempotency key matched backup job {existing.id}; not enqueueing")
            return existing, False

    try:
        record = jobs.create(request, idempotency_key)
    except IntegrityError:
        # Concurrent submission with the same key won the insert
        db.rollback()
        existing = jobs.get_by_idempotency_key(idempotency_key) if idempotency_key else None
        if existing is None:
            raise
        return existing, False

    job = BackupJob(job_id=record.id, **request.model_dump())
    try:
        task = process_backup.apply_async(
            kwargs=job.model_dump(mode="json"),
            queue=settings.backup_queue_name,
        )
    except Exception as e:
        logger.error(f"Failed to enqueue backup job {record.id}: {e}", exc_info=True)
        jobs.mark_failed(record.id, f"Failed to enqueue: {e}")
        raise BackupError(f"Failed to enqueue backup job: {e}", status_code=503) from e

    record.celery_task_id = task.id
    db.commit()

    logger.info(f"Triggered Celery task {task.id} for backup job {record.id}")
    return record, True
