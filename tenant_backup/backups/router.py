### tenant_backup/backups/router.py

"""
Backup API Endpoints

Accepts backup requests and reports job status. The backup itself runs on a
worker; the requester receives the links by email.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from tenant_backup.backups.exceptions import BackupError
from tenant_backup.backups.job_repository import BackupJobRepository
from tenant_backup.backups.schemas import (
    BackupAcceptedResponse,
    BackupJobStatusResponse,
    BackupRequest,
)
from tenant_backup.backups.tasks import submit_backup
from tenant_backup.core.config import Settings, get_settings
from tenant_backup.core.db import get_db
from tenant_backup.core.security import verify_api_key
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/backup",
    tags=["Backups"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("/export", response_model=BackupAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
def request_backup(
    backup_request: BackupRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Create a backup job and queue it for processing.

    Returns immediately with the job ID and status URL. Sending the same
    `Idempotency-Key` again returns the original job instead of a new one.
    """
    try:
        record, created = submit_backup(db, backup_request, settings, idempotency_key)
    except BackupError as e:
        logger.warning(f"Backup request rejected: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except Exception as e:
        logger.error(f"Error creating backup job: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create backup job",
        ) from e

    logger.info(
        f"Backup job {record.id} {'queued' if created else 'already exists'} "
        f"for tenant {backup_request.tenant_id}"
    )

    message = (
        "Backup queued. The download links will be emailed when it completes."
        if created
        else "A backup job with this idempotency key already exists."
    )
    return BackupAcceptedResponse(
        job_id=record.id,
        status=record.status,
        message=message,
        status_url=f"/backup/{record.id}/status",
    )


@router.get("/{job_id}/status", response_model=BackupJobStatusResponse)
def get_backup_status(job_id: str, db: Session = Depends(get_db)):
    """
    Check the status of a backup job.

    **Status Values:**
    - QUEUED: accepted, waiting for a worker
    - RUNNING: being generated
    - SUCCEEDED: artifacts stored (see notification_sent for the email)
    - FAILED: see error_message; resubmit to try again
    """
    try:
        record = BackupJobRepository(db).get(job_id)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    return BackupJobStatusResponse.model_validate(record)
