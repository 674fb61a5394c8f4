"""
Pydantic schemas for the backup intake API, the queue message, and the
value objects passed between pipeline stages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from tenant_backup.backups.models import BackupStatus


class SourceConnection(BaseModel):
    """Connection parameters for the tenant's source database"""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Database server host")
    database: str = Field(..., min_length=1, description="Database name")
    user: str = Field(..., min_length=1, description="Database user")
    password: str = Field(..., min_length=1, description="Database password")
    port: Optional[int] = Field(None, description="Database port (driver default when empty)")


class BackupRequest(BaseModel):
    """Request schema for creating a backup job"""

    tenant_id: int = Field(..., gt=0, description="Tenant whose records are exported")

    recipient_email: EmailStr = Field(..., description="Who receives the retrieval links")

    source_connection: SourceConnection

    destination_bucket: str = Field(
        ...,
        min_length=1,
        description="Destination bucket; may embed a prefix as 'bucket/prefix'",
    )

    destination_prefix: Optional[str] = Field(
        None, description="Prefix override; replaces any prefix embedded in the bucket"
    )

    include_assets: bool = Field(False, description="Also archive referenced images")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "tenant_id": 21,
                "recipient_email": "support@example.com",
                "source_connection": {
                    "host": "10.0.0.12",
                    "database": "tenant_db",
                    "user": "backup_reader",
                    "password": "********",
                },
                "destination_bucket": "backups-bucket/clients",
                "destination_prefix": None,
                "include_assets": True,
            }
        }
    )


class BackupJob(BackupRequest):
    """Queue message: an accepted request plus its ledger id. Immutable."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(..., description="Ledger id of the job")


class BackupAcceptedResponse(BaseModel):
    """Response schema for backup job creation"""

    job_id: str = Field(..., description="Unique backup job ID")
    status: BackupStatus = Field(..., description="Current status of the job")
    message: str = Field(..., description="User-friendly status message")
    status_url: str = Field(..., description="URL to check job status")


class BackupJobStatusResponse(BaseModel):
    """Response schema for backup status check"""

    model_config = ConfigDict(from_attributes=True)

    job_id: str = Field(..., validation_alias=AliasChoices("id", "job_id"))
    tenant_id: int
    status: BackupStatus
    include_assets: bool
    deliveries: int
    folder_path: Optional[str] = None
    document_key: Optional[str] = None
    archive_key: Optional[str] = None
    manifest_key: Optional[str] = None
    total_assets: Optional[int] = None
    archived_assets: Optional[int] = None
    notification_sent: bool = False
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ArchiveManifest:
    """Outcome of the asset archive pipeline."""

    total_assets: int
    archived_assets: int
    archive_key: Optional[str] = None


@dataclass(frozen=True)
class AssetSummary:
    """What the notification says about the asset archive."""

    total_assets: int
    archived_assets: int
    archive_url: Optional[str] = None


@dataclass(frozen=True)
class BackupArtifacts:
    """Everything one job stored. Created once, never mutated."""

    folder_path: str
    document_key: str
    document_url: str
    manifest_key: str
    generated_at: datetime
    section_counts: Dict[str, int] = field(default_factory=dict)
    archive: Optional[ArchiveManifest] = None
    archive_url: Optional[str] = None

    @property
    def archive_key(self) -> Optional[str]:
        return self.archive.archive_key if self.archive else None


@dataclass(frozen=True)
class BackupResult:
    artifacts: BackupArtifacts
    notification_sent: bool
