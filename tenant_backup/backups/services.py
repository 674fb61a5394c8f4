# tenant_backup/backups/services.py

"""
Backup orchestration: runs one job end to end.

    resolve destination -> folder marker -> workbook (streamed upload)
    -> [asset archive (streamed upload)] -> README.txt -> email
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from tenant_backup.backups.archive_service import AssetArchiveService, collect_references
from tenant_backup.backups.exceptions import BackupError, InvalidDestinationError
from tenant_backup.backups.notifications import BackupNotifier
from tenant_backup.backups.repository import SourceDatabase
from tenant_backup.backups.schemas import (
    ArchiveManifest,
    AssetSummary,
    BackupArtifacts,
    BackupJob,
    BackupResult,
    SourceConnection,
)
from tenant_backup.backups.sections import (
    ASSET_REFERENCE_FIELD,
    ASSET_SOURCE,
    SECTION_SPECS,
    SectionSource,
    SectionSpec,
)
from tenant_backup.backups.streaming_service import XLSX_CONTENT_TYPE, StreamingWorkbookWriter
from tenant_backup.core.config import Settings
from tenant_backup.utils.conduit import run_pipeline
from tenant_backup.utils.logger import get_logger
from tenant_backup.utils.s3_utils import S3Utils, join_key

logger = get_logger(__name__)

BACKUP_ROOT = "backup-temp"
DOCUMENT_NAME = "DOCUMENT.xlsx"
MANIFEST_NAME = "README.txt"
ARCHIVE_NAME = "ASSETS.zip"


@dataclass(frozen=True)
class Destination:
    bucket: str
    prefix: str = ""


def resolve_destination(bucket_value: str, prefix_override: Optional[str] = None) -> Destination:
    """
    Split 'bucket/some/prefix' into bucket and prefix. An explicit override
    replaces the embedded prefix entirely.
    """
    bucket, _, embedded = (bucket_value or "").strip().partition("/")
    if not bucket:
        raise InvalidDestinationError(f"Invalid destination bucket '{bucket_value}'")

    prefix = embedded.strip("/")
    if prefix_override and prefix_override.strip("/"):
        prefix = prefix_override.strip("/")
    return Destination(bucket=bucket, prefix=prefix)


def folder_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 without fractional seconds or zone, ':' replaced by '-'."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


def build_folder_name(tenant_id: int, moment: datetime) -> str:
    return f"BACKUP_{tenant_id}_{folder_timestamp(moment)}"


def build_folder_path(destination: Destination, database: str, folder_name: str) -> str:
    return join_key(destination.prefix, BACKUP_ROOT, database, folder_name)


def render_manifest(
    tenant_id: int,
    database: str,
    generated_at: datetime,
    archive: Optional[ArchiveManifest] = None,
) -> str:
    """Plain-text README listing the stored artifacts. Never the document size."""
    lines = [
        f"FULL BACKUP - TENANT {tenant_id}",
        f"Database: {database}",
        f"Generated at: {generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
        "Files:",
        f"- {DOCUMENT_NAME}",
    ]
    if archive is not None and archive.archive_key:
        lines.append(
            f"- {ARCHIVE_NAME} ({archive.archived_assets} of {archive.total_assets} images)"
        )
    return "\n".join(lines) + "\n"


class BackupService:
    """Runs a backup job: document, optional asset archive, README and email."""

    def __init__(
        self,
        settings: Settings,
        s3: S3Utils,
        notifier: BackupNotifier,
        sections: Sequence[SectionSpec] = SECTION_SPECS,
        asset_source: SectionSource = ASSET_SOURCE,
        source_db_factory: Optional[Callable[[SourceConnection], object]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.s3 = s3
        self.notifier = notifier
        self.sections = tuple(sections)
        self.asset_source = asset_source
        self.source_db_factory = source_db_factory or (
            lambda connection: SourceDatabase(connection, settings)
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.archive_service = AssetArchiveService(
            s3,
            compression_level=settings.archive_compression_level,
            chunk_size=settings.conduit_chunk_size,
            conduit_max_chunks=settings.conduit_max_chunks,
        )

    def run(self, job: BackupJob) -> BackupResult:
        """
        Execute the whole pipeline for one job.

        Raises:
            BackupError: document generation/upload or README upload failed.
                Nothing is announced to the requester in that case.
        """
        generated_at = self.clock()
        database = job.source_connection.database
        destination = resolve_destination(job.destination_bucket, job.destination_prefix)
        folder_path = build_folder_path(
            destination, database, build_folder_name(job.tenant_id, generated_at)
        )
        logger.info(
            f"Starting backup for tenant {job.tenant_id}",
            job_id=job.job_id,
            bucket=destination.bucket,
            folder=folder_path,
        )

        if self.s3.folder_exists(destination.bucket, folder_path):
            logger.info(f"Backup folder already exists: {folder_path}")
        else:
            self.s3.create_folder(destination.bucket, folder_path)

        source_db = self.source_db_factory(job.source_connection)

        document_key = f"{folder_path}/{DOCUMENT_NAME}"
        section_counts = self._upload_document(
            job.tenant_id, source_db, destination.bucket, document_key
        )
        document_url = self.s3.presign(
            destination.bucket, document_key, self.settings.presigned_url_ttl
        )
        logger.info(f"Backup document uploaded: {document_key}")

        archive = None
        archive_url = None
        if job.include_assets:
            archive = self._archive_assets(job, source_db, destination, folder_path)
            if archive is not None and archive.archive_key:
                archive_url = self.s3.presign(
                    destination.bucket, archive.archive_key, self.settings.presigned_url_ttl
                )

        manifest_key = f"{folder_path}/{MANIFEST_NAME}"
        self.s3.put_object(
            destination.bucket,
            manifest_key,
            render_manifest(job.tenant_id, database, generated_at, archive),
            "text/plain; charset=utf-8",
        )

        artifacts = BackupArtifacts(
            folder_path=folder_path,
            document_key=document_key,
            document_url=document_url,
            manifest_key=manifest_key,
            generated_at=generated_at,
            section_counts=section_counts,
            archive=archive,
            archive_url=archive_url,
        )

        notification_sent = self._notify(job, artifacts)
        logger.info(
            f"Backup finished for tenant {job.tenant_id}",
            job_id=job.job_id,
            notification_sent=notification_sent,
        )
        return BackupResult(artifacts=artifacts, notification_sent=notification_sent)

    def _upload_document(self, tenant_id: int, source_db, bucket: str, key: str):
        writer = StreamingWorkbookWriter(self.sections)

        def produce(output):
            return writer.write(tenant_id, source_db, output)

        def consume(reader):
            self.s3.put_object_stream(bucket, key, reader, XLSX_CONTENT_TYPE)

        return run_pipeline(
            produce,
            consume,
            max_chunks=self.settings.conduit_max_chunks,
            name="document-upload",
        )

    def _archive_assets(
        self, job: BackupJob, source_db, destination: Destination, folder_path: str
    ) -> Optional[ArchiveManifest]:
        """
        Archive referenced images. Failures here never fail the job; they
        leave the backup without an archive.
        """
        references = []
        try:
            records = self.asset_source(job.tenant_id, source_db)
            references = collect_references(records or [], ASSET_REFERENCE_FIELD)
            del records
            logger.info(f"Asset references found: {len(references)}")

            if not references:
                return None

            return self.archive_service.build_archive(
                references,
                source_bucket=destination.bucket,
                source_prefix=destination.prefix,
                destination_bucket=destination.bucket,
                destination_key=f"{folder_path}/{ARCHIVE_NAME}",
            )
        except Exception as e:
            logger.error(f"Error archiving assets: {e}", job_id=job.job_id, exc_info=True)
            return ArchiveManifest(
                total_assets=len(references), archived_assets=0, archive_key=None
            )

    def _notify(self, job: BackupJob, artifacts: BackupArtifacts) -> bool:
        summary = None
        if artifacts.archive is not None:
            summary = AssetSummary(
                total_assets=artifacts.archive.total_assets,
                archived_assets=artifacts.archive.archived_assets,
                archive_url=artifacts.archive_url,
            )
        try:
            self.notifier.notify(
                str(job.recipient_email),
                job.tenant_id,
                artifacts.document_url,
                job.source_connection.database,
                summary,
            )
            return True
        except BackupError as e:
            logger.error(f"Backup email not delivered: {e.message}", job_id=job.job_id)
            return False
