"""
Asset Archive Pipeline

Fetches every referenced asset from S3, appends it to a ZIP archive and
uploads the archive, all in one pass:

    fetch -> append/compress (producer thread) -> conduit -> upload (caller)

The upload starts before the first entry is appended, so the finished archive
is never held in memory or on disk. Each asset is read in full into a spool
(memory up to spool_max_size, then a temp file) before it is appended; an
asset whose read fails is skipped without touching the archive.
"""

import os
import shutil
import tempfile
import threading
import zipfile
from typing import Any, BinaryIO, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError

from tenant_backup.backups.exceptions import StorageError
from tenant_backup.backups.schemas import ArchiveManifest
from tenant_backup.utils.conduit import ConduitWriter, run_pipeline
from tenant_backup.utils.logger import get_logger
from tenant_backup.utils.s3_utils import S3Utils

logger = get_logger(__name__)

ZIP_CONTENT_TYPE = "application/zip"
PLACEHOLDER_EXTENSION = ".jpg"


def collect_references(records: Iterable[Dict[str, Any]], field: str) -> List[str]:
    """
    Non-empty string references from ``records[field]``, trimmed and
    de-duplicated by exact value. First occurrence wins the position.
    """
    references = (
        record.get(field).strip()
        for record in records
        if isinstance(record.get(field), str) and record.get(field).strip()
    )
    return list(dict.fromkeys(references))


def entry_name(reference: str, ordinal: int) -> str:
    """Last path segment of the reference, or '<ordinal>.jpg' when there is none."""
    return reference.split("/")[-1] or f"{ordinal}{PLACEHOLDER_EXTENSION}"


class ArchiveWriter:
    """
    Owns one ZipFile writing to a (non-seekable) stream.

    All appends go through a lock, so the archive can only ever be written by
    one caller at a time.
    """

    def __init__(self, fileobj: BinaryIO, compression_level: int = 9, chunk_size: int = 64 * 1024):
        self._zip = zipfile.ZipFile(
            fileobj,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compression_level,
            allowZip64=True,
        )
        self._lock = threading.Lock()
        self._names: set = set()
        self.chunk_size = chunk_size
        self.entries = 0

    def _unique_name(self, name: str) -> str:
        if name not in self._names:
            return name
        stem, ext = os.path.splitext(name)
        n = 1
        while f"{stem}_{n}{ext}" in self._names:
            n += 1
        return f"{stem}_{n}{ext}"

    def append(self, stream: BinaryIO, name: str) -> str:
        """Copy ``stream`` into a new entry; returns the entry name used."""
        with self._lock:
            arcname = self._unique_name(name)
            with self._zip.open(arcname, mode="w", force_zip64=True) as dest:
                shutil.copyfileobj(stream, dest, self.chunk_size)
            self._names.add(arcname)
            self.entries += 1
            return arcname

    def finalize(self) -> None:
        with self._lock:
            self._zip.close()


class AssetArchiveService:
    """Builds and uploads the asset ZIP for one backup."""

    def __init__(
        self,
        s3: S3Utils,
        compression_level: int = 9,
        chunk_size: int = 64 * 1024,
        conduit_max_chunks: int = 16,
        spool_max_size: int = 8 * 1024 * 1024,
    ):
        self.s3 = s3
        self.compression_level = compression_level
        self.chunk_size = chunk_size
        self.conduit_max_chunks = conduit_max_chunks
        self.spool_max_size = spool_max_size

    def build_archive(
        self,
        references: Iterable[str],
        source_bucket: str,
        source_prefix: Optional[str],
        destination_bucket: str,
        destination_key: str,
    ) -> ArchiveManifest:
        """
        Archive every unique reference into ``destination_key``.

        A reference whose fetch or read fails is logged and skipped; it only shows up
        as the difference between total_assets and archived_assets.

        Returns:
            ArchiveManifest; archive_key is None when there was nothing to archive
        """
        unique_refs = list(dict.fromkeys(r for r in references if r))
        logger.info(f"Unique assets to archive: {len(unique_refs)}")

        if not unique_refs:
            return ArchiveManifest(total_assets=0, archived_assets=0, archive_key=None)

        def produce(writer: ConduitWriter) -> int:
            return self._append_all(writer, unique_refs, source_bucket, source_prefix)

        def consume(reader) -> None:
            self.s3.put_object_stream(destination_bucket, destination_key, reader, ZIP_CONTENT_TYPE)

        archived = run_pipeline(
            produce,
            consume,
            max_chunks=self.conduit_max_chunks,
            name="asset-archive",
        )

        logger.info(
            f"Assets archived and uploaded as {destination_key}",
            archived=archived,
            total=len(unique_refs),
        )
        return ArchiveManifest(
            total_assets=len(unique_refs),
            archived_assets=archived,
            archive_key=destination_key,
        )

    def _append_all(
        self,
        output: BinaryIO,
        references: List[str],
        source_bucket: str,
        source_prefix: Optional[str],
    ) -> int:
        archive = ArchiveWriter(output, self.compression_level, self.chunk_size)

        for reference in references:
            try:
                spool = self._fetch(source_bucket, source_prefix, reference)
            except (StorageError, BotoCoreError, OSError) as e:
                logger.warning(f"Skipping asset {reference}: {e}")
                continue

            with spool:
                archive.append(spool, entry_name(reference, archive.entries))

        archive.finalize()
        return archive.entries

    def _fetch(self, bucket: str, prefix: Optional[str], reference: str) -> BinaryIO:
        """
        Read one asset completely before it touches the archive, so a body
        that breaks mid-read never leaves a half-written entry behind.
        """
        body = self.s3.get_object_stream(bucket, prefix, reference)
        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_size)
        try:
            shutil.copyfileobj(body, spool, self.chunk_size)
        except BaseException:
            spool.close()
            raise
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()
        spool.seek(0)
        return spool
