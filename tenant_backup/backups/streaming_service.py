"""
Streaming Workbook Writer - Memory-Efficient Backup Document Generation

Builds one XLSX workbook with one sheet per non-empty section and writes it to
any binary file object, including a non-seekable pipe.

Memory is bounded by a single section's record list:
- sections are fetched strictly one after another
- openpyxl write-only mode spills each appended row to disk
- a section's records are released as soon as its sheet is written
"""

import contextlib
import json
import os
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, BinaryIO, Dict, List, Sequence

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from tenant_backup.backups.exceptions import (
    BackupError,
    DocumentGenerationError,
    SectionSourceError,
)
from tenant_backup.backups.sections import SECTION_SPECS, SectionSpec
from tenant_backup.utils.conduit import ConduitClosedError
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MAX_SHEET_TITLE = 31
MIN_COLUMN_WIDTH = 15
EMPTY_WORKBOOK_SHEET = "No Data"

_INVALID_TITLE_CHARS = re.compile(r"[\\/*?:\[\]]")


def sheet_title(name: str) -> str:
    """Excel sheet names: max 31 chars, none of \\ / * ? : [ ]"""
    title = _INVALID_TITLE_CHARS.sub("-", name).strip("'")
    return title[:MAX_SHEET_TITLE] or "Sheet"


def cell_value(value: Any) -> Any:
    """
    Convert a record value into something openpyxl can store.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    if isinstance(value, (bool, int, float, Decimal)):
        return value
    if isinstance(value, datetime):
        # XLSX has no timezone support
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if hasattr(value, "isoformat"):
        # date, time
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))


class StreamingWorkbookWriter:
    """
    Writes the backup workbook section by section.

    Header of each sheet = field names of the section's first record, in that
    record's order. Later records are projected onto that header: missing
    fields become empty cells and extra fields are dropped (logged once per
    section), so every row has exactly the header's column count.
    """

    def __init__(self, sections: Sequence[SectionSpec] = SECTION_SPECS, progress_every: int = 10000):
        self.sections = tuple(sections)
        self.progress_every = progress_every

        self.header_font = Font(bold=True, color="FFFFFFFF")
        self.header_fill = PatternFill(fill_type="solid", fgColor="FF4472C4")
        self.header_alignment = Alignment(horizontal="center", vertical="center")

    def write(self, tenant_id: int, source_db, output: BinaryIO) -> Dict[str, int]:
        """
        Build the workbook and write it to ``output``.

        Args:
            tenant_id: Tenant being exported
            source_db: Connection handle passed to each section source
            output: Binary file object (seekability not required)

        Returns:
            Ordered mapping of written sheet name -> record count

        Raises:
            SectionSourceError: a section source failed; nothing usable was written
            DocumentGenerationError: the workbook could not be built or saved
        """
        logger.info(f"Generating backup workbook for tenant {tenant_id} ({len(self.sections)} sections)")

        workbook = Workbook(write_only=True)
        counts: Dict[str, int] = {}

        try:
            for spec in self.sections:
                logger.info(f"Processing section: {spec.name}...")
                records = self._fetch(spec, tenant_id, source_db)
                logger.info(f"{spec.name}: {len(records)} records")

                if not records:
                    logger.info(f"Section '{spec.name}' is empty, skipping")
                    continue

                counts[spec.name] = self._write_section(workbook, spec.name, records)

                # Release the section before fetching the next one
                records.clear()
                del records

            if not counts:
                sheet = workbook.create_sheet(EMPTY_WORKBOOK_SHEET)
                sheet.append([f"No records found for tenant {tenant_id}"])

            workbook.save(output)

        except BackupError:
            logger.error(f"Backup workbook generation aborted for tenant {tenant_id}")
            self._discard(workbook)
            raise
        except ConduitClosedError:
            # The reader gave up; its own error is the one to report
            logger.warning(f"Backup workbook output closed by reader for tenant {tenant_id}")
            self._discard(workbook)
            raise
        except Exception as e:
            logger.error(f"Error generating backup workbook: {e}", exc_info=True)
            self._discard(workbook)
            raise DocumentGenerationError(f"Failed to generate backup workbook: {e}") from e

        logger.info(
            f"Backup workbook finalized: {len(counts)} sheets, "
            f"{sum(counts.values())} records"
        )
        return counts

    def _fetch(self, spec: SectionSpec, tenant_id: int, source_db) -> List[Dict[str, Any]]:
        try:
            records = spec.source(tenant_id, source_db)
        except Exception as e:
            logger.error(f"Section '{spec.name}' failed: {e}")
            raise SectionSourceError(spec.name, str(e)) from e
        return list(records or [])

    @staticmethod
    def _discard(workbook: Workbook) -> None:
        """Close the spilled rows of an abandoned workbook and remove their temp files."""
        for sheet in workbook.worksheets:
            writer = getattr(sheet, "_writer", None)
            if writer is None:
                continue
            try:
                rows = getattr(sheet, "_rows", None)
                if rows is not None:
                    rows.close()
                writer.close()
            except Exception as e:
                logger.debug(f"Could not close sheet writer for '{sheet.title}': {e}")
            path = getattr(writer, "out", None)
            if path:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(path)

    def _write_section(self, workbook: Workbook, name: str, records: List[Dict[str, Any]]) -> int:
        sheet = workbook.create_sheet(sheet_title(name))
        headers = list(records[0].keys())
        header_set = set(headers)
        last_column = get_column_letter(len(headers))

        # Layout must be set before the first row is appended
        for index, header in enumerate(headers, start=1):
            width = max(len(str(header)) + 2, MIN_COLUMN_WIDTH)
            sheet.column_dimensions[get_column_letter(index)].width = width
        sheet.freeze_panes = "A2"
        sheet.auto_filter.ref = f"A1:{last_column}1"

        sheet.append([self._header_cell(sheet, header) for header in headers])

        warned = False
        written = 0
        for record in records:
            if not warned and record.keys() != header_set:
                extra = [k for k in record.keys() if k not in header_set]
                missing = [h for h in headers if h not in record]
                logger.warning(
                    f"Section '{name}' has records with a different field set; "
                    f"projecting onto the first record's header",
                    extra_fields=extra,
                    missing_fields=missing,
                )
                warned = True

            sheet.append([cell_value(record.get(h)) for h in headers])
            written += 1

            if written % self.progress_every == 0:
                logger.info(f"{name}: {written} rows written...")

        logger.info(f"Sheet '{name}' written with {written} records")
        return written

    def _header_cell(self, sheet, header) -> WriteOnlyCell:
        cell = WriteOnlyCell(sheet, value=cell_value(header))
        cell.font = self.header_font
        cell.fill = self.header_fill
        cell.alignment = self.header_alignment
        return cell
