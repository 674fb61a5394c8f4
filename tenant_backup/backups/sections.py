"""
Static, ordered table of exported sections.

Order here is the order of the sheets in the backup workbook.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from tenant_backup.backups import repository
from tenant_backup.backups.repository import SourceDatabase

SectionSource = Callable[[int, SourceDatabase], List[Dict[str, Any]]]


@dataclass(frozen=True)
class SectionSpec:
    name: str
    source: SectionSource


SECTION_SPECS: Tuple[SectionSpec, ...] = (
    SectionSpec("Patients", repository.fetch_patients),
    SectionSpec("Patient Origins", repository.fetch_patient_origins),
    SectionSpec("Images", repository.fetch_patient_images),
    SectionSpec("Appointments", repository.fetch_appointments),
    SectionSpec("Orthodontic Visits", repository.fetch_orthodontic_visits),
    SectionSpec("Visits", repository.fetch_visits),
    SectionSpec("Received Payments", repository.fetch_received_payments),
    SectionSpec("Scheduled Installments", repository.fetch_scheduled_installments),
    SectionSpec("Installment Payments", repository.fetch_installment_payments),
    SectionSpec("Quote Procedures", repository.fetch_quote_procedures),
    SectionSpec("Standalone Procedures", repository.fetch_standalone_procedures),
    SectionSpec("Quotes", repository.fetch_quotes),
    SectionSpec("Orthodontic Treatments", repository.fetch_orthodontic_treatments),
    SectionSpec("Follow-ups", repository.fetch_follow_ups),
    SectionSpec("Paid Bills", repository.fetch_paid_bills),
    SectionSpec("Open Bills", repository.fetch_open_bills),
)

# Records carrying asset references, and the field that holds the reference
ASSET_SOURCE: SectionSource = repository.fetch_patient_images
ASSET_REFERENCE_FIELD = "FOTO"
