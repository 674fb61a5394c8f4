# tenant_backup/backups/exceptions.py

class BackupError(Exception):
    """Base exception for all backup processing errors.

    Carries a human readable message and an HTTP-style status classification
    so collaborator failures surface in one uniform shape.
    """

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class SectionSourceError(BackupError):
    """Raised when a section query against the tenant database fails."""

    def __init__(self, section: str, reason: str):
        self.section = section
        self.reason = reason
        super().__init__(f"Failed to fetch section '{section}': {reason}")


class DocumentGenerationError(BackupError):
    """Raised when the workbook cannot be built or finalized."""
    pass


class StorageError(BackupError):
    """Raised for object store failures."""

    def __init__(self, operation: str, key: str, reason: str, status_code: int = 500):
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f"S3 {operation} failed for '{key}': {reason}", status_code)


class NotificationError(BackupError):
    """Raised when the backup-ready email cannot be delivered."""
    pass


class InvalidDestinationError(BackupError):
    """Raised when the destination bucket cannot be resolved."""
    status_code = 400


class JobNotFoundError(BackupError):
    """Raised when a backup job record cannot be found."""
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Backup job '{job_id}' not found.")
