# tenant_backup/backups/notifications.py

from datetime import datetime, timezone
from typing import Optional

from tenant_backup.backups.exceptions import NotificationError
from tenant_backup.backups.schemas import AssetSummary
from tenant_backup.core.config import Settings
from tenant_backup.utils.email_service import render_template, send_email
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)


class BackupNotifier:
    """Renders and delivers backup emails."""

    def __init__(self, settings: Settings, sender=send_email):
        self.settings = settings
        self._send = sender

    def notify(
        self,
        recipient: str,
        tenant_id: int,
        document_url: str,
        database_label: Optional[str] = None,
        asset_summary: Optional[AssetSummary] = None,
    ) -> None:
        """
        Send the backup-ready email with the retrieval links.

        Raises:
            NotificationError: SES rejected the message or rendering failed
        """
        data = {
            "tenant_id": tenant_id,
            "database_label": database_label,
            "document_url": document_url,
            "asset_summary": asset_summary,
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
            "link_validity_days": max(1, self.settings.presigned_url_ttl // 86400),
        }
        subject = f"Full Backup - Tenant {tenant_id} ({database_label or 'Database'})"

        try:
            html_content = render_template("backup_ready_email.html", data)
            text_content = render_template("backup_ready_email.txt", data)
        except Exception as e:
            raise NotificationError(f"Failed to render backup email: {e}") from e

        logger.info(f"Sending backup email to: {recipient}", tenant_id=tenant_id)
        sent = self._send(
            self.settings,
            to_emails=[recipient],
            subject=subject,
            html_content=html_content,
            text_content=text_content,
        )
        if not sent:
            raise NotificationError(f"Failed to send backup email to {recipient}")

    def alert_failure(
        self,
        job_id: str,
        tenant_id: int,
        database_label: str,
        recipient_email: str,
        error_message: str,
    ) -> bool:
        """
        Tell the admins a job failed. The requester never hears about a
        failure otherwise.
        """
        admins = self.settings.admin_emails
        if not admins:
            logger.warning("No admin email configured; backup failure alert not sent", job_id=job_id)
            return False

        data = {
            "job_id": job_id,
            "tenant_id": tenant_id,
            "database_label": database_label,
            "recipient_email": recipient_email,
            "error_message": error_message,
            "failed_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        }
        try:
            html_content = render_template("backup_failed_alert.html", data)
        except Exception as e:
            logger.error(f"Failed to render failure alert: {e}", job_id=job_id)
            return False

        return self._send(
            self.settings,
            to_emails=admins,
            subject=f"[Backup FAILED] Tenant {tenant_id} - job {job_id}",
            html_content=html_content,
        )
