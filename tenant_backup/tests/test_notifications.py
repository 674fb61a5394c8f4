# tenant_backup/tests/test_notifications.py

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from tenant_backup.backups.exceptions import NotificationError
from tenant_backup.backups.notifications import BackupNotifier
from tenant_backup.backups.schemas import AssetSummary
from tenant_backup.utils.email_service import send_email

DOCUMENT_URL = "https://bucket.s3.example.com/DOCUMENT.xlsx"
ARCHIVE_URL = "https://bucket.s3.example.com/ASSETS.zip"


@pytest.fixture
def sender():
    return MagicMock(return_value=True)


@pytest.fixture
def notifier(settings, sender):
    return BackupNotifier(settings, sender=sender)


class TestBackupReadyEmail:
    """Backup-ready notification"""

    def test_links_and_subject(self, notifier, sender):
        notifier.notify("clinic@example.com", 21, DOCUMENT_URL, "tenant_db")

        kwargs = sender.call_args.kwargs
        assert kwargs["to_emails"] == ["clinic@example.com"]
        assert kwargs["subject"] == "Full Backup - Tenant 21 (tenant_db)"
        assert DOCUMENT_URL in kwargs["html_content"]
        assert DOCUMENT_URL in kwargs["text_content"]
        assert "Images" not in kwargs["text_content"]
        assert "7 days" in kwargs["text_content"]

    def test_asset_summary_included(self, notifier, sender):
        summary = AssetSummary(total_assets=4, archived_assets=3, archive_url=ARCHIVE_URL)

        notifier.notify("clinic@example.com", 21, DOCUMENT_URL, "tenant_db", summary)

        text = sender.call_args.kwargs["text_content"]
        assert "Images: 3/4" in text
        assert ARCHIVE_URL in text
        assert ARCHIVE_URL in sender.call_args.kwargs["html_content"]

    def test_summary_without_archive_has_no_archive_link(self, notifier, sender):
        summary = AssetSummary(total_assets=2, archived_assets=0, archive_url=None)

        notifier.notify("clinic@example.com", 21, DOCUMENT_URL, None, summary)

        text = sender.call_args.kwargs["text_content"]
        assert "Images: 0/2" in text
        assert ".zip" not in text
        assert sender.call_args.kwargs["subject"] == "Full Backup - Tenant 21 (Database)"

    def test_rejected_send_raises(self, settings):
        notifier = BackupNotifier(settings, sender=MagicMock(return_value=False))

        with pytest.raises(NotificationError):
            notifier.notify("clinic@example.com", 21, DOCUMENT_URL)


class TestFailureAlert:
    """Admin alert for failed jobs"""

    def test_alert_goes_to_admins(self, notifier, sender):
        assert notifier.alert_failure(
            "job-1", 21, "tenant_db", "clinic@example.com", "Failed to fetch section 'Visits'"
        ) is True

        kwargs = sender.call_args.kwargs
        assert kwargs["to_emails"] == ["ops@example.com", "oncall@example.com"]
        assert "job-1" in kwargs["subject"]
        assert "Failed to fetch section &#39;Visits&#39;" in kwargs["html_content"]

    def test_no_admins_configured(self, settings, sender):
        settings.aws_admin_email = None
        notifier = BackupNotifier(settings, sender=sender)

        assert notifier.alert_failure("job-1", 21, "tenant_db", "clinic@example.com", "boom") is False
        sender.assert_not_called()


class TestSendEmail:
    """SES delivery"""

    def test_disabled_sending_does_not_call_ses(self, settings):
        ses = MagicMock()
        assert send_email(settings, ["a@example.com"], "Subject", "<p>x</p>", ses_client=ses) is True
        ses.send_raw_email.assert_not_called()

    def test_sends_raw_email(self, settings):
        settings.enable_email_sending = True
        ses = MagicMock()
        ses.send_raw_email.return_value = {"MessageId": "m-1"}

        sent = send_email(
            settings, ["a@example.com"], "Backup", "<p>html</p>", text_content="text", ses_client=ses
        )

        assert sent is True
        kwargs = ses.send_raw_email.call_args.kwargs
        assert kwargs["Source"] == "backup@example.com"
        assert kwargs["Destinations"] == ["a@example.com"]
        assert b"Subject: Backup" in kwargs["RawMessage"]["Data"]

    def test_override_recipients(self, settings):
        settings.enable_email_sending = True
        settings.override_email_to = "qa@example.com"
        ses = MagicMock()
        ses.send_raw_email.return_value = {"MessageId": "m-2"}

        send_email(settings, ["real@example.com"], "S", "<p>x</p>", cc_emails=["cc@example.com"], ses_client=ses)

        assert ses.send_raw_email.call_args.kwargs["Destinations"] == ["qa@example.com"]

    def test_ses_error_returns_false(self, settings):
        settings.enable_email_sending = True
        ses = MagicMock()
        ses.send_raw_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "no"}}, "SendRawEmail"
        )

        assert send_email(settings, ["a@example.com"], "S", "<p>x</p>", ses_client=ses) is False
