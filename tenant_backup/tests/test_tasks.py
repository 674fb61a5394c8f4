# tenant_backup/tests/test_tasks.py

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from tenant_backup.backups.exceptions import BackupError, SectionSourceError
from tenant_backup.backups.job_repository import BackupJobRepository
from tenant_backup.backups.models import BackupJobRecord, BackupStatus, utc_now
from tenant_backup.backups.schemas import (
    ArchiveManifest,
    BackupArtifacts,
    BackupJob,
    BackupRequest,
    BackupResult,
)
from tenant_backup.backups.tasks import (
    STALE_JOB_ERROR,
    fail_stale_jobs,
    process_backup,
    submit_backup,
)

FOLDER = "clients/backup-temp/tenant_db/BACKUP_21_2026-10-19T14-03-22"


@pytest.fixture
def queued_record(db_session, backup_payload):
    return BackupJobRepository(db_session).create(BackupRequest(**backup_payload))


@pytest.fixture
def message(queued_record, backup_payload):
    return BackupJob(job_id=queued_record.id, **backup_payload).model_dump(mode="json")


@pytest.fixture
def backup_result():
    artifacts = BackupArtifacts(
        folder_path=FOLDER,
        document_key=f"{FOLDER}/DOCUMENT.xlsx",
        document_url="https://signed/document",
        manifest_key=f"{FOLDER}/README.txt",
        generated_at=datetime(2026, 10, 19, 14, 3, 22),
        section_counts={"Patients": 2},
        archive=ArchiveManifest(4, 3, f"{FOLDER}/ASSETS.zip"),
        archive_url="https://signed/archive",
    )
    return BackupResult(artifacts=artifacts, notification_sent=True)


@pytest.fixture
def worker(session_factory, settings, backup_result):
    """Patch the task's collaborators; yields (service, notifier class)"""
    service = MagicMock()
    service.run.return_value = backup_result
    with patch("tenant_backup.backups.tasks.SessionLocal", session_factory), \
            patch("tenant_backup.backups.tasks.get_settings", return_value=settings), \
            patch("tenant_backup.backups.tasks.build_backup_service", return_value=service), \
            patch("tenant_backup.backups.tasks.BackupNotifier") as notifier_cls:
        yield service, notifier_cls


def load(session_factory, job_id) -> BackupJobRecord:
    session = session_factory()
    try:
        return session.get(BackupJobRecord, job_id)
    finally:
        session.close()


def mark_running(session_factory, job_id, started_at):
    session = session_factory()
    try:
        record = session.get(BackupJobRecord, job_id)
        record.status = BackupStatus.RUNNING
        record.started_at = started_at
        session.commit()
    finally:
        session.close()


class TestProcessBackup:
    """Celery task: claim, run, record outcome"""

    def test_successful_job(self, worker, message, session_factory):
        service, _ = worker

        result = process_backup.run(**message)

        assert result["status"] == "success"
        assert result["folder_path"] == FOLDER
        job = service.run.call_args.args[0]
        assert isinstance(job, BackupJob)
        assert job.source_connection.password == "secret"

        record = load(session_factory, message["job_id"])
        assert record.status == BackupStatus.SUCCEEDED
        assert record.deliveries == 1
        assert record.document_key == f"{FOLDER}/DOCUMENT.xlsx"
        assert record.archive_key == f"{FOLDER}/ASSETS.zip"
        assert (record.total_assets, record.archived_assets) == (4, 3)
        assert record.notification_sent is True
        assert record.started_at is not None and record.completed_at is not None

    def test_duplicate_delivery_is_dropped(self, worker, message, session_factory):
        service, _ = worker

        first = process_backup.run(**message)
        second = process_backup.run(**message)

        assert first["status"] == "success"
        assert second["status"] == "skipped"
        service.run.assert_called_once()

        record = load(session_factory, message["job_id"])
        assert record.deliveries == 2
        assert record.status == BackupStatus.SUCCEEDED

    def test_failed_job_is_marked_and_alerted(self, worker, message, session_factory):
        service, notifier_cls = worker
        service.run.side_effect = SectionSourceError("Visits", "timeout expired")

        result = process_backup.run(**message)

        assert result["status"] == "failed"
        assert "Visits" in result["error"]

        record = load(session_factory, message["job_id"])
        assert record.status == BackupStatus.FAILED
        assert record.error_message == "Failed to fetch section 'Visits': timeout expired"
        assert record.completed_at is not None

        alert = notifier_cls.return_value.alert_failure
        alert.assert_called_once()
        assert alert.call_args.args[0] == message["job_id"]

    def test_failed_job_is_not_retried(self, worker, message):
        service, _ = worker
        service.run.side_effect = RuntimeError("boom")

        process_backup.run(**message)
        result = process_backup.run(**message)

        assert result["status"] == "skipped"
        service.run.assert_called_once()

    def test_invalid_message_fails_without_running(self, worker, message, session_factory):
        service, notifier_cls = worker
        message["tenant_id"] = "not-a-number"

        result = process_backup.run(**message)

        assert result["status"] == "failed"
        service.run.assert_not_called()
        notifier_cls.return_value.alert_failure.assert_not_called()
        assert load(session_factory, message["job_id"]).status == BackupStatus.FAILED

    def test_stale_running_job_is_taken_over(self, worker, message, session_factory, settings):
        """A job whose worker died mid-run is picked up by the next delivery"""
        service, _ = worker
        started = utc_now() - timedelta(seconds=settings.backup_time_limit + 60)
        mark_running(session_factory, message["job_id"], started)

        result = process_backup.run(**message)

        assert result["status"] == "success"
        service.run.assert_called_once()
        record = load(session_factory, message["job_id"])
        assert record.status == BackupStatus.SUCCEEDED
        assert record.started_at > started

    def test_recently_started_job_is_not_taken_over(self, worker, message, session_factory):
        service, _ = worker
        mark_running(session_factory, message["job_id"], utc_now() - timedelta(minutes=5))

        result = process_backup.run(**message)

        assert result["status"] == "skipped"
        service.run.assert_not_called()
        assert load(session_factory, message["job_id"]).status == BackupStatus.RUNNING


class TestFailStaleJobs:
    """Periodic sweep of jobs that outlived their worker"""

    def test_stale_job_marked_failed_and_alerted(self, worker, queued_record, session_factory, settings):
        _, notifier_cls = worker
        mark_running(
            session_factory,
            queued_record.id,
            utc_now() - timedelta(seconds=settings.backup_time_limit + 60),
        )

        result = fail_stale_jobs.run()

        assert result["failed_jobs"] == [queued_record.id]
        record = load(session_factory, queued_record.id)
        assert record.status == BackupStatus.FAILED
        assert record.error_message == STALE_JOB_ERROR
        assert record.completed_at is not None

        alert = notifier_cls.return_value.alert_failure
        alert.assert_called_once_with(
            queued_record.id, 21, "tenant_db", "clinic@example.com", STALE_JOB_ERROR
        )

    def test_running_and_queued_jobs_left_alone(
        self, worker, queued_record, db_session, session_factory, backup_payload
    ):
        _, notifier_cls = worker
        running = BackupJobRepository(db_session).create(BackupRequest(**backup_payload))
        mark_running(session_factory, running.id, utc_now() - timedelta(minutes=10))

        result = fail_stale_jobs.run()

        assert result["failed_jobs"] == []
        assert load(session_factory, running.id).status == BackupStatus.RUNNING
        assert load(session_factory, queued_record.id).status == BackupStatus.QUEUED
        notifier_cls.return_value.alert_failure.assert_not_called()


class TestSubmitBackup:
    """Intake side: ledger record plus enqueue"""

    @pytest.fixture
    def task(self):
        with patch("tenant_backup.backups.tasks.process_backup") as task:
            task.apply_async.return_value = MagicMock(id="celery-1")
            yield task

    def test_records_and_enqueues(self, task, db_session, settings, backup_payload):
        record, created = submit_backup(db_session, BackupRequest(**backup_payload), settings)

        assert created is True
        assert record.status == BackupStatus.QUEUED
        assert record.celery_task_id == "celery-1"

        kwargs = task.apply_async.call_args.kwargs
        assert kwargs["queue"] == "backupQueue"
        assert kwargs["kwargs"]["job_id"] == record.id
        assert kwargs["kwargs"]["source_connection"]["password"] == "secret"
        assert kwargs["kwargs"]["destination_prefix"] is None

    def test_credentials_not_stored_in_ledger(self, task, db_session, settings, backup_payload):
        record, _ = submit_backup(db_session, BackupRequest(**backup_payload), settings)

        stored = [getattr(record, column.name) for column in BackupJobRecord.__table__.columns]
        assert "secret" not in stored
        assert "backup_reader" not in stored

    def test_idempotency_key_returns_existing_job(self, task, db_session, settings, backup_payload):
        request = BackupRequest(**backup_payload)

        first, created_first = submit_backup(db_session, request, settings, "key-123")
        second, created_second = submit_backup(db_session, request, settings, "key-123")

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        task.apply_async.assert_called_once()

    def test_enqueue_failure_marks_job_failed(self, task, db_session, settings, backup_payload):
        task.apply_async.side_effect = ConnectionError("redis down")

        with pytest.raises(BackupError) as exc_info:
            submit_backup(db_session, BackupRequest(**backup_payload), settings)

        assert exc_info.value.status_code == 503
        record = db_session.query(BackupJobRecord).one()
        assert record.status == BackupStatus.FAILED
