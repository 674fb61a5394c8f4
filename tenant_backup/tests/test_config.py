# tenant_backup/tests/test_config.py

import pytest

from tenant_backup.core.config import Settings

OPTIONAL_ENV = (
    "DB_SECRET_ID",
    "REDIS_SECRET_ID",
    "AWS_CREDENTIALS_SECRET_ID",
    "AWS_ACCESS_KEY_ID_BASE",
    "AWS_SECRET_ACCESS_KEY_BASE",
    "AWS_SES_SENDER_EMAIL",
    "AWS_SES_CONFIGURATION_SET",
    "AWS_ADMIN_EMAIL",
    "DATABASE_URL",
    "DB_HOST",
    "DB_USER",
    "DB_PASSWORD",
    "DB_DATABASE",
    "DB_PORT",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_USERNAME",
    "REDIS_PASSWORD",
    "BACKUP_TIME_LIMIT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettingsDefaults:
    """Settings must build from an empty environment"""

    def test_optional_values_default_to_none(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.db_secret_id is None
        assert settings.aws_ses_sender_email is None
        assert settings.aws_access_key_id is None
        assert settings.admin_emails == []

    def test_ledger_and_broker_urls_without_secrets(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.db_url == "mysql+pymysql://backup:@localhost:3306/backup_service"
        assert settings.celery_broker == "redis://localhost:6379/1"
        assert settings.celery_backend == "redis://localhost:6379/2"

    def test_values_read_from_environment(self, clean_env):
        clean_env.setenv("DATABASE_URL", "sqlite://")
        clean_env.setenv("AWS_ADMIN_EMAIL", "ops@example.com, oncall@example.com")
        clean_env.setenv("BACKUP_TIME_LIMIT", "3600")

        settings = Settings(_env_file=None)

        assert settings.db_url == "sqlite://"
        assert settings.admin_emails == ["ops@example.com", "oncall@example.com"]
        assert settings.backup_time_limit == 3600
