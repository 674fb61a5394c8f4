# tenant_backup/core/config.py

import json
import os
from functools import lru_cache
from typing import Optional

import boto3
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)


#
# =====================================================
#  GENERIC SECRET FETCH FUNCTION (Ledger DB, Redis, AWS)
# =====================================================
#


@lru_cache(maxsize=32)
def cached_secret_values(secret_id: str | None, region: str | None) -> dict:
    """
    Load arbitrary secret from AWS Secrets Manager.
    Returns {} if secret_id is not set or is an empty string.

    Because of @lru_cache, each unique (secret_id, region) pair is fetched
    only once per process start.
    """
    if not secret_id or secret_id.strip() == "":
        return {}

    region = region or os.getenv("AWS_REGION", "us-east-1")
    logger.info("Loading secret", secret_id=secret_id, region=region)

    client = boto3.client("secretsmanager", region_name=region)
    resp = client.get_secret_value(SecretId=secret_id)
    data = json.loads(resp["SecretString"])

    logger.info("Loaded secret from Secrets Manager", secret_id=secret_id)
    return data


#
# =====================================================
#                    SETTINGS CLASS
# =====================================================
#


class Settings(BaseSettings):
    """
    Backup Service Settings

    Built once per process by get_settings() and handed to the services that
    need it. Nothing below reads os.environ directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "local"
    log_level: str = "INFO"

    # Shared secret expected in the intake "s3-api-key" header
    api_secret_key: str = ""

    # AWS + secret IDs for secrets management
    aws_region: str = "us-east-1"
    db_secret_id: Optional[str] = None  # e.g. backup/staging/db
    redis_secret_id: Optional[str] = None  # e.g. backup/staging/redis
    aws_credentials_secret_id: Optional[str] = None  # e.g. backup/staging/aws

    # AWS credentials base fields (for .env / local)
    aws_access_key_id_base: Optional[str] = None
    aws_secret_access_key_base: Optional[str] = None

    # SES
    aws_ses_sender_email: Optional[str] = None
    aws_ses_configuration_set: Optional[str] = None
    aws_admin_email: Optional[str] = None

    # Email control flags
    enable_email_sending: bool = True
    # When set, ALL emails will go to these addresses instead of actual recipients
    override_email_to: str = ""  # e.g., "test@example.com,admin@example.com"
    override_email_cc: str = ""

    # Redis base fields (for .env / local)
    redis_host: str = "localhost"
    redis_port: str = "6379"
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    # Job ledger database (MySQL); database_url wins when set (e.g. sqlite)
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_user: str = "backup"
    db_password: str = ""
    db_database: str = "backup_service"
    db_port: int = 3306

    # Tenant source databases (connection details arrive with each job)
    source_db_driver: str = "mssql+pymssql"
    source_db_port: Optional[int] = None
    source_db_login_timeout: int = 30
    source_db_query_timeout: int = 60

    # Backup pipeline
    backup_queue_name: str = "backupQueue"
    backup_time_limit: int = 6 * 60 * 60  # hard limit per job; RUNNING longer means the worker died
    stale_job_sweep_minutes: int = 30
    presigned_url_ttl: int = 604800  # 7 days
    archive_compression_level: int = 9
    conduit_chunk_size: int = 64 * 1024
    conduit_max_chunks: int = 16
    upload_part_size: int = 8 * 1024 * 1024

    #
    # ---------------------------
    #  DB ACCESS PROPERTIES
    # ---------------------------
    #
    @property
    def _db_tuple(self):
        """
        Resolve ledger DB connection details:
        - If db_secret_id is set → use secret (DB_HOST, DB_USER, DB_PASSWORD, DB_DATABASE, DB_PORT)
        - Else → use .env values
        """
        data = cached_secret_values(self.db_secret_id, self.aws_region)

        if data:
            logger.info(
                "DB config source: Secrets Manager", secret_id=self.db_secret_id
            )
        else:
            logger.info("DB config source: .env / environment variables")

        host = data.get("DB_HOST") or self.db_host
        user = data.get("DB_USER") or self.db_user
        password = data.get("DB_PASSWORD") or self.db_password
        database = data.get("DB_DATABASE") or self.db_database
        port = int(data.get("DB_PORT") or self.db_port)

        return host, user, password, database, port

    @property
    def db_url(self) -> str:
        """Construct the ledger database URL."""
        if self.database_url:
            return self.database_url
        host, user, password, database, port = self._db_tuple
        return URL.create(
            "mysql+pymysql",
            username=user,
            password=password,
            host=host,
            port=port,
            database=database,
        ).render_as_string(hide_password=False)

    #
    # ---------------------------
    #  REDIS ACCESS PROPERTIES
    # ---------------------------
    #
    @property
    def _redis_tuple(self):
        data = cached_secret_values(self.redis_secret_id, self.aws_region)

        host = data.get("REDIS_HOST") or self.redis_host or "localhost"
        port = data.get("REDIS_PORT") or self.redis_port or "6379"
        username = data.get("REDIS_USERNAME") or self.redis_username
        password = data.get("REDIS_PASSWORD") or self.redis_password

        return host, port, username, password

    @property
    def redis_url(self) -> str:
        """Construct the Redis URL."""
        host, port, username, password = self._redis_tuple

        if username and password:
            return f"redis://{username}:{password}@{host}:{port}"
        elif password:
            return f"redis://:{password}@{host}:{port}"
        else:
            return f"redis://{host}:{port}"

    @property
    def celery_broker(self) -> str:
        """Construct the Redis URL for Celery broker (DB 1)."""
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """Construct the Redis URL for Celery backend (DB 2)."""
        return f"{self.redis_url}/2"

    #
    # ---------------------------
    #  AWS ACCESS KEYS
    # ---------------------------
    #
    @property
    def aws_access_key_id(self):
        """
        Resolve AWS_ACCESS_KEY_ID:

        1. If aws_credentials_secret_id is set:
           → Use AWS_ACCESS_KEY_ID from that secret
        2. Else:
           → Use AWS_ACCESS_KEY_ID from .env / environment variables
        """
        data = cached_secret_values(self.aws_credentials_secret_id, self.aws_region)
        return data.get("AWS_ACCESS_KEY_ID") or self.aws_access_key_id_base

    @property
    def aws_secret_access_key(self):
        data = cached_secret_values(self.aws_credentials_secret_id, self.aws_region)
        return data.get("AWS_SECRET_ACCESS_KEY") or self.aws_secret_access_key_base

    @property
    def admin_emails(self) -> list[str]:
        if not self.aws_admin_email:
            return []
        return [e.strip() for e in self.aws_admin_email.split(",") if e.strip()]


@lru_cache
def get_settings() -> Settings:
    """Build the process-wide Settings once and reuse it."""
    return Settings()
