# tenant_backup/tests/conftest.py

import io
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tenant_backup.backups.models  # noqa: F401
from tenant_backup.core.config import Settings
from tenant_backup.core.db import Base
from tenant_backup.utils.s3_utils import S3Utils

FIXED_NOW = datetime(2026, 10, 19, 14, 3, 22, 512000, tzinfo=timezone.utc)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls S3Utils makes."""

    def __init__(self):
        self.objects = {}
        self.content_types = {}
        self.calls = []

    def _not_found(self, operation, key):
        return ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": f"{key} not found"}},
            operation,
        )

    def head_object(self, Bucket, Key):
        self.calls.append(("head_object", Bucket, Key))
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.calls.append(("put_object", Bucket, Key))
        self.objects[(Bucket, Key)] = bytes(Body)
        self.content_types[(Bucket, Key)] = ContentType
        return {"ETag": "etag"}

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None, Config=None):
        self.calls.append(("upload_fileobj", Bucket, Key))
        buffer = bytearray()
        while True:
            chunk = Fileobj.read(8192)
            if not chunk:
                break
            buffer += chunk
        self.objects[(Bucket, Key)] = bytes(buffer)
        self.content_types[(Bucket, Key)] = (ExtraArgs or {}).get("ContentType")

    def get_object(self, Bucket, Key):
        self.calls.append(("get_object", Bucket, Key))
        if (Bucket, Key) not in self.objects:
            raise self._not_found("GetObject", Key)
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        self.calls.append(("presign", Params["Bucket"], Params["Key"], ExpiresIn))
        return f"https://{Params['Bucket']}.s3.example.com/{Params['Key']}?expires={ExpiresIn}"

    def keys(self, bucket):
        return sorted(key for (b, key) in self.objects if b == bucket)


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file"""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        api_secret_key="test-api-key",
        enable_email_sending=False,
        aws_ses_sender_email="backup@example.com",
        aws_admin_email="ops@example.com, oncall@example.com",
        conduit_max_chunks=4,
        conduit_chunk_size=1024,
    )


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def s3(settings, s3_client):
    return S3Utils(settings, client=s3_client)


@pytest.fixture
def session_factory():
    """Ledger on one shared in-memory SQLite connection"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def backup_payload():
    return {
        "tenant_id": 21,
        "recipient_email": "clinic@example.com",
        "source_connection": {
            "host": "10.0.0.12",
            "database": "tenant_db",
            "user": "backup_reader",
            "password": "secret",
        },
        "destination_bucket": "backups-bucket/clients",
        "include_assets": True,
    }
