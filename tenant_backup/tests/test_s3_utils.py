# tenant_backup/tests/test_s3_utils.py

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from tenant_backup.backups.exceptions import StorageError
from tenant_backup.utils.s3_utils import DEFAULT_PRESIGN_TTL, S3Utils, join_key


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def s3_utils(settings, mock_client):
    return S3Utils(settings, client=mock_client)


class TestJoinKey:
    def test_skips_empty_segments(self):
        assert join_key("", "backup-temp", None, "db") == "backup-temp/db"

    def test_strips_slashes(self):
        assert join_key("clients/", "/a.jpg") == "clients/a.jpg"


class TestExists:
    """HEAD based existence checks"""

    def test_existing_object(self, s3_utils, mock_client):
        assert s3_utils.exists("bucket", "key") is True
        mock_client.head_object.assert_called_once_with(Bucket="bucket", Key="key")

    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    def test_missing_object(self, s3_utils, mock_client, code):
        mock_client.head_object.side_effect = client_error(code)
        assert s3_utils.exists("bucket", "key") is False

    def test_access_denied_is_storage_error(self, s3_utils, mock_client):
        mock_client.head_object.side_effect = client_error("403")
        with pytest.raises(StorageError) as exc_info:
            s3_utils.exists("bucket", "key")
        assert exc_info.value.operation == "head_object"

    def test_folder_marker_key(self, s3_utils, mock_client):
        s3_utils.folder_exists("bucket", "a/b")
        mock_client.head_object.assert_called_once_with(Bucket="bucket", Key="a/b/")

        s3_utils.create_folder("bucket", "a/b/")
        mock_client.put_object.assert_called_once_with(
            Bucket="bucket", Key="a/b/", Body=b"", ContentType="application/octet-stream"
        )


class TestObjects:
    """Uploads, downloads and presigned URLs"""

    def test_put_object_encodes_text(self, s3_utils, mock_client):
        location = s3_utils.put_object("bucket", "README.txt", "hello", "text/plain")

        assert location == "s3://bucket/README.txt"
        mock_client.put_object.assert_called_once_with(
            Bucket="bucket", Key="README.txt", Body=b"hello", ContentType="text/plain"
        )

    def test_put_object_stream_uses_multipart_transfer(self, s3_utils, mock_client):
        stream = io.BytesIO(b"payload")
        s3_utils.put_object_stream("bucket", "doc.xlsx", stream, "application/test")

        args, kwargs = mock_client.upload_fileobj.call_args
        assert args == (stream, "bucket", "doc.xlsx")
        assert kwargs["ExtraArgs"] == {"ContentType": "application/test"}
        assert kwargs["Config"] is s3_utils.transfer_config

    def test_stream_upload_failure(self, s3_utils, mock_client):
        mock_client.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with pytest.raises(StorageError):
            s3_utils.put_object_stream("bucket", "doc.xlsx", io.BytesIO(b""), "x")

    def test_get_object_stream_joins_prefix(self, s3_utils, mock_client):
        body = io.BytesIO(b"img")
        mock_client.get_object.return_value = {"Body": body}

        assert s3_utils.get_object_stream("bucket", "clients", "p/1.jpg") is body
        mock_client.get_object.assert_called_once_with(Bucket="bucket", Key="clients/p/1.jpg")

    def test_get_object_stream_without_prefix(self, s3_utils, mock_client):
        mock_client.get_object.return_value = {"Body": io.BytesIO(b"")}
        s3_utils.get_object_stream("bucket", None, "1.jpg")
        mock_client.get_object.assert_called_once_with(Bucket="bucket", Key="1.jpg")

    def test_get_object_failure(self, s3_utils, mock_client):
        mock_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")
        with pytest.raises(StorageError) as exc_info:
            s3_utils.get_object_stream("bucket", "clients", "1.jpg")
        assert exc_info.value.key == "clients/1.jpg"

    def test_presign_defaults_to_seven_days(self, s3_utils, mock_client):
        mock_client.generate_presigned_url.return_value = "https://signed"

        assert s3_utils.presign("bucket", "doc.xlsx") == "https://signed"
        assert DEFAULT_PRESIGN_TTL == 604800
        mock_client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "bucket", "Key": "doc.xlsx"},
            ExpiresIn=604800,
        )
