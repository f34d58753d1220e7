"""Unit tests for the boto3-backed object storage gateway."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from portfolio.services.storage import S3ObjectStorage, StorageError, generate_key


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, operation)


def test_generate_key_shape():
    key = generate_key(".JPG")
    assert key.startswith("uploads/")
    assert key.endswith(".jpg")
    assert generate_key() != generate_key()


@pytest.mark.asyncio
async def test_put_sends_object_and_returns_key(settings):
    client = MagicMock()
    storage = S3ObjectStorage(settings, client=client)

    key = await storage.put(b"abc", "image/png", metadata={"original-filename": "a.png"}, suffix=".png")

    assert key.startswith("uploads/") and key.endswith(".png")
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "test-bucket"
    assert kwargs["Key"] == key
    assert kwargs["ContentType"] == "image/png"
    assert kwargs["Metadata"]["original-filename"] == "a.png"
    assert "upload-time" in kwargs["Metadata"]


@pytest.mark.asyncio
async def test_put_failure_raises_storage_error(settings):
    client = MagicMock()
    client.put_object.side_effect = _client_error("PutObject")
    storage = S3ObjectStorage(settings, client=client)

    with pytest.raises(StorageError) as exc_info:
        await storage.put(b"abc", "image/png")
    assert exc_info.value.operation == "put"


@pytest.mark.asyncio
async def test_presign_passes_ttl_in_seconds(settings):
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed.example/obj"
    storage = S3ObjectStorage(settings, client=client)

    url = await storage.presign_get("uploads/x.png", timedelta(days=7))

    assert url == "https://signed.example/obj"
    args, kwargs = client.generate_presigned_url.call_args
    assert args == ("get_object",)
    assert kwargs["Params"] == {"Bucket": "test-bucket", "Key": "uploads/x.png"}
    assert kwargs["ExpiresIn"] == 7 * 24 * 3600


@pytest.mark.asyncio
async def test_delete_failure_raises_storage_error(settings):
    client = MagicMock()
    client.delete_object.side_effect = _client_error("DeleteObject")
    storage = S3ObjectStorage(settings, client=client)

    with pytest.raises(StorageError) as exc_info:
        await storage.delete("uploads/x.png")
    assert exc_info.value.key == "uploads/x.png"


def test_public_url_with_custom_endpoint(settings):
    cfg = settings.model_copy(update={"s3_endpoint_url": "http://minio:9000/"})
    storage = S3ObjectStorage(cfg, client=MagicMock())
    assert storage.public_url("uploads/a.png") == "http://minio:9000/test-bucket/uploads/a.png"


def test_public_url_on_aws(settings):
    storage = S3ObjectStorage(settings, client=MagicMock())
    assert (
        storage.public_url("uploads/a.png")
        == "https://test-bucket.s3.us-east-1.amazonaws.com/uploads/a.png"
    )
