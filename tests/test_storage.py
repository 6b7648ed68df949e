import logging
from unittest import mock

import boto3
import pytest
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.stub import Stubber

from s3backup.errors import TransferError
from s3backup.storage import S3ObjectStore, create_s3_client


def _paginated_client(*pages):
    client = mock.MagicMock()
    client.get_paginator.return_value.paginate.return_value = list(pages)
    return client


def _access_denied(operation):
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, operation)


def test_list_collects_keys_across_pages():
    """Test that keys from every page are returned in sorted order."""
    client = _paginated_client(
        {"Contents": [{"Key": "backups/worlds-2"}, {"Key": "backups/worlds-1"}]},
        {"Contents": [{"Key": "backups/worlds-0"}]},
    )
    store = S3ObjectStore("bucket", client=client)

    keys = store.list("backups/worlds-")

    assert keys == ["backups/worlds-0", "backups/worlds-1", "backups/worlds-2"]
    client.get_paginator.assert_called_once_with("list_objects_v2")
    client.get_paginator.return_value.paginate.assert_called_once_with(
        Bucket="bucket", Prefix="backups/worlds-"
    )


def test_list_missing_prefix_is_empty():
    """Test that a prefix with nothing under it yields no keys rather than an error."""
    store = S3ObjectStore("bucket", client=_paginated_client({"KeyCount": 0}))

    assert store.list("never/used/") == []


def test_list_without_prefix_lists_whole_bucket():
    client = _paginated_client({"Contents": [{"Key": "a"}]})
    store = S3ObjectStore("bucket", client=client)

    assert store.list("") == ["a"]
    client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="bucket")


def test_list_service_error_is_transfer_error():
    """Test that a missing bucket surfaces as a transfer error."""
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    store = S3ObjectStore("no-such-bucket", client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error(
            "list_objects_v2",
            service_error_code="NoSuchBucket",
            service_message="The specified bucket does not exist",
            http_status_code=404,
        )
        with pytest.raises(TransferError, match="Failed to list"):
            store.list("backups/")


def test_list_connection_error_is_transfer_error():
    client = mock.MagicMock()
    client.get_paginator.return_value.paginate.side_effect = EndpointConnectionError(
        endpoint_url="https://example.invalid"
    )
    store = S3ObjectStore("bucket", client=client)

    with pytest.raises(TransferError):
        store.list("backups/")


def test_put_uploads_file(temp_dir):
    """Test that put hands the file, bucket and key to the client."""
    archive = temp_dir / "archive.zip"
    archive.write_bytes(b"zip")
    client = mock.MagicMock()
    store = S3ObjectStore("bucket", client=client)

    store.put(str(archive), "backups/archive.zip")

    client.upload_file.assert_called_once_with(str(archive), "bucket", "backups/archive.zip")


@pytest.mark.parametrize("error", [
    _access_denied("PutObject"),
    S3UploadFailedError("Failed to upload: An error occurred (AccessDenied)"),
    EndpointConnectionError(endpoint_url="https://example.invalid"),
])
def test_put_failures_are_transfer_errors(temp_dir, error):
    """Test that every kind of upload failure becomes a transfer error."""
    client = mock.MagicMock()
    client.upload_file.side_effect = error
    store = S3ObjectStore("bucket", client=client)

    with pytest.raises(TransferError, match="Failed to upload"):
        store.put(str(temp_dir / "archive.zip"), "backups/archive.zip")


def test_get_downloads_file(temp_dir):
    client = mock.MagicMock()
    store = S3ObjectStore("bucket", client=client)

    store.get("backups/archive.zip", str(temp_dir / "archive.zip"))

    client.download_file.assert_called_once_with("bucket", "backups/archive.zip", str(temp_dir / "archive.zip"))


def test_get_failure_is_transfer_error(temp_dir):
    client = mock.MagicMock()
    client.download_file.side_effect = _access_denied("GetObject")
    store = S3ObjectStore("bucket", client=client)

    with pytest.raises(TransferError, match="Failed to download"):
        store.get("backups/archive.zip", str(temp_dir / "archive.zip"))


def test_close_closes_client():
    client = mock.MagicMock()
    S3ObjectStore("bucket", client=client).close()

    client.close.assert_called_once_with()


def test_create_s3_client_quiets_library_loggers():
    """Test that creating a client keeps boto's chatter out of the backup log."""
    logging.getLogger("botocore").setLevel(logging.DEBUG)

    client = create_s3_client(aws_region="us-east-1")

    assert client.meta.region_name == "us-east-1"
    assert logging.getLogger("botocore").level == logging.WARNING


def test_create_s3_client_with_unknown_profile(monkeypatch, temp_dir):
    monkeypatch.setenv("AWS_CONFIG_FILE", str(temp_dir / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(temp_dir / "credentials"))

    with pytest.raises(TransferError, match="Could not create S3 client"):
        create_s3_client(aws_profile="no-such-profile")
