import logging
from typing import List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .errors import TransferError


logger = logging.getLogger('s3backup')

NOISY_LOGGERS = ("boto", "boto3", "botocore", "urllib3", "s3transfer")


class ObjectStore:
    """
    Remote object storage as the backup needs it.

    Implementations must treat listing a prefix that does not exist yet as an
    empty result, and must either store a complete object or raise.
    """

    def list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    def put(self, local_path: str, key: str) -> None:
        raise NotImplementedError

    def get(self, key: str, local_path: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


def _quiet_external_loggers() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_s3_client(
    *,
    aws_profile: Optional[str] = None,
    aws_region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
):
    _quiet_external_loggers()
    session_kwargs = {}
    if aws_profile:
        session_kwargs["profile_name"] = aws_profile
    if aws_region:
        session_kwargs["region_name"] = aws_region
    try:
        session = boto3.Session(**session_kwargs)
        return session.client("s3", endpoint_url=endpoint_url)
    except BotoCoreError as e:
        raise TransferError(f"Could not create S3 client: {e}") from e


class S3ObjectStore(ObjectStore):
    """Object store backed by a single S3 bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        aws_profile: Optional[str] = None,
        aws_region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        if client is None:
            client = create_s3_client(
                aws_profile=aws_profile,
                aws_region=aws_region,
                endpoint_url=endpoint_url,
            )
        self.client = client

    def list(self, prefix: str) -> List[str]:
        """
        List the keys in the bucket that start with ``prefix``, sorted.

        Raises:
            TransferError: If the bucket cannot be listed
        """
        list_kwargs = {"Bucket": self.bucket}
        if prefix:
            list_kwargs["Prefix"] = prefix

        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(**list_kwargs):
                # A prefix with no objects under it comes back without Contents.
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            raise TransferError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e

        keys.sort()
        logger.debug(f"Listed {len(keys)} objects under s3://{self.bucket}/{prefix}")
        return keys

    def put(self, local_path: str, key: str) -> None:
        """
        Upload a local file to ``key``.

        Raises:
            TransferError: On any network, credential or permission failure
        """
        try:
            self.client.upload_file(local_path, self.bucket, key)
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise TransferError(f"Failed to upload '{local_path}' to s3://{self.bucket}/{key}: {e}") from e
        except OSError as e:
            raise TransferError(f"Failed to read '{local_path}' for upload: {e}") from e

    def get(self, key: str, local_path: str) -> None:
        """
        Download ``key`` into a local file.

        Raises:
            TransferError: If the object cannot be fetched
        """
        try:
            self.client.download_file(self.bucket, key, local_path)
        except (ClientError, BotoCoreError) as e:
            raise TransferError(f"Failed to download s3://{self.bucket}/{key}: {e}") from e
        except OSError as e:
            raise TransferError(f"Failed to write '{local_path}': {e}") from e

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            close()
