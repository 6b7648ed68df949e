from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError


@dataclass(frozen=True)
class BackupConfig:
    """Settings for one backup run, fixed once parsed from the command line."""

    bucket: str
    source_dir: Optional[str] = None
    subpath: str = ""
    archive_prefix: str = ""
    aws_profile: Optional[str] = None
    aws_region: Optional[str] = None
    endpoint_url: Optional[str] = None
    keep_failed_dir: Optional[str] = None

    @property
    def key_prefix(self) -> str:
        """Key prefix under the bucket that every archive is written below."""
        subpath = self.subpath.strip("/")
        return f"{subpath}/" if subpath else ""

    @property
    def listing_prefix(self) -> str:
        """Key prefix shared by all archives made with this configuration."""
        return f"{self.key_prefix}{self.archive_prefix}"

    def remote_key(self, archive_name: str) -> str:
        return f"{self.key_prefix}{archive_name}"

    def describe_remote(self) -> str:
        return f"s3://{self.bucket}/{self.key_prefix}"

    def validate(self, require_source: bool = True) -> None:
        """
        Check the required settings before any work is attempted.

        Args:
            require_source (bool): Whether a source directory is needed. Listing
                and restoring only talk to the bucket.

        Raises:
            ConfigError: If the source directory is unset, missing or not a
                directory, or if the bucket is unset or malformed
        """
        if require_source:
            if not self.source_dir:
                raise ConfigError("Must set --src-dir")
            source = Path(self.source_dir)
            if not source.exists():
                raise ConfigError(f"--src-dir does not exist: {self.source_dir}")
            if not source.is_dir():
                raise ConfigError(f"--src-dir is not a directory: {self.source_dir}")

        if not self.bucket:
            raise ConfigError("Must set --s3-bucket")
        if "://" in self.bucket:
            raise ConfigError(
                f"--s3-bucket should be a plain bucket name without a scheme: {self.bucket}"
            )
        if "/" in self.bucket:
            raise ConfigError(
                f"--s3-bucket should not contain '/'; use --s3-subpath instead: {self.bucket}"
            )
