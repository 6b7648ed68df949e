import os
import re
import shutil
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .archive import ArchiveCodec, ZipCodec, working_directory
from .config import BackupConfig
from .errors import BackupError, ConfigError, InternalError, TransferError
from .fingerprint import HashFactory, fingerprint
from .storage import ObjectStore, S3ObjectStore


# Get logger instance (configuration is handled in cli.py)
logger = logging.getLogger('s3backup')


class BackupState(Enum):
    START = "start"
    FINGERPRINTING = "fingerprinting"
    CHECKING_LEDGER = "checking-ledger"
    ARCHIVING = "archiving"
    UPLOADING = "uploading"
    DONE_NOOP = "done-noop"
    DONE_UPLOADED = "done-uploaded"
    FAILED = "failed"


@dataclass(frozen=True)
class BackupResult:
    fingerprint: str
    uploaded: bool
    archive_name: Optional[str] = None
    remote_key: Optional[str] = None
    existing: Optional[str] = None


def local_now() -> datetime:
    return datetime.now().astimezone()


def find_existing(store: ObjectStore, key_prefix: str, archive_prefix: str = "") -> List[str]:
    """
    List the names of archives already stored under a remote prefix.

    Args:
        store (ObjectStore): Remote store to query
        key_prefix (str): Directory-like prefix the archives live under
        archive_prefix (str): Leading part shared by the archive names

    Returns:
        List[str]: Archive names relative to ``key_prefix``, in listing order.
            Empty when nothing has been stored under the prefix yet.

    Raises:
        TransferError: If the store cannot be listed
    """
    keys = store.list(f"{key_prefix}{archive_prefix}")
    return [key[len(key_prefix):] for key in keys if key.startswith(key_prefix)]


def matching_backups(names: Iterable[str], digest: str) -> List[str]:
    """Return the names that embed ``digest`` anywhere in them."""
    return [name for name in names if digest in name]


def has_fingerprint(names: Iterable[str], digest: str) -> bool:
    return bool(matching_backups(names, digest))


def archive_name(archive_prefix: str, digest: str, extension: str, timestamp: datetime) -> str:
    """Build ``<prefix><RFC 3339 timestamp>-<digest>.<extension>``."""
    return f"{archive_prefix}{timestamp.isoformat(timespec='seconds')}-{digest}.{extension}"


class BackupOperations:
    """Backs up a directory to object storage when its content has changed."""

    def __init__(
        self,
        config: BackupConfig,
        store: Optional[ObjectStore] = None,
        codec: Optional[ArchiveCodec] = None,
        hash_factory: HashFactory = hashlib.sha256,
        clock: Callable[[], datetime] = local_now,
    ):
        """
        Initialize BackupOperations for one configuration.

        Args:
            config (BackupConfig): Source directory and remote location
            store (ObjectStore, optional): Remote store. Defaults to an
                S3ObjectStore for ``config.bucket``.
            codec (ArchiveCodec, optional): Archive format. Defaults to zip.
            hash_factory: Hash constructor used for fingerprints
            clock: Returns the timestamp embedded in new archive names
        """
        self.config = config
        if store is None:
            store = S3ObjectStore(
                config.bucket,
                aws_profile=config.aws_profile,
                aws_region=config.aws_region,
                endpoint_url=config.endpoint_url,
            )
        self.store = store
        self.codec = codec or ZipCodec()
        self.hash_factory = hash_factory
        self.clock = clock
        self.state = BackupState.START
        self._digest_pattern = re.compile(
            "[0-9a-f]{%d}" % (hash_factory().digest_size * 2)
        )

    def _transition(self, state: BackupState) -> None:
        logger.debug(f"Backup state {self.state.value} -> {state.value}")
        self.state = state

    def backup(self, dry_run: bool = False) -> BackupResult:
        """
        Upload a new archive of the source directory if its content changed.

        The tree is fingerprinted and the remote prefix is listed before anything
        is written remotely. If any existing archive name contains the fingerprint
        the run ends without uploading. Otherwise the tree is zipped in a private
        working directory and uploaded under a name carrying the current time and
        the fingerprint.

        Args:
            dry_run (bool): Stop after the ledger check and only report what
                would be uploaded

        Returns:
            BackupResult: What the run found and did

        Raises:
            ConfigError: If the configuration is invalid
            FilesystemError: If the source tree cannot be read
            ArchiveError: If the archive cannot be created
            TransferError: If listing or uploading fails
            InternalError: If the fingerprint is malformed or something unexpected fails
        """
        try:
            self.config.validate()

            self._transition(BackupState.FINGERPRINTING)
            logger.info(f"Checksumming {self.config.source_dir}...")
            digest = fingerprint(self.config.source_dir, self.hash_factory)
            if not self._digest_pattern.fullmatch(digest):
                raise InternalError(f"Malformed checksum '{digest}'")
            logger.info(f"Checksum: {digest}")

            self._transition(BackupState.CHECKING_LEDGER)
            logger.info(f"Scanning existing backups in {self.config.describe_remote()}...")
            existing = find_existing(self.store, self.config.key_prefix, self.config.archive_prefix)
            matches = matching_backups(existing, digest)
            if matches:
                logger.info(f"Found existing backup with same checksum: {matches[0]}")
                logger.info("Backup not necessary; exiting.")
                self._transition(BackupState.DONE_NOOP)
                return BackupResult(fingerprint=digest, uploaded=False, existing=matches[0])

            name = archive_name(self.config.archive_prefix, digest, self.codec.extension, self.clock())
            key = self.config.remote_key(name)
            if dry_run:
                logger.info(f"Dry run: would upload new backup to s3://{self.config.bucket}/{key}")
                self._transition(BackupState.DONE_NOOP)
                return BackupResult(fingerprint=digest, uploaded=False, archive_name=name, remote_key=key)

            with working_directory() as work_dir:
                archive_path = work_dir / name

                self._transition(BackupState.ARCHIVING)
                logger.info(f"Archiving {self.config.source_dir} to {archive_path}...")
                self.codec.create(self.config.source_dir, str(archive_path))

                self._transition(BackupState.UPLOADING)
                logger.info(f"Uploading new backup to s3://{self.config.bucket}/{key}...")
                try:
                    self.store.put(str(archive_path), key)
                except TransferError:
                    self._keep_failed_archive(archive_path)
                    raise

            logger.info("Backup complete.")
            self._transition(BackupState.DONE_UPLOADED)
            return BackupResult(fingerprint=digest, uploaded=True, archive_name=name, remote_key=key)
        except BackupError as e:
            self._transition(BackupState.FAILED)
            logger.error(f"Backup failed: {str(e)}")
            raise
        except Exception as e:
            self._transition(BackupState.FAILED)
            logger.error(f"Backup failed: {str(e)}")
            raise InternalError(f"Unexpected failure during backup: {str(e)}") from e

    def _keep_failed_archive(self, archive_path: Path) -> None:
        """Copy an archive that failed to upload out of the working directory."""
        keep_dir = self.config.keep_failed_dir
        if not keep_dir:
            return
        try:
            os.makedirs(keep_dir, exist_ok=True)
            kept = shutil.copy2(archive_path, keep_dir)
            logger.warning(f"Kept archive that failed to upload at '{kept}'")
        except OSError as e:
            logger.error(f"Could not keep archive that failed to upload: {str(e)}")

    def list_backups(self) -> List[str]:
        """
        List the archive names already stored for this configuration.

        Raises:
            ConfigError: If the bucket is not configured
            TransferError: If the store cannot be listed
        """
        self.config.validate(require_source=False)
        names = find_existing(self.store, self.config.key_prefix, self.config.archive_prefix)
        logger.debug(f"Retrieved {len(names)} backups from {self.config.describe_remote()}")
        return names

    def restore(self, output_directory: str, digest: Optional[str] = None) -> str:
        """
        Download an archive and extract it into a directory.

        Args:
            output_directory (str): Directory to extract into; created if missing
            digest (str, optional): Fingerprint, or part of one, identifying the
                archive. Defaults to the newest archive.

        Returns:
            str: Name of the archive that was restored

        Raises:
            ConfigError: If no archive matches or the output path is not a directory
            TransferError: If listing or downloading fails
            ArchiveError: If the archive cannot be extracted
        """
        if not output_directory:
            raise ConfigError("Output directory cannot be empty")
        names = self.list_backups()
        if digest:
            names = matching_backups(names, digest)
        if not names:
            target = f"with checksum {digest}" if digest else "at all"
            raise ConfigError(f"No backup found {target} in {self.config.describe_remote()}")
        # Names share a prefix and embed ISO timestamps, so the largest is the newest.
        name = max(names)

        output_path = Path(output_directory)
        if output_path.exists() and not output_path.is_dir():
            raise ConfigError(f"'{output_directory}' exists but is not a directory")
        output_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"Restoring {name} to {output_directory}")
        with working_directory() as work_dir:
            local_path = work_dir / Path(name).name
            self.store.get(self.config.remote_key(name), str(local_path))
            self.codec.extract(str(local_path), str(output_path))
        logger.info(f"Restored {name} to {output_directory}")
        return name

    def close(self) -> None:
        """Release the store's connections."""
        if self.store is not None:
            self.store.close()

    def __enter__(self) -> 'BackupOperations':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
