import os
import logging
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import ArchiveError, FilesystemError
from .fingerprint import iter_tree_files


logger = logging.getLogger('s3backup')

WORK_DIR_PREFIX = "s3backup-"


@contextmanager
def working_directory() -> Iterator[Path]:
    """
    Provide a private, empty directory that is removed when the block exits.

    The directory and everything written into it are deleted on every exit
    path, including when an exception propagates out of the block.
    """
    with tempfile.TemporaryDirectory(prefix=WORK_DIR_PREFIX) as work_dir:
        logger.debug(f"Created working directory '{work_dir}'")
        yield Path(work_dir)
        logger.debug(f"Removing working directory '{work_dir}'")


class ArchiveCodec:
    """Packs a directory into a single archive file and unpacks it again."""

    extension = ""

    def create(self, source_dir: str, dest_file: str) -> None:
        raise NotImplementedError

    def extract(self, archive_file: str, output_dir: str) -> None:
        raise NotImplementedError


class ZipCodec(ArchiveCodec):
    """Deflate-compressed zip archives with paths relative to the tree root."""

    extension = "zip"

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self.compression = compression

    def create(self, source_dir: str, dest_file: str) -> None:
        """
        Pack every regular file under ``source_dir`` into ``dest_file``.

        Empty directories are recorded too so the structure survives a restore.
        A partially written archive is removed before the error propagates.

        Raises:
            ArchiveError: If a file cannot be read or the archive cannot be written
        """
        root = Path(source_dir)
        file_count = 0
        try:
            # Files older than 1980 are stored with the earliest time zip can hold.
            with zipfile.ZipFile(dest_file, "w", compression=self.compression,
                                 strict_timestamps=False) as z:
                for dirpath, dirnames, filenames in os.walk(root):
                    if not dirnames and not filenames and Path(dirpath) != root:
                        z.write(dirpath, Path(dirpath).relative_to(root).as_posix() + "/")
                for file_path, relative_path in iter_tree_files(root):
                    try:
                        relative_path.encode("utf-8")
                    except UnicodeEncodeError as e:
                        raise ArchiveError(f"Cannot store file name that is not valid UTF-8: {file_path}") from e
                    z.write(file_path, relative_path)
                    file_count += 1
        except (OSError, ValueError, zipfile.LargeZipFile, FilesystemError) as e:
            self._discard(dest_file)
            raise ArchiveError(f"Failed to archive '{source_dir}': {e}") from e
        except Exception:
            self._discard(dest_file)
            raise
        logger.info(f"Archived {file_count} files from '{source_dir}' into '{dest_file}'")

    def extract(self, archive_file: str, output_dir: str) -> None:
        """
        Unpack ``archive_file`` into ``output_dir``.

        Raises:
            ArchiveError: If the archive is corrupt, holds paths escaping the
                output directory, or cannot be written out
        """
        output_path = Path(output_dir).resolve()
        try:
            with zipfile.ZipFile(archive_file) as z:
                for member in z.namelist():
                    target = (output_path / member).resolve()
                    if target != output_path and output_path not in target.parents:
                        raise ArchiveError(f"Archive entry escapes the output directory: {member}")
                z.extractall(output_path)
                logger.info(f"Extracted {len(z.namelist())} entries into '{output_dir}'")
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveError(f"Failed to extract '{archive_file}': {e}") from e

    @staticmethod
    def _discard(dest_file: str) -> None:
        try:
            os.unlink(dest_file)
        except FileNotFoundError:
            pass
