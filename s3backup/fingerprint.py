import os
import hashlib
import logging
from pathlib import Path
from typing import Callable, Iterator, List, Tuple

from .errors import FilesystemError


logger = logging.getLogger('s3backup')

HashFactory = Callable[[], "hashlib._Hash"]


def hash_file_content(file_path: str, hash_factory: HashFactory = hashlib.sha256) -> str:
    """Generate a hex digest for a file's content."""
    digest = hash_factory()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


def iter_tree_files(root: Path) -> Iterator[Tuple[Path, str]]:
    """
    Yield every regular file under a directory with its POSIX relative path.

    Symbolic links are neither followed nor yielded, so the set of files seen
    here is exactly the set the archive codec packs.

    Raises:
        FilesystemError: If a directory in the tree cannot be listed
    """
    def _raise(error: OSError) -> None:
        raise FilesystemError(f"Cannot read directory '{error.filename}': {error.strerror}") from error

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for name in sorted(filenames):
            file_path = Path(dirpath) / name
            if file_path.is_symlink() or not file_path.is_file():
                logger.debug(f"Skipping non-regular file '{file_path}'")
                continue
            yield file_path, file_path.relative_to(root).as_posix()


def fingerprint(source_dir: str, hash_factory: HashFactory = hashlib.sha256) -> str:
    """
    Compute a stable digest of a directory tree's file paths and contents.

    Each regular file contributes one entry, ``<content digest>  <relative path>``,
    the same line shape ``sha256sum`` prints. The entries are sorted bytewise and
    the final digest is taken over the sorted, newline-terminated entries. The
    result ignores timestamps, permissions, owners and the location of the tree
    itself, but a renamed or moved file changes it.

    Args:
        source_dir (str): Root of the tree to fingerprint
        hash_factory: Constructor for the hash used per file and for the result

    Returns:
        str: Hexadecimal digest

    Raises:
        FilesystemError: If the tree or any file in it cannot be read
    """
    root = Path(source_dir)
    entries: List[bytes] = []
    for file_path, relative_path in iter_tree_files(root):
        try:
            content_hash = hash_file_content(str(file_path), hash_factory)
        except OSError as e:
            raise FilesystemError(f"Cannot read file '{file_path}': {e.strerror or e}") from e
        entries.append(f"{content_hash}  {relative_path}\n".encode('utf-8', 'surrogateescape'))

    entries.sort()
    logger.debug(f"Hashed {len(entries)} files under '{source_dir}'")

    combined = hash_factory()
    for entry in entries:
        combined.update(entry)
    return combined.hexdigest()
