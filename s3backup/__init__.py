"""
s3backup - Back up a directory to S3 only when its content changes.

This package fingerprints a directory tree, checks the archive names already
stored under an S3 prefix for that fingerprint, and uploads a new zip archive
only when none matches. It also provides capture-logs, a wrapper that runs a
command with its output appended to size-rotated log files.
"""

__version__ = "0.1.0"

# Export public API
from .config import BackupConfig
from .fingerprint import fingerprint
from .operations import BackupOperations, BackupResult

__all__ = ["BackupConfig", "BackupOperations", "BackupResult", "fingerprint"]
