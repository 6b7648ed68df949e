"""
Error kinds raised by the backup components.

Every error carries the process exit status the command line reports for it.
"""


class BackupError(Exception):
    """Base class for all backup failures."""

    exit_code = 1


class ConfigError(BackupError):
    """A required parameter is missing or invalid."""

    exit_code = 2


class FilesystemError(BackupError):
    """Reading the source tree or writing a log file failed."""

    exit_code = 3


class ArchiveError(BackupError):
    """Packaging or unpacking an archive failed."""

    exit_code = 4


class TransferError(BackupError):
    """Listing, uploading or downloading remote objects failed."""

    exit_code = 5


class InternalError(BackupError):
    """A collaborator returned something that breaks an invariant."""

    exit_code = 70
