import argparse
import sys
import logging
from typing import List, NoReturn, Optional

from .config import BackupConfig
from .errors import BackupError
from .operations import BackupOperations
from .storage import ObjectStore, S3ObjectStore


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
COMMANDS = ("backup", "list", "restore")

logger = logging.getLogger('s3backup')


def configure_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """
    Send log records to stdout, or append them to ``log_file`` when given.

    Stdout is the default so that a wrapper such as capture-logs collects the
    progress messages together with everything else the run prints.
    """
    handler_kwargs = {'filename': log_file, 'filemode': 'a'} if log_file else {'stream': sys.stdout}
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
        **handler_kwargs,
    )


def print_error_and_exit(error_message: str, exit_code: int = 1) -> NoReturn:
    """
    Print an error message and exit the program with the specified exit code.

    Args:
        error_message (str): The error message to display
        exit_code (int, optional): The exit code to use. Defaults to 1.
    """
    logger.error(error_message)
    print(f"Error: {error_message}", file=sys.stderr)
    sys.exit(exit_code)


def build_config(args: argparse.Namespace) -> BackupConfig:
    return BackupConfig(
        bucket=args.s3_bucket or "",
        source_dir=getattr(args, 'src_dir', None),
        subpath=args.s3_subpath,
        archive_prefix=args.archive_prefix,
        aws_profile=args.aws_profile,
        aws_region=args.aws_region,
        endpoint_url=args.endpoint_url,
        keep_failed_dir=getattr(args, 'keep_failed_dir', None),
    )


def create_store(config: BackupConfig) -> ObjectStore:
    return S3ObjectStore(
        config.bucket,
        aws_profile=config.aws_profile,
        aws_region=config.aws_region,
        endpoint_url=config.endpoint_url,
    )


def backup_command(args: argparse.Namespace) -> None:
    """
    Back up the source directory if it changed since the last backup.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - src_dir: Directory to back up
            - s3_bucket, s3_subpath, archive_prefix: Where backups are stored
            - keep_failed_dir: Where to keep an archive that failed to upload
            - dry_run: Only report what would be uploaded
    """
    try:
        config = build_config(args)
        config.validate()
        with BackupOperations(config, store=create_store(config)) as ops:
            result = ops.backup(dry_run=args.dry_run)
        if result.uploaded:
            print(f"Backup uploaded to s3://{config.bucket}/{result.remote_key}")
        elif result.existing:
            print(f"Backup not necessary; {result.existing} has checksum {result.fingerprint}")
        else:
            print(f"Dry run: would upload s3://{config.bucket}/{result.remote_key}")
    except BackupError as e:
        print_error_and_exit(str(e), e.exit_code)
    except Exception as e:
        print_error_and_exit(f"Error running backup: {str(e)}")


def list_command(args: argparse.Namespace) -> None:
    """
    Print the names of the backups stored under the configured prefix.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - s3_bucket, s3_subpath, archive_prefix: Where backups are stored
    """
    try:
        config = build_config(args)
        config.validate(require_source=False)
        with BackupOperations(config, store=create_store(config)) as ops:
            names = ops.list_backups()
        if not names:
            print("No backups found.")
            return
        for name in names:
            print(name)
    except BackupError as e:
        print_error_and_exit(str(e), e.exit_code)
    except Exception as e:
        print_error_and_exit(f"Error listing backups: {str(e)}")


def restore_command(args: argparse.Namespace) -> None:
    """
    Download a backup and extract it into a directory.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - output_directory: Directory to restore to
            - fingerprint: Checksum of the backup to restore (newest if unset)
            - s3_bucket, s3_subpath, archive_prefix: Where backups are stored
    """
    try:
        config = build_config(args)
        config.validate(require_source=False)
        with BackupOperations(config, store=create_store(config)) as ops:
            name = ops.restore(args.output_directory, args.fingerprint)
        print(f"Backup {name} restored to {args.output_directory}")
    except BackupError as e:
        print_error_and_exit(str(e), e.exit_code)
    except PermissionError as e:
        print_error_and_exit(f"Permission denied: {str(e)}")
    except Exception as e:
        print_error_and_exit(f"Error restoring backup: {str(e)}")


def _remote_arguments() -> argparse.ArgumentParser:
    """Options naming the bucket location, shared by every command."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--s3-bucket", "--s3_bucket",
        dest="s3_bucket",
        help="S3 bucket holding the backups, as a plain name without 's3://'"
    )
    parser.add_argument(
        "--s3-subpath", "--s3_subpath",
        dest="s3_subpath",
        default="",
        help="Path within the bucket to put the backups under"
    )
    parser.add_argument(
        "--archive-prefix", "--archive_prefix",
        dest="archive_prefix",
        default="",
        help="Prefix of backup file names; the rest is the date/time and checksum"
    )
    parser.add_argument("--aws-profile", help="AWS profile to use")
    parser.add_argument("--aws-region", help="AWS region of the bucket")
    parser.add_argument("--endpoint-url", help="Endpoint of an S3-compatible service")
    return parser


def default_to_backup(argv: List[str]) -> List[str]:
    """
    Insert the backup command when options are given without a command.

    Keeps the plain `backup-to-s3 --src_dir ... --s3_bucket ...` invocation
    working. Global options in front of the command are left where they are.
    """
    index = 0
    while index < len(argv):
        arg = argv[index]
        if arg == "--log-file":
            index += 2
        elif arg.startswith("--log-file=") or arg in ("-v", "--verbose"):
            index += 1
        else:
            break
    if index >= len(argv):
        return argv
    arg = argv[index]
    if arg in COMMANDS or arg in ("-h", "--help") or not arg.startswith("-"):
        return argv
    return argv[:index] + ["backup"] + argv[index:]


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the backup command line interface.
    Parses arguments and dispatches to appropriate command handlers.
    """
    parser = argparse.ArgumentParser(
        description="Back up a directory to S3 if it has changed since the last backup",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--log-file",
        help="Append log messages to this file instead of stdout"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    remote = _remote_arguments()

    # Backup command
    backup_parser = subparsers.add_parser(
        "backup",
        parents=[remote],
        help="Upload a new backup if the directory changed"
    )
    backup_parser.add_argument(
        "--src-dir", "--src_dir",
        dest="src_dir",
        help="Directory to back up"
    )
    backup_parser.add_argument(
        "--keep-failed-dir",
        help="Copy the archive here if uploading it fails"
    )
    backup_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Check for changes without archiving or uploading"
    )

    # List command
    subparsers.add_parser(
        "list",
        parents=[remote],
        help="List existing backups"
    )

    # Restore command
    restore_parser = subparsers.add_parser(
        "restore",
        parents=[remote],
        help="Restore a backup to a directory"
    )
    restore_parser.add_argument(
        "--output-directory",
        required=True,
        help="Directory to restore to (will be created if it doesn't exist)"
    )
    restore_parser.add_argument(
        "--fingerprint",
        help="Checksum, or part of one, of the backup to restore; defaults to the newest"
    )

    argv = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(default_to_backup(argv))
    configure_logging(args.log_file, args.verbose)

    # Command dispatch
    command_handlers = {
        "backup": backup_command,
        "list": list_command,
        "restore": restore_command,
    }

    if args.command in command_handlers:
        command_handlers[args.command](args)
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
