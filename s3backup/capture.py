#!/usr/bin/env python3
"""
Run a command line, capturing its output to log files.

The logs are rotated when they start to get big: old logs are moved to have
a '.old' extension, overwriting any older logs. Usage::

    capture-logs --log=<log> [--errlog=<errlog>] -- <command to run>
"""

import os
import sys
import shlex
import logging
import argparse
import subprocess
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, TextIO

from .errors import BackupError, ConfigError, FilesystemError


logger = logging.getLogger('s3backup.capture')

PROGNAME = "capture-logs"

# Rotate logs when they're at least this large, in bytes.
LOG_SIZE_THRESHOLD = 10 * 1024 * 1024
ROTATED_SUFFIX = ".old"

# Exit statuses of the wrapper itself, following the env(1) conventions.
EXIT_WRAPPER_FAILED = 125
EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127


def rotated_path(log_path: str) -> str:
    return f"{log_path}{ROTATED_SUFFIX}"


def maybe_rotate(log_path: str, errlog_path: Optional[str] = None,
                 threshold: int = LOG_SIZE_THRESHOLD) -> bool:
    """
    Move the log files aside if together they have reached ``threshold`` bytes.

    Nothing is rotated while the primary log does not exist. Both files are
    rotated at the same time so that they stay in sync. Each is renamed to its
    '.old' sibling, replacing any previous one.

    Returns:
        bool: True if the logs were rotated

    Raises:
        FilesystemError: If a log cannot be inspected or renamed
    """
    paths = [path for path in (log_path, errlog_path) if path]
    try:
        if not os.path.isfile(log_path):
            return False
        existing = [path for path in paths if os.path.isfile(path)]
        size = sum(os.path.getsize(path) for path in existing)
    except OSError as e:
        raise FilesystemError(f"Cannot inspect log file: {e}") from e

    if size < threshold:
        return False

    for path in existing:
        try:
            os.replace(path, rotated_path(path))
        except OSError as e:
            raise FilesystemError(f"Cannot rotate log file '{path}': {e}") from e
        logger.info(f"Rotated '{path}' to '{rotated_path(path)}' ({size} bytes in total)")
    return True


def _timestamp() -> str:
    return datetime.now().astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")


def format_header(command: Sequence[str]) -> str:
    return f"=== {_timestamp()} - Running {shlex.join(command)} ===\n"


def format_footer(status: int) -> str:
    return f"=== {_timestamp()} - Finished with status {status} ===\n\n"


def _write(stream: BinaryIO, text: str) -> None:
    stream.write(text.encode('utf-8'))
    stream.flush()


def _execute(command: Sequence[str], stdout: BinaryIO, stderr: Optional[BinaryIO],
             diagnostics: BinaryIO) -> int:
    """Run the command and translate its outcome into a shell-style status."""
    try:
        completed = subprocess.run(list(command), stdout=stdout,
                                   stderr=stderr if stderr is not None else subprocess.STDOUT,
                                   check=False)
    except FileNotFoundError:
        _write(diagnostics, f"{PROGNAME}: {command[0]}: command not found\n")
        return EXIT_NOT_FOUND
    except OSError as e:
        _write(diagnostics, f"{PROGNAME}: {command[0]}: {e.strerror or e}\n")
        return EXIT_CANNOT_EXECUTE

    status = completed.returncode
    if status < 0:
        # Killed by a signal.
        status = 128 - status
    return status


def run(log_path: str, errlog_path: Optional[str], command: Sequence[str],
        threshold: int = LOG_SIZE_THRESHOLD, terminal: Optional[TextIO] = None) -> int:
    """
    Run ``command`` with its output appended to the log files.

    Without ``errlog_path`` the command's stdout and stderr are interleaved into
    ``log_path``. With it, stdout goes to ``log_path``, stderr goes to
    ``errlog_path``, and the header and footer lines are written to both logs
    and echoed on ``terminal`` (stdout by default).

    Args:
        log_path (str): Primary log file
        errlog_path (str, optional): Separate log file for standard error
        command: Program and arguments to run
        threshold (int): Combined log size that triggers rotation

    Returns:
        int: The command's exit status

    Raises:
        ConfigError: If no log path or no command is given
        FilesystemError: If the logs cannot be rotated, created or written
    """
    if not log_path:
        raise ConfigError("Must set --log")
    if not command:
        raise ConfigError("No command to run")

    maybe_rotate(log_path, errlog_path, threshold)

    try:
        for path in (log_path, errlog_path):
            if path:
                os.makedirs(Path(path).parent, exist_ok=True)

        if not errlog_path:
            with open(log_path, 'ab') as log:
                _write(log, format_header(command))
                status = _execute(command, stdout=log, stderr=None, diagnostics=log)
                _write(log, format_footer(status))
            return status

        if terminal is None:
            terminal = sys.stdout
        with open(log_path, 'ab') as log, open(errlog_path, 'ab') as errlog:
            header = format_header(command)
            for stream in (log, errlog):
                _write(stream, header)
            terminal.write(header)
            terminal.flush()

            status = _execute(command, stdout=log, stderr=errlog, diagnostics=errlog)

            footer = format_footer(status)
            for stream in (log, errlog):
                _write(stream, footer)
            terminal.write(footer)
            terminal.flush()
        return status
    except OSError as e:
        raise FilesystemError(f"Cannot write log file: {e}") from e


class _CaptureArgumentParser(argparse.ArgumentParser):
    """Reports bad arguments with a status no wrapped command is likely to use."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_WRAPPER_FAILED, f"{self.prog}: error: {message}\n")


def main(argv: Optional[List[str]] = None) -> int:
    parser = _CaptureArgumentParser(
        prog=PROGNAME,
        description="Run a command, appending its output to rotating log files",
    )
    parser.add_argument("--log", required=True,
                        help="Log file for the command's output")
    parser.add_argument("--errlog",
                        help="Separate log file for the command's standard error")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Report log rotation on standard error")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="Command to run, after '--'")
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command to run is required")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        return run(args.log, args.errlog, command)
    except BackupError as e:
        print(f"{PROGNAME} [{_timestamp()}] FAILED: {e}", file=sys.stderr)
        return EXIT_WRAPPER_FAILED


if __name__ == "__main__":
    sys.exit(main())
