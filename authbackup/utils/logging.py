"""Logging configuration for AuthBackup CLI."""

import logging
import re
import sys
from typing import Optional

# Third-party loggers that are chatty at INFO during uploads and docker calls
NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "docker")

_URL_PASSWORD = re.compile(r"(\b[a-z][a-z0-9+.-]*://[^:/@\s]+:)[^@\s]+@", re.IGNORECASE)


class CredentialFilter(logging.Filter):
    """Mask passwords embedded in connection URLs before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _URL_PASSWORD.sub(r"\1***@", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _managed(handler: logging.Handler) -> bool:
    return getattr(handler, "_authbackup", False)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """
    Setup logging configuration for the CLI.

    Console output goes to stderr so command output on stdout stays
    machine-readable. Calling this again replaces the handlers installed
    by the previous call, which keeps the scheduler daemon and repeated
    CLI invocations in one process from logging every line twice.

    Args:
        verbose: Enable verbose/debug logging
        log_file: Optional log file path, always written at DEBUG
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()

    for handler in [h for h in root_logger.handlers if _managed(h)]:
        root_logger.removeHandler(handler)
        handler.close()

    credential_filter = CredentialFilter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    console_handler.addFilter(credential_filter)
    console_handler._authbackup = True
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(process)d %(name)s %(levelname)s %(message)s"))
        file_handler.addFilter(credential_filter)
        file_handler._authbackup = True
        root_logger.addHandler(file_handler)

    # File handler wants DEBUG even when the console does not
    root_logger.setLevel(logging.DEBUG if log_file else level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)
