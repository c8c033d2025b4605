"""Utilities for AuthBackup CLI."""

from .logging import setup_logging
from .timeouts import OperationTimeout, run_with_timeout

__all__ = ["OperationTimeout", "run_with_timeout", "setup_logging"]
