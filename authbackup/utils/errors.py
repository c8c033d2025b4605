"""Error handling utilities for AuthBackup CLI."""

import sys
import traceback
from typing import Optional

import click


class AuthBackupError(Exception):
    """Base exception for AuthBackup errors."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.message = message
        self.details = details
        self.suggestions = suggestions or []
        super().__init__(message)


class ConfigurationError(AuthBackupError):
    """Raised when configuration or a recovery plan is invalid."""

    pass


class ArtifactError(AuthBackupError):
    """Raised when a dump, restore or artifact write fails."""

    pass


class EncryptionError(ArtifactError):
    """Raised when an artifact cannot be encrypted or decrypted."""

    pass


class NotFoundError(AuthBackupError):
    """Raised when a backup set or recovery plan does not exist."""

    pass


class TransientDeliveryError(AuthBackupError):
    """Raised when a replication target is unreachable or times out."""

    pass


class RecoveryError(AuthBackupError):
    """Raised when a recovery run cannot be started."""

    pass


class ServiceControlError(AuthBackupError):
    """Raised when application services cannot be paused or resumed."""

    pass


class ErrorHandler:
    """Handles and formats errors for user-friendly display."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def handle_error(self, error: Exception, context: Optional[str] = None) -> None:
        """
        Handle and display error with appropriate formatting.

        Args:
            error: Exception to handle
            context: Optional context about when/where error occurred
        """
        if isinstance(error, AuthBackupError):
            self._handle_authbackup_error(error, context)
        else:
            self._handle_generic_error(error, context)

    def _handle_authbackup_error(self, error: AuthBackupError, context: Optional[str]) -> None:
        """Handle AuthBackup-specific errors."""
        self._report(error.message, context, error.details, error.suggestions)

    def _handle_generic_error(self, error: Exception, context: Optional[str]) -> None:
        """Map builtin OS and network errors onto backup-oriented hints."""
        if isinstance(error, FileNotFoundError):
            message = f"Path not found: {error}"
            suggestions = [
                "Check BACKUP_PATH and the tool paths (PG_DUMP_PATH, PG_RESTORE_PATH, PSQL_PATH)",
            ]
        elif isinstance(error, PermissionError):
            message = f"Permission denied: {error}"
            suggestions = [
                "Make sure the backup directory and key file belong to the user running authbackup",
            ]
        elif isinstance(error, ConnectionError):
            message = f"Connection failed: {error}"
            suggestions = [
                "Check DATABASE_URL and REDIS_HOST/REDIS_PORT",
                "Run 'authbackup replication status' if a remote region was involved",
            ]
        else:
            message = f"{type(error).__name__}: {error}"
            suggestions = []

        self._report(message, context, None, suggestions)

    def _report(self, message: str, context: Optional[str], details: Optional[str], suggestions: list) -> None:
        click.echo(f"✗ {message}", err=True)
        if context:
            click.echo(f"Context: {context}", err=True)
        if details:
            click.echo(f"Details: {details}", err=True)

        if suggestions:
            click.echo("\nSuggestions:", err=True)
            for hint in suggestions:
                click.echo(f"  • {hint}", err=True)

        if self.verbose:
            click.echo("\nTraceback:", err=True)
            traceback.print_exc()

    def exit_with_error(self, error: Exception, context: Optional[str] = None, exit_code: int = 1) -> None:
        """Report the error, then exit the process with exit_code."""
        self.handle_error(error, context)
        sys.exit(exit_code)


def create_error_suggestions(error_type: str, **kwargs) -> list:
    """
    Create contextual error suggestions based on error type and context.

    Args:
        error_type: Type of error
        **kwargs: Additional context information (tool, region, backup_id)

    Returns:
        list: List of suggestion strings
    """
    tool = kwargs.get("tool", "pg_dump")
    region = kwargs.get("region", "the target region")

    suggestions = {
        "postgres_tool_missing": [
            f"Install the PostgreSQL client tools so that {tool} is on PATH",
            "Or point PG_DUMP_PATH / PG_RESTORE_PATH / PSQL_PATH at the binaries",
        ],
        "redis_unreachable": [
            "Check REDIS_HOST and REDIS_PORT",
            "Verify REDIS_PASSWORD if the server requires authentication",
        ],
        "configuration_invalid": [
            "Run 'authbackup config show' to inspect the resolved configuration",
            "Check the environment variables named in the errors above",
        ],
        "encryption_key_missing": [
            "Run 'authbackup config init-key' to create an encryption key",
            "Or set BACKUP_ENCRYPTION_KEY_PATH to an existing key file",
        ],
        "target_unreachable": [
            f"Check network connectivity to {region}",
            "Run 'authbackup replication status' to see target health",
        ],
        "backup_not_found": [
            "Run 'authbackup backup list' to see available backups",
        ],
    }

    return suggestions.get(error_type, [])


def format_validation_errors(errors: list) -> str:
    """
    Format validation errors for display.

    Args:
        errors: List of validation error messages

    Returns:
        str: Formatted error message
    """
    if not errors:
        return "No validation errors"

    if len(errors) == 1:
        return f"Validation error: {errors[0]}"

    formatted = "Validation errors:\n"
    for i, error in enumerate(errors, 1):
        formatted += f"  {i}. {error}\n"

    return formatted.strip()
