"""Tests for error handling system."""

import time
from unittest.mock import patch

import pytest

from authbackup.utils.errors import (
    ArtifactError,
    AuthBackupError,
    ConfigurationError,
    EncryptionError,
    ErrorHandler,
    NotFoundError,
    RecoveryError,
    ServiceControlError,
    TransientDeliveryError,
    create_error_suggestions,
    format_validation_errors,
)
from authbackup.utils.timeouts import OperationTimeout, run_with_timeout


class TestAuthBackupError:
    """Test custom error classes."""

    def test_authbackup_error_basic(self):
        """Test basic AuthBackupError functionality."""
        error = AuthBackupError("Test error message")

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details is None
        assert error.suggestions == []

    def test_authbackup_error_with_details(self):
        """Test AuthBackupError with details and suggestions."""
        suggestions = ["Try this", "Or try that"]
        error = AuthBackupError("Test error", details="Detailed explanation", suggestions=suggestions)

        assert error.details == "Detailed explanation"
        assert error.suggestions == suggestions

    def test_specific_error_types(self):
        """Test specific error type inheritance."""
        for error_class in (
            ConfigurationError,
            ArtifactError,
            NotFoundError,
            TransientDeliveryError,
            RecoveryError,
            ServiceControlError,
        ):
            assert isinstance(error_class("x"), AuthBackupError)

        assert isinstance(EncryptionError("x"), ArtifactError)


class TestErrorHandler:
    """Test error handler functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.handler = ErrorHandler(verbose=False)
        self.verbose_handler = ErrorHandler(verbose=True)

    def test_handle_authbackup_error(self):
        """Test handling AuthBackup-specific errors."""
        error = NotFoundError(
            "Backup not found: backup-1",
            details="No manifest",
            suggestions=["Run 'authbackup backup list'"],
        )

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error, "Restore")

            output = [str(call) for call in mock_echo.call_args_list]
            assert "✗ Backup not found: backup-1" in output[0]
            assert any("Context: Restore" in line for line in output)
            assert any("Details: No manifest" in line for line in output)
            assert any("authbackup backup list" in line for line in output)

    def test_handle_generic_connection_error(self):
        """Test handling builtin ConnectionError."""
        with patch("click.echo") as mock_echo:
            self.handler.handle_error(ConnectionError("refused"))

            assert "Connection failed" in str(mock_echo.call_args_list[0])

    def test_handle_generic_error_permission_denied(self):
        """Test handling PermissionError."""
        with patch("click.echo") as mock_echo:
            self.handler.handle_error(PermissionError("backups/"))

            assert "Permission denied" in str(mock_echo.call_args_list[0])

    def test_handle_unknown_error_uses_type_name(self):
        """Test handling an arbitrary exception."""
        with patch("click.echo") as mock_echo:
            self.handler.handle_error(ValueError("bad value"))

            assert "ValueError: bad value" in str(mock_echo.call_args_list[0])

    def test_handle_error_with_verbose(self):
        """Test error handling with verbose output."""
        with patch("click.echo"):
            with patch("traceback.print_exc") as mock_traceback:
                self.verbose_handler.handle_error(AuthBackupError("Test error"))

                mock_traceback.assert_called_once()

    def test_exit_with_error(self):
        """Test exit_with_error functionality."""
        with patch("click.echo"):
            with pytest.raises(SystemExit) as exc_info:
                self.handler.exit_with_error(RecoveryError("Fatal error"), exit_code=2)

        assert exc_info.value.code == 2


class TestErrorUtilities:
    """Test error utility functions."""

    def test_create_error_suggestions_tool(self):
        """Test PostgreSQL tool suggestions."""
        suggestions = create_error_suggestions("postgres_tool_missing", tool="pg_restore")

        assert "pg_restore" in suggestions[0]

    def test_create_error_suggestions_region(self):
        """Test replication target suggestions."""
        suggestions = create_error_suggestions("target_unreachable", region="eu-west-1")

        assert any("eu-west-1" in suggestion for suggestion in suggestions)

    def test_create_error_suggestions_unknown(self):
        """Test suggestions for unknown error type."""
        assert create_error_suggestions("unknown_error_type") == []

    def test_format_validation_errors_single(self):
        """Test formatting single validation error."""
        result = format_validation_errors(["DATABASE_URL is required"])

        assert result == "Validation error: DATABASE_URL is required"

    def test_format_validation_errors_multiple(self):
        """Test formatting multiple validation errors."""
        result = format_validation_errors(["first", "second", "third"])

        assert result.startswith("Validation errors:")
        assert "1. first" in result
        assert "3. third" in result

    def test_format_validation_errors_empty(self):
        """Test formatting empty validation errors."""
        assert format_validation_errors([]) == "No validation errors"


class TestRunWithTimeout:
    """Test the wall-clock limit helper."""

    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1, 2, b=3) == 5

    def test_no_limit_runs_inline(self):
        assert run_with_timeout(lambda: "done", None) == "done"

    def test_exceptions_propagate(self):
        def broken():
            raise ArtifactError("dump failed")

        with pytest.raises(ArtifactError):
            run_with_timeout(broken, 1)

    def test_timeout_raises(self):
        with pytest.raises(OperationTimeout) as exc_info:
            run_with_timeout(time.sleep, 0.05, 0.5)

        assert "0.05s" in str(exc_info.value)
