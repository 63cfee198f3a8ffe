"""
Unified error handling for stackweaver.

Every failure raised by the descriptor loader, the state recorder and the
provider adapters derives from :class:`StackWeaverError`, so the CLI can map
it to an exit code in one place.

Exit Codes:
- 0: Success (every resource created / deleted)
- 1: Failure (partial or total provisioning failure, provider error)
- 2: Configuration error (nothing was provisioned)
- 127: Unknown/internal error
- 130: Interrupted
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    CONFIG_ERROR = 2
    UNKNOWN_ERROR = 127
    INTERRUPTED = 130


class StackWeaverError(Exception):
    """Base exception for stackweaver errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(StackWeaverError):
    """Malformed descriptor set, state file or local setup. Nothing is provisioned."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(StackWeaverError):
    """Raised when the cloud provider rejects or fails a call."""

    exit_code = ExitCode.FAILURE
    retryable: bool = False


class AuthError(ProviderError):
    """Credentials are missing or invalid. Aborts the whole run."""


class QuotaError(ProviderError):
    """A provider limit was exceeded."""


class ConflictError(ProviderError):
    """The name is taken by an incompatible resource."""


class TransientError(ProviderError):
    """Retryable network, timeout or 5xx failure."""

    retryable = True


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Catches exceptions and converts them to exit codes with consistent
    error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Usage:
        @main_with_error_handling()
        def provision_command(path: str) -> int:
            ...
            return 0

    Exit codes:
        - StackWeaverError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130
        - Other exceptions: Returns 127
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StackWeaverError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                _print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return ExitCode.INTERRUPTED
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StackWeaverError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg


def _print_error(message: str) -> None:
    from stackweaver.cli.ux import error as print_error

    print_error(message)
