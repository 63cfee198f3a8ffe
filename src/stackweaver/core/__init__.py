"""Core modules for stackweaver - error taxonomy and exit codes."""

from stackweaver.core.errors import (
    AuthError,
    ConfigError,
    ConflictError,
    ExitCode,
    ProviderError,
    QuotaError,
    StackWeaverError,
    TransientError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StackWeaverError",
    "ConfigError",
    "ProviderError",
    "AuthError",
    "QuotaError",
    "ConflictError",
    "TransientError",
    "main_with_error_handling",
    "format_error_message",
]
