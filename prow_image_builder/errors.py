"""Error definitions for prow_image_builder.

Every error carries a stable ``code`` for structured reporting and a
``retryable`` flag that the reconcile loop consults at the tick boundary:

- Retryable errors are counted against the error budget and retried on
  the next tick.
- Non-retryable errors terminate the build immediately.
"""

from __future__ import annotations

CONFIGURATION_ERROR = "configuration_error"
INVALID_SHA = "invalid_sha"
EMPTY_VERSION_FILE = "empty_version_file"
DRIVER_NOT_FOUND = "driver_not_found"
MISSING_CLONE_CONFIG = "missing_clone_config"
UNIT_MISSING = "unit_missing"
BUILD_FAILED = "build_failed"
RETRY_BUDGET_EXCEEDED = "retry_budget_exceeded"
INTERRUPTED = "interrupted"


class ImageBuilderError(Exception):
    """Base error for image builder operations."""

    retryable = False

    def __init__(self, message: str, code: str = "image_builder_error") -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(ImageBuilderError):
    """Raised when required inputs are missing, invalid or conflicting."""

    def __init__(self, message: str, code: str = CONFIGURATION_ERROR) -> None:
        super().__init__(message, code=code)


class InvalidSHAError(ImageBuilderError):
    """Raised when a SHA based tag is requested but the SHA is too short."""

    def __init__(self, sha: str, code: str = INVALID_SHA) -> None:
        super().__init__(f"head SHA {sha!r} is not a correct SHA", code=code)
        self.sha = sha


class EmptyVersionFileError(ImageBuilderError):
    """Raised when the VERSION file cannot be read or holds no version."""

    def __init__(self, message: str, code: str = EMPTY_VERSION_FILE) -> None:
        super().__init__(message, code=code)


class DriverNotFoundError(ImageBuilderError):
    """Raised when the driver pod cannot be found in the cluster."""

    retryable = True

    def __init__(self, namespace: str, name: str, code: str = DRIVER_NOT_FOUND) -> None:
        super().__init__(f"driver pod {namespace}/{name} not found", code=code)
        self.namespace = namespace
        self.name = name


class MissingCloneConfigError(ImageBuilderError):
    """Raised when the driver pod has no clonerefs init container config."""

    retryable = True

    def __init__(self, message: str, code: str = MISSING_CLONE_CONFIG) -> None:
        super().__init__(message, code=code)


class UnitMissingError(ImageBuilderError):
    """Raised when started build units are no longer listed by the cluster."""

    retryable = True

    def __init__(self, names: list[str], code: str = UNIT_MISSING) -> None:
        super().__init__(f"started build pods not found: {', '.join(names)}", code=code)
        self.names = names


class BuildFailedError(ImageBuilderError):
    """Raised when at least one build unit ended in phase Failed."""

    def __init__(self, names: list[str], code: str = BUILD_FAILED) -> None:
        super().__init__(
            f"build pods ended in phase Failed: {', '.join(names)}", code=code
        )
        self.names = names


class RetryBudgetExceededError(ImageBuilderError):
    """Raised when the reconcile loop failed too many times in a row."""

    def __init__(
        self, error_count: int, cause: Exception, code: str = RETRY_BUDGET_EXCEEDED
    ) -> None:
        super().__init__(
            f"too many errors ({error_count}), stopping build: {cause}", code=code
        )
        self.error_count = error_count
        self.cause = cause


class InterruptedBuildError(ImageBuilderError):
    """Raised when the build is stopped by a signal."""

    def __init__(self, signal_name: str, code: str = INTERRUPTED) -> None:
        super().__init__(f"build interrupted by {signal_name}", code=code)
        self.signal_name = signal_name


__all__ = [
    "BuildFailedError",
    "ConfigurationError",
    "DriverNotFoundError",
    "EmptyVersionFileError",
    "ImageBuilderError",
    "InterruptedBuildError",
    "InvalidSHAError",
    "MissingCloneConfigError",
    "RetryBudgetExceededError",
    "UnitMissingError",
]
