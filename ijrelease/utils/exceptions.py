from __future__ import annotations

from typing import Any, Iterable, Optional


class ReleaseError(Exception):
    """Base exception for all ijrelease errors."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        self.details = kwargs
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ManagerError(ReleaseError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ConfigurationError(ReleaseError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class DescriptorError(ReleaseError):
    """Exception raised when a plugin descriptor cannot be loaded."""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, source=source, **kwargs)
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.message} (Source: {self.source})"
        return super().__str__()


class ValidationError(ReleaseError):
    """Exception raised when a descriptor fails a strict validation policy."""

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None, **kwargs: Any) -> None:
        self.errors = list(errors or [])
        super().__init__(message, errors=self.errors, **kwargs)


class PackageError(ReleaseError):
    """Exception raised for errors while building or reading a plugin package."""

    pass


class MissingSecretError(ReleaseError):
    """Exception raised when a required environment secret is unset or empty.

    Attributes:
        variables: Names of the missing environment variables
    """

    def __init__(self, variables: Iterable[str], **kwargs: Any) -> None:
        self.variables = list(variables)
        names = ", ".join(self.variables)
        super().__init__(f"Missing required environment variables: {names}", variables=self.variables, **kwargs)


class SigningError(ReleaseError):
    """Exception raised for errors in artifact signing."""

    pass


class VerificationError(ReleaseError):
    """Exception raised when a signed artifact cannot be inspected."""

    pass


class PublishError(ReleaseError):
    """Exception raised when the distribution endpoint rejects or cannot be reached.

    Attributes:
        retryable: Whether a later attempt may succeed
        status_code: HTTP status returned by the endpoint, if any
    """

    def __init__(
            self,
            message: str,
            retryable: bool = False,
            status_code: Optional[int] = None,
            **kwargs: Any
    ) -> None:
        super().__init__(message, retryable=retryable, status_code=status_code, **kwargs)
        self.retryable = retryable
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return super().__str__()


class PipelineError(ReleaseError):
    """Exception raised when a pipeline stage fails."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, stage=stage, **kwargs)
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"{self.message} (Stage: {self.stage})"
        return super().__str__()
