"""Utility functions and classes for the release pipeline."""

from ijrelease.utils.exceptions import (
    ConfigurationError,
    DescriptorError,
    ManagerError,
    ManagerInitializationError,
    MissingSecretError,
    PackageError,
    PipelineError,
    PublishError,
    ReleaseError,
    SigningError,
    ValidationError,
    VerificationError,
)
