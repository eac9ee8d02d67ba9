"""Descriptor validation policies.

The pipeline runs one policy between loading the descriptor and patching the
manifest. :class:`PermissiveValidation` reports nothing and lets every value
through; :class:`StrictValidation` rejects build numbers and ranges the host
platform would refuse.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Dict, List

from ijrelease.release.descriptor import PluginDescriptor, WILDCARD_SUFFIX, parse_build_number
from ijrelease.utils.exceptions import ValidationError


@dataclass
class ValidationReport:
    """Issues found by a validation policy.

    Attributes:
        errors: Problems that stop the release
        warnings: Problems worth reporting that do not stop it
    """

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"errors": list(self.errors), "warnings": list(self.warnings)}

    def raise_for_errors(self) -> None:
        """Raise if the report contains errors.

        Raises:
            ValidationError: Listing every error found
        """
        if self.errors:
            raise ValidationError(
                f"Descriptor validation failed with {len(self.errors)} error(s): {'; '.join(self.errors)}",
                errors=self.errors,
            )


class ValidationPolicy(abc.ABC):
    """Checks applied to a descriptor before the manifest is patched."""

    name: str = "policy"

    @abc.abstractmethod
    def validate(self, descriptor: PluginDescriptor) -> ValidationReport:
        """Validate a descriptor.

        Args:
            descriptor: Descriptor to check

        Returns:
            The issues found
        """


class PermissiveValidation(ValidationPolicy):
    """Accept every descriptor unchanged."""

    name = "permissive"

    def validate(self, descriptor: PluginDescriptor) -> ValidationReport:
        return ValidationReport()


class StrictValidation(ValidationPolicy):
    """Reject descriptors the host platform would refuse to load."""

    name = "strict"

    def validate(self, descriptor: PluginDescriptor) -> ValidationReport:
        report = ValidationReport()

        if not descriptor.identity.group.strip():
            report.errors.append("group must not be empty")
        if not descriptor.identity.version.strip():
            report.errors.append("version must not be empty")
        elif descriptor.identity.version.upper().endswith("SNAPSHOT"):
            report.warnings.append(f"version '{descriptor.identity.version}' is a snapshot")

        if not descriptor.platform.platform_version.strip():
            report.errors.append("platform version must not be empty")

        if not descriptor.language_version.isdigit():
            report.warnings.append(f"language level '{descriptor.language_version}' is not a plain number")

        compatibility = descriptor.compatibility
        since_ok = self._check_build(report, "since_build", compatibility.since_build, allow_wildcard=False)
        until_ok = True
        if compatibility.until_build:
            until_ok = self._check_build(report, "until_build", compatibility.until_build, allow_wildcard=True)

        if since_ok and until_ok and not compatibility.is_consistent():
            report.errors.append(
                f"until_build '{compatibility.until_build}' is lower than since_build '{compatibility.since_build}'"
            )

        return report

    @staticmethod
    def _check_build(report: ValidationReport, key: str, value: str, allow_wildcard: bool) -> bool:
        if "*" in value and not value.endswith(WILDCARD_SUFFIX):
            report.errors.append(f"{key} '{value}' may only use a wildcard as its last component")
            return False
        try:
            _, wildcard = parse_build_number(value)
        except ValueError as e:
            report.errors.append(f"{key}: {e}")
            return False
        if wildcard and not allow_wildcard:
            report.errors.append(f"{key} '{value}' must not contain a wildcard")
            return False
        return True


POLICIES = {
    PermissiveValidation.name: PermissiveValidation,
    StrictValidation.name: StrictValidation,
}


def get_validation_policy(name: str) -> ValidationPolicy:
    """Create a policy by name (``strict`` or ``permissive``).

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return POLICIES[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown validation policy: {name!r}") from None
