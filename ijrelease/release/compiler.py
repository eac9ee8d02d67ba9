from __future__ import annotations

from typing import List

import pydantic


class CompilerSettings(pydantic.BaseModel):
    """Source and target compatibility for the Java compilation step.

    Both levels are always resolved from a single declared language level.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    source_compatibility: str
    target_compatibility: str

    @pydantic.model_validator(mode="after")
    def check_levels_match(self) -> "CompilerSettings":
        if self.source_compatibility != self.target_compatibility:
            raise ValueError("Cross-version compilation is not supported: source and target levels must match")
        return self

    def to_javac_args(self) -> List[str]:
        """Render the settings as ``javac`` arguments."""
        return ["-source", self.source_compatibility, "-target", self.target_compatibility]


def resolve_compiler_settings(language_version: str) -> CompilerSettings:
    """Map one declared language level onto both compatibility settings.

    Args:
        language_version: Declared Java level, e.g. ``"17"``

    Returns:
        Settings with identical source and target levels
    """
    return CompilerSettings(
        source_compatibility=language_version,
        target_compatibility=language_version,
    )
