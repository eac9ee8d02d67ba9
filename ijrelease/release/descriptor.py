"""Plugin release descriptor.

This module defines the immutable entities declared by a plugin project
(identity, platform target, compiler level and compatibility range) and the
loader that builds them from a descriptor file. Values are forwarded
verbatim: the loader performs no format checks, so malformed values reach the
later stages unchanged. Checks live in :mod:`ijrelease.release.validation`.
"""

from __future__ import annotations

import enum
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import pydantic
import structlog
import yaml

from ijrelease.utils.exceptions import DescriptorError

logger = structlog.get_logger(__name__)

_YAML_NULLS = frozenset({"", "~", "null", "Null", "NULL"})

WILDCARD_SUFFIX = ".*"


class EditionType(str, enum.Enum):
    """Edition of the host platform the plugin is built against."""

    COMMUNITY = "IC"
    ULTIMATE = "IU"

    @classmethod
    def parse(cls, value: Union[str, EditionType]) -> EditionType:
        """Parse an edition from its product code or its name.

        Args:
            value: ``IC``, ``IU``, ``Community`` or ``Ultimate`` (any case)

        Raises:
            ValueError: If the value names no known edition
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for edition in cls:
            if text.upper() == edition.value or text.upper() == edition.name:
                return edition
        raise ValueError(f"Unknown platform edition: {value!r}")


class ProjectIdentity(pydantic.BaseModel):
    """Identity of the produced artifact."""

    model_config = pydantic.ConfigDict(frozen=True)

    group: str
    version: str


class PlatformTarget(pydantic.BaseModel):
    """Host platform version and edition the artifact targets."""

    model_config = pydantic.ConfigDict(frozen=True)

    platform_version: str
    edition_type: EditionType = EditionType.COMMUNITY
    required_plugins: Tuple[str, ...] = ()

    @pydantic.field_validator("edition_type", mode="before")
    @classmethod
    def parse_edition(cls, v: Any) -> EditionType:
        return EditionType.parse(v)


def parse_build_number(value: str) -> Tuple[Tuple[int, ...], bool]:
    """Split a build number into numeric components.

    Args:
        value: Build number such as ``232``, ``233.11799.241`` or ``241.*``

    Returns:
        The numeric components and whether the value ended in a wildcard

    Raises:
        ValueError: If a component is not numeric or the wildcard is misplaced
    """
    text = value.strip()
    wildcard = text.endswith(WILDCARD_SUFFIX)
    if wildcard:
        text = text[:-len(WILDCARD_SUFFIX)]
    if not text:
        raise ValueError(f"Build number has no numeric part: {value!r}")

    parts = text.split(".")
    if not all(part.isdigit() for part in parts):
        raise ValueError(f"Build number must be dot-separated integers: {value!r}")

    return tuple(int(part) for part in parts), wildcard


def _pad(left: Tuple[int, ...], right: Tuple[int, ...]) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    size = max(len(left), len(right))
    return left + (0,) * (size - len(left)), right + (0,) * (size - len(right))


class CompatibilityRange(pydantic.BaseModel):
    """Host builds allowed to load the artifact.

    ``since_build`` is an inclusive lower bound. ``until_build`` is an inclusive
    upper bound and may end in ``.*``, meaning any continuation of the prefix;
    ``None`` leaves the range open.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    since_build: str
    until_build: Optional[str] = None

    def includes(self, build: str) -> bool:
        """Check whether a host build falls inside the range.

        Raises:
            ValueError: If any of the build numbers cannot be parsed
        """
        candidate, _ = parse_build_number(build)
        since, _ = parse_build_number(self.since_build)

        lhs, rhs = _pad(candidate, since)
        if lhs < rhs:
            return False

        return self._at_most_until(candidate)

    def is_consistent(self) -> bool:
        """Check that ``since_build`` does not exceed ``until_build``.

        Raises:
            ValueError: If any of the build numbers cannot be parsed
        """
        since, _ = parse_build_number(self.since_build)
        return self._at_most_until(since)

    def _at_most_until(self, build: Tuple[int, ...]) -> bool:
        if not self.until_build:
            return True

        until, wildcard = parse_build_number(self.until_build)
        if wildcard:
            return build[:len(until)] <= until

        lhs, rhs = _pad(build, until)
        return lhs <= rhs


class PluginDescriptor(pydantic.BaseModel):
    """Static declaration of a plugin's identity and platform targeting.

    Attributes:
        identity: Group and version of the artifact
        platform: Target platform version, edition and required plugins
        language_version: Java language level for source and target
        compatibility: Host build range written into the manifest
        plugin_id: Plugin identifier (``<id>`` in plugin.xml), if declared
        plugin_name: Distribution directory name, if declared
    """

    model_config = pydantic.ConfigDict(frozen=True)

    identity: ProjectIdentity
    platform: PlatformTarget
    language_version: str = "17"
    compatibility: CompatibilityRange
    plugin_id: Optional[str] = None
    plugin_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Render the descriptor in the mapping format read by the loader."""
        data: Dict[str, Any] = {
            "group": self.identity.group,
            "version": self.identity.version,
            "platform": {
                "version": self.platform.platform_version,
                "type": self.platform.edition_type.value,
                "plugins": list(self.platform.required_plugins),
            },
            "java": {"version": self.language_version},
            "compatibility": {"since_build": self.compatibility.since_build},
        }
        if self.compatibility.until_build is not None:
            data["compatibility"]["until_build"] = self.compatibility.until_build
        if self.plugin_id:
            data["plugin_id"] = self.plugin_id
        if self.plugin_name:
            data["plugin_name"] = self.plugin_name
        return data


def _is_yaml_null(value: Any) -> bool:
    return isinstance(value, str) and value in _YAML_NULLS


def _resolve_yaml_nulls(data: Any) -> Any:
    """Turn YAML null tokens of the optional keys into ``None``."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for key in ("plugin_id", "plugin_name"):
        if _is_yaml_null(data.get(key)):
            data[key] = None
    compatibility = data.get("compatibility")
    if isinstance(compatibility, dict) and _is_yaml_null(compatibility.get("until_build")):
        data["compatibility"] = dict(compatibility, until_build=None)
    return data


class DescriptorLoader:
    """Build :class:`PluginDescriptor` objects from declarations."""

    @staticmethod
    def from_mapping(data: Mapping[str, Any], source: Optional[str] = None) -> PluginDescriptor:
        """Build a descriptor from a plain mapping.

        Args:
            data: Mapping in the descriptor file format
            source: Where the mapping came from, for error messages

        Raises:
            DescriptorError: If a required key is missing or a value has the wrong shape
        """
        if not isinstance(data, Mapping):
            raise DescriptorError("Descriptor must be a mapping", source=source)

        platform = data.get("platform") or {}
        java = data.get("java") or {}
        compatibility = data.get("compatibility") or {}
        for section, value in (("platform", platform), ("java", java), ("compatibility", compatibility)):
            if not isinstance(value, Mapping):
                raise DescriptorError(f"Descriptor section '{section}' must be a mapping", source=source)

        missing = [
            key for key, value in (
                ("group", data.get("group")),
                ("version", data.get("version")),
                ("platform.version", platform.get("version")),
                ("compatibility.since_build", compatibility.get("since_build")),
            ) if value is None
        ]
        if missing:
            raise DescriptorError(f"Missing descriptor keys: {', '.join(missing)}", source=source)

        plugins = platform.get("plugins") or []
        if isinstance(plugins, str):
            raise DescriptorError("platform.plugins must be a list of plugin ids", source=source)

        try:
            return PluginDescriptor(
                identity=ProjectIdentity(group=data["group"], version=data["version"]),
                platform=PlatformTarget(
                    platform_version=platform["version"],
                    edition_type=platform.get("type", EditionType.COMMUNITY.value),
                    required_plugins=tuple(plugins),
                ),
                language_version=java.get("version", "17"),
                compatibility=CompatibilityRange(
                    since_build=compatibility["since_build"],
                    until_build=compatibility.get("until_build"),
                ),
                plugin_id=data.get("plugin_id"),
                plugin_name=data.get("plugin_name"),
            )
        except (pydantic.ValidationError, ValueError) as e:
            raise DescriptorError(f"Invalid descriptor: {e}", source=source) from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> PluginDescriptor:
        """Load a YAML or JSON descriptor file.

        YAML is read with every scalar kept as a string so that values such
        as ``version: 1.10`` reach the artifact verbatim.

        Raises:
            DescriptorError: If the file is missing or cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            raise DescriptorError(f"Descriptor file not found: {path}", source=str(path))

        try:
            content = path.read_text(encoding="utf-8")
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.load(content, Loader=yaml.BaseLoader)
                data = _resolve_yaml_nulls(data)
            elif path.suffix.lower() == ".json":
                data = json.loads(content)
            else:
                raise DescriptorError(f"Unsupported descriptor format: {path.suffix}", source=str(path))
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise DescriptorError(f"Error parsing descriptor: {e}", source=str(path)) from e

        descriptor = cls.from_mapping(data or {}, source=str(path))
        logger.debug("Loaded descriptor", path=str(path), group=descriptor.identity.group,
                     version=descriptor.identity.version)
        return descriptor


def load_descriptor(path: Union[str, Path]) -> PluginDescriptor:
    """Load a descriptor from a YAML/JSON file or a ``build.gradle.kts`` script.

    Args:
        path: Descriptor file path

    Returns:
        The loaded descriptor

    Raises:
        DescriptorError: If the descriptor cannot be loaded
    """
    path = Path(path)
    if path.name.endswith(".gradle.kts"):
        from ijrelease.release.gradle import load_gradle_descriptor
        return load_gradle_descriptor(path)
    return DescriptorLoader.from_file(path)

