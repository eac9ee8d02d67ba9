"""Plugin manifest patching.

This module computes the manifest embedded into the distributed artifact and
writes the version and compatibility range into ``META-INF/plugin.xml``.
Build numbers are forwarded literally; the wildcard in ``until-build`` is
interpreted by the host platform, not here.
"""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pydantic

from ijrelease.release.descriptor import PluginDescriptor
from ijrelease.utils.exceptions import PackageError

ROOT_TAG = "idea-plugin"
_PROLOG = re.compile(
    r"(?:\s*(?:<\?.*?\?>|<!--.*?-->|<!DOCTYPE[^\[>]*(?:\[.*?\])?\s*>))*\s*", re.DOTALL
)


class PluginManifest(pydantic.BaseModel):
    """Release metadata embedded into the artifact.

    Attributes:
        plugin_id: Plugin identifier from plugin.xml, when known
        group: Project group
        version: Artifact version
        since_build: Lowest host build that may load the artifact
        until_build: Highest host build (may end in ``.*``), or None for open
    """

    model_config = pydantic.ConfigDict(frozen=True)

    plugin_id: Optional[str] = None
    group: str
    version: str
    since_build: str
    until_build: Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: PluginDescriptor, plugin_id: Optional[str] = None) -> PluginManifest:
        """Build the manifest for a descriptor.

        Args:
            descriptor: Loaded plugin descriptor
            plugin_id: Identifier read from plugin.xml, overriding the descriptor's
        """
        return cls(
            plugin_id=plugin_id or descriptor.plugin_id,
            group=descriptor.identity.group,
            version=descriptor.identity.version,
            since_build=descriptor.compatibility.since_build,
            until_build=descriptor.compatibility.until_build or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pluginId": self.plugin_id,
            "group": self.group,
            "version": self.version,
            "sinceBuild": self.since_build,
            "untilBuild": self.until_build,
        }
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PluginManifest:
        try:
            return cls(
                plugin_id=data.get("pluginId"),
                group=data["group"],
                version=data["version"],
                since_build=data["sinceBuild"],
                until_build=data.get("untilBuild"),
            )
        except (KeyError, pydantic.ValidationError) as e:
            raise PackageError(f"Invalid release manifest: {e}") from e


def _parse_plugin_xml(xml_text: str) -> ET.Element:
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    try:
        root = ET.fromstring(xml_text, parser=parser)
    except ET.ParseError as e:
        raise PackageError(f"Invalid plugin.xml: {e}") from e
    if root.tag != ROOT_TAG:
        raise PackageError(f"plugin.xml root must be <{ROOT_TAG}>, found <{root.tag}>")
    return root


def _register_namespaces(xml_text: str) -> None:
    """Register the prefixes declared in a document so serialization keeps them."""
    parser = ET.XMLPullParser(events=("start-ns",))
    parser.feed(xml_text)
    for _event, (prefix, uri) in parser.read_events():
        if prefix and not re.match(r"ns\d+$", prefix):
            ET.register_namespace(prefix, uri)


def read_plugin_id(xml_text: str) -> Optional[str]:
    """Read the ``<id>`` of a plugin.xml document, falling back to ``<name>``."""
    root = _parse_plugin_xml(xml_text)
    for tag in ("id", "name"):
        element = root.find(tag)
        if element is not None and element.text and element.text.strip():
            return element.text.strip()
    return None


class ManifestPatcher:
    """Write a :class:`PluginManifest` into plugin.xml text."""

    def patch(self, xml_text: str, manifest: PluginManifest) -> str:
        """Set ``<version>`` and ``<idea-version>`` in a plugin.xml document.

        Missing elements are created; an open range removes ``until-build``.

        Args:
            xml_text: Original plugin.xml contents
            manifest: Values to write

        Returns:
            The patched document

        Raises:
            PackageError: If the document is not a plugin.xml
        """
        root = _parse_plugin_xml(xml_text)

        version = self._ensure_child(root, "version", after=("id", "name"))
        version.text = manifest.version

        idea_version = self._ensure_child(root, "idea-version", after=("version",))
        idea_version.set("since-build", manifest.since_build)
        if manifest.until_build:
            idea_version.set("until-build", manifest.until_build)
        elif "until-build" in idea_version.attrib:
            del idea_version.attrib["until-build"]

        _register_namespaces(xml_text)
        prolog = _PROLOG.match(xml_text).group(0)
        return prolog + ET.tostring(root, encoding="unicode")

    def patch_file(self, path: Union[str, Path], manifest: PluginManifest,
                   output_path: Optional[Union[str, Path]] = None) -> Path:
        """Patch a plugin.xml file, in place unless ``output_path`` is given."""
        path = Path(path)
        if not path.exists():
            raise PackageError(f"plugin.xml not found: {path}")
        target = Path(output_path) if output_path else path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.patch(path.read_text(encoding="utf-8"), manifest), encoding="utf-8")
        return target

    @staticmethod
    def _ensure_child(root: ET.Element, tag: str, after: tuple) -> ET.Element:
        existing = root.find(tag)
        if existing is not None:
            return existing

        children = list(root)
        index = 0
        for position, child in enumerate(children):
            if child.tag in after:
                index = position + 1

        element = ET.Element(tag)
        if children:
            anchor = children[index - 1] if index > 0 else None
            element.tail = (anchor.tail if anchor is not None else root.text) or "\n"
            if anchor is not None:
                anchor.tail = element.tail
        else:
            element.tail = "\n"
            root.text = root.text or "\n    "
        root.insert(index, element)
        return element
