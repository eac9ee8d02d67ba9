"""Unit tests for the release manifest and plugin.xml patching."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from ijrelease.release.descriptor import load_descriptor
from ijrelease.release.manifest import ManifestPatcher, PluginManifest, read_plugin_id
from ijrelease.utils.exceptions import PackageError


@pytest.fixture
def manifest() -> PluginManifest:
    return PluginManifest(
        plugin_id="com.radut.bfw",
        group="com.intellij.plugin",
        version="1.0-SNAPSHOT",
        since_build="232",
        until_build="241.*",
    )


def test_manifest_from_descriptor(descriptor_file: Path) -> None:
    """Test that the build range is copied from the descriptor unchanged."""
    descriptor = load_descriptor(descriptor_file)
    manifest = PluginManifest.from_descriptor(descriptor, plugin_id="com.radut.bfw")

    assert manifest.since_build == "232"
    assert manifest.until_build == "241.*"
    assert manifest.version == "1.0-SNAPSHOT"
    assert manifest.to_dict() == {
        "pluginId": "com.radut.bfw",
        "group": "com.intellij.plugin",
        "version": "1.0-SNAPSHOT",
        "sinceBuild": "232",
        "untilBuild": "241.*",
    }


def test_patch_writes_range_literally(manifest: PluginManifest, plugin_xml: str) -> None:
    """Test that since/until strings reach plugin.xml without modification."""
    patched = ManifestPatcher().patch(plugin_xml, manifest)
    root = ET.fromstring(patched.split("\n", 1)[1])

    assert patched.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert root.find("version").text == "1.0-SNAPSHOT"
    idea_version = root.find("idea-version")
    assert idea_version.get("since-build") == "232"
    assert idea_version.get("until-build") == "241.*"
    assert root.find("id").text == "com.radut.bfw"
    assert root.find("vendor").text == "radut"


def test_patch_forwards_malformed_values() -> None:
    """Test that the patcher does not interpret build numbers."""
    manifest = PluginManifest(group="g", version="v", since_build="not-a-build", until_build="1.*.x")

    root = ET.fromstring(ManifestPatcher().patch("<idea-plugin/>", manifest))

    assert root.find("idea-version").get("since-build") == "not-a-build"
    assert root.find("idea-version").get("until-build") == "1.*.x"


def test_patch_updates_existing_elements(manifest: PluginManifest) -> None:
    """Test that existing elements are updated, not duplicated."""
    xml_text = (
        "<idea-plugin>\n"
        "    <id>com.radut.bfw</id>\n"
        "    <version>0.0.1</version>\n"
        "    <!-- compatibility -->\n"
        '    <idea-version since-build="211" until-build="212.*"/>\n'
        "</idea-plugin>\n"
    )

    patched = ManifestPatcher().patch(xml_text, manifest)
    root = ET.fromstring(patched)

    assert len(root.findall("version")) == 1
    assert len(root.findall("idea-version")) == 1
    assert root.find("version").text == "1.0-SNAPSHOT"
    assert root.find("idea-version").get("since-build") == "232"
    assert "<!-- compatibility -->" in patched
    assert not patched.startswith("<?xml")


def test_patch_keeps_prefixes_and_prolog(manifest: PluginManifest) -> None:
    """Test that namespace prefixes, the doctype and leading comments survive patching."""
    prolog = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<!DOCTYPE idea-plugin PUBLIC "Plugin/DTD" "https://plugins.jetbrains.com/plugin.dtd">\n'
        "<!-- Copyright radut -->\n"
    )
    xml_text = (
        prolog
        + '<idea-plugin xmlns:xi="http://www.w3.org/2001/XInclude">\n'
        "    <id>com.radut.bfw</id>\n"
        '    <xi:include href="/META-INF/actions.xml"/>\n'
        "</idea-plugin>\n"
    )

    patched = ManifestPatcher().patch(xml_text, manifest)

    assert patched.startswith(prolog)
    assert 'xmlns:xi="http://www.w3.org/2001/XInclude"' in patched
    assert '<xi:include href="/META-INF/actions.xml" />' in patched
    assert "ns0" not in patched
    assert 'since-build="232"' in patched


def test_open_range_removes_until_build() -> None:
    """Test that an open range drops an existing until-build."""
    manifest = PluginManifest(group="g", version="2.0", since_build="232")
    xml_text = '<idea-plugin><idea-version since-build="211" until-build="212.*"/></idea-plugin>'

    root = ET.fromstring(ManifestPatcher().patch(xml_text, manifest))

    assert root.find("idea-version").get("until-build") is None
    assert root.find("idea-version").get("since-build") == "232"


def test_patch_rejects_other_documents(manifest: PluginManifest) -> None:
    """Test that only plugin.xml documents are patched."""
    with pytest.raises(PackageError, match="root must be <idea-plugin>"):
        ManifestPatcher().patch("<project/>", manifest)
    with pytest.raises(PackageError, match="Invalid plugin.xml"):
        ManifestPatcher().patch("<idea-plugin>", manifest)


def test_patch_file(tmp_path: Path, manifest: PluginManifest, plugin_xml: str) -> None:
    """Test patching a file in place and to another path."""
    source = tmp_path / "plugin.xml"
    source.write_text(plugin_xml, encoding="utf-8")

    output = ManifestPatcher().patch_file(source, manifest, output_path=tmp_path / "out" / "plugin.xml")
    assert output == tmp_path / "out" / "plugin.xml"
    assert "since-build" not in source.read_text(encoding="utf-8")
    assert 'since-build="232"' in output.read_text(encoding="utf-8")

    ManifestPatcher().patch_file(source, manifest)
    assert 'until-build="241.*"' in source.read_text(encoding="utf-8")

    with pytest.raises(PackageError, match="not found"):
        ManifestPatcher().patch_file(tmp_path / "missing.xml", manifest)


def test_read_plugin_id(plugin_xml: str) -> None:
    """Test reading the plugin identifier."""
    assert read_plugin_id(plugin_xml) == "com.radut.bfw"
    assert read_plugin_id("<idea-plugin><name>Only Name</name></idea-plugin>") == "Only Name"
    assert read_plugin_id("<idea-plugin/>") is None

