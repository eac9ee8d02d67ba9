"""Unit tests for the build.gradle.kts reader."""

from __future__ import annotations

from pathlib import Path

import pytest

from ijrelease.release.descriptor import EditionType, load_descriptor
from ijrelease.release.gradle import extract_block, load_gradle_descriptor, parse_gradle_script
from ijrelease.utils.exceptions import DescriptorError


def test_parse_build_script(build_script: Path) -> None:
    """Test that the declarations of the build script are extracted."""
    data = parse_gradle_script(build_script.read_text(encoding="utf-8"))

    assert data["group"] == "com.intellij.plugin"
    assert data["version"] == "1.0-SNAPSHOT"
    assert data["platform"] == {"version": "2023.2.5", "type": "IC", "plugins": []}
    assert data["java"] == {"version": "17"}
    assert data["compatibility"] == {"since_build": "232", "until_build": "241.*"}


def test_build_script_matches_yaml_descriptor(build_script: Path, descriptor_file: Path) -> None:
    """Test that both declaration formats produce the same descriptor."""
    assert load_descriptor(build_script) == load_descriptor(descriptor_file)


def test_top_level_version_not_confused_with_platform_version() -> None:
    """Test that the plugin version ignores versions declared inside blocks."""
    data = parse_gradle_script(
        'plugins {\n    id("org.jetbrains.intellij") version "1.17.2"\n}\n'
        'intellij {\n    version = "2023.1"\n    type = "IU"\n}\n'
        'version = "3.0.0"\ngroup = "org.example"\n'
    )

    assert data["version"] == "3.0.0"
    assert data["platform"]["version"] == "2023.1"
    assert data["platform"]["type"] == "IU"


def test_patch_plugin_xml_property_assignment() -> None:
    """Test that build numbers assigned as properties are read like set() calls."""
    data = parse_gradle_script(
        'group = "org.example"\nversion = "1.0"\n'
        'intellij {\n    version = "2023.2.5"\n}\n'
        'tasks {\n    patchPluginXml {\n        sinceBuild = "232"\n        untilBuild = "241.*"\n    }\n}\n'
    )

    assert data["compatibility"] == {"since_build": "232", "until_build": "241.*"}


def test_required_plugins_and_comments() -> None:
    """Test plugin lists and comment handling."""
    data = parse_gradle_script(
        '// group = "commented.out"\n'
        'group = "org.example" // trailing comment\n'
        'version = "1.0"\n'
        '/* intellij { version.set("1999.1") } */\n'
        'intellij {\n'
        '    version.set("2023.2.5")\n'
        '    plugins.set(listOf("com.intellij.java", "Git4Idea"))\n'
        '}\n'
        'repositories { maven { url = uri("https://example.com/repo") } }\n'
    )

    assert data["group"] == "org.example"
    assert data["platform"]["version"] == "2023.2.5"
    assert data["platform"]["plugins"] == ["com.intellij.java", "Git4Idea"]


def test_diverging_compatibility_levels_rejected(tmp_path: Path) -> None:
    """Test that different source and target levels are refused."""
    script = tmp_path / "build.gradle.kts"
    script.write_text(
        'group = "g"\nversion = "1"\n'
        'intellij { version.set("2023.2.5") }\n'
        'tasks {\n'
        '    withType<JavaCompile> {\n'
        '        sourceCompatibility = "11"\n'
        '        targetCompatibility = "17"\n'
        '    }\n'
        '    patchPluginXml { sinceBuild.set("232") }\n'
        '}\n',
        encoding="utf-8",
    )

    with pytest.raises(DescriptorError, match="cross-version compilation") as exc_info:
        load_gradle_descriptor(script)
    assert exc_info.value.source == str(script)


def test_open_range_and_default_edition() -> None:
    """Test a script without untilBuild and without an edition."""
    data = parse_gradle_script(
        'group = "g"\nversion = "1"\n'
        'intellij { version.set("2023.2.5") }\n'
        'tasks { patchPluginXml { sinceBuild.set("232") } }\n'
    )

    assert data["compatibility"] == {"since_build": "232"}
    assert "java" not in data


def test_load_gradle_descriptor_defaults(tmp_path: Path) -> None:
    """Test loading a script that leaves optional values undeclared."""
    script = tmp_path / "build.gradle.kts"
    script.write_text(
        'group = "g"\nversion = "1"\n'
        'intellij { version.set("2023.2.5") }\n'
        'tasks { patchPluginXml { sinceBuild.set("232") } }\n',
        encoding="utf-8",
    )

    descriptor = load_gradle_descriptor(script)

    assert descriptor.platform.edition_type is EditionType.COMMUNITY
    assert descriptor.language_version == "17"
    assert descriptor.compatibility.until_build is None


def test_missing_declarations_reported(tmp_path: Path) -> None:
    """Test that a script without the patchPluginXml block is rejected."""
    script = tmp_path / "build.gradle.kts"
    script.write_text('group = "g"\nversion = "1"\nintellij { version.set("2023.2.5") }\n', encoding="utf-8")

    with pytest.raises(DescriptorError, match="compatibility.since_build"):
        load_gradle_descriptor(script)

    with pytest.raises(DescriptorError, match="not found"):
        load_gradle_descriptor(tmp_path / "other.gradle.kts")


def test_extract_block() -> None:
    """Test block extraction with nested braces."""
    text = 'tasks {\n    patchPluginXml {\n        sinceBuild.set("232")\n    }\n}\n'

    assert extract_block(text, "patchPluginXml").strip() == 'sinceBuild.set("232")'
    assert extract_block(text, "intellij") is None
    with pytest.raises(DescriptorError, match="Unbalanced"):
        extract_block("intellij {\n version.set(\"1\")\n", "intellij")
