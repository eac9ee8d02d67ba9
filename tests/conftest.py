"""Pytest configuration and fixtures for ijrelease tests."""

from pathlib import Path
from typing import Dict, Generator

import pytest
import yaml

from ijrelease.core.config_manager import ConfigManager
from ijrelease.core.environment import SigningMaterial
from ijrelease.release.signing import generate_signing_material

KEY_PASSWORD = "test-passphrase"

PLUGIN_XML = """<?xml version="1.0" encoding="UTF-8"?>
<idea-plugin>
    <id>com.radut.bfw</id>
    <name>Force Reload File Watcher</name>
    <vendor>radut</vendor>
    <description>Reloads files changed outside the IDE.</description>
    <depends>com.intellij.modules.platform</depends>
</idea-plugin>
"""

DESCRIPTOR = {
    "group": "com.intellij.plugin",
    "version": "1.0-SNAPSHOT",
    "platform": {"version": "2023.2.5", "type": "IC", "plugins": []},
    "java": {"version": "17"},
    "compatibility": {"since_build": "232", "until_build": "241.*"},
}

BUILD_SCRIPT = """plugins {
    id("java")
    id("org.jetbrains.intellij") version "1.17.2"
}

group = "com.intellij.plugin"
version = "1.0-SNAPSHOT"

repositories {
    mavenCentral()
}

intellij {
    version.set("2023.2.5")
    type.set("IC") // IntelliJ IDEA Community Edition
    plugins.set(listOf())
}

tasks {
    withType<JavaCompile> {
        sourceCompatibility = "17"
        targetCompatibility = "17"
    }

    patchPluginXml {
        sinceBuild.set("232")
        untilBuild.set("241.*")
    }

    signPlugin {
        certificateChain.set(System.getenv("CERTIFICATE_CHAIN"))
        privateKey.set(System.getenv("PRIVATE_KEY"))
        password.set(System.getenv("PRIVATE_KEY_PASSWORD"))
    }

    publishPlugin {
        token.set(System.getenv("PUBLISH_TOKEN"))
    }
}
"""


@pytest.fixture(scope="session")
def signing_material() -> SigningMaterial:
    """Self-signed certificate and password protected RSA key."""
    return generate_signing_material("ijrelease tests", KEY_PASSWORD)


@pytest.fixture
def release_environ(signing_material: SigningMaterial) -> Dict[str, str]:
    """Environment with every release secret set."""
    return {
        "CERTIFICATE_CHAIN": signing_material.certificate_chain.decode("utf-8"),
        "PRIVATE_KEY": signing_material.private_key.decode("utf-8"),
        "PRIVATE_KEY_PASSWORD": KEY_PASSWORD,
        "PUBLISH_TOKEN": "perm:test-token",
    }


@pytest.fixture
def plugin_source_dir(tmp_path: Path) -> Path:
    """Prepared plugin directory with a plugin.xml and a jar."""
    source_dir = tmp_path / "build" / "plugin" / "force-reload"
    (source_dir / "META-INF").mkdir(parents=True)
    (source_dir / "META-INF" / "plugin.xml").write_text(PLUGIN_XML, encoding="utf-8")
    (source_dir / "lib").mkdir()
    (source_dir / "lib" / "force-reload.jar").write_bytes(b"PK\x03\x04 jar contents")
    (source_dir / ".DS_Store").write_bytes(b"junk")
    return source_dir


@pytest.fixture
def plugin_xml() -> str:
    """Contents of the test plugin.xml."""
    return PLUGIN_XML


@pytest.fixture
def descriptor_file(tmp_path: Path) -> Path:
    """Release descriptor declaring the default project values."""
    path = tmp_path / "release.yaml"
    path.write_text(yaml.dump(DESCRIPTOR), encoding="utf-8")
    return path


@pytest.fixture
def build_script(tmp_path: Path) -> Path:
    """build.gradle.kts declaring the default project values."""
    path = tmp_path / "build.gradle.kts"
    path.write_text(BUILD_SCRIPT, encoding="utf-8")
    return path


@pytest.fixture
def temp_config_file(tmp_path: Path, descriptor_file: Path, plugin_source_dir: Path) -> Path:
    """Configuration file pointing the release section at the test project."""
    test_config = {
        "logging": {
            "level": "DEBUG",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
        "release": {
            "descriptor": str(descriptor_file),
            "source_dir": str(plugin_source_dir),
            "output_dir": str(tmp_path / "dist"),
        },
        "marketplace": {"url": "https://marketplace.test", "timeout": 5},
    }
    path = tmp_path / "ijrelease.yaml"
    path.write_text(yaml.dump(test_config), encoding="utf-8")
    return path


@pytest.fixture
def config_manager(temp_config_file: Path) -> Generator[ConfigManager, None, None]:
    """Create a ConfigManager instance for testing."""
    manager = ConfigManager(config_path=temp_config_file, environ={})
    manager.initialize()
    yield manager
    manager.shutdown()
