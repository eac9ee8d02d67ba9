"""Plugin distribution packages.

This module assembles the distribution zip of a plugin from a prepared
directory and reads packages back. The layout follows the IntelliJ Platform
distribution format: every entry lives under a single ``<name>/`` root,
``lib/`` holds the jars and ``META-INF/plugin.xml`` carries the patched
descriptor. A release manifest is stored next to it.
"""

from __future__ import annotations

import hashlib
import json
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pydantic
import structlog

from ijrelease.release.manifest import ManifestPatcher, PluginManifest
from ijrelease.utils.exceptions import PackageError

logger = structlog.get_logger(__name__)

PLUGIN_XML_PATH = "META-INF/plugin.xml"
RELEASE_MANIFEST_PATH = "META-INF/release-manifest.json"
SIGNATURE_DIR = ".signature/"

DEFAULT_EXCLUDES = (".DS_Store", "*.iml", "*.pyc")
EXCLUDED_DIRS = frozenset({".git", ".idea", ".gradle", "__pycache__"})


class PluginArtifact(pydantic.BaseModel):
    """A packaged, unsigned plugin distribution."""

    model_config = pydantic.ConfigDict(frozen=True)

    path: Path
    manifest: PluginManifest
    sha256: str


def calculate_file_hash(path: Path) -> str:
    """Calculate a SHA-256 hash of a file."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def content_digest(zip_path: Union[str, Path]) -> bytes:
    """Digest the entries of a zip, ignoring signature entries.

    Entry names and their content hashes are hashed in name order, so the
    digest depends on content only, not on compression or entry order.

    Raises:
        PackageError: If the file is not a readable zip
    """
    hasher = hashlib.sha256()
    try:
        with zipfile.ZipFile(zip_path, "r") as zf:
            for name in sorted(zf.namelist()):
                if name.startswith(SIGNATURE_DIR) or name.endswith("/"):
                    continue
                hasher.update(name.encode("utf-8"))
                hasher.update(b"\0")
                hasher.update(hashlib.sha256(zf.read(name)).digest())
    except (zipfile.BadZipFile, OSError) as e:
        raise PackageError(f"Failed to read package {zip_path}: {e}") from e
    return hasher.digest()


def _find_entry(names: Iterable[str], suffix: str) -> Optional[str]:
    for name in names:
        parts = name.split("/", 1)
        if len(parts) == 2 and parts[1] == suffix:
            return name
    return None


class PluginPackage:
    """Create and read plugin distribution zips."""

    @classmethod
    def create(
            cls,
            source_dir: Union[str, Path],
            output_path: Union[str, Path],
            manifest: PluginManifest,
            name: Optional[str] = None,
            exclude_patterns: Optional[List[str]] = None,
            patcher: Optional[ManifestPatcher] = None
    ) -> PluginArtifact:
        """Create a distribution zip from a prepared plugin directory.

        Args:
            source_dir: Directory with ``META-INF/plugin.xml`` and ``lib/``
            output_path: Path of the zip to create
            manifest: Release manifest to patch into plugin.xml and embed
            name: Root directory name inside the zip (default: source_dir's name)
            exclude_patterns: Glob patterns (matched from the right) for files to leave out
            patcher: Manifest patcher to use

        Returns:
            The created artifact

        Raises:
            PackageError: If package creation fails
        """
        source_dir = Path(source_dir)
        output_path = Path(output_path)

        if not source_dir.exists() or not source_dir.is_dir():
            raise PackageError(f"Source directory not found: {source_dir}")

        plugin_xml = source_dir / PLUGIN_XML_PATH
        if not plugin_xml.exists():
            raise PackageError(f"plugin.xml not found: {plugin_xml}")

        patcher = patcher or ManifestPatcher()
        patched_xml = patcher.patch(plugin_xml.read_text(encoding="utf-8"), manifest)

        root = name or source_dir.name
        exclude_patterns = list(exclude_patterns or DEFAULT_EXCLUDES)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
                for file_path in sorted(source_dir.rglob("*")):
                    if file_path.is_dir() or file_path.resolve() == output_path.resolve():
                        continue

                    rel_path = file_path.relative_to(source_dir)
                    if EXCLUDED_DIRS.intersection(rel_path.parts[:-1]):
                        continue
                    if any(rel_path.match(pattern) for pattern in exclude_patterns):
                        continue
                    if rel_path.as_posix() in (PLUGIN_XML_PATH, RELEASE_MANIFEST_PATH):
                        continue

                    zf.write(file_path, f"{root}/{rel_path.as_posix()}")

                zf.writestr(f"{root}/{PLUGIN_XML_PATH}", patched_xml)
                zf.writestr(f"{root}/{RELEASE_MANIFEST_PATH}", manifest.to_json())
        except OSError as e:
            raise PackageError(f"Failed to create package: {e}") from e

        artifact = PluginArtifact(path=output_path, manifest=manifest, sha256=calculate_file_hash(output_path))
        logger.info("Created plugin package", path=str(output_path), version=manifest.version)
        return artifact

    @classmethod
    def load(cls, path: Union[str, Path]) -> PluginArtifact:
        """Read the release manifest of an existing package.

        Raises:
            PackageError: If the package is missing or has no release manifest
        """
        path = Path(path)
        if not path.exists():
            raise PackageError(f"Package not found: {path}")

        try:
            with zipfile.ZipFile(path, "r") as zf:
                entry = _find_entry(zf.namelist(), RELEASE_MANIFEST_PATH)
                if entry is None:
                    raise PackageError(f"Release manifest not found in package: {path}")
                data = json.loads(zf.read(entry).decode("utf-8"))
        except zipfile.BadZipFile as e:
            raise PackageError(f"Failed to load package {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise PackageError(f"Invalid release manifest in {path}: {e}") from e

        return PluginArtifact(path=path, manifest=PluginManifest.from_dict(data), sha256=calculate_file_hash(path))

    @staticmethod
    def read_plugin_xml(path: Union[str, Path]) -> str:
        """Return the plugin.xml text stored in a package."""
        try:
            with zipfile.ZipFile(path, "r") as zf:
                entry = _find_entry(zf.namelist(), PLUGIN_XML_PATH)
                if entry is None:
                    raise PackageError(f"plugin.xml not found in package: {path}")
                return zf.read(entry).decode("utf-8")
        except zipfile.BadZipFile as e:
            raise PackageError(f"Failed to read package {path}: {e}") from e

    @staticmethod
    def list_entries(path: Union[str, Path]) -> Dict[str, int]:
        """Map entry names of a package to their uncompressed sizes."""
        with zipfile.ZipFile(path, "r") as zf:
            return {info.filename: info.file_size for info in zf.infolist()}
