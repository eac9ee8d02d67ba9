"""Reader for descriptors declared in a ``build.gradle.kts`` script.

Only the literal declarations used by the IntelliJ Gradle plugin are
recognised; expressions, variables and ``System.getenv`` calls are ignored.
Secrets are never read from the script.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import structlog

from ijrelease.release.descriptor import DescriptorLoader, PluginDescriptor
from ijrelease.utils.exceptions import DescriptorError

logger = structlog.get_logger(__name__)

_STRING = r'"((?:[^"\\]|\\.)*)"'
_ASSIGN = r'\b{name}\s*=\s*' + _STRING
_SET = r'\b{name}\.set\(\s*' + _STRING + r'\s*\)'
_LIST_SET = r'\b{name}\.set\(\s*listOf\(([^)]*)\)\s*\)'


def _strip_comments(text: str) -> str:
    # keeps "//" inside string literals such as URLs
    result: List[str] = []
    for line in text.splitlines():
        in_string = False
        for index, char in enumerate(line):
            if char == '"' and (index == 0 or line[index - 1] != "\\"):
                in_string = not in_string
            elif not in_string and line.startswith("//", index):
                line = line[:index]
                break
        result.append(line)
    return re.sub(r'/\*.*?\*/', '', "\n".join(result), flags=re.DOTALL)


def extract_block(text: str, name: str) -> Optional[str]:
    """Return the body of the first ``name { ... }`` block, braces balanced.

    Args:
        text: Script text without comments
        name: Block name, e.g. ``intellij`` or ``patchPluginXml``
    """
    match = re.search(r'\b' + re.escape(name) + r'\s*(?:\([^)]*\)\s*)?\{', text)
    if not match:
        return None

    depth = 1
    start = match.end()
    for index in range(start, len(text)):
        if text[index] == "{":
            depth += 1
        elif text[index] == "}":
            depth -= 1
            if depth == 0:
                return text[start:index]
    raise DescriptorError(f"Unbalanced braces in '{name}' block")


def _remove_blocks(text: str) -> str:
    """Drop every nested block, leaving top-level statements only."""
    result: List[str] = []
    depth = 0
    for char in text:
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(depth - 1, 0)
        elif depth == 0:
            result.append(char)
    return "".join(result)


def _find(pattern: str, text: Optional[str], name: str) -> Optional[str]:
    if text is None:
        return None
    match = re.search(pattern.format(name=re.escape(name)), text)
    return match.group(1) if match else None


def _find_list(text: Optional[str], name: str) -> Optional[List[str]]:
    if text is None:
        return None
    match = re.search(_LIST_SET.format(name=re.escape(name)), text)
    if not match:
        return None
    return re.findall(_STRING, match.group(1))


def parse_gradle_script(text: str) -> Dict[str, object]:
    """Extract descriptor values from Kotlin DSL text.

    Args:
        text: Contents of a ``build.gradle.kts`` script

    Returns:
        Mapping in the descriptor file format (absent values are omitted)

    Raises:
        DescriptorError: If source and target compatibility levels differ
    """
    text = _strip_comments(text)
    top_level = _remove_blocks(text)
    intellij = extract_block(text, "intellij")
    patch_xml = extract_block(text, "patchPluginXml")

    data: Dict[str, object] = {}
    group = _find(_ASSIGN, top_level, "group")
    version = _find(_ASSIGN, top_level, "version")
    if group is not None:
        data["group"] = group
    if version is not None:
        data["version"] = version

    platform: Dict[str, object] = {}
    platform_version = _find(_SET, intellij, "version") or _find(_ASSIGN, intellij, "version")
    platform_type = _find(_SET, intellij, "type") or _find(_ASSIGN, intellij, "type")
    plugins = _find_list(intellij, "plugins")
    if platform_version is not None:
        platform["version"] = platform_version
    if platform_type is not None:
        platform["type"] = platform_type
    if plugins is not None:
        platform["plugins"] = plugins
    data["platform"] = platform

    source = _find(_ASSIGN, text, "sourceCompatibility")
    target = _find(_ASSIGN, text, "targetCompatibility")
    if source is not None and target is not None and source != target:
        raise DescriptorError(
            f"sourceCompatibility ({source}) and targetCompatibility ({target}) differ; "
            "cross-version compilation is not supported"
        )
    language_version = source or target
    if language_version is not None:
        data["java"] = {"version": language_version}

    compatibility: Dict[str, object] = {}
    since_build = _find(_SET, patch_xml, "sinceBuild") or _find(_ASSIGN, patch_xml, "sinceBuild")
    until_build = _find(_SET, patch_xml, "untilBuild") or _find(_ASSIGN, patch_xml, "untilBuild")
    if since_build is not None:
        compatibility["since_build"] = since_build
    if until_build is not None:
        compatibility["until_build"] = until_build
    data["compatibility"] = compatibility

    return data


def load_gradle_descriptor(path: Union[str, Path]) -> PluginDescriptor:
    """Load a descriptor from a ``build.gradle.kts`` script.

    Raises:
        DescriptorError: If the script is missing or lacks a required declaration
    """
    path = Path(path)
    if not path.exists():
        raise DescriptorError(f"Build script not found: {path}", source=str(path))

    try:
        data = parse_gradle_script(path.read_text(encoding="utf-8"))
    except DescriptorError as e:
        raise DescriptorError(e.message, source=str(path)) from e

    descriptor = DescriptorLoader.from_mapping(data, source=str(path))
    logger.debug("Loaded descriptor from build script", path=str(path),
                 platform_version=descriptor.platform.platform_version)
    return descriptor
