"""Plugin release pipeline.

This package turns declared plugin metadata into a signed, versioned,
publishable distribution.

Modules:
    descriptor: Release descriptor model and loaders
    gradle: Reader for build.gradle.kts declarations
    compiler: Compiler settings resolution
    validation: Descriptor validation policies
    manifest: Release manifest and plugin.xml patching
    package: Distribution zip creation
    signing: Signing and verification of distribution zips
    repository: Marketplace upload client
    result: Stage results and run reports
    pipeline: The staged release pipeline
    cli: The ijrelease command
"""

from __future__ import annotations

from ijrelease.release.compiler import CompilerSettings, resolve_compiler_settings
from ijrelease.release.descriptor import (
    CompatibilityRange,
    DescriptorLoader,
    EditionType,
    PlatformTarget,
    PluginDescriptor,
    ProjectIdentity,
    load_descriptor,
)
from ijrelease.release.manifest import ManifestPatcher, PluginManifest
from ijrelease.release.package import PluginArtifact, PluginPackage
from ijrelease.release.pipeline import ReleasePipeline
from ijrelease.release.repository import MarketplaceClient, PublishResult
from ijrelease.release.result import PipelineReport, StepOutcome, StepResult
from ijrelease.release.signing import PluginSigner, PluginVerifier, SignedArtifact
from ijrelease.release.validation import PermissiveValidation, StrictValidation, ValidationPolicy

__all__ = [
    "CompatibilityRange",
    "CompilerSettings",
    "DescriptorLoader",
    "EditionType",
    "ManifestPatcher",
    "MarketplaceClient",
    "PermissiveValidation",
    "PipelineReport",
    "PlatformTarget",
    "PluginArtifact",
    "PluginDescriptor",
    "PluginManifest",
    "PluginPackage",
    "PluginSigner",
    "PluginVerifier",
    "ProjectIdentity",
    "PublishResult",
    "ReleasePipeline",
    "SignedArtifact",
    "StepOutcome",
    "StepResult",
    "StrictValidation",
    "ValidationPolicy",
    "load_descriptor",
    "resolve_compiler_settings",
]
