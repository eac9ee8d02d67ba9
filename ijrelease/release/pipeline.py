"""Release pipeline.

The pipeline runs the release stages strictly in order:

1. load the plugin descriptor
2. resolve the compiler settings
3. validate the descriptor with the configured policy
4. compute and patch the release manifest
5. package the plugin distribution
6. sign the package
7. publish the signed package

Each stage returns a :class:`~ijrelease.release.result.StepResult`. Known
release errors become failed results; any other exception propagates. A run
stops at the first failed stage, so nothing is published unless every stage
before it succeeded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union

import pydantic
import structlog

from ijrelease.core.environment import PublishCredential, ReleaseEnvironment, SigningMaterial
from ijrelease.release import result as stages
from ijrelease.release.compiler import resolve_compiler_settings
from ijrelease.release.descriptor import PluginDescriptor, load_descriptor
from ijrelease.release.manifest import ManifestPatcher, PluginManifest, read_plugin_id
from ijrelease.release.package import PLUGIN_XML_PATH, PluginArtifact, PluginPackage
from ijrelease.release.repository import MarketplaceClient, PublishResult
from ijrelease.release.result import PipelineReport, StepResult
from ijrelease.release.signing import PluginSigner, SignedArtifact
from ijrelease.release.validation import StrictValidation, ValidationPolicy
from ijrelease.utils.exceptions import PackageError, PipelineError, ReleaseError, ValidationError

logger = structlog.get_logger(__name__)


class Signer(Protocol):
    """Signing backend used by the pipeline."""

    def sign(self, artifact: PluginArtifact, material: SigningMaterial) -> SignedArtifact:
        ...


class Publisher(Protocol):
    """Distribution backend used by the pipeline."""

    def publish(self, artifact: SignedArtifact, credential: PublishCredential) -> PublishResult:
        ...


class CertificateSigner:
    """Signer backed by :class:`~ijrelease.release.signing.PluginSigner`."""

    def sign(self, artifact: PluginArtifact, material: SigningMaterial) -> SignedArtifact:
        return PluginSigner(material).sign(artifact)


class MarketplacePublisher:
    """Publisher backed by a :class:`~ijrelease.release.repository.MarketplaceClient`."""

    def __init__(self, client: MarketplaceClient) -> None:
        self.client = client

    def publish(self, artifact: SignedArtifact, credential: PublishCredential) -> PublishResult:
        return self.client.upload(artifact, credential)


class ReleasePipeline:
    """Turns a plugin descriptor and a prepared plugin directory into a release.

    Attributes:
        descriptor_path: Path of the descriptor to load
        environment: Snapshot of the release secrets
        source_dir: Prepared plugin directory (``META-INF/plugin.xml``, ``lib/``)
        output_dir: Directory receiving the distribution zips
        policy: Validation policy run before the manifest is patched
        signer: Signing backend
        publisher: Distribution backend
        patcher: Manifest patcher
    """

    def __init__(
            self,
            descriptor_path: Union[str, Path],
            environment: ReleaseEnvironment,
            source_dir: Union[str, Path],
            output_dir: Union[str, Path],
            policy: Optional[ValidationPolicy] = None,
            signer: Optional[Signer] = None,
            publisher: Optional[Publisher] = None,
            patcher: Optional[ManifestPatcher] = None
    ) -> None:
        self.descriptor_path = Path(descriptor_path)
        self.environment = environment
        self.source_dir = Path(source_dir)
        self.output_dir = Path(output_dir)
        self.policy = policy or StrictValidation()
        self.signer = signer or CertificateSigner()
        self.publisher = publisher
        self.patcher = patcher or ManifestPatcher()

    @staticmethod
    def _failed(stage: str, error: ReleaseError) -> StepResult:
        result = StepResult.failure(stage, error)
        logger.error("Release stage failed", stage=stage, outcome=result.outcome.value, error=str(error))
        return result

    def load(self) -> StepResult:
        """Load the plugin descriptor."""
        try:
            descriptor = load_descriptor(self.descriptor_path)
        except ReleaseError as e:
            return self._failed(stages.LOAD, e)
        logger.info("Loaded descriptor", path=str(self.descriptor_path),
                    group=descriptor.identity.group, version=descriptor.identity.version)
        return StepResult.success(stages.LOAD, descriptor)

    def compile_settings(self, descriptor: PluginDescriptor) -> StepResult:
        """Resolve source and target compatibility from the language level."""
        try:
            settings = resolve_compiler_settings(descriptor.language_version)
        except pydantic.ValidationError as e:
            return self._failed(stages.COMPILE, ValidationError(f"Invalid compiler settings: {e}"))
        return StepResult.success(stages.COMPILE, settings)

    def validate(self, descriptor: PluginDescriptor) -> StepResult:
        """Run the validation policy; errors make the stage fail."""
        report = self.policy.validate(descriptor)
        for warning in report.warnings:
            logger.warning("Descriptor warning", policy=self.policy.name, warning=warning)
        try:
            report.raise_for_errors()
        except ValidationError as e:
            return self._failed(stages.VALIDATE, e)
        return StepResult.success(stages.VALIDATE, report)

    def manifest(self, descriptor: PluginDescriptor) -> StepResult:
        """Compute the release manifest, taking the plugin id from plugin.xml."""
        plugin_xml = self.source_dir / PLUGIN_XML_PATH
        try:
            if not plugin_xml.exists():
                raise PackageError(f"plugin.xml not found: {plugin_xml}")
            plugin_id = read_plugin_id(plugin_xml.read_text(encoding="utf-8"))
        except ReleaseError as e:
            return self._failed(stages.PATCH, e)
        manifest = PluginManifest.from_descriptor(descriptor, plugin_id=plugin_id)
        return StepResult.success(stages.PATCH, manifest)

    def root_name(self, descriptor: Optional[PluginDescriptor] = None) -> str:
        """Distribution root directory: the declared plugin name or the source directory name."""
        return (descriptor.plugin_name if descriptor else None) or self.source_dir.name

    def package(self, manifest: PluginManifest, descriptor: Optional[PluginDescriptor] = None) -> StepResult:
        """Package the plugin directory with the patched plugin.xml."""
        root = self.root_name(descriptor)
        try:
            artifact = PluginPackage.create(
                self.source_dir,
                self.output_dir / f"{root}-{manifest.version}.zip",
                manifest,
                name=root,
                patcher=self.patcher,
            )
        except ReleaseError as e:
            return self._failed(stages.PACKAGE, e)
        return StepResult.success(stages.PACKAGE, artifact)

    def sign(self, artifact: PluginArtifact) -> StepResult:
        """Sign a packaged artifact.

        Missing signing variables fail the stage before the signer is called.
        """
        try:
            material = self.environment.signing_material()
            signed = self.signer.sign(artifact, material)
        except ReleaseError as e:
            return self._failed(stages.SIGN, e)
        return StepResult.success(stages.SIGN, signed)

    def publish(self, artifact: SignedArtifact) -> StepResult:
        """Publish a signed artifact with a single attempt.

        A missing token fails the stage before the publisher is called.
        Transport failures come back as retryable results.
        """
        try:
            credential = self.environment.publish_credential()
            if self.publisher is None:
                raise PipelineError("No publisher configured", stage=stages.PUBLISH)
            published = self.publisher.publish(artifact, credential)
        except ReleaseError as e:
            return self._failed(stages.PUBLISH, e)
        return StepResult.success(stages.PUBLISH, published)

    def run(self, publish: bool = True) -> PipelineReport:
        """Run the stages in order, stopping at the first failure.

        Args:
            publish: Whether to run the publish stage after signing

        Returns:
            Results of every stage that ran
        """
        report = PipelineReport()

        loaded = report.add(self.load())
        if not loaded.ok:
            return report
        descriptor = loaded.data

        for step in (self.compile_settings, self.validate):
            if not report.add(step(descriptor)).ok:
                return report

        manifest = report.add(self.manifest(descriptor))
        if not manifest.ok:
            return report

        packaged = report.add(self.package(manifest.data, descriptor))
        if not packaged.ok:
            return report

        signed = report.add(self.sign(packaged.data))
        if not signed.ok or not publish:
            return report

        report.add(self.publish(signed.data))
        return report

