"""Command-line interface for the release pipeline.

This module provides the ``ijrelease`` command: one sub-command per
pipeline stage, plus ``release`` which runs them all in order.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from ijrelease.core.config_manager import ConfigManager
from ijrelease.core.environment import PRIVATE_KEY_PASSWORD_VAR, ReleaseEnvironment
from ijrelease.core.logging_manager import LoggingManager
from ijrelease.release.descriptor import load_descriptor
from ijrelease.release.manifest import ManifestPatcher, PluginManifest, read_plugin_id
from ijrelease.release.package import PluginPackage
from ijrelease.release.pipeline import MarketplacePublisher, ReleasePipeline
from ijrelease.release.repository import MarketplaceClient
from ijrelease.release.result import PipelineReport, StepResult
from ijrelease.release.signing import (
    PluginSigner,
    PluginVerifier,
    generate_signing_material,
    load_signed_artifact,
)
from ijrelease.release.validation import get_validation_policy
from ijrelease.utils.exceptions import ReleaseError


def _bootstrap(args: argparse.Namespace) -> Tuple[ConfigManager, ReleaseEnvironment]:
    """Read configuration and the environment once, and set up logging."""
    config = ConfigManager(config_path=args.config)
    config.initialize()
    LoggingManager(config).initialize()
    return config, ReleaseEnvironment.from_environ()


def _option(args: argparse.Namespace, name: str, config: ConfigManager, key: str) -> Any:
    value = getattr(args, name, None)
    return value if value is not None else config.get(key)


def _policy_name(args: argparse.Namespace, config: ConfigManager) -> str:
    if getattr(args, "permissive", False):
        return "permissive"
    return config.get("release.validation", "strict")


def _marketplace_client(config: ConfigManager, channel: Optional[str] = None) -> MarketplaceClient:
    return MarketplaceClient(
        url=config.get("marketplace.url"),
        timeout=config.get("marketplace.timeout"),
        channel=config.get("marketplace.channel", "") if channel is None else channel,
        hidden=config.get("marketplace.hidden", False),
    )


def _pipeline(
        args: argparse.Namespace,
        config: ConfigManager,
        environment: ReleaseEnvironment,
        client: Optional[MarketplaceClient] = None
) -> ReleasePipeline:
    return ReleasePipeline(
        descriptor_path=_option(args, "descriptor", config, "release.descriptor"),
        environment=environment,
        source_dir=_option(args, "source_dir", config, "release.source_dir"),
        output_dir=_option(args, "output_dir", config, "release.output_dir"),
        policy=get_validation_policy(_policy_name(args, config)),
        publisher=MarketplacePublisher(client) if client is not None else None,
    )


def _print_step(step: StepResult) -> None:
    marker = "OK" if step.ok else step.outcome.value.upper()
    line = f"[{marker}] {step.stage}"
    if step.error is not None:
        line += f": {step.error.message}"
    print(line, file=sys.stdout if step.ok else sys.stderr)


def publish_with_retries(
        pipeline: ReleasePipeline,
        artifact: Any,
        retries: int = 0,
        wait: Any = None
) -> StepResult:
    """Publish, retrying retryable failures up to ``retries`` more times.

    Args:
        pipeline: Pipeline whose publish stage is called
        artifact: Signed artifact to publish
        retries: Additional attempts after the first one
        wait: tenacity wait strategy (default: exponential backoff)

    Returns:
        The result of the last attempt
    """
    retrying = Retrying(
        retry=retry_if_result(lambda result: result.retryable),
        stop=stop_after_attempt(max(retries, 0) + 1),
        wait=wait if wait is not None else wait_exponential(multiplier=1, min=1, max=30),
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(pipeline.publish, artifact)


def describe_command(args: argparse.Namespace) -> int:
    """Handle the describe command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, environment = _bootstrap(args)
        pipeline = _pipeline(args, config, environment)

        loaded = pipeline.load()
        if not loaded.ok:
            _print_step(loaded)
            return 1
        descriptor = loaded.data

        settings = pipeline.compile_settings(descriptor)
        if not settings.ok:
            _print_step(settings)
            return 1

        data: Dict[str, Any] = descriptor.to_dict()
        data["compiler"] = {
            "source_compatibility": settings.data.source_compatibility,
            "target_compatibility": settings.data.target_compatibility,
            "javac_args": settings.data.to_javac_args(),
        }
        data["environment"] = {"missing": environment.missing()}
        print(json.dumps(data, indent=2))
        return 0

    except ReleaseError as e:
        print(f"Error describing release: {e}", file=sys.stderr)
        return 1


def validate_command(args: argparse.Namespace) -> int:
    """Handle the validate command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, environment = _bootstrap(args)
        pipeline = _pipeline(args, config, environment)

        loaded = pipeline.load()
        if not loaded.ok:
            _print_step(loaded)
            return 1

        report = pipeline.policy.validate(loaded.data)
        for level, messages in report.to_dict().items():
            if messages:
                print(f"{level.upper()}:")
                for msg in messages:
                    print(f"  - {msg}")

        if report.has_errors:
            print(f"Descriptor validation failed ({pipeline.policy.name} policy)", file=sys.stderr)
            return 1

        print(f"Descriptor is valid ({pipeline.policy.name} policy)")
        return 0

    except ReleaseError as e:
        print(f"Error validating descriptor: {e}", file=sys.stderr)
        return 1


def patch_command(args: argparse.Namespace) -> int:
    """Handle the patch command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, _ = _bootstrap(args)
        plugin_xml = Path(args.plugin_xml)
        if not plugin_xml.exists():
            print(f"plugin.xml not found: {plugin_xml}", file=sys.stderr)
            return 1

        descriptor = load_descriptor(_option(args, "descriptor", config, "release.descriptor"))
        manifest = PluginManifest.from_descriptor(
            descriptor,
            plugin_id=read_plugin_id(plugin_xml.read_text(encoding="utf-8")),
        )
        target = ManifestPatcher().patch_file(plugin_xml, manifest, output_path=args.output)

        print(f"Patched {target}: version {manifest.version}, "
              f"since-build {manifest.since_build}, until-build {manifest.until_build or '(open)'}")
        return 0

    except ReleaseError as e:
        print(f"Error patching plugin.xml: {e}", file=sys.stderr)
        return 1


def package_command(args: argparse.Namespace) -> int:
    """Handle the package command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, environment = _bootstrap(args)
        pipeline = _pipeline(args, config, environment)

        report = PipelineReport()
        step = report.add(pipeline.load())
        if step.ok:
            descriptor = step.data
            for stage in (pipeline.compile_settings, pipeline.validate, pipeline.manifest):
                step = report.add(stage(descriptor))
                if not step.ok:
                    break
            else:
                report.add(pipeline.package(step.data, descriptor))

        for step in report.steps:
            _print_step(step)
        if not report.ok:
            return 1

        artifact = report.steps[-1].data
        print(f"Created plugin package: {artifact.path}")
        print(f"SHA-256: {artifact.sha256}")
        if args.list:
            for name, size in PluginPackage.list_entries(artifact.path).items():
                print(f"  {size:>10}  {name}")
        return 0

    except ReleaseError as e:
        print(f"Error packaging plugin: {e}", file=sys.stderr)
        return 1


def sign_command(args: argparse.Namespace) -> int:
    """Handle the sign command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        _, environment = _bootstrap(args)
        artifact = PluginPackage.load(args.package)
        signer = PluginSigner(environment.signing_material())
        signed = signer.sign(artifact, output_path=args.output)

        print(f"Signed plugin package: {signed.path}")
        print(f"Certificate fingerprint: {signed.certificate_fingerprint}")
        return 0

    except ReleaseError as e:
        print(f"Error signing plugin: {e}", file=sys.stderr)
        return 1


def verify_command(args: argparse.Namespace) -> int:
    """Handle the verify command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        _bootstrap(args)
        package_path = Path(args.package)
        if not package_path.exists():
            print(f"Package not found: {package_path}", file=sys.stderr)
            return 1

        verifier = PluginVerifier(trusted_fingerprints=args.trusted)
        if verifier.verify(package_path):
            print(f"Signature verified: {package_path}")
            return 0

        print(f"Signature verification failed: {package_path}", file=sys.stderr)
        return 1

    except ReleaseError as e:
        print(f"Error verifying plugin: {e}", file=sys.stderr)
        return 1


def publish_command(args: argparse.Namespace) -> int:
    """Handle the publish command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, environment = _bootstrap(args)
        signed = load_signed_artifact(args.package)
        if args.plugin_id:
            signed = signed.model_copy(update={"manifest": signed.manifest.model_copy(
                update={"plugin_id": args.plugin_id})})

        with _marketplace_client(config, channel=args.channel) as client:
            pipeline = _pipeline(args, config, environment, client=client)
            step = publish_with_retries(pipeline, signed, retries=args.retries)

        _print_step(step)
        if not step.ok:
            return 1

        print(f"Published {step.data.plugin_id} {step.data.version} "
              f"to channel '{step.data.channel or 'stable'}'")
        return 0

    except ReleaseError as e:
        print(f"Error publishing plugin: {e}", file=sys.stderr)
        return 1


def release_command(args: argparse.Namespace) -> int:
    """Handle the release command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config, environment = _bootstrap(args)

        with _marketplace_client(config, channel=args.channel) as client:
            pipeline = _pipeline(args, config, environment, client=client)
            report = pipeline.run(publish=False)
            if report.ok and not args.skip_publish:
                report.add(publish_with_retries(pipeline, report.signed_artifact, retries=args.retries))

        for step in report.steps:
            _print_step(step)

        if args.report:
            Path(args.report).write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")

        return 0 if report.ok else 1

    except ReleaseError as e:
        print(f"Error releasing plugin: {e}", file=sys.stderr)
        return 1


def generate_key_command(args: argparse.Namespace) -> int:
    """Handle the generate-key command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        _, environment = _bootstrap(args)
        output_dir = Path(args.output_dir)
        chain_path = output_dir / "chain.crt"
        key_path = output_dir / "private.pem"

        if (chain_path.exists() or key_path.exists()) and not args.force:
            print(f"Signing material already exists in: {output_dir}")
            print("Use --force to overwrite")
            return 1

        password = environment.get(PRIVATE_KEY_PASSWORD_VAR)
        if password is None:
            print(f"Set {PRIVATE_KEY_PASSWORD_VAR} to the passphrase for the new key", file=sys.stderr)
            return 1

        material = generate_signing_material(args.common_name, password, days=args.days)
        output_dir.mkdir(parents=True, exist_ok=True)
        chain_path.write_bytes(material.certificate_chain)
        key_path.write_bytes(material.private_key)
        key_path.chmod(0o600)

        print(f"Created certificate: {chain_path}")
        print(f"Created private key: {key_path}")
        return 0

    except ReleaseError as e:
        print(f"Error generating signing material: {e}", file=sys.stderr)
        return 1


def _add_release_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--descriptor", help="Release descriptor (.yaml, .json or build.gradle.kts)")
    parser.add_argument("--source-dir", help="Prepared plugin directory")
    parser.add_argument("--output-dir", help="Directory for distribution zips")
    parser.add_argument("--permissive", action="store_true", help="Skip descriptor checks")


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = argparse.ArgumentParser(
        prog="ijrelease",
        description="IntelliJ Platform plugin release pipeline",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", default=None, help="Configuration file (default: ijrelease.yaml)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Describe command
    describe_parser = subparsers.add_parser("describe", help="Show the resolved release descriptor")
    _add_release_options(describe_parser)

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate the release descriptor")
    _add_release_options(validate_parser)

    # Patch command
    patch_parser = subparsers.add_parser("patch", help="Patch version and build range into plugin.xml")
    patch_parser.add_argument("plugin_xml", help="Path to plugin.xml")
    patch_parser.add_argument("--descriptor", help="Release descriptor")
    patch_parser.add_argument("--output", help="Write the patched file here instead of in place")

    # Package command
    package_parser = subparsers.add_parser("package", help="Build the distribution zip")
    _add_release_options(package_parser)
    package_parser.add_argument("--list", action="store_true", help="List the entries of the created zip")

    # Sign command
    sign_parser = subparsers.add_parser("sign", help="Sign a distribution zip")
    sign_parser.add_argument("package", help="Path to the distribution zip")
    sign_parser.add_argument("--output", help="Path of the signed zip")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Verify a signed distribution zip")
    verify_parser.add_argument("package", help="Path to the signed zip")
    verify_parser.add_argument("--trusted", action="append", help="Trusted certificate SHA-256 fingerprint")

    # Publish command
    publish_parser = subparsers.add_parser("publish", help="Upload a signed zip to the Marketplace")
    publish_parser.add_argument("package", help="Path to the signed zip")
    publish_parser.add_argument("--plugin-id", help="Marketplace plugin id (default: from the package)")
    publish_parser.add_argument("--channel", help="Release channel")
    publish_parser.add_argument("--retries", type=int, default=0, help="Retries for transient failures")

    # Release command
    release_parser = subparsers.add_parser("release", help="Run the whole pipeline")
    _add_release_options(release_parser)
    release_parser.add_argument("--channel", help="Release channel")
    release_parser.add_argument("--retries", type=int, default=0, help="Retries for transient publish failures")
    release_parser.add_argument("--skip-publish", action="store_true", help="Stop after signing")
    release_parser.add_argument("--report", help="Write a JSON report of the run to this file")

    # Generate key command
    generate_key_parser = subparsers.add_parser("generate-key", help="Create a self-signed signing certificate")
    generate_key_parser.add_argument("--common-name", default="Plugin Developer", help="Certificate subject")
    generate_key_parser.add_argument("--output-dir", default=".", help="Output directory")
    generate_key_parser.add_argument("--days", type=int, default=365, help="Certificate validity in days")
    generate_key_parser.add_argument("--force", action="store_true", help="Overwrite existing files")

    args = parser.parse_args(args)

    commands = {
        "describe": describe_command,
        "validate": validate_command,
        "patch": patch_command,
        "package": package_command,
        "sign": sign_command,
        "verify": verify_command,
        "publish": publish_command,
        "release": release_command,
        "generate-key": generate_key_command,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
