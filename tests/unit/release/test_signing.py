"""Unit tests for artifact signing and verification."""

from __future__ import annotations

import base64
import datetime
import zipfile
from pathlib import Path
from typing import Dict

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from pydantic import SecretStr

from ijrelease.core.environment import ReleaseEnvironment, SigningMaterial
from ijrelease.release.manifest import PluginManifest
from ijrelease.release.package import PluginArtifact, PluginPackage
from ijrelease.release.signing import (
    PluginSigner,
    PluginVerifier,
    generate_signing_material,
    load_signed_artifact,
)
from ijrelease.utils.exceptions import MissingSecretError, SigningError, VerificationError


@pytest.fixture
def artifact(tmp_path: Path, plugin_source_dir: Path) -> PluginArtifact:
    manifest = PluginManifest(
        plugin_id="com.radut.bfw",
        group="com.intellij.plugin",
        version="1.0.0",
        since_build="232",
        until_build="241.*",
    )
    return PluginPackage.create(plugin_source_dir, tmp_path / "dist" / "force-reload-1.0.0.zip", manifest)


@pytest.mark.parametrize("variable", ["CERTIFICATE_CHAIN", "PRIVATE_KEY", "PRIVATE_KEY_PASSWORD"])
@pytest.mark.parametrize("value", [None, ""])
def test_each_missing_signing_variable_fails(release_environ: Dict[str, str], variable: str, value) -> None:
    """Test that any one unset or empty signing variable fails on its own."""
    environ = dict(release_environ)
    if value is None:
        del environ[variable]
    else:
        environ[variable] = value

    with pytest.raises(MissingSecretError) as exc_info:
        ReleaseEnvironment.from_environ(environ).signing_material()

    assert exc_info.value.variables == [variable]
    assert variable in str(exc_info.value)


def test_missing_token_does_not_block_signing(release_environ: Dict[str, str]) -> None:
    """Test that the publish token is not needed to sign."""
    del release_environ["PUBLISH_TOKEN"]

    material = ReleaseEnvironment.from_environ(release_environ).signing_material()

    assert material.password.get_secret_value() == release_environ["PRIVATE_KEY_PASSWORD"]


def test_sign_and_verify(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test signing an artifact and verifying the signed copy."""
    signed = PluginSigner(signing_material).sign(artifact)

    assert signed.path == artifact.path.with_name("force-reload-1.0.0-signed.zip")
    assert signed.manifest == artifact.manifest
    assert len(signed.certificate_fingerprint) == 64
    assert PluginVerifier().verify(signed.path)
    assert PluginVerifier(trusted_fingerprints=[signed.certificate_fingerprint]).verify(signed.path)
    assert not PluginVerifier(trusted_fingerprints=["00" * 32]).verify(signed.path)

    with zipfile.ZipFile(signed.path) as zf:
        names = zf.namelist()
    assert ".signature/plugin.sig" in names
    assert ".signature/chain.pem" in names
    assert base64.b64decode(signed.signature)

    # the unsigned artifact is left as it was
    assert not PluginVerifier().verify(artifact.path)


def test_tampered_artifact_fails_verification(tmp_path: Path, artifact: PluginArtifact,
                                              signing_material: SigningMaterial) -> None:
    """Test that changing the content after signing breaks the signature."""
    signed = PluginSigner(signing_material).sign(artifact, output_path=tmp_path / "signed.zip")

    with zipfile.ZipFile(signed.path, "a") as zf:
        zf.writestr("force-reload/lib/extra.jar", b"injected")

    assert not PluginVerifier().verify(signed.path)


def test_load_signed_artifact(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test reading a signed zip back."""
    signed = PluginSigner(signing_material).sign(artifact)

    loaded = load_signed_artifact(signed.path)

    assert loaded.manifest == signed.manifest
    assert loaded.signature == signed.signature
    assert loaded.certificate_fingerprint == signed.certificate_fingerprint

    with pytest.raises(VerificationError, match="not signed"):
        load_signed_artifact(artifact.path)


def test_sign_rejects_signed_artifact(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test that a signed artifact cannot be signed again."""
    signed = PluginSigner(signing_material).sign(artifact)
    resigned = PluginArtifact(path=signed.path, manifest=signed.manifest, sha256=signed.sha256)

    with pytest.raises(SigningError, match="already signed"):
        PluginSigner(signing_material).sign(resigned)


def test_wrong_password(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test that a wrong passphrase is a signing error."""
    material = signing_material.model_copy(update={"password": SecretStr("wrong")})

    with pytest.raises(SigningError, match="Failed to load private key"):
        PluginSigner(material).sign(artifact)


def test_key_certificate_mismatch(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test that a key from another certificate is refused."""
    other = generate_signing_material("someone else", "other-password")
    material = SigningMaterial(
        certificate_chain=signing_material.certificate_chain,
        private_key=other.private_key,
        password=SecretStr("other-password"),
    )

    with pytest.raises(SigningError, match="does not match"):
        PluginSigner(material).sign(artifact)


def test_malformed_chain(artifact: PluginArtifact, signing_material: SigningMaterial) -> None:
    """Test that a malformed certificate chain is a signing error."""
    material = signing_material.model_copy(update={"certificate_chain": b"not a certificate"})

    with pytest.raises(SigningError, match="certificate chain"):
        PluginSigner(material).sign(artifact)


def test_unencrypted_ec_key(tmp_path: Path, artifact: PluginArtifact) -> None:
    """Test signing with an unencrypted ECDSA key."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "ec signer")])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    material = SigningMaterial(
        certificate_chain=certificate.public_bytes(serialization.Encoding.PEM),
        private_key=key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
        password=SecretStr("unused"),
    )

    signed = PluginSigner(material).sign(artifact, output_path=tmp_path / "ec-signed.zip")

    assert PluginVerifier().verify(signed.path)


def test_base64_encoded_secrets(release_environ: Dict[str, str], artifact: PluginArtifact) -> None:
    """Test that base64 encoded PEM values are accepted."""
    for name in ("CERTIFICATE_CHAIN", "PRIVATE_KEY"):
        release_environ[name] = base64.b64encode(release_environ[name].encode("utf-8")).decode("ascii")

    material = ReleaseEnvironment.from_environ(release_environ).signing_material()
    signed = PluginSigner(material).sign(artifact)

    assert PluginVerifier().verify(signed.path)


def test_generate_signing_material_requires_password() -> None:
    """Test that generated keys are always encrypted."""
    with pytest.raises(SigningError, match="password is required"):
        generate_signing_material("cn", "")
