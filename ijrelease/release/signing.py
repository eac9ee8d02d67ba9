"""Artifact signing and verification.

This module signs plugin distribution zips with the certificate chain and
private key supplied in :class:`~ijrelease.core.environment.SigningMaterial`,
and verifies signed zips. The signature covers the content digest of the
zip (see :func:`~ijrelease.release.package.content_digest`) and is stored,
together with the certificate chain, under a ``.signature/`` directory
inside a signed copy of the artifact.
"""

from __future__ import annotations

import base64
import datetime
import json
import shutil
import zipfile
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set, Tuple, Union

import pydantic
import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import NameOID
from pydantic import SecretStr

from ijrelease.core.environment import SigningMaterial
from ijrelease.release.manifest import PluginManifest
from ijrelease.release.package import SIGNATURE_DIR, PluginArtifact, PluginPackage, calculate_file_hash, content_digest
from ijrelease.utils.exceptions import PackageError, SigningError, VerificationError

logger = structlog.get_logger(__name__)

SIGNATURE_ENTRY = SIGNATURE_DIR + "plugin.sig"
CHAIN_ENTRY = SIGNATURE_DIR + "chain.pem"
INFO_ENTRY = SIGNATURE_DIR + "info.json"


class SignedArtifact(pydantic.BaseModel):
    """A signed plugin distribution.

    Attributes:
        path: Path of the signed zip
        manifest: Release manifest of the artifact
        sha256: Hash of the signed zip file
        signature: Base64 signature over the content digest
        certificate_fingerprint: SHA-256 fingerprint of the signing certificate
    """

    model_config = pydantic.ConfigDict(frozen=True)

    path: Path
    manifest: PluginManifest
    sha256: str
    signature: str
    certificate_fingerprint: str


def _algorithm_name(key: Any) -> str:
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return "RSA-SHA256"
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return "ECDSA-SHA256"
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey)):
        return "Ed25519"
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def _public_key_bytes(key: Any) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    """SHA-256 fingerprint of a certificate, hex encoded."""
    return certificate.fingerprint(hashes.SHA256()).hex()


class PluginSigner:
    """Tool for signing plugin artifacts.

    Attributes:
        material: Certificate chain, private key and password
    """

    def __init__(self, material: SigningMaterial) -> None:
        self.material = material

    def load_private_key(self) -> Any:
        """Load the private key, decrypting it with the password.

        Raises:
            SigningError: If the key is malformed or the password is wrong
        """
        password = self.material.password.get_secret_value().encode("utf-8")
        try:
            return serialization.load_pem_private_key(self.material.private_key, password=password)
        except TypeError:
            # key stored without encryption
            try:
                return serialization.load_pem_private_key(self.material.private_key, password=None)
            except (ValueError, TypeError, UnsupportedAlgorithm) as e:
                raise SigningError(f"Failed to load private key: {e}") from e
        except (ValueError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to load private key (wrong password or malformed key): {e}") from e

    def load_certificate_chain(self) -> List[x509.Certificate]:
        """Load the certificate chain, leaf certificate first.

        Raises:
            SigningError: If the chain is empty or malformed
        """
        try:
            chain = x509.load_pem_x509_certificates(self.material.certificate_chain)
        except ValueError as e:
            raise SigningError(f"Failed to load certificate chain: {e}") from e
        if not chain:
            raise SigningError("Certificate chain is empty")
        return chain

    def sign(self, artifact: PluginArtifact, output_path: Optional[Union[str, Path]] = None) -> SignedArtifact:
        """Sign an artifact.

        Args:
            artifact: Packaged plugin to sign
            output_path: Path of the signed copy (default: ``<name>-signed.zip``
                next to the artifact)

        Returns:
            The signed artifact

        Raises:
            SigningError: If signing fails
        """
        private_key = self.load_private_key()
        chain = self.load_certificate_chain()
        leaf = chain[0]

        if _public_key_bytes(private_key.public_key()) != _public_key_bytes(leaf.public_key()):
            raise SigningError("Private key does not match the first certificate of the chain")

        source = Path(artifact.path)
        target = Path(output_path) if output_path else source.with_name(f"{source.stem}-signed{source.suffix}")

        try:
            with zipfile.ZipFile(source, "r") as zf:
                if any(name.startswith(SIGNATURE_DIR) for name in zf.namelist()):
                    raise SigningError(f"Artifact is already signed: {source}")
            digest = content_digest(source)
        except (zipfile.BadZipFile, OSError, PackageError) as e:
            raise SigningError(f"Failed to read artifact {source}: {e}") from e

        algorithm = _algorithm_name(private_key)
        signature = self._sign_digest(private_key, digest)
        fingerprint = certificate_fingerprint(leaf)
        chain_pem = b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in chain)
        info = {
            "algorithm": algorithm,
            "certificateFingerprint": fingerprint,
            "subject": leaf.subject.rfc4514_string(),
            "signedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

        try:
            if target.resolve() != source.resolve():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            with zipfile.ZipFile(target, "a", zipfile.ZIP_DEFLATED) as zf:
                zf.writestr(SIGNATURE_ENTRY, base64.b64encode(signature).decode("ascii"))
                zf.writestr(CHAIN_ENTRY, chain_pem)
                zf.writestr(INFO_ENTRY, json.dumps(info, indent=2))
        except OSError as e:
            raise SigningError(f"Failed to write signed artifact {target}: {e}") from e

        logger.info("Signed plugin artifact", path=str(target), algorithm=algorithm, fingerprint=fingerprint)
        return SignedArtifact(
            path=target,
            manifest=artifact.manifest,
            sha256=calculate_file_hash(target),
            signature=base64.b64encode(signature).decode("ascii"),
            certificate_fingerprint=fingerprint,
        )

    @staticmethod
    def _sign_digest(private_key: Any, digest: bytes) -> bytes:
        if isinstance(private_key, rsa.RSAPrivateKey):
            return private_key.sign(digest, padding.PKCS1v15(), hashes.SHA256())
        if isinstance(private_key, ec.EllipticCurvePrivateKey):
            return private_key.sign(digest, ec.ECDSA(hashes.SHA256()))
        if isinstance(private_key, ed25519.Ed25519PrivateKey):
            return private_key.sign(digest)
        raise SigningError(f"Unsupported key type: {type(private_key).__name__}")


class PluginVerifier:
    """Tool for verifying signed plugin artifacts.

    Attributes:
        trusted_fingerprints: Certificate fingerprints accepted as signers;
            when empty, any certificate whose signature checks out is accepted
    """

    def __init__(self, trusted_fingerprints: Optional[Iterable[str]] = None) -> None:
        self.trusted_fingerprints: Set[str] = {fp.lower().replace(":", "") for fp in trusted_fingerprints or []}

    def read_signature(self, path: Union[str, Path]) -> Optional[Tuple[bytes, List[x509.Certificate]]]:
        """Read the signature and certificate chain stored in a signed zip.

        Returns:
            The raw signature and the chain, or None if the zip is unsigned

        Raises:
            VerificationError: If the zip or its signature entries are unreadable
        """
        try:
            with zipfile.ZipFile(path, "r") as zf:
                names = set(zf.namelist())
                if SIGNATURE_ENTRY not in names or CHAIN_ENTRY not in names:
                    return None
                signature = base64.b64decode(zf.read(SIGNATURE_ENTRY))
                chain = x509.load_pem_x509_certificates(zf.read(CHAIN_ENTRY))
        except (zipfile.BadZipFile, OSError, ValueError) as e:
            raise VerificationError(f"Failed to read signature of {path}: {e}") from e
        return signature, chain

    def verify(self, path: Union[str, Path]) -> bool:
        """Verify a signed artifact.

        Args:
            path: Path of the signed zip

        Returns:
            True if the signature matches the content and the signer is trusted

        Raises:
            VerificationError: If verification fails due to an error
        """
        entries = self.read_signature(path)
        if entries is None:
            logger.warning("Artifact is not signed", path=str(path))
            return False

        signature, chain = entries
        leaf = chain[0]
        fingerprint = certificate_fingerprint(leaf)
        if self.trusted_fingerprints and fingerprint not in self.trusted_fingerprints:
            logger.warning("Signing certificate is not trusted", path=str(path), fingerprint=fingerprint)
            return False

        try:
            digest = content_digest(path)
        except PackageError as e:
            raise VerificationError(str(e)) from e

        public_key = leaf.public_key()
        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature, digest, padding.PKCS1v15(), hashes.SHA256())
            elif isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(signature, digest, ec.ECDSA(hashes.SHA256()))
            elif isinstance(public_key, ed25519.Ed25519PublicKey):
                public_key.verify(signature, digest)
            else:
                raise VerificationError(f"Unsupported key type: {type(public_key).__name__}")
        except InvalidSignature:
            logger.warning("Artifact signature does not match its content", path=str(path))
            return False

        return True


def load_signed_artifact(path: Union[str, Path]) -> SignedArtifact:
    """Read a signed zip back into a :class:`SignedArtifact`.

    Raises:
        VerificationError: If the zip carries no signature
        PackageError: If the zip has no release manifest
    """
    entries = PluginVerifier().read_signature(path)
    if entries is None:
        raise VerificationError(f"Artifact is not signed: {path}")
    signature, chain = entries
    artifact = PluginPackage.load(path)
    return SignedArtifact(
        path=artifact.path,
        manifest=artifact.manifest,
        sha256=artifact.sha256,
        signature=base64.b64encode(signature).decode("ascii"),
        certificate_fingerprint=certificate_fingerprint(chain[0]),
    )


def generate_signing_material(
        common_name: str,
        password: str,
        days: int = 365
) -> SigningMaterial:
    """Generate a self-signed certificate and an encrypted RSA key.

    Intended for local dry runs; marketplace releases need a certificate
    issued for the vendor.

    Args:
        common_name: Subject common name of the certificate
        password: Passphrase used to encrypt the private key
        days: Validity of the certificate in days

    Raises:
        SigningError: If generation fails
    """
    if not password:
        raise SigningError("A password is required to encrypt the private key")

    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.datetime.now(datetime.timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=days))
            .sign(private_key, hashes.SHA256())
        )
        key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8"))
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"Failed to generate signing material: {e}") from e

    return SigningMaterial(
        certificate_chain=certificate.public_bytes(serialization.Encoding.PEM),
        private_key=key_pem,
        password=SecretStr(password),
    )
