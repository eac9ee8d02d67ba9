"""Process environment snapshot for signing and publishing secrets.

The environment is read exactly once, when a :class:`ReleaseEnvironment` is
created at the start of an invocation. Pipeline stages receive the snapshot
and never consult ``os.environ`` themselves.
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Dict, List, Mapping, Optional

import pydantic
from pydantic import SecretStr

from ijrelease.utils.exceptions import MissingSecretError

CERTIFICATE_CHAIN_VAR = "CERTIFICATE_CHAIN"
PRIVATE_KEY_VAR = "PRIVATE_KEY"
PRIVATE_KEY_PASSWORD_VAR = "PRIVATE_KEY_PASSWORD"
PUBLISH_TOKEN_VAR = "PUBLISH_TOKEN"

SIGNING_VARIABLES = (CERTIFICATE_CHAIN_VAR, PRIVATE_KEY_VAR, PRIVATE_KEY_PASSWORD_VAR)
RELEASE_VARIABLES = SIGNING_VARIABLES + (PUBLISH_TOKEN_VAR,)


class SigningMaterial(pydantic.BaseModel):
    """Cryptographic inputs for signing one artifact.

    Attributes:
        certificate_chain: PEM encoded certificate chain, leaf first
        private_key: PEM encoded private key
        password: Passphrase of the private key
    """

    model_config = pydantic.ConfigDict(frozen=True)

    certificate_chain: bytes
    private_key: bytes
    password: SecretStr


class PublishCredential(pydantic.BaseModel):
    """Authentication token for the distribution endpoint."""

    model_config = pydantic.ConfigDict(frozen=True)

    token: SecretStr


def decode_pem(value: str) -> bytes:
    """Return PEM bytes from a raw PEM value or a base64 encoded one.

    A value without a ``-----BEGIN`` marker is base64 decoded first.
    """
    if "-----BEGIN" in value:
        return value.encode("utf-8")
    try:
        decoded = base64.b64decode(value.strip(), validate=False)
    except (binascii.Error, ValueError):
        return value.encode("utf-8")
    if b"-----BEGIN" in decoded:
        return decoded
    return value.encode("utf-8")


class ReleaseEnvironment:
    """Read-only snapshot of the release secrets in the process environment."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values: Dict[str, str] = {
            name: values[name] for name in RELEASE_VARIABLES if name in values
        }

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> ReleaseEnvironment:
        """Take a snapshot of the release variables.

        Args:
            environ: Mapping to read from (default: os.environ)
        """
        return cls(os.environ if environ is None else environ)

    def get(self, name: str) -> Optional[str]:
        """Get a variable; empty values count as unset."""
        value = self._values.get(name)
        return value if value else None

    def missing(self, names: tuple = RELEASE_VARIABLES) -> List[str]:
        """List the given variables that are unset or empty."""
        return [name for name in names if self.get(name) is None]

    def signing_material(self) -> SigningMaterial:
        """Build the signing material.

        Raises:
            MissingSecretError: If any signing variable is unset or empty
        """
        missing = self.missing(SIGNING_VARIABLES)
        if missing:
            raise MissingSecretError(missing)

        return SigningMaterial(
            certificate_chain=decode_pem(self._values[CERTIFICATE_CHAIN_VAR]),
            private_key=decode_pem(self._values[PRIVATE_KEY_VAR]),
            password=SecretStr(self._values[PRIVATE_KEY_PASSWORD_VAR]),
        )

    def publish_credential(self) -> PublishCredential:
        """Build the publish credential.

        Raises:
            MissingSecretError: If PUBLISH_TOKEN is unset or empty
        """
        if self.get(PUBLISH_TOKEN_VAR) is None:
            raise MissingSecretError([PUBLISH_TOKEN_VAR])
        return PublishCredential(token=SecretStr(self._values[PUBLISH_TOKEN_VAR]))

    def __repr__(self) -> str:
        present = sorted(name for name in self._values if self.get(name))
        return f"ReleaseEnvironment(present={present})"
