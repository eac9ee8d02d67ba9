"""JetBrains Marketplace client.

This module uploads signed plugin artifacts to a Marketplace compatible
endpoint. One call makes one attempt; whether and how often to retry is left
to the caller, which can tell transient failures from permanent ones through
:attr:`~ijrelease.utils.exceptions.PublishError.retryable`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import pydantic
import structlog

from ijrelease.core.environment import PublishCredential
from ijrelease.release.signing import SignedArtifact
from ijrelease.utils.exceptions import PublishError

logger = structlog.get_logger(__name__)

DEFAULT_MARKETPLACE_URL = "https://plugins.jetbrains.com"
UPLOAD_PATH = "/api/updates/upload"


class PublishResult(pydantic.BaseModel):
    """Outcome of a successful upload.

    Attributes:
        plugin_id: Marketplace identifier the artifact was uploaded for
        version: Uploaded version
        channel: Release channel, empty for the default (stable) channel
        status_code: HTTP status returned by the endpoint
        payload: Decoded response body
    """

    model_config = pydantic.ConfigDict(frozen=True)

    plugin_id: str
    version: str
    channel: str = ""
    status_code: int
    payload: Dict[str, Any] = pydantic.Field(default_factory=dict)


def is_retryable_status(status_code: int) -> bool:
    """Return True for statuses a later attempt may get past (429 and 5xx)."""
    return status_code == 429 or status_code >= 500


class MarketplaceClient:
    """Client for the Marketplace upload API.

    Attributes:
        url: Base URL of the Marketplace
        timeout: Request timeout in seconds
        channel: Default release channel
        hidden: Whether uploads are hidden until approved manually
    """

    def __init__(
            self,
            url: str = DEFAULT_MARKETPLACE_URL,
            timeout: float = 60.0,
            channel: str = "",
            hidden: bool = False,
            client: Optional[httpx.Client] = None
    ) -> None:
        """Initialize a Marketplace client.

        Args:
            url: Base URL of the Marketplace
            timeout: Request timeout in seconds
            channel: Default release channel
            hidden: Whether uploads are hidden until approved manually
            client: HTTP client to use instead of creating one
        """
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.channel = channel
        self.hidden = hidden
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> MarketplaceClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def upload(
            self,
            artifact: SignedArtifact,
            credential: PublishCredential,
            plugin_id: Optional[str] = None,
            channel: Optional[str] = None
    ) -> PublishResult:
        """Upload a signed artifact.

        Args:
            artifact: Signed artifact to upload
            credential: Marketplace token
            plugin_id: Marketplace identifier (default: the manifest's plugin id)
            channel: Release channel (default: the client's channel)

        Returns:
            The publish result

        Raises:
            PublishError: If the upload fails; ``retryable`` tells transient
                failures apart
        """
        xml_id = plugin_id or artifact.manifest.plugin_id
        if not xml_id:
            raise PublishError("Plugin id unknown: set <id> in plugin.xml or plugin_id in the descriptor")

        channel = self.channel if channel is None else channel
        path = Path(artifact.path)
        if not path.exists():
            raise PublishError(f"Signed artifact not found: {path}")

        data = {"xmlId": xml_id, "channel": channel}
        if self.hidden:
            data["isHidden"] = "true"
        headers = {
            "Authorization": f"Bearer {credential.token.get_secret_value()}",
            "Accept": "application/json",
        }

        logger.info("Uploading plugin", plugin_id=xml_id, version=artifact.manifest.version,
                    channel=channel or "stable", url=self.url)

        try:
            with open(path, "rb") as f:
                files = {"file": (path.name, f, "application/zip")}
                response = self._client.post(
                    f"{self.url}{UPLOAD_PATH}",
                    data=data,
                    files=files,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as e:
            raise PublishError(f"Upload timed out: {e}", retryable=True) from e
        except httpx.RequestError as e:
            raise PublishError(f"Failed to connect to Marketplace: {e}", retryable=True) from e

        if not response.is_success:
            retryable = is_retryable_status(response.status_code)
            logger.warning("Marketplace rejected upload", plugin_id=xml_id,
                           status_code=response.status_code, retryable=retryable)
            raise PublishError(
                f"Marketplace returned error: {response.text[:500]}",
                retryable=retryable,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {"text": response.text}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        logger.info("Uploaded plugin", plugin_id=xml_id, version=artifact.manifest.version,
                    status_code=response.status_code)
        return PublishResult(
            plugin_id=xml_id,
            version=artifact.manifest.version,
            channel=channel,
            status_code=response.status_code,
            payload=payload,
        )
