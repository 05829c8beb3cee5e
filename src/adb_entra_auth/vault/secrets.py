"""Secret retrieval from OCI Vault.

Pattern: Read-Once Secret Bundles
----------------------------------
Secrets (certificate, private key, key password) live in OCI Vault and are
read exactly once per run.  The Vault returns each value wrapped in a
versioned *bundle*; only the ``CURRENT`` stage is read and only base64
content is accepted.  Any other content type is a hard failure rather than
something to pass through, because the callers hand the result straight to
key-parsing code.

The OCI SDK is blocking, so the async accessors push each call onto a worker
thread with ``asyncio.to_thread``.  That lets the startup fetches overlap on
a single event loop without the pipeline itself managing threads.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import oci

if TYPE_CHECKING:
    from adb_entra_auth.vault.signers import SignerProvider

logger = logging.getLogger(__name__)

CURRENT_STAGE = "CURRENT"


class RetrievalError(Exception):
    """Raised when a secret cannot be fetched or decoded."""


class SecretRetriever:
    """Reads secret values from OCI Vault by OCID."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_provider(cls, provider: SignerProvider) -> SecretRetriever:
        """Build a retriever whose ``SecretsClient`` is signed by *provider*.

        The client never retries; a failed call fails the run.
        """
        ctx = provider.signing_context()
        kwargs: dict[str, Any] = {"retry_strategy": oci.retry.NoneRetryStrategy()}
        if ctx.signer is not None:
            kwargs["signer"] = ctx.signer
        try:
            client = oci.secrets.SecretsClient(ctx.config, **kwargs)
        except (oci.exceptions.ClientError, ValueError) as exc:
            raise RetrievalError(f"Failed to create OCI secrets client: {exc}") from exc
        logger.info("OCI secrets client ready (region=%s)", ctx.region)
        return cls(client)

    # -- blocking accessors --------------------------------------------------

    def get_secret_bytes(self, secret_id: str) -> bytes:
        """Return the decoded ``CURRENT`` value of *secret_id* as raw bytes.

        Use this for binary content such as DER keys, which a text decode
        would corrupt.
        """
        try:
            response = self._client.get_secret_bundle(secret_id, stage=CURRENT_STAGE)
        except oci.exceptions.ServiceError as exc:
            raise RetrievalError(
                f"Vault rejected secret {secret_id}: {exc.status} {exc.code} {exc.message}"
            ) from exc
        except (oci.exceptions.ClientError, oci.exceptions.RequestException) as exc:
            raise RetrievalError(f"Could not reach Vault for secret {secret_id}: {exc}") from exc

        bundle = response.data
        content = bundle.secret_bundle_content
        if not isinstance(content, oci.secrets.models.Base64SecretBundleContentDetails):
            content_type = getattr(content, "content_type", type(content).__name__)
            raise RetrievalError(
                f"Unexpected secret content type for {secret_id}: {content_type}"
            )

        try:
            value = base64.b64decode(content.content or "", validate=True)
        except binascii.Error as exc:
            raise RetrievalError(f"Secret {secret_id} is not valid base64") from exc

        logger.info(
            "Fetched secret %s (version %s, %d bytes)",
            secret_id,
            getattr(bundle, "version_number", "?"),
            len(value),
        )
        return value

    def get_secret(self, secret_id: str) -> str:
        """Return the decoded ``CURRENT`` value of *secret_id* as UTF-8 text."""
        raw = self.get_secret_bytes(secret_id)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RetrievalError(
                f"Secret {secret_id} is not UTF-8 text; fetch it as bytes instead"
            ) from exc

    # -- async accessors -----------------------------------------------------

    async def fetch_secret(self, secret_id: str) -> str:
        return await asyncio.to_thread(self.get_secret, secret_id)

    async def fetch_secret_bytes(self, secret_id: str) -> bytes:
        return await asyncio.to_thread(self.get_secret_bytes, secret_id)

    async def fetch_secrets(self, secret_ids: Mapping[str, str]) -> dict[str, str]:
        """Fetch several secrets concurrently, keyed by caller-chosen name.

        The first failure propagates; no partial result is returned.
        """
        names = list(secret_ids)
        values = await asyncio.gather(*(self.fetch_secret(secret_ids[n]) for n in names))
        return dict(zip(names, values))

    async def fetch_secrets_bytes(self, secret_ids: Mapping[str, str]) -> dict[str, bytes]:
        names = list(secret_ids)
        values = await asyncio.gather(*(self.fetch_secret_bytes(secret_ids[n]) for n in names))
        return dict(zip(names, values))
