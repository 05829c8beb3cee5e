"""Request-signing credentials for the OCI secret store.

Pattern: Explicit Provider Selection
-------------------------------------
OCI accepts requests signed by several kinds of principal.  Each kind is one
``SignerProvider`` implementation that produces a ``SigningContext`` (the
client config dict plus, where needed, a signer object).  The provider is
chosen from ``OciSettings.auth_mode`` only; the environment is never probed to
guess which principal happens to be available.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Protocol

import oci

from adb_entra_auth.config import OciSettings
from adb_entra_auth.vault.secrets import RetrievalError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SigningContext:
    """Client configuration plus optional signer handed to OCI SDK clients."""

    config: dict[str, Any]
    signer: Any | None = None

    @property
    def region(self) -> str | None:
        return self.config.get("region")


class SignerProvider(Protocol):
    def signing_context(self) -> SigningContext: ...


class ConfigFileSignerProvider:
    """API-key signing from an OCI config file profile."""

    def __init__(self, config_file: str = "~/.oci/config", profile: str = "DEFAULT") -> None:
        self._config_file = config_file
        self._profile = profile

    def signing_context(self) -> SigningContext:
        try:
            config = oci.config.from_file(
                file_location=os.path.expanduser(self._config_file),
                profile_name=self._profile,
            )
        except oci.exceptions.ClientError as exc:
            raise RetrievalError(
                f"Failed to load OCI config from {self._config_file} "
                f"with profile '{self._profile}': {exc}"
            ) from exc
        logger.debug("Using OCI config file %s [%s]", self._config_file, self._profile)
        return SigningContext(config=config)


class InstancePrincipalSignerProvider:
    """Instance-principal signing for code running on OCI compute."""

    def __init__(self, region: str | None = None) -> None:
        self._region = region

    def signing_context(self) -> SigningContext:
        from oci.auth.signers import InstancePrincipalsSecurityTokenSigner

        try:
            signer = InstancePrincipalsSecurityTokenSigner()
        except Exception as exc:
            raise RetrievalError(f"Failed to initialise instance principal signer: {exc}") from exc
        region = self._region or signer.region
        logger.debug("Using instance principal signer, region=%s", region)
        return SigningContext(config={"region": region}, signer=signer)


class EnvironmentSignerProvider:
    """API-key signing from explicitly supplied tenancy/user/key values."""

    def __init__(
        self,
        tenancy: str,
        user: str,
        fingerprint: str,
        region: str,
        key_file: str,
        passphrase: str | None = None,
    ) -> None:
        self._config: dict[str, Any] = {
            "tenancy": tenancy,
            "user": user,
            "fingerprint": fingerprint,
            "region": region,
            "key_file": os.path.expanduser(key_file),
        }
        if passphrase:
            self._config["pass_phrase"] = passphrase

    def signing_context(self) -> SigningContext:
        try:
            oci.config.validate_config(self._config)
        except oci.exceptions.InvalidConfig as exc:
            raise RetrievalError(f"Invalid OCI signing configuration: {exc}") from exc
        logger.debug("Using explicit API-key signing for user=%s", self._config["user"])
        return SigningContext(config=dict(self._config))


def build_signer_provider(settings: OciSettings) -> SignerProvider:
    """Return the provider named by ``settings.auth_mode``."""
    if settings.auth_mode == "config_file":
        return ConfigFileSignerProvider(settings.config_file, settings.profile)
    if settings.auth_mode == "instance_principal":
        return InstancePrincipalSignerProvider(region=settings.region)
    if settings.auth_mode == "environment":
        return EnvironmentSignerProvider(
            tenancy=settings.tenancy or "",
            user=settings.user or "",
            fingerprint=settings.fingerprint or "",
            region=settings.region or "",
            key_file=settings.key_file or "",
            passphrase=settings.passphrase,
        )
    raise RetrievalError(f"Unsupported OCI auth mode: {settings.auth_mode}")
