"""Runtime configuration read from environment variables.

Pattern: Fail Before the First Network Call
--------------------------------------------
Every setting the pipeline needs is collected into one immutable ``Settings``
object at startup.  Missing required variables are reported together in a
single ``ConfigurationError`` so an operator can fix the environment in one
pass, and nothing touches OCI, Entra or the database until the whole
configuration is known to be complete.

The three historical program variants (vault certificate, local certificate
file, PKCS12 bundle; with or without a database user) are expressed as
optional fields of the same ``Settings`` rather than as separate entry points.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping

AUTH_MODES = ("config_file", "instance_principal", "environment")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or inconsistent."""


@dataclasses.dataclass(frozen=True)
class OciSettings:
    """How the secret store client authenticates its requests.

    Attributes:
        auth_mode:    One of ``config_file``, ``instance_principal`` or
                      ``environment``.
        config_file:  OCI config file for ``config_file`` mode.
        profile:      Profile inside *config_file*.
        tenancy:      Tenancy OCID (``environment`` mode).
        user:         User OCID (``environment`` mode).
        fingerprint:  API key fingerprint (``environment`` mode).
        region:       Region identifier, e.g. ``us-ashburn-1``.
        key_file:     API signing key path (``environment`` mode).
        passphrase:   Optional passphrase for *key_file*.
    """

    auth_mode: str = "config_file"
    config_file: str = "~/.oci/config"
    profile: str = "DEFAULT"
    tenancy: str | None = None
    user: str | None = None
    fingerprint: str | None = None
    region: str | None = None
    key_file: str | None = None
    passphrase: str | None = None


@dataclasses.dataclass(frozen=True)
class Settings:
    """Complete pipeline configuration.

    Exactly one certificate source is set: *certificate_secret_id*,
    *certificate_file*, or *pfx_secret_id* (which also carries the key).
    """

    private_key_secret_id: str | None
    private_key_password_secret_id: str | None
    certificate_secret_id: str | None
    certificate_file: str | None
    pfx_secret_id: str | None

    entra_client_id: str
    entra_tenant_id: str
    entra_scope: str

    oracle_tns_name: str
    oracle_user_id: str | None
    tns_admin: str
    wallet_location: str | None
    wallet_password: str | None

    oci: OciSettings
    log_level: str = "WARNING"

    @property
    def uses_pfx(self) -> bool:
        return self.pfx_secret_id is not None

    @property
    def effective_wallet_location(self) -> str:
        return self.wallet_location or self.tns_admin

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build ``Settings`` from *environ* (defaults to ``os.environ``).

        Raises ``ConfigurationError`` naming every missing variable.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        missing: list[str] = []

        def require(name: str) -> str:
            value = get(name)
            if value is None:
                missing.append(name)
                return ""
            return value

        pfx_secret_id = get("OCI_PFX_SECRET_ID")
        certificate_secret_id = get("OCI_CERTIFICATE_SECRET_ID")
        certificate_file = get("CERTIFICATE_FILE")

        if pfx_secret_id is None:
            private_key_secret_id: str | None = require("OCI_PRIVATE_KEY_SECRET_ID")
            if certificate_secret_id is None and certificate_file is None:
                missing.append("OCI_CERTIFICATE_SECRET_ID or CERTIFICATE_FILE")
        else:
            private_key_secret_id = get("OCI_PRIVATE_KEY_SECRET_ID")

        client_id = require("ENTRA_CLIENT_ID")
        tenant_id = require("ENTRA_TENANT_ID")
        tns_name = require("ORACLE_TNS_NAME")
        tns_admin = require("TNS_ADMIN")

        oci_settings = _oci_settings(get, missing)

        if missing:
            raise ConfigurationError(
                "Missing required environment variables: " + ", ".join(missing)
            )

        if certificate_secret_id is not None and certificate_file is not None:
            raise ConfigurationError(
                "Set only one of OCI_CERTIFICATE_SECRET_ID and CERTIFICATE_FILE"
            )

        return cls(
            private_key_secret_id=private_key_secret_id,
            private_key_password_secret_id=get("OCI_PRIVATE_KEY_PASSWORD_SECRET_ID"),
            certificate_secret_id=certificate_secret_id,
            certificate_file=certificate_file,
            pfx_secret_id=pfx_secret_id,
            entra_client_id=client_id,
            entra_tenant_id=tenant_id,
            entra_scope=get("ENTRA_SCOPE") or f"api://{client_id}/.default",
            oracle_tns_name=tns_name,
            oracle_user_id=get("ORACLE_USER_ID"),
            tns_admin=tns_admin,
            wallet_location=get("ORACLE_WALLET_LOCATION"),
            wallet_password=get("ORACLE_WALLET_PASSWORD"),
            oci=oci_settings,
            log_level=(get("LOG_LEVEL") or "WARNING").upper(),
        )


def _oci_settings(get, missing: list[str]) -> OciSettings:
    auth_mode = (get("OCI_AUTH_MODE") or "config_file").lower()
    if auth_mode not in AUTH_MODES:
        raise ConfigurationError(
            f"Unsupported OCI_AUTH_MODE '{auth_mode}' (expected one of: {', '.join(AUTH_MODES)})"
        )

    if auth_mode == "environment":
        for name in ("OCI_TENANCY_OCID", "OCI_USER_OCID", "OCI_FINGERPRINT", "OCI_REGION", "OCI_KEY_FILE"):
            if get(name) is None:
                missing.append(name)

    return OciSettings(
        auth_mode=auth_mode,
        config_file=get("OCI_CONFIG_FILE") or "~/.oci/config",
        profile=get("OCI_PROFILE") or "DEFAULT",
        tenancy=get("OCI_TENANCY_OCID"),
        user=get("OCI_USER_OCID"),
        fingerprint=get("OCI_FINGERPRINT"),
        region=get("OCI_REGION"),
        key_file=get("OCI_KEY_FILE"),
        passphrase=get("OCI_KEY_PASSPHRASE"),
    )
