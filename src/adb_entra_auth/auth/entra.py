"""Access token acquisition from Microsoft Entra ID.

Pattern: Certificate Client Credentials
-----------------------------------------
The application proves its identity with a certificate instead of a shared
client secret.  ``azure.identity``'s ``CertificateCredential`` performs the
client-credentials exchange against the public cloud authority and returns a
short-lived bearer token for the requested scope (for Oracle ADB, the app ID
URI, e.g. ``api://<client-id>/.default``).

Each ``acquire()`` builds a fresh credential and closes it afterwards, so
every call is a round trip to Entra.  There is no token cache
here; a run acquires one token and uses it once.
"""

from __future__ import annotations

import dataclasses
import datetime
import logging
from collections.abc import Sequence

from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import AzureAuthorityHosts
from azure.identity.aio import CertificateCredential

from adb_entra_auth.auth.credentials import Identity

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when Entra ID rejects the request or cannot be reached."""


@dataclasses.dataclass(frozen=True)
class AccessToken:
    """A bearer token and its expiry.

    ``repr`` and ``str`` never include the token itself.
    """

    token: str = dataclasses.field(repr=False)
    expires_on: datetime.datetime

    @property
    def is_expired(self) -> bool:
        return datetime.datetime.now(datetime.UTC) >= self.expires_on

    def __str__(self) -> str:
        return f"AccessToken(expires_on={self.expires_on.isoformat()}, expired={self.is_expired})"


class TokenAcquirer:
    """Exchanges an ``Identity`` for an Entra ID access token."""

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        identity: Identity,
        scopes: Sequence[str],
        authority: str = AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
    ) -> None:
        if not scopes:
            raise AuthError("At least one scope is required")
        self._client_id = client_id
        self._tenant_id = tenant_id
        self._identity = identity
        self._scopes = tuple(scopes)
        self._authority = authority

    @property
    def scopes(self) -> tuple[str, ...]:
        return self._scopes

    async def acquire(self) -> AccessToken:
        """Perform one client-credentials exchange and return the token.

        Raises ``AuthError`` on rejection (unregistered certificate, missing
        consent, unknown tenant) or network failure.
        """
        try:
            credential = CertificateCredential(
                tenant_id=self._tenant_id,
                client_id=self._client_id,
                certificate_data=self._identity.to_pem(),
                authority=self._authority,
            )
            async with credential:
                result = await credential.get_token(*self._scopes)
        except ValueError as exc:
            raise AuthError(f"Entra ID credential rejected the identity: {exc}") from exc
        except ClientAuthenticationError as exc:
            raise AuthError(f"Entra ID rejected client {self._client_id}: {exc.message}") from exc
        except AzureError as exc:
            raise AuthError(f"Token request to Entra ID failed: {exc}") from exc

        token = AccessToken(
            token=result.token,
            expires_on=datetime.datetime.fromtimestamp(result.expires_on, datetime.UTC),
        )
        logger.info(
            "Acquired token for client=%s tenant=%s scopes=%s expires=%s",
            self._client_id,
            self._tenant_id,
            list(self._scopes),
            token.expires_on.isoformat(),
        )
        return token
