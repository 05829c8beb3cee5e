"""Tests for Entra ID token acquisition."""

from __future__ import annotations

import asyncio
import datetime
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.credentials import AccessToken as AzureAccessToken
from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError
from azure.identity import AzureAuthorityHosts

from adb_entra_auth.auth.credentials import load_identity
from adb_entra_auth.auth.entra import AccessToken, AuthError, TokenAcquirer


@pytest.fixture
def identity(certificate_pem: str, key_pem: bytes):
    return load_identity(certificate_pem, key_pem)


def _credential(result=None, error: Exception | None = None) -> MagicMock:
    credential = MagicMock()
    credential.get_token = AsyncMock(return_value=result, side_effect=error)
    return credential


class TestAccessToken:
    def test_expiry(self) -> None:
        past = datetime.datetime.now(datetime.UTC) - datetime.timedelta(seconds=1)
        future = datetime.datetime.now(datetime.UTC) + datetime.timedelta(hours=1)
        assert AccessToken(token="t", expires_on=past).is_expired
        assert not AccessToken(token="t", expires_on=future).is_expired

    def test_token_never_printed(self) -> None:
        token = AccessToken(
            token="eyJ.secret.jwt",
            expires_on=datetime.datetime.now(datetime.UTC),
        )
        assert "eyJ" not in repr(token)
        assert "eyJ" not in str(token)


class TestTokenAcquirer:
    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_acquire_returns_token(self, mock_cred_cls: MagicMock, identity) -> None:
        expires = int(time.time()) + 3600
        mock_cred_cls.return_value = _credential(AzureAccessToken("eyJ.token", expires))

        acquirer = TokenAcquirer("client", "tenant", identity, ["api://client/.default"])
        token = asyncio.run(acquirer.acquire())

        assert token.token == "eyJ.token"
        assert token.expires_on == datetime.datetime.fromtimestamp(expires, datetime.UTC)
        mock_cred_cls.return_value.get_token.assert_awaited_once_with("api://client/.default")

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_credential_built_from_identity(self, mock_cred_cls: MagicMock, identity) -> None:
        mock_cred_cls.return_value = _credential(AzureAccessToken("t", int(time.time()) + 60))

        asyncio.run(TokenAcquirer("client", "tenant", identity, ["s"]).acquire())

        kwargs = mock_cred_cls.call_args.kwargs
        assert kwargs["tenant_id"] == "tenant"
        assert kwargs["client_id"] == "client"
        assert kwargs["certificate_data"] == identity.to_pem()
        assert kwargs["authority"] == AzureAuthorityHosts.AZURE_PUBLIC_CLOUD

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_every_call_goes_to_entra(self, mock_cred_cls: MagicMock, identity) -> None:
        mock_cred_cls.side_effect = lambda **_: _credential(
            AzureAccessToken("t", int(time.time()) + 60)
        )
        acquirer = TokenAcquirer("client", "tenant", identity, ["s"])

        asyncio.run(acquirer.acquire())
        asyncio.run(acquirer.acquire())

        assert mock_cred_cls.call_count == 2

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_credential_closed(self, mock_cred_cls: MagicMock, identity) -> None:
        credential = _credential(AzureAccessToken("t", int(time.time()) + 60))
        mock_cred_cls.return_value = credential

        asyncio.run(TokenAcquirer("client", "tenant", identity, ["s"]).acquire())

        credential.__aexit__.assert_awaited_once()

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_rejection_raises_auth_error(self, mock_cred_cls: MagicMock, identity) -> None:
        mock_cred_cls.return_value = _credential(
            error=ClientAuthenticationError("AADSTS700027: certificate not registered")
        )
        with pytest.raises(AuthError, match="AADSTS700027") as excinfo:
            asyncio.run(TokenAcquirer("client", "tenant", identity, ["s"]).acquire())
        assert isinstance(excinfo.value.__cause__, ClientAuthenticationError)

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_network_failure_raises_auth_error(self, mock_cred_cls: MagicMock, identity) -> None:
        mock_cred_cls.return_value = _credential(error=ServiceRequestError("connection reset"))
        with pytest.raises(AuthError, match="connection reset"):
            asyncio.run(TokenAcquirer("client", "tenant", identity, ["s"]).acquire())

    @patch("adb_entra_auth.auth.entra.CertificateCredential")
    def test_unusable_certificate_raises_auth_error(self, mock_cred_cls: MagicMock, identity) -> None:
        mock_cred_cls.side_effect = ValueError("Unsupported private key type")
        with pytest.raises(AuthError, match="Unsupported private key type") as excinfo:
            asyncio.run(TokenAcquirer("client", "tenant", identity, ["s"]).acquire())
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_scopes_required(self, identity) -> None:
        with pytest.raises(AuthError, match="scope"):
            TokenAcquirer("client", "tenant", identity, [])
