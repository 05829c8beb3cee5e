"""The credential pipeline: Vault -> Identity -> Entra token -> Oracle session.

Pattern: Linear Credential Hand-off
------------------------------------
Each stage consumes the previous stage's output and nothing flows backwards:

  1. Fetch the certificate, private key and key password concurrently.  Any
     failure aborts the run before Entra or the database are contacted.
  2. Assemble and verify the ``Identity``.
  3. Exchange it for an Entra ID access token.
  4. Open a ``DatabaseSession`` with the token and run the demo queries.

The console only reports progress; it never sees secret material.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from rich.console import Console

from adb_entra_auth.auth.credentials import (
    Identity,
    load_identity,
    load_pkcs12_identity,
    read_certificate_file,
)
from adb_entra_auth.auth.entra import AccessToken, TokenAcquirer
from adb_entra_auth.config import Settings
from adb_entra_auth.db.session import DatabaseSession
from adb_entra_auth.vault.secrets import SecretRetriever
from adb_entra_auth.vault.signers import build_signer_provider

logger = logging.getLogger(__name__)


async def _none() -> None:
    return None


async def load_identity_from_sources(settings: Settings, retriever: SecretRetriever) -> Identity:
    """Fetch the credential material in parallel and build the ``Identity``."""
    password_id = settings.private_key_password_secret_id
    password_fetch = retriever.fetch_secret(password_id) if password_id else _none()

    if settings.uses_pfx:
        pfx, password = await asyncio.gather(
            retriever.fetch_secret_bytes(settings.pfx_secret_id),
            password_fetch,
        )
        return load_pkcs12_identity(pfx, password)

    if settings.certificate_secret_id:
        cert_fetch = retriever.fetch_secret_bytes(settings.certificate_secret_id)
    else:
        cert_fetch = asyncio.to_thread(read_certificate_file, settings.certificate_file)

    # Certificate and key are fetched as bytes so DER material survives intact.
    certificate, private_key, password = await asyncio.gather(
        cert_fetch,
        retriever.fetch_secret_bytes(settings.private_key_secret_id),
        password_fetch,
    )
    return load_identity(certificate, private_key, password)


async def run_demo_queries(session: DatabaseSession, console: Console) -> None:
    console.print("\n[bold]--- Running Test Queries ---[/bold]\n")

    console.print(f"Current database user: {await session.current_user()}")
    console.print(f"Database version: {await session.database_version()}")

    console.print("\nExecuting sample query: SELECT * FROM DUAL")
    result = await session.execute_query("SELECT 'Hello from Oracle ADB!' AS MESSAGE FROM DUAL")
    for row in result.as_dicts():
        console.print(f"Result: {row['MESSAGE']}")

    console.print("\nExecuting timestamp query...")
    timestamp = await session.execute_scalar("SELECT SYSTIMESTAMP FROM DUAL")
    console.print(f"Database timestamp: {timestamp}")

    console.print("\n[green]--- All queries completed successfully ---[/green]")


async def run_pipeline(
    settings: Settings,
    console: Console,
    retriever: SecretRetriever | None = None,
    session_factory: Any = DatabaseSession,
) -> None:
    """Run every stage in order; errors propagate unrecovered."""
    if retriever is None:
        console.print("Initializing OCI Vault service...")
        retriever = SecretRetriever.from_provider(build_signer_provider(settings.oci))

    console.print("Retrieving secrets from OCI Vault...")
    identity = await load_identity_from_sources(settings, retriever)
    console.print(f"Certificate loaded. Subject: {identity.subject}")

    console.print("Acquiring access token from Entra ID...")
    acquirer = TokenAcquirer(
        client_id=settings.entra_client_id,
        tenant_id=settings.entra_tenant_id,
        identity=identity,
        scopes=[settings.entra_scope],
    )
    token: AccessToken = await acquirer.acquire()
    console.print(f"Access token acquired. Expires at: {token.expires_on.isoformat()}")

    console.print("\nConnecting to Oracle Autonomous Database...")
    console.print(f"TNS Name: {settings.oracle_tns_name}")
    console.print(f"TNS Admin: {settings.tns_admin}")

    if token.is_expired:
        logger.warning("Access token expired before the database connection was opened")

    async with session_factory(
        alias=settings.oracle_tns_name,
        access_token=token.token,
        config_dir=settings.tns_admin,
        user=settings.oracle_user_id,
        wallet_location=settings.effective_wallet_location,
        wallet_password=settings.wallet_password,
    ) as session:
        console.print("[green]Connected to Oracle ADB successfully.[/green]")
        await run_demo_queries(session, console)
