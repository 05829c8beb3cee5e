"""Certificate and private key loading.

Pattern: Identity Assembly
---------------------------
Entra ID authenticates the application with a client assertion signed by a
private key whose certificate is registered on the app.  The certificate and
key arrive separately (from Vault or a local file) and in several encodings,
so this module normalises them into one ``Identity`` and refuses to produce
one unless the key really belongs to the certificate.

Key decision policy, applied in order:

  1. Material starting with a PEM marker is PEM.  An ``ENCRYPTED`` header
     means the password is applied; otherwise the key loads unencrypted.
  2. Anything else is binary PKCS8/DER.  The password is tried first; if that
     fails the key is loaded unencrypted, which covers binary keys that were
     never password protected.
"""

from __future__ import annotations

import dataclasses
import datetime
import logging
import pathlib
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

CERT_BEGIN = "-----BEGIN CERTIFICATE-----"
CERT_END = "-----END CERTIFICATE-----"
_PEM_PREFIX = b"-----BEGIN"


class CredentialError(Exception):
    """Raised when no valid certificate + private key pairing can be built."""


@dataclasses.dataclass(frozen=True)
class Identity:
    """A certificate paired with its private key.

    Held only for the duration of a token acquisition and never written to
    disk.
    """

    certificate: x509.Certificate
    private_key: Any

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def thumbprint(self) -> str:
        """SHA-1 fingerprint in upper-case hex, as shown in the Entra portal."""
        return self.certificate.fingerprint(hashes.SHA1()).hex().upper()

    @property
    def not_valid_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    def to_pem(self) -> bytes:
        """Render the unencrypted PKCS8 key followed by the certificate."""
        key_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return key_pem + self.certificate.public_bytes(serialization.Encoding.PEM)

    def __repr__(self) -> str:
        return f"Identity(subject={self.subject}, thumbprint={self.thumbprint})"


def _as_bytes(data: str | bytes) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def _as_password(password: str | bytes | None) -> bytes | None:
    if password is None:
        return None
    raw = _as_bytes(password)
    # Secrets stored through a console often pick up a trailing newline.
    raw = raw.rstrip(b"\r\n")
    return raw or None


def extract_certificate_pem(text: str | bytes) -> str:
    """Return exactly the span from the BEGIN to the END certificate marker.

    Surrounding text such as ``subject=`` / ``issuer=`` banner lines written
    by ``openssl x509`` is discarded.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CredentialError("Certificate is not PEM text") from exc

    start = text.find(CERT_BEGIN)
    if start < 0:
        raise CredentialError("Certificate does not contain a BEGIN CERTIFICATE marker")
    end = text.find(CERT_END, start)
    if end < 0:
        raise CredentialError("Certificate does not contain an END CERTIFICATE marker")
    return text[start:end + len(CERT_END)]


def load_certificate(data: str | bytes) -> x509.Certificate:
    """Parse a PEM (possibly with banner text) or DER certificate."""
    raw = _as_bytes(data)
    try:
        if CERT_BEGIN.encode() in raw:
            pem = extract_certificate_pem(raw)
            return x509.load_pem_x509_certificate(pem.encode("ascii"))
        return x509.load_der_x509_certificate(raw)
    except ValueError as exc:
        raise CredentialError(f"Malformed certificate: {exc}") from exc


def read_certificate_file(path: str | pathlib.Path) -> str:
    """Read a local certificate file and return only its PEM block."""
    cert_path = pathlib.Path(path).expanduser()
    try:
        text = cert_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CredentialError(f"Cannot read certificate file {cert_path}: {exc}") from exc
    return extract_certificate_pem(text)


def load_private_key(data: str | bytes, password: str | bytes | None = None) -> Any:
    """Load a PEM or PKCS8/DER private key, encrypted or not."""
    raw = _as_bytes(data)
    secret = _as_password(password)

    if raw.lstrip().startswith(_PEM_PREFIX):
        header = raw.lstrip().split(b"\n", 2)
        encrypted = b"ENCRYPTED" in b"\n".join(header[:2])
        if encrypted and secret is None:
            raise CredentialError("Private key is encrypted but no password was supplied")
        try:
            return serialization.load_pem_private_key(raw, password=secret if encrypted else None)
        except (ValueError, TypeError) as exc:
            raise CredentialError(f"Cannot load PEM private key: {exc}") from exc

    if secret is not None:
        try:
            return serialization.load_der_private_key(raw, password=secret)
        except (ValueError, TypeError):
            logger.debug("Encrypted DER load failed, retrying as unencrypted PKCS8")
    try:
        return serialization.load_der_private_key(raw, password=None)
    except (ValueError, TypeError) as exc:
        raise CredentialError(f"Cannot load DER private key: {exc}") from exc


def _public_key_der(key: Any) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_identity(
    certificate: str | bytes,
    private_key: str | bytes,
    password: str | bytes | None = None,
) -> Identity:
    """Combine a certificate and its private key into an ``Identity``.

    Raises ``CredentialError`` if either part is malformed, the password is
    wrong, or the key does not belong to the certificate.
    """
    cert = load_certificate(certificate)
    key = load_private_key(private_key, password)
    return _paired(cert, key)


def load_pkcs12_identity(pfx: bytes, password: str | bytes | None = None) -> Identity:
    """Build an ``Identity`` from a PKCS12 (PFX) bundle."""
    try:
        key, cert, _extra = pkcs12.load_key_and_certificates(pfx, _as_password(password))
    except (ValueError, TypeError) as exc:
        raise CredentialError(f"Cannot load PKCS12 bundle: {exc}") from exc
    if key is None or cert is None:
        raise CredentialError("PKCS12 bundle must contain both a certificate and a private key")
    return _paired(cert, key)


def _paired(cert: x509.Certificate, key: Any) -> Identity:
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CredentialError(
            f"Private key must be RSA for RS256 client assertions, got {type(key).__name__}"
        )
    if _public_key_der(cert.public_key()) != _public_key_der(key.public_key()):
        raise CredentialError("Private key does not match the certificate's public key")
    identity = Identity(certificate=cert, private_key=key)
    logger.info(
        "Loaded identity subject=%s thumbprint=%s expires=%s",
        identity.subject,
        identity.thumbprint,
        identity.not_valid_after.isoformat(),
    )
    return identity
