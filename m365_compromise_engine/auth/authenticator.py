"""
Authentication module — Certificate-based app-only and device-code delegated auth.
Tokens are acquired through MSAL against the Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import binascii
import getpass
import logging
import os
from pathlib import Path
from typing import Optional

import msal
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, pkcs12

from ..config import AuthConfig, CertificateAuth, REQUIRED_PERMISSIONS

logger = logging.getLogger("m365_compromise_engine.auth")

APP_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY = "https://login.microsoftonline.com/{tenant_id}"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def _read_pfx(path: Path) -> bytes:
    """Accept either a binary PFX or a base64 text export of one."""
    raw = path.read_bytes()
    try:
        return base64.b64decode(raw.strip(), validate=True)
    except (binascii.Error, ValueError):
        return raw


def load_certificate_credential(cert: CertificateAuth) -> dict:
    """Load the PFX referenced by the config into an MSAL client_credential dict."""
    password = cert.certificate_password or os.environ.get("M365_CERT_PASSWORD", "")
    if not password:
        password = getpass.getpass("Enter the certificate password: ")

    path = Path(cert.certificate_path)
    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            _read_pfx(path), password.encode("utf-8") if password else None
        )
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {path}")
    except ValueError as e:
        raise AuthenticationError(f"Failed to load certificate {path}: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError(f"Certificate {path} has no private key or certificate")

    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    return {
        "thumbprint": thumbprint,
        "private_key": private_key.private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
        ).decode("utf-8"),
    }


class Authenticator:
    """Acquires a Graph access token for the configured auth mode."""

    def __init__(self, config: AuthConfig):
        self.config = config
        self._access_token: Optional[str] = None

    async def acquire_token(self) -> str:
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        if self.config.mode == "delegated":
            return self._acquire_delegated_token()
        raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        cert = self.config.certificate
        if not cert:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")
        app = msal.ConfidentialClientApplication(
            client_id=cert.client_id,
            authority=AUTHORITY.format(tenant_id=cert.tenant_id),
            client_credential=load_certificate_credential(cert),
        )
        return self._token_from(app.acquire_token_for_client(scopes=APP_SCOPES), "Certificate")

    def _acquire_delegated_token(self) -> str:
        deleg = self.config.delegated
        if not deleg:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")
        app = msal.PublicClientApplication(
            client_id=deleg.client_id,
            authority=AUTHORITY.format(tenant_id=deleg.tenant_id),
        )
        flow = app.initiate_device_flow(scopes=list(deleg.scopes))
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        return self._token_from(app.acquire_token_by_device_flow(flow), "Delegated")

    def _token_from(self, result: dict, mode: str) -> str:
        if "access_token" not in result:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"{mode} auth failed: {error}")
        self._access_token = result["access_token"]
        logger.info(f"{mode} authentication successful.")
        return self._access_token

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        return REQUIRED_PERMISSIONS
