from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import threading
from typing import Any
from urllib.parse import urlencode

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .config import ConsoleConfig

logger = logging.getLogger(__name__)

SCOPES = "openid email profile groups"


class OIDCError(RuntimeError):
    pass


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def decode_claims(token: str) -> dict[str, Any]:
    try:
        return jwt.get_unverified_claims(token)
    except JOSEError:
        return {}


class OIDCProvider:
    """Issuer metadata plus client credentials, built once per process.

    Discovery happens on first use and is cached only once it succeeds, so an
    unreachable issuer at startup is retried on the next login.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        redirect_base: str,
        *,
        audience: str = "",
        timeout_s: float = 10.0,
    ) -> None:
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = f"{redirect_base.rstrip('/')}/auth/callback"
        self.audience = audience
        self.timeout_s = timeout_s
        self._metadata: dict[str, Any] | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ConsoleConfig) -> OIDCProvider:
        return cls(
            config.oidc_issuer,
            config.oidc_client_id,
            config.oidc_client_secret,
            config.oidc_redirect_base,
            audience=config.oidc_audience,
            timeout_s=config.http_timeout_s,
        )

    def metadata(self) -> dict[str, Any]:
        if self._metadata is not None:
            return self._metadata
        with self._lock:
            if self._metadata is not None:
                return self._metadata
            url = f"{self.issuer}/.well-known/openid-configuration"
            try:
                response = requests.get(url, timeout=self.timeout_s)
                response.raise_for_status()
                metadata = response.json()
            except (requests.RequestException, ValueError) as exc:
                raise OIDCError(f"oidc discovery failed for {self.issuer}: {exc}") from exc
            for key in ("authorization_endpoint", "token_endpoint"):
                if key not in metadata:
                    raise OIDCError(f"oidc discovery document missing {key}")
            self._metadata = metadata
            logger.info("discovered oidc issuer %s", self.issuer)
            return metadata

    def authorization_url(self, *, code_verifier: str, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": SCOPES,
            "state": state,
            "code_challenge": code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }
        if self.audience:
            params["audience"] = self.audience
        return f"{self.metadata()['authorization_endpoint']}?{urlencode(params)}"

    def exchange_code(self, *, code: str, code_verifier: str) -> dict[str, Any]:
        response = requests.post(
            self.metadata()["token_endpoint"],
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code_verifier": code_verifier,
            },
            headers={"Accept": "application/json"},
            timeout=self.timeout_s,
        )
        if response.status_code >= 400:
            raise OIDCError(f"token exchange failed with HTTP {response.status_code}: {response.text[:200]}")
        return response.json()

