"""
Google OAuth 2.0 client (authorization code flow with PKCE).

Only the gmail.readonly scope is ever requested.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import requests

from ..config import GMAIL_READONLY_SCOPE
from .client import GmailAPIError, GmailAuthError, GmailConnectionError, GmailError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


@dataclass
class OAuthTokens:
    """Token set returned by the token endpoint."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: str = GMAIL_READONLY_SCOPE

    def is_expired(self, skew_seconds: int = 60) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at - timedelta(seconds=skew_seconds)


def generate_state() -> str:
    """Random state parameter for CSRF protection."""
    return secrets.token_urlsafe(32)


def generate_pkce_pair() -> tuple[str, str]:
    """(code_verifier, code_challenge) for PKCE S256."""
    code_verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")
    code_challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
        .decode("utf-8")
        .rstrip("=")
    )
    return code_verifier, code_challenge


class GoogleOAuthClient:
    """Authorization URL, code exchange, refresh and revoke."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: int = 10,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.session = requests.Session()

    def authorization_url(self, state: str, code_challenge: str) -> str:
        """Consent URL for the read-only scope with offline access."""
        if not self.client_id:
            raise GmailError("Google client_id is not configured")

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": GMAIL_READONLY_SCOPE,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _token_request(self, data: dict) -> dict:
        try:
            response = self.session.post(
                GOOGLE_TOKEN_URL,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GmailConnectionError(f"Token endpoint unreachable: {e}")

        if response.status_code in (400, 401):
            # invalid_grant: code reused/expired or refresh token revoked
            raise GmailAuthError(
                status_code=response.status_code,
                message=self._error_code(response),
                response_body=response.text,
            )
        if not response.ok:
            raise GmailAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise GmailAPIError(
                status_code=response.status_code,
                message="token response is not JSON",
                response_body=response.text,
            ) from e

    @staticmethod
    def _error_code(response: requests.Response) -> str:
        try:
            return response.json().get("error", "invalid_request")
        except ValueError:
            return "invalid_request"

    @staticmethod
    def _tokens(token_data: dict, fallback_refresh: Optional[str] = None) -> OAuthTokens:
        expires_in = int(token_data.get("expires_in", 3600))
        return OAuthTokens(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token", fallback_refresh),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            scope=token_data.get("scope", GMAIL_READONLY_SCOPE),
        )

    def exchange_code(self, code: str, code_verifier: str) -> OAuthTokens:
        """Exchange an authorization code for tokens."""
        token_data = self._token_request(
            {
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
                "code_verifier": code_verifier,
            }
        )
        logger.info(
            f"Token exchange successful (refresh token: {'yes' if token_data.get('refresh_token') else 'no'})"
        )
        return self._tokens(token_data)

    def refresh(self, refresh_token: str) -> OAuthTokens:
        """Refresh an expired access token. Keeps the old refresh token unless rotated."""
        token_data = self._token_request(
            {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            }
        )
        return self._tokens(token_data, fallback_refresh=refresh_token)

    def revoke(self, token: str) -> None:
        """
        Revoke a token with Google.

        Raises:
            GmailConnectionError / GmailAPIError on failure. An already
            invalid token (400) counts as revoked.
        """
        try:
            response = self.session.post(
                GOOGLE_REVOKE_URL,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GmailConnectionError(f"Revoke endpoint unreachable: {e}")

        if response.status_code == 400:
            logger.info("Token already invalid at provider")
            return
        if not response.ok:
            raise GmailAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )
