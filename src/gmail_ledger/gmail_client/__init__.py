"""
Gmail API client module.

Provides a typed, read-only client for the Gmail REST API, the Google
OAuth client and the at-rest token cipher.
"""

from .client import (
    GmailAPIError,
    GmailAuthError,
    GmailClient,
    GmailConnectionError,
    GmailError,
    build_query,
    extract_body,
)
from .oauth import GoogleOAuthClient, OAuthTokens, generate_pkce_pair, generate_state
from .tokens import TokenCipher, TokenDecryptionError

__all__ = [
    "GmailClient",
    "GmailError",
    "GmailAPIError",
    "GmailAuthError",
    "GmailConnectionError",
    "build_query",
    "extract_body",
    "GoogleOAuthClient",
    "OAuthTokens",
    "generate_pkce_pair",
    "generate_state",
    "TokenCipher",
    "TokenDecryptionError",
]
