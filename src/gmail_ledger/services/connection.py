"""
Connection Lifecycle Manager.

Owns the delegated mailbox grant of each user: consent, token refresh and
revocation. Tokens and the PKCE verifier are encrypted before they reach
the state store.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..errors import (
    AuthorizationExpiredError,
    ConsentStateError,
    MailboxUnavailableError,
    NotConnectedError,
    RevocationError,
)
from ..gmail_client import (
    GmailAuthError,
    GmailError,
    GoogleOAuthClient,
    TokenCipher,
    TokenDecryptionError,
    generate_pkce_pair,
    generate_state,
)
from ..state_store import ConnectionRecord, StateStore

logger = logging.getLogger(__name__)

# Refresh a little before the provider expiry
EXPIRY_SKEW_SECONDS = 60


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _format_expiry(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ConnectionStatus:
    """What a caller may know about a user's connection (no secrets)."""

    user_id: str
    connected: bool
    connected_at: Optional[str] = None
    last_fetch_at: Optional[str] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    needs_reauth: bool = False

    @classmethod
    def from_record(cls, user_id: str, record: Optional[ConnectionRecord]) -> "ConnectionStatus":
        if record is None:
            return cls(user_id=user_id, connected=False)
        return cls(
            user_id=user_id,
            connected=record.connected,
            connected_at=record.connected_at,
            last_fetch_at=record.last_fetch_at,
            last_error=record.last_error,
            last_error_kind=record.last_error_kind,
            needs_reauth=record.needs_reauth,
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "connected": self.connected,
            "connected_at": self.connected_at,
            "last_fetch_at": self.last_fetch_at,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind,
            "needs_reauth": self.needs_reauth,
        }


@dataclass
class AccessGrant:
    """Usable access token plus the connection generation it belongs to."""

    access_token: str
    generation: int


class ConnectionManager:
    """
    Connect, refresh and revoke mailbox access per user.

    Only the read-only mailbox scope is ever requested.
    """

    def __init__(self, store: StateStore, oauth: GoogleOAuthClient, cipher: TokenCipher):
        self.store = store
        self.oauth = oauth
        self.cipher = cipher

    def get_status(self, user_id: str) -> ConnectionStatus:
        return ConnectionStatus.from_record(user_id, self.store.get_connection(user_id))

    def begin_consent(self, user_id: str) -> str:
        """
        Start a consent flow and return the provider authorization URL.

        A new call replaces any consent that was started but not completed.
        """
        state = generate_state()
        code_verifier, code_challenge = generate_pkce_pair()
        self.store.save_consent_request(user_id, state, self.cipher.encrypt(code_verifier))
        logger.info(f"Consent started for user {user_id}")
        return self.oauth.authorization_url(state, code_challenge)

    def complete_consent(self, user_id: str, code: str, state: str) -> ConnectionStatus:
        """
        Finish the consent flow with the provider callback parameters.

        Raises:
            ConsentStateError: No consent pending or state mismatch (CSRF)
            AuthorizationExpiredError: Provider rejected the code
            MailboxUnavailableError: Provider unreachable
        """
        record = self.store.get_connection(user_id)
        if record is None or not record.oauth_state or not record.code_verifier_enc:
            raise ConsentStateError(f"No consent in progress for user {user_id}")
        if not secrets.compare_digest(record.oauth_state, state or ""):
            raise ConsentStateError("OAuth state mismatch")

        try:
            code_verifier = self.cipher.decrypt(record.code_verifier_enc)
        except TokenDecryptionError as e:
            self.store.clear_consent_request(user_id)
            raise ConsentStateError("Consent request unreadable, start consent again") from e
        try:
            tokens = self.oauth.exchange_code(code, code_verifier)
        except GmailAuthError as e:
            self.store.clear_consent_request(user_id)
            raise AuthorizationExpiredError(f"Authorization code rejected: {e.message}") from e
        except GmailError as e:
            raise MailboxUnavailableError(f"Token exchange failed: {e}") from e

        generation = self.store.mark_connected(
            user_id,
            self.cipher.encrypt(tokens.access_token),
            self.cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
            _format_expiry(tokens.expires_at),
        )
        logger.info(f"Mailbox connected for user {user_id} (generation {generation})")
        return self.get_status(user_id)

    def get_access_token(self, user_id: str) -> AccessGrant:
        """
        Valid access token for a connected user, refreshed if expired.

        Raises:
            NotConnectedError: User has no connection
            AuthorizationExpiredError: Grant unusable; re-consent required
            MailboxUnavailableError: Token endpoint unreachable
        """
        record = self.store.get_connection(user_id)
        if record is None or not record.connected or not record.access_token_enc:
            raise NotConnectedError(user_id)
        if record.needs_reauth:
            raise AuthorizationExpiredError(f"Re-consent required for user {user_id}")

        expiry = _parse_expiry(record.token_expiry)
        now = datetime.now(timezone.utc)
        if expiry is None or (expiry - now).total_seconds() > EXPIRY_SKEW_SECONDS:
            return AccessGrant(self._decrypt(user_id, record.access_token_enc), record.generation)

        if not record.refresh_token_enc:
            self._mark_reauth(user_id, "access token expired and no refresh token stored")
            raise AuthorizationExpiredError(f"Re-consent required for user {user_id}")

        refresh_token = self._decrypt(user_id, record.refresh_token_enc)
        try:
            tokens = self.oauth.refresh(refresh_token)
        except GmailAuthError as e:
            self._mark_reauth(user_id, f"refresh rejected: {e.message}")
            raise AuthorizationExpiredError(f"Re-consent required for user {user_id}") from e
        except GmailError as e:
            raise MailboxUnavailableError(f"Token refresh failed: {e}") from e

        rotated = tokens.refresh_token if tokens.refresh_token != refresh_token else None
        self.store.update_tokens(
            user_id,
            self.cipher.encrypt(tokens.access_token),
            _format_expiry(tokens.expires_at),
            self.cipher.encrypt(rotated) if rotated else None,
        )
        logger.debug(f"Access token refreshed for user {user_id}")
        return AccessGrant(tokens.access_token, record.generation)

    def _decrypt(self, user_id: str, token_enc: str) -> str:
        """Stored token in clear. An unreadable one needs a fresh consent."""
        try:
            return self.cipher.decrypt(token_enc)
        except TokenDecryptionError as e:
            self._mark_reauth(user_id, "stored token unreadable with the configured key")
            raise AuthorizationExpiredError(f"Re-consent required for user {user_id}") from e

    def _mark_reauth(self, user_id: str, message: str) -> None:
        self.store.record_fetch_error(
            user_id, AuthorizationExpiredError.kind, message, needs_reauth=True
        )
        logger.warning(f"User {user_id} needs to re-consent: {message}")

    def revoke(self, user_id: str) -> int:
        """
        Revoke access and purge every staged (non-confirmed) record.

        The purge always happens, even if the provider call fails; the
        failure is raised afterwards as RevocationError. Revoking a user
        who is not connected is a no-op.

        Returns:
            Number of purged records
        """
        record = self.store.get_connection(user_id)
        if record is None or not record.connected:
            logger.info(f"Revoke for user {user_id}: not connected, nothing to do")
            return 0

        provider_error: Optional[Exception] = None
        token_enc = record.refresh_token_enc or record.access_token_enc
        if token_enc:
            try:
                self.oauth.revoke(self.cipher.decrypt(token_enc))
            except GmailError as e:
                provider_error = e
                logger.warning(f"Provider revoke failed for user {user_id}: {e}")

        purged = self.store.purge_and_disconnect(user_id)
        logger.info(f"Disconnected user {user_id}, purged {purged} staged records")

        if provider_error is not None:
            raise RevocationError(
                f"Local data purged but provider revoke failed: {provider_error}"
            ) from provider_error
        return purged
