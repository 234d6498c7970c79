"""
Pipeline error taxonomy.

Extraction uncertainty is never an error (it is expressed as low confidence).
Only boundary failures are raised: provider/network, authorization,
ownership and invalid state transitions.
"""


class GmailLedgerError(Exception):
    """Base exception for pipeline errors."""

    pass


class NotConnectedError(GmailLedgerError):
    """User has no active mailbox connection."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Mailbox not connected for user {user_id}")


class ConsentStateError(GmailLedgerError):
    """OAuth callback state does not match the consent that was started."""

    pass


class FetchInProgressError(GmailLedgerError):
    """Another fetch for the same user is already running."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"A fetch is already in progress for user {user_id}")


class FetchFailedError(GmailLedgerError):
    """Fetch attempt failed as a whole; nothing was staged."""

    kind = "network"


class MailboxUnavailableError(FetchFailedError):
    """Mailbox provider or network failure (retryable)."""

    kind = "network"


class AuthorizationExpiredError(FetchFailedError):
    """Delegated grant expired or was revoked externally (re-consent required)."""

    kind = "authorization"


class FetchTimeoutError(FetchFailedError):
    """Fetch exceeded the caller-imposed time box."""

    kind = "timeout"


class PendingNotFoundError(GmailLedgerError):
    """No staged record with this id."""

    def __init__(self, pending_id: int):
        self.pending_id = pending_id
        super().__init__(f"Pending transaction {pending_id} not found")


class OwnershipError(GmailLedgerError):
    """Record belongs to another user."""

    def __init__(self, pending_id: int, user_id: str):
        self.pending_id = pending_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not allowed to modify pending transaction {pending_id}")


class InvalidTransitionError(GmailLedgerError):
    """Record is not in the `pending` state."""

    def __init__(self, pending_id: int, state: str):
        self.pending_id = pending_id
        self.state = state
        super().__init__(f"Pending transaction {pending_id} is not in pending state (state={state})")


class RevocationError(GmailLedgerError):
    """Provider-side revoke failed; local data was purged regardless."""

    pass


class ConnectionChangedError(GmailLedgerError):
    """Connection was revoked or replaced while a fetch was running; its batch is discarded."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Connection for user {user_id} changed during fetch, batch discarded")


class SchemaTooNewError(GmailLedgerError):
    """State database carries migrations this build does not know."""

    def __init__(self, unknown_versions: list[int]):
        self.unknown_versions = unknown_versions
        super().__init__(
            f"State database has migrations {unknown_versions} from a newer release; upgrade gmail-ledger"
        )
