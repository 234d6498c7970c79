"""
Gmail REST API client implementation.
"""

import base64
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.transaction import RawMessage

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"


class GmailError(Exception):
    """Base exception for Gmail client errors."""

    pass


class GmailAPIError(GmailError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Gmail API error {status_code}: {message}")


class GmailAuthError(GmailAPIError):
    """Access token rejected or grant revoked (re-consent required)."""

    pass


class GmailConnectionError(GmailError):
    """Failed to reach the Gmail API."""

    pass


def build_query(
    after: date | datetime,
    sender_patterns: list[str],
    subject_keywords: list[str],
) -> str:
    """
    Build the mailbox search for transaction notifications.

    Example:
        after:1701734400 (from:alerts OR from:upi OR subject:(payment OR debited))
    """
    if isinstance(after, datetime):
        moment = after if after.tzinfo else after.replace(tzinfo=timezone.utc)
    else:
        moment = datetime(after.year, after.month, after.day, tzinfo=timezone.utc)
    terms = [f"from:{pattern}" for pattern in sender_patterns if pattern]
    if subject_keywords:
        terms.append(f"subject:({' OR '.join(subject_keywords)})")

    query = f"after:{int(moment.timestamp())}"
    if terms:
        query += f" ({' OR '.join(terms)})"
    return query


def parse_sender(from_header: str) -> str:
    """Email address from a From header ('"Bank" <alerts@bank.com>' -> 'alerts@bank.com')."""
    match = re.search(r"<([^>]+)>", from_header or "")
    if match:
        return match.group(1).strip()
    return (from_header or "").strip().strip('"')


def html_to_text(html: str) -> str:
    """Visible text of an HTML body."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="ignore")


def extract_body(payload: dict[str, Any]) -> str:
    """
    Plain-text body of a `format=full` payload.

    Walks nested multipart trees. text/plain wins over text/html; HTML is
    converted to text.
    """
    plain: list[str] = []
    html: list[str] = []

    def walk(part: dict[str, Any]) -> None:
        mime_type = part.get("mimeType", "")
        data = part.get("body", {}).get("data")
        if data:
            if mime_type == "text/html":
                html.append(_decode(data))
            elif mime_type.startswith("text/") or not mime_type:
                plain.append(_decode(data))
        for child in part.get("parts", []) or []:
            walk(child)

    walk(payload)

    if plain:
        return "\n".join(plain)
    if html:
        return "\n".join(html_to_text(h) for h in html)
    return ""


class GmailClient:
    """
    Read-only client for one user's mailbox.

    Features:
    - Search message ids with paging
    - Fetch and decode a single message
    - Automatic retry with backoff on 429/5xx
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 500

    def __init__(
        self,
        access_token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        page_size: int = DEFAULT_PAGE_SIZE,
        base_url: str = GMAIL_API_BASE,
    ):
        """
        Initialize Gmail client.

        Args:
            access_token: OAuth access token with gmail.readonly scope
            timeout: Per-request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
            page_size: Message ids requested per list page
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = min(page_size, self.MAX_PAGE_SIZE)

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(self, method: str, endpoint: str, params: Optional[dict] = None) -> dict:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise GmailConnectionError(f"Failed to connect to Gmail API: {e}")
        except requests.exceptions.Timeout as e:
            raise GmailConnectionError(f"Request to Gmail API timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise GmailError(f"Request failed: {e}")

        if response.status_code == 401:
            raise GmailAuthError(
                status_code=response.status_code,
                message="access token rejected",
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
                message="response is not JSON",
                response_body=response.text,
            ) from e

    def list_message_ids(self, query: str, max_results: int = 50) -> list[str]:
        """
        Ids of messages matching query, newest first, at most max_results.

        Follows nextPageToken until the cap is reached or pages run out.
        """
        ids: list[str] = []
        page_token: Optional[str] = None

        while len(ids) < max_results:
            params: dict[str, Any] = {
                "q": query,
                "maxResults": min(self.page_size, max_results - len(ids)),
            }
            if page_token:
                params["pageToken"] = page_token

            data = self._request("GET", "/users/me/messages", params=params)
            for item in data.get("messages", []) or []:
                ids.append(item["id"])

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(ids)} message ids")
        return ids[:max_results]

    def get_message(self, message_id: str) -> RawMessage:
        """Fetch one message and decode it to a RawMessage."""
        data = self._request("GET", f"/users/me/messages/{message_id}", params={"format": "full"})
        payload = data.get("payload", {}) or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", []) or []}

        internal_date = data.get("internalDate")
        if internal_date:
            received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        else:
            received_at = datetime.now(timezone.utc)

        return RawMessage(
            message_id=data.get("id", message_id),
            received_at=received_at,
            sender=parse_sender(headers.get("from", "")),
            subject=headers.get("subject", ""),
            body=extract_body(payload),
        )
