"""
Ledger (finance tracker) API client implementation.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.transaction import Direction, LedgerEntry

logger = logging.getLogger(__name__)

ENDPOINTS = {
    Direction.DEBIT: "/api/expenses",
    Direction.CREDIT: "/api/income",
}


class LedgerError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerAPIError(LedgerError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Ledger API error {status_code}: {message}")


class LedgerConnectionError(LedgerError):
    """Failed to connect to the ledger."""

    pass


class LedgerDuplicateError(LedgerError):
    """Entry already exists (duplicate external_id)."""

    def __init__(self, external_id: str, existing_id: str | None = None):
        self.external_id = external_id
        self.existing_id = existing_id
        super().__init__(f"Ledger entry with external_id '{external_id}' already exists")


@dataclass
class LedgerRecord:
    """An entry already in the ledger (read back for dedup)."""

    id: str
    amount: Decimal
    direction: Direction
    date: date
    external_id: str | None = None


def _entry_id(data: dict) -> str | None:
    value = data.get("_id") or data.get("id")
    return str(value) if value is not None else None


class LedgerClient:
    """
    Client for the ledger's expense/income API.

    Debits become expenses, credits become income. Every entry carries a
    deterministic externalId; the ledger answers 409 for a repeat.
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize ledger client.

        Args:
            base_url: Ledger API URL (e.g., "http://localhost:5000")
            token: Service access token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        # POST is safe to retry: externalId makes it idempotent
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"API Request: {method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise LedgerConnectionError(f"Failed to connect to ledger at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise LedgerConnectionError(f"Request to ledger timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise LedgerError(f"Request failed: {e}") from e

        if not response.ok:
            try:
                message = response.json().get("message", response.reason)
            except (ValueError, AttributeError):
                message = response.reason
            raise LedgerAPIError(
                status_code=response.status_code,
                message=message or "",
                response_body=response.text,
            )

        return response

    @staticmethod
    def _json(response: requests.Response) -> dict:
        """Decoded body of a successful response."""
        try:
            body = response.json()
        except ValueError as e:
            raise LedgerAPIError(
                status_code=response.status_code,
                message="response is not JSON",
                response_body=response.text,
            ) from e
        if not isinstance(body, dict):
            raise LedgerAPIError(
                status_code=response.status_code,
                message="unexpected response shape",
                response_body=response.text,
            )
        return body

    def test_connection(self) -> bool:
        """Test connection to the ledger API."""
        try:
            self._request("GET", "/api/health")
            return True
        except LedgerError:
            return False

    def record(self, entry: LedgerEntry) -> str:
        """
        Create an expense or income entry.

        Returns:
            Ledger entry id

        Raises:
            LedgerDuplicateError: externalId already recorded
            LedgerAPIError / LedgerConnectionError: on failure
        """
        payload = entry.to_payload()
        try:
            response = self._request("POST", ENDPOINTS[entry.direction], json_data=payload)
        except LedgerAPIError as e:
            if e.status_code == 409:
                existing_id = None
                try:
                    existing_id = _entry_id(json.loads(e.response_body or "{}").get("data") or {})
                except ValueError:
                    pass
                raise LedgerDuplicateError(entry.external_id, existing_id) from e
            raise

        entry_id = _entry_id(self._json(response).get("data") or {})
        if not entry_id:
            raise LedgerError("Ledger response did not include an entry id")

        logger.info(f"Recorded ledger entry id={entry_id} ({entry.direction.value})")
        return entry_id

    def entries_between(self, user_id: str, start: date, end: date) -> list[LedgerRecord]:
        """Expenses and income of a user dated within [start, end]."""
        records: list[LedgerRecord] = []
        params = {"user": user_id, "startDate": start.isoformat(), "endDate": end.isoformat()}

        for direction, endpoint in ENDPOINTS.items():
            response = self._request("GET", endpoint, params=params)
            for item in self._json(response).get("data", []) or []:
                record = self._parse_record(item, direction)
                if record:
                    records.append(record)

        return records

    @staticmethod
    def _parse_record(item: dict, direction: Direction) -> Optional[LedgerRecord]:
        try:
            return LedgerRecord(
                id=_entry_id(item) or "",
                amount=Decimal(str(item["amount"])),
                direction=direction,
                date=date.fromisoformat(str(item["date"])[:10]),
                external_id=item.get("externalId"),
            )
        except (KeyError, ValueError, InvalidOperation):
            logger.warning(f"Skipping unparseable ledger entry {_entry_id(item)}")
            return None
