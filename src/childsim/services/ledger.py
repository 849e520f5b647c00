"""
Credit ledger client.

Premium actions (attaching a generated image to a turn) cost credits.
The ledger is owned by a remote service; the game only reads balances
and consumes credits. Consumption is read-then-conditional-update with
a bounded number of retries when another writer got there first.
"""

import http.client
import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod


logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class LedgerError(Exception):
    """The ledger could not be read or updated."""


class InsufficientCreditsError(LedgerError):
    """Not enough credits for the requested action."""

    code = "no_credits"

    def __init__(self, balance: int, requested: int = 1):
        self.balance = balance
        self.requested = requested
        super().__init__(f"{self.code}: balance {balance}, requested {requested}")


class LedgerConflictError(LedgerError):
    """The conditional update kept losing to concurrent writers."""


class CreditLedger(ABC):
    """Read and spend credits for an anonymous player id (and optional email)."""

    @abstractmethod
    def fetch_balance(self, anon_id: str, email: str | None = None) -> int:
        """Current credit balance."""
        pass

    @abstractmethod
    def consume(self, anon_id: str, email: str | None = None, amount: int = 1) -> int:
        """
        Spend ``amount`` credits.

        Returns:
            Remaining balance

        Raises:
            InsufficientCreditsError: Balance is below ``amount``
            LedgerConflictError: Retries exhausted on concurrent updates
            LedgerError: The ledger could not be reached
        """
        pass


def _account_key(anon_id: str, email: str | None) -> str:
    return email.strip().lower() if email else anon_id


class MemoryCreditLedger(CreditLedger):
    """
    In-process ledger with versioned rows.

    ``forced_conflicts`` makes the next N conditional updates fail, for
    exercising the retry path.
    """

    def __init__(self, balances: dict[str, int] | None = None, max_retries: int = DEFAULT_MAX_RETRIES):
        self._rows: dict[str, tuple[int, int]] = {
            key: (amount, 0) for key, amount in (balances or {}).items()
        }
        self._lock = threading.Lock()
        self.max_retries = max_retries
        self.forced_conflicts = 0
        self.attempts = 0

    def grant(self, anon_id: str, amount: int, email: str | None = None) -> int:
        key = _account_key(anon_id, email)
        with self._lock:
            balance, version = self._rows.get(key, (0, 0))
            self._rows[key] = (balance + amount, version + 1)
            return balance + amount

    def _read(self, key: str) -> tuple[int, int]:
        with self._lock:
            return self._rows.get(key, (0, 0))

    def _compare_and_set(self, key: str, expected_version: int, balance: int) -> bool:
        with self._lock:
            if self.forced_conflicts > 0:
                self.forced_conflicts -= 1
                return False
            _, version = self._rows.get(key, (0, 0))
            if version != expected_version:
                return False
            self._rows[key] = (balance, version + 1)
            return True

    def fetch_balance(self, anon_id: str, email: str | None = None) -> int:
        return self._read(_account_key(anon_id, email))[0]

    def consume(self, anon_id: str, email: str | None = None, amount: int = 1) -> int:
        key = _account_key(anon_id, email)
        for attempt in range(1, self.max_retries + 1):
            self.attempts += 1
            balance, version = self._read(key)
            if balance < amount:
                raise InsufficientCreditsError(balance, amount)
            if self._compare_and_set(key, version, balance - amount):
                return balance - amount
            logger.debug("Credit update conflict for %s (attempt %d)", key[-8:], attempt)
        raise LedgerConflictError(f"Gave up after {self.max_retries} conflicting updates")


class HttpCreditLedger(CreditLedger):
    """
    Ledger backed by the credits HTTP API.

    Endpoints:
    - GET  {base_url}/credits?anonId=...&email=...  -> {"credits": N}
    - POST {base_url}/consume-credit {"anonId", "email"} -> {"ok": true, "remaining": N}
    """

    def __init__(self, base_url: str, timeout: int = 15, max_retries: int = DEFAULT_MAX_RETRIES):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries

    def _request(self, req: urllib.request.Request, action: str) -> dict:
        """
        Send ``req`` and decode its JSON object body.

        HTTP status errors propagate for the caller to interpret; every other
        transport or payload failure becomes a LedgerError.
        """
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError:
            raise
        except (OSError, http.client.HTTPException, ValueError) as e:
            raise LedgerError(f"Could not {action}: {e}") from e
        if not isinstance(data, dict):
            raise LedgerError(f"Could not {action}: unexpected response {data!r}")
        return data

    def fetch_balance(self, anon_id: str, email: str | None = None) -> int:
        params = {"anonId": anon_id}
        if email:
            params["email"] = email
        url = f"{self.base_url}/credits?{urllib.parse.urlencode(params)}"
        try:
            data = self._request(urllib.request.Request(url, method="GET"), "read credit balance")
        except urllib.error.HTTPError as e:
            raise LedgerError(f"Credit service returned HTTP {e.code}") from e
        return _count(data, "credits")

    def consume(self, anon_id: str, email: str | None = None, amount: int = 1) -> int:
        body = json.dumps({"anonId": anon_id, "email": email, "amount": amount}).encode("utf-8")
        for attempt in range(1, self.max_retries + 1):
            req = urllib.request.Request(
                f"{self.base_url}/consume-credit",
                data=body,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            try:
                data = self._request(req, "consume credit")
            except urllib.error.HTTPError as e:
                payload = _error_payload(e)
                if e.code == 409:
                    logger.debug("Credit update conflict (attempt %d)", attempt)
                    continue
                if payload.get("error") == InsufficientCreditsError.code or e.code == 402:
                    balance = payload.get("balance", 0)
                    raise InsufficientCreditsError(balance if _is_count(balance) else 0, amount) from e
                raise LedgerError(f"Credit service returned HTTP {e.code}: {payload.get('error')}") from e

            if not data.get("ok"):
                raise LedgerError(f"Credit service refused: {data.get('error')}")
            return _count(data, "remaining")

        raise LedgerConflictError(f"Gave up after {self.max_retries} conflicting updates")


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _count(data: dict, key: str) -> int:
    value = data.get(key, 0)
    if not _is_count(value):
        raise LedgerError(f"Credit service sent a non-integer {key}: {value!r}")
    return value


def _error_payload(error: urllib.error.HTTPError) -> dict:
    try:
        data = json.loads(error.read().decode("utf-8"))
    except (ValueError, OSError, http.client.HTTPException):
        return {}
    return data if isinstance(data, dict) else {}
