"""Tests for the credit ledger."""

import http.client
import io
import json
import threading
import urllib.error
from unittest.mock import patch

import pytest

from childsim.services.ledger import (
    HttpCreditLedger,
    InsufficientCreditsError,
    LedgerConflictError,
    LedgerError,
    MemoryCreditLedger,
)


def http_error(code, payload=None):
    body = json.dumps(payload or {}).encode("utf-8")
    return urllib.error.HTTPError("http://ledger", code, "error", {}, io.BytesIO(body))


class TestMemoryCreditLedger:
    """Test the in-process ledger."""

    def test_consume(self, ledger):
        """Consuming lowers the balance."""
        assert ledger.consume("player-1") == 2
        assert ledger.fetch_balance("player-1") == 2

    def test_insufficient(self, ledger):
        """Overspending raises with the current balance."""
        with pytest.raises(InsufficientCreditsError) as exc:
            ledger.consume("player-1", amount=5)
        assert exc.value.balance == 3
        assert exc.value.code == "no_credits"

    def test_email_account(self):
        """An email identifies the account regardless of case."""
        ledger = MemoryCreditLedger()
        ledger.grant("anon", 2, email="Parent@Example.com")
        assert ledger.fetch_balance("other-anon", email="parent@example.com") == 2

    def test_conflict_retried(self, ledger):
        """A lost conditional update is retried."""
        ledger.forced_conflicts = 2
        assert ledger.consume("player-1") == 2
        assert ledger.attempts == 3

    def test_conflict_exhausted(self, ledger):
        """Too many conflicts give up."""
        ledger.forced_conflicts = 5
        with pytest.raises(LedgerConflictError):
            ledger.consume("player-1")
        assert ledger.fetch_balance("player-1") == 3

    def test_concurrent_consumers_never_overspend(self):
        """Parallel consumers cannot spend more than the balance."""
        ledger = MemoryCreditLedger({"p": 5}, max_retries=50)
        outcomes = []

        def spend():
            try:
                ledger.consume("p")
                outcomes.append("ok")
            except LedgerError:
                outcomes.append("refused")

        threads = [threading.Thread(target=spend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 5
        assert ledger.fetch_balance("p") == 0


class TestHttpCreditLedger:
    """Test the HTTP ledger client."""

    @patch("urllib.request.urlopen")
    def test_fetch_balance(self, mock_urlopen):
        """The balance is read from the credits endpoint."""
        mock_urlopen.return_value.__enter__.return_value.read.return_value = b'{"credits": 7}'
        assert HttpCreditLedger("http://ledger/").fetch_balance("a1", "p@example.com") == 7
        url = mock_urlopen.call_args[0][0].full_url
        assert url.startswith("http://ledger/credits?anonId=a1")
        assert "email=p%40example.com" in url

    @patch("urllib.request.urlopen")
    def test_consume(self, mock_urlopen):
        """Consuming returns the remaining balance."""
        mock_urlopen.return_value.__enter__.return_value.read.return_value = b'{"ok": true, "remaining": 4}'
        assert HttpCreditLedger("http://ledger").consume("a1") == 4
        request = mock_urlopen.call_args[0][0]
        assert request.get_method() == "POST"
        assert json.loads(request.data)["anonId"] == "a1"

    @patch("urllib.request.urlopen")
    def test_conflict_then_success(self, mock_urlopen):
        """A 409 is retried."""
        ok = mock_urlopen.return_value
        ok.__enter__.return_value.read.return_value = b'{"ok": true, "remaining": 1}'
        mock_urlopen.side_effect = [http_error(409), ok]
        assert HttpCreditLedger("http://ledger").consume("a1") == 1
        assert mock_urlopen.call_count == 2

    @patch("urllib.request.urlopen")
    def test_no_credits(self, mock_urlopen):
        """The no_credits error code maps to InsufficientCreditsError."""
        mock_urlopen.side_effect = http_error(400, {"error": "no_credits", "balance": 0})
        with pytest.raises(InsufficientCreditsError):
            HttpCreditLedger("http://ledger").consume("a1")

    @patch("urllib.request.urlopen")
    def test_unreachable(self, mock_urlopen):
        """Network failures are ledger errors."""
        mock_urlopen.side_effect = urllib.error.URLError("down")
        with pytest.raises(LedgerError):
            HttpCreditLedger("http://ledger").fetch_balance("a1")

    @patch("urllib.request.urlopen")
    def test_conflicts_exhausted(self, mock_urlopen):
        """Persistent conflicts give up."""
        mock_urlopen.side_effect = [http_error(409) for _ in range(3)]
        with pytest.raises(LedgerConflictError):
            HttpCreditLedger("http://ledger", max_retries=3).consume("a1")

    @patch("urllib.request.urlopen")
    def test_dropped_connection(self, mock_urlopen):
        """A connection the server drops is a ledger error on both endpoints."""
        ledger = HttpCreditLedger("http://ledger")
        mock_urlopen.side_effect = http.client.RemoteDisconnected("closed")
        with pytest.raises(LedgerError):
            ledger.consume("a1")
        mock_urlopen.side_effect = ConnectionResetError("reset by peer")
        with pytest.raises(LedgerError):
            ledger.fetch_balance("a1")

    @patch("urllib.request.urlopen")
    def test_malformed_bodies(self, mock_urlopen):
        """Null counts, non-object and undecodable bodies are ledger errors."""
        body = mock_urlopen.return_value.__enter__.return_value.read
        ledger = HttpCreditLedger("http://ledger")
        for raw in (b'{"credits": null}', b'{"credits": "7"}', b"[7]", b"\xff"):
            body.return_value = raw
            with pytest.raises(LedgerError):
                ledger.fetch_balance("a1")
        body.return_value = b'{"ok": true, "remaining": null}'
        with pytest.raises(LedgerError):
            ledger.consume("a1")

    @patch("urllib.request.urlopen")
    def test_server_error_on_balance(self, mock_urlopen):
        """An HTTP error status on the balance read is a ledger error."""
        mock_urlopen.side_effect = http_error(500)
        with pytest.raises(LedgerError):
            HttpCreditLedger("http://ledger").fetch_balance("a1")
