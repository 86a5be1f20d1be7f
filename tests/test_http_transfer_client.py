"""
Tests for the HTTP payment gateway client, with requests patched out.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List

import pytest
import requests

from slotbooking.adapters import http_transfer_client
from slotbooking.adapters.http_transfer_client import HttpTransferClient
from slotbooking.domain.exceptions import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    TransferSubmissionError,
    TransferUnavailableError,
)
from slotbooking.domain.models import PendingTransfer, TransferReference

REFERENCE = TransferReference("alice:2025-01-06:09:00", "0xa", Decimal("25.00"))


class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Client Error")


class RecordingTransport:
    """Replaces requests.post / requests.get and records calls."""

    def __init__(self, response: FakeResponse):
        self.response = response
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "headers": headers, "json": json, "timeout": timeout})
        return self.response

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "headers": headers, "params": params, "timeout": timeout})
        return self.response


@pytest.fixture
def transport(monkeypatch):
    fake = RecordingTransport(FakeResponse())
    monkeypatch.setattr(http_transfer_client.requests, "post", fake.post)
    monkeypatch.setattr(http_transfer_client.requests, "get", fake.get)
    return fake


def _client() -> HttpTransferClient:
    return HttpTransferClient("https://pay.example.com/", api_key="secret", timeout=5)


class TestRequests:
    """Tests for request building and response parsing."""

    def test_eligibility(self, transport):
        transport.response = FakeResponse(payload={"eligible": True})

        assert asyncio.run(_client().check_eligibility("0xa", Decimal("25.00")))

        call = transport.calls[0]
        assert call["url"] == "https://pay.example.com/eligibility"
        assert call["headers"]["Authorization"] == "Bearer secret"
        assert call["json"] == {"buyer": "0xa", "amount": "25.00"}
        assert call["timeout"] == 5

    def test_submit_transfer_sends_reference(self, transport):
        transport.response = FakeResponse(payload={"handle": "xfer-1"})

        pending = asyncio.run(_client().submit_transfer("0xa", "alice", Decimal("25.00"), REFERENCE))

        assert pending == PendingTransfer("xfer-1", "transfer", REFERENCE)
        assert transport.calls[0]["json"]["reference"] == REFERENCE.as_string()
        assert transport.calls[0]["json"]["recipient"] == "alice"

    def test_authorize(self, transport):
        transport.response = FakeResponse(payload={"handle": "auth-1"})

        pending = asyncio.run(_client().authorize("0xa", Decimal("25.00"), REFERENCE))

        assert pending.leg == "authorization"
        assert transport.calls[0]["url"].endswith("/authorizations")

    def test_confirmation_events_parsed(self, transport):
        transport.response = FakeResponse(payload={
            "status": "confirmed",
            "events": [
                {"id": "r-1", "kind": "transfer", "slotId": REFERENCE.slot_id, "buyer": "0xa", "amount": "25.00"},
                {"id": "r-2", "kind": "transfer"},  # malformed, skipped
            ],
        })
        pending = PendingTransfer("xfer-1", "transfer", REFERENCE)

        events = asyncio.run(_client().await_confirmation(pending, timeout=10))

        assert [e.receipt_id for e in events] == ["r-1"]
        assert events[0].amount == Decimal("25.00")
        call = transport.calls[0]
        assert call["url"] == "https://pay.example.com/transfers/xfer-1/confirmation"
        assert call["params"] == {"timeout": 10}

    def test_pending_confirmation_times_out(self, transport):
        transport.response = FakeResponse(payload={"status": "pending"})
        pending = PendingTransfer("xfer-1", "transfer", REFERENCE)

        with pytest.raises(ConfirmationTimeoutError):
            asyncio.run(_client().await_confirmation(pending, timeout=1))

    def test_missing_handle(self, transport):
        transport.response = FakeResponse(payload={})

        with pytest.raises(TransferSubmissionError, match="handle"):
            asyncio.run(_client().authorize("0xa", Decimal("25.00"), REFERENCE))


class TestErrors:
    """Tests for mapping gateway failures onto transfer errors."""

    def test_server_error_is_transient(self, transport):
        transport.response = FakeResponse(status_code=503)

        with pytest.raises(TransferUnavailableError):
            asyncio.run(_client().check_eligibility("0xa", Decimal("1")))

    def test_client_error_is_a_rejection(self, transport):
        transport.response = FakeResponse(status_code=400)

        with pytest.raises(TransferSubmissionError):
            asyncio.run(_client().submit_transfer("0xa", "alice", Decimal("1"), REFERENCE))

    def test_payment_required(self, transport):
        transport.response = FakeResponse(status_code=402)

        with pytest.raises(InsufficientFundsError):
            asyncio.run(_client().submit_transfer("0xa", "alice", Decimal("1"), REFERENCE))

    def test_invalid_json(self, transport):
        transport.response = FakeResponse(payload=ValueError("not json"))

        with pytest.raises(TransferSubmissionError, match="invalid JSON"):
            asyncio.run(_client().check_eligibility("0xa", Decimal("1")))

    def test_connection_error(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("connection refused")

        monkeypatch.setattr(http_transfer_client.requests, "post", refuse)

        with pytest.raises(TransferUnavailableError, match="unreachable"):
            asyncio.run(_client().check_eligibility("0xa", Decimal("1")))
