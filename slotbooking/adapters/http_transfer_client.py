"""
HTTP client for a payment gateway exposing the value-transfer operations.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from ..domain.exceptions import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    TransferSubmissionError,
    TransferUnavailableError,
)
from ..domain.models import PendingTransfer, ReceiptEvent, TransferReference

logger = logging.getLogger(__name__)


class HttpTransferClient:
    """
    Client for a JSON payment gateway.

    Endpoints:
        POST /eligibility                       -> {"eligible": bool}
        POST /authorizations                    -> {"handle": str}
        POST /transfers                         -> {"handle": str}
        GET  /transfers/{handle}/confirmation   -> {"status": str, "events": [...]}

    ``requests`` is blocking, so every call runs in a worker thread to keep
    the event loop free for other reservations.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: int = 30):
        """
        Initialize the gateway client.

        Args:
            base_url: Gateway root URL
            api_key: Bearer token sent with every request
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    async def check_eligibility(self, buyer_identity: str, amount: Decimal) -> bool:
        data = await asyncio.to_thread(
            self._post, "/eligibility", {"buyer": buyer_identity, "amount": str(amount)},
        )
        return bool(data.get("eligible", False))

    async def authorize(
        self,
        buyer_identity: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        payload = {
            "buyer": buyer_identity,
            "amount": str(amount),
            "slotId": reference.slot_id,
            "reference": reference.as_string(),
        }
        data = await asyncio.to_thread(self._post, "/authorizations", payload)
        return PendingTransfer(handle=self._handle(data), leg="authorization", reference=reference)

    async def submit_transfer(
        self,
        buyer_identity: str,
        recipient: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        payload = {
            "buyer": buyer_identity,
            "recipient": recipient,
            "amount": str(amount),
            "slotId": reference.slot_id,
            "reference": reference.as_string(),
        }
        data = await asyncio.to_thread(self._post, "/transfers", payload)
        return PendingTransfer(handle=self._handle(data), leg="transfer", reference=reference)

    async def await_confirmation(self, pending: PendingTransfer, timeout: float) -> List[ReceiptEvent]:
        """
        Long-poll the gateway for the confirmation of a transfer leg.

        Raises:
            ConfirmationTimeoutError: If the gateway reports the leg as still pending
        """
        data = await asyncio.to_thread(
            self._get,
            f"/transfers/{pending.handle}/confirmation",
            {"timeout": max(int(timeout), 1)},
        )
        status = str(data.get("status", "")).lower()
        if status == "pending":
            raise ConfirmationTimeoutError(f"{pending.leg} {pending.handle} is still pending")
        if status == "failed":
            raise TransferSubmissionError(f"{pending.leg} {pending.handle} failed: {data.get('error', 'unknown error')}")
        return self._parse_events(data)

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, headers=self.headers, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransferUnavailableError(f"Payment gateway unreachable at {url}: {e}") from e
        return self._decode(response, url)

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.get(
                url,
                headers=self.headers,
                params=params,
                timeout=self.timeout + int(params.get("timeout", 0)),
            )
        except requests.exceptions.RequestException as e:
            raise TransferUnavailableError(f"Payment gateway unreachable at {url}: {e}") from e
        return self._decode(response, url)

    @staticmethod
    def _decode(response: requests.Response, url: str) -> Dict[str, Any]:
        if response.status_code >= 500:
            raise TransferUnavailableError(f"Payment gateway error {response.status_code} at {url}")
        if response.status_code == 402:
            raise InsufficientFundsError(f"Payment gateway rejected {url}: insufficient funds")

        try:
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as e:
            raise TransferSubmissionError(f"Payment gateway rejected {url}: {e}") from e
        except ValueError as e:
            raise TransferSubmissionError(f"Payment gateway returned invalid JSON at {url}") from e

        if not isinstance(data, dict):
            raise TransferSubmissionError(f"Payment gateway returned an unexpected payload at {url}")
        return data

    @staticmethod
    def _handle(data: Dict[str, Any]) -> str:
        handle = data.get("handle")
        if not handle:
            raise TransferSubmissionError("Payment gateway response is missing the transfer handle")
        return str(handle)

    def _parse_events(self, response_data: Dict[str, Any]) -> List[ReceiptEvent]:
        """
        Parse confirmation events into domain receipts.

        Response format:
        {
            "status": "confirmed",
            "events": [
                {
                    "id": "rcpt-1",
                    "kind": "transfer",
                    "slotId": "provider:2025-01-06:09:00",
                    "buyer": "0xabc",
                    "amount": "25.00"
                }
            ]
        }
        """
        events: List[ReceiptEvent] = []

        for item in response_data.get("events", []):
            try:
                events.append(
                    ReceiptEvent(
                        receipt_id=str(item["id"]),
                        kind=str(item["kind"]),
                        slot_id=str(item["slotId"]),
                        buyer_identity=str(item["buyer"]),
                        amount=Decimal(str(item["amount"])),
                    )
                )
            except (KeyError, TypeError, InvalidOperation) as e:
                logger.warning("Could not parse confirmation event %r: %s", item, e)
                continue

        return events
