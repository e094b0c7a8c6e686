"""
services/payout/gateway.py
RazorpayX Payouts client: contacts, fund accounts and payouts.

Every call goes through one circuit breaker so a gateway outage fails fast
instead of piling up blocked workers. Errors surface as PayoutGatewayError;
nothing here retries. Failed payouts are picked up by the next batch pass.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Protocol

import httpx
from pybreaker import CircuitBreaker, CircuitBreakerError

from config.settings import settings
from shared.errors.errors import PayoutGatewayError

logger = logging.getLogger(__name__)


# ── Contract ──────────────────────────────────────────────────

@dataclass(frozen=True)
class BankDetails:
    account_holder_name: str
    ifsc: str
    account_number: str


@dataclass(frozen=True)
class GatewayPayout:
    external_id: str
    status: str


class PayoutGateway(Protocol):
    def create_contact(self, name: str, reference_id: str) -> str: ...

    def create_fund_account(self, contact_id: str, bank_details: BankDetails) -> str: ...

    def create_payout(
        self,
        fund_account_id: str,
        amount: int,
        mode: str,
        reference_id: str,
        narration: Optional[str] = None,
    ) -> GatewayPayout: ...


# ── Circuit Breaker ───────────────────────────────────────────

payout_gateway_breaker = CircuitBreaker(
    fail_max=settings.PAYOUT_GATEWAY_FAIL_MAX,
    reset_timeout=settings.PAYOUT_GATEWAY_RESET_TIMEOUT,
    name="razorpayx",
)


# ── RazorpayX ─────────────────────────────────────────────────

class RazorpayXClient:
    """Synchronous RazorpayX client. One HTTP call per method."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        account_number: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.account_number = account_number
        self.breaker = breaker or payout_gateway_breaker
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def _send(self, path: str, payload: dict, headers: Optional[dict]) -> dict:
        response = self._client.post(path, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, payload: dict, headers: Optional[dict] = None) -> dict:
        try:
            return self.breaker.call(self._send, path, payload, headers)
        except CircuitBreakerError as exc:
            raise PayoutGatewayError("Payout gateway unavailable (circuit open)") from exc
        except httpx.HTTPStatusError as exc:
            raise PayoutGatewayError(
                f"Payout gateway rejected {path}: HTTP {exc.response.status_code} "
                f"{_error_description(exc.response)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PayoutGatewayError(f"Payout gateway request to {path} failed: {exc}") from exc

    def create_contact(self, name: str, reference_id: str) -> str:
        data = self._post(
            "/contacts",
            {"name": name, "type": "vendor", "reference_id": reference_id},
        )
        return data["id"]

    def create_fund_account(self, contact_id: str, bank_details: BankDetails) -> str:
        data = self._post(
            "/fund_accounts",
            {
                "contact_id": contact_id,
                "account_type": "bank_account",
                "bank_account": {
                    "name": bank_details.account_holder_name,
                    "ifsc": bank_details.ifsc,
                    "account_number": bank_details.account_number,
                },
            },
        )
        return data["id"]

    def create_payout(
        self,
        fund_account_id: str,
        amount: int,
        mode: str,
        reference_id: str,
        narration: Optional[str] = None,
    ) -> GatewayPayout:
        payload = {
            "account_number": self.account_number,
            "fund_account_id": fund_account_id,
            "amount": amount,  # paise
            "currency": "INR",
            "mode": mode,
            "purpose": "payout",
            "queue_if_low_balance": True,
            "reference_id": reference_id,
        }
        if narration:
            payload["narration"] = narration[:30]
        # Same reference → same payout on the gateway side
        data = self._post("/payouts", payload, headers={"X-Payout-Idempotency": reference_id})
        return GatewayPayout(external_id=data["id"], status=data.get("status", "queued"))


def _error_description(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("description", "")
    except (ValueError, AttributeError):
        return response.text[:200]


@lru_cache()
def get_payout_gateway() -> PayoutGateway:
    """Process-wide RazorpayX client built from settings."""
    return RazorpayXClient(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        account_number=settings.RAZORPAY_ACCOUNT_NUMBER,
        base_url=settings.RAZORPAYX_BASE_URL,
        timeout=settings.PAYOUT_GATEWAY_TIMEOUT_SECONDS,
    )
