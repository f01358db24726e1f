"""
Payment Gateway Client

HTTP client for a Razorpay-style payment gateway. It creates a remote order
for every local checkout and looks up the payments recorded against that
order for reconciliation.

Error mapping:
- Timeouts, connection errors, 5xx and 429 responses -> GatewayUnavailable.
  The remote side may have processed the request, so callers must not mark
  the local order failed.
- Any other 4xx -> GatewayRequestRejected

Only the idempotent status lookup is retried automatically (urllib3 Retry
with exponential backoff). Order creation is never retried here; a lost
response leaves the local order CREATED for the reconciliation sweep.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from django.conf import settings

from .exceptions import GatewayRequestRejected, GatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemotePaymentOutcome:
    """What the gateway knows about the payments of one remote order."""

    PAID = "PAID"
    FAILED = "FAILED"
    PENDING = "PENDING"

    status: str
    payment_id: Optional[str] = None
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == self.PAID


class GatewayClient(Protocol):
    """Interface the pipeline expects from a payment gateway."""

    key_id: str
    signing_secret: str
    webhook_secret: str

    def create_remote_order(self, amount_minor_units: int, currency: str, order_ref: str) -> str:
        ...

    def fetch_remote_status(self, remote_order_id: str) -> RemotePaymentOutcome:
        ...


class RazorpayGatewayClient:
    """
    Gateway client speaking the Razorpay Orders/Payments REST API.

    Attributes:
        PAID_PAYMENT_STATES: Payment states that mean the money was taken
        FAILED_PAYMENT_STATES: Payment states that mean the attempt failed
        RETRY_STATUS_CODES: Responses retried for idempotent requests

    Example:
        >>> client = RazorpayGatewayClient.from_settings()
        >>> remote_id = client.create_remote_order(499900, "INR", "ord_ab12")
        >>> client.fetch_remote_status(remote_id).status
        'PENDING'
    """

    PAID_PAYMENT_STATES = frozenset({"captured", "authorized"})
    FAILED_PAYMENT_STATES = frozenset({"failed"})
    RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout: float = 10,
        max_retries: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self.timeout = timeout
        self.max_retries = max_retries
        self._session: Optional[requests.Session] = None

    @classmethod
    def from_settings(cls) -> "RazorpayGatewayClient":
        return cls(
            base_url=settings.PAYMENT_GATEWAY_BASE_URL,
            key_id=settings.PAYMENT_GATEWAY_KEY_ID,
            key_secret=settings.PAYMENT_GATEWAY_KEY_SECRET,
            webhook_secret=settings.PAYMENT_GATEWAY_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
            max_retries=settings.PAYMENT_GATEWAY_MAX_RETRIES,
        )

    # Callback signatures are keyed with the API secret.
    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def signing_secret(self) -> str:
        return self._key_secret

    @property
    def webhook_secret(self) -> str:
        return self._webhook_secret

    @property
    def session(self) -> requests.Session:
        """Lazily built session; GETs are retried, POSTs are not."""
        if self._session is None:
            retry = Retry(
                total=self.max_retries,
                backoff_factor=0.5,
                status_forcelist=self.RETRY_STATUS_CODES,
                allowed_methods=frozenset({"GET"}),
                raise_on_status=False,
            )
            session = requests.Session()
            session.auth = (self._key_id, self._key_secret)
            session.headers.update({"Accept": "application/json"})
            session.mount("https://", HTTPAdapter(max_retries=retry))
            session.mount("http://", HTTPAdapter(max_retries=retry))
            self._session = session
        return self._session

    def create_remote_order(self, amount_minor_units: int, currency: str, order_ref: str) -> str:
        """
        Create the gateway-side order for a local checkout.

        Args:
            amount_minor_units: Amount in the currency's minor unit
            currency: ISO 4217 code
            order_ref: Local order reference, sent as receipt and note

        Returns:
            The gateway's order id

        Raises:
            GatewayUnavailable: timeout, connection problem, 5xx or 429
            GatewayRequestRejected: any other 4xx response
        """
        payload = {
            "amount": int(amount_minor_units),
            "currency": currency,
            "receipt": order_ref,
            "notes": {"order_ref": order_ref},
        }
        data = self._request("POST", "/orders", json=payload, context=order_ref)
        remote_order_id = data.get("id")
        if not remote_order_id:
            raise GatewayUnavailable("Gateway response did not contain an order id")
        logger.info("Gateway order %s created for %s", remote_order_id, order_ref)
        return remote_order_id

    def fetch_remote_status(self, remote_order_id: str) -> RemotePaymentOutcome:
        """Summarize the payments recorded against a remote order."""
        data = self._request("GET", f"/orders/{remote_order_id}/payments", context=remote_order_id)
        return self.outcome_from_payments(data.get("items") or [])

    @classmethod
    def outcome_from_payments(cls, payments) -> RemotePaymentOutcome:
        for payment in payments:
            if payment.get("status") in cls.PAID_PAYMENT_STATES:
                return RemotePaymentOutcome(
                    status=RemotePaymentOutcome.PAID,
                    payment_id=payment.get("id"),
                    amount_minor_units=payment.get("amount"),
                    currency=payment.get("currency"),
                )
        if payments and all(p.get("status") in cls.FAILED_PAYMENT_STATES for p in payments):
            last = payments[-1]
            return RemotePaymentOutcome(
                status=RemotePaymentOutcome.FAILED,
                payment_id=last.get("id"),
                amount_minor_units=last.get("amount"),
                currency=last.get("currency"),
            )
        return RemotePaymentOutcome(status=RemotePaymentOutcome.PENDING)

    def _request(self, method: str, path: str, context: str = "", **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            logger.warning("Gateway %s %s timed out after %ss (%s)", method, path, self.timeout, context)
            raise GatewayUnavailable(f"Gateway request timed out after {self.timeout}s")
        except requests.exceptions.ConnectionError as e:
            logger.warning("Gateway %s %s connection failed (%s): %s", method, path, context, e)
            raise GatewayUnavailable(f"Failed to connect to payment gateway: {e}")
        except requests.exceptions.RequestException as e:
            logger.warning("Gateway %s %s failed (%s): %s", method, path, context, e)
            raise GatewayUnavailable(f"Payment gateway request failed: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("Gateway %s %s answered %s (%s)", method, path, response.status_code, context)
            raise GatewayUnavailable(details={"gateway_status": response.status_code})

        if response.status_code >= 400:
            description = self._error_description(response)
            logger.error(
                "Gateway rejected %s %s with %s (%s): %s",
                method, path, response.status_code, context, description,
            )
            raise GatewayRequestRejected(description, gateway_status=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise GatewayUnavailable("Invalid JSON in payment gateway response")

    @staticmethod
    def _error_description(response: requests.Response) -> str:
        try:
            error = response.json().get("error", {})
            return error.get("description") or error.get("code") or response.reason
        except (ValueError, AttributeError):
            return response.reason or f"HTTP {response.status_code}"
