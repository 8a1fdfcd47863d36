# Overview: HTTP client for the card payment gateway (checkout creation and status lookups).

"""
Payment Gateway Client

WHY: A committed sale needs a hosted checkout page on the gateway. This
module turns sale data into one checkout-creation request and normalizes
whatever the gateway answers into GatewayCheckout.

DESIGN:
- One httpx.Client per process, built once from configuration
- Transport trust (certificate verification) is fixed at construction
  from GATEWAY_ENVIRONMENT, never decided per request
- Transient failures (timeouts, connection errors, 5xx) are retried with
  doubling backoff up to GATEWAY_RETRY_ATTEMPTS
- 4xx answers are business rejections: surfaced at once, never retried
- Responses may be a bare URL or JSON exposing the URL under one of
  several known keys; anything else is a GatewayError
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import ssl
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

import httpx
from flask import current_app

from ..errors import GatewayConfigurationError, GatewayError, GatewayRejectedError
from ..models.payments import TransactionStatus


AUTH_APIKEY = "apikey"
AUTH_BASIC = "basic"
AUTH_OAUTH2 = "oauth2"
VALID_AUTH_TYPES = (AUTH_APIKEY, AUTH_BASIC, AUTH_OAUTH2)

ENV_PRODUCTION = "production"
ENV_SANDBOX = "sandbox"
ENV_TEST = "test"

# Top-level keys, in priority order, that may hold the hosted checkout URL
CHECKOUT_URL_KEYS = ("checkout_url", "payment_url", "redirect_url", "url")
CHECKOUT_ID_KEYS = ("id", "checkout_id")

LOG_BODY_LIMIT = 1000


def trim_for_log(value: str | None, limit: int = LOG_BODY_LIMIT) -> str:
    if not value:
        return ""
    return value if len(value) <= limit else value[:limit] + "...(truncated)"


def transaction_id_for(sale_id: int, attempt: int = 1) -> str:
    """
    Correlation key sent to the gateway and echoed back by webhooks.

    Deterministic per (sale, attempt): a client retrying a failed hand-off
    for the same attempt reuses the same key, so the gateway can dedupe it.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return f"TXN-{sale_id}-{attempt}"


def normalize_api_url(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        return ""
    if not value.lower().startswith(("http://", "https://")):
        value = "https://" + value
    return value.rstrip("/")


@dataclass(frozen=True)
class TransportTrust:
    """
    Certificate policy for gateway connections, resolved once at startup.

    production -> verify against system CAs (or GATEWAY_CA_BUNDLE)
    sandbox/test -> verification disabled (gateway sandboxes use
    self-signed certificates)
    """
    environment: str
    verify: Any

    @property
    def is_strict(self) -> bool:
        return self.verify is not False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TransportTrust":
        return cls.from_environment(config.get("GATEWAY_ENVIRONMENT") or ENV_SANDBOX, config.get("GATEWAY_CA_BUNDLE"))

    @classmethod
    def from_environment(cls, environment: str, ca_bundle: str | None = None) -> "TransportTrust":
        env = (environment or "").strip().lower()
        if env == ENV_PRODUCTION:
            if ca_bundle:
                return cls(environment=env, verify=ssl.create_default_context(cafile=ca_bundle))
            return cls(environment=env, verify=True)
        if env in (ENV_SANDBOX, ENV_TEST):
            return cls(environment=env, verify=False)
        raise GatewayConfigurationError(
            f"Unknown gateway environment: {environment!r}",
            details={"allowed": [ENV_PRODUCTION, ENV_SANDBOX, ENV_TEST]},
        )


@dataclass(frozen=True)
class GatewaySettings:
    api_url: str
    checkout_path: str = "/v1/checkouts"
    status_path: str = "/v1/payments/{transaction_id}"
    auth_type: str = AUTH_APIKEY
    public_key: str = ""
    private_key: str = ""
    site_id: str = ""
    token_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    environment: str = ENV_SANDBOX
    ca_bundle: str | None = None
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    app_url: str = ""

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GatewaySettings":
        auth_type = (config.get("GATEWAY_AUTH_TYPE") or AUTH_APIKEY).strip().lower()
        if auth_type not in VALID_AUTH_TYPES:
            raise GatewayConfigurationError(
                f"Unknown gateway auth type: {auth_type!r}",
                details={"allowed": list(VALID_AUTH_TYPES)},
            )
        return cls(
            api_url=normalize_api_url(config.get("GATEWAY_API_URL")),
            checkout_path=config.get("GATEWAY_CHECKOUT_PATH") or "/v1/checkouts",
            status_path=config.get("GATEWAY_STATUS_PATH") or "/v1/payments/{transaction_id}",
            auth_type=auth_type,
            public_key=config.get("GATEWAY_PUBLIC_KEY") or "",
            private_key=config.get("GATEWAY_PRIVATE_KEY") or "",
            site_id=config.get("GATEWAY_SITE_ID") or "",
            token_url=config.get("GATEWAY_TOKEN_URL") or "",
            client_id=config.get("GATEWAY_CLIENT_ID") or "",
            client_secret=config.get("GATEWAY_CLIENT_SECRET") or "",
            environment=config.get("GATEWAY_ENVIRONMENT") or ENV_SANDBOX,
            ca_bundle=config.get("GATEWAY_CA_BUNDLE"),
            timeout_seconds=float(config.get("GATEWAY_TIMEOUT_SECONDS") or 30),
            retry_attempts=max(1, int(config.get("GATEWAY_RETRY_ATTEMPTS") or 3)),
            retry_backoff_seconds=float(config.get("GATEWAY_RETRY_BACKOFF_SECONDS") or 0),
            app_url=(config.get("APP_URL") or "").rstrip("/"),
        )


@dataclass(frozen=True)
class CustomerInfo:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    document: str | None = None


@dataclass(frozen=True)
class HostedCheckoutRequest:
    sale_id: int
    transaction_id: str
    amount: Decimal
    currency: str
    description: str
    customer: CustomerInfo
    return_url: str | None = None
    cancel_url: str | None = None


@dataclass(frozen=True)
class GatewayCheckout:
    checkout_id: str | None
    checkout_url: str
    transaction_id: str


@dataclass(frozen=True)
class GatewayPaymentStatus:
    transaction_id: str
    status: TransactionStatus
    raw_status: str | None
    status_detail: str | None
    amount: Decimal | None


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower().startswith(("http://", "https://"))


def _url_at(obj: Any, *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key) if isinstance(obj, dict) else None
        if _is_url(value):
            return value.strip()
    return None


def find_checkout_url(body: dict) -> str | None:
    url = _url_at(body, *CHECKOUT_URL_KEYS)
    if url:
        return url

    url = _url_at(body.get("data"), "checkout_url", "url")
    if url:
        return url

    url = _url_at(body.get("links"), "checkout", "self")
    if url:
        return url

    for value in body.values():
        if isinstance(value, dict):
            url = _url_at(value, "url", "checkout_url")
            if url:
                return url
    return None


def find_checkout_id(body: dict) -> str | None:
    for candidate in (body, body.get("data")):
        if not isinstance(candidate, dict):
            continue
        for key in CHECKOUT_ID_KEYS:
            value = candidate.get(key)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
                return str(value).strip()
    return None


def parse_checkout_response(raw: str) -> tuple[str, str | None]:
    """
    Normalize a checkout-creation response body into (url, checkout_id).

    Accepted shapes:
    - a bare URL, optionally JSON-quoted
    - a JSON object holding the URL under a known key (see find_checkout_url)

    Raises:
        GatewayError: body is neither of the above, or holds no URL
    """
    text = (raw or "").strip()
    if _is_url(text):
        return text, None

    try:
        body = json.loads(text)
    except ValueError:
        raise GatewayError(
            "Gateway response is not valid JSON",
            details={"body": trim_for_log(text, 200)},
        )

    if _is_url(body):
        return body.strip(), None

    if isinstance(body, dict):
        url = find_checkout_url(body)
        if url:
            return url, find_checkout_id(body)

    raise GatewayError(
        "Gateway response did not include a checkout URL",
        details={"body": trim_for_log(text, 200)},
    )


# =============================================================================
# CLIENT
# =============================================================================

class PaymentGatewayClient:
    """
    Synchronous gateway client.

    Construct once per application (create_app does this) and share it;
    httpx.Client is thread-safe and pools connections.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
        logger: logging.Logger | None = None,
    ):
        self.settings = settings
        self.trust = TransportTrust.from_environment(settings.environment, settings.ca_bundle)
        self._sleep = sleep
        self._log = logger or logging.getLogger(__name__)
        self._http = httpx.Client(
            timeout=httpx.Timeout(settings.timeout_seconds),
            verify=self.trust.verify,
            transport=transport,
            headers={
                "User-Agent": "storefront/1.0",
                "Accept": "application/json",
                "Cache-Control": "no-cache",
            },
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs) -> "PaymentGatewayClient":
        return cls(GatewaySettings.from_config(config), **kwargs)

    def close(self) -> None:
        self._http.close()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def create_checkout(self, request: HostedCheckoutRequest) -> GatewayCheckout:
        """
        Create a hosted checkout for a committed sale.

        Returns:
            GatewayCheckout with a non-empty checkout_url

        Raises:
            GatewayConfigurationError: URL or credentials missing
            GatewayRejectedError: gateway answered 4xx
            GatewayError: retries exhausted or response unusable
        """
        s = self.settings
        self._require_api_url()

        payload = self._checkout_payload(request)
        endpoint = f"{s.api_url}{s.checkout_path}"
        body = json.dumps(payload)

        self._log.info(
            "Gateway create checkout -> POST %s sale_id=%s transaction_id=%s payload size=%s",
            endpoint, request.sale_id, request.transaction_id, len(body),
        )

        response = self._send(
            "POST",
            endpoint,
            content=body,
            headers={**self._auth_headers(), "Content-Type": "application/json"},
        )

        url, checkout_id = parse_checkout_response(response.text)
        self._log.info(
            "Gateway checkout created transaction_id=%s checkout_id=%s", request.transaction_id, checkout_id
        )
        return GatewayCheckout(checkout_id=checkout_id, checkout_url=url, transaction_id=request.transaction_id)

    def get_payment_status(self, transaction_id: str) -> GatewayPaymentStatus | None:
        """
        Ask the gateway for a transaction's status.

        Lookups are advisory: any failure is logged and reported as None.
        """
        s = self.settings
        if not s.api_url:
            return None

        endpoint = f"{s.api_url}{s.status_path.format(transaction_id=transaction_id)}"
        try:
            response = self._send("GET", endpoint, headers=self._auth_headers())
            body = response.json()
        except (GatewayError, ValueError) as exc:
            self._log.warning("Gateway status lookup failed for %s: %s", transaction_id, exc)
            return None

        if not isinstance(body, dict):
            self._log.warning("Gateway status lookup for %s returned a non-object body", transaction_id)
            return None

        raw_status = body.get("status")
        amount = body.get("amount")
        try:
            amount = Decimal(str(amount)) if amount is not None else None
        except ArithmeticError:
            amount = None

        return GatewayPaymentStatus(
            transaction_id=body.get("site_transaction_id") or transaction_id,
            status=TransactionStatus.parse(raw_status),
            raw_status=raw_status if isinstance(raw_status, str) else None,
            status_detail=body.get("status_detail") or body.get("statusDetail"),
            amount=amount,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_api_url(self) -> None:
        if not self.settings.api_url:
            raise GatewayConfigurationError("GATEWAY_API_URL is not configured")

    def _signature(self, transaction_id: str, amount: Decimal) -> str:
        data = f"{transaction_id}{amount}{self.settings.private_key}"
        return hashlib.md5(data.encode("utf-8")).hexdigest()

    def _checkout_payload(self, request: HostedCheckoutRequest) -> dict:
        s = self.settings
        customer = request.customer
        guest_id = customer.phone or customer.document or "guest"
        return {
            "site_transaction_id": request.transaction_id,
            "site_id": s.site_id or None,
            "token": s.public_key,
            "amount": float(request.amount),
            "currency": request.currency,
            "installments": 1,
            "description": request.description,
            "payment_type": "single",
            "sub_payments": [],
            "customer": {
                "id": guest_id,
                "email": customer.email or f"{guest_id}@guest.invalid",
                "name": customer.name or "Web customer",
                "identification": {"type": "dni", "number": customer.document or "00000000"},
            },
            "return_url": request.return_url or f"{s.app_url}/payment/success",
            "cancel_url": request.cancel_url or f"{s.app_url}/payment/cancel",
            "signature": self._signature(request.transaction_id, request.amount),
        }

    def _auth_headers(self) -> dict:
        s = self.settings
        if s.auth_type == AUTH_BASIC:
            if not s.public_key or not s.private_key:
                raise GatewayConfigurationError("GATEWAY_PUBLIC_KEY and GATEWAY_PRIVATE_KEY are required for basic auth")
            token = base64.b64encode(f"{s.public_key}:{s.private_key}".encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {token}"}
        if s.auth_type == AUTH_OAUTH2:
            return {"Authorization": f"Bearer {self._oauth_token()}"}
        if not s.public_key:
            raise GatewayConfigurationError("GATEWAY_PUBLIC_KEY is required for apikey auth")
        return {"apikey": s.public_key}

    def _oauth_token(self) -> str:
        s = self.settings
        if not (s.token_url and s.client_id and s.client_secret):
            raise GatewayConfigurationError("oauth2 requires GATEWAY_TOKEN_URL, GATEWAY_CLIENT_ID and GATEWAY_CLIENT_SECRET")

        response = self._send(
            "POST",
            s.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": s.client_id,
                "client_secret": s.client_secret,
            },
        )
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise GatewayError("Token response did not include access_token")
        return token

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send one request, retrying transient failures only.

        Transient: httpx transport errors (timeouts included) and 5xx.
        4xx raises GatewayRejectedError on the first attempt; any other
        non-2xx (redirects included) raises GatewayError without retrying.
        """
        attempts = self.settings.retry_attempts
        last_error: str | None = None

        for attempt in range(attempts):
            try:
                response = self._http.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                self._log.warning(
                    "Gateway %s %s transport failure (attempt %s/%s): %s",
                    method, url, attempt + 1, attempts, last_error,
                )
            else:
                if response.is_success:
                    return response

                body = trim_for_log(response.text)
                if 400 <= response.status_code < 500:
                    self._log.error("Gateway %s %s rejected: %s - %s", method, url, response.status_code, body)
                    raise GatewayRejectedError(
                        f"Gateway rejected the request ({response.status_code})",
                        status=response.status_code,
                        details={"status": response.status_code, "body": trim_for_log(body, 200)},
                    )
                if response.status_code < 500:
                    self._log.error("Gateway %s %s unexpected status: %s - %s", method, url, response.status_code, body)
                    raise GatewayError(
                        f"Unexpected gateway response ({response.status_code})",
                        details={"status": response.status_code, "body": trim_for_log(body, 200)},
                    )

                last_error = f"HTTP {response.status_code}"
                self._log.warning(
                    "Gateway %s %s server error (attempt %s/%s): %s - %s",
                    method, url, attempt + 1, attempts, response.status_code, body,
                )

            if attempt < attempts - 1:
                self._sleep(self.settings.retry_backoff_seconds * (2 ** attempt))

        self._log.error("Gateway %s %s failed after %s attempts: %s", method, url, attempts, last_error)
        raise GatewayError(
            "Payment gateway unavailable",
            details={"attempts": attempts, "last_error": last_error},
        )


def current_gateway() -> PaymentGatewayClient:
    """The client create_app installed (tests may swap in a stub)."""
    return current_app.extensions["payment_gateway"]
