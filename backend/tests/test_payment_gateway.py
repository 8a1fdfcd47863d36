"""
Payment gateway client tests.

HTTP is served by httpx.MockTransport; no network access.
"""

import hashlib
import json
from decimal import Decimal

import httpx
import pytest

from storefront.errors import GatewayConfigurationError, GatewayError, GatewayRejectedError
from storefront.models import TransactionStatus
from storefront.services.payment_gateway import (
    CustomerInfo,
    GatewaySettings,
    HostedCheckoutRequest,
    PaymentGatewayClient,
    TransportTrust,
    parse_checkout_response,
    transaction_id_for,
)


def _settings(**overrides):
    values = dict(
        api_url="https://gateway.test",
        public_key="pk_test",
        private_key="sk_test",
        site_id="site-1",
        environment="test",
        retry_attempts=3,
        retry_backoff_seconds=0.5,
        app_url="https://shop.test",
    )
    values.update(overrides)
    return GatewaySettings(**values)


def _request(transaction_id="TXN-10-1", amount="200.00"):
    return HostedCheckoutRequest(
        sale_id=10,
        transaction_id=transaction_id,
        amount=Decimal(amount),
        currency="ARS",
        description="Sale #10",
        customer=CustomerInfo(name="Ana", phone="111", document="30111222"),
    )


class Recorder:
    """MockTransport handler that replays scripted answers and records requests."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def _client(handler, sleeps=None, **overrides):
    return PaymentGatewayClient(
        _settings(**overrides),
        transport=httpx.MockTransport(handler),
        sleep=(sleeps.append if sleeps is not None else (lambda _: None)),
    )


# =============================================================================
# TRANSACTION IDS AND TRUST
# =============================================================================


class TestTransactionIds:

    def test_deterministic_per_sale_and_attempt(self):
        assert transaction_id_for(42, 1) == transaction_id_for(42, 1) == "TXN-42-1"
        assert transaction_id_for(42, 2) == "TXN-42-2"
        assert transaction_id_for(43, 1) != transaction_id_for(42, 1)

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            transaction_id_for(42, 0)


class TestTransportTrust:

    def test_production_verifies(self):
        assert TransportTrust.from_environment("production").verify is True

    @pytest.mark.parametrize("environment", ["sandbox", "test", " Sandbox "])
    def test_sandbox_and_test_skip_verification(self, environment):
        trust = TransportTrust.from_environment(environment)
        assert trust.verify is False
        assert not trust.is_strict

    def test_unknown_environment_is_a_configuration_error(self):
        with pytest.raises(GatewayConfigurationError):
            TransportTrust.from_environment("staging")

    def test_from_config(self):
        trust = TransportTrust.from_config({"GATEWAY_ENVIRONMENT": "production"})
        assert trust.is_strict

    def test_client_resolves_trust_once(self):
        client = _client(Recorder(), environment="sandbox")
        assert client.trust.environment == "sandbox"

    def test_unknown_auth_type(self):
        with pytest.raises(GatewayConfigurationError):
            GatewaySettings.from_config({"GATEWAY_AUTH_TYPE": "kerberos"})


# =============================================================================
# RESPONSE PARSING
# =============================================================================


class TestParseCheckoutResponse:

    @pytest.mark.parametrize(
        "body,expected_url,expected_id",
        [
            ("https://pay.test/c/1", "https://pay.test/c/1", None),
            ('"https://pay.test/c/2"', "https://pay.test/c/2", None),
            ('{"checkout_url": "https://pay.test/c/3", "id": "chk_3"}', "https://pay.test/c/3", "chk_3"),
            ('{"payment_url": "https://pay.test/c/4"}', "https://pay.test/c/4", None),
            ('{"data": {"url": "https://pay.test/c/5", "id": 55}}', "https://pay.test/c/5", "55"),
            ('{"links": {"self": "https://pay.test/c/6"}, "checkout_id": "chk_6"}', "https://pay.test/c/6", "chk_6"),
            ('{"session": {"checkout_url": "https://pay.test/c/7"}}', "https://pay.test/c/7", None),
        ],
    )
    def test_accepted_shapes(self, body, expected_url, expected_id):
        assert parse_checkout_response(body) == (expected_url, expected_id)

    def test_top_level_keys_win_over_nested(self):
        body = json.dumps({"data": {"url": "https://pay.test/nested"}, "redirect_url": "https://pay.test/top"})
        assert parse_checkout_response(body)[0] == "https://pay.test/top"

    def test_non_url_candidate_falls_through(self):
        body = json.dumps({"url": "pending", "links": {"checkout": "https://pay.test/c/8"}})
        assert parse_checkout_response(body)[0] == "https://pay.test/c/8"

    @pytest.mark.parametrize(
        "body",
        ['{"status": "ok"}', "<html>oops</html>", "", "[1, 2]", '{"url": ""}', '{"url": "abc"}',
         '{"data": {"checkout_url": "/c/1"}}'],
    )
    def test_no_url_is_a_gateway_error(self, body):
        with pytest.raises(GatewayError):
            parse_checkout_response(body)


# =============================================================================
# CHECKOUT CREATION
# =============================================================================


class TestCreateCheckout:

    def test_request_shape_and_apikey_auth(self):
        handler = Recorder(httpx.Response(200, json={"checkout_url": "https://pay.test/c/1", "id": "chk_1"}))
        checkout = _client(handler).create_checkout(_request())

        assert checkout.checkout_url == "https://pay.test/c/1"
        assert checkout.checkout_id == "chk_1"
        assert checkout.transaction_id == "TXN-10-1"

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://gateway.test/v1/checkouts"
        assert sent.headers["apikey"] == "pk_test"

        payload = json.loads(sent.content)
        assert payload["site_transaction_id"] == "TXN-10-1"
        assert payload["amount"] == 200.0
        assert payload["currency"] == "ARS"
        assert payload["installments"] == 1
        assert payload["customer"]["identification"]["number"] == "30111222"
        assert payload["return_url"] == "https://shop.test/payment/success"
        assert payload["signature"] == hashlib.md5(b"TXN-10-1200.00sk_test").hexdigest()

    def test_basic_auth(self):
        handler = Recorder(httpx.Response(200, text="https://pay.test/c/1"))
        _client(handler, auth_type="basic").create_checkout(_request())
        assert handler.requests[0].headers["Authorization"].startswith("Basic ")

    def test_oauth2_fetches_token(self):
        handler = Recorder(
            httpx.Response(200, json={"access_token": "tok-123"}),
            httpx.Response(200, json={"url": "https://pay.test/c/1"}),
        )
        client = _client(
            handler,
            auth_type="oauth2",
            token_url="https://auth.test/token",
            client_id="cid",
            client_secret="secret",
        )
        client.create_checkout(_request())

        token_request, checkout_request = handler.requests
        assert str(token_request.url) == "https://auth.test/token"
        assert b"grant_type=client_credentials" in token_request.content
        assert checkout_request.headers["Authorization"] == "Bearer tok-123"

    def test_missing_api_url(self):
        with pytest.raises(GatewayConfigurationError):
            _client(Recorder(), api_url="").create_checkout(_request())

    def test_missing_public_key(self):
        with pytest.raises(GatewayConfigurationError):
            _client(Recorder(), public_key="").create_checkout(_request())


class TestRetries:

    def test_server_errors_are_retried_with_doubling_backoff(self):
        sleeps = []
        handler = Recorder(
            httpx.Response(503, text="busy"),
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, json={"url": "https://pay.test/c/1"}),
        )
        checkout = _client(handler, sleeps).create_checkout(_request())

        assert checkout.checkout_url == "https://pay.test/c/1"
        assert len(handler.requests) == 3
        assert sleeps == [0.5, 1.0]

    def test_transport_errors_exhaust_retries(self):
        sleeps = []
        handler = Recorder(
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            httpx.ConnectError("refused"),
        )
        with pytest.raises(GatewayError) as excinfo:
            _client(handler, sleeps).create_checkout(_request())

        assert not isinstance(excinfo.value, GatewayRejectedError)
        assert excinfo.value.details["attempts"] == 3
        assert len(handler.requests) == 3
        assert sleeps == [0.5, 1.0]

    def test_client_errors_are_not_retried(self):
        sleeps = []
        handler = Recorder(httpx.Response(422, json={"error": "invalid amount"}))
        with pytest.raises(GatewayRejectedError) as excinfo:
            _client(handler, sleeps).create_checkout(_request())

        assert excinfo.value.status == 422
        assert len(handler.requests) == 1
        assert sleeps == []

    def test_redirects_are_not_retried(self):
        sleeps = []
        handler = Recorder(httpx.Response(302, headers={"Location": "https://gateway.test/login"}))
        with pytest.raises(GatewayError) as excinfo:
            _client(handler, sleeps).create_checkout(_request())

        assert not isinstance(excinfo.value, GatewayRejectedError)
        assert excinfo.value.details["status"] == 302
        assert len(handler.requests) == 1
        assert sleeps == []

    def test_unparsable_success_is_not_retried(self):
        handler = Recorder(httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(GatewayError):
            _client(handler).create_checkout(_request())
        assert len(handler.requests) == 1


# =============================================================================
# STATUS LOOKUP
# =============================================================================


class TestPaymentStatus:

    def test_status_is_parsed(self):
        handler = Recorder(httpx.Response(200, json={"status": "APPROVED", "status_detail": "accredited", "amount": 200}))
        status = _client(handler).get_payment_status("TXN-10-1")

        assert str(handler.requests[0].url) == "https://gateway.test/v1/payments/TXN-10-1"
        assert status.status == TransactionStatus.APPROVED
        assert status.status_detail == "accredited"
        assert status.amount == Decimal("200")

    def test_unknown_vocabulary(self):
        handler = Recorder(httpx.Response(200, json={"status": "in_mediation"}))
        assert _client(handler).get_payment_status("TXN-10-1").status == TransactionStatus.UNKNOWN

    def test_failures_return_none(self):
        handler = Recorder(httpx.Response(404, json={"error": "not found"}))
        assert _client(handler).get_payment_status("TXN-10-1") is None
