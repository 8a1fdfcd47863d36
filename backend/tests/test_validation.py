from decimal import Decimal

import pytest

from storefront.errors import ValidationError
from storefront.services.checkout_service import parse_checkout_request
from storefront.validation import parse_money, parse_stock_delta, parse_whole_quantity


class TestParseMoney:

    @pytest.mark.parametrize(
        "raw,expected",
        [(200, "200.00"), ("199.99", "199.99"), (0.1, "0.10"), ("  5 ", "5.00"), (0, "0.00")],
    )
    def test_accepted(self, raw, expected):
        assert parse_money("amount", raw) == Decimal(expected)

    @pytest.mark.parametrize("raw", [-1, "1.001", "1e3", "NaN", "Infinity", True, None, "", "abc", [1]])
    def test_rejected(self, raw):
        with pytest.raises(ValidationError):
            parse_money("amount", raw)

    def test_zero_can_be_refused(self):
        with pytest.raises(ValidationError):
            parse_money("amount", 0, allow_zero=False)


class TestQuantities:

    @pytest.mark.parametrize("raw", [2, "2", 2.0, "2.000"])
    def test_whole_quantities(self, raw):
        assert parse_whole_quantity("qty", raw) == 2

    @pytest.mark.parametrize("raw", [2.5, "0.5", 0, -1, "1e2", False])
    def test_rejected_quantities(self, raw):
        with pytest.raises(ValidationError):
            parse_whole_quantity("qty", raw)

    def test_stock_delta_allows_fractions(self):
        assert parse_stock_delta("delta", "-0.125") == Decimal("-0.125")

    def test_stock_delta_precision(self):
        with pytest.raises(ValidationError):
            parse_stock_delta("delta", "0.0001")


class TestParseCheckoutRequest:

    def _body(self, **overrides):
        body = {
            "items": [{"productId": 5, "qty": 2, "unitPrice": 100}],
            "payments": [{"method": 1, "amount": 200}],
            "total": 200,
        }
        body.update(overrides)
        return body

    def test_parses_aliases(self):
        request = parse_checkout_request(self._body(
            items=[{"product_id": "5", "quantity": "2", "unit_price": "100.00", "discount": "10"}],
            discount_total="10",
        ))
        line = request.lines[0]
        assert (line.product_id, line.quantity, line.unit_price, line.discount) == (5, 2, Decimal("100.00"), Decimal("10.00"))
        assert request.discount_total == Decimal("10.00")

    def test_payment_sum_mismatch(self):
        with pytest.raises(ValidationError) as excinfo:
            parse_checkout_request(self._body(payments=[{"method": 1, "amount": 150}]))
        assert excinfo.value.details == {"payments_total": "150.00", "total": "200.00"}

    @pytest.mark.parametrize("method", [-1, "card", True, None])
    def test_invalid_payment_method(self, method):
        with pytest.raises(ValidationError):
            parse_checkout_request(self._body(payments=[{"method": method, "amount": 200}]))

    def test_shipping_requires_address(self):
        with pytest.raises(ValidationError):
            parse_checkout_request(self._body(delivery={"type": 1}))

    @pytest.mark.parametrize("payload", [None, [], "x", {"items": "nope"}])
    def test_malformed_payloads(self, payload):
        with pytest.raises(ValidationError):
            parse_checkout_request(payload)

    def test_client_fields(self):
        request = parse_checkout_request(self._body(
            client={"fullName": "Ana Diaz", "phone": "111", "document": "30111222", "email": "ana@example.com"},
        ))
        assert request.client.document == "30111222"
        assert request.email == "ana@example.com"
