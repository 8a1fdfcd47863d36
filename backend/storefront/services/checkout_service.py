# Overview: Checkout orchestration: validate, commit the sale atomically, then hand off to the gateway.

"""
Checkout Orchestrator

WHY: A web checkout must never oversell and never half-record a sale, yet
the payment gateway is a third party we cannot enlist in our transaction.

DESIGN:
- Request validation happens before any transaction is opened
  (ValidationError, nothing touched)
- Cash movement, sale, items, stock decrements and payments are written
  in ONE CheckoutUnitOfWork; any failure rolls all of it back
- Stock is decremented with a conditional UPDATE, so the pre-check is
  advisory and the write is authoritative
- The gateway call happens AFTER commit. No database lock is ever held
  across the network round trip. A gateway failure leaves the sale
  committed and PENDING with no PaymentTransaction; the client retries
  via POST /checkout/<sale_id>/payment-link

PRICING:
- Catalog retail_price is authoritative; client unit prices are ignored
- total = subtotal - discount_total
- The client may declare (and pay) more than total (card surcharge);
  the difference is kept in surcharge_total. Less than total is refused.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    BusinessRuleViolation,
    GatewayError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..formatting import to_money, utcnow
from ..models import Product, Sale, SaleItem, SalePayment
from ..models.sales import SALE_PENDING
from ..validation import (
    first_present,
    optional_str,
    parse_id,
    parse_money,
    parse_whole_quantity,
    require_list,
    require_object,
)
from .client_service import ClientInfo, upsert_client
from .concurrency import begin_serialized, run_with_retry
from .payment_gateway import CustomerInfo, HostedCheckoutRequest, PaymentGatewayClient, transaction_id_for
from .payment_ledger import next_attempt, record_pending_transaction
from .register_service import get_open_cash_session, record_sale_movement
from .stock_service import decrement_stock, read_quantity


DELIVERY_PICKUP = 0
DELIVERY_SHIPPING = 1


# =============================================================================
# REQUEST
# =============================================================================

@dataclass(frozen=True)
class CheckoutLine:
    product_id: int
    quantity: int
    unit_price: Decimal | None
    discount: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class CheckoutPaymentLine:
    method: int
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class DeliveryInfo:
    type: int | None
    address: str | None = None
    cost: Decimal | None = None
    note: str | None = None


@dataclass(frozen=True)
class CheckoutRequest:
    lines: tuple[CheckoutLine, ...]
    payments: tuple[CheckoutPaymentLine, ...]
    declared_total: Decimal
    discount_total: Decimal | None = None
    client: ClientInfo | None = None
    email: str | None = None
    delivery: DeliveryInfo | None = None

    def quantities_by_product(self) -> "OrderedDict[int, int]":
        totals: OrderedDict[int, int] = OrderedDict()
        for line in self.lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals


def _parse_line(index: int, raw) -> CheckoutLine:
    item = require_object(raw, f"items[{index}]")
    product_id = first_present(item, "productId", "product_id")
    quantity = first_present(item, "qty", "quantity")
    unit_price = first_present(item, "unitPrice", "unit_price")
    discount = item.get("discount")
    return CheckoutLine(
        product_id=parse_id(f"items[{index}].productId", product_id),
        quantity=parse_whole_quantity(f"items[{index}].qty", quantity),
        unit_price=parse_money(f"items[{index}].unitPrice", unit_price) if unit_price is not None else None,
        discount=parse_money(f"items[{index}].discount", discount) if discount is not None else Decimal("0.00"),
    )


def _parse_payment(index: int, raw) -> CheckoutPaymentLine:
    payment = require_object(raw, f"payments[{index}]")
    method = payment.get("method")
    if isinstance(method, bool) or not isinstance(method, int) or method < 0:
        raise ValidationError(f"payments[{index}].method must be a non-negative integer")
    return CheckoutPaymentLine(
        method=method,
        amount=parse_money(f"payments[{index}].amount", payment.get("amount")),
        reference=optional_str(payment, "reference", max_length=128),
    )


def _parse_client(raw) -> tuple[ClientInfo | None, str | None]:
    if raw is None:
        return None, None
    client = require_object(raw, "client")
    info = ClientInfo(
        full_name=optional_str(client, "fullName") or optional_str(client, "full_name"),
        phone=optional_str(client, "phone", max_length=50),
        document=optional_str(client, "document", max_length=32),
    )
    return info, optional_str(client, "email")


def _parse_delivery(raw) -> DeliveryInfo | None:
    if raw is None:
        return None
    delivery = require_object(raw, "delivery")
    delivery_type = delivery.get("type")
    if delivery_type is not None and delivery_type not in (DELIVERY_PICKUP, DELIVERY_SHIPPING):
        raise ValidationError("delivery.type must be 0 (pickup) or 1 (shipping)")
    cost = delivery.get("cost")
    info = DeliveryInfo(
        type=delivery_type,
        address=optional_str(delivery, "address"),
        cost=parse_money("delivery.cost", cost) if cost is not None else None,
        note=optional_str(delivery, "note"),
    )
    if info.type == DELIVERY_SHIPPING and not info.address:
        raise ValidationError("delivery.address is required for shipping")
    return info


def parse_checkout_request(payload) -> CheckoutRequest:
    """
    Validate a checkout body. Touches no state.

    Raises:
        ValidationError: malformed fields, empty item/payment lists, or
            payments that do not add up to the declared total
    """
    payload = require_object(payload)

    items = require_list(payload, "items")
    if not items:
        raise ValidationError("items must not be empty")
    payments = require_list(payload, "payments")
    if not payments:
        raise ValidationError("payments must not be empty")

    lines = tuple(_parse_line(i, raw) for i, raw in enumerate(items))
    payment_lines = tuple(_parse_payment(i, raw) for i, raw in enumerate(payments))

    declared_total = parse_money("total", payload.get("total"))
    discount_total = first_present(payload, "discountTotal", "discount_total")
    discount_total = parse_money("discountTotal", discount_total) if discount_total is not None else None

    paid = sum((p.amount for p in payment_lines), Decimal("0.00"))
    if paid != declared_total:
        raise ValidationError(
            "Payments do not add up to the total",
            details={"payments_total": str(paid), "total": str(declared_total)},
        )

    client, email = _parse_client(payload.get("client"))

    return CheckoutRequest(
        lines=lines,
        payments=payment_lines,
        declared_total=declared_total,
        discount_total=discount_total,
        client=client,
        email=email,
        delivery=_parse_delivery(payload.get("delivery")),
    )


# =============================================================================
# UNIT OF WORK
# =============================================================================

class CheckoutUnitOfWork:
    """
    Explicit transaction boundary for one checkout commit.

    Entering takes the write lock (BEGIN IMMEDIATE on SQLite). Leaving
    with an exception rolls back everything staged inside; nothing is
    committed unless commit() is called.
    """

    def __init__(self, session):
        self.session = session
        self.committed = False

    def __enter__(self) -> "CheckoutUnitOfWork":
        begin_serialized()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None or not self.committed:
            self.session.rollback()
        return False

    def commit(self) -> None:
        self.session.commit()
        self.committed = True


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal
    surcharge_total: Decimal


@dataclass
class CommittedSale:
    sale: Sale
    stock_levels: "OrderedDict[int, Decimal]" = field(default_factory=OrderedDict)


@dataclass(frozen=True)
class PaymentLink:
    checkout_url: str
    transaction_id: str
    checkout_id: str | None


@dataclass
class CheckoutResult:
    sale: Sale
    stock_levels: "OrderedDict[int, Decimal]"
    link: PaymentLink


def _load_products(uow: CheckoutUnitOfWork, quantities, branch_id: int) -> dict[int, Product]:
    """Products must exist, be sellable and have enough stock (aggregated per product)."""
    products = {}
    insufficient = []
    for product_id, requested in quantities.items():
        product = uow.session.get(Product, product_id)
        if product is None or product.is_deleted:
            raise BusinessRuleViolation("Product not found", details={"product_id": product_id})
        if not product.is_active:
            raise BusinessRuleViolation("Product is inactive", details={"product_id": product_id})
        products[product_id] = product

        on_hand = read_quantity(product_id, branch_id)
        if on_hand < requested:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": str(requested),
                "available": str(on_hand),
            })

    if insufficient:
        raise InsufficientStockError("Insufficient stock", details={"items": insufficient})
    return products


def compute_totals(request: CheckoutRequest, products: dict[int, Product]) -> Totals:
    """
    Price the request from the catalog.

    Raises:
        ValidationError: discounts inconsistent or larger than what they discount
        BusinessRuleViolation: declared total below the computed total
    """
    subtotal = Decimal("0.00")
    line_discounts = Decimal("0.00")
    for line in request.lines:
        gross = to_money(Decimal(products[line.product_id].retail_price) * line.quantity)
        if line.discount > gross:
            raise ValidationError(
                "Line discount exceeds line amount",
                details={"product_id": line.product_id, "discount": str(line.discount), "amount": str(gross)},
            )
        subtotal += gross
        line_discounts += line.discount

    if request.discount_total is None:
        discount_total = line_discounts
    elif line_discounts and request.discount_total != line_discounts:
        raise ValidationError(
            "discountTotal does not match the sum of line discounts",
            details={"discountTotal": str(request.discount_total), "line_discounts": str(line_discounts)},
        )
    else:
        discount_total = request.discount_total

    if discount_total > subtotal:
        raise ValidationError(
            "discountTotal exceeds subtotal",
            details={"discountTotal": str(discount_total), "subtotal": str(subtotal)},
        )

    total = subtotal - discount_total
    if request.declared_total < total:
        raise BusinessRuleViolation(
            "Declared total is below the computed total",
            details={"total": str(request.declared_total), "computed_total": str(total)},
        )

    return Totals(
        subtotal=subtotal,
        discount_total=discount_total,
        total=total,
        surcharge_total=request.declared_total - total,
    )


def _commit_once(request: CheckoutRequest, branch_id: int, seller_user_id: int | None) -> CommittedSale:
    with CheckoutUnitOfWork(db.session) as uow:
        cash_session = get_open_cash_session(branch_id, lock=True)
        if cash_session is None:
            raise BusinessRuleViolation("No open cash session", details={"branch_id": branch_id})

        client = upsert_client(request.client) if request.client else None

        quantities = request.quantities_by_product()
        products = _load_products(uow, quantities, branch_id)
        totals = compute_totals(request, products)

        for line in request.lines:
            catalog_price = Decimal(products[line.product_id].retail_price)
            if line.unit_price is not None and line.unit_price != catalog_price:
                current_app.logger.info(
                    "Checkout price for product %s differs from catalog (%s vs %s), using catalog",
                    line.product_id, line.unit_price, catalog_price,
                )

        movement = record_sale_movement(cash_session, request.declared_total, description="Online sale")

        delivery = request.delivery
        sale = Sale(
            branch_id=branch_id,
            cash_movement_id=movement.id,
            seller_user_id=seller_user_id,
            client_id=client.id if client else None,
            subtotal=totals.subtotal,
            discount_total=totals.discount_total,
            surcharge_total=totals.surcharge_total,
            total=totals.total,
            sold_at=utcnow(),
            payment_status=SALE_PENDING,
            delivery_type=delivery.type if delivery else None,
            delivery_address=delivery.address if delivery else None,
            delivery_cost=delivery.cost if delivery else None,
            delivery_note=delivery.note if delivery else None,
            is_deleted=False,
        )
        uow.session.add(sale)
        uow.session.flush()
        movement.description = f"Online sale #{sale.id}"

        for line in request.lines:
            uow.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=products[line.product_id].retail_price,
                discount=line.discount,
            ))

        stock_levels = OrderedDict()
        for product_id, quantity in quantities.items():
            stock_levels[product_id] = decrement_stock(product_id, branch_id, quantity)

        for payment in request.payments:
            uow.session.add(SalePayment(
                sale_id=sale.id,
                method=payment.method,
                amount=payment.amount,
                reference=payment.reference,
            ))

        uow.commit()

    current_app.logger.info(
        "Sale %s committed: total=%s surcharge=%s items=%s",
        sale.id, totals.total, totals.surcharge_total, len(request.lines),
    )
    return CommittedSale(sale=sale, stock_levels=stock_levels)


def commit_sale(request: CheckoutRequest, *, branch_id: int, seller_user_id: int | None = None) -> CommittedSale:
    """
    Atomically record the sale. Retries only on lock/version conflicts.

    Raises:
        BusinessRuleViolation: no open cash session, missing/inactive product,
            declared total too low
        InsufficientStockError: pre-check or conditional decrement failed
        ValidationError: inconsistent discounts
    """
    return run_with_retry(lambda: _commit_once(request, branch_id, seller_user_id))


# =============================================================================
# GATEWAY HAND-OFF
# =============================================================================

def build_ticket_url(sale: Sale) -> str | None:
    # Ticket rendering is not provided by this service.
    return None


def _customer_for(sale: Sale, email: str | None) -> CustomerInfo:
    client = sale.client
    return CustomerInfo(
        name=client.full_name if client else None,
        email=email,
        phone=client.phone if client else None,
        document=client.document if client else None,
    )


def request_amount(sale: Sale) -> Decimal:
    """Money the client is charged: the declared total (total + surcharge)."""
    return sale.amount_charged


def request_payment_link(sale: Sale, gateway: PaymentGatewayClient, *, email: str | None = None) -> PaymentLink:
    """
    Create a gateway checkout for a committed sale and record it as pending.

    The transaction id is derived from the sale and the attempt number, so
    repeating a hand-off whose previous attempt never produced a row reuses
    the same id.

    Raises:
        GatewayError: the gateway produced no checkout URL (nothing recorded)
        BusinessRuleViolation: a concurrent hand-off recorded this attempt first
    """
    sale_id = sale.id
    currency = current_app.config.get("CURRENCY", "ARS")
    amount = to_money(request_amount(sale))
    hosted = HostedCheckoutRequest(
        sale_id=sale_id,
        transaction_id=transaction_id_for(sale_id, next_attempt(sale_id)),
        amount=amount,
        currency=currency,
        description=f"Sale #{sale_id}",
        customer=_customer_for(sale, email),
    )
    # No transaction stays open across the network round trip
    db.session.commit()

    checkout = gateway.create_checkout(hosted)

    try:
        record_pending_transaction(
            sale_id=sale_id,
            transaction_id=checkout.transaction_id,
            checkout_id=checkout.checkout_id,
            amount=amount,
            currency=currency,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise BusinessRuleViolation(
            "Payment link already recorded for this attempt",
            details={"saleId": sale_id, "transactionId": hosted.transaction_id},
        )

    return PaymentLink(
        checkout_url=checkout.checkout_url,
        transaction_id=checkout.transaction_id,
        checkout_id=checkout.checkout_id,
    )


def _with_sale_id(exc: GatewayError, sale_id: int) -> GatewayError:
    exc.details = {**exc.details, "saleId": sale_id}
    return exc


def start_checkout(payload, gateway: PaymentGatewayClient) -> CheckoutResult:
    """
    Validate, commit, then obtain the gateway redirect URL.

    Raises:
        GatewayError: the sale IS committed; details carry saleId for retry
    """
    request = parse_checkout_request(payload)
    config = current_app.config
    committed = commit_sale(
        request,
        branch_id=config["ONLINE_BRANCH_ID"],
        seller_user_id=config.get("ONLINE_SELLER_USER_ID"),
    )
    sale = committed.sale

    try:
        link = request_payment_link(sale, gateway, email=request.email)
    except GatewayError as exc:
        current_app.logger.error(
            "Sale %s committed without a checkout URL: %s %s", sale.id, exc.message, exc.details
        )
        raise _with_sale_id(exc, sale.id)

    return CheckoutResult(sale=sale, stock_levels=committed.stock_levels, link=link)


def retry_payment_link(sale_id: int, gateway: PaymentGatewayClient, *, email: str | None = None) -> PaymentLink:
    """
    Out-of-band retry of the gateway hand-off for a PENDING sale.

    The attempt number counts recorded transaction rows only. If the
    gateway created a checkout but its response was lost, no row exists and
    every retry resends the same transaction id. A gateway that answers
    duplicate ids with 4xx then leaves the sale without a link until an
    operator resolves it (override the sale status or record the provider's
    checkout by hand).
    """
    sale = db.session.get(Sale, sale_id)
    if sale is None or sale.is_deleted:
        raise NotFoundError("Sale not found", details={"saleId": sale_id})
    if sale.payment_status != SALE_PENDING:
        raise BusinessRuleViolation(
            "Sale is not awaiting payment",
            details={"saleId": sale_id, "status": sale.payment_status},
        )

    try:
        return request_payment_link(sale, gateway, email=email)
    except GatewayError as exc:
        current_app.logger.error("Payment link retry failed for sale %s: %s", sale_id, exc.message)
        raise _with_sale_id(exc, sale_id)
