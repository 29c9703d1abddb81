# backend/pharmapos/services/sales_service.py
"""
Sales service: basket building and settlement.

LIFECYCLE:
- DRAFT / CONFIRMED: items can be added, changed, removed; availability is
  checked against reservation-aware stock of the sale's store
- PAID: stock consumed FEFO, COGS stored per line, payment and cash RECEIPT written
- CANCELED: from DRAFT or CONFIRMED (reason required from CONFIRMED)

SETTLEMENT (pay_sale) is one transaction under the stock locks of every
product in the basket. The whole basket, aggregated per product, is checked
before the first lot is touched, so a shortfall on any line writes nothing.
"""
from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import (
    ConcurrentModification,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from pharmapos.models import Payment, Sale, SaleItem
from pharmapos.models.inventory import MOVEMENT_OUT
from pharmapos.permissions import Actor
from pharmapos.services import (
    cash_service,
    catalog_service,
    fefo_service,
    inventory_service,
    store_service,
)
from pharmapos.services.audit_service import append_audit_event
from pharmapos.services.concurrency import lock_for_update, run_atomic
from pharmapos.services.document_service import next_document_number
from pharmapos.time_utils import utcnow


SALE_STATUS_DRAFT = "DRAFT"
SALE_STATUS_CONFIRMED = "CONFIRMED"
SALE_STATUS_PAID = "PAID"
SALE_STATUS_CANCELED = "CANCELED"

OPEN_STATUSES = (SALE_STATUS_DRAFT, SALE_STATUS_CONFIRMED)

PAYMENT_METHODS = ("CASH", "PIX", "CREDIT_CARD", "DEBIT_CARD")

CENTS = Decimal("0.01")

PAY_ATTEMPTS = 3


def _get_sale(actor: Actor, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, tenant_id=actor.tenant_id)
    sale = (lock_for_update(query) if lock else query).first()
    if not sale:
        raise NotFound(f"Sale {sale_id} not found")
    if not actor.is_admin and sale.store_id != actor.store_id:
        raise Forbidden("Sale belongs to another store")
    return sale


def get_sale(actor: Actor, sale_id: int) -> Sale:
    return _get_sale(actor, sale_id)


def list_sales(actor: Actor, *, status: str | None = None, limit: int = 50) -> list[Sale]:
    query = db.session.query(Sale).filter(Sale.tenant_id == actor.tenant_id)
    if actor.store_id is not None:
        query = query.filter(Sale.store_id == actor.store_id)
    if status:
        query = query.filter(Sale.status == status)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(max(1, min(limit, 200))).all()


def list_customer_purchases(tenant_id: int, customer_id: int, *, limit: int | None = None) -> list[Sale]:
    """Paid sales of a customer across every store of the tenant, newest first."""
    query = (
        db.session.query(Sale)
        .filter(Sale.tenant_id == tenant_id, Sale.customer_id == customer_id, Sale.status == SALE_STATUS_PAID)
        .order_by(Sale.paid_at.desc(), Sale.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def _product_quantity_in_sale(sale: Sale, product_id: int, *, exclude_item_id: int | None = None) -> int:
    return sum(
        item.quantity for item in sale.items
        if item.product_id == product_id and item.id != exclude_item_id
    )


def _recalculate_totals(sale: Sale) -> None:
    total = Decimal("0")
    discount = Decimal("0")
    for item in sale.items:
        total += Decimal(item.subtotal)
        if item.price_original is not None:
            discount += (Decimal(item.price_original) - Decimal(item.price_unit)) * item.quantity
    sale.total = total.quantize(CENTS)
    sale.discount = discount.quantize(CENTS)


def create_sale(actor: Actor, *, customer_id: int | None = None) -> Sale:
    """New DRAFT sale in the actor's current store with the next 6-digit number."""
    if actor.store_id is None:
        raise ValidationError("A current store is required to create a sale")
    store_id = actor.store_id
    store_service.get_active_store(actor.tenant_id, store_id)
    if customer_id is not None:
        catalog_service.get_customer(actor.tenant_id, customer_id)

    def _op():
        number = next_document_number(store_id=store_id, document_type="SALE", pad=6)
        sale = Sale(
            tenant_id=actor.tenant_id,
            store_id=store_id,
            number=number,
            status=SALE_STATUS_DRAFT,
            seller_id=actor.id,
            customer_id=customer_id,
            total=Decimal("0"),
            discount=Decimal("0"),
        )
        db.session.add(sale)
        return sale

    sale = run_atomic(_op)
    current_app.logger.info("sale.created id=%s number=%s store=%s", sale.id, sale.number, store_id)
    return sale


def add_item(actor: Actor, sale_id: int, *, product_id: int, quantity: int) -> Sale:
    """
    Add a product to an open sale.

    The same product twice is merged into one line. Availability must cover
    the sale's whole quantity of that product. Unit price is the list price
    after the newest active discount.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status not in OPEN_STATUSES:
            raise InvalidStateTransition("sale", sale.id, sale.status, "add items to")

        product = catalog_service.get_product(actor.tenant_id, product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product_id} is inactive")

        wanted = _product_quantity_in_sale(sale, product_id) + quantity
        inventory_service.assert_available(sale.store_id, product_id, wanted)

        price_unit, price_original = catalog_service.get_effective_price(product)

        item = next((i for i in sale.items if i.product_id == product_id), None)
        if item is None:
            item = SaleItem(sale_id=sale.id, product_id=product_id, quantity=0)
            sale.items.append(item)
        item.quantity += quantity
        item.price_unit = price_unit
        item.price_original = price_original
        item.subtotal = (price_unit * item.quantity).quantize(CENTS)

        _recalculate_totals(sale)
        return sale

    return run_atomic(_op)


def update_item_quantity(actor: Actor, sale_id: int, item_id: int, *, quantity: int) -> Sale:
    """Set a line's quantity; availability is only re-checked when it grows."""
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status not in OPEN_STATUSES:
            raise InvalidStateTransition("sale", sale.id, sale.status, "change items of")

        item = next((i for i in sale.items if i.id == item_id), None)
        if item is None:
            raise NotFound(f"Item {item_id} not found in sale {sale_id}")

        if quantity > item.quantity:
            wanted = _product_quantity_in_sale(sale, item.product_id, exclude_item_id=item.id) + quantity
            inventory_service.assert_available(sale.store_id, item.product_id, wanted)

        item.quantity = quantity
        item.subtotal = (Decimal(item.price_unit) * quantity).quantize(CENTS)
        _recalculate_totals(sale)
        return sale

    return run_atomic(_op)


def remove_item(actor: Actor, sale_id: int, item_id: int) -> Sale:
    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status not in OPEN_STATUSES:
            raise InvalidStateTransition("sale", sale.id, sale.status, "remove items from")

        item = next((i for i in sale.items if i.id == item_id), None)
        if item is None:
            raise NotFound(f"Item {item_id} not found in sale {sale_id}")

        sale.items.remove(item)
        db.session.delete(item)
        _recalculate_totals(sale)
        return sale

    return run_atomic(_op)


def confirm_sale(actor: Actor, sale_id: int) -> Sale:
    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status != SALE_STATUS_DRAFT:
            raise InvalidStateTransition("sale", sale.id, sale.status, "confirm")
        if not sale.items:
            raise ValidationError("Cannot confirm a sale without items")
        sale.status = SALE_STATUS_CONFIRMED
        return sale

    return run_atomic(_op)


def cancel_sale(actor: Actor, sale_id: int, reason: str | None = None) -> Sale:
    """DRAFT | CONFIRMED -> CANCELED. Paid sales are never cancelled here."""
    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status not in OPEN_STATUSES:
            raise InvalidStateTransition("sale", sale.id, sale.status, "cancel")
        if sale.status == SALE_STATUS_CONFIRMED and not (reason and reason.strip()):
            raise ValidationError("reason is required to cancel a confirmed sale")

        sale.status = SALE_STATUS_CANCELED
        sale.cancel_reason = reason.strip() if reason else None
        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=sale.store_id,
            event_type="sale.canceled",
            entity_type="sale",
            entity_id=sale.id,
            actor_user_id=actor.id,
            note=sale.cancel_reason,
        )
        return sale

    sale = run_atomic(_op)
    current_app.logger.info("sale.canceled id=%s", sale.id)
    return sale


def delete_draft(actor: Actor, sale_id: int) -> None:
    """Permanently remove a DRAFT sale and its lines."""
    def _op():
        sale = _get_sale(actor, sale_id, lock=True)
        if sale.status != SALE_STATUS_DRAFT:
            raise InvalidStateTransition("sale", sale.id, sale.status, "delete")
        for item in list(sale.items):
            db.session.delete(item)
        db.session.delete(sale)

    run_atomic(_op)


def _stock_keys(sale: Sale) -> list[tuple[int, int]]:
    """(store, product) pairs a sale's settlement consumes from."""
    return sorted({(sale.store_id, item.product_id) for item in sale.items})


def _split_cost(total_cost: Decimal, lines: list[SaleItem]) -> list[Decimal]:
    """Share one product's consumed cost across its lines, by quantity. Shares add up to the rounded total."""
    total = total_cost.quantize(CENTS, rounding=ROUND_HALF_UP)
    quantity = sum(item.quantity for item in lines)
    shares = []
    for item in lines[:-1]:
        shares.append((total_cost * item.quantity / quantity).quantize(CENTS, rounding=ROUND_HALF_UP))
    shares.append(total - sum(shares, Decimal("0")))
    return shares


def pay_sale(actor: Actor, sale_id: int, *, method: str) -> Sale:
    """
    Settle a sale.

    Steps, in one transaction under the basket's stock locks:
    1. Sale must be DRAFT or CONFIRMED, with items
    2. An open cash session must exist for the sale's store
    3. Availability (lots minus approved reservations) must cover every
       product of the basket, aggregated per product
    4. FEFO consumption per product with OUT movements tagged with the sale;
       weighted unit cost stored on each line as cogs_unit, the cost of the
       lots actually taken as cogs_total
    5. Payment + RECEIPT cash movement for the sale total; status PAID

    The locks are chosen from an unlocked read of the basket. If the locked
    reload holds a product outside them, the attempt is abandoned and the
    locks are chosen again.

    Raises:
        NoOpenCashSession, InsufficientStock, InvalidStateTransition,
        ValidationError, ConcurrentModification
    """
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"method must be one of: {', '.join(PAYMENT_METHODS)}")

    def _op(keys):
        locked = _get_sale(actor, sale_id, lock=True)
        db.session.expire(locked, ["items"])
        if locked.status not in OPEN_STATUSES:
            raise InvalidStateTransition("sale", locked.id, locked.status, "pay")
        if not locked.items:
            raise ValidationError("Cannot pay a sale without items")

        unlocked = set(_stock_keys(locked)) - set(keys)
        if unlocked:
            raise ConcurrentModification(
                f"Sale {locked.id} items changed while its payment was being prepared",
                details={"saleId": locked.id, "productIds": sorted(p for _, p in unlocked)},
            )

        store_id = locked.store_id
        session = cash_service.require_open_session(store_id)

        basket: OrderedDict[int, list[SaleItem]] = OrderedDict()
        for item in locked.items:
            basket.setdefault(item.product_id, []).append(item)

        for product_id, lines in basket.items():
            inventory_service.assert_available(store_id, product_id, sum(i.quantity for i in lines))

        touched = []
        for product_id, lines in basket.items():
            result = fefo_service.consume_fefo(
                store_id,
                product_id,
                sum(i.quantity for i in lines),
                MOVEMENT_OUT,
                actor_id=actor.id,
                reason=f"Sale #{locked.number}",
                sale_id=locked.id,
            )
            touched.extend(result.lots)
            for item, cost in zip(lines, _split_cost(result.total_cost, lines)):
                item.cogs_unit = result.weighted_cost
                item.cogs_total = cost

        inventory_service.assert_lots_balanced(touched)

        amount = Decimal(locked.total).quantize(CENTS)
        locked.payments.append(Payment(method=method, amount=amount, created_by_id=actor.id))
        cash_service.record_receipt(
            session,
            method=method,
            amount=amount,
            reason=f"Sale #{locked.number}",
            ref_type="SALE",
            ref_id=locked.id,
            actor_id=actor.id,
        )

        locked.status = SALE_STATUS_PAID
        locked.paid_at = utcnow()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=store_id,
            event_type="sale.paid",
            entity_type="sale",
            entity_id=locked.id,
            actor_user_id=actor.id,
            payload={"method": method, "amount": float(amount)},
        )
        return locked

    for attempt in range(1, PAY_ATTEMPTS + 1):
        keys = _stock_keys(_get_sale(actor, sale_id))
        try:
            sale = run_atomic(lambda: _op(keys), stock_keys=keys)
            break
        except ConcurrentModification:
            if attempt >= PAY_ATTEMPTS:
                raise
            current_app.logger.warning("sale.pay_basket_changed id=%s attempt=%s/%s", sale_id, attempt, PAY_ATTEMPTS)
            db.session.expire_all()

    current_app.logger.info(
        "sale.paid id=%s number=%s store=%s total=%s", sale.id, sale.number, sale.store_id, sale.total
    )
    return sale
