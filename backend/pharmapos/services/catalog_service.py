# Overview: Service-layer operations for products, discounts and customers.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from pharmapos.extensions import db
from pharmapos.errors import NotFound, ValidationError
from pharmapos.models import Customer, Discount, Product
from pharmapos.services.concurrency import lock_for_update, run_with_retry
from pharmapos.time_utils import utcnow


DISCOUNT_PERCENT = "PERCENT"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_TYPES = (DISCOUNT_PERCENT, DISCOUNT_FIXED)

CENTS = Decimal("0.01")


def get_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if not product:
        raise NotFound(f"Product {product_id} not found")
    return product


def list_products(tenant_id: int, *, search: str | None = None, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product).filter(Product.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.name.ilike(like), Product.ean.ilike(like)))
    return query.order_by(Product.name.asc()).all()


def create_product(
    tenant_id: int,
    *,
    name: str,
    price: Decimal | None,
    ean: str | None = None,
    requires_prescription: bool = False,
) -> Product:
    def _op():
        if ean and db.session.query(Product).filter_by(tenant_id=tenant_id, ean=ean).first():
            raise ValidationError(f"Product with EAN {ean} already exists")
        product = Product(
            tenant_id=tenant_id,
            name=name,
            ean=ean,
            price=price,
            requires_prescription=bool(requires_prescription),
        )
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(tenant_id: int, product_id: int, **changes) -> Product:
    """Apply the given column changes (name, ean, price, requires_prescription, is_active)."""
    allowed = {"name", "ean", "price", "requires_prescription", "is_active"}

    def _op():
        product = lock_for_update(
            db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
        ).first()
        if not product:
            raise NotFound(f"Product {product_id} not found")

        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        new_ean = changes.get("ean")
        if new_ean and new_ean != product.ean:
            clash = db.session.query(Product).filter_by(tenant_id=tenant_id, ean=new_ean).first()
            if clash:
                raise ValidationError(f"Product with EAN {new_ean} already exists")

        for key, value in changes.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def create_discount(
    tenant_id: int,
    product_id: int,
    *,
    type: str,
    value: Decimal,
    starts_at=None,
    ends_at=None,
) -> Discount:
    def _op():
        product = get_product(tenant_id, product_id)
        if type not in DISCOUNT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(DISCOUNT_TYPES)}")
        if value <= 0:
            raise ValidationError("value must be positive")
        if type == DISCOUNT_PERCENT and value > 100:
            raise ValidationError("Percent discount cannot exceed 100")
        start = starts_at or utcnow()
        if ends_at is not None and ends_at <= start:
            raise ValidationError("endsAt must be after startsAt")

        discount = Discount(product_id=product.id, type=type, value=value, starts_at=start, ends_at=ends_at)
        db.session.add(discount)
        db.session.commit()
        return discount

    return run_with_retry(_op)


def list_discounts(tenant_id: int, *, product_id: int | None = None, active_only: bool = False) -> list[Discount]:
    """
    Discounts of the tenant, newest first.

    active_only keeps discounts that are switched on and not yet ended;
    discounts scheduled for later still count as active.
    """
    query = (
        db.session.query(Discount)
        .join(Product, Product.id == Discount.product_id)
        .filter(Product.tenant_id == tenant_id)
    )
    if product_id is not None:
        query = query.filter(Discount.product_id == product_id)
    if active_only:
        now = utcnow()
        query = query.filter(
            Discount.is_active.is_(True),
            db.or_(Discount.ends_at.is_(None), Discount.ends_at >= now),
        )
    return query.order_by(Discount.created_at.desc(), Discount.id.desc()).all()


def update_discount(tenant_id: int, discount_id: int, **changes) -> Discount:
    """Apply changes to type, value, starts_at, ends_at, is_active; the result is re-validated."""
    allowed = {"type", "value", "starts_at", "ends_at", "is_active"}

    def _op():
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        discount = lock_for_update(
            db.session.query(Discount)
            .join(Product, Product.id == Discount.product_id)
            .filter(Discount.id == discount_id, Product.tenant_id == tenant_id)
        ).first()
        if not discount:
            raise NotFound(f"Discount {discount_id} not found")

        type_ = changes.get("type", discount.type)
        value = Decimal(changes.get("value", discount.value))
        starts_at = changes.get("starts_at") or discount.starts_at
        ends_at = changes["ends_at"] if "ends_at" in changes else discount.ends_at
        if type_ not in DISCOUNT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(DISCOUNT_TYPES)}")
        if value <= 0:
            raise ValidationError("value must be positive")
        if type_ == DISCOUNT_PERCENT and value > 100:
            raise ValidationError("Percent discount cannot exceed 100")
        if ends_at is not None and ends_at <= starts_at:
            raise ValidationError("endsAt must be after startsAt")

        discount.type = type_
        discount.value = value
        discount.starts_at = starts_at
        discount.ends_at = ends_at
        if "is_active" in changes:
            discount.is_active = bool(changes["is_active"])
        db.session.commit()
        return discount

    return run_with_retry(_op)


def deactivate_discount(tenant_id: int, discount_id: int) -> Discount:
    """Switch a discount off. The row stays for sale history."""
    return update_discount(tenant_id, discount_id, is_active=False)


def get_active_discount(product_id: int, at=None) -> Discount | None:
    """Newest active discount whose window contains `at` (default: now)."""
    now = at or utcnow()
    return (
        db.session.query(Discount)
        .filter(
            Discount.product_id == product_id,
            Discount.is_active.is_(True),
            Discount.starts_at <= now,
            db.or_(Discount.ends_at.is_(None), Discount.ends_at >= now),
        )
        .order_by(Discount.created_at.desc(), Discount.id.desc())
        .first()
    )


def get_effective_price(product: Product, at=None) -> tuple[Decimal, Decimal | None]:
    """
    Unit price after the active discount.

    Returns (price_unit, price_original); price_original is None when no
    discount applies. Prices never go below zero.
    """
    if product.price is None:
        raise ValidationError(f"Product {product.id} has no price")
    base = Decimal(product.price).quantize(CENTS)

    discount = get_active_discount(product.id, at)
    if not discount:
        return base, None

    value = Decimal(discount.value)
    if discount.type == DISCOUNT_PERCENT:
        price = base - (base * value / Decimal(100))
    else:
        price = base - value
    price = max(Decimal(0), price).quantize(CENTS, rounding=ROUND_HALF_UP)
    return price, base


def get_customer(tenant_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id).first()
    if not customer:
        raise NotFound(f"Customer {customer_id} not found")
    return customer


def list_customers(tenant_id: int, *, search: str | None = None, limit: int = 100) -> list[Customer]:
    query = db.session.query(Customer).filter(Customer.tenant_id == tenant_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Customer.name.ilike(like), Customer.document.ilike(like)))
    return query.order_by(Customer.name.asc()).limit(limit).all()


def create_customer(tenant_id: int, *, name: str, document: str | None = None, phone: str | None = None) -> Customer:
    def _op():
        customer = Customer(tenant_id=tenant_id, name=name, document=document, phone=phone)
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)
