# Overview: Service-layer operations for tenants, stores and store membership.

from __future__ import annotations

from pharmapos.extensions import db
from pharmapos.errors import Forbidden, NotFound, ValidationError
from pharmapos.models import Store, StoreUser, Tenant, User
from pharmapos.permissions import ROLE_ADMIN
from pharmapos.services.concurrency import run_with_retry


def get_store(tenant_id: int, store_id: int) -> Store:
    """Store of the tenant, or NotFound. Stores of other tenants do not exist."""
    store = db.session.query(Store).filter_by(id=store_id, tenant_id=tenant_id).first()
    if not store:
        raise NotFound(f"Store {store_id} not found")
    return store


def get_active_store(tenant_id: int, store_id: int) -> Store:
    store = get_store(tenant_id, store_id)
    if not store.is_active:
        raise ValidationError(f"Store {store_id} is inactive")
    return store


def list_stores_for_user(user: User) -> list[Store]:
    """
    Stores visible to a user.

    Admins see every active store of their tenant; everyone else sees the
    stores they are linked to through StoreUser.
    """
    query = db.session.query(Store).filter(Store.tenant_id == user.tenant_id, Store.is_active.is_(True))
    if user.role != ROLE_ADMIN:
        query = query.join(StoreUser, StoreUser.store_id == Store.id).filter(StoreUser.user_id == user.id)
    return query.order_by(Store.name.asc()).all()


def resolve_store_id(user: User, requested_store_id: int | None) -> int | None:
    """
    Current store of a request.

    1. Explicit X-Store-Id: must belong to the tenant and, for non-admins,
       be one of the user's stores.
    2. Otherwise the user's default StoreUser link, then any link.
    3. Admin fallback: the tenant's default store, then its first store.
    """
    if requested_store_id is not None:
        store = db.session.query(Store).filter_by(
            id=requested_store_id, tenant_id=user.tenant_id, is_active=True
        ).first()
        if not store:
            raise Forbidden("Store not accessible")
        if user.role != ROLE_ADMIN:
            link = db.session.query(StoreUser).filter_by(user_id=user.id, store_id=store.id).first()
            if not link:
                raise Forbidden("Store not accessible")
        return store.id

    link = (
        db.session.query(StoreUser)
        .join(Store, Store.id == StoreUser.store_id)
        .filter(StoreUser.user_id == user.id, Store.is_active.is_(True))
        .order_by(StoreUser.is_default.desc(), StoreUser.id.asc())
        .first()
    )
    if link:
        return link.store_id

    if user.role == ROLE_ADMIN:
        store = (
            db.session.query(Store)
            .filter(Store.tenant_id == user.tenant_id, Store.is_active.is_(True))
            .order_by(Store.is_default.desc(), Store.id.asc())
            .first()
        )
        return store.id if store else None

    return None


def create_tenant(name: str, code: str | None = None) -> Tenant:
    def _op():
        if not name or not name.strip():
            raise ValidationError("Tenant name is required")
        if code and db.session.query(Tenant).filter_by(code=code).first():
            raise ValidationError(f"Tenant code {code!r} already exists")
        tenant = Tenant(name=name.strip(), code=code)
        db.session.add(tenant)
        db.session.commit()
        return tenant

    return run_with_retry(_op)


def create_store(tenant_id: int, name: str, code: str | None = None, *, is_default: bool = False) -> Store:
    def _op():
        if not name or not name.strip():
            raise ValidationError("Store name is required")
        if not db.session.get(Tenant, tenant_id):
            raise NotFound(f"Tenant {tenant_id} not found")
        if db.session.query(Store).filter_by(tenant_id=tenant_id, name=name.strip()).first():
            raise ValidationError(f"Store {name!r} already exists")

        if is_default:
            db.session.query(Store).filter_by(tenant_id=tenant_id, is_default=True).update({"is_default": False})

        store = Store(tenant_id=tenant_id, name=name.strip(), code=code, is_default=is_default)
        db.session.add(store)
        db.session.commit()
        return store

    return run_with_retry(_op)


def assign_user_to_store(user_id: int, store_id: int, *, is_default: bool = False) -> StoreUser:
    def _op():
        user = db.session.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        store = get_store(user.tenant_id, store_id)

        link = db.session.query(StoreUser).filter_by(user_id=user.id, store_id=store.id).first()
        if is_default:
            db.session.query(StoreUser).filter_by(user_id=user.id, is_default=True).update({"is_default": False})
        if link is None:
            link = StoreUser(user_id=user.id, store_id=store.id, is_default=is_default)
            db.session.add(link)
        else:
            link.is_default = is_default or link.is_default
        db.session.commit()
        return link

    return run_with_retry(_op)


def list_stores(tenant_id: int, *, include_inactive: bool = False) -> list[Store]:
    query = db.session.query(Store).filter(Store.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(Store.is_active.is_(True))
    return query.order_by(Store.name.asc()).all()


def update_store(tenant_id: int, store_id: int, **changes) -> Store:
    """
    Apply changes to name, code, is_active, is_default.

    Making a store the default unsets the previous default. The default
    store cannot be deactivated.
    """
    allowed = {"name", "code", "is_active", "is_default"}

    def _op():
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        store = get_store(tenant_id, store_id)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Store name is required")
            clash = db.session.query(Store).filter(
                Store.tenant_id == tenant_id, Store.name == name, Store.id != store.id
            ).first()
            if clash:
                raise ValidationError(f"Store {name!r} already exists")
            store.name = name
        if "code" in changes:
            store.code = changes["code"]
        if changes.get("is_default"):
            db.session.query(Store).filter(
                Store.tenant_id == tenant_id, Store.is_default.is_(True), Store.id != store.id
            ).update({"is_default": False}, synchronize_session="fetch")
            store.is_default = True
        elif "is_default" in changes:
            store.is_default = False
        if "is_active" in changes:
            store.is_active = bool(changes["is_active"])
        if store.is_default and not store.is_active:
            raise ValidationError("The default store cannot be deactivated")

        db.session.commit()
        return store

    return run_with_retry(_op)


def list_user_store_ids(user_id: int) -> list[int]:
    """Linked store ids, default first."""
    links = (
        db.session.query(StoreUser)
        .filter_by(user_id=user_id)
        .order_by(StoreUser.is_default.desc(), StoreUser.id.asc())
        .all()
    )
    return [link.store_id for link in links]


def set_user_stores(user_id: int, store_ids: list[int]) -> list[int]:
    """
    Replace a user's store links.

    The first id becomes the default link. Admins are never linked: they
    reach every store. A non-admin given no stores is linked to the
    tenant's default store.
    """
    def _op():
        user = db.session.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")

        wanted = list(dict.fromkeys(store_ids))
        if user.role == ROLE_ADMIN:
            wanted = []
        elif not wanted:
            default = (
                db.session.query(Store)
                .filter(Store.tenant_id == user.tenant_id, Store.is_active.is_(True))
                .order_by(Store.is_default.desc(), Store.id.asc())
                .first()
            )
            if not default:
                raise ValidationError("Tenant has no active store to assign")
            wanted = [default.id]

        for store_id in wanted:
            get_active_store(user.tenant_id, store_id)

        db.session.query(StoreUser).filter_by(user_id=user.id).delete()
        for position, store_id in enumerate(wanted):
            db.session.add(StoreUser(user_id=user.id, store_id=store_id, is_default=position == 0))
        db.session.commit()
        return wanted

    return run_with_retry(_op)
