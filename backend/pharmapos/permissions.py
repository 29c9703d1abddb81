"""
Roles and the acting-user context.

WHY: Workflows take an explicit Actor instead of reading request globals,
so they can be driven from routes, CLI commands and tests alike.

ROLES:
- ADMIN: every store of the tenant, every operation
- PHARMACIST: elevated store operations (send/receive transfers,
  approve/reject reservations, adjustments)
- SELLER: sales, transfer requests
- CASHIER: sales payment and cash sessions
"""
from __future__ import annotations

from dataclasses import dataclass

from .errors import Forbidden


ROLE_ADMIN = "ADMIN"
ROLE_PHARMACIST = "PHARMACIST"
ROLE_SELLER = "SELLER"
ROLE_CASHIER = "CASHIER"

VALID_ROLES = [ROLE_ADMIN, ROLE_PHARMACIST, ROLE_SELLER, ROLE_CASHIER]

ELEVATED_ROLES = frozenset({ROLE_ADMIN, ROLE_PHARMACIST})


@dataclass(frozen=True)
class Actor:
    """
    Who is acting, for which tenant, from which store.

    store_id is the *current* store (X-Store-Id header or the user's default);
    it may be None for an admin of a tenant without stores.
    """
    id: int
    role: str
    tenant_id: int
    store_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


def assert_elevated(actor: Actor, action: str = "perform this operation") -> None:
    """Raise Forbidden unless the actor is a pharmacist or an admin."""
    if not actor.is_elevated:
        raise Forbidden(f"Only a pharmacist or admin may {action}")


def assert_acting_for_store(actor: Actor, store_id: int, action: str) -> None:
    """Raise Forbidden unless the actor is an admin or acting from `store_id`."""
    if actor.is_admin:
        return
    if actor.store_id != store_id:
        raise Forbidden(f"Only store {store_id} may {action}")
