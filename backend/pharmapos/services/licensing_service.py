# Overview: Service-layer operations for tenant licensing; plan catalog and feature gates.

"""
Licensing.

A tenant's license is a plan code from PLAN_CATALOG plus optional per-tenant
feature overrides. Features are usable only while the license status is
TRIAL, ACTIVE or GRACE. A tenant without a TenantLicense row runs on the
plan named by DEFAULT_LICENSE_PLAN.
"""
from __future__ import annotations

from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import FeatureDisabled, NotFound, ValidationError
from pharmapos.models import Store, Tenant, TenantLicense, User
from pharmapos.services.concurrency import run_with_retry


FEATURE_INVENTORY_TRANSFERS = "inventoryTransfers"
FEATURE_INVENTORY_RESERVATIONS = "inventoryReservations"

LICENSE_STATUSES = ("TRIAL", "ACTIVE", "GRACE", "SUSPENDED", "EXPIRED", "CANCELED")
USABLE_STATUSES = frozenset({"TRIAL", "ACTIVE", "GRACE"})

_BASE_FEATURES = {
    "dashboard": True,
    "sales": True,
    "cash": True,
    "inventory": True,
    "products": True,
    "notifications": True,
    "reportsSales": True,
    "reportsCashClosings": True,
}

PLAN_CATALOG = {
    "ESSENTIAL": {
        "code": "ESSENTIAL",
        "name": "Essential",
        "limits": {"maxActiveUsers": 4, "maxActiveStores": 1},
        "features": {
            **_BASE_FEATURES,
            FEATURE_INVENTORY_TRANSFERS: False,
            FEATURE_INVENTORY_RESERVATIONS: False,
            "notifications": False,
            "reportsTransfers": False,
        },
    },
    "PROFESSIONAL": {
        "code": "PROFESSIONAL",
        "name": "Professional",
        "limits": {"maxActiveUsers": 15, "maxActiveStores": 5},
        "features": {
            **_BASE_FEATURES,
            FEATURE_INVENTORY_TRANSFERS: True,
            FEATURE_INVENTORY_RESERVATIONS: True,
            "reportsTransfers": True,
        },
    },
    "ENTERPRISE": {
        "code": "ENTERPRISE",
        "name": "Enterprise",
        "limits": {"maxActiveUsers": 999999, "maxActiveStores": 999999},
        "features": {
            **_BASE_FEATURES,
            FEATURE_INVENTORY_TRANSFERS: True,
            FEATURE_INVENTORY_RESERVATIONS: True,
            "reportsTransfers": True,
        },
    },
}


def _default_plan_code() -> str:
    code = str(current_app.config.get("DEFAULT_LICENSE_PLAN", "PROFESSIONAL")).upper()
    return code if code in PLAN_CATALOG else "PROFESSIONAL"


def get_license(tenant_id: int) -> TenantLicense | None:
    return db.session.query(TenantLicense).filter_by(tenant_id=tenant_id).first()


def get_effective_license(tenant_id: int) -> dict:
    """Plan, status, merged feature map and limits for a tenant."""
    lic = get_license(tenant_id)
    plan_code = lic.plan_code if lic and lic.plan_code in PLAN_CATALOG else _default_plan_code()
    status = lic.status if lic else "ACTIVE"
    plan = PLAN_CATALOG[plan_code]

    features = dict(plan["features"])
    if lic and isinstance(lic.feature_overrides, dict):
        for key, value in lic.feature_overrides.items():
            features[key] = bool(value)

    return {
        "tenantId": tenant_id,
        "planCode": plan_code,
        "planName": plan["name"],
        "status": status,
        "usable": status in USABLE_STATUSES,
        "features": features,
        "limits": dict(plan["limits"]),
    }


def is_feature_enabled(tenant_id: int, feature_key: str) -> bool:
    lic = get_effective_license(tenant_id)
    if not lic["usable"]:
        return False
    return bool(lic["features"].get(feature_key, False))


def assert_feature_enabled(tenant_id: int, feature_key: str) -> None:
    if not is_feature_enabled(tenant_id, feature_key):
        raise FeatureDisabled(
            f"Feature {feature_key} is not available for this license",
            details={"feature": feature_key},
        )


def usage(tenant_id: int) -> dict:
    active_users = db.session.query(User).filter_by(tenant_id=tenant_id, is_active=True).count()
    active_stores = db.session.query(Store).filter_by(tenant_id=tenant_id, is_active=True).count()
    return {"activeUsers": active_users, "activeStores": active_stores}


def set_plan(
    tenant_id: int,
    plan_code: str,
    *,
    status: str = "ACTIVE",
    feature_overrides: dict | None = None,
) -> TenantLicense:
    plan_code = (plan_code or "").strip().upper()
    status = (status or "").strip().upper()

    def _op():
        if not db.session.get(Tenant, tenant_id):
            raise NotFound(f"Tenant {tenant_id} not found")
        if plan_code not in PLAN_CATALOG:
            raise ValidationError(f"Unknown plan {plan_code!r}; expected one of: {', '.join(PLAN_CATALOG)}")
        if status not in LICENSE_STATUSES:
            raise ValidationError(f"Unknown license status {status!r}")

        lic = get_license(tenant_id)
        if lic is None:
            lic = TenantLicense(tenant_id=tenant_id)
            db.session.add(lic)
        lic.plan_code = plan_code
        lic.status = status
        if feature_overrides is not None:
            lic.feature_overrides = feature_overrides
        db.session.commit()
        return lic

    lic = run_with_retry(_op)
    current_app.logger.info("license.updated tenant=%s plan=%s status=%s", tenant_id, plan_code, status)
    return lic
