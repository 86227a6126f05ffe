# Overview: Role to permission-code map used by require_permission.

"""
Roles are fixed per deployment; no per-user grants.

- admin: everything
- manager: store operations, stock-take review, sale cancellation
- cashier: selling, receiving, counting, viewing stock
"""
from __future__ import annotations


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)

PERMISSIONS = {
    "CREATE_SALE": "Create sales",
    "VIEW_SALES": "View sales",
    "CANCEL_SALE": "Cancel sales and restore stock",
    "RECEIVE_STOCK": "Receive goods into stock",
    "ADJUST_STOCK": "Manually adjust stock",
    "VIEW_INVENTORY": "View stock levels, movements and reports",
    "SUBMIT_STOCK_TAKE": "Submit physical counts",
    "REVIEW_STOCK_TAKE": "Apply or reject stock-takes",
    "VIEW_LOYALTY": "View loyalty balances",
    "VIEW_EXPENSES": "View expenses",
}

_CASHIER = {
    "CREATE_SALE",
    "VIEW_SALES",
    "RECEIVE_STOCK",
    "VIEW_INVENTORY",
    "SUBMIT_STOCK_TAKE",
    "VIEW_LOYALTY",
}

ROLE_PERMISSIONS = {
    ROLE_ADMIN: frozenset(PERMISSIONS),
    ROLE_MANAGER: frozenset(_CASHIER | {"CANCEL_SALE", "ADJUST_STOCK", "REVIEW_STOCK_TAKE", "VIEW_EXPENSES"}),
    ROLE_CASHIER: frozenset(_CASHIER),
}


class PermissionDeniedError(Exception):
    """Raised when a user lacks a required permission."""
    pass


def get_role_permissions(role: str | None) -> frozenset:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def user_has_permission(user, permission_code: str) -> bool:
    if user is None or not user.is_active:
        return False
    return permission_code in get_role_permissions(user.role)


def require_permission(user, permission_code: str) -> None:
    if permission_code not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission_code}")
    if not user_has_permission(user, permission_code):
        raise PermissionDeniedError(f"Role {getattr(user, 'role', None)!r} lacks {permission_code}")
