"""
Permission codes and default role grants for the order surface.

WHY: One place that names every permission the routes check and what each
role gets out of the box. Rows in role_permissions override these per
(role, permission) pair.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Unknown roles get nothing
- super_admin has every permission
"""

# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = [
    ("orders.create", "Place orders through checkout"),
    ("orders.view_own", "View own order history"),
    ("orders.view", "View and search all orders"),
    ("orders.update", "Change order and payment status"),
    ("orders.delete", "Delete orders"),
    ("analytics.view", "View order statistics"),
]

ALL_PERMISSIONS = frozenset(code for code, _ in PERMISSION_DEFINITIONS)


# =============================================================================
# ROLES
# =============================================================================

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_CUSTOMER)

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_SUPER_ADMIN: ALL_PERMISSIONS,
    ROLE_ADMIN: frozenset({
        "orders.create",
        "orders.view_own",
        "orders.view",
        "orders.update",
        "orders.delete",
        "analytics.view",
    }),
    ROLE_CUSTOMER: frozenset({
        "orders.create",
        "orders.view_own",
    }),
}
