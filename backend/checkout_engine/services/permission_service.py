# Overview: Role permission resolution behind an injected read-through cache.

"""
Permission Checking

WHY: Admin routes ask "may this role do X" on every request. Role grants
change rarely, so answers are cached per role with a TTL; changing an
override invalidates the cache explicitly.

DESIGN PRINCIPLES:
- Fail closed: unknown roles and unknown permissions are denied
- The cache is an object held on the app, not module state, so tests and
  multiple apps never share entries
- set_role_permission() always invalidates what it changed
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from flask import current_app

from ..errors import PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import RolePermission
from ..permissions import ALL_PERMISSIONS, DEFAULT_ROLE_PERMISSIONS, ROLES
from ..time_utils import utcnow


EXTENSION_KEY = "permission_cache"


class PermissionCache:
    """
    Read-through cache of role -> permission set.

    loader(role) is called on a miss or once an entry is older than
    ttl_seconds. invalidate() drops one role or everything.
    """

    def __init__(self, loader: Callable[[str], frozenset], ttl_seconds: float = 300, clock=time.monotonic):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, frozenset]] = {}
        self._lock = threading.Lock()

    def permissions_for(self, role: str | None) -> frozenset:
        if not role:
            return frozenset()

        now = self._clock()
        with self._lock:
            entry = self._entries.get(role)
            if entry is not None and now - entry[0] < self._ttl:
                return entry[1]

        permissions = frozenset(self._loader(role))
        with self._lock:
            self._entries[role] = (now, permissions)
        return permissions

    def has_permission(self, role: str | None, permission: str) -> bool:
        return permission in self.permissions_for(role)

    def invalidate(self, role: str | None = None) -> None:
        with self._lock:
            if role is None:
                self._entries.clear()
            else:
                self._entries.pop(role, None)


def load_role_permissions(role: str) -> frozenset:
    """Role defaults with role_permissions rows applied on top."""
    permissions = set(DEFAULT_ROLE_PERMISSIONS.get(role, frozenset()))
    overrides = db.session.query(RolePermission).filter_by(role=role).all()
    for row in overrides:
        if row.allowed:
            permissions.add(row.permission)
        else:
            permissions.discard(row.permission)
    return frozenset(permissions)


def init_permission_cache(app, cache: PermissionCache | None = None) -> PermissionCache:
    cache = cache or PermissionCache(
        load_role_permissions,
        ttl_seconds=app.config.get("PERMISSION_CACHE_TTL_SECONDS", 300),
    )
    app.extensions[EXTENSION_KEY] = cache
    return cache


def get_permission_cache() -> PermissionCache:
    return current_app.extensions[EXTENSION_KEY]


def require_permission(role: str | None, permission: str) -> None:
    """Raise PermissionDeniedError unless role holds permission."""
    if not get_permission_cache().has_permission(role, permission):
        raise PermissionDeniedError(
            "Permission denied",
            details={"required_permission": permission, "role": role},
        )


def set_role_permission(role: str, permission: str, allowed: bool) -> RolePermission:
    """Create or update one override and invalidate the cached role."""
    if role not in ROLES:
        raise ValidationError("role", f"must be one of {', '.join(ROLES)}")
    if permission not in ALL_PERMISSIONS:
        raise ValidationError("permission", "is not a known permission")

    row = db.session.query(RolePermission).filter_by(role=role, permission=permission).first()
    if row is None:
        row = RolePermission(role=role, permission=permission)
        db.session.add(row)
    row.allowed = bool(allowed)
    row.updated_at = utcnow()
    db.session.commit()

    get_permission_cache().invalidate(role)
    return row


def reset_role_permissions() -> int:
    """Drop every override so all roles fall back to their defaults."""
    deleted = db.session.query(RolePermission).delete()
    db.session.commit()
    get_permission_cache().invalidate()
    return deleted
