"""Permission cache: TTL, invalidation, role defaults and overrides."""

import pytest

from checkout_engine.errors import PermissionDeniedError, ValidationError
from checkout_engine.services import permission_service
from checkout_engine.services.permission_service import PermissionCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingLoader:
    def __init__(self, grants):
        self.grants = grants
        self.calls = []

    def __call__(self, role):
        self.calls.append(role)
        return frozenset(self.grants.get(role, ()))


class TestPermissionCache:

    def test_hits_are_served_from_cache(self):
        loader = CountingLoader({"admin": {"orders.view"}})
        cache = PermissionCache(loader, ttl_seconds=60, clock=FakeClock())

        assert cache.has_permission("admin", "orders.view")
        assert cache.has_permission("admin", "orders.view")
        assert not cache.has_permission("admin", "orders.delete")
        assert loader.calls == ["admin"]

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        loader = CountingLoader({"admin": {"orders.view"}})
        cache = PermissionCache(loader, ttl_seconds=60, clock=clock)

        cache.permissions_for("admin")
        clock.now = 59.9
        cache.permissions_for("admin")
        clock.now = 60.0
        cache.permissions_for("admin")

        assert loader.calls == ["admin", "admin"]

    def test_invalidate_one_role(self):
        loader = CountingLoader({"admin": {"orders.view"}, "customer": set()})
        cache = PermissionCache(loader, ttl_seconds=60, clock=FakeClock())
        cache.permissions_for("admin")
        cache.permissions_for("customer")

        loader.grants["admin"] = {"orders.view", "orders.delete"}
        cache.invalidate("admin")

        assert cache.has_permission("admin", "orders.delete")
        cache.permissions_for("customer")
        assert loader.calls == ["admin", "customer", "admin"]

    def test_invalidate_everything(self):
        loader = CountingLoader({"admin": set()})
        cache = PermissionCache(loader, ttl_seconds=60, clock=FakeClock())
        cache.permissions_for("admin")
        cache.invalidate()
        cache.permissions_for("admin")
        assert loader.calls == ["admin", "admin"]

    def test_no_role_has_nothing(self):
        loader = CountingLoader({})
        cache = PermissionCache(loader, ttl_seconds=60)
        assert cache.permissions_for(None) == frozenset()
        assert loader.calls == []


class TestRolePermissions:

    def test_defaults(self, db_session):
        assert "orders.delete" in permission_service.load_role_permissions("admin")
        assert "orders.view" not in permission_service.load_role_permissions("customer")
        assert permission_service.load_role_permissions("stranger") == frozenset()

    def test_override_invalidates_cache(self, db_session):
        cache = permission_service.get_permission_cache()
        assert not cache.has_permission("customer", "orders.view")

        permission_service.set_role_permission("customer", "orders.view", True)
        assert cache.has_permission("customer", "orders.view")

        permission_service.set_role_permission("customer", "orders.view", False)
        assert not cache.has_permission("customer", "orders.view")

    def test_revoking_a_default(self, db_session):
        permission_service.set_role_permission("admin", "orders.delete", False)
        with pytest.raises(PermissionDeniedError) as exc:
            permission_service.require_permission("admin", "orders.delete")
        assert exc.value.status_code == 403

    def test_reset_restores_defaults(self, db_session):
        permission_service.set_role_permission("admin", "orders.delete", False)
        assert permission_service.reset_role_permissions() == 1
        permission_service.require_permission("admin", "orders.delete")

    def test_unknown_role_or_permission(self, db_session):
        with pytest.raises(ValidationError):
            permission_service.set_role_permission("pirate", "orders.view", True)
        with pytest.raises(ValidationError):
            permission_service.set_role_permission("admin", "orders.teleport", True)
