from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class RolePermission(db.Model):
    """
    Per-role permission override.

    Role defaults live in permissions.py; a row here replaces the default
    for one (role, permission) pair. Read through PermissionCache.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        db.UniqueConstraint("role", "permission", name="uq_role_permissions_role_permission"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(32), nullable=False, index=True)
    permission = db.Column(db.String(64), nullable=False)
    allowed = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "permission": self.permission,
            "allowed": self.allowed,
            "updated_at": to_utc_z(self.updated_at),
        }
