"""
Module: approval_kernel.models.settings
Responsibility: ORM persistence for administrator-edited role permission
    overrides.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one override row per (role, capability).
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class RolePermissionOverrideModel(Base):
    """Explicit grant or revocation of one capability for one role."""

    __tablename__ = "role_permission_overrides"

    __table_args__ = (
        UniqueConstraint("role", "capability", name="uq_role_permission_override"),
    )

    role: Mapped[str] = mapped_column(String(100), nullable=False)
    capability: Mapped[str] = mapped_column(String(100), nullable=False)
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    def __repr__(self) -> str:
        return f"<RolePermissionOverride {self.role}.{self.capability}={self.allowed}>"
