from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, UniqueConstraint, DateTime, text

Base = declarative_base()

# --- Role policy ---
class RolePolicy(Base):
    """One row per known role; an empty permission set is still a row."""
    __tablename__ = 'role_policies'
    role: Mapped[str] = mapped_column(String(32), primary_key=True)
    permissions = relationship('RolePolicyPermission', back_populates='policy', cascade='all, delete-orphan')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

class RolePolicyPermission(Base):
    __tablename__ = 'role_policy_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role: Mapped[str] = mapped_column(ForeignKey('role_policies.role', ondelete='CASCADE'), nullable=False, index=True)
    permission: Mapped[str] = mapped_column(String(64), nullable=False)

    policy = relationship('RolePolicy', back_populates='permissions')

    __table_args__ = (UniqueConstraint('role', 'permission', name='uq_role_policy_permission'),)

# --- Identity directory ---
class User(Base):
    __tablename__ = 'users'
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    overrides = relationship('UserOverride', back_populates='user', cascade='all, delete-orphan')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw)

# --- Per-user overrides (absence of a row means inherit) ---
class UserOverride(Base):
    __tablename__ = 'user_overrides'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    permission: Mapped[str] = mapped_column(String(64), nullable=False)
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    user = relationship('User', back_populates='overrides')

    __table_args__ = (UniqueConstraint('user_id', 'permission', name='uq_user_override'),)
