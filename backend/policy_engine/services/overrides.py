"""User override store: sparse per-user permission -> bool map.

Canonical form: a stored override never equals the user's role default.
Writes that would create such an entry remove it instead.
"""
from __future__ import annotations
import logging
from typing import Dict, Mapping, Optional, Union
from sqlalchemy import select

from policy_engine.errors import UnknownUser
from policy_engine.models.authz import User, UserOverride
from policy_engine.services.catalog import PermissionCatalog
from policy_engine.services.role_policy import RolePolicyStore
from policy_engine.services.resolver import OverrideState

logger = logging.getLogger(__name__)


def _as_state(desired: Union[OverrideState, bool, None]) -> OverrideState:
    if isinstance(desired, OverrideState):
        return desired
    if desired is not None and not isinstance(desired, bool):
        raise TypeError(f'override value must be bool or None, got {type(desired).__name__}')
    return OverrideState.from_value(desired)


class UserOverrideStore:
    def __init__(self, catalog: PermissionCatalog, role_policies: RolePolicyStore):
        self.catalog = catalog
        self.role_policies = role_policies
        role_policies.add_listener(self.canonicalize_after_role_change)

    def get_user(self, session, user_id: str) -> User:
        user = session.execute(
            select(User).where(User.id == str(user_id)).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if user is None:
            raise UnknownUser(user_id)
        return user

    def _row(self, session, user_id: str, permission: str) -> Optional[UserOverride]:
        return session.execute(
            select(UserOverride).where(UserOverride.user_id == user_id, UserOverride.permission == permission)
        ).scalar_one_or_none()

    def get_overrides(self, session, user_id: str) -> Dict[str, bool]:
        user = self.get_user(session, user_id)
        rows = session.execute(
            select(UserOverride.permission, UserOverride.allowed).where(UserOverride.user_id == user.id)
        ).all()
        return {perm: bool(allowed) for perm, allowed in rows}

    def _write(self, session, user_id: str, permission: str, state: OverrideState):
        row = self._row(session, user_id, permission)
        if state is OverrideState.INHERIT:
            if row is not None:
                session.delete(row)
            return
        if row is None:
            session.add(UserOverride(user_id=user_id, permission=permission, allowed=state.as_bool()))
        else:
            row.allowed = state.as_bool()

    def set_override(self, session, user_id: str, permission: str,
                     desired: Union[OverrideState, bool, None]) -> OverrideState:
        """Store ``desired`` unless it matches the role default, in which case the entry is removed.

        Returns the state actually stored (INHERIT when canonicalized away).
        """
        self.catalog.require(permission)
        state = _as_state(desired)
        user = self.get_user(session, user_id)
        default_allowed = permission in self.role_policies.get_default(session, user.role)
        stored = state.canonical(default_allowed)
        self._write(session, user.id, permission, stored)
        session.flush()
        return stored

    def clear_override(self, session, user_id: str, permission: str) -> bool:
        self.catalog.require(permission)
        user = self.get_user(session, user_id)
        row = self._row(session, user.id, permission)
        if row is None:
            return False
        session.delete(row)
        session.flush()
        return True

    def replace_overrides(self, session, user_id: str, overrides: Mapping[str, Union[bool, None]]) -> Dict[str, bool]:
        """Swap the user's whole override map; validated up front, stored canonically."""
        states = {self.catalog.require(p): _as_state(v) for p, v in overrides.items()}
        user = self.get_user(session, user_id)
        defaults = self.role_policies.get_default(session, user.role)
        existing = session.execute(select(UserOverride).where(UserOverride.user_id == user.id)).scalars().all()
        for row in existing:
            if row.permission not in states:
                session.delete(row)
        for perm, state in states.items():
            self._write(session, user.id, perm, state.canonical(perm in defaults))
        session.flush()
        return self.get_overrides(session, user.id)

    def canonicalize_user(self, session, user: User, defaults: frozenset) -> int:
        rows = session.execute(select(UserOverride).where(UserOverride.user_id == user.id)).scalars().all()
        return self._prune(session, rows, defaults)

    def canonicalize_after_role_change(self, session, role: str, defaults: frozenset) -> int:
        """Drop every override of a ``role`` user that now equals the new default."""
        rows = session.execute(
            select(UserOverride).join(User, User.id == UserOverride.user_id).where(User.role == role)
        ).scalars().all()
        pruned = self._prune(session, rows, defaults)
        if pruned:
            logger.info('canonicalized %d overrides for role %s', pruned, role)
        return pruned

    def _prune(self, session, rows, defaults: frozenset) -> int:
        pruned = 0
        for row in rows:
            if bool(row.allowed) == (row.permission in defaults):
                session.delete(row)
                pruned += 1
        session.flush()
        return pruned


__all__ = ['UserOverrideStore']
