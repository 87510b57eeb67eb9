"""Policy mutation API and read facade.

This is the only writer path for role policies and user overrides. Each
mutation runs under one process-wide writer lock and one DB transaction:
validation, the store write, the override canonicalization sweep and the audit
entry are committed together or rolled back together.

Readers do not take the lock. The version counter is odd while a write is in
flight and even otherwise. A reader keeps its snapshot only if the version was
even and unchanged across the read; otherwise it reads again under the lock.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from policy_engine.constants.permissions import ROLE_PRESETS, expand_preset
from policy_engine.errors import PolicyTimeout, UnknownRole
from policy_engine.models.authz import User
from policy_engine.services.audit import add_audit
from policy_engine.services.catalog import CATALOG, PermissionCatalog
from policy_engine.services.overrides import UserOverrideStore
from policy_engine.services.resolver import Decision, OverrideState, PolicySnapshot, resolve, resolve_all
from policy_engine.services.role_policy import RolePolicyStore

logger = logging.getLogger(__name__)

_UNSET = object()
SNAPSHOT_RETRIES = 3


def _default_session():
    from policy_engine import get_db
    return get_db()


class PolicyService:
    def __init__(self, catalog: PermissionCatalog = CATALOG, lock_timeout: Optional[float] = None,
                 session_factory: Optional[Callable[[], object]] = None):
        self.catalog = catalog
        self.lock_timeout = lock_timeout
        self.role_policies = RolePolicyStore(catalog)
        self.overrides = UserOverrideStore(catalog, self.role_policies)
        self._session_factory = session_factory or _default_session
        self._lock = threading.Lock()
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def session(self):
        return self._session_factory()

    def _acquire(self, timeout=_UNSET):
        wait = self.lock_timeout if timeout is _UNSET else timeout
        acquired = self._lock.acquire() if wait is None else self._lock.acquire(timeout=wait)
        if not acquired:
            raise PolicyTimeout(wait)

    @contextmanager
    def transaction(self, timeout=_UNSET):
        self._acquire(timeout)
        try:
            session = self.session()
            self._version += 1
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                # back to even once committed or rolled back
                self._version += 1
        finally:
            self._lock.release()

    # --- reads ---

    def list_permissions(self) -> List[str]:
        return list(self.catalog.list_all())

    def list_roles(self) -> List[str]:
        return self.role_policies.list_roles(self.session())

    def get_role_policy(self, role: str) -> List[str]:
        session = self.session()
        return self.role_policies.ordered(self.role_policies.get_default(session, role))

    def get_user(self, user_id: str) -> User:
        return self.overrides.get_user(self.session(), user_id)

    def get_user_overrides(self, user_id: str) -> Dict[str, bool]:
        return dict(self.snapshot(user_id).overrides)

    def snapshot(self, user_id: str) -> PolicySnapshot:
        session = self.session()
        for _ in range(SNAPSHOT_RETRIES):
            before = self._version
            if before % 2:
                # a write is in flight and its flushed rows may be visible
                break
            snap = self._read_snapshot(session, user_id)
            if before == self._version:
                return snap
        self._acquire()
        try:
            return self._read_snapshot(session, user_id)
        finally:
            self._lock.release()

    def _read_snapshot(self, session, user_id: str) -> PolicySnapshot:
        user = self.overrides.get_user(session, user_id)
        defaults = self.role_policies.get_default(session, user.role)
        overrides = self.overrides.get_overrides(session, user.id)
        return PolicySnapshot(user_id=user.id, role=user.role, defaults=defaults, overrides=overrides)

    def resolve(self, user_id: str, permission: str) -> Decision:
        self.catalog.require(permission)
        return resolve(self.snapshot(user_id), self.catalog, permission)

    def is_allowed(self, user_id: str, permission: str) -> bool:
        return self.resolve(user_id, permission).allowed

    def get_effective_permissions(self, user_id: str) -> List[Decision]:
        return resolve_all(self.snapshot(user_id), self.catalog)

    def allowed_permissions(self, user_id: str) -> List[str]:
        return [d.permission for d in self.get_effective_permissions(user_id) if d.allowed]

    # --- mutations ---

    def set_role_policy(self, role: str, permissions: Iterable[str], *, actor: Optional[str] = None, timeout=_UNSET) -> Dict:
        permissions = list(permissions)
        with self.transaction(timeout) as session:
            pruned = self.role_policies.set_policy(session, role, permissions)
            allowed = self.role_policies.ordered(self.role_policies.get_default(session, role))
            add_audit(session, 'ROLE.POLICY.SET', 'RolePolicy', role, {'allowed': allowed, 'pruned_overrides': pruned}, actor)
        return {'role': role, 'allowed': allowed, 'pruned_overrides': pruned}

    def toggle_role_permission(self, role: str, permission: str, enabled: bool, *, actor: Optional[str] = None, timeout=_UNSET) -> Dict:
        if not isinstance(enabled, bool):
            raise TypeError('enabled must be bool')
        with self.transaction(timeout) as session:
            pruned = self.role_policies.toggle_permission(session, role, permission, enabled)
            allowed = self.role_policies.ordered(self.role_policies.get_default(session, role))
            add_audit(session, 'ROLE.POLICY.TOGGLE', 'RolePolicy', role,
                      {'permission': permission, 'enabled': enabled, 'pruned_overrides': pruned}, actor)
        return {'role': role, 'allowed': allowed, 'pruned_overrides': pruned}

    def set_user_override(self, user_id: str, permission: str, allowed: Optional[bool], *,
                          actor: Optional[str] = None, timeout=_UNSET) -> OverrideState:
        """``allowed=None`` clears the override (inherit from the role)."""
        if allowed is None:
            self.clear_user_override(user_id, permission, actor=actor, timeout=timeout)
            return OverrideState.INHERIT
        with self.transaction(timeout) as session:
            stored = self.overrides.set_override(session, user_id, permission, allowed)
            add_audit(session, 'USER.OVERRIDE.SET', 'User', user_id,
                      {'permission': permission, 'requested': allowed, 'stored': stored.value}, actor)
        return stored

    def clear_user_override(self, user_id: str, permission: str, *, actor: Optional[str] = None, timeout=_UNSET) -> bool:
        with self.transaction(timeout) as session:
            removed = self.overrides.clear_override(session, user_id, permission)
            add_audit(session, 'USER.OVERRIDE.CLEAR', 'User', user_id, {'permission': permission, 'removed': removed}, actor)
        return removed

    def replace_user_overrides(self, user_id: str, overrides: Mapping[str, Optional[bool]], *,
                               actor: Optional[str] = None, timeout=_UNSET) -> Dict[str, bool]:
        with self.transaction(timeout) as session:
            stored = self.overrides.replace_overrides(session, user_id, overrides)
            add_audit(session, 'USER.OVERRIDES.REPLACE', 'User', user_id,
                      {'requested': len(overrides), 'stored': len(stored)}, actor)
        return stored

    def set_user_role(self, user_id: str, role: str, *, actor: Optional[str] = None, timeout=_UNSET) -> Dict:
        """Reassign the user's role and re-canonicalize their overrides against it."""
        with self.transaction(timeout) as session:
            user = self.overrides.get_user(session, user_id)
            defaults = self.role_policies.get_default(session, role)
            previous = user.role
            user.role = role
            session.flush()
            pruned = self.overrides.canonicalize_user(session, user, defaults)
            add_audit(session, 'USER.ROLE.SET', 'User', user.id,
                      {'before': previous, 'after': role, 'pruned_overrides': pruned}, actor)
        logger.info('user %s role %s -> %s, %d overrides pruned', user_id, previous, role, pruned)
        return {'user_id': user.id, 'role': role, 'pruned_overrides': pruned}

    def register_user(self, user_id: str, name: str, email: str, role: str, password: Optional[str] = None, *,
                      actor: Optional[str] = None, timeout=_UNSET) -> User:
        with self.transaction(timeout) as session:
            if not self.role_policies.has_role(session, role):
                raise UnknownRole(role)
            user = User(id=str(user_id), name=name, email=email, role=role, password_hash='')
            if password:
                user.set_password(password)
            session.add(user)
            session.flush()
            add_audit(session, 'USER.REGISTER', 'User', user.id, {'role': role}, actor)
        return user

    def seed_role_policies(self, presets: Optional[Mapping[str, Iterable[str]]] = None, *,
                           actor: Optional[str] = None, timeout=_UNSET) -> int:
        """Create a policy entry for every preset role that lacks one."""
        presets = ROLE_PRESETS if presets is None else presets
        created = []
        with self.transaction(timeout) as session:
            for role, codes in presets.items():
                if self.role_policies.ensure_role(session, role, expand_preset(list(codes), self.catalog.list_all())):
                    created.append(role)
            if created:
                add_audit(session, 'ROLE.POLICY.SEED', 'RolePolicy', None, {'roles': created}, actor)
        if created:
            logger.info('seeded %d role policies', len(created))
        return len(created)


def get_policy_service() -> PolicyService:
    from flask import current_app
    return current_app.extensions['policy_service']


__all__ = ['PolicyService', 'get_policy_service']
