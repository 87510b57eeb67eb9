"""Role policy store: role -> default permission set."""
from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, List
from sqlalchemy import select, delete, func

from policy_engine.errors import UnknownRole
from policy_engine.models.authz import RolePolicy, RolePolicyPermission
from policy_engine.services.catalog import PermissionCatalog

logger = logging.getLogger(__name__)

# listener(session, role, new_defaults) -> number of pruned overrides
PolicyListener = Callable[[object, str, frozenset], int]


class RolePolicyStore:
    def __init__(self, catalog: PermissionCatalog):
        self.catalog = catalog
        self._listeners: List[PolicyListener] = []

    def add_listener(self, listener: PolicyListener):
        self._listeners.append(listener)

    def get_row(self, session, role: str) -> RolePolicy:
        row = session.execute(select(RolePolicy).where(RolePolicy.role == role)).scalar_one_or_none()
        if row is None:
            raise UnknownRole(role)
        return row

    def has_role(self, session, role: str) -> bool:
        return session.execute(select(RolePolicy.role).where(RolePolicy.role == role)).scalar_one_or_none() is not None

    def list_roles(self, session) -> List[str]:
        return list(session.execute(select(RolePolicy.role).order_by(RolePolicy.role)).scalars())

    def get_default(self, session, role: str) -> frozenset:
        """Default permission set for ``role``; never substitutes another role's policy."""
        self.get_row(session, role)
        rows = session.execute(
            select(RolePolicyPermission.permission).where(RolePolicyPermission.role == role)
        ).scalars()
        return frozenset(rows)

    def ordered(self, permissions: Iterable[str]) -> List[str]:
        wanted = set(permissions)
        return [p for p in self.catalog.list_all() if p in wanted]

    def set_policy(self, session, role: str, permissions: Iterable[str]) -> int:
        """Replace the role's whole set, then run the override sweep.

        Everything is validated before any row is written. Returns the number of
        overrides pruned by the sweep. The caller owns the transaction.
        """
        desired = self.catalog.require_all(permissions)
        row = self.get_row(session, role)
        current = self.get_default(session, role)
        to_remove = current - desired
        to_add = desired - current
        if to_remove:
            session.execute(
                delete(RolePolicyPermission)
                .where(RolePolicyPermission.role == role, RolePolicyPermission.permission.in_(sorted(to_remove)))
            )
        for perm in self.ordered(to_add):
            session.add(RolePolicyPermission(role=role, permission=perm))
        if to_add or to_remove:
            row.updated_at = func.now()
        session.flush()
        pruned = 0
        for listener in self._listeners:
            pruned += listener(session, role, desired)
        logger.info('role policy %s: +%d -%d, %d overrides pruned', role, len(to_add), len(to_remove), pruned)
        return pruned

    def toggle_permission(self, session, role: str, permission: str, enabled: bool) -> int:
        self.catalog.require(permission)
        current = set(self.get_default(session, role))
        if enabled:
            current.add(permission)
        else:
            current.discard(permission)
        return self.set_policy(session, role, current)

    def ensure_role(self, session, role: str, permissions: Iterable[str] = ()) -> bool:
        """Create the role's entry with ``permissions`` if it has none. Existing policies are left untouched."""
        if self.has_role(session, role):
            return False
        desired = self.catalog.require_all(permissions)
        session.add(RolePolicy(role=role))
        session.flush()
        for perm in self.ordered(desired):
            session.add(RolePolicyPermission(role=role, permission=perm))
        session.flush()
        return True

    def snapshot_all(self, session) -> Dict[str, List[str]]:
        mapping: Dict[str, set] = {r: set() for r in self.list_roles(session)}
        for role, perm in session.execute(select(RolePolicyPermission.role, RolePolicyPermission.permission)):
            mapping.setdefault(role, set()).add(perm)
        return {r: self.ordered(perms) for r, perms in mapping.items()}


__all__ = ['RolePolicyStore']
