"""Effective permission resolution.

Resolution is a pure function of three inputs taken at one point in time:
the catalog, the role's default permission set and the user's override map.
``PolicySnapshot`` freezes the latter two so a whole permission matrix is
computed against one consistent view.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional

from policy_engine.services.catalog import PermissionCatalog


class OverrideState(Enum):
    INHERIT = 'inherit'
    ALLOW = 'allow'
    DENY = 'deny'

    @classmethod
    def from_value(cls, allowed: Optional[bool]) -> 'OverrideState':
        if allowed is None:
            return cls.INHERIT
        return cls.ALLOW if allowed else cls.DENY

    def as_bool(self) -> Optional[bool]:
        if self is OverrideState.INHERIT:
            return None
        return self is OverrideState.ALLOW

    def canonical(self, default_allowed: bool) -> 'OverrideState':
        """Collapse an explicit state equal to the role default into INHERIT."""
        if self is OverrideState.INHERIT:
            return self
        if self.as_bool() == default_allowed:
            return OverrideState.INHERIT
        return self


class Source(Enum):
    OVERRIDE = 'override'
    DEFAULT_ALLOW = 'default-allow'
    DEFAULT_DENY = 'default-deny'


@dataclass(frozen=True)
class Decision:
    permission: str
    allowed: bool
    source: Source

    def to_dict(self):
        return {'permission': self.permission, 'allowed': self.allowed, 'source': self.source.value}


@dataclass(frozen=True)
class PolicySnapshot:
    user_id: str
    role: str
    defaults: frozenset
    overrides: Mapping[str, bool] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'defaults', frozenset(self.defaults))
        object.__setattr__(self, 'overrides', MappingProxyType(dict(self.overrides)))

    def override_state(self, permission: str) -> OverrideState:
        return OverrideState.from_value(self.overrides.get(permission))


def resolve(snapshot: PolicySnapshot, catalog: PermissionCatalog, permission: str) -> Decision:
    catalog.require(permission)
    state = snapshot.override_state(permission)
    if state is not OverrideState.INHERIT:
        return Decision(permission, state.as_bool(), Source.OVERRIDE)
    if permission in snapshot.defaults:
        return Decision(permission, True, Source.DEFAULT_ALLOW)
    return Decision(permission, False, Source.DEFAULT_DENY)


def resolve_all(snapshot: PolicySnapshot, catalog: PermissionCatalog) -> List[Decision]:
    """One decision per catalog permission, in catalog order."""
    return [resolve(snapshot, catalog, p) for p in catalog.list_all()]


__all__ = ['OverrideState', 'Source', 'Decision', 'PolicySnapshot', 'resolve', 'resolve_all']
