"""Permission catalog: the closed universe of capability tags."""
from __future__ import annotations
from typing import Iterable, Iterator, Tuple
from policy_engine.constants.permissions import ALL_PERMISSIONS
from policy_engine.errors import InvalidPermission


class PermissionCatalog:
    def __init__(self, permissions: Iterable[str] = ALL_PERMISSIONS):
        ordered = []
        seen = set()
        for tag in permissions:
            if tag not in seen:
                seen.add(tag)
                ordered.append(tag)
        self._ordered: Tuple[str, ...] = tuple(ordered)
        self._members = frozenset(ordered)

    def list_all(self) -> Tuple[str, ...]:
        return self._ordered

    def is_valid(self, tag) -> bool:
        return isinstance(tag, str) and tag in self._members

    def require(self, tag) -> str:
        if not self.is_valid(tag):
            raise InvalidPermission(tag)
        return tag

    def require_all(self, tags: Iterable[str]) -> frozenset:
        """Validate every tag before returning them as a set (first offender raises)."""
        checked = set()
        for tag in tags:
            checked.add(self.require(tag))
        return frozenset(checked)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, tag) -> bool:
        return self.is_valid(tag)


CATALOG = PermissionCatalog()

__all__ = ['PermissionCatalog', 'CATALOG']
