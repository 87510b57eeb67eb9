"""Policy error taxonomy.

Every failure surfaced by the engine is a ``PolicyError``; ``kind`` tells the
caller which of the known cases occurred so a UI can pick the matching message.
"""
from __future__ import annotations
from typing import Optional


class PolicyError(Exception):
    kind = 'policy_error'
    status = 400

    def __init__(self, message: str, *, subject: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def to_dict(self):
        return {'kind': self.kind, 'detail': self.message, 'subject': self.subject}


class UnknownRole(PolicyError):
    kind = 'unknown_role'
    status = 404

    def __init__(self, role: str):
        super().__init__(f'Unknown role: {role}', subject=role)
        self.role = role


class InvalidPermission(PolicyError):
    kind = 'invalid_permission'
    status = 400

    def __init__(self, permission):
        super().__init__(f'Unknown permission: {permission}', subject=str(permission))
        self.permission = permission


class UnknownUser(PolicyError):
    kind = 'unknown_user'
    status = 404

    def __init__(self, user_id: str):
        super().__init__(f'Unknown user: {user_id}', subject=str(user_id))
        self.user_id = user_id


class PolicyTimeout(PolicyError):
    kind = 'timeout'
    status = 503

    def __init__(self, timeout: float):
        super().__init__(f'Policy write lock not acquired within {timeout}s')
        self.timeout = timeout


__all__ = ['PolicyError', 'UnknownRole', 'InvalidPermission', 'UnknownUser', 'PolicyTimeout']
