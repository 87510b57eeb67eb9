from __future__ import annotations
from typing import Any, Dict, Optional
from policy_engine.models.audit import AuditLog


def add_audit(session, action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, actor: Optional[str] = None):
    """Persist an audit log entry within the given DB session.

    Parameters:
      action: short action code e.g. ROLE.POLICY.SET, USER.OVERRIDE.SET, USER.ROLE.SET
      entity: optional entity name (RolePolicy, User)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      actor: id of the user performing the change, None for system/seed operations
    """
    log = AuditLog(
        actor_user_id=str(actor) if actor is not None else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
