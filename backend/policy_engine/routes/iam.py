from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy import select
from policy_engine import get_db
from policy_engine.constants.permissions import PERMISSION_ADMIN, PERMISSION_AUDIT
from policy_engine.config.pagination import normalize_pagination
from policy_engine.decorators.auth import require_permissions
from policy_engine.errors import UnknownUser
from policy_engine.models.audit import AuditLog
from policy_engine.models.authz import User
from policy_engine.services.policy import get_policy_service
from policy_engine.utils.validation import require_json_object, parse_tristate, parse_override_map

iam_bp = Blueprint('iam', __name__)


@iam_bp.post('/auth/login')
def login():
    data = request.get_json(silent=True) or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email==email)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    # Role is informational only; permission checks resolve live per request
    token = create_access_token(identity=str(user.id), additional_claims={'role': user.role})
    return {'access_token': token}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    service = get_policy_service()
    try:
        user = service.get_user(get_jwt_identity())
    except UnknownUser:
        abort(404)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'perms': service.allowed_permissions(user.id),
    }


# --- Per-user overrides ---

@iam_bp.get('/users/<user_id>/overrides')
@require_permissions(PERMISSION_ADMIN)
def get_user_overrides(user_id: str):
    return {'user_id': user_id, 'overrides': get_policy_service().get_user_overrides(user_id)}


@iam_bp.put('/users/<user_id>/overrides')
@require_permissions(PERMISSION_ADMIN)
def replace_user_overrides(user_id: str):
    data = require_json_object(request.get_json(silent=True))
    overrides = parse_override_map(data)
    stored = get_policy_service().replace_user_overrides(user_id, overrides, actor=get_jwt_identity())
    return {'user_id': user_id, 'overrides': stored}


@iam_bp.put('/users/<user_id>/overrides/<permission>')
@require_permissions(PERMISSION_ADMIN)
def set_user_override(user_id: str, permission: str):
    data = require_json_object(request.get_json(silent=True))
    allowed = parse_tristate(data, 'allowed')
    service = get_policy_service()
    stored = service.set_user_override(user_id, permission, allowed, actor=get_jwt_identity())
    return {
        'user_id': user_id,
        'permission': permission,
        'state': stored.value,
        'effective': service.resolve(user_id, permission).to_dict(),
    }


@iam_bp.delete('/users/<user_id>/overrides/<permission>')
@require_permissions(PERMISSION_ADMIN)
def clear_user_override(user_id: str, permission: str):
    service = get_policy_service()
    removed = service.clear_user_override(user_id, permission, actor=get_jwt_identity())
    return {'user_id': user_id, 'permission': permission, 'removed': removed}


@iam_bp.get('/users/<user_id>/effective')
@require_permissions(PERMISSION_ADMIN)
def get_effective_permissions(user_id: str):
    decisions = get_policy_service().get_effective_permissions(user_id)
    return {'user_id': user_id, 'data': [d.to_dict() for d in decisions]}


@iam_bp.put('/users/<user_id>/role')
@require_permissions(PERMISSION_ADMIN)
def set_user_role(user_id: str):
    data = require_json_object(request.get_json(silent=True))
    role = data.get('role')
    if not isinstance(role, str) or not role:
        abort(400, description='role required')
    return get_policy_service().set_user_role(user_id, role, actor=get_jwt_identity())


# --- Audit Log Listing ---
@iam_bp.get('/audit/logs')
@require_permissions(PERMISSION_AUDIT)
def list_audit_logs():
    session = get_db()
    q = session.query(AuditLog)
    actor = request.args.get('actor_user_id')
    action = request.args.get('action')
    entity = request.args.get('entity')
    entity_id = request.args.get('entity_id')
    if actor:
        q = q.filter(AuditLog.actor_user_id==actor)
    if action:
        q = q.filter(AuditLog.action==action)
    if entity:
        q = q.filter(AuditLog.entity==entity)
    if entity_id:
        q = q.filter(AuditLog.entity_id==entity_id)
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    rows = q.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
    return {
        'data': [
            {
                'id': r.id,
                'actor_user_id': r.actor_user_id,
                'action': r.action,
                'entity': r.entity,
                'entity_id': r.entity_id,
                'meta': r.meta,
                'created_at': r.created_at.isoformat() if r.created_at else None
            } for r in rows
        ],
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
