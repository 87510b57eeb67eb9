from flask import Blueprint, request
from flask_jwt_extended import get_jwt_identity
from policy_engine.constants.permissions import PERMISSION_ADMIN
from policy_engine.decorators.auth import require_permissions
from policy_engine.services.policy import get_policy_service
from policy_engine.utils.validation import require_json_object, parse_permission_list, parse_bool

roles_bp = Blueprint('roles', __name__)


@roles_bp.get('/permissions')
@require_permissions(PERMISSION_ADMIN)
def list_permissions():
    return {'data': get_policy_service().list_permissions()}


@roles_bp.get('/roles')
@require_permissions(PERMISSION_ADMIN)
def list_roles():
    service = get_policy_service()
    return {'data': [{'role': r, 'allowed': service.get_role_policy(r)} for r in service.list_roles()]}


@roles_bp.get('/roles/<role>/policy')
@require_permissions(PERMISSION_ADMIN)
def get_role_policy(role: str):
    return {'role': role, 'allowed': get_policy_service().get_role_policy(role)}


@roles_bp.put('/roles/<role>/policy')
@require_permissions(PERMISSION_ADMIN)
def set_role_policy(role: str):
    data = require_json_object(request.get_json(silent=True))
    allowed = parse_permission_list(data, 'allowed')
    return get_policy_service().set_role_policy(role, allowed, actor=get_jwt_identity())


@roles_bp.put('/roles/<role>/policy/<permission>')
@require_permissions(PERMISSION_ADMIN)
def toggle_role_permission(role: str, permission: str):
    data = require_json_object(request.get_json(silent=True))
    enabled = parse_bool(data, 'enabled')
    return get_policy_service().toggle_role_permission(role, permission, enabled, actor=get_jwt_identity())
