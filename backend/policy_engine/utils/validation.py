from __future__ import annotations
"""Request payload validation helpers.

Shape checks only (types, required keys); catalog and role membership are the
policy service's job. Failures abort with 400 before the service is called.
"""
from typing import Any, Dict, List, Optional
from flask import abort


def require_json_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def parse_permission_list(data: Dict[str, Any], field_name: str = 'allowed') -> List[str]:
    if field_name not in data:
        abort(400, description=f'{field_name} required')
    value = data[field_name]
    if not isinstance(value, list) or any(not isinstance(p, str) for p in value):
        abort(400, description=f'{field_name} must be list[str]')
    return value


def parse_tristate(data: Dict[str, Any], field_name: str = 'allowed') -> Optional[bool]:
    """true/false set an explicit override, null means inherit."""
    if field_name not in data:
        abort(400, description=f'{field_name} required (true, false or null)')
    value = data[field_name]
    if value is not None and not isinstance(value, bool):
        abort(400, description=f'{field_name} must be true, false or null')
    return value


def parse_bool(data: Dict[str, Any], field_name: str) -> bool:
    value = data.get(field_name)
    if not isinstance(value, bool):
        abort(400, description=f'{field_name} must be boolean')
    return value


def parse_override_map(data: Dict[str, Any], field_name: str = 'overrides') -> Dict[str, Optional[bool]]:
    value = data.get(field_name)
    if not isinstance(value, dict):
        abort(400, description=f'{field_name} must be object of permission -> bool')
    for key, flag in value.items():
        if flag is not None and not isinstance(flag, bool):
            abort(400, description=f'{field_name}.{key} must be true, false or null')
    return value

__all__ = ['require_json_object', 'parse_permission_list', 'parse_tristate', 'parse_bool', 'parse_override_map']
