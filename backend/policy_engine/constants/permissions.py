"""Central enum-like definitions for permission tags and roles.
Extend cautiously; never rename a tag silently. Stored overrides and role policies reference these strings.
"""
from __future__ import annotations
from typing import Dict, List, Tuple

# Canonical catalog order (rendering order of the permission matrix)
ALL_PERMISSIONS: Tuple[str, ...] = (
    'dashboard_view',
    'pos_access',
    'inventory_view',
    'inventory_manage',
    'customers_view',
    'customers_manage',
    'repairs_view',
    'repairs_manage',
    'rentals_view',
    'rentals_manage',
    'activations_view',
    'activations_manage',
    'referrals_view',
    'referrals_manage',
    'work_items_view',
    'work_items_manage',
    'mailboxes_view',
    'mailboxes_manage',
    'messages_view',
    'messages_manage',
    'banking_view',
    'banking_manage',
    'commissions_view',
    'commissions_manage',
    'reports_view',
    'reports_generate',
    'settings_general',
    'settings_pos',
    'settings_users',
    'settings_integrations',
    'settings_reporting',
    'settings_mailboxes',
    'settings_system',
    'settings_permissions',
)

ROLES: Tuple[str, ...] = ('admin', 'sales_rep', 'reseller', 'technician', 'support_agent', 'customer')

WILDCARD = '*'

# Default policy per role, applied when a role has no stored policy yet
ROLE_PRESETS: Dict[str, List[str]] = {
    'admin': [WILDCARD],
    'sales_rep': [
        'dashboard_view', 'pos_access', 'inventory_view',
        'customers_view', 'customers_manage',
        'activations_view', 'activations_manage',
        'referrals_view', 'referrals_manage',
        'commissions_view',
        'messages_view', 'messages_manage',
        'work_items_view',
    ],
    'reseller': [
        'dashboard_view', 'pos_access', 'inventory_view',
        'customers_view', 'customers_manage',
        'commissions_view', 'activations_view', 'referrals_view',
    ],
    'technician': [
        'dashboard_view', 'repairs_view', 'repairs_manage',
        'inventory_view',  # parts lookup
        'work_items_view', 'work_items_manage',
    ],
    'support_agent': [
        'dashboard_view', 'work_items_view', 'work_items_manage',
        'messages_view', 'messages_manage', 'customers_view',
    ],
    'customer': [
        'dashboard_view', 'repairs_view', 'rentals_view', 'activations_view',
        'referrals_view', 'commissions_view', 'mailboxes_view', 'messages_view',
        'banking_view', 'reports_view', 'work_items_view',
    ],
}

# Permission guarding the policy administration endpoints
PERMISSION_ADMIN = 'settings_permissions'
PERMISSION_AUDIT = 'settings_system'


def expand_preset(codes: List[str], catalog: Tuple[str, ...] = ALL_PERMISSIONS) -> List[str]:
    """Expand the '*' wildcard to the whole catalog; other presets are returned as given."""
    if WILDCARD in codes:
        return list(catalog)
    return list(dict.fromkeys(codes))
