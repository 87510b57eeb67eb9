#!/usr/bin/env python
"""Idempotent seed script for role policies & demo users.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # report what would be created (no DB changes)
    python backend/scripts/seed_authz.py --export-json roles.json
    python backend/scripts/seed_authz.py --validate    # exit 2 when stored policies reference unknown tags/roles
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from policy_engine import create_app, get_db  # type: ignore
from policy_engine.constants.permissions import ALL_PERMISSIONS, ROLES, ROLE_PRESETS
from policy_engine.models.authz import Base, RolePolicy, RolePolicyPermission, User, UserOverride
import policy_engine.models.audit  # noqa: F401  register audit table

# Demo directory mirroring the store front-end's sample accounts
DEMO_USERS = [
    ('cust-admin-1', 'Admin User', 'admin@example.com', 'admin'),
    ('cust-sales-1', 'Sales Rep User', 'sales@example.com', 'sales_rep'),
    ('cust-reseller-1', 'Reseller Partner', 'reseller@example.com', 'reseller'),
    ('cust-tech-1', 'Technician User', 'tech@example.com', 'technician'),
    ('cust-support-1', 'Support Agent User', 'support@example.com', 'support_agent'),
    ('cust-customer-1', 'Alice Smith', 'alice@example.com', 'customer'),
    ('cust-customer-2', 'Bob Johnson', 'bob@example.com', 'customer'),
    ('cust-customer-3', 'Charlie Brown', 'charlie@example.com', 'customer'),
]


def ensure_role_policies(session, service, dry_run=False):
    if dry_run:
        return sum(1 for role in ROLES if not service.role_policies.has_role(session, role))
    return service.seed_role_policies({role: ROLE_PRESETS.get(role, []) for role in ROLES})


def ensure_demo_users(session, service, dry_run=False):
    password = os.getenv('SEED_USER_PASSWORD', 'ChangeMe123!')
    rows = session.execute(select(User.id, User.email)).all()
    existing_ids = {user_id for user_id, _ in rows}
    existing_emails = {email.lower() for _, email in rows}
    created = 0
    for user_id, name, email, role in DEMO_USERS:
        if user_id in existing_ids:
            continue
        if email.lower() in existing_emails:
            print(f"[WARN] Skipping {user_id}: {email} already belongs to another user")
            continue
        if not dry_run:
            service.register_user(user_id, name, email, role, password)
        created += 1
    if created and not dry_run:
        print(f"[INFO] Created {created} demo users with temporary password.")
    return created


def build_role_permission_map(session, service):
    return service.role_policies.snapshot_all(session)


def print_role_summary(session, service):
    rows = [(role, len(perms), perms[:8]) for role, perms in build_role_permission_map(session, service).items()]
    if not rows:
        print("[INFO] No roles present.")
        return
    name_w = max(len(r[0]) for r in rows)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, cnt, sample in rows:
        print(f"{name.ljust(name_w)} | {str(cnt).rjust(5)} | {', '.join(sample)}")


def validate(session):
    problems = []
    known = set(ALL_PERMISSIONS)
    stored_roles = set(session.execute(select(RolePolicy.role)).scalars().all())
    for role in ROLES:
        if role not in stored_roles:
            problems.append(f"Role '{role}' has no policy entry")
    for role, perm in session.execute(select(RolePolicyPermission.role, RolePolicyPermission.permission)):
        if perm not in known:
            problems.append(f"Role '{role}' references unknown permission: {perm}")
    for user_id, perm in session.execute(select(UserOverride.user_id, UserOverride.permission)):
        if perm not in known:
            problems.append(f"User '{user_id}' overrides unknown permission: {perm}")
    for user_id, role in session.execute(select(User.id, User.role)):
        if role not in stored_roles:
            problems.append(f"User '{user_id}' has role without policy: {role}")
    return problems


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed role policies & demo users",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--no-users', action='store_true', help='Skip demo user creation')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored policies & overrides; exits non-zero on problems')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app({'POLICY_SEED_ON_STARTUP': False})
    service = app.extensions['policy_service']
    with app.app_context():
        session = get_db()
        # Auto-create schema for bootstrap; in real env prefer alembic upgrade
        Base.metadata.create_all(session.get_bind())
        try:
            created_r = ensure_role_policies(session, service, args.dry_run)
            created_u = 0 if args.no_users else ensure_demo_users(session, service, args.dry_run)
            if args.validate:
                problems = validate(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    sys.exit(2)
                print('[VALIDATION] OK: All role policies, users & overrides valid.')
            if args.dry_run:
                print(f"[DRY-RUN] Role policies would create: {created_r}, Users would create: {created_u}")
            else:
                print(f"[DONE] Role policies created: {created_r}, Users created: {created_u}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(session, service)
            if args.export_json is not None:
                role_perm_map = build_role_permission_map(session, service)
                # Deterministic checksum for build caching / change detection
                canonical = json.dumps(role_perm_map, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': role_perm_map,
                    'meta': {
                        'catalog_size': len(ALL_PERMISSIONS),
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'dry_run': args.dry_run,
                    }
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

if __name__ == '__main__':
    main()
