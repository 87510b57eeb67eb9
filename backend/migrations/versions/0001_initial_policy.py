"""initial policy tables

Revision ID: 0001_initial_policy
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_policy'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('role_policies',
        sa.Column('role', sa.String(length=32), primary_key=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True)
    )

    op.create_table('role_policy_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role', sa.String(length=32), sa.ForeignKey('role_policies.role', ondelete='CASCADE'), nullable=False),
        sa.Column('permission', sa.String(length=64), nullable=False)
    )
    op.create_index('ix_role_policy_permissions_role', 'role_policy_permissions', ['role'])
    # unique constraint handled via batch for sqlite
    with op.batch_alter_table('role_policy_permissions') as batch_op:
        batch_op.create_unique_constraint('uq_role_policy_permission', ['role', 'permission'])

    op.create_table('users',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True)
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('user_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission', sa.String(length=64), nullable=False),
        sa.Column('allowed', sa.Boolean(), nullable=False)
    )
    op.create_index('ix_user_overrides_user_id', 'user_overrides', ['user_id'])
    with op.batch_alter_table('user_overrides') as batch_op:
        batch_op.create_unique_constraint('uq_user_override', ['user_id', 'permission'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True)
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('user_overrides')
    op.drop_table('users')
    op.drop_table('role_policy_permissions')
    op.drop_table('role_policies')
