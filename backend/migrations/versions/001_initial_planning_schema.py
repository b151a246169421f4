"""Initial cost planning schema

Revision ID: 001_planning_schema
Revises: 
Create Date: 2026-10-16

This migration adds:
- organizations, users, roles and user_roles for multi-tenant access
- projects with project_type and setup_status
- project_setups header table holding pricing inputs and derived totals
- project_role_allocations and project_weekly_hours for the planning grid
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_planning_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('currency_symbol', sa.String(length=5), nullable=False, server_default='₹'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=True),
        sa.Column('password_hash', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=True),
        sa.Column('rate_per_hour', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_users_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='unique_user_email')
    )
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_system', sa.Boolean(), nullable=True, server_default='false'),
        sa.Column('default_rate_per_hour', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_roles_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', name='unique_org_role_name')
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_user_roles_user_id'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name='fk_user_roles_role_id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_user_roles_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='unique_user_role')
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('project_type', sa.String(length=20), nullable=False, server_default='simple'),
        sa.Column('setup_status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_projects_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_date <= end_date', name='check_project_date_order')
    )
    op.create_index('ix_projects_organization_id', 'projects', ['organization_id'])

    op.create_table(
        'project_setups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('total_weeks', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('customer_rate_per_hour', sa.Float(), nullable=False, server_default='0'),
        sa.Column('sold_cost_percentage', sa.Float(), nullable=False, server_default='11'),
        sa.Column('total_internal_hours', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_internal_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_customer_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('gross_margin_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_margin_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('margin_status', sa.String(length=10), nullable=False, server_default='red'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_project_setups_project_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', name='unique_project_setup')
    )

    op.create_table(
        'project_role_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('hourly_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('row_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_hours', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_allocations_project_id'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name='fk_allocations_role_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_allocations_user_id'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_project_role_allocations_project_id', 'project_role_allocations', ['project_id'])

    op.create_table(
        'project_weekly_hours',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('allocation_id', sa.Integer(), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('hours', sa.Float(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['allocation_id'], ['project_role_allocations.id'],
                                name='fk_weekly_hours_allocation_id', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('allocation_id', 'week_number', name='unique_allocation_week'),
        sa.CheckConstraint('week_number > 0', name='check_week_number_positive'),
        sa.CheckConstraint('hours >= 0 AND hours <= 168', name='check_weekly_hours_range')
    )
    op.create_index('ix_project_weekly_hours_allocation_id', 'project_weekly_hours', ['allocation_id'])


def downgrade():
    op.drop_index('ix_project_weekly_hours_allocation_id', table_name='project_weekly_hours')
    op.drop_table('project_weekly_hours')

    op.drop_index('ix_project_role_allocations_project_id', table_name='project_role_allocations')
    op.drop_table('project_role_allocations')

    op.drop_table('project_setups')

    op.drop_index('ix_projects_organization_id', table_name='projects')
    op.drop_table('projects')

    op.drop_table('user_roles')
    op.drop_table('roles')

    op.drop_index('ix_users_organization_id', table_name='users')
    op.drop_table('users')

    op.drop_table('organizations')
