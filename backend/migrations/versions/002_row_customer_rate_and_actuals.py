"""Per-row customer rate, setup versioning and actuals tables

Revision ID: 002_row_rates_actuals
Revises: 001_planning_schema
Create Date: 2026-10-16

This migration adds:
- customer_rate_per_hour column to project_role_allocations (backfilled from the setup header)
- version and totals_stale columns to project_setups for concurrent save detection
- project_phases table for named week spans
- user_hourly_rates table for per-user, per-role internal rates
- project_members, timesheets, timesheet_entries and project_costing tables
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_row_rates_actuals'
down_revision = '001_planning_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('project_role_allocations',
                  sa.Column('customer_rate_per_hour', sa.Float(), nullable=False, server_default='0'))

    # Existing rows inherit the header rate they were being billed at
    op.execute(
        "UPDATE project_role_allocations SET customer_rate_per_hour = ("
        "SELECT ps.customer_rate_per_hour FROM project_setups ps "
        "WHERE ps.project_id = project_role_allocations.project_id)"
        " WHERE EXISTS (SELECT 1 FROM project_setups ps "
        "WHERE ps.project_id = project_role_allocations.project_id)"
    )

    op.add_column('project_setups', sa.Column('version', sa.Integer(), nullable=False, server_default='1'))
    op.add_column('project_setups', sa.Column('totals_stale', sa.Boolean(), nullable=False, server_default='false'))

    op.create_table(
        'project_phases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('phase_name', sa.String(length=100), nullable=False),
        sa.Column('start_week', sa.Integer(), nullable=False),
        sa.Column('end_week', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_project_phases_project_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_week <= end_week', name='check_phase_week_order')
    )
    op.create_index('ix_project_phases_project_id', 'project_phases', ['project_id'])

    op.create_table(
        'user_hourly_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('hourly_rate', sa.Float(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_user_hourly_rates_user_id'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name='fk_user_hourly_rates_role_id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_user_hourly_rates_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', 'organization_id', name='unique_user_role_org_rate')
    )

    op.create_table(
        'project_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=True),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_project_members_project_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_project_members_user_id'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name='fk_project_members_role_id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], name='fk_project_members_organization_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_member')
    )

    op.create_table(
        'timesheets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_timesheets_project_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_timesheets_user_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user_timesheet')
    )

    op.create_table(
        'timesheet_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('timesheet_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('hours', sa.Float(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['timesheet_id'], ['timesheets.id'], name='fk_timesheet_entries_timesheet_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('timesheet_id', 'date', name='unique_timesheet_entry_date'),
        sa.CheckConstraint('hours >= 0 AND hours <= 24', name='check_entry_hours_range')
    )
    op.create_index('ix_timesheet_entries_timesheet_id', 'timesheet_entries', ['timesheet_id'])

    op.create_table(
        'project_costing',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name='fk_project_costing_project_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_project_costing_user_id'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user_costing')
    )


def downgrade():
    op.drop_table('project_costing')

    op.drop_index('ix_timesheet_entries_timesheet_id', table_name='timesheet_entries')
    op.drop_table('timesheet_entries')
    op.drop_table('timesheets')
    op.drop_table('project_members')
    op.drop_table('user_hourly_rates')

    op.drop_index('ix_project_phases_project_id', table_name='project_phases')
    op.drop_table('project_phases')

    op.drop_column('project_setups', 'totals_stale')
    op.drop_column('project_setups', 'version')
    op.drop_column('project_role_allocations', 'customer_rate_per_hour')
