"""
Unit tests for Timesheet Planner database models
"""

import pytest
from datetime import date
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import IntegrityError

from app import create_app
from errors import ValidationError
from models import (
    db, Organization, User, Role, UserRole, Project, ProjectSetup, ProjectRoleAllocation,
    ProjectWeeklyHours, ProjectPhase, Timesheet
)


@pytest.fixture
def app():
    """Create and configure a test app instance."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def organization(app):
    organization = Organization(name='Model Org')
    db.session.add(organization)
    db.session.commit()
    return organization


@pytest.fixture
def project(app, organization):
    project = Project(organization.id, 'Model Project', date(2026, 3, 2), date(2026, 3, 29))
    db.session.add(project)
    db.session.commit()
    return project


class TestOrganizationModel:
    """Test cases for Organization model"""

    def test_currency_defaults(self, organization):
        assert organization.currency_code == 'INR'
        assert organization.currency_symbol == '₹'
        assert organization.currency() == {'code': 'INR', 'symbol': '₹'}

    def test_custom_currency(self, app):
        organization = Organization(name='US Org', currency_code='USD', currency_symbol='$')
        db.session.add(organization)
        db.session.commit()

        assert organization.to_dict()['currency_code'] == 'USD'


class TestUserModel:
    """Test cases for User model"""

    def test_password_hashing(self, organization):
        user = User(email='user@example.com', password='secret', organization_id=organization.id)
        db.session.add(user)
        db.session.commit()

        assert user.password_hash != 'secret'
        assert user.check_password('secret')
        assert not user.check_password('wrong')

    def test_to_dict_hides_password_hash(self, organization):
        user = User(email='user@example.com', password='secret', organization_id=organization.id)
        db.session.add(user)
        db.session.commit()

        assert 'password_hash' not in user.to_dict()
        assert 'password_hash' in user.to_dict(include_sensitive=True)

    def test_super_admin(self, app):
        admin = User(email='root@example.com', password='secret', role=User.SUPER_ADMIN)
        db.session.add(admin)
        db.session.commit()

        assert admin.is_super_admin
        assert admin.organization_id is None

    def test_role_names_are_organization_scoped(self, organization):
        user = User(email='manager@example.com', password='secret', organization_id=organization.id)
        manager = Role(organization.id, Role.MANAGER, is_system=True)
        db.session.add_all([user, manager])
        db.session.flush()
        db.session.add(UserRole(user.id, manager.id, organization.id))
        db.session.commit()

        assert user.role_names(organization.id) == ['MANAGER']
        assert user.role_names(organization.id + 1) == []

    def test_email_is_unique(self, organization):
        db.session.add(User(email='dup@example.com', password='secret'))
        db.session.add(User(email='dup@example.com', password='secret'))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestProjectModel:
    """Test cases for Project model"""

    def test_defaults(self, project):
        assert project.status == 'active'
        assert project.project_type == 'simple'
        assert project.setup_status == 'draft'
        assert not project.is_planned
        assert not project.is_locked

    def test_same_day_project_is_allowed(self, organization):
        project = Project(organization.id, 'One Day', date(2026, 3, 2), date(2026, 3, 2))
        assert project.start_date == project.end_date

    def test_end_before_start_is_rejected(self, organization):
        with pytest.raises(ValidationError):
            Project(organization.id, 'Backwards', date(2026, 3, 2), date(2026, 3, 1))

    def test_moving_end_before_start_is_rejected(self, project):
        with pytest.raises(ValidationError):
            project.end_date = date(2026, 3, 1)
        assert project.end_date == date(2026, 3, 29)

    def test_to_dict(self, project):
        data = project.to_dict()
        assert data['title'] == 'Model Project'
        assert data['start_date'] == '2026-03-02'
        assert data['setup_status'] == 'draft'


class TestProjectSetupModel:
    """Test cases for ProjectSetup model"""

    def test_defaults(self, project):
        setup = ProjectSetup(project.id, total_weeks=4)
        db.session.add(setup)
        db.session.commit()

        assert setup.sold_cost_percentage == 11.0
        assert setup.customer_rate_per_hour == 0
        assert setup.margin_status == 'red'
        assert setup.totals_stale is False
        assert setup.version == 1
        assert project.setup.id == setup.id

    def test_version_increments_on_update(self, project):
        setup = ProjectSetup(project.id, total_weeks=4)
        db.session.add(setup)
        db.session.commit()

        setup.sold_cost_percentage = 12.0
        db.session.commit()

        assert setup.version == 2

    def test_one_setup_per_project(self, project):
        db.session.add(ProjectSetup(project.id, total_weeks=4))
        db.session.add(ProjectSetup(project.id, total_weeks=4))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestAllocationModels:
    """Test cases for allocation rows and weekly hours"""

    def test_empty_draft_row(self, project):
        allocation = ProjectRoleAllocation(project.id)
        assert allocation.is_empty_draft

        allocation.hourly_rate = 10
        assert not allocation.is_empty_draft

    def test_to_dict_with_weekly_hours(self, project):
        allocation = ProjectRoleAllocation(project.id, hourly_rate=50, customer_rate_per_hour=80)
        allocation.weekly_hours.append(ProjectWeeklyHours(week_number=2, hours=8))
        allocation.weekly_hours.append(ProjectWeeklyHours(week_number=1, hours=4))
        db.session.add(allocation)
        db.session.commit()
        db.session.expire_all()

        data = db.session.get(ProjectRoleAllocation, allocation.id).to_dict(include_weekly_hours=True)

        assert data['weekly_hours'] == [{'week_number': 1, 'hours': 4}, {'week_number': 2, 'hours': 8}]
        assert data['role_id'] is None
        assert data['user_id'] is None

    def test_week_is_unique_per_allocation(self, project):
        allocation = ProjectRoleAllocation(project.id)
        db.session.add(allocation)
        db.session.flush()
        db.session.add(ProjectWeeklyHours(allocation.id, 1, 5))
        db.session.add(ProjectWeeklyHours(allocation.id, 1, 6))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_hours_are_bounded(self, project):
        allocation = ProjectRoleAllocation(project.id)
        db.session.add(allocation)
        db.session.flush()
        db.session.add(ProjectWeeklyHours(allocation.id, 1, 169))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_deleting_allocation_removes_weekly_hours(self, project):
        allocation = ProjectRoleAllocation(project.id)
        allocation.weekly_hours.append(ProjectWeeklyHours(week_number=1, hours=5))
        db.session.add(allocation)
        db.session.commit()
        allocation_id = allocation.id

        db.session.delete(allocation)
        db.session.commit()

        assert ProjectWeeklyHours.query.filter_by(allocation_id=allocation_id).count() == 0

    def test_allocations_ordered_by_row_order(self, project):
        db.session.add_all([
            ProjectRoleAllocation(project.id, row_order=2, hourly_rate=2),
            ProjectRoleAllocation(project.id, row_order=1, hourly_rate=1),
        ])
        db.session.commit()
        db.session.expire_all()

        assert [a.row_order for a in db.session.get(Project, project.id).allocations] == [1, 2]


class TestPhaseAndTimesheetModels:
    """Test cases for phases and timesheets"""

    def test_phase_weeks_must_be_ordered(self, project):
        db.session.add(ProjectPhase(project.id, 'Backwards', 3, 2))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_one_timesheet_per_project_user(self, project, organization):
        user = User(email='worker@example.com', password='secret', organization_id=organization.id)
        db.session.add(user)
        db.session.flush()
        db.session.add(Timesheet(project.id, user.id))
        db.session.add(Timesheet(project.id, user.id))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_timesheet_defaults_to_draft(self, project, organization):
        user = User(email='worker@example.com', password='secret', organization_id=organization.id)
        db.session.add(user)
        db.session.flush()
        timesheet = Timesheet(project.id, user.id)
        db.session.add(timesheet)
        db.session.commit()

        assert timesheet.status == 'DRAFT'
        assert timesheet.to_dict()['status'] == 'DRAFT'
