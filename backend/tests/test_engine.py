"""
Unit tests for the cost-planning calculation engine
"""

import pytest
from datetime import date, datetime
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from engine import (
    round_half_up,
    calculate_weeks,
    generate_week_numbers,
    get_week_date_range,
    calculate_allocation_totals,
    update_allocation_totals,
    calculate_project_totals,
    calculate_margins,
    classify_margin,
    MarginThresholds,
    update_project_setup_totals,
    validate_project_setup,
    get_default_hourly_rate,
    calculate_cost_summary,
    calculate_planned_vs_actual
)
from errors import ValidationError, RecomputeError
from app import create_app
from models import (
    db, Organization, User, Role, UserHourlyRate, Project, ProjectSetup,
    ProjectRoleAllocation, ProjectWeeklyHours, Timesheet, TimesheetEntry, ProjectCosting
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
def planning_data(app):
    """An organization with job roles, users and a four-week planned project."""
    organization = Organization(name='Test Org')
    db.session.add(organization)
    db.session.flush()

    developer = Role(organization.id, 'Developer', default_rate_per_hour=100.0)
    tester = Role(organization.id, 'QA Engineer')
    db.session.add_all([developer, tester])
    db.session.flush()

    dev_user = User(email='dev@example.com', password='testpass', organization_id=organization.id)
    qa_user = User(email='qa@example.com', password='testpass', organization_id=organization.id,
                   rate_per_hour=80.0)
    db.session.add_all([dev_user, qa_user])
    db.session.flush()

    project = Project(
        organization_id=organization.id,
        title='Test Project',
        start_date=date(2026, 1, 5),
        end_date=date(2026, 2, 1),
        project_type=Project.TYPE_PLANNED
    )
    db.session.add(project)
    db.session.flush()

    setup = ProjectSetup(project.id, total_weeks=4)
    db.session.add(setup)
    db.session.commit()

    return {
        'organization_id': organization.id,
        'developer_id': developer.id,
        'tester_id': tester.id,
        'dev_user_id': dev_user.id,
        'qa_user_id': qa_user.id,
        'project_id': project.id,
        'setup_id': setup.id
    }


def make_allocation(project_id, hours, hourly_rate, customer_rate=0.0, role_id=None, user_id=None, row_order=1):
    """Create an allocation row with one weekly-hours record per entry of `hours`."""
    allocation = ProjectRoleAllocation(
        project_id=project_id,
        role_id=role_id,
        user_id=user_id,
        hourly_rate=hourly_rate,
        customer_rate_per_hour=customer_rate,
        row_order=row_order
    )
    for week_number, value in enumerate(hours, start=1):
        allocation.weekly_hours.append(ProjectWeeklyHours(week_number=week_number, hours=value))
    db.session.add(allocation)
    db.session.commit()
    return allocation


class TestRounding:
    """Test half-up rounding at two decimals"""

    def test_rounds_half_up(self):
        assert round_half_up(2.675) == 2.68
        assert round_half_up(0.125) == 0.13
        assert round_half_up(-1.005) == -1.01

    def test_keeps_exact_values(self):
        assert round_half_up(1750) == 1750.0
        assert round_half_up(0) == 0.0


class TestWeekCalculator:
    """Test week count derivation from project dates"""

    def test_same_day_is_one_week(self):
        assert calculate_weeks(date(2026, 1, 1), date(2026, 1, 1)) == 1

    def test_seven_days_is_one_week(self):
        assert calculate_weeks(date(2026, 1, 1), date(2026, 1, 7)) == 1

    def test_eight_days_is_two_weeks(self):
        assert calculate_weeks(date(2026, 1, 1), date(2026, 1, 8)) == 2

    def test_fourteen_day_span_is_two_weeks(self):
        assert calculate_weeks(date(2026, 1, 1), date(2026, 1, 14)) == 2

    def test_fifteen_day_span_is_three_weeks(self):
        assert calculate_weeks(date(2026, 1, 1), date(2026, 1, 15)) == 3

    def test_accepts_iso_strings_and_datetimes(self):
        assert calculate_weeks('2026-01-01', '2026-01-15') == 3
        assert calculate_weeks(datetime(2026, 1, 1, 9, 30), '2026-01-14T18:00:00Z') == 2

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationError):
            calculate_weeks(date(2026, 1, 10), date(2026, 1, 1))

    def test_invalid_string_is_rejected(self):
        with pytest.raises(ValidationError):
            calculate_weeks('not-a-date', '2026-01-01')

    def test_generate_week_numbers(self):
        assert generate_week_numbers(4) == [1, 2, 3, 4]
        assert generate_week_numbers(0) == []

    def test_week_date_range(self):
        assert get_week_date_range(date(2026, 1, 5), 1) == (date(2026, 1, 5), date(2026, 1, 11))
        assert get_week_date_range(date(2026, 1, 5), 3) == (date(2026, 1, 19), date(2026, 1, 25))

    def test_week_date_range_rejects_week_zero(self):
        with pytest.raises(ValidationError):
            get_week_date_range(date(2026, 1, 5), 0)


class TestAllocationTotals:
    """Test per-row totals"""

    def test_sums_hours_and_multiplies_by_rate(self, app, planning_data):
        allocation = make_allocation(planning_data['project_id'], [10, 20, 0, 5], 50)

        totals = calculate_allocation_totals(allocation.id)

        assert totals['total_hours'] == 35
        assert totals['total_amount'] == 1750.00

    def test_missing_weeks_count_as_zero(self, app, planning_data):
        allocation = make_allocation(planning_data['project_id'], [], 75)

        totals = calculate_allocation_totals(allocation.id)

        assert totals == {'total_hours': 0.0, 'total_amount': 0.0}

    def test_amount_is_rounded_half_up(self, app, planning_data):
        allocation = make_allocation(planning_data['project_id'], [1.5, 0.25], 33.33)

        totals = calculate_allocation_totals(allocation.id)

        assert totals['total_hours'] == 1.75
        # 1.75 * 33.33 = 58.3275
        assert totals['total_amount'] == 58.33

    def test_unknown_allocation_raises_and_writes_nothing(self, app, planning_data):
        with pytest.raises(RecomputeError):
            calculate_allocation_totals(99999)

    def test_update_persists_totals(self, app, planning_data):
        allocation = make_allocation(planning_data['project_id'], [8, 8], 100)

        update_allocation_totals(allocation.id)
        db.session.commit()

        stored = db.session.get(ProjectRoleAllocation, allocation.id)
        assert stored.total_hours == 16
        assert stored.total_amount == 1600


class TestProjectTotals:
    """Test aggregation of row totals"""

    def test_sums_persisted_row_totals(self, app, planning_data):
        project_id = planning_data['project_id']
        first = make_allocation(project_id, [10, 10], 50, customer_rate=80)
        second = make_allocation(project_id, [5], 100, customer_rate=150, row_order=2)
        update_allocation_totals(first.id)
        update_allocation_totals(second.id)
        db.session.commit()

        totals = calculate_project_totals(project_id)

        assert totals['total_hours'] == 25
        assert totals['total_cost'] == 1500
        # 20 * 80 + 5 * 150
        assert totals['customer_amount'] == 2350

    def test_does_not_recompute_rows(self, app, planning_data):
        allocation = make_allocation(planning_data['project_id'], [10], 50)

        # Row totals were never computed, so the aggregate sees zeros
        assert calculate_project_totals(planning_data['project_id'])['total_hours'] == 0

        update_allocation_totals(allocation.id)
        assert calculate_project_totals(planning_data['project_id'])['total_hours'] == 10

    def test_empty_project(self, app, planning_data):
        totals = calculate_project_totals(planning_data['project_id'])
        assert totals == {'total_hours': 0.0, 'total_cost': 0.0, 'customer_amount': 0.0}


class TestMarginEngine:
    """Test margin percentages and traffic-light status"""

    def test_zero_customer_amount_is_red(self):
        result = calculate_margins(1000, 0, 11)
        assert result == {'gross_margin': 0.0, 'current_margin': 0.0, 'margin_status': 'red'}

    def test_current_margin_nineteen_is_yellow(self):
        result = calculate_margins(700, 1000, 11)
        assert result['gross_margin'] == 30.00
        assert result['current_margin'] == 19.00
        assert result['margin_status'] == 'yellow'

    def test_current_margin_twenty_is_green(self):
        result = calculate_margins(690, 1000, 11)
        assert result['gross_margin'] == 31.00
        assert result['current_margin'] == 20.00
        assert result['margin_status'] == 'green'

    def test_current_margin_five_is_red(self):
        result = calculate_margins(840, 1000, 11)
        assert result['current_margin'] == 5.00
        assert result['margin_status'] == 'red'

    def test_between_five_and_six_is_yellow(self):
        result = calculate_margins(835, 1000, 11)
        assert result['current_margin'] == 5.50
        assert result['margin_status'] == 'yellow'

    def test_loss_making_plan_is_red(self):
        result = calculate_margins(1200, 1000, 11)
        assert result['gross_margin'] == -20.00
        assert result['current_margin'] == -31.00
        assert result['margin_status'] == 'red'

    def test_percentages_are_rounded(self):
        result = calculate_margins(200, 300, 0)
        assert result['gross_margin'] == 33.33
        assert result['current_margin'] == 33.33

    def test_custom_thresholds(self):
        thresholds = MarginThresholds(red_max=10, green_min=15)
        assert calculate_margins(700, 1000, 11, thresholds)['margin_status'] == 'green'
        assert classify_margin(10, thresholds) == 'red'
        assert classify_margin(12.5, thresholds) == 'yellow'


class TestSetupTotalsUpdater:
    """Test recomputation of the setup header"""

    def test_writes_all_derived_fields(self, app, planning_data):
        project_id = planning_data['project_id']
        allocation = make_allocation(project_id, [10, 10, 10, 10], 70, customer_rate=100)
        update_allocation_totals(allocation.id)

        setup = update_project_setup_totals(project_id)
        db.session.commit()

        assert setup.total_internal_hours == 40
        assert setup.total_internal_cost == 2800
        assert setup.total_customer_amount == 4000
        assert setup.gross_margin_percentage == 30.00
        assert setup.current_margin_percentage == 19.00
        assert setup.margin_status == 'yellow'

    def test_is_idempotent(self, app, planning_data):
        project_id = planning_data['project_id']
        allocation = make_allocation(project_id, [12.5, 7.25], 61.1, customer_rate=95.5)
        update_allocation_totals(allocation.id)

        update_project_setup_totals(project_id)
        db.session.commit()
        first = db.session.get(ProjectSetup, planning_data['setup_id']).to_dict()

        update_project_setup_totals(project_id)
        db.session.commit()
        second = db.session.get(ProjectSetup, planning_data['setup_id']).to_dict()

        for key in ('total_internal_hours', 'total_internal_cost', 'total_customer_amount',
                    'gross_margin_percentage', 'current_margin_percentage', 'margin_status'):
            assert first[key] == second[key]

    def test_no_rows_yields_zeros_and_red(self, app, planning_data):
        setup = update_project_setup_totals(planning_data['project_id'])

        assert setup.total_internal_cost == 0
        assert setup.total_customer_amount == 0
        assert setup.margin_status == 'red'

    def test_header_rate_is_not_used_for_customer_amount(self, app, planning_data):
        project_id = planning_data['project_id']
        setup = db.session.get(ProjectSetup, planning_data['setup_id'])
        setup.customer_rate_per_hour = 9999
        db.session.commit()

        allocation = make_allocation(project_id, [10], 50, customer_rate=100)
        update_allocation_totals(allocation.id)
        setup = update_project_setup_totals(project_id)

        assert setup.total_customer_amount == 1000

    def test_uses_sold_cost_percentage_from_header(self, app, planning_data):
        project_id = planning_data['project_id']
        setup = db.session.get(ProjectSetup, planning_data['setup_id'])
        setup.sold_cost_percentage = 0
        db.session.commit()

        allocation = make_allocation(project_id, [10], 70, customer_rate=100)
        update_allocation_totals(allocation.id)
        setup = update_project_setup_totals(project_id)

        assert setup.current_margin_percentage == 30.00
        assert setup.margin_status == 'green'

    def test_clears_stale_flag(self, app, planning_data):
        setup = db.session.get(ProjectSetup, planning_data['setup_id'])
        setup.totals_stale = True
        db.session.commit()

        assert update_project_setup_totals(planning_data['project_id']).totals_stale is False

    def test_missing_setup_raises(self, app, planning_data):
        db.session.delete(db.session.get(ProjectSetup, planning_data['setup_id']))
        db.session.commit()

        with pytest.raises(RecomputeError):
            update_project_setup_totals(planning_data['project_id'])

    def test_thresholds_come_from_config(self, app, planning_data):
        app.config['MARGIN_GREEN_MIN'] = 15
        project_id = planning_data['project_id']
        allocation = make_allocation(project_id, [10], 70, customer_rate=100)
        update_allocation_totals(allocation.id)

        assert update_project_setup_totals(project_id).margin_status == 'green'


class TestFinalizeValidation:
    """Test the draft -> ready guard"""

    def test_no_rows(self, app, planning_data):
        result = validate_project_setup(planning_data['project_id'])

        assert result['valid'] is False
        assert result['errors'] == ["Cannot finalize: Add at least one resource allocation"]

    def test_missing_user_is_reported_on_its_row(self, app, planning_data):
        project_id = planning_data['project_id']
        make_allocation(project_id, [10], 100, customer_rate=150,
                        role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])
        make_allocation(project_id, [10], 100, customer_rate=150,
                        role_id=planning_data['developer_id'], row_order=2)

        result = validate_project_setup(project_id)

        assert result['valid'] is False
        assert result['validation_errors'] == [{
            'row_index': 2,
            'allocation_id': result['validation_errors'][0]['allocation_id'],
            'errors': ["User is required"]
        }]

    def test_collects_every_error_of_a_row(self, app, planning_data):
        make_allocation(planning_data['project_id'], [], 0)

        result = validate_project_setup(planning_data['project_id'])

        assert result['validation_errors'][0]['errors'] == [
            "Role is required",
            "User is required",
            "Hourly rate must be greater than 0",
            "At least one week must have hours greater than 0"
        ]

    def test_customer_rate_required_when_hours_allocated(self, app, planning_data):
        make_allocation(planning_data['project_id'], [10], 100, customer_rate=0,
                        role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])

        result = validate_project_setup(planning_data['project_id'])

        assert result['validation_errors'][0]['errors'] == [
            "Customer rate must be greater than 0 when hours are allocated"
        ]

    def test_hours_come_from_weekly_rows_not_stored_totals(self, app, planning_data):
        # Stored total_hours is still 0 but weekly hours exist
        make_allocation(planning_data['project_id'], [4], 100, customer_rate=150,
                        role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])

        assert validate_project_setup(planning_data['project_id'])['valid'] is True

    def test_missing_setup(self, app, planning_data):
        db.session.delete(db.session.get(ProjectSetup, planning_data['setup_id']))
        db.session.commit()

        result = validate_project_setup(planning_data['project_id'])
        assert result['errors'] == ["Project setup not found"]


class TestDefaultHourlyRate:
    """Test default rate resolution order"""

    def test_user_rate_wins(self, app, planning_data):
        rate = get_default_hourly_rate(planning_data['qa_user_id'], planning_data['developer_id'],
                                       planning_data['organization_id'])
        assert rate == 80.0

    def test_falls_back_to_role_default(self, app, planning_data):
        rate = get_default_hourly_rate(planning_data['dev_user_id'], planning_data['developer_id'],
                                       planning_data['organization_id'])
        assert rate == 100.0

    def test_zero_user_rate_is_a_configured_rate(self, app, planning_data):
        db.session.get(User, planning_data['dev_user_id']).rate_per_hour = 0.0
        db.session.commit()

        rate = get_default_hourly_rate(planning_data['dev_user_id'], planning_data['developer_id'],
                                       planning_data['organization_id'])
        assert rate == 0.0

    def test_falls_back_to_latest_user_hourly_rate(self, app, planning_data):
        db.session.add(UserHourlyRate(planning_data['dev_user_id'], planning_data['tester_id'],
                                      planning_data['organization_id'], 65.0, date(2026, 1, 1)))
        db.session.commit()

        rate = get_default_hourly_rate(planning_data['dev_user_id'], planning_data['tester_id'],
                                       planning_data['organization_id'])
        assert rate == 65.0

    def test_none_when_nothing_is_set(self, app, planning_data):
        assert get_default_hourly_rate(planning_data['dev_user_id'], planning_data['tester_id'],
                                       planning_data['organization_id']) is None
        assert get_default_hourly_rate(None, None, planning_data['organization_id']) is None


class TestReports:
    """Test cost summary and planned vs actual"""

    def _finalize(self, planning_data):
        project = db.session.get(Project, planning_data['project_id'])
        project.setup_status = Project.SETUP_READY
        db.session.commit()

    def test_cost_summary_before_finalize_is_zero(self, app, planning_data):
        summary = calculate_cost_summary(planning_data['project_id'])

        assert summary['planned_cost'] == 0
        assert summary['actual_cost'] == 0
        assert summary['budget_status'] == 'on_track'

    def test_cost_summary_over_budget(self, app, planning_data):
        project_id = planning_data['project_id']
        allocation = make_allocation(project_id, [10], 100, customer_rate=150,
                                     role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])
        update_allocation_totals(allocation.id)
        update_project_setup_totals(project_id)
        db.session.add(ProjectCosting(project_id, planning_data['dev_user_id'], rate=100, amount=1200))
        self._finalize(planning_data)

        summary = calculate_cost_summary(project_id)

        assert summary['planned_cost'] == 1000
        assert summary['actual_cost'] == 1200
        assert summary['variance'] == 200
        assert summary['variance_percentage'] == 20.0
        assert summary['budget_status'] == 'over'

    def test_cost_summary_within_threshold_is_on_track(self, app, planning_data):
        project_id = planning_data['project_id']
        allocation = make_allocation(project_id, [10], 100, customer_rate=150,
                                     role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])
        update_allocation_totals(allocation.id)
        update_project_setup_totals(project_id)
        db.session.add(ProjectCosting(project_id, planning_data['dev_user_id'], rate=100, amount=950))
        self._finalize(planning_data)

        summary = calculate_cost_summary(project_id)

        assert summary['variance_percentage'] == -5.0
        assert summary['budget_status'] == 'on_track'

    def test_planned_vs_actual(self, app, planning_data):
        project_id = planning_data['project_id']
        make_allocation(project_id, [10, 10], 100, customer_rate=150,
                        role_id=planning_data['developer_id'], user_id=planning_data['dev_user_id'])
        timesheet = Timesheet(project_id, planning_data['dev_user_id'])
        db.session.add(timesheet)
        db.session.flush()
        db.session.add_all([
            TimesheetEntry(timesheet.id, date(2026, 1, 5), 8),
            TimesheetEntry(timesheet.id, date(2026, 1, 6), 7),
        ])
        self._finalize(planning_data)

        report = calculate_planned_vs_actual(project_id)

        assert len(report) == 1
        assert report[0]['planned_hours'] == 20
        assert report[0]['actual_hours'] == 15
        assert report[0]['variance'] == -5
        assert report[0]['variance_percentage'] == -25.0
        assert report[0]['role_name'] == 'Developer'

    def test_planned_vs_actual_empty_before_finalize(self, app, planning_data):
        assert calculate_planned_vs_actual(planning_data['project_id']) == []
