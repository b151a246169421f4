from datetime import datetime, date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from collections import namedtuple, OrderedDict
import logging
import math

from flask import current_app, has_app_context

from errors import ValidationError, RecomputeError, validate_date_range

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')

MarginThresholds = namedtuple('MarginThresholds', ['red_max', 'green_min'])

# current margin <= red_max is red, >= green_min is green, anything between is yellow
DEFAULT_MARGIN_THRESHOLDS = MarginThresholds(red_max=5.0, green_min=20.0)

DEFAULT_BUDGET_VARIANCE_THRESHOLD = 10.0


def get_models_and_db():
    """Import models and db - call this inside engine functions"""
    from models import (
        Project, ProjectSetup, ProjectRoleAllocation, ProjectWeeklyHours,
        User, Role, UserHourlyRate, Timesheet, TimesheetEntry, ProjectCosting
    )
    from db import db
    return db, {
        'Project': Project,
        'ProjectSetup': ProjectSetup,
        'ProjectRoleAllocation': ProjectRoleAllocation,
        'ProjectWeeklyHours': ProjectWeeklyHours,
        'User': User,
        'Role': Role,
        'UserHourlyRate': UserHourlyRate,
        'Timesheet': Timesheet,
        'TimesheetEntry': TimesheetEntry,
        'ProjectCosting': ProjectCosting,
    }


def to_decimal(value):
    """Convert a stored float (or None) to Decimal without binary noise"""
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value, places=2):
    """
    Round half-up at the given number of decimal places.

    Args:
        value: number (float, int or Decimal)
        places: decimal places to keep

    Returns:
        float: rounded value
    """
    quantum = TWO_PLACES if places == 2 else Decimal(1).scaleb(-places)
    return float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def _to_date(value, field_name):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD)", field=field_name)
    raise ValidationError(f"{field_name} is required", field=field_name)


def calculate_weeks(start_date, end_date):
    """
    Number of calendar weeks spanned by an inclusive date range.

    Args:
        start_date, end_date: date, datetime or ISO-8601 string

    Returns:
        int: ceil(inclusive days / 7); a same-day range is one week
    """
    start = _to_date(start_date, 'start_date')
    end = _to_date(end_date, 'end_date')
    validate_date_range(start, end)

    days = (end - start).days + 1
    return math.ceil(days / 7)


def generate_week_numbers(total_weeks):
    """Week numbers 1..total_weeks"""
    return list(range(1, int(total_weeks) + 1))


def get_week_date_range(project_start, week_number):
    """
    Dates covered by a given project week.

    Args:
        project_start: first day of the project
        week_number: 1-based week index

    Returns:
        tuple: (week_start, week_end), both inclusive
    """
    if week_number < 1:
        raise ValidationError("week_number must be at least 1", field='week_number')
    start = _to_date(project_start, 'start_date')
    week_start = start + timedelta(days=(week_number - 1) * 7)
    return week_start, week_start + timedelta(days=6)


def calculate_allocation_totals(allocation_id):
    """
    Compute total hours and internal cost of one allocation row.

    Missing weeks count as zero. Nothing is written.

    Args:
        allocation_id: ID of the allocation row

    Returns:
        dict: {'total_hours', 'total_amount'} rounded half-up to 2 places

    Raises:
        RecomputeError: if the allocation cannot be loaded
    """
    db, models = get_models_and_db()
    allocation = db.session.get(models['ProjectRoleAllocation'], allocation_id)
    if not allocation:
        raise RecomputeError(f"Allocation {allocation_id} not found")

    total_hours = sum((to_decimal(wh.hours) for wh in allocation.weekly_hours), Decimal('0'))
    total_amount = total_hours * to_decimal(allocation.hourly_rate)

    return {
        'total_hours': round_half_up(total_hours),
        'total_amount': round_half_up(total_amount)
    }


def update_allocation_totals(allocation_id):
    """Recompute and store an allocation's totals in the session (no commit)"""
    db, models = get_models_and_db()
    totals = calculate_allocation_totals(allocation_id)

    allocation = db.session.get(models['ProjectRoleAllocation'], allocation_id)
    allocation.total_hours = totals['total_hours']
    allocation.total_amount = totals['total_amount']
    return totals


def zero_allocation_totals(allocation):
    """Explicitly clear the totals of an empty draft row"""
    allocation.total_hours = 0.0
    allocation.total_amount = 0.0


def calculate_project_totals(project_id):
    """
    Sum the already-computed totals of every allocation row of a project.

    This is a re-aggregation only: row totals must be recomputed first.
    Customer amount is aggregated per row from each row's own customer rate.

    Args:
        project_id: ID of the project

    Returns:
        dict: {'total_hours', 'total_cost', 'customer_amount'}
    """
    db, models = get_models_and_db()
    Allocation = models['ProjectRoleAllocation']

    allocations = Allocation.query.filter_by(project_id=project_id).all()

    total_hours = Decimal('0')
    total_cost = Decimal('0')
    customer_amount = Decimal('0')
    for allocation in allocations:
        hours = to_decimal(allocation.total_hours)
        total_hours += hours
        total_cost += to_decimal(allocation.total_amount)
        customer_amount += hours * to_decimal(allocation.customer_rate_per_hour)

    return {
        'total_hours': round_half_up(total_hours),
        'total_cost': round_half_up(total_cost),
        'customer_amount': round_half_up(customer_amount)
    }


def get_margin_thresholds():
    """Margin thresholds, overridable through MARGIN_RED_MAX / MARGIN_GREEN_MIN"""
    if not has_app_context():
        return DEFAULT_MARGIN_THRESHOLDS
    return MarginThresholds(
        red_max=float(current_app.config.get('MARGIN_RED_MAX', DEFAULT_MARGIN_THRESHOLDS.red_max)),
        green_min=float(current_app.config.get('MARGIN_GREEN_MIN', DEFAULT_MARGIN_THRESHOLDS.green_min))
    )


def classify_margin(current_margin, thresholds=DEFAULT_MARGIN_THRESHOLDS):
    """Traffic-light status of a current margin percentage"""
    if current_margin <= thresholds.red_max:
        return 'red'
    if current_margin >= thresholds.green_min:
        return 'green'
    return 'yellow'


def calculate_margins(internal_cost, customer_amount, sold_cost_percentage=11.0,
                      thresholds=DEFAULT_MARGIN_THRESHOLDS):
    """
    Compute gross margin, current margin and margin status.

    gross = (customer - internal) / customer * 100
    current = gross - sold_cost_percentage

    The status is classified on the rounded current margin so the stored
    percentage and the status always agree.

    Args:
        internal_cost: total internal cost
        customer_amount: total amount billed to the customer
        sold_cost_percentage: overhead percentage subtracted from gross margin
        thresholds: MarginThresholds to classify against

    Returns:
        dict: {'gross_margin', 'current_margin', 'margin_status'}
    """
    customer = to_decimal(customer_amount)
    if customer <= 0:
        return {'gross_margin': 0.0, 'current_margin': 0.0, 'margin_status': 'red'}

    internal = to_decimal(internal_cost)
    gross = (customer - internal) / customer * Decimal('100')
    current = gross - to_decimal(sold_cost_percentage)

    gross_margin = round_half_up(gross)
    current_margin = round_half_up(current)

    return {
        'gross_margin': gross_margin,
        'current_margin': current_margin,
        'margin_status': classify_margin(current_margin, thresholds)
    }


def update_project_setup_totals(project_id, thresholds=None):
    """
    Recompute and store every derived field on a project's setup header.

    Row totals must already be current. The header customer rate is never
    used here; customer amount comes from the rows. Does not validate,
    does not change setup status and does not commit.

    Args:
        project_id: ID of the project
        thresholds: optional MarginThresholds, defaults to app config

    Returns:
        ProjectSetup: the updated header

    Raises:
        RecomputeError: if the setup header cannot be loaded
    """
    db, models = get_models_and_db()
    setup = models['ProjectSetup'].query.filter_by(project_id=project_id).first()
    if not setup:
        raise RecomputeError(f"Project setup for project {project_id} not found")

    totals = calculate_project_totals(project_id)
    margins = calculate_margins(
        totals['total_cost'],
        totals['customer_amount'],
        setup.sold_cost_percentage,
        thresholds or get_margin_thresholds()
    )

    setup.total_internal_hours = totals['total_hours']
    setup.total_internal_cost = totals['total_cost']
    setup.total_customer_amount = totals['customer_amount']
    setup.gross_margin_percentage = margins['gross_margin']
    setup.current_margin_percentage = margins['current_margin']
    setup.margin_status = margins['margin_status']
    setup.totals_stale = False

    logger.info(
        f"Recomputed setup totals for project {project_id}: "
        f"cost={totals['total_cost']} customer={totals['customer_amount']} "
        f"status={margins['margin_status']}"
    )
    return setup


def validate_allocation_row(allocation):
    """Every finalize error for one allocation row"""
    errors = []
    if allocation.role_id is None:
        errors.append("Role is required")
    if allocation.user_id is None:
        errors.append("User is required")
    if not allocation.hourly_rate or allocation.hourly_rate <= 0:
        errors.append("Hourly rate must be greater than 0")

    total_hours = sum((to_decimal(wh.hours) for wh in allocation.weekly_hours), Decimal('0'))
    if total_hours <= 0:
        errors.append("At least one week must have hours greater than 0")
    elif not allocation.customer_rate_per_hour or allocation.customer_rate_per_hour <= 0:
        errors.append("Customer rate must be greater than 0 when hours are allocated")
    return errors


def validate_project_setup(project_id):
    """
    Check whether a project's plan is complete enough to finalize.

    All violations are collected, grouped per row with a 1-based row_index
    in display order.

    Args:
        project_id: ID of the project

    Returns:
        dict: {'valid', 'errors', 'validation_errors'}
    """
    db, models = get_models_and_db()
    setup = models['ProjectSetup'].query.filter_by(project_id=project_id).first()
    if not setup:
        return {'valid': False, 'errors': ["Project setup not found"], 'validation_errors': []}

    allocations = (
        models['ProjectRoleAllocation'].query
        .filter_by(project_id=project_id)
        .order_by(models['ProjectRoleAllocation'].row_order, models['ProjectRoleAllocation'].id)
        .all()
    )
    if not allocations:
        return {
            'valid': False,
            'errors': ["Cannot finalize: Add at least one resource allocation"],
            'validation_errors': []
        }

    validation_errors = []
    for index, allocation in enumerate(allocations, start=1):
        row_errors = validate_allocation_row(allocation)
        if row_errors:
            validation_errors.append({
                'row_index': index,
                'allocation_id': allocation.id,
                'errors': row_errors
            })

    errors = []
    if validation_errors:
        errors.append("Please fix the validation errors before finalizing")

    return {
        'valid': not validation_errors,
        'errors': errors,
        'validation_errors': validation_errors
    }


def get_default_hourly_rate(user_id, role_id, organization_id):
    """
    Resolve the default internal hourly rate for a new allocation row.

    Priority: the user's own rate, then the role default, then the most
    recent user/role rate for the organization.

    Returns:
        float or None
    """
    db, models = get_models_and_db()

    if user_id:
        user = db.session.get(models['User'], user_id)
        if user and user.rate_per_hour is not None:
            return user.rate_per_hour

    if role_id:
        role = db.session.get(models['Role'], role_id)
        if role and role.default_rate_per_hour is not None:
            return role.default_rate_per_hour

    if user_id and role_id:
        UserHourlyRate = models['UserHourlyRate']
        rate = (
            UserHourlyRate.query
            .filter_by(user_id=user_id, role_id=role_id, organization_id=organization_id)
            .order_by(UserHourlyRate.effective_from.desc())
            .first()
        )
        if rate:
            return rate.hourly_rate

    return None


def _variance_percentage(variance, baseline):
    if not baseline:
        return 0.0
    return round_half_up(to_decimal(variance) / to_decimal(baseline) * Decimal('100'))


def _is_finalized(project):
    return project.setup_status in (project.SETUP_READY, project.SETUP_LOCKED)


def calculate_cost_summary(project_id):
    """
    Planned versus actual cost for a finalized project.

    Args:
        project_id: ID of the project

    Returns:
        dict: planned/actual cost, variance, variance percentage, budget status
    """
    db, models = get_models_and_db()
    project = db.session.get(models['Project'], project_id)
    if not project:
        raise ValueError("Project not found")

    setup = models['ProjectSetup'].query.filter_by(project_id=project_id).first()
    if not setup or not _is_finalized(project):
        return {
            'planned_cost': 0.0,
            'actual_cost': 0.0,
            'variance': 0.0,
            'variance_percentage': 0.0,
            'budget_status': 'on_track',
            'message': 'Project setup is not finalized'
        }

    planned_cost = to_decimal(setup.total_internal_cost)
    costings = models['ProjectCosting'].query.filter_by(project_id=project_id).all()
    actual_cost = sum((to_decimal(c.amount) for c in costings), Decimal('0'))
    variance = actual_cost - planned_cost
    variance_percentage = _variance_percentage(variance, planned_cost)

    threshold = DEFAULT_BUDGET_VARIANCE_THRESHOLD
    if has_app_context():
        threshold = float(current_app.config.get('BUDGET_VARIANCE_THRESHOLD', threshold))

    if variance_percentage > threshold:
        budget_status = 'over'
    elif variance_percentage < -threshold:
        budget_status = 'under'
    else:
        budget_status = 'on_track'

    return {
        'planned_cost': round_half_up(planned_cost),
        'actual_cost': round_half_up(actual_cost),
        'variance': round_half_up(variance),
        'variance_percentage': variance_percentage,
        'budget_status': budget_status,
        'margin_status': setup.margin_status,
        'current_margin_percentage': setup.current_margin_percentage
    }


def calculate_planned_vs_actual(project_id):
    """
    Per-user planned hours (from the plan) against logged timesheet hours.

    Args:
        project_id: ID of the project

    Returns:
        list: one dict per planned user
    """
    db, models = get_models_and_db()
    project = db.session.get(models['Project'], project_id)
    if not project:
        raise ValueError("Project not found")
    if not _is_finalized(project):
        return []

    Allocation = models['ProjectRoleAllocation']
    allocations = (
        Allocation.query
        .filter(Allocation.project_id == project_id, Allocation.user_id.isnot(None))
        .order_by(Allocation.row_order, Allocation.id)
        .all()
    )

    planned = OrderedDict()
    for allocation in allocations:
        entry = planned.setdefault(allocation.user_id, {
            'user_id': allocation.user_id,
            'user_email': allocation.user.email if allocation.user else None,
            'role_name': allocation.role.name if allocation.role else None,
            'planned_hours': Decimal('0')
        })
        entry['planned_hours'] += sum((to_decimal(wh.hours) for wh in allocation.weekly_hours), Decimal('0'))

    Timesheet = models['Timesheet']
    TimesheetEntry = models['TimesheetEntry']
    report = []
    for user_id, entry in planned.items():
        timesheet = Timesheet.query.filter_by(project_id=project_id, user_id=user_id).first()
        actual_hours = Decimal('0')
        if timesheet:
            actual_hours = sum(
                (to_decimal(e.hours) for e in TimesheetEntry.query.filter_by(timesheet_id=timesheet.id)),
                Decimal('0')
            )
        variance = actual_hours - entry['planned_hours']
        report.append({
            'user_id': user_id,
            'user_email': entry['user_email'],
            'role_name': entry['role_name'],
            'planned_hours': round_half_up(entry['planned_hours']),
            'actual_hours': round_half_up(actual_hours),
            'variance': round_half_up(variance),
            'variance_percentage': _variance_percentage(variance, entry['planned_hours'])
        })

    return report
