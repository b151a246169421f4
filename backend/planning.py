"""
Project cost-planning orchestration.

Applies grid edits (batch save draft, per-row edits, weekly hours, phases),
drives the totals recompute in the right order, and runs the
draft -> ready transition with its best-effort downstream bootstrap.

Callers decide who may do what and pass the outcome in as `authorized`;
nothing here looks up permissions.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
import logging
import math
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from db import db
from models import (
    Project, ProjectSetup, ProjectRoleAllocation, ProjectWeeklyHours, ProjectPhase,
    ProjectMember, Timesheet, User, Role, UserHourlyRate, utc_now
)
from errors import (
    ValidationError, NotFoundError, ConflictError, ForbiddenError, BusinessLogicError,
    RecomputeError, validate_non_negative_number, validate_percentage, safe_db_operation
)
from engine import (
    calculate_weeks, update_allocation_totals, zero_allocation_totals,
    update_project_setup_totals, validate_project_setup, get_default_hourly_rate
)

logger = logging.getLogger(__name__)

# Keys a row payload may leave out; absence means "keep what is stored"
_MISSING = object()


@dataclass
class AllocationWithJoins:
    """An allocation row with its optional user/role and its weekly hours"""
    allocation: ProjectRoleAllocation
    user: Optional[User]
    role: Optional[Role]
    weekly_hours: List[ProjectWeeklyHours]

    def to_dict(self):
        data = self.allocation.to_dict()
        data['user'] = (
            {'id': self.user.id, 'email': self.user.email, 'full_name': self.user.full_name}
            if self.user else None
        )
        data['role'] = {'id': self.role.id, 'name': self.role.name} if self.role else None
        data['weekly_hours'] = [wh.to_dict() for wh in self.weekly_hours]
        return data


@dataclass
class ProjectSetupView:
    project: Project
    setup: ProjectSetup
    allocations: List[AllocationWithJoins]
    phases: List[ProjectPhase]
    currency: dict

    def to_dict(self):
        return {
            'project': self.project.to_dict(),
            'setup': self.setup.to_dict(),
            'allocations': [a.to_dict() for a in self.allocations],
            'phases': [p.to_dict() for p in self.phases],
            'currency': self.currency
        }


@dataclass
class SaveDraftResult:
    setup: ProjectSetup
    allocations: List[AllocationWithJoins]
    warnings: List[str] = field(default_factory=list)
    stale_allocation_ids: List[int] = field(default_factory=list)

    @property
    def retryable(self):
        return bool(self.warnings)

    def to_dict(self):
        return {
            'success': True,
            'setup': self.setup.to_dict(),
            'allocations': [a.to_dict() for a in self.allocations],
            'warnings': self.warnings,
            'stale_allocation_ids': self.stale_allocation_ids,
            'retryable': self.retryable
        }


@dataclass
class BootstrapResult:
    members_created: int = 0
    timesheets_created: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'members_created': self.members_created,
            'timesheets_created': self.timesheets_created,
            'warnings': self.warnings
        }


@dataclass
class FinalizeResult:
    setup: ProjectSetup
    bootstrap: BootstrapResult

    @property
    def warnings(self):
        return self.bootstrap.warnings

    def to_dict(self):
        return {
            'success': True,
            'message': 'Project setup finalized successfully',
            'setup': self.setup.to_dict(),
            'members_created': self.bootstrap.members_created,
            'timesheets_created': self.bootstrap.timesheets_created,
            'warnings': self.bootstrap.warnings
        }


def _require_authorized(authorized):
    if not authorized:
        raise ForbiddenError("You do not have permission to manage this project")


def _load_project(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    return project


def _ensure_editable(project):
    if project.is_locked:
        raise BusinessLogicError("Project setup is locked and can no longer be edited")


def _lock_setup(project_id):
    """Load the setup header with a row lock held until commit/rollback"""
    setup = (
        ProjectSetup.query
        .filter_by(project_id=project_id)
        .with_for_update()
        .first()
    )
    if not setup:
        raise NotFoundError("Project setup for project", project_id)
    return setup


def _check_version(setup, expected_version):
    if expected_version is None:
        return
    try:
        expected = int(expected_version)
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer", field='version')
    if expected != setup.version:
        db.session.rollback()
        raise ConflictError(
            f"Project setup has changed since it was loaded (version {expected}, now {setup.version}); "
            "reload and try again"
        )


def _touch(setup):
    # Forces an UPDATE of the header so its version is bumped and checked
    setup.updated_at = utc_now()


def _commit(error_message):
    safe_db_operation(db.session.commit, error_message)


def _load_allocations(project_id):
    allocations = (
        ProjectRoleAllocation.query
        .filter_by(project_id=project_id)
        .order_by(ProjectRoleAllocation.row_order, ProjectRoleAllocation.id)
        .all()
    )
    return [
        AllocationWithJoins(
            allocation=allocation,
            user=allocation.user,
            role=allocation.role,
            weekly_hours=list(allocation.weekly_hours)
        )
        for allocation in allocations
    ]


def _next_row_order(project_id):
    current_max = (
        db.session.query(db.func.max(ProjectRoleAllocation.row_order))
        .filter(ProjectRoleAllocation.project_id == project_id)
        .scalar()
    )
    return (current_max or 0) + 1


def _default_sold_cost():
    return float(current_app.config.get('DEFAULT_SOLD_COST_PERCENTAGE', 11.0))


def _create_setup(project):
    setup = ProjectSetup(
        project_id=project.id,
        total_weeks=calculate_weeks(project.start_date, project.end_date),
        customer_rate_per_hour=0.0,
        sold_cost_percentage=_default_sold_cost()
    )
    db.session.add(setup)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created it first
        db.session.rollback()
        setup = ProjectSetup.query.filter_by(project_id=project.id).first()
        if not setup:
            raise
    else:
        logger.info(f"Created project setup for project {project.id} with {setup.total_weeks} weeks")
    return setup


def get_project_setup(project_id, *, authorized):
    """
    Load a project's plan, creating the setup header on first access.

    The stored week count is re-derived when the project dates have moved.

    Returns:
        ProjectSetupView
    """
    _require_authorized(authorized)
    project = _load_project(project_id)

    setup = ProjectSetup.query.filter_by(project_id=project_id).first()
    if not setup:
        setup = _create_setup(project)
    else:
        total_weeks = calculate_weeks(project.start_date, project.end_date)
        if setup.total_weeks != total_weeks:
            logger.info(f"Project {project_id} dates changed; total weeks {setup.total_weeks} -> {total_weeks}")
            setup.total_weeks = total_weeks
            _commit("Failed to update project weeks")

    organization = project.organization
    currency = organization.currency() if organization else {'code': 'INR', 'symbol': '₹'}

    return ProjectSetupView(
        project=project,
        setup=setup,
        allocations=_load_allocations(project_id),
        phases=list(project.phases),
        currency=currency
    )


def _parse_weekly_hours(entries, errors):
    """Validate a weekly-hours payload; returns {week_number: hours}, last entry wins"""
    if not isinstance(entries, list):
        errors.append("weekly_hours must be an array")
        return {}

    weeks = OrderedDict()
    for entry in entries:
        if not isinstance(entry, dict):
            errors.append("Each weekly hours entry must be an object")
            continue
        try:
            week_number = int(entry.get('week_number'))
        except (TypeError, ValueError):
            errors.append("week_number must be an integer")
            continue
        if week_number < 1:
            errors.append(f"Week {week_number}: week_number must be at least 1")
            continue
        try:
            hours = float(entry.get('hours', 0) or 0)
        except (TypeError, ValueError):
            errors.append(f"Week {week_number}: hours must be a number")
            continue
        if not math.isfinite(hours) or hours < 0 or hours > ProjectWeeklyHours.MAX_HOURS:
            errors.append(f"Week {week_number}: hours must be between 0 and {ProjectWeeklyHours.MAX_HOURS}")
            continue
        weeks[week_number] = hours
    return weeks


def _parse_reference(row, key, model, project, errors, label):
    if key not in row:
        return _MISSING
    value = row[key]
    if value in (None, ''):
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        errors.append(f"{label} must be an integer id")
        return _MISSING
    instance = db.session.get(model, value)
    if not instance or instance.organization_id != project.organization_id:
        errors.append(f"{label} {value} does not belong to this organization")
        return _MISSING
    return value


def _parse_rate(row, key, errors, label):
    if key not in row:
        return _MISSING
    if row[key] in (None, ''):
        return None
    try:
        return validate_non_negative_number(row[key], key, f"{label} must be positive")
    except ValidationError as e:
        errors.append(e.message)
        return _MISSING


def _parse_row(row, project, existing):
    """Normalize one grid row; returns (cleaned, errors)"""
    errors = []
    if not isinstance(row, dict):
        return None, ["Row must be an object"]

    cleaned = {'id': None}
    if row.get('id') is not None:
        try:
            allocation_id = int(row['id'])
        except (TypeError, ValueError):
            allocation_id = None
        if allocation_id not in existing:
            errors.append(f"Allocation {row['id']} does not belong to this project")
        cleaned['id'] = allocation_id

    cleaned['role_id'] = _parse_reference(row, 'role_id', Role, project, errors, "Role")
    cleaned['user_id'] = _parse_reference(row, 'user_id', User, project, errors, "User")
    cleaned['hourly_rate'] = _parse_rate(row, 'hourly_rate', errors, "Hourly rate")
    cleaned['customer_rate_per_hour'] = _parse_rate(row, 'customer_rate_per_hour', errors, "Customer rate")

    cleaned['row_order'] = _MISSING
    if row.get('row_order') is not None:
        try:
            cleaned['row_order'] = int(row['row_order'])
        except (TypeError, ValueError):
            errors.append("row_order must be an integer")

    cleaned['weekly_hours'] = _MISSING
    if 'weekly_hours' in row:
        cleaned['weekly_hours'] = _parse_weekly_hours(row['weekly_hours'] or [], errors)

    return cleaned, errors


def _parse_rows(rows, project, existing):
    cleaned_rows = []
    validation_errors = []
    seen_ids = set()
    for index, row in enumerate(rows, start=1):
        cleaned, errors = _parse_row(row, project, existing)
        if cleaned and cleaned['id'] is not None:
            if cleaned['id'] in seen_ids:
                errors.append(f"Allocation {cleaned['id']} appears more than once")
            seen_ids.add(cleaned['id'])
        if errors:
            validation_errors.append({'row_index': index, 'errors': errors})
        cleaned_rows.append(cleaned)

    if validation_errors:
        db.session.rollback()
        raise ValidationError("Invalid allocation rows", validation_errors=validation_errors)
    return cleaned_rows


def _replace_weekly_hours(allocation, weeks):
    """Make the row's stored weeks exactly `weeks`; unlisted weeks become absent"""
    stored = {wh.week_number: wh for wh in allocation.weekly_hours}
    for week_number, record in stored.items():
        if week_number not in weeks:
            allocation.weekly_hours.remove(record)
    _upsert_weekly_hours(allocation, weeks, stored)


def _upsert_weekly_hours(allocation, weeks, stored=None):
    if stored is None:
        stored = {wh.week_number: wh for wh in allocation.weekly_hours}
    for week_number, hours in weeks.items():
        record = stored.get(week_number)
        if record is not None:
            record.hours = hours
        else:
            allocation.weekly_hours.append(ProjectWeeklyHours(week_number=week_number, hours=hours))


def _apply_row(allocation, cleaned):
    for key in ('role_id', 'user_id', 'row_order'):
        if cleaned[key] is not _MISSING:
            setattr(allocation, key, cleaned[key])
    if cleaned['hourly_rate'] is not _MISSING:
        allocation.hourly_rate = cleaned['hourly_rate'] or 0.0
    if cleaned['customer_rate_per_hour'] is not _MISSING:
        allocation.customer_rate_per_hour = cleaned['customer_rate_per_hour'] or 0.0
    if cleaned['weekly_hours'] is not _MISSING:
        _replace_weekly_hours(allocation, cleaned['weekly_hours'])


def _new_allocation(project, setup, cleaned, row_order):
    role_id = cleaned['role_id'] if cleaned['role_id'] is not _MISSING else None
    user_id = cleaned['user_id'] if cleaned['user_id'] is not _MISSING else None

    hourly_rate = cleaned['hourly_rate']
    if hourly_rate in (_MISSING, None):
        hourly_rate = get_default_hourly_rate(user_id, role_id, project.organization_id) or 0.0

    customer_rate = cleaned['customer_rate_per_hour']
    if customer_rate in (_MISSING, None):
        # The header rate is only a default for new rows
        customer_rate = setup.customer_rate_per_hour or 0.0

    if cleaned['row_order'] is not _MISSING:
        row_order = cleaned['row_order']

    allocation = ProjectRoleAllocation(
        project_id=project.id,
        role_id=role_id,
        user_id=user_id,
        hourly_rate=hourly_rate,
        customer_rate_per_hour=customer_rate,
        row_order=row_order
    )
    if cleaned['weekly_hours'] is not _MISSING:
        _upsert_weekly_hours(allocation, cleaned['weekly_hours'], stored={})
    db.session.add(allocation)
    return allocation


def _recompute_row(allocation):
    """Recompute one row; empty draft rows are zeroed rather than computed"""
    if allocation.is_empty_draft:
        zero_allocation_totals(allocation)
        return
    update_allocation_totals(allocation.id)


def _recompute_project(project_id, warnings):
    try:
        update_project_setup_totals(project_id)
    except RecomputeError as e:
        logger.error(f"Project totals recompute failed for project {project_id}: {e.message}")
        warnings.append("Project totals could not be recomputed; save again to refresh them")
        return False
    return True


def _write_draft(project, setup, existing, cleaned_rows, sold_cost_percentage, timeout):
    """Apply parsed rows to the session and recompute; returns (allocations, warnings, stale_ids)"""
    warnings = []
    stale_ids = []
    if sold_cost_percentage is not None:
        setup.sold_cost_percentage = sold_cost_percentage

    keep_ids = {cleaned['id'] for cleaned in cleaned_rows if cleaned['id'] is not None}
    for allocation_id, allocation in existing.items():
        if allocation_id not in keep_ids:
            db.session.delete(allocation)

    next_order = max((a.row_order for a in existing.values()), default=0)
    allocations = []
    for cleaned in cleaned_rows:
        if cleaned['id'] is not None:
            allocation = existing[cleaned['id']]
            _apply_row(allocation, cleaned)
        else:
            next_order += 1
            allocation = _new_allocation(project, setup, cleaned, next_order)
        allocations.append(allocation)
    db.session.flush()

    deadline = time.monotonic() + timeout
    for allocation in allocations:
        if time.monotonic() >= deadline:
            stale_ids.append(allocation.id)
            continue
        allocation_id = allocation.id
        try:
            with db.session.begin_nested():
                _recompute_row(allocation)
        except StaleDataError:
            raise
        except (RecomputeError, SQLAlchemyError) as e:
            logger.warning(f"Skipping totals for allocation {allocation_id} on project {project.id}: {str(e)}")
            stale_ids.append(allocation_id)

    if stale_ids:
        logger.warning(f"Save draft for project {project.id} left {len(stale_ids)} rows with stale totals")
        warnings.append(
            f"Totals for {len(stale_ids)} allocation row(s) could not be recomputed; save again to refresh them"
        )

    aggregated = _recompute_project(project.id, warnings)
    setup.totals_stale = bool(stale_ids) or not aggregated

    # Any save, even an unchanged one, reopens the plan for editing
    project.setup_status = Project.SETUP_DRAFT
    _touch(setup)
    return allocations, warnings, stale_ids


def save_draft(project_id, rows, *, authorized, sold_cost_percentage=None, expected_version=None, timeout=None):
    """
    Persist the whole planning grid in one batch and recompute its totals.

    Rows with an id update that allocation, rows without one are created,
    and stored rows missing from `rows` are deleted. Row recompute failures
    (and rows not reached before the deadline) leave the saved rows in
    place with stale totals and are reported as warnings. A persistence
    failure rolls the whole batch back.

    Args:
        project_id: ID of the project
        rows: list of row payloads
        authorized: whether the caller may manage this project
        sold_cost_percentage: optional new sold-cost percentage
        expected_version: setup version the caller loaded, if it wants a conflict check
        timeout: seconds allowed for row recompute (defaults to SAVE_DRAFT_TIMEOUT_SECONDS)

    Returns:
        SaveDraftResult
    """
    _require_authorized(authorized)
    if not isinstance(rows, list):
        raise ValidationError("rows must be an array", field='rows')

    project = _load_project(project_id)
    _ensure_editable(project)

    if sold_cost_percentage is not None:
        sold_cost_percentage = validate_percentage(
            sold_cost_percentage, 'sold_cost_percentage',
            "Sold cost percentage must be between 0 and 100"
        )

    setup = _lock_setup(project_id)
    _check_version(setup, expected_version)

    existing = {
        allocation.id: allocation
        for allocation in ProjectRoleAllocation.query.filter_by(project_id=project_id).all()
    }
    cleaned_rows = _parse_rows(rows, project, existing)

    if timeout is None:
        timeout = float(current_app.config.get('SAVE_DRAFT_TIMEOUT_SECONDS', 30))

    allocations, warnings, stale_ids = safe_db_operation(
        lambda: _write_draft(project, setup, existing, cleaned_rows, sold_cost_percentage, timeout),
        "Failed to save draft"
    )

    _commit("Failed to save draft")
    logger.info(f"Saved draft for project {project_id}: {len(allocations)} rows, {len(stale_ids)} stale")

    return SaveDraftResult(
        setup=setup,
        allocations=_load_allocations(project_id),
        warnings=warnings,
        stale_allocation_ids=stale_ids
    )


def update_setup_header(project_id, data, *, authorized):
    """
    Update the header pricing inputs and recompute margins.

    Does not change setup status.
    """
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)

    customer_rate = data.get('customer_rate_per_hour')
    if customer_rate is not None:
        customer_rate = validate_non_negative_number(
            customer_rate, 'customer_rate_per_hour', "Customer rate must be positive"
        )
    sold_cost = data.get('sold_cost_percentage')
    if sold_cost is not None:
        sold_cost = validate_percentage(
            sold_cost, 'sold_cost_percentage', "Sold cost percentage must be between 0 and 100"
        )

    if not ProjectSetup.query.filter_by(project_id=project_id).first():
        _create_setup(project)
    setup = _lock_setup(project_id)
    _check_version(setup, data.get('version'))

    if customer_rate is not None:
        setup.customer_rate_per_hour = customer_rate
    if sold_cost is not None:
        setup.sold_cost_percentage = sold_cost

    warnings = []
    _recompute_project(project_id, warnings)
    _touch(setup)
    _commit("Failed to update project setup")

    return setup


def _load_allocation(project_id, allocation_id):
    allocation = db.session.get(ProjectRoleAllocation, allocation_id)
    if not allocation or allocation.project_id != project_id:
        raise NotFoundError("Allocation", allocation_id)
    return allocation


def _finish_row_edit(project, setup, allocation=None):
    warnings = []
    if allocation is not None:
        try:
            _recompute_row(allocation)
        except RecomputeError as e:
            logger.warning(f"Skipping totals for allocation {allocation.id}: {e.message}")
            setup.totals_stale = True
    _recompute_project(project.id, warnings)
    project.setup_status = Project.SETUP_DRAFT
    _touch(setup)


def _single_row(project, data):
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    cleaned, errors = _parse_row(dict(data, id=None), project, {})
    if errors:
        db.session.rollback()
        raise ValidationError("; ".join(errors), validation_errors=[{'row_index': 1, 'errors': errors}])
    return cleaned


def add_allocation(project_id, data, *, authorized):
    """Append one row to the grid, filling in default rates"""
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)
    cleaned = _single_row(project, data)

    allocation = _new_allocation(project, setup, cleaned, _next_row_order(project_id))
    db.session.flush()
    _finish_row_edit(project, setup, allocation)
    _commit("Failed to add allocation")

    logger.info(f"Added allocation {allocation.id} to project {project_id}")
    return AllocationWithJoins(allocation, allocation.user, allocation.role, list(allocation.weekly_hours))


def update_allocation(project_id, allocation_id, data, *, authorized):
    """Change role, user, rates or order of one row"""
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)
    allocation = _load_allocation(project_id, allocation_id)

    data = {k: v for k, v in (data or {}).items() if k != 'weekly_hours'}
    cleaned = _single_row(project, data)
    _apply_row(allocation, cleaned)
    db.session.flush()
    _finish_row_edit(project, setup, allocation)
    _commit("Failed to update allocation")

    return AllocationWithJoins(allocation, allocation.user, allocation.role, list(allocation.weekly_hours))


def delete_allocation(project_id, allocation_id, *, authorized):
    """Remove a row and its weekly hours"""
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)
    allocation = _load_allocation(project_id, allocation_id)

    db.session.delete(allocation)
    db.session.flush()
    _finish_row_edit(project, setup)
    _commit("Failed to delete allocation")
    logger.info(f"Deleted allocation {allocation_id} from project {project_id}")


def update_weekly_hours(project_id, allocation_id, weeks, *, authorized):
    """Upsert weekly hours for one row; weeks not mentioned are left alone"""
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)
    allocation = _load_allocation(project_id, allocation_id)

    errors = []
    parsed = _parse_weekly_hours(weeks, errors)
    if errors:
        db.session.rollback()
        raise ValidationError("Invalid weekly hours", validation_errors=[{'row_index': 1, 'errors': errors}])

    _upsert_weekly_hours(allocation, parsed)
    db.session.flush()
    _finish_row_edit(project, setup, allocation)
    _commit("Failed to update weekly hours")

    return AllocationWithJoins(allocation, allocation.user, allocation.role, list(allocation.weekly_hours))


def replace_phases(project_id, phases, *, authorized):
    """Replace the project's phase list"""
    _require_authorized(authorized)
    if not isinstance(phases, list):
        raise ValidationError("phases must be an array", field='phases')
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)

    validation_errors = []
    parsed = []
    for index, phase in enumerate(phases, start=1):
        errors = []
        if not isinstance(phase, dict):
            validation_errors.append({'row_index': index, 'errors': ["Phase must be an object"]})
            continue
        name = (phase.get('phase_name') or '').strip()
        if not name:
            errors.append("Phase name is required")
        try:
            start_week = int(phase.get('start_week'))
            end_week = int(phase.get('end_week'))
        except (TypeError, ValueError):
            errors.append("start_week and end_week must be integers")
        else:
            if start_week < 1 or end_week > setup.total_weeks or start_week > end_week:
                errors.append(f"Phase weeks must satisfy 1 <= start_week <= end_week <= {setup.total_weeks}")
        if errors:
            validation_errors.append({'row_index': index, 'errors': errors})
        else:
            parsed.append((name, start_week, end_week))

    if validation_errors:
        db.session.rollback()
        raise ValidationError("Invalid phases", validation_errors=validation_errors)

    for existing in list(project.phases):
        project.phases.remove(existing)
    for name, start_week, end_week in parsed:
        project.phases.append(ProjectPhase(project_id=project.id, phase_name=name,
                                           start_week=start_week, end_week=end_week))
    _touch(setup)
    _commit("Failed to save phases")
    return list(project.phases)


def finalize_project_setup(project_id, *, authorized):
    """
    Move a project's plan from draft to ready.

    Phase 1 validates every row, recomputes totals and flips the status in a
    single transaction; a validation failure raises ValidationError with all
    per-row errors and writes nothing. Phase 2 (planned projects only)
    creates members and draft timesheets on a best-effort basis and reports
    its failures as warnings without undoing phase 1.

    Returns:
        FinalizeResult
    """
    _require_authorized(authorized)
    project = _load_project(project_id)
    _ensure_editable(project)
    setup = _lock_setup(project_id)

    result = validate_project_setup(project_id)
    if not result['valid']:
        db.session.rollback()
        message = result['errors'][0] if result['errors'] else "Project setup is invalid"
        logger.info(f"Finalize rejected for project {project_id}: {len(result['validation_errors'])} invalid rows")
        raise ValidationError(message, validation_errors=result['validation_errors'])

    try:
        for allocation in ProjectRoleAllocation.query.filter_by(project_id=project_id).all():
            update_allocation_totals(allocation.id)
        update_project_setup_totals(project_id)
    except RecomputeError:
        db.session.rollback()
        raise

    project.setup_status = Project.SETUP_READY
    _touch(setup)
    _commit("Failed to finalize project setup")
    logger.info(f"Project {project_id} setup finalized")

    bootstrap = BootstrapResult()
    if project.is_planned:
        bootstrap = bootstrap_project_records(project_id, authorized=True)

    return FinalizeResult(setup=setup, bootstrap=bootstrap)


def bootstrap_project_records(project_id, *, authorized):
    """
    Create project members and draft timesheets from a finalized plan.

    One member per distinct planned user (role taken from that user's first
    row) and one DRAFT timesheet per member. Existing records are reused,
    so running this again never duplicates and never resets a timesheet.
    Each record is committed on its own; failures become warnings.

    Returns:
        BootstrapResult
    """
    _require_authorized(authorized)
    project = _load_project(project_id)
    result = BootstrapResult()

    if not project.is_planned:
        return result
    if project.setup_status not in (Project.SETUP_READY, Project.SETUP_LOCKED):
        raise BusinessLogicError("Project setup must be finalized before creating members and timesheets")

    planned_users = OrderedDict()
    allocations = (
        ProjectRoleAllocation.query
        .filter(ProjectRoleAllocation.project_id == project_id,
                ProjectRoleAllocation.user_id.isnot(None))
        .order_by(ProjectRoleAllocation.row_order, ProjectRoleAllocation.id)
        .all()
    )
    for allocation in allocations:
        planned_users.setdefault(allocation.user_id, allocation.role_id)

    for user_id, role_id in planned_users.items():
        user = db.session.get(User, user_id)
        if not user or user.organization_id != project.organization_id:
            result.warnings.append(f"User {user_id} is not part of the project's organization; skipped")
            continue

        try:
            member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
            if member:
                member.role_id = role_id
            else:
                db.session.add(ProjectMember(
                    project_id=project_id,
                    user_id=user_id,
                    role_id=role_id,
                    organization_id=project.organization_id
                ))
            db.session.commit()
            if not member:
                result.members_created += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to add user {user_id} to project {project_id}: {str(e)}")
            result.warnings.append(f"Failed to add user {user_id} as a project member")
            continue

        try:
            if not Timesheet.query.filter_by(project_id=project_id, user_id=user_id).first():
                db.session.add(Timesheet(project_id=project_id, user_id=user_id))
                db.session.commit()
                result.timesheets_created += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to create timesheet for user {user_id} on project {project_id}: {str(e)}")
            result.warnings.append(f"Failed to create a draft timesheet for user {user_id}")

    logger.info(
        f"Bootstrap for project {project_id}: {result.members_created} members, "
        f"{result.timesheets_created} timesheets, {len(result.warnings)} warnings"
    )
    return result


def list_hourly_rates(organization_id):
    """User/role hourly rates of an organization"""
    return (
        UserHourlyRate.query
        .filter_by(organization_id=organization_id)
        .order_by(UserHourlyRate.user_id, UserHourlyRate.role_id)
        .all()
    )


def upsert_hourly_rates(organization_id, rates, *, authorized):
    """Insert or update user/role hourly rates keyed on (user, role, organization)"""
    _require_authorized(authorized)
    if not isinstance(rates, list):
        raise ValidationError("rates must be an array", field='rates')

    validation_errors = []
    parsed = []
    for index, rate in enumerate(rates, start=1):
        errors = []
        if not isinstance(rate, dict):
            validation_errors.append({'row_index': index, 'errors': ["Rate must be an object"]})
            continue
        user = db.session.get(User, rate.get('user_id')) if rate.get('user_id') else None
        role = db.session.get(Role, rate.get('role_id')) if rate.get('role_id') else None
        if not user or user.organization_id != organization_id:
            errors.append("User is required and must belong to this organization")
        if not role or role.organization_id != organization_id:
            errors.append("Role is required and must belong to this organization")
        hourly_rate = None
        try:
            hourly_rate = validate_non_negative_number(rate.get('hourly_rate'), 'hourly_rate',
                                                       "Hourly rate must be positive")
        except ValidationError as e:
            errors.append(e.message)
        effective_from = None
        if rate.get('effective_from'):
            try:
                effective_from = date.fromisoformat(str(rate['effective_from'])[:10])
            except ValueError:
                errors.append("effective_from must be an ISO date (YYYY-MM-DD)")
        if errors:
            validation_errors.append({'row_index': index, 'errors': errors})
        else:
            parsed.append((user.id, role.id, hourly_rate, effective_from))

    if validation_errors:
        raise ValidationError("Invalid hourly rates", validation_errors=validation_errors)

    saved = []
    for user_id, role_id, hourly_rate, effective_from in parsed:
        record = UserHourlyRate.query.filter_by(
            user_id=user_id, role_id=role_id, organization_id=organization_id
        ).first()
        if record:
            record.hourly_rate = hourly_rate
            if effective_from:
                record.effective_from = effective_from
        else:
            record = UserHourlyRate(user_id, role_id, organization_id, hourly_rate, effective_from)
            db.session.add(record)
        saved.append(record)

    _commit("Failed to save hourly rates")
    return saved
