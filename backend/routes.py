from flask import Blueprint, request, jsonify, current_app
from functools import wraps
from flask_jwt_extended import jwt_required
from errors import (
    TimesheetPlannerError, ValidationError, NotFoundError, ForbiddenError,
    validate_required, log_api_request
)
from auth import (
    login_user, refresh_access_token, require_auth, get_current_user,
    can_view_project, can_manage_project, can_manage_organization
)
import planning

api = Blueprint('api', __name__)


def get_models():
    """Import models and db - call this inside route functions"""
    from db import db
    from models import Project
    return db, Project


# Error handling decorator
def handle_errors(f):
    """Decorator to handle common errors and return JSON responses"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except TimesheetPlannerError:
            # Already handled by the global error handler
            raise
        except Exception as e:
            current_app.logger.error(f"Unexpected error in {f.__name__}: {str(e)}")
            raise
    return wrapper


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")
    return data


def load_project_for(project_id):
    """Fetch a project the current user may at least see"""
    db, Project = get_models()
    project = db.session.get(Project, project_id)
    user = get_current_user()
    if not project:
        raise NotFoundError("Project", project_id)
    if not can_view_project(user, project):
        raise ForbiddenError("You do not have access to this project")
    log_api_request(request.path, request.method, user_id=user.id, project_id=project_id)
    return project


def manage_flag(project):
    return can_manage_project(get_current_user(), project)


def require_manage(project):
    if not manage_flag(project):
        raise ForbiddenError("You do not have permission to manage this project")


# AUTH ROUTES

@api.route('/auth/login', methods=['POST'])
@handle_errors
def login():
    """Authenticate user and return tokens"""
    data = get_json_body()

    validate_required(data, ['email', 'password'])

    result = login_user(data['email'], data['password'])
    return jsonify(result), 200


@api.route('/auth/refresh', methods=['POST'])
@handle_errors
@jwt_required(refresh=True)
def refresh():
    """Refresh access token"""
    result = refresh_access_token()
    return jsonify(result), 200


@api.route('/auth/me', methods=['GET'])
@handle_errors
@require_auth
def get_current_user_info():
    """Get current user information"""
    user = get_current_user()
    return jsonify({'user': user.to_dict()}), 200


# PROJECT SETUP ROUTES

@api.route('/project-setup/<int:project_id>', methods=['GET'])
@handle_errors
@require_auth
def get_project_setup(project_id):
    """Get a project's cost plan, creating the setup on first access"""
    project = load_project_for(project_id)
    view = planning.get_project_setup(project_id, authorized=manage_flag(project))
    return jsonify(view.to_dict()), 200


@api.route('/project-setup/<int:project_id>/header', methods=['PUT'])
@handle_errors
@require_auth
def update_project_setup_header(project_id):
    """Update customer rate and sold cost percentage"""
    project = load_project_for(project_id)
    data = get_json_body()

    setup = planning.update_setup_header(project_id, data, authorized=manage_flag(project))
    return jsonify(setup.to_dict()), 200


@api.route('/project-setup/<int:project_id>/save-draft', methods=['POST'])
@handle_errors
@require_auth
def save_project_setup_draft(project_id):
    """Save the whole planning grid as a draft"""
    project = load_project_for(project_id)
    data = get_json_body()

    if 'rows' not in data:
        raise ValidationError("rows is required", field='rows')

    result = planning.save_draft(
        project_id,
        data['rows'],
        authorized=manage_flag(project),
        sold_cost_percentage=data.get('sold_cost_percentage'),
        expected_version=data.get('version')
    )
    return jsonify(result.to_dict()), 200


@api.route('/project-setup/<int:project_id>/finalize', methods=['POST', 'PUT'])
@handle_errors
@require_auth
def finalize_project_setup(project_id):
    """Validate the plan and move it from draft to ready"""
    project = load_project_for(project_id)

    result = planning.finalize_project_setup(project_id, authorized=manage_flag(project))
    return jsonify(result.to_dict()), 200


@api.route('/project-setup/<int:project_id>/bootstrap', methods=['POST'])
@handle_errors
@require_auth
def bootstrap_project_records(project_id):
    """Retry creating members and draft timesheets for a finalized plan"""
    project = load_project_for(project_id)

    result = planning.bootstrap_project_records(project_id, authorized=manage_flag(project))
    return jsonify(result.to_dict()), 200


@api.route('/project-setup/<int:project_id>/allocations', methods=['POST'])
@handle_errors
@require_auth
def add_allocation(project_id):
    """Add a row to the planning grid"""
    project = load_project_for(project_id)
    data = get_json_body()

    allocation = planning.add_allocation(project_id, data, authorized=manage_flag(project))
    return jsonify(allocation.to_dict()), 201


@api.route('/project-setup/<int:project_id>/allocations/<int:allocation_id>', methods=['PUT'])
@handle_errors
@require_auth
def update_allocation(project_id, allocation_id):
    """Update role, user or rates of a row"""
    project = load_project_for(project_id)
    data = get_json_body()

    allocation = planning.update_allocation(project_id, allocation_id, data, authorized=manage_flag(project))
    return jsonify(allocation.to_dict()), 200


@api.route('/project-setup/<int:project_id>/allocations/<int:allocation_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_allocation(project_id, allocation_id):
    """Delete a row and its weekly hours"""
    project = load_project_for(project_id)

    planning.delete_allocation(project_id, allocation_id, authorized=manage_flag(project))
    return jsonify({'message': 'Allocation deleted successfully'}), 200


@api.route('/project-setup/<int:project_id>/allocations/<int:allocation_id>/weeks', methods=['PUT'])
@handle_errors
@require_auth
def update_weekly_hours(project_id, allocation_id):
    """Upsert weekly hours of a row"""
    project = load_project_for(project_id)
    data = get_json_body()

    weeks = data.get('weeks') if isinstance(data, dict) else data
    allocation = planning.update_weekly_hours(project_id, allocation_id, weeks, authorized=manage_flag(project))
    return jsonify(allocation.to_dict()), 200


@api.route('/project-setup/<int:project_id>/phases', methods=['PUT'])
@handle_errors
@require_auth
def replace_phases(project_id):
    """Replace the project's phases"""
    project = load_project_for(project_id)
    data = get_json_body()

    phases = data.get('phases') if isinstance(data, dict) else data
    saved = planning.replace_phases(project_id, phases, authorized=manage_flag(project))
    return jsonify([phase.to_dict() for phase in saved]), 200


# REPORTING ROUTES

@api.route('/project-setup/<int:project_id>/reports/cost-summary', methods=['GET'])
@handle_errors
@require_auth
def get_cost_summary(project_id):
    """Planned versus actual cost for a finalized plan"""
    from engine import calculate_cost_summary

    require_manage(load_project_for(project_id))
    return jsonify(calculate_cost_summary(project_id)), 200


@api.route('/project-setup/<int:project_id>/reports/planned-vs-actual', methods=['GET'])
@handle_errors
@require_auth
def get_planned_vs_actual(project_id):
    """Planned hours per user against hours logged on timesheets"""
    from engine import calculate_planned_vs_actual

    require_manage(load_project_for(project_id))
    return jsonify({'project_id': project_id, 'users': calculate_planned_vs_actual(project_id)}), 200


# HOURLY RATE ROUTES

def resolve_organization_id():
    user = get_current_user()
    organization_id = request.args.get('organization_id', type=int)
    if organization_id is None or not user.is_super_admin:
        organization_id = user.organization_id
    if organization_id is None:
        raise ValidationError("organization_id is required", field='organization_id')
    return organization_id


@api.route('/project-setup/rates/hourly', methods=['GET'])
@handle_errors
@require_auth
def get_hourly_rates():
    """List user/role hourly rates of the caller's organization"""
    organization_id = resolve_organization_id()
    rates = planning.list_hourly_rates(organization_id)
    return jsonify([rate.to_dict() for rate in rates]), 200


@api.route('/project-setup/rates/hourly', methods=['PUT'])
@handle_errors
@require_auth
def put_hourly_rates():
    """Insert or update user/role hourly rates"""
    organization_id = resolve_organization_id()
    data = get_json_body()

    rates = data.get('rates') if isinstance(data, dict) else data
    saved = planning.upsert_hourly_rates(
        organization_id, rates,
        authorized=can_manage_organization(get_current_user(), organization_id)
    )
    return jsonify([rate.to_dict() for rate in saved]), 200
