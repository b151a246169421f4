"""
Authentication and authorization module for the Timesheet Planner API
"""

from flask_jwt_extended import (
    JWTManager, jwt_required, get_jwt_identity,
    create_access_token, create_refresh_token
)
from flask import jsonify, g
from functools import wraps
from datetime import datetime, timezone
from models import User, Role
from db import db
from errors import UnauthorizedError, ForbiddenError
import logging

logger = logging.getLogger(__name__)

# Initialize JWT manager
jwt = JWTManager()

# Organization roles allowed to edit a project's cost plan
PLANNING_ROLES = (Role.ADMIN, Role.MANAGER)


def init_auth(app):
    """Initialize authentication for the Flask app"""
    if not app.config.get('JWT_SECRET_KEY'):
        app.config['JWT_SECRET_KEY'] = 'dev-jwt-secret-key-change-in-production'

    jwt.init_app(app)

    # JWT subjects must be strings
    @jwt.user_identity_loader
    def user_identity_lookup(user):
        return str(user.id)

    @jwt.user_lookup_loader
    def user_lookup_callback(_jwt_header, jwt_data):
        identity = jwt_data["sub"]
        return db.session.get(User, int(identity))

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': {
                'type': 'TokenExpired',
                'message': 'Token has expired'
            }
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': {
                'type': 'InvalidToken',
                'message': 'Invalid token'
            }
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        return jsonify({
            'error': {
                'type': 'Unauthorized',
                'message': 'Missing or invalid token'
            }
        }), 401


def login_user(email, password):
    """Authenticate user and return tokens"""
    user = User.get_by_email(email)

    if not user or not user.check_password(password):
        logger.warning(f"Failed login attempt for email: {email}")
        raise UnauthorizedError("Invalid email or password")

    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {email}")
        raise ForbiddenError("Account is deactivated")

    user.last_login = datetime.now(timezone.utc)
    db.session.commit()

    access_token = create_access_token(identity=user)
    refresh_token = create_refresh_token(identity=user)

    logger.info(f"Successful login for user: {email}")

    return {
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': user.to_dict()
    }


def _load_identity_user():
    identity = get_jwt_identity()
    user = db.session.get(User, int(identity)) if identity is not None else None

    if not user:
        raise UnauthorizedError("User not found")

    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return user


def refresh_access_token():
    """Refresh access token using refresh token"""
    user = _load_identity_user()
    access_token = create_access_token(identity=user)
    return {'access_token': access_token}


def require_auth(f):
    """Decorator requiring a valid access token; sets g.current_user"""
    @wraps(f)
    @jwt_required()
    def wrapper(*args, **kwargs):
        g.current_user = _load_identity_user()
        return f(*args, **kwargs)
    return wrapper


def get_current_user():
    """Get current authenticated user from global context"""
    return getattr(g, 'current_user', None)


def can_view_project(user, project):
    """Super admins see everything; everyone else only their organization's projects"""
    if user is None or project is None:
        return False
    if user.is_super_admin:
        return True
    return user.organization_id == project.organization_id


def can_manage_organization(user, organization_id):
    if user is None:
        return False
    if user.is_super_admin:
        return True
    if user.organization_id != organization_id:
        return False
    return any(name in PLANNING_ROLES for name in user.role_names(organization_id))


def can_manage_project(user, project):
    """Super admins, or organization admins/managers of the project's organization"""
    if project is None:
        return False
    return can_manage_organization(user, project.organization_id)
