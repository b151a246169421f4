"""
Custom error classes and error handling utilities for the Timesheet Planner API
"""

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
import logging
import math

# Set up logger
logger = logging.getLogger(__name__)


class TimesheetPlannerError(Exception):
    """Base exception class for Timesheet Planner application"""

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class ValidationError(TimesheetPlannerError):
    """Raised when input validation fails"""

    def __init__(self, message, field=None, validation_errors=None):
        payload = {}
        if field:
            payload['field'] = field
        if validation_errors:
            payload['validation_errors'] = validation_errors
        super().__init__(message, 400, payload or None)
        self.validation_errors = validation_errors or []


class NotFoundError(TimesheetPlannerError):
    """Raised when a requested resource is not found"""

    def __init__(self, resource_type, resource_id=None):
        message = f"{resource_type} not found"
        if resource_id:
            message += f" with id {resource_id}"
        super().__init__(message, 404)


class ConflictError(TimesheetPlannerError):
    """Raised when a concurrent writer got there first; the caller may retry"""

    def __init__(self, message, retryable=True):
        super().__init__(message, 409, {'retryable': retryable})
        self.retryable = retryable


class UnauthorizedError(TimesheetPlannerError):
    """Raised when authentication fails"""

    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 401)


class ForbiddenError(TimesheetPlannerError):
    """Raised when access to a resource is forbidden"""

    def __init__(self, message="Access forbidden"):
        super().__init__(message, 403)


class BusinessLogicError(TimesheetPlannerError):
    """Raised when business logic constraints are violated"""

    def __init__(self, message):
        super().__init__(message, 422)  # Unprocessable Entity


class RecomputeError(TimesheetPlannerError):
    """Raised when derived totals cannot be recomputed from persisted rows"""

    def __init__(self, message):
        super().__init__(message, 500)


def register_error_handlers(app):
    """Register error handlers with the Flask app"""

    @app.errorhandler(TimesheetPlannerError)
    def handle_planner_error(error):
        """Handle custom Timesheet Planner errors"""
        logger.warning(f"Timesheet Planner Error: {error.message}", extra={
            'status_code': error.status_code,
            'payload': error.payload
        })

        response = {
            'error': {
                'type': error.__class__.__name__,
                'message': error.message
            }
        }

        if error.payload:
            response['error']['details'] = error.payload

        return jsonify(response), error.status_code

    @app.errorhandler(400)
    def handle_bad_request(error):
        """Handle 400 Bad Request errors"""
        logger.warning(f"Bad Request: {error.description}")
        return jsonify({
            'error': {
                'type': 'BadRequest',
                'message': error.description or 'Bad request'
            }
        }), 400

    @app.errorhandler(404)
    def handle_not_found(error):
        """Handle 404 Not Found errors"""
        logger.info(f"Not Found: {error.description}")
        return jsonify({
            'error': {
                'type': 'NotFound',
                'message': error.description or 'Resource not found'
            }
        }), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """Handle 405 Method Not Allowed errors"""
        logger.warning(f"Method Not Allowed: {error.description}")
        return jsonify({
            'error': {
                'type': 'MethodNotAllowed',
                'message': 'Method not allowed for this endpoint'
            }
        }), 405

    @app.errorhandler(422)
    def handle_unprocessable_entity(error):
        """Handle 422 Unprocessable Entity errors"""
        logger.warning(f"Unprocessable Entity: {error.description}")
        return jsonify({
            'error': {
                'type': 'UnprocessableEntity',
                'message': error.description or 'Unprocessable entity'
            }
        }), 422

    @app.errorhandler(500)
    def handle_internal_server_error(error):
        """Handle 500 Internal Server Error"""
        logger.error(f"Internal Server Error: {error}", exc_info=True)
        return jsonify({
            'error': {
                'type': 'InternalServerError',
                'message': 'An unexpected error occurred. Please try again later.'
            }
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle unexpected errors"""
        logger.error(f"Unexpected Error: {str(error)}", exc_info=True)
        return jsonify({
            'error': {
                'type': 'UnexpectedError',
                'message': 'An unexpected error occurred. Please contact support if this persists.'
            }
        }), 500


def validate_required(data, fields):
    """Validate that required fields are present in data"""
    missing = []
    for field in fields:
        if field not in data or data[field] is None or (isinstance(data[field], str) and data[field].strip() == ''):
            missing.append(field)

    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_date_range(start_date, end_date, start_field="start_date", end_field="end_date"):
    """Validate that a date range is not inverted (same-day ranges are allowed)"""
    if start_date and end_date:
        if end_date < start_date:
            raise ValidationError(f"{end_field} must not be before {start_field}", field=end_field)


def validate_non_negative_number(value, field_name, message=None):
    """Validate that a value is a number >= 0 and return it as a float"""
    try:
        num = float(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a valid number", field=field_name)
    if not math.isfinite(num):
        raise ValidationError(f"{field_name} must be a valid number", field=field_name)
    if num < 0:
        raise ValidationError(message or f"{field_name} must be positive", field=field_name)
    return num


def validate_percentage(value, field_name, message=None):
    """Validate that a value is a number between 0 and 100"""
    try:
        num = float(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a valid number", field=field_name)
    if not math.isfinite(num):
        raise ValidationError(f"{field_name} must be a valid number", field=field_name)
    if num < 0 or num > 100:
        raise ValidationError(message or f"{field_name} must be between 0 and 100", field=field_name)
    return num


def safe_db_operation(operation_func, error_message="Database operation failed"):
    """Run a unit of database work, rolling the session back if it fails"""
    from db import db
    try:
        return operation_func()
    except TimesheetPlannerError:
        raise
    except StaleDataError as e:
        db.session.rollback()
        logger.warning(f"Concurrent update detected: {str(e)}")
        raise ConflictError("Project setup was changed by another request; reload and try again") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"{error_message}: {str(e)}")
        raise TimesheetPlannerError(error_message, 500) from e


def log_api_request(endpoint, method, user_id=None, **kwargs):
    """Log API requests for auditing"""
    logger.info(f"API Request: {method} {endpoint}", extra={
        'user_id': user_id,
        'method': method,
        'endpoint': endpoint,
        **kwargs
    })
