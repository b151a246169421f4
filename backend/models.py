from datetime import datetime, timezone
from db import db
from sqlalchemy.orm import validates
from errors import validate_date_range
import bcrypt


def utc_now():
    """Return current UTC time (timezone-aware)"""
    return datetime.now(timezone.utc)


class Organization(db.Model):
    """Tenant organization; owns users, roles and projects"""
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default='INR')
    currency_symbol = db.Column(db.String(5), nullable=False, default='₹')
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    users = db.relationship('User', backref='organization', lazy=True)
    roles = db.relationship('Role', backref='organization', lazy=True, cascade='all, delete-orphan')
    projects = db.relationship('Project', backref='organization', lazy=True)

    def __init__(self, name, currency_code='INR', currency_symbol='₹'):
        self.name = name
        self.currency_code = currency_code
        self.currency_symbol = currency_symbol

    def currency(self):
        return {'code': self.currency_code, 'symbol': self.currency_symbol}

    def to_dict(self):
        """Convert organization to dictionary"""
        return {
            'id': self.id,
            'name': self.name,
            'currency_code': self.currency_code,
            'currency_symbol': self.currency_symbol,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class User(db.Model):
    """User model for authentication; optionally bound to an organization"""
    __tablename__ = 'users'

    SUPER_ADMIN = 'SUPER_ADMIN'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(20), nullable=True)  # platform role: SUPER_ADMIN or None
    rate_per_hour = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)
    last_login = db.Column(db.DateTime, nullable=True)

    # Relationships
    user_roles = db.relationship('UserRole', backref='user', lazy=True, cascade='all, delete-orphan')

    def __init__(self, email, password, organization_id=None, full_name=None, role=None, rate_per_hour=None):
        self.email = email
        self.organization_id = organization_id
        self.full_name = full_name
        self.role = role
        self.rate_per_hour = rate_per_hour
        self.set_password(password)

    def set_password(self, password):
        """Hash and set the password"""
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        """Verify the password"""
        return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))

    @property
    def is_super_admin(self):
        return self.role == self.SUPER_ADMIN

    def role_names(self, organization_id=None):
        """Names of the organization roles held by this user"""
        return [
            ur.role.name for ur in self.user_roles
            if organization_id is None or ur.organization_id == organization_id
        ]

    def to_dict(self, include_sensitive=False):
        """Convert user to dictionary"""
        data = {
            'id': self.id,
            'organization_id': self.organization_id,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'rate_per_hour': self.rate_per_hour,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_login': self.last_login.isoformat() if self.last_login else None
        }
        if include_sensitive:
            data['password_hash'] = self.password_hash
        return data

    @staticmethod
    def get_by_email(email):
        """Get user by email"""
        return User.query.filter_by(email=email).first()


class Role(db.Model):
    """Organization-scoped role; system roles grant access, job roles are planned against"""
    __tablename__ = 'roles'
    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='unique_org_role_name'),
    )

    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    EMPLOYEE = 'EMPLOYEE'
    SYSTEM_ROLES = [ADMIN, MANAGER, EMPLOYEE]

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_system = db.Column(db.Boolean, default=False)
    default_rate_per_hour = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __init__(self, organization_id, name, is_system=False, default_rate_per_hour=None):
        self.organization_id = organization_id
        self.name = name
        self.is_system = is_system
        self.default_rate_per_hour = default_rate_per_hour

    def to_dict(self):
        """Convert role to dictionary"""
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.name,
            'is_system': self.is_system,
            'default_rate_per_hour': self.default_rate_per_hour
        }


class UserRole(db.Model):
    """Assignment of an organization role to a user"""
    __tablename__ = 'user_roles'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'role_id', name='unique_user_role'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    role = db.relationship('Role', lazy=True)

    def __init__(self, user_id, role_id, organization_id):
        self.user_id = user_id
        self.role_id = role_id
        self.organization_id = organization_id


class UserHourlyRate(db.Model):
    """Per-user, per-role internal hourly rate"""
    __tablename__ = 'user_hourly_rates'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'role_id', 'organization_id', name='unique_user_role_org_rate'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    hourly_rate = db.Column(db.Float, nullable=False)
    effective_from = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    user = db.relationship('User', lazy=True)
    role = db.relationship('Role', lazy=True)

    def __init__(self, user_id, role_id, organization_id, hourly_rate, effective_from=None):
        self.user_id = user_id
        self.role_id = role_id
        self.organization_id = organization_id
        self.hourly_rate = hourly_rate
        self.effective_from = effective_from or utc_now().date()

    def to_dict(self):
        """Convert hourly rate to dictionary"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_email': self.user.email if self.user else None,
            'role_id': self.role_id,
            'role_name': self.role.name if self.role else None,
            'organization_id': self.organization_id,
            'hourly_rate': self.hourly_rate,
            'effective_from': self.effective_from.isoformat() if self.effective_from else None
        }


class Project(db.Model):
    """Project model; planned projects carry a cost-planning setup"""
    __tablename__ = 'projects'
    __table_args__ = (
        db.CheckConstraint('start_date <= end_date', name='check_project_date_order'),
    )

    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUSES = [STATUS_ACTIVE, STATUS_COMPLETED]

    TYPE_SIMPLE = 'simple'
    TYPE_PLANNED = 'planned'
    PROJECT_TYPES = [TYPE_SIMPLE, TYPE_PLANNED]

    SETUP_DRAFT = 'draft'
    SETUP_READY = 'ready'
    SETUP_LOCKED = 'locked'
    SETUP_STATUSES = [SETUP_DRAFT, SETUP_READY, SETUP_LOCKED]

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    project_type = db.Column(db.String(20), nullable=False, default=TYPE_SIMPLE)
    setup_status = db.Column(db.String(20), nullable=False, default=SETUP_DRAFT)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    setup = db.relationship('ProjectSetup', backref='project', uselist=False, cascade='all, delete-orphan')
    allocations = db.relationship('ProjectRoleAllocation', backref='project', lazy=True,
                                  cascade='all, delete-orphan',
                                  order_by='ProjectRoleAllocation.row_order')
    phases = db.relationship('ProjectPhase', backref='project', lazy=True, cascade='all, delete-orphan',
                             order_by='ProjectPhase.start_week')
    members = db.relationship('ProjectMember', backref='project', lazy=True, cascade='all, delete-orphan')

    def __init__(self, organization_id, title, start_date, end_date, status=STATUS_ACTIVE,
                 project_type=TYPE_SIMPLE, setup_status=SETUP_DRAFT):
        self.organization_id = organization_id
        self.title = title
        self.start_date = start_date
        self.end_date = end_date
        self.status = status
        self.project_type = project_type
        self.setup_status = setup_status

    @validates('start_date', 'end_date')
    def validate_dates(self, key, value):
        start_date = value if key == 'start_date' else self.start_date
        end_date = value if key == 'end_date' else self.end_date
        validate_date_range(start_date, end_date)
        return value

    @property
    def is_planned(self):
        return self.project_type == self.TYPE_PLANNED

    @property
    def is_locked(self):
        return self.setup_status == self.SETUP_LOCKED

    def to_dict(self):
        """Convert project to dictionary"""
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'title': self.title,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'status': self.status,
            'project_type': self.project_type,
            'setup_status': self.setup_status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class ProjectSetup(db.Model):
    """Per-project planning header: pricing inputs plus derived totals and margins.

    The derived fields are only ever written by the setup totals updater.
    `version` is bumped by SQLAlchemy on every UPDATE so a concurrent writer
    fails with StaleDataError instead of silently overwriting totals.
    """
    __tablename__ = 'project_setups'

    MARGIN_GREEN = 'green'
    MARGIN_YELLOW = 'yellow'
    MARGIN_RED = 'red'
    MARGIN_STATUSES = [MARGIN_GREEN, MARGIN_YELLOW, MARGIN_RED]

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False, unique=True)
    total_weeks = db.Column(db.Integer, nullable=False, default=1)
    customer_rate_per_hour = db.Column(db.Float, nullable=False, default=0.0)
    sold_cost_percentage = db.Column(db.Float, nullable=False, default=11.0)

    # Derived fields
    total_internal_hours = db.Column(db.Float, nullable=False, default=0.0)
    total_internal_cost = db.Column(db.Float, nullable=False, default=0.0)
    total_customer_amount = db.Column(db.Float, nullable=False, default=0.0)
    gross_margin_percentage = db.Column(db.Float, nullable=False, default=0.0)
    current_margin_percentage = db.Column(db.Float, nullable=False, default=0.0)
    margin_status = db.Column(db.String(10), nullable=False, default=MARGIN_RED)
    totals_stale = db.Column(db.Boolean, nullable=False, default=False)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __mapper_args__ = {'version_id_col': version}

    def __init__(self, project_id, total_weeks, customer_rate_per_hour=0.0, sold_cost_percentage=11.0):
        self.project_id = project_id
        self.total_weeks = total_weeks
        self.customer_rate_per_hour = customer_rate_per_hour
        self.sold_cost_percentage = sold_cost_percentage
        self.total_internal_hours = 0.0
        self.total_internal_cost = 0.0
        self.total_customer_amount = 0.0
        self.gross_margin_percentage = 0.0
        self.current_margin_percentage = 0.0
        self.margin_status = self.MARGIN_RED
        self.totals_stale = False

    def to_dict(self):
        """Convert project setup to dictionary"""
        return {
            'id': self.id,
            'project_id': self.project_id,
            'total_weeks': self.total_weeks,
            'customer_rate_per_hour': self.customer_rate_per_hour,
            'sold_cost_percentage': self.sold_cost_percentage,
            'total_internal_hours': self.total_internal_hours,
            'total_internal_cost': self.total_internal_cost,
            'total_customer_amount': self.total_customer_amount,
            'gross_margin_percentage': self.gross_margin_percentage,
            'current_margin_percentage': self.current_margin_percentage,
            'margin_status': self.margin_status,
            'totals_stale': self.totals_stale,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class ProjectRoleAllocation(db.Model):
    """One row of the planning grid: a role + user at an internal hourly rate"""
    __tablename__ = 'project_role_allocations'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    hourly_rate = db.Column(db.Float, nullable=False, default=0.0)
    customer_rate_per_hour = db.Column(db.Float, nullable=False, default=0.0)
    row_order = db.Column(db.Integer, nullable=False, default=0)

    # Derived fields
    total_hours = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    role = db.relationship('Role', lazy=True)
    user = db.relationship('User', lazy=True)
    weekly_hours = db.relationship('ProjectWeeklyHours', backref='allocation', lazy=True,
                                   cascade='all, delete-orphan',
                                   order_by='ProjectWeeklyHours.week_number')

    def __init__(self, project_id, role_id=None, user_id=None, hourly_rate=0.0,
                 customer_rate_per_hour=0.0, row_order=0):
        self.project_id = project_id
        self.role_id = role_id
        self.user_id = user_id
        self.hourly_rate = hourly_rate
        self.customer_rate_per_hour = customer_rate_per_hour
        self.row_order = row_order
        self.total_hours = 0.0
        self.total_amount = 0.0

    @property
    def is_empty_draft(self):
        """A row with nothing chosen yet: no role, no user, no rate"""
        return self.role_id is None and self.user_id is None and not self.hourly_rate

    def to_dict(self, include_weekly_hours=False):
        """Convert allocation to dictionary"""
        data = {
            'id': self.id,
            'project_id': self.project_id,
            'role_id': self.role_id,
            'user_id': self.user_id,
            'hourly_rate': self.hourly_rate,
            'customer_rate_per_hour': self.customer_rate_per_hour,
            'row_order': self.row_order,
            'total_hours': self.total_hours,
            'total_amount': self.total_amount
        }
        if include_weekly_hours:
            data['weekly_hours'] = [wh.to_dict() for wh in self.weekly_hours]
        return data


class ProjectWeeklyHours(db.Model):
    """Planned hours for one allocation row in one week of the project"""
    __tablename__ = 'project_weekly_hours'
    __table_args__ = (
        db.UniqueConstraint('allocation_id', 'week_number', name='unique_allocation_week'),
        db.CheckConstraint('week_number > 0', name='check_week_number_positive'),
        db.CheckConstraint('hours >= 0 AND hours <= 168', name='check_weekly_hours_range'),
    )

    MAX_HOURS = 168

    id = db.Column(db.Integer, primary_key=True)
    allocation_id = db.Column(db.Integer, db.ForeignKey('project_role_allocations.id'), nullable=False)
    week_number = db.Column(db.Integer, nullable=False)
    hours = db.Column(db.Float, nullable=False, default=0.0)

    def __init__(self, allocation_id=None, week_number=1, hours=0.0):
        self.allocation_id = allocation_id
        self.week_number = week_number
        self.hours = hours

    def to_dict(self):
        return {
            'week_number': self.week_number,
            'hours': self.hours
        }


class ProjectPhase(db.Model):
    """Named span of weeks within a project's plan"""
    __tablename__ = 'project_phases'
    __table_args__ = (
        db.CheckConstraint('start_week <= end_week', name='check_phase_week_order'),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    phase_name = db.Column(db.String(100), nullable=False)
    start_week = db.Column(db.Integer, nullable=False)
    end_week = db.Column(db.Integer, nullable=False)

    def __init__(self, project_id, phase_name, start_week, end_week):
        self.project_id = project_id
        self.phase_name = phase_name
        self.start_week = start_week
        self.end_week = end_week

    def to_dict(self):
        return {
            'id': self.id,
            'phase_name': self.phase_name,
            'start_week': self.start_week,
            'end_week': self.end_week
        }


class ProjectMember(db.Model):
    """Membership of a user on a project, created when a planned project is finalized"""
    __tablename__ = 'project_members'
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_project_member'),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    assigned_at = db.Column(db.DateTime, default=utc_now)

    def __init__(self, project_id, user_id, organization_id, role_id=None):
        self.project_id = project_id
        self.user_id = user_id
        self.organization_id = organization_id
        self.role_id = role_id

    def to_dict(self):
        return {
            'id': self.id,
            'project_id': self.project_id,
            'user_id': self.user_id,
            'role_id': self.role_id,
            'organization_id': self.organization_id,
            'assigned_at': self.assigned_at.isoformat() if self.assigned_at else None
        }


class Timesheet(db.Model):
    """A user's timesheet on a project"""
    __tablename__ = 'timesheets'
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_project_user_timesheet'),
    )

    STATUS_DRAFT = 'DRAFT'
    STATUS_SUBMITTED = 'SUBMITTED'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUSES = [STATUS_DRAFT, STATUS_SUBMITTED, STATUS_APPROVED, STATUS_REJECTED]

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_DRAFT)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    entries = db.relationship('TimesheetEntry', backref='timesheet', lazy=True, cascade='all, delete-orphan')

    def __init__(self, project_id, user_id, status=STATUS_DRAFT):
        self.project_id = project_id
        self.user_id = user_id
        self.status = status

    def to_dict(self):
        return {
            'id': self.id,
            'project_id': self.project_id,
            'user_id': self.user_id,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class TimesheetEntry(db.Model):
    """Hours actually logged on one day"""
    __tablename__ = 'timesheet_entries'
    __table_args__ = (
        db.UniqueConstraint('timesheet_id', 'date', name='unique_timesheet_entry_date'),
        db.CheckConstraint('hours >= 0 AND hours <= 24', name='check_entry_hours_range'),
    )

    id = db.Column(db.Integer, primary_key=True)
    timesheet_id = db.Column(db.Integer, db.ForeignKey('timesheets.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Float, nullable=False, default=0.0)

    def __init__(self, timesheet_id, date, hours=0.0):
        self.timesheet_id = timesheet_id
        self.date = date
        self.hours = hours


class ProjectCosting(db.Model):
    """Actual cost booked against a project for a user"""
    __tablename__ = 'project_costing'
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_project_user_costing'),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    rate = db.Column(db.Float, nullable=False, default=0.0)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __init__(self, project_id, user_id, rate=0.0, amount=0.0):
        self.project_id = project_id
        self.user_id = user_id
        self.rate = rate
        self.amount = amount
