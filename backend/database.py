from datetime import date, timedelta
from models import (
    Organization, User, Role, UserRole, UserHourlyRate, Project,
    ProjectSetup, ProjectRoleAllocation, ProjectWeeklyHours, ProjectPhase
)


def init_db():
    """Initialize the database and create all tables"""
    from models import db
    db.create_all()
    print("Database initialized successfully")


def seed_database():
    """Seed the database with a demo organization and one planned project"""
    from models import db
    from engine import calculate_weeks, update_allocation_totals, update_project_setup_totals

    if Organization.query.first():
        print("Database already seeded")
        return

    organization = Organization(name='Acme Consulting', currency_code='INR', currency_symbol='₹')
    db.session.add(organization)
    db.session.flush()

    # System roles grant access; job roles are what the plan is built from
    system_roles = {name: Role(organization.id, name, is_system=True) for name in Role.SYSTEM_ROLES}
    job_roles_data = [
        ('Project Manager', 1800.0),
        ('Developer', 1200.0),
        ('QA Engineer', 900.0),
        ('Designer', 1000.0),
    ]
    job_roles = {name: Role(organization.id, name, default_rate_per_hour=rate) for name, rate in job_roles_data}
    db.session.add_all(list(system_roles.values()) + list(job_roles.values()))
    db.session.flush()

    users_data = [
        ('admin@acme.example', 'Asha Admin', ['ADMIN'], None),
        ('manager@acme.example', 'Manoj Manager', ['MANAGER'], 1800.0),
        ('dev@acme.example', 'Divya Developer', ['EMPLOYEE'], None),
        ('qa@acme.example', 'Quentin QA', ['EMPLOYEE'], 950.0),
    ]
    users = {}
    for email, full_name, role_names, rate in users_data:
        user = User(email=email, password='password123', organization_id=organization.id,
                    full_name=full_name, rate_per_hour=rate)
        db.session.add(user)
        db.session.flush()
        for role_name in role_names:
            db.session.add(UserRole(user.id, system_roles[role_name].id, organization.id))
        users[email] = user

    platform_admin = User(email='root@platform.example', password='password123',
                          full_name='Platform Admin', role=User.SUPER_ADMIN)
    db.session.add(platform_admin)

    db.session.add(UserHourlyRate(users['dev@acme.example'].id, job_roles['Developer'].id,
                                  organization.id, 1250.0, date.today()))

    start = date.today()
    project = Project(
        organization_id=organization.id,
        title='Customer Portal Rebuild',
        start_date=start,
        end_date=start + timedelta(weeks=8) - timedelta(days=1),
        project_type=Project.TYPE_PLANNED
    )
    db.session.add(project)
    db.session.flush()

    setup = ProjectSetup(project.id, calculate_weeks(project.start_date, project.end_date),
                         customer_rate_per_hour=2500.0)
    db.session.add(setup)

    plan = [
        ('manager@acme.example', 'Project Manager', 1800.0, 3000.0, [10] * 8),
        ('dev@acme.example', 'Developer', 1250.0, 2200.0, [40] * 8),
        ('qa@acme.example', 'QA Engineer', 950.0, 1600.0, [0, 0, 0, 20, 20, 30, 30, 30]),
    ]
    for order, (email, role_name, rate, customer_rate, weeks) in enumerate(plan, start=1):
        allocation = ProjectRoleAllocation(
            project_id=project.id,
            role_id=job_roles[role_name].id,
            user_id=users[email].id,
            hourly_rate=rate,
            customer_rate_per_hour=customer_rate,
            row_order=order
        )
        for week_number, hours in enumerate(weeks, start=1):
            allocation.weekly_hours.append(ProjectWeeklyHours(week_number=week_number, hours=hours))
        db.session.add(allocation)
        db.session.flush()
        update_allocation_totals(allocation.id)

    db.session.add_all([
        ProjectPhase(project.id, 'Discovery', 1, 2),
        ProjectPhase(project.id, 'Build', 3, 6),
        ProjectPhase(project.id, 'Stabilize', 7, 8),
    ])
    db.session.flush()
    update_project_setup_totals(project.id)

    db.session.commit()
    print("Database seeded successfully")
