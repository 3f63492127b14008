"""Sample data for a fresh database: one approved reviewer admin, two residents, one staff member."""

import logging

from sqlalchemy.orm import Session

from accounts import hash_password
from models import AdminVerification, Notification, Report, User, utcnow

logger = logging.getLogger(__name__)

SAMPLE_PASSWORD = "password"


def seed_sample_data(session: Session) -> bool:
    if session.query(User.id).first() is not None:
        logger.info("Users table not empty, skipping sample data")
        return False

    now = utcnow()
    password = hash_password(SAMPLE_PASSWORD)
    users = [
        User(name="Admin User", email="admin@lgu.gov.ph", password=password, role="admin", created_at=now),
        User(name="Juan Dela Cruz", email="juan@mail.ph", password=password, role="resident",
             barangay="San Roque", created_at=now),
        User(name="Maria Santos", email="maria@mail.ph", password=password, role="resident",
             barangay="Poblacion", created_at=now),
        User(name="Engineer Reyes", email="reyes@lgu.gov.ph", password=password, role="staff", created_at=now),
    ]
    session.add_all(users)
    session.flush()
    admin, juan, maria, _ = users

    session.add(AdminVerification(
        user_id=admin.id,
        verification_info="Municipal Engineering Office reviewer account created during setup.",
        status="approved",
        admin_notes="Seeded reviewer",
        created_at=now,
        updated_at=now,
    ))

    reports = [
        Report(title="Pothole on Main Street",
               description="Large pothole causing traffic and potential vehicle damage near the intersection.",
               category="Road Damage", location="Main St, near Central Park", status="pending",
               priority="high", reporter_id=juan.id, created_at=now, updated_at=now),
        Report(title="Clogged Storm Drain",
               description="Storm drain is completely blocked causing flooding during rain.",
               category="Drainage", location="Oak Avenue, beside Community Center", status="in-progress",
               priority="critical", reporter_id=maria.id, created_at=now, updated_at=now),
        Report(title="Street Light Not Working",
               description="Street light has been out for over a week creating safety concerns at night.",
               category="Electricity", location="Pine Street, corner of 5th Avenue", status="resolved",
               priority="medium", reporter_id=juan.id, created_at=now, updated_at=now),
    ]
    session.add_all(reports)
    session.flush()

    session.add_all([
        Notification(title="Issue Status Updated",
                     message="The pothole report on Main Street has been marked as 'In Progress'.",
                     type="update", is_read=False, user_id=juan.id, related_issue_id=reports[0].id,
                     created_at=now),
        Notification(title="Issue Resolved",
                     message="The street light repair on Pine Street has been completed.",
                     type="success", is_read=False, user_id=juan.id, related_issue_id=reports[2].id,
                     created_at=now),
        Notification(title="New Comment",
                     message="Juan Dela Cruz commented on your drainage issue report.",
                     type="info", is_read=True, user_id=maria.id, related_issue_id=reports[1].id,
                     created_at=now),
    ])
    session.commit()
    logger.info("Sample data inserted")
    return True
