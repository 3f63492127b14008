import unittest

from fastapi.testclient import TestClient

from accounts import AccountStore, hash_password
from database import SessionLocal, create_tables, drop_tables
from main import app
from models import Notification, User, utcnow
from notifications import NotificationDispatcher
from reports import ReportStore

ADMIN_INFO = (
    "Barangay San Roque captain, LGU ID 2024-0117, office line 8123-4567, "
    "endorsed by the municipal engineering office."
)


def reset_database():
    drop_tables()
    create_tables()


class DatabaseTestCase(unittest.TestCase):
    """Stores wired to one session over a fresh in-memory database."""

    def setUp(self):
        reset_database()
        self.db = SessionLocal()
        self.dispatcher = NotificationDispatcher()
        self.reports = ReportStore(self.db, self.dispatcher)
        self.accounts = AccountStore(self.db, self.dispatcher)

    def tearDown(self):
        self.db.close()

    def make_user(self, email="juan@mail.ph", role="resident", name="Juan Dela Cruz"):
        user = User(name=name, email=email, password=hash_password("secret"), role=role, created_at=utcnow())
        self.db.add(user)
        self.db.commit()
        return user

    def notification_count(self, **filters):
        return self.db.query(Notification).filter_by(**filters).count()


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.client = TestClient(app)

    def count(self, model, **filters):
        with SessionLocal() as session:
            return session.query(model).filter_by(**filters).count()

    def register(self, email="juan@mail.ph", role="resident", **extra):
        body = {"name": "Juan Dela Cruz", "email": email, "password": "secret", "role": role, **extra}
        return self.client.post("/auth?action=register", json=body)
