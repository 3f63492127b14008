"""
Relational schema for the community issue tracker.

Tables: users, admin_verifications, user_logins, reports, report_images,
notifications, comments.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)  # bcrypt hash
    role = Column(String(20), nullable=False, default="resident")
    avatar = Column(String(255))
    phone = Column(String(50))
    barangay = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime)

    verifications = relationship(
        "AdminVerification",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}')>"


class AdminVerification(Base):
    __tablename__ = "admin_verifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    verification_info = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    admin_notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime)

    user = relationship("User", back_populates="verifications")


class UserLogin(Base):
    __tablename__ = "user_logins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    login_time = Column(DateTime, nullable=False, default=utcnow)
    ip_address = Column(String(45))


class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False)
    location = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    priority = Column(String(20), nullable=False, default="low")
    reporter_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    contact_name = Column(String(255))
    contact_phone = Column(String(50))
    contact_email = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    images = relationship(
        "ReportImage",
        back_populates="report",
        order_by="ReportImage.id",
        passive_deletes=True,
    )


class ReportImage(Base):
    __tablename__ = "report_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(String(1024), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    report = relationship("Report", back_populates="images")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="info")
    is_read = Column(Boolean, nullable=False, default=False)
    user_id = Column(Integer, index=True)  # None means broadcast
    sender_id = Column(Integer)
    related_issue_id = Column(Integer, ForeignKey("reports.id", ondelete="SET NULL"), index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
