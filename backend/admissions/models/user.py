"""
User Model — Applicant accounts and the programs they are enrolled in.
Owned by the account/CRUD layer; payments only ever add enrollments.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint

from admissions.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    email = Column(String(254), unique=True, nullable=False, index=True)

    first_name = Column(String(64))
    last_name = Column(String(64))
    phone = Column(String(32))

    role = Column(String(16), default="student")   # admin | reviewer | admissions | student
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Enrollment(Base):
    """One row per (user, application): the user's enrolled-programs set."""
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "application_id", name="uq_enrollment_user_application"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
