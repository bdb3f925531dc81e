"""
Application Model — An admissions application and its enrollment/payment state.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from admissions.database import Base


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    first_name = Column(String(64))
    last_name = Column(String(64))
    email = Column(String(254), nullable=False, index=True)

    track = Column(String(32))     # project-management | frontend-development | backend-development | ...
    program = Column(String(32))   # launchpad | professional

    status = Column(String(16), default="pending", index=True)   # pending | approved | rejected | enrolled
    payment_status = Column(String(16), default="pending")       # pending | paid | expired | failed

    # Current payment only; superseded payments keep their application_id.
    payment_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
