from admissions.models.user import User, Enrollment
from admissions.models.application import Application
from admissions.models.payment import Payment
from admissions.models.audit import AuditLog

__all__ = ["User", "Enrollment", "Application", "Payment", "AuditLog"]
