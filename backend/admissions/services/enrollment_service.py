"""
Enrollment Service — Narrow Application/User updates driven by payments.

Every write here tolerates re-application: status writes are conditional and
enrollment is a set-insert backed by a unique constraint.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from admissions.exceptions import NotFoundError
from admissions.models.application import Application
from admissions.models.user import User, Enrollment


class EnrollmentService:
    """Application and User collaborator operations."""

    @staticmethod
    def find_application(db: Session, application_id: int) -> Application:
        application = (
            db.query(Application)
            .filter(Application.id == application_id)
            .populate_existing()
            .first()
        )
        if not application:
            raise NotFoundError("Application not found", application_id=application_id)
        return application

    @staticmethod
    def find_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    @staticmethod
    def link_payment(db: Session, application: Application, payment_id: Optional[int]) -> None:
        """Point the application at its current payment (None to unlink)."""
        application.payment_id = payment_id
        if payment_id is not None and application.payment_status != "paid":
            application.payment_status = "pending"
        application.updated_at = datetime.utcnow()
        db.commit()

    @staticmethod
    def claim_payment(db: Session, application_id: int, observed_payment_id: Optional[int], payment_id: int) -> bool:
        """Make ``payment_id`` current only if the application still points at ``observed_payment_id``.

        Two initializations racing for one application observe the same
        current payment; only one of them can move it.
        """
        current = (
            Application.payment_id.is_(None)
            if observed_payment_id is None
            else Application.payment_id == observed_payment_id
        )
        updated = (
            db.query(Application)
            .filter(Application.id == application_id, Application.payment_status != "paid", current)
            .update(
                {"payment_id": payment_id, "payment_status": "pending", "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_enrolled(db: Session, application_id: int) -> bool:
        """status=enrolled and paymentStatus=paid together, at most once."""
        updated = (
            db.query(Application)
            .filter(Application.id == application_id, Application.payment_status != "paid")
            .update(
                {"status": "enrolled", "payment_status": "paid", "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_payment_failed(db: Session, application_id: int) -> bool:
        """paymentStatus=failed; status is left as it was."""
        updated = (
            db.query(Application)
            .filter(Application.id == application_id, Application.payment_status != "paid")
            .update(
                {"payment_status": "failed", "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_payment_expired(db: Session, application_id: int, payment_id: int) -> bool:
        """paymentStatus=expired, only while that payment is still the current one."""
        updated = (
            db.query(Application)
            .filter(
                Application.id == application_id,
                Application.payment_id == payment_id,
                Application.payment_status == "pending",
            )
            .update(
                {"payment_status": "expired", "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def add_enrolled_program(db: Session, user_id: int, application_id: int) -> bool:
        """Set-insert into the user's enrolled programs. Returns False if already present."""
        exists = (
            db.query(Enrollment.id)
            .filter(Enrollment.user_id == user_id, Enrollment.application_id == application_id)
            .first()
        )
        if exists:
            return False

        db.add(Enrollment(user_id=user_id, application_id=application_id))
        try:
            db.commit()
        except IntegrityError:
            # Lost an insert race; the row is there either way.
            db.rollback()
            return False
        return True

    @staticmethod
    def enrolled_programs(db: Session, user_id: int) -> list[int]:
        rows = (
            db.query(Enrollment.application_id)
            .filter(Enrollment.user_id == user_id)
            .order_by(Enrollment.id.asc())
            .all()
        )
        return [application_id for (application_id,) in rows]
