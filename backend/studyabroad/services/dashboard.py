"""Admin dashboard aggregates and the recent-activity feed."""

import math
from datetime import datetime, timedelta
from typing import Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from .. import models, repositories
from ..database import utcnow
from ..utils.scoring import percentage


def growth_percentage(current: float, previous: float) -> int:
    """Month-over-month growth with halves rounded up; a zero baseline gives 100 or 0."""
    if not previous:
        return 100 if current > 0 else 0
    return math.floor((current - previous) / previous * 100 + 0.5)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Start of the current month and of the month before it."""
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return this_month, last_month


class DashboardService:
    def __init__(self, session: Session):
        self.session = session
        self.users = repositories.UserRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.appointments = repositories.AppointmentRepository(session)
        self.transactions = repositories.TransactionRepository(session)
        self.tests = repositories.TestRepository(session)
        self.attempts = repositories.AttemptRepository(session)

    def _user_stats(self, now: datetime, this_month: datetime, last_month: datetime) -> dict:
        U = models.User
        new_this = self.users.count(U.created_at >= this_month)
        new_last = self.users.count(U.created_at >= last_month, U.created_at < this_month)
        return {
            "total": self.users.count(),
            "new_this_month": new_this,
            "active_last_30_days": self.users.count(U.last_login >= now - timedelta(days=30)),
            "growth": growth_percentage(new_this, new_last),
        }

    def _course_stats(self, this_month: datetime) -> dict:
        return {
            "total": self.courses.count(),
            "published": self.courses.count(models.Course.is_published == True),  # noqa: E712
            "enrollments": self.enrollments.count(),
            "revenue_this_month": self.transactions.revenue(
                this_month, None, models.TransactionType.COURSE_PURCHASE),
        }

    def _appointment_stats(self, now: datetime, this_month: datetime) -> dict:
        A = models.Appointment
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "today": self.appointments.count(A.scheduled_at >= today, A.scheduled_at < today + timedelta(days=1)),
            "pending": self.appointments.count(A.status == models.AppointmentStatus.SCHEDULED),
            "completed_this_month": self.appointments.count(
                A.status == models.AppointmentStatus.COMPLETED, A.scheduled_at >= this_month),
            "cancelled_this_month": self.appointments.count(
                A.status == models.AppointmentStatus.CANCELLED, A.updated_at >= this_month),
        }

    def _revenue_stats(self, this_month: datetime, last_month: datetime) -> dict:
        T = models.Transaction
        current = self.transactions.revenue(this_month)
        previous = self.transactions.revenue(last_month, this_month)
        return {
            "total": self.transactions.revenue(),
            "this_month": current,
            "growth": growth_percentage(current, previous),
            "transactions_this_month": self.transactions.count(
                T.status == models.TransactionStatus.COMPLETED, T.created_at >= this_month),
        }

    def _test_stats(self, this_month: datetime) -> dict:
        TA = models.TestAttempt
        started = self.attempts.count(TA.started_at >= this_month)
        completed = self.attempts.count(TA.started_at >= this_month, TA.status == models.AttemptStatus.COMPLETED)
        avg_stmt = select(func.avg(TA.score)).where(
            TA.status == models.AttemptStatus.COMPLETED, TA.completed_at >= this_month)
        average = self.session.exec(avg_stmt).one()
        return {
            "total_tests": self.tests.count(),
            "attempts_this_month": started,
            "average_score": round(float(average), 2) if average is not None else 0.0,
            "completion_rate": percentage(completed, started),
        }

    def stats(self) -> dict:
        now = utcnow()
        this_month, last_month = month_bounds(now)
        return {
            "users": self._user_stats(now, this_month, last_month),
            "courses": self._course_stats(this_month),
            "appointments": self._appointment_stats(now, this_month),
            "revenue": self._revenue_stats(this_month, last_month),
            "test_prep": self._test_stats(this_month),
        }

    def activities(self, limit: int = 20) -> list:
        """Recent events across modules, newest first."""
        items = []
        users = {}

        def name_of(user_id):
            if user_id not in users:
                user = self.users.get(user_id)
                users[user_id] = user.full_name if user else "Unknown user"
            return users[user_id]

        for e in self.enrollments.recent(limit):
            course = self.courses.get(e.course_id)
            items.append({
                "type": "enrollment", "timestamp": e.enrolled_at,
                "title": f"{name_of(e.user_id)} enrolled in {course.title if course else 'a course'}",
                "ref_id": e.id,
            })
        for a in self.appointments.recent(limit):
            items.append({
                "type": "appointment", "timestamp": a.created_at,
                "title": f"{name_of(a.user_id)} booked {a.title}", "status": a.status.value,
                "ref_id": a.id,
            })
        for t in self.transactions.recent(limit):
            items.append({
                "type": "payment", "timestamp": t.created_at,
                "title": f"{name_of(t.user_id)} paid {t.amount:.2f} {t.currency}", "status": t.status.value,
                "ref_id": t.id,
            })
        for u in self.users.recent(limit):
            items.append({
                "type": "registration", "timestamp": u.created_at,
                "title": f"{u.full_name or u.email} registered", "ref_id": u.id,
            })
        for c in self.courses.recent_published(limit):
            items.append({
                "type": "course_published", "timestamp": c.updated_at,
                "title": f"Course published: {c.title}", "ref_id": c.id,
            })
        items.sort(key=lambda item: item["timestamp"], reverse=True)
        return items[:limit]
