"""Consultants, appointment types, availability and bookings."""

import logging
import secrets
import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .. import models, repositories
from ..auth import hash_password
from ..database import utcnow
from ..errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from ..serializers import appointment_out, consultant_out
from ..utils import slots
from ..utils.mailer import EmailType, send_email
from ..utils.pagination import pagination_block
from .notifications import NotificationService

logger = logging.getLogger("studyabroad.appointments")

MAX_AVAILABILITY_DAYS = 60
CANCELLABLE = (models.AppointmentStatus.SCHEDULED, models.AppointmentStatus.CONFIRMED)


def meeting_link() -> str:
    return f"https://meet.jit.si/studyabroad-{uuid.uuid4().hex[:12]}"


def _day_bounds(day: date):
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


class ConsultantService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ConsultantRepository(session)

    def get(self, consultant_id: int, active_only: bool = True) -> models.Consultant:
        consultant = self.repo.get(consultant_id)
        if not consultant or (active_only and not consultant.is_active):
            raise NotFoundError("Consultant not found")
        return consultant

    def list(self, specialty: Optional[str] = None, include_inactive: bool = False) -> list:
        consultants = self.repo.all() if include_inactive else self.repo.active()
        if specialty:
            needle = specialty.casefold()
            consultants = [c for c in consultants if any(needle in s.casefold() for s in c.specialties or [])]
        return [consultant_out(c) for c in consultants]

    def availability(self, consultant_id: int, start: Optional[date] = None, days: int = 7,
                     slot_minutes: int = 60) -> dict:
        """Free slots for `[start, start + days)`; past and booked slots are dropped."""
        if not 1 <= days <= MAX_AVAILABILITY_DAYS:
            raise BadRequestError(f"days must be between 1 and {MAX_AVAILABILITY_DAYS}")
        consultant = self.get(consultant_id)
        now = utcnow()
        start = start or now.date()
        range_start = datetime.combine(start, datetime.min.time())
        # include the previous day so long appointments spilling over midnight still block slots
        booked = repositories.AppointmentRepository(self.session).active_between(
            consultant.id, range_start - timedelta(days=1), range_start + timedelta(days=days),
        )
        return {
            "consultant_id": consultant.id,
            "start_date": start.isoformat(),
            "days": days,
            "slot_minutes": slot_minutes,
            "time_zone": consultant.time_zone,
            "availability": slots.available_days(consultant.availability, start, days, booked, now, slot_minutes),
        }

    def create(self, data: dict) -> models.Consultant:
        return self.repo.save(models.Consultant(**data))

    def update(self, consultant_id: int, changes: dict) -> models.Consultant:
        consultant = self.get(consultant_id, active_only=False)
        for key, value in changes.items():
            setattr(consultant, key, value)
        return self.repo.save(consultant)

    def delete(self, consultant_id: int) -> dict:
        """Deactivate consultants with appointments; delete the rest."""
        consultant = self.get(consultant_id, active_only=False)
        has_appointments = repositories.AppointmentRepository(self.session).count(
            models.Appointment.consultant_id == consultant.id) > 0
        if has_appointments:
            consultant.is_active = False
            self.repo.save(consultant)
            return {"deleted": False, "deactivated": True}
        self.repo.delete(consultant)
        return {"deleted": True, "deactivated": False}


class AppointmentTypeService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AppointmentTypeRepository(session)

    def get(self, type_id: int, active_only: bool = True) -> models.AppointmentType:
        appointment_type = self.repo.get(type_id)
        if not appointment_type or (active_only and not appointment_type.is_active):
            raise NotFoundError("Appointment type not found")
        return appointment_type

    def create(self, data: dict, default_currency: str) -> models.AppointmentType:
        data = dict(data)
        data["currency"] = (data.get("currency") or default_currency).upper()
        return self.repo.save(models.AppointmentType(**data))

    def update(self, type_id: int, changes: dict) -> models.AppointmentType:
        appointment_type = self.get(type_id, active_only=False)
        if changes.get("currency"):
            changes["currency"] = changes["currency"].upper()
        for key, value in changes.items():
            setattr(appointment_type, key, value)
        return self.repo.save(appointment_type)

    def delete(self, type_id: int) -> dict:
        appointment_type = self.get(type_id, active_only=False)
        in_use = repositories.AppointmentRepository(self.session).count(
            models.Appointment.type_id == appointment_type.id) > 0
        if in_use:
            appointment_type.is_active = False
            self.repo.save(appointment_type)
            return {"deleted": False, "deactivated": True}
        self.repo.delete(appointment_type)
        return {"deleted": True, "deactivated": False}


class AppointmentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AppointmentRepository(session)
        self.consultants = ConsultantService(session)
        self.types = AppointmentTypeService(session)
        self.users = repositories.UserRepository(session)

    # -- helpers ----------------------------------------------------------

    def _check_overlap(self, consultant_id: int, start: datetime, duration: int,
                       exclude_id: Optional[int] = None) -> None:
        others = self.repo.active_between(
            consultant_id, start - timedelta(days=1), start + timedelta(minutes=duration),
            exclude_id=exclude_id,
        )
        if slots.is_slot_booked(start, duration, others):
            raise ConflictError("This time slot is already booked")

    def _check_slot(self, consultant: models.Consultant, day: date, time_str: str, duration: int) -> datetime:
        start_minutes = slots.time_to_minutes(time_str)
        scheduled_at = datetime.combine(day, datetime.min.time()) + timedelta(minutes=start_minutes)
        if scheduled_at <= utcnow():
            raise BadRequestError("Cannot book an appointment in the past")
        schedule = slots.day_schedule(consultant.availability, day)
        if not slots.within_working_hours(schedule, start_minutes, duration):
            raise BadRequestError("Selected time is outside the consultant's working hours")
        return scheduled_at

    def _guest_user(self, first_name, last_name, email, phone) -> models.User:
        """Reuse the account for `email` or create an unverified student."""
        user = self.users.get_by_email(email)
        if user:
            return user
        user = self.users.save(models.User(
            email=email.strip().lower(),
            # random secret nobody knows; access is recovered through forgot-password
            password_hash=hash_password(secrets.token_urlsafe(48)),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=models.UserRole.STUDENT,
            is_verified=False,
        ))
        logger.info("guest_user_created user_id=%s", user.id)
        return user

    def _get_visible(self, appointment_id: int, user: models.User) -> models.Appointment:
        appointment = self.repo.get(appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if user.is_admin or appointment.user_id == user.id:
            return appointment
        consultant = self.consultants.repo.for_user(user.id)
        if consultant and consultant.id == appointment.consultant_id:
            return appointment
        raise ForbiddenError()

    def _out(self, appointment: models.Appointment) -> dict:
        return appointment_out(
            appointment,
            self.consultants.repo.get(appointment.consultant_id),
            self.types.repo.get(appointment.type_id),
            self.users.get(appointment.user_id),
        )

    # -- operations -------------------------------------------------------

    def book(self, payload: dict, user: Optional[models.User]) -> dict:
        appointment_type = self.types.get(payload["type_id"])
        consultant = self.consultants.get(payload["consultant_id"])
        guest = [payload.get(k) for k in ("first_name", "last_name", "email", "phone")]
        if user is None and not all(guest):
            raise BadRequestError("Guest bookings require first_name, last_name, email and phone")
        scheduled_at = self._check_slot(consultant, payload["scheduled_date"], payload["scheduled_time"],
                                        appointment_type.duration)
        self._check_overlap(consultant.id, scheduled_at, appointment_type.duration)
        # the guest account is only created once the slot is known to be free
        if user is None:
            user = self._guest_user(*guest)
        appointment = self.repo.save(models.Appointment(
            user_id=user.id,
            consultant_id=consultant.id,
            type_id=appointment_type.id,
            title=payload.get("title") or f"{appointment_type.name} with {consultant.name}",
            description=payload.get("description"),
            notes=payload.get("notes"),
            scheduled_at=scheduled_at,
            duration=appointment_type.duration,
            meeting_type=appointment_type.meeting_type,
            meeting_link=meeting_link() if appointment_type.meeting_type == models.MeetingType.VIDEO else None,
        ))
        payment_required = (appointment_type.price or 0) > 0
        logger.info("appointment_booked appointment_id=%s consultant_id=%s user_id=%s",
                    appointment.id, consultant.id, user.id)
        send_email(EmailType.APPOINTMENT_CONFIRMATION, user.email, {
            "first_name": user.first_name,
            "consultant_name": consultant.name,
            "scheduled_at": scheduled_at.strftime("%Y-%m-%d %H:%M"),
            "duration": appointment.duration,
            "meeting_link": appointment.meeting_link,
            "payment_required": payment_required,
            "amount": appointment_type.price,
            "currency": appointment_type.currency,
        })
        NotificationService(self.session).notify(
            user.id, "APPOINTMENT_CONFIRMATION", "Appointment booked",
            f"Your session with {consultant.name} is on {scheduled_at:%Y-%m-%d %H:%M}.",
            f"/appointments/{appointment.id}",
        )
        return {
            "appointment": self._out(appointment),
            "payment_required": payment_required,
            "amount": appointment_type.price if payment_required else 0,
            "currency": appointment_type.currency,
        }

    def list(self, user: models.User, *, status: Optional[models.AppointmentStatus] = None,
             consultant_id: Optional[int] = None, type_id: Optional[int] = None,
             date_from: Optional[date] = None, date_to: Optional[date] = None,
             page: int = 1, limit: int = 20) -> dict:
        A = models.Appointment
        scope = []
        if not user.is_admin:
            consultant = self.consultants.repo.for_user(user.id)
            if user.role == models.UserRole.CONSULTANT and consultant:
                scope.append(A.consultant_id == consultant.id)
            else:
                scope.append(A.user_id == user.id)
        filters = list(scope)
        if status:
            filters.append(A.status == status)
        if consultant_id:
            filters.append(A.consultant_id == consultant_id)
        if type_id:
            filters.append(A.type_id == type_id)
        if date_from:
            filters.append(A.scheduled_at >= _day_bounds(date_from)[0])
        if date_to:
            filters.append(A.scheduled_at < _day_bounds(date_to)[1])
        stmt = select(A).where(*filters).order_by(A.scheduled_at.desc())
        items, total = repositories.paginate(self.session, stmt, page, limit)
        counts = self.session.exec(select(A.status, func.count(A.id)).where(*scope).group_by(A.status)).all()
        return {
            "appointments": [self._out(a) for a in items],
            "pagination": pagination_block(page, limit, total),
            "status_counts": {getattr(s, "value", s): int(n) for s, n in counts},
        }

    def detail(self, appointment_id: int, user: models.User) -> dict:
        return self._out(self._get_visible(appointment_id, user))

    def update(self, appointment_id: int, user: models.User, changes: dict) -> dict:
        """Students may only cancel; admins may change status, notes, link and time."""
        appointment = self._get_visible(appointment_id, user)
        if not user.is_admin:
            allowed = {"status", "cancel_reason"}
            if set(changes) - allowed or changes.get("status") != models.AppointmentStatus.CANCELLED:
                raise ForbiddenError("You can only cancel your appointments")
            if appointment.status not in CANCELLABLE:
                raise BadRequestError("Only scheduled or confirmed appointments can be cancelled")
            appointment.status = models.AppointmentStatus.CANCELLED
            appointment.cancel_reason = changes.get("cancel_reason")
        else:
            if changes.get("scheduled_date") or changes.get("scheduled_time"):
                consultant = self.consultants.get(appointment.consultant_id, active_only=False)
                day = changes.get("scheduled_date") or appointment.scheduled_at.date()
                time_str = changes.get("scheduled_time") or appointment.scheduled_at.strftime("%H:%M")
                scheduled_at = self._check_slot(consultant, day, time_str, appointment.duration)
                self._check_overlap(consultant.id, scheduled_at, appointment.duration, exclude_id=appointment.id)
                appointment.scheduled_at = scheduled_at
            for key in ("status", "notes", "meeting_link", "cancel_reason"):
                if key in changes:
                    setattr(appointment, key, changes[key])
        appointment.updated_at = utcnow()
        appointment = self.repo.save(appointment)
        logger.info("appointment_updated appointment_id=%s by=%s status=%s",
                    appointment.id, user.id, appointment.status.value)
        return self._out(appointment)

    def messages(self, appointment_id: int, user: models.User) -> list:
        appointment = self._get_visible(appointment_id, user)
        senders = {}
        out = []
        for m in self.repo.messages(appointment.id):
            if m.sender_id not in senders:
                senders[m.sender_id] = self.users.get(m.sender_id)
            sender = senders[m.sender_id]
            out.append({**m.model_dump(), "sender_name": sender.full_name if sender else None})
        return out

    def post_message(self, appointment_id: int, user: models.User, message: str) -> models.AppointmentMessage:
        appointment = self._get_visible(appointment_id, user)
        msg = models.AppointmentMessage(appointment_id=appointment.id, sender_id=user.id, message=message)
        self.session.add(msg)
        self.session.commit()
        self.session.refresh(msg)
        if user.id != appointment.user_id:
            NotificationService(self.session).notify(
                appointment.user_id, "APPOINTMENT_MESSAGE", "New message",
                message[:140], f"/appointments/{appointment.id}",
            )
        return msg

    def stats(self) -> dict:
        A = models.Appointment
        now = utcnow()
        today_start, today_end = _day_bounds(now.date())
        month_start = today_start.replace(day=1)
        by_status = self.session.exec(select(A.status, func.count(A.id)).group_by(A.status)).all()
        return {
            "total": self.repo.count(),
            "today": self.repo.count(A.scheduled_at >= today_start, A.scheduled_at < today_end),
            "upcoming": self.repo.count(A.scheduled_at >= now, A.status.in_(models.ACTIVE_APPOINTMENT_STATUSES)),
            "this_month": self.repo.count(A.created_at >= month_start),
            "by_status": {getattr(s, "value", s): int(n) for s, n in by_status},
        }
