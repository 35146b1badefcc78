"""Consultants, availability, appointment types and bookings."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models, repositories
from ..auth import get_current_user, get_optional_user, require_admin
from ..database import get_session
from ..schemas import (AppointmentTypeIn, AppointmentTypeUpdate, AppointmentUpdate, BookingIn, ConsultantIn,
                       ConsultantUpdate, MessageIn)
from ..serializers import consultant_out
from ..services.booking import AppointmentService, AppointmentTypeService, ConsultantService
from ..services.cms import SettingsService

router = APIRouter(tags=["appointments"])


@router.get("/consultants")
def list_consultants(specialty: Optional[str] = None, db: Session = Depends(get_session)):
    return {"consultants": ConsultantService(db).list(specialty)}


@router.get("/consultants/{consultant_id}")
def consultant_detail(consultant_id: int, db: Session = Depends(get_session)):
    return consultant_out(ConsultantService(db).get(consultant_id))


@router.get("/consultants/{consultant_id}/availability")
def consultant_availability(consultant_id: int, date: Optional[date] = None, days: int = 7,
                            slot_minutes: int = Query(60, ge=15, le=240), db: Session = Depends(get_session)):
    """Free slots per day for `[date, date + days)`."""
    return ConsultantService(db).availability(consultant_id, date, days, slot_minutes)


@router.get("/appointment-types")
def list_appointment_types(db: Session = Depends(get_session)):
    return {"types": [t.model_dump() for t in repositories.AppointmentTypeRepository(db).list()]}


@router.get("/appointment-types/{type_id}")
def appointment_type_detail(type_id: int, db: Session = Depends(get_session)):
    return AppointmentTypeService(db).get(type_id).model_dump()


@router.post("/appointments", status_code=201)
def book_appointment(payload: BookingIn, db: Session = Depends(get_session),
                     user: Optional[models.User] = Depends(get_optional_user)):
    """Book a slot as the signed-in user, or as a guest with contact details."""
    return AppointmentService(db).book(payload.model_dump(), user)


@router.get("/appointments")
def list_appointments(status: Optional[models.AppointmentStatus] = None, consultant_id: Optional[int] = None,
                      type_id: Optional[int] = None, date_from: Optional[date] = None,
                      date_to: Optional[date] = None, page: int = Query(1, ge=1),
                      limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    return AppointmentService(db).list(user, status=status, consultant_id=consultant_id, type_id=type_id,
                                       date_from=date_from, date_to=date_to, page=page, limit=limit)


@router.get("/appointments/{appointment_id}")
def appointment_detail(appointment_id: int, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return AppointmentService(db).detail(appointment_id, user)


@router.patch("/appointments/{appointment_id}")
def update_appointment(appointment_id: int, payload: AppointmentUpdate, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return AppointmentService(db).update(appointment_id, user, payload.model_dump(exclude_unset=True))


@router.get("/appointments/{appointment_id}/messages")
def appointment_messages(appointment_id: int, db: Session = Depends(get_session),
                         user: models.User = Depends(get_current_user)):
    return {"messages": AppointmentService(db).messages(appointment_id, user)}


@router.post("/appointments/{appointment_id}/messages", status_code=201)
def post_appointment_message(appointment_id: int, payload: MessageIn, db: Session = Depends(get_session),
                             user: models.User = Depends(get_current_user)):
    return AppointmentService(db).post_message(appointment_id, user, payload.message).model_dump()


# -- admin ----------------------------------------------------------------

@router.get("/admin/appointments/stats")
def admin_appointment_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AppointmentService(db).stats()


@router.get("/admin/consultants")
def admin_list_consultants(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {"consultants": ConsultantService(db).list(include_inactive=True)}


@router.post("/admin/consultants", status_code=201)
def admin_create_consultant(payload: ConsultantIn, db: Session = Depends(get_session),
                            admin: models.User = Depends(require_admin)):
    return consultant_out(ConsultantService(db).create(payload.model_dump()))


@router.put("/admin/consultants/{consultant_id}")
def admin_update_consultant(consultant_id: int, payload: ConsultantUpdate, db: Session = Depends(get_session),
                            admin: models.User = Depends(require_admin)):
    return consultant_out(ConsultantService(db).update(consultant_id, payload.model_dump(exclude_unset=True)))


@router.delete("/admin/consultants/{consultant_id}")
def admin_delete_consultant(consultant_id: int, db: Session = Depends(get_session),
                            admin: models.User = Depends(require_admin)):
    return ConsultantService(db).delete(consultant_id)


@router.get("/admin/appointment-types")
def admin_list_types(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {"types": [t.model_dump() for t in repositories.AppointmentTypeRepository(db).list(active_only=False)]}


@router.post("/admin/appointment-types", status_code=201)
def admin_create_type(payload: AppointmentTypeIn, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    currency = SettingsService(db).payment_settings()["default_currency"]
    return AppointmentTypeService(db).create(payload.model_dump(), currency).model_dump()


@router.put("/admin/appointment-types/{type_id}")
def admin_update_type(type_id: int, payload: AppointmentTypeUpdate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return AppointmentTypeService(db).update(type_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/appointment-types/{type_id}")
def admin_delete_type(type_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AppointmentTypeService(db).delete(type_id)
