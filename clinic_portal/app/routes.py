import logging
from datetime import date

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from . import email_service
from .appointments import (
    book_appointment, cancel_appointment, transition_appointment, list_patient_appointments,
    list_family_members, add_family_member,
)
from .auth import (
    authenticate_doctor, issue_access_token, get_current_user, role_required, is_registered_doctor,
    generate_magic_token, consume_magic_token,
)
from .availability import (
    compute_available_slots, get_editable_doctor, list_weekly_schedule, replace_weekly_schedule,
    record_failed_schedule_update,
)
from .dependencies import get_db, UserRole
from .doctors import list_active_doctors, list_all_doctors, create_doctor, set_doctor_status, soft_delete_doctor
from .errors import Unauthorized, ValidationFailure, NotFound
from .merge import list_merge_appointments, count_merge_appointments, resolve_merge
from .models import AppointmentStatus, User
from .rate_limiter import login_rate_limit, client_address
from .schemas import (
    AppointmentCreate, AvailabilityUpdate, DoctorCreate, DoctorStatusUpdate, FamilyMemberCreate,
    MagicLinkRequest, MagicLinkVerify, MergeResolution,
)
from .utils import serialize_appointment, serialize_doctor, serialize_family_member, serialize_window

router = APIRouter()


def request_info(request: Request):
    return {
        "ip_address": client_address(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
        "request_path": request.url.path,
        "request_method": request.method,
    }


# ---------------------------------------------------------------- auth

@router.post("/token", dependencies=[Depends(login_rate_limit)])
def login_for_access_token(request: Request, form_data: OAuth2PasswordRequestForm = Depends(),
                           db: Session = Depends(get_db)):
    user = authenticate_doctor(db, form_data.username, form_data.password,
                               ip_address=client_address(request),
                               user_agent=request.headers.get("user-agent"))
    if not user:
        raise Unauthorized("Incorrect email or password")
    return issue_access_token(user)


@router.post("/auth/magic-link", dependencies=[Depends(login_rate_limit)])
def request_magic_link(payload: MagicLinkRequest, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if is_registered_doctor(db, email):
        raise ValidationFailure("Doctors must use password login")

    token = generate_magic_token(db, email)
    if not email_service.send_magic_link_email(email, token):
        raise HTTPException(status_code=500, detail="Failed to send magic link email")
    return {"success": True, "message": "Magic link sent to your email"}


@router.post("/auth/magic/verify")
def verify_magic_link(payload: MagicLinkVerify, db: Session = Depends(get_db)):
    user = consume_magic_token(db, payload.email, payload.token)
    return issue_access_token(user)


# ---------------------------------------------------------------- availability

@router.get("/availability")
def get_availability(
        day: date = Query(..., alias="date"),
        doctor_id: int = Query(..., alias="doctorId"),
        db: Session = Depends(get_db)
):
    slots, message = compute_available_slots(db, doctor_id, day)
    response = {"success": True, "availableSlots": slots}
    if message:
        response["message"] = message
    return response


# ---------------------------------------------------------------- appointments

@router.post("/appointments")
def create_appointment(
        payload: AppointmentCreate,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointment = book_appointment(db, payload, current_user)

    if appointment.family_member is not None:
        recipient = appointment.family_member.email or current_user.email
        patient_name = appointment.family_member.name
    else:
        recipient = appointment.patient.user.email
        patient_name = appointment.patient.user.name
    if not email_service.send_appointment_confirmation_email(appointment, recipient, patient_name):
        logging.warning(f"Confirmation email for appointment {appointment.id} was not delivered")

    return {
        "success": True,
        "message": "Appointment booked successfully!",
        "appointmentId": appointment.id,
        "requiresMerge": appointment.requires_merge,
        "appointment": {
            "id": appointment.id,
            "date": appointment.appointment_date.isoformat(),
            "type": appointment.appointment_type,
            "status": appointment.status,
            "bookingFor": payload.booking_for.value,
        },
    }


@router.get("/appointments/patient")
def get_patient_appointments(
        status: str = Query(None, pattern="^(upcoming|past)$"),
        limit: int = Query(50, ge=1, le=200),
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointments, upcoming, past = list_patient_appointments(db, current_user, status=status, limit=limit)
    return {
        "success": True,
        "appointments": [serialize_appointment(a, include_related=True) for a in appointments],
        "upcoming": [serialize_appointment(a, include_related=True) for a in upcoming],
        "past": [serialize_appointment(a, include_related=True) for a in past],
        "upcomingCount": len(upcoming),
        "pastCount": len(past),
        "totalCount": len(appointments),
    }


@router.patch("/appointments/{appointment_id}/cancel")
def cancel_patient_appointment(
        appointment_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointment = cancel_appointment(db, appointment_id, current_user)
    return {
        "success": True,
        "message": "Appointment cancelled successfully",
        "appointment": {
            "id": appointment.id,
            "appointmentDate": appointment.appointment_date.isoformat(),
            "status": appointment.status,
            "cancelledAt": appointment.cancelled_at.isoformat(),
        },
    }


@router.patch("/appointments/{appointment_id}/confirm")
@role_required([UserRole.DOCTOR.value])
def confirm_appointment(
        appointment_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointment = transition_appointment(db, appointment_id, AppointmentStatus.CONFIRMED.value, current_user)
    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.patch("/appointments/{appointment_id}/complete")
@role_required([UserRole.DOCTOR.value])
def complete_appointment(
        appointment_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointment = transition_appointment(db, appointment_id, AppointmentStatus.COMPLETED.value, current_user)
    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.get("/appointments/merge")
def get_merge_appointments(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    appointments = list_merge_appointments(db, current_user)
    return {
        "success": True,
        "appointments": [serialize_appointment(a, include_related=True) for a in appointments],
    }


@router.get("/appointments/merge/count")
def get_merge_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "count": count_merge_appointments(db, current_user)}


@router.post("/appointments/{appointment_id}/merge")
def resolve_appointment_merge(
        appointment_id: int,
        request: Request,
        payload: MergeResolution,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    appointment = resolve_merge(db, appointment_id, payload, current_user, request_info(request))
    return {
        "success": True,
        "message": "Merge resolved successfully",
        "appointment": serialize_appointment(appointment, include_related=True),
    }


# ---------------------------------------------------------------- patient

@router.get("/patient/family-members")
def get_family_members(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    members = list_family_members(db, current_user)
    return {"success": True, "familyMembers": [serialize_family_member(m) for m in members]}


@router.post("/patient/family-members")
def create_family_member(
        payload: FamilyMemberCreate,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    member = add_family_member(db, current_user, payload)
    return {"success": True, "familyMember": serialize_family_member(member)}


# ---------------------------------------------------------------- doctors

@router.get("/doctors/active")
def get_active_doctors(db: Session = Depends(get_db)):
    return {"success": True, "doctors": [serialize_doctor(d) for d in list_active_doctors(db)]}


@router.get("/doctors")
@role_required([UserRole.ADMIN.value])
def get_doctors(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    logging.info(f"get_doctors called by user: {current_user.email}")
    return {"success": True, "doctors": [serialize_doctor(d, include_private_info=True) for d in list_all_doctors(db)]}


@router.post("/doctors")
@role_required([UserRole.ADMIN.value])
def add_doctor(
        payload: DoctorCreate,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    doctor = create_doctor(db, payload.name, payload.email, payload.password,
                           specialization=payload.specialization,
                           consultation_fee=payload.consultation_fee,
                           is_admin=payload.is_admin)
    return {"success": True, "doctor": serialize_doctor(doctor, include_private_info=True)}


def _schedule_response(doctor_id, windows):
    return {
        "success": True,
        "doctorId": doctor_id,
        "availability": [serialize_window(w) for w in windows],
        "count": len(windows),
    }


def _own_doctor_id(current_user: User):
    if not current_user.is_doctor:
        raise NotFound("Doctor profile not found")
    return current_user.doctor.id


def _replace_schedule(db, doctor_id, payload, current_user, request):
    doctor = get_editable_doctor(db, doctor_id, current_user)
    info = request_info(request)
    try:
        windows = replace_weekly_schedule(db, doctor, payload.availability, current_user, info)
    except Exception as e:
        logging.error(f"Error updating availability for doctor {doctor_id}: {str(e)}")
        record_failed_schedule_update(db, doctor_id, current_user, e, info)
        raise HTTPException(status_code=500, detail="Failed to update availability")
    response = _schedule_response(doctor.id, windows)
    response["message"] = "Availability updated successfully"
    return response


@router.get("/doctors/me/availability")
@role_required([UserRole.DOCTOR.value])
def get_my_availability(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    doctor = get_editable_doctor(db, _own_doctor_id(current_user), current_user)
    return _schedule_response(doctor.id, list_weekly_schedule(db, doctor.id))


@router.put("/doctors/me/availability")
@role_required([UserRole.DOCTOR.value])
def put_my_availability(
        request: Request,
        payload: AvailabilityUpdate = Body(...),
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    return _replace_schedule(db, _own_doctor_id(current_user), payload, current_user, request)


@router.get("/doctors/{doctor_id}/availability")
@role_required([UserRole.DOCTOR.value])
def get_doctor_availability(
        doctor_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    doctor = get_editable_doctor(db, doctor_id, current_user)
    return _schedule_response(doctor.id, list_weekly_schedule(db, doctor.id))


@router.put("/doctors/{doctor_id}/availability")
@role_required([UserRole.DOCTOR.value])
def put_doctor_availability(
        doctor_id: int,
        request: Request,
        payload: AvailabilityUpdate = Body(...),
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    logging.info(f"Replacing availability for doctor {doctor_id}")
    return _replace_schedule(db, doctor_id, payload, current_user, request)


@router.patch("/doctors/{doctor_id}/status")
@role_required([UserRole.ADMIN.value])
def update_doctor_status(
        doctor_id: int,
        payload: DoctorStatusUpdate,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    doctor = set_doctor_status(db, doctor_id, payload.is_active, current_user)
    state = "enabled" if doctor.is_active else "disabled"
    return {
        "success": True,
        "message": f"Doctor {state} successfully",
        "doctor": serialize_doctor(doctor, include_private_info=True),
    }


@router.delete("/doctors/{doctor_id}")
@role_required([UserRole.ADMIN.value])
def delete_doctor(
        doctor_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    doctor = soft_delete_doctor(db, doctor_id, current_user)
    return {
        "success": True,
        "message": "Doctor deleted successfully",
        "doctor": serialize_doctor(doctor, include_private_info=True),
    }
