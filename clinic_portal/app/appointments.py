import logging
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .availability import compute_available_slots, get_bookable_doctor, get_active_window
from .config import MIN_CANCELLATION_HOURS, DEFAULT_SLOT_DURATION, clinic_now, to_clinic_time
from .dependencies import UserRole
from .errors import NotFound, Forbidden, ValidationFailure, BusinessRuleViolation, SlotUnavailable
from .models import Appointment, AppointmentStatus, FamilyMember, Patient, User
from .schemas import AppointmentCreate, BookingFor

# Forward transitions; CANCELLED is reachable from any non-terminal state through cancel_appointment
ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED.value: {AppointmentStatus.CONFIRMED.value},
    AppointmentStatus.CONFIRMED.value: {AppointmentStatus.COMPLETED.value},
}
TERMINAL_STATUSES = {AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value}


def get_or_create_patient(db: Session, user: User) -> Patient:
    if user.patient:
        return user.patient
    patient = Patient(user_id=user.id)
    db.add(patient)
    db.flush()
    return patient


def get_patient_for_user(db: Session, user: User) -> Patient:
    patient = db.query(Patient).filter(Patient.user_id == user.id).first()
    if not patient:
        raise NotFound("Patient not found")
    return patient


def _resolve_booking_subject(db: Session, request: AppointmentCreate, current_user: User, booker: Patient):
    """Work out who the appointment is for, flagging ambiguous identities for merge review."""
    subject = {
        "patient_id": booker.id,
        "family_member_id": None,
        "requires_merge": False,
        "merge_notes": None,
        "original_patient_name": None,
        "original_patient_email": None,
        "original_patient_phone": None,
    }

    if request.booking_for == BookingFor.MYSELF:
        # Contact details are only required until the profile has them
        missing = []
        if not (request.patient_name or current_user.name):
            missing.append({"path": "patientName", "message": "Name is required to complete your profile"})
        if not (request.patient_phone or current_user.phone):
            missing.append({"path": "patientPhone", "message": "Phone is required to complete your profile"})
        if missing:
            raise ValidationFailure("Validation failed", details=missing)
        if request.patient_name:
            current_user.name = request.patient_name
        if request.patient_phone:
            current_user.phone = request.patient_phone

    elif request.booking_for == BookingFor.FAMILY_MEMBER:
        member = db.query(FamilyMember).filter(
            FamilyMember.id == request.family_member_id,
            FamilyMember.patient_id == booker.id,
            FamilyMember.is_active.is_(True),
        ).first()
        if not member:
            raise NotFound("Family member not found")
        subject["family_member_id"] = member.id

    else:
        email = request.patient_email.lower()
        subject.update({
            "original_patient_name": request.patient_name,
            "original_patient_email": email,
            "original_patient_phone": request.patient_phone,
        })
        existing_user = db.query(User).filter(User.email == email).first()
        if existing_user and existing_user.patient:
            subject["patient_id"] = existing_user.patient.id
            subject["requires_merge"] = True
            notes = f"Email matches existing user: {existing_user.email}"
            if existing_user.id == current_user.id:
                notes += " (Logged in user)"
            subject["merge_notes"] = notes
        elif existing_user:
            existing_user.name = existing_user.name or request.patient_name
            existing_user.phone = existing_user.phone or request.patient_phone
            subject["patient_id"] = get_or_create_patient(db, existing_user).id
        else:
            new_user = User(
                email=email,
                name=request.patient_name,
                phone=request.patient_phone,
                role=UserRole.PATIENT.value,
            )
            db.add(new_user)
            db.flush()
            subject["patient_id"] = get_or_create_patient(db, new_user).id

    return subject


def book_appointment(db: Session, request: AppointmentCreate, current_user: User, now=None):
    now = now or clinic_now()
    appointment_date = to_clinic_time(request.appointment_date).replace(second=0, microsecond=0)

    doctor = get_bookable_doctor(db, request.doctor_id)
    if appointment_date <= now:
        raise BusinessRuleViolation("Cannot book past appointments",
                                    details="Please choose a time in the future.")

    slots, _ = compute_available_slots(db, doctor.id, appointment_date.date(), now=now)
    if appointment_date.strftime("%H:%M") not in slots:
        raise SlotUnavailable("This time slot is no longer available",
                              details="Please select another time.")
    window = get_active_window(db, doctor.id, appointment_date.date())

    try:
        booker = get_or_create_patient(db, current_user)
        subject = _resolve_booking_subject(db, request, current_user, booker)
        appointment = Appointment(
            doctor_id=doctor.id,
            booked_by_user_id=current_user.id,
            booked_by_patient_id=booker.id,
            appointment_date=appointment_date,
            appointment_type=request.appointment_type.value,
            service_type=request.service_type.value,
            status=AppointmentStatus.SCHEDULED.value,
            symptoms=request.symptoms,
            previous_treatment=request.previous_treatment,
            duration=window.slot_duration if window else DEFAULT_SLOT_DURATION,
            **subject,
        )
        db.add(appointment)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appointment)
    logging.info(f"Appointment {appointment.id} booked with doctor {doctor.id} by {current_user.email} "
                 f"for {request.booking_for.value}, requires_merge={appointment.requires_merge}")
    return appointment


def cancel_appointment(db: Session, appointment_id: int, current_user: User, now=None):
    patient = get_patient_for_user(db, current_user)
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        or_(
            Appointment.patient_id == patient.id,
            Appointment.booked_by_patient_id == patient.id,
            Appointment.merged_to_patient_id == patient.id,
        ),
    ).first()
    if not appointment:
        raise NotFound("Appointment not found or access denied")

    now = now or clinic_now()
    hours_until_appointment = (appointment.appointment_date - now).total_seconds() / 3600

    if appointment.appointment_date < now:
        raise BusinessRuleViolation("Cannot cancel past appointments",
                                    details="This appointment has already passed.")
    if appointment.status == AppointmentStatus.CANCELLED.value:
        raise BusinessRuleViolation("Appointment already cancelled",
                                    details="This appointment is already cancelled.")
    if appointment.status in TERMINAL_STATUSES:
        raise BusinessRuleViolation("Appointment cannot be cancelled",
                                    details=f"This appointment is already {appointment.status.lower()}.")
    if hours_until_appointment < MIN_CANCELLATION_HOURS:
        raise BusinessRuleViolation(
            "Cancellation policy violation",
            details=f"Appointments must be cancelled at least {MIN_CANCELLATION_HOURS} hours in advance.",
            hoursUntilAppointment=round(hours_until_appointment),
        )

    appointment.status = AppointmentStatus.CANCELLED.value
    appointment.cancelled_at = now
    db.commit()
    db.refresh(appointment)
    logging.info(f"Appointment {appointment.id} cancelled by patient {patient.id}")
    return appointment


def transition_appointment(db: Session, appointment_id: int, target_status: str, current_user: User, now=None):
    """Doctor-driven forward moves: SCHEDULED -> CONFIRMED -> COMPLETED."""
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFound("Appointment not found")
    if not current_user.is_admin and (not current_user.is_doctor or appointment.doctor_id != current_user.doctor.id):
        raise Forbidden("Not authorized to update this appointment")

    if target_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        raise BusinessRuleViolation("Invalid status transition",
                                    details=f"Cannot move from {appointment.status} to {target_status}.")

    now = now or clinic_now()
    appointment.status = target_status
    if target_status == AppointmentStatus.CONFIRMED.value:
        appointment.confirmed_at = now
    elif target_status == AppointmentStatus.COMPLETED.value:
        appointment.completed_at = now
    db.commit()
    db.refresh(appointment)
    logging.info(f"Appointment {appointment.id} moved to {target_status} by {current_user.email}")
    return appointment


def is_upcoming(appointment: Appointment, now) -> bool:
    return appointment.appointment_date >= now and appointment.status != AppointmentStatus.CANCELLED.value


def list_patient_appointments(db: Session, current_user: User, status=None, limit=50, now=None):
    """
    Appointments the patient is seen in, booked, or had merged to them.

    A cancelled appointment counts as past even when its date is still ahead.
    """
    patient = get_patient_for_user(db, current_user)
    now = now or clinic_now()

    query = db.query(Appointment).filter(or_(
        Appointment.patient_id == patient.id,
        Appointment.booked_by_patient_id == patient.id,
        Appointment.merged_to_patient_id == patient.id,
    ))
    if status == "upcoming":
        query = query.filter(
            Appointment.appointment_date >= now,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        )
    elif status == "past":
        query = query.filter(or_(
            Appointment.appointment_date < now,
            Appointment.status == AppointmentStatus.CANCELLED.value,
        ))

    appointments = query.order_by(Appointment.created_at.desc(), Appointment.id.desc()).limit(limit).all()
    upcoming = [a for a in appointments if is_upcoming(a, now)]
    past = [a for a in appointments if not is_upcoming(a, now)]
    return appointments, upcoming, past


def list_family_members(db: Session, current_user: User):
    patient = get_or_create_patient(db, current_user)
    db.commit()
    return db.query(FamilyMember).filter(
        FamilyMember.patient_id == patient.id,
        FamilyMember.is_active.is_(True),
    ).order_by(FamilyMember.created_at).all()


def add_family_member(db: Session, current_user: User, request):
    patient = get_or_create_patient(db, current_user)
    member = FamilyMember(
        patient_id=patient.id,
        name=request.name,
        relationship_type=request.relationship,
        email=request.email.lower() if request.email else None,
        phone=request.phone,
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    return member
