import logging
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from .config import clinic_now
from .errors import NotFound, Forbidden
from .models import Doctor, AvailabilityWindow, Appointment, AppointmentStatus, AuditLog, User
from .utils import parse_time_string, format_minutes, day_of_week, day_bounds


def get_bookable_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(
        Doctor.id == doctor_id,
        Doctor.is_active.is_(True),
        Doctor.deleted_at.is_(None),
    ).first()
    if not doctor:
        raise NotFound("Doctor not found or not active")
    return doctor


def get_active_window(db: Session, doctor_id: int, day: date):
    # Only one active window per weekday is expected; the first one wins
    return db.query(AvailabilityWindow).filter(
        AvailabilityWindow.doctor_id == doctor_id,
        AvailabilityWindow.day_of_week == day_of_week(day),
        AvailabilityWindow.is_active.is_(True),
    ).order_by(AvailabilityWindow.id).first()


def get_booked_times(db: Session, doctor_id: int, day: date):
    start_of_day, next_day = day_bounds(day)
    appointments = db.query(Appointment.appointment_date).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date >= start_of_day,
        Appointment.appointment_date < next_day,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).all()
    return {(row.appointment_date.hour, row.appointment_date.minute) for row in appointments}


def generate_time_slots(day: date, start_time: str, end_time: str, slot_duration: int, booked_times=(), now=None):
    """
    Walk a day's window in slot_duration steps and keep the open, future slots.

    :param day: Calendar date being booked.
    :param start_time: Window start as 'HH:MM'.
    :param end_time: Window end as 'HH:MM'; a slot must finish by this time.
    :param slot_duration: Step and slot length in minutes.
    :param booked_times: (hour, minute) pairs already taken.
    :param now: Reference instant for the future-only filter.
    :return: Ascending list of 'HH:MM' start times.
    """
    now = now or clinic_now()
    start = parse_time_string(start_time)
    end = parse_time_string(end_time)
    if slot_duration <= 0 or end <= start:
        return []

    slots = []
    current = start
    while current + slot_duration <= end:
        hour, minute = divmod(current, 60)
        slot_datetime = datetime.combine(day, datetime.min.time()) + timedelta(minutes=current)
        if (hour, minute) not in booked_times and slot_datetime > now:
            slots.append(format_minutes(current))
        current += slot_duration
    return slots


def compute_available_slots(db: Session, doctor_id: int, day: date, now=None):
    """Return (slots, message); message explains an empty day and is None otherwise."""
    doctor = get_bookable_doctor(db, doctor_id)
    window = get_active_window(db, doctor.id, day)
    if not window:
        return [], "Doctor has no availability for this day"

    try:
        booked_times = get_booked_times(db, doctor.id, day)
        slots = generate_time_slots(day, window.start_time, window.end_time, window.slot_duration,
                                    booked_times, now=now)
    except ValueError as e:
        logging.error(f"Unusable availability window {window.id} for doctor {doctor.id}: {str(e)}")
        return [], "Doctor availability is misconfigured for this day"
    return slots, None


def get_editable_doctor(db: Session, doctor_id: int, current_user: User) -> Doctor:
    """Admins may manage any doctor; a doctor may manage only their own schedule."""
    doctor = db.query(Doctor).filter(
        Doctor.id == doctor_id,
        Doctor.is_active.is_(True),
        Doctor.deleted_at.is_(None),
    ).first()
    if not doctor:
        raise NotFound("Doctor not found or inactive")
    if not current_user.is_admin and doctor.user_id != current_user.id:
        raise Forbidden("You can only manage your own availability")
    return doctor


def list_weekly_schedule(db: Session, doctor_id: int):
    return db.query(AvailabilityWindow).filter(
        AvailabilityWindow.doctor_id == doctor_id
    ).order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.id).all()


def build_window(doctor_id: int, entry) -> AvailabilityWindow:
    return AvailabilityWindow(
        doctor_id=doctor_id,
        day_of_week=entry.day_of_week,
        start_time=entry.start_time,
        end_time=entry.end_time,
        slot_duration=entry.slot_duration,
        max_patients=entry.max_patients,
        is_active=entry.is_active,
    )


def replace_weekly_schedule(db: Session, doctor: Doctor, entries, current_user: User, request_info=None):
    """
    Swap a doctor's whole weekly schedule and write the audit row in one transaction.

    Any failure rolls everything back so the previous schedule stays in place.
    """
    request_info = request_info or {}
    try:
        db.query(AvailabilityWindow).filter(
            AvailabilityWindow.doctor_id == doctor.id
        ).delete(synchronize_session=False)

        new_windows = []
        for entry in entries:
            window = build_window(doctor.id, entry)
            db.add(window)
            new_windows.append(window)
        db.flush()

        db.add(AuditLog(
            action="UPDATE_AVAILABILITY",
            entity_type="DOCTOR_AVAILABILITY",
            entity_id=str(doctor.id),
            user_id=current_user.id,
            user_email=current_user.email,
            user_role=current_user.role,
            details={
                "doctorId": doctor.id,
                "slotsCount": len(new_windows),
                "activeDays": len({w.day_of_week for w in new_windows if w.is_active}),
            },
            success=True,
            **request_info,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    for window in new_windows:
        db.refresh(window)
    logging.info(f"Availability replaced for doctor {doctor.id} by {current_user.email}: {len(new_windows)} windows")
    return new_windows


def record_failed_schedule_update(db: Session, doctor_id: int, current_user: User, error: Exception, request_info=None):
    try:
        db.add(AuditLog(
            action="UPDATE_AVAILABILITY",
            entity_type="DOCTOR_AVAILABILITY",
            entity_id=str(doctor_id),
            user_id=current_user.id,
            user_email=current_user.email,
            user_role=current_user.role,
            success=False,
            error_message=str(error),
            **(request_info or {}),
        ))
        db.commit()
    except Exception as audit_error:
        db.rollback()
        logging.error(f"Failed to write audit log for doctor {doctor_id}: {str(audit_error)}")
