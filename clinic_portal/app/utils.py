import re
from datetime import date, datetime, timedelta

from .models import Appointment, AvailabilityWindow, Doctor, FamilyMember

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_string(time_str):
    """Parse an 'HH:MM' wall-clock string into minutes since midnight."""
    match = HHMM_PATTERN.match(time_str or "")
    if not match:
        raise ValueError(f"Invalid time '{time_str}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes):
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def day_bounds(day: date):
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def isoformat_or_none(value):
    return value.isoformat() if value else None


def serialize_window(window: AvailabilityWindow):
    return {
        "id": window.id,
        "doctorId": window.doctor_id,
        "dayOfWeek": window.day_of_week,
        "startTime": window.start_time,
        "endTime": window.end_time,
        "slotDuration": window.slot_duration,
        "maxPatients": window.max_patients,
        "isActive": window.is_active,
    }


def serialize_doctor(doctor: Doctor, include_private_info: bool = False):
    serialized = {
        "id": doctor.id,
        "name": doctor.user.name,
        "specialization": doctor.specialization,
        "consultationFee": float(doctor.consultation_fee) if doctor.consultation_fee is not None else None,
        "isActive": doctor.is_active,
    }
    if include_private_info:
        serialized.update({
            "email": doctor.user.email,
            "isAdmin": doctor.is_admin,
            "disabledAt": isoformat_or_none(doctor.disabled_at),
            "deletedAt": isoformat_or_none(doctor.deleted_at),
        })
    return serialized


def serialize_family_member(member: FamilyMember):
    if member is None:
        return None
    return {
        "id": member.id,
        "name": member.name,
        "relationship": member.relationship_type,
        "email": member.email,
        "phone": member.phone,
    }


def serialize_patient(patient):
    if patient is None:
        return None
    return {
        "id": patient.id,
        "name": patient.user.name,
        "email": patient.user.email,
    }


def serialize_appointment(appointment: Appointment, include_related: bool = False):
    serialized = {
        "id": appointment.id,
        "doctorId": appointment.doctor_id,
        "patientId": appointment.patient_id,
        "appointmentDate": appointment.appointment_date.isoformat(),
        "appointmentType": appointment.appointment_type,
        "serviceType": appointment.service_type,
        "status": appointment.status,
        "symptoms": appointment.symptoms,
        "previousTreatment": appointment.previous_treatment,
        "duration": appointment.duration,
        "bookedByUserId": appointment.booked_by_user_id,
        "bookedByPatientId": appointment.booked_by_patient_id,
        "familyMemberId": appointment.family_member_id,
        "originalPatientName": appointment.original_patient_name,
        "originalPatientEmail": appointment.original_patient_email,
        "originalPatientPhone": appointment.original_patient_phone,
        "requiresMerge": appointment.requires_merge,
        "mergeNotes": appointment.merge_notes,
        "mergeResolvedAt": isoformat_or_none(appointment.merge_resolved_at),
        "mergedToPatientId": appointment.merged_to_patient_id,
        "mergedToFamilyMemberId": appointment.merged_to_family_member_id,
        "createdAt": isoformat_or_none(appointment.created_at),
        "updatedAt": isoformat_or_none(appointment.updated_at),
        "confirmedAt": isoformat_or_none(appointment.confirmed_at),
        "completedAt": isoformat_or_none(appointment.completed_at),
        "cancelledAt": isoformat_or_none(appointment.cancelled_at),
    }
    if include_related:
        serialized.update({
            "doctor": serialize_doctor(appointment.doctor) if appointment.doctor else None,
            "patient": serialize_patient(appointment.patient),
            "bookedByPatient": serialize_patient(appointment.booked_by_patient),
            "familyMember": serialize_family_member(appointment.family_member),
        })
    return serialized
