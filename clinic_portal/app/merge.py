import logging

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, joinedload

from .config import clinic_now
from .errors import NotFound, Forbidden, BusinessRuleViolation
from .models import Appointment, FamilyMember, Patient, User, AuditLog
from .schemas import MergeResolutionType
from .utils import serialize_appointment


def pending_merge_filter(patient: Patient, email: str):
    """
    Appointments awaiting merge review for this patient: booked by them, made for one of
    their family members, or made under their email address.

    The list and the badge count share this predicate, so both exclude resolved rows.
    """
    return and_(
        Appointment.requires_merge.is_(True),
        Appointment.merge_resolved_at.is_(None),
        or_(
            Appointment.booked_by_patient_id == patient.id,
            Appointment.family_member_id.in_(
                select(FamilyMember.id).where(FamilyMember.patient_id == patient.id)
            ),
            func.lower(Appointment.original_patient_email) == email.lower(),
        ),
    )


def find_patient(db: Session, user: User):
    return db.query(Patient).filter(Patient.user_id == user.id).first()


def list_merge_appointments(db: Session, current_user: User):
    patient = find_patient(db, current_user)
    if not patient:
        return []
    return db.query(Appointment).options(
        joinedload(Appointment.patient).joinedload(Patient.user),
        joinedload(Appointment.family_member),
        joinedload(Appointment.booked_by_patient).joinedload(Patient.user),
        joinedload(Appointment.doctor),
    ).filter(
        pending_merge_filter(patient, current_user.email)
    ).order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()


def count_merge_appointments(db: Session, current_user: User) -> int:
    patient = find_patient(db, current_user)
    if not patient:
        return 0
    return db.query(func.count(Appointment.id)).filter(
        pending_merge_filter(patient, current_user.email)
    ).scalar()


def can_resolve(appointment: Appointment, patient: Patient, email: str) -> bool:
    return (
        appointment.booked_by_patient_id == patient.id
        or (appointment.family_member is not None and appointment.family_member.patient_id == patient.id)
        or (appointment.original_patient_email or "").lower() == email.lower()
    )


def resolve_merge(db: Session, appointment_id: int, resolution, current_user: User, request_info=None):
    """Attach a flagged appointment to the right person and close the merge review."""
    patient = find_patient(db, current_user)
    if not patient:
        raise NotFound("Patient not found")

    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFound("Appointment not found")
    if not can_resolve(appointment, patient, current_user.email):
        raise Forbidden("You do not have permission to resolve this merge")
    if not appointment.requires_merge or appointment.merge_resolved_at is not None:
        raise BusinessRuleViolation("Merge already resolved",
                                    details="This appointment does not require a merge.")

    old_data = serialize_appointment(appointment)
    merged_to_patient_id = None
    merged_to_family_member_id = None

    try:
        if resolution.resolution_type == MergeResolutionType.SELF:
            merged_to_patient_id = patient.id
            notes = f"Merged to logged-in user: {current_user.email}"

        elif resolution.resolution_type == MergeResolutionType.FAMILY:
            member = db.query(FamilyMember).filter(
                FamilyMember.id == resolution.family_member_id,
                FamilyMember.patient_id == patient.id,
                FamilyMember.is_active.is_(True),
            ).first()
            if not member:
                raise NotFound("Family member not found or not active")
            merged_to_patient_id = patient.id
            merged_to_family_member_id = member.id
            notes = f"Merged to family member: {member.name}"

            updated = False
            for field in ("name", "email", "phone"):
                original = getattr(appointment, f"original_patient_{field}")
                if original and original != getattr(member, field):
                    setattr(member, field, original)
                    updated = True
            if updated:
                notes += " (Updated information)"

        else:
            notes = "Kept as separate patient record"

        appointment.requires_merge = False
        appointment.merge_resolved_at = clinic_now()
        appointment.merged_to_patient_id = merged_to_patient_id
        appointment.merged_to_family_member_id = merged_to_family_member_id
        appointment.merge_notes = (
            f"{appointment.merge_notes} | RESOLVED: {notes}" if appointment.merge_notes else f"RESOLVED: {notes}"
        )
        db.flush()

        db.add(AuditLog(
            action="MERGE_RESOLUTION",
            entity_type="APPOINTMENT",
            entity_id=str(appointment.id),
            user_id=current_user.id,
            user_email=current_user.email,
            user_role=current_user.role,
            details={
                "resolutionType": resolution.resolution_type.value,
                "familyMemberId": resolution.family_member_id,
                "mergeResolutionNotes": notes,
                "oldData": old_data,
                "newData": serialize_appointment(appointment),
            },
            success=True,
            **(request_info or {}),
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appointment)
    logging.info(f"Merge resolved for appointment {appointment.id} as {resolution.resolution_type.value}")
    return appointment
