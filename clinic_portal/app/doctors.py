import logging

from sqlalchemy.orm import Session

from .auth import get_password_hash, validate_password_strength
from .config import clinic_now
from .dependencies import UserRole
from .errors import NotFound, BusinessRuleViolation
from .models import Doctor, User, AuditLog


def list_active_doctors(db: Session):
    return db.query(Doctor).join(User, Doctor.user_id == User.id).filter(
        Doctor.is_active.is_(True),
        Doctor.deleted_at.is_(None),
    ).order_by(User.name).all()


def list_all_doctors(db: Session):
    return db.query(Doctor).filter(Doctor.deleted_at.is_(None)).order_by(Doctor.id).all()


def create_doctor(db: Session, name, email, password, specialization=None, consultation_fee=None, is_admin=False):
    validate_password_strength(password)
    email = email.lower()

    user = db.query(User).filter(User.email == email).first()
    if user and user.doctor and user.doctor.deleted_at is None:
        raise BusinessRuleViolation("Doctor already exists", details=f"{email} is already registered as a doctor.")

    if not user:
        user = User(email=email)
        db.add(user)
    user.name = name
    user.role = UserRole.ADMIN.value if is_admin else UserRole.DOCTOR.value
    user.hashed_password = get_password_hash(password)
    user.failed_attempts = 0
    user.locked_until = None
    db.flush()

    doctor = user.doctor
    if doctor is None:
        doctor = Doctor(user_id=user.id)
        db.add(doctor)
    # A previously deleted doctor is restored
    doctor.specialization = specialization
    doctor.consultation_fee = consultation_fee
    doctor.is_admin = is_admin
    doctor.is_active = True
    doctor.disabled_at = None
    doctor.deleted_at = None
    db.commit()
    db.refresh(doctor)
    logging.info(f"Doctor account ready for {email} (doctor {doctor.id}, admin={is_admin})")
    return doctor


def doctor_role(doctor: Doctor):
    return UserRole.ADMIN.value if doctor.is_admin else UserRole.DOCTOR.value


def get_doctor_for_admin(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise NotFound("Doctor not found")
    return doctor


def set_doctor_status(db: Session, doctor_id: int, is_active: bool, current_user):
    doctor = get_doctor_for_admin(db, doctor_id)
    if doctor.deleted_at is not None:
        raise NotFound("Doctor not found")
    if doctor.user_id == current_user.id:
        raise BusinessRuleViolation("Cannot disable your own account")

    doctor.is_active = is_active
    doctor.disabled_at = None if is_active else clinic_now()
    doctor.user.role = doctor_role(doctor) if is_active else UserRole.PATIENT.value
    db.add(AuditLog(
        action="ENABLE_DOCTOR" if is_active else "DISABLE_DOCTOR",
        entity_type="DOCTOR",
        entity_id=str(doctor.id),
        user_id=current_user.id,
        user_email=current_user.email,
        user_role=current_user.role,
    ))
    db.commit()
    db.refresh(doctor)
    return doctor


def soft_delete_doctor(db: Session, doctor_id: int, current_user):
    doctor = get_doctor_for_admin(db, doctor_id)
    if doctor.user_id == current_user.id:
        raise BusinessRuleViolation("Cannot delete your own account")
    if doctor.deleted_at is not None:
        raise BusinessRuleViolation("Doctor already deleted")

    now = clinic_now()
    doctor.deleted_at = now
    doctor.is_active = False
    doctor.disabled_at = doctor.disabled_at or now
    doctor.user.role = UserRole.PATIENT.value
    db.add(AuditLog(
        action="DELETE_DOCTOR",
        entity_type="DOCTOR",
        entity_id=str(doctor.id),
        user_id=current_user.id,
        user_email=current_user.email,
        user_role=current_user.role,
    ))
    db.commit()
    db.refresh(doctor)
    logging.info(f"Doctor {doctor.id} soft deleted by {current_user.email}")
    return doctor
