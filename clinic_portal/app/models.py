# models.py
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Boolean, Text, JSON, Numeric
from sqlalchemy.orm import declarative_base, relationship

from .config import clinic_now
from .dependencies import UserRole

Base = declarative_base()


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AppointmentType(str, Enum):
    IN_PERSON = "IN_PERSON"
    ONLINE = "ONLINE"


class ServiceType(str, Enum):
    GENERAL_CONSULTATION = "GENERAL_CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    ACUTE_TREATMENT = "ACUTE_TREATMENT"
    CHRONIC_TREATMENT = "CHRONIC_TREATMENT"
    CHILD_CARE = "CHILD_CARE"
    WOMENS_HEALTH = "WOMENS_HEALTH"
    SKIN_TREATMENT = "SKIN_TREATMENT"
    ALLERGY_TREATMENT = "ALLERGY_TREATMENT"


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.PATIENT.value)
    hashed_password = Column(String, nullable=True)  # only doctors sign in with a password
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=clinic_now)

    doctor = relationship("Doctor", back_populates="user", uselist=False)
    patient = relationship("Patient", back_populates="user", uselist=False)

    @property
    def is_doctor(self):
        """Doctor privileges last only while the doctor record is active and not deleted."""
        return self.doctor is not None and self.doctor.is_active and self.doctor.deleted_at is None

    @property
    def is_admin(self):
        return self.is_doctor and (self.role == UserRole.ADMIN.value or bool(self.doctor.is_admin))

    @property
    def effective_role(self):
        if self.is_admin:
            return UserRole.ADMIN.value
        if self.is_doctor:
            return UserRole.DOCTOR.value
        return UserRole.PATIENT.value


class Doctor(Base):
    __tablename__ = 'doctors'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True)
    specialization = Column(String, nullable=True)
    consultation_fee = Column(Numeric(10, 2), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    disabled_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)  # soft delete; queries must filter on it explicitly
    created_at = Column(DateTime, nullable=False, default=clinic_now)

    user = relationship("User", back_populates="doctor")
    availabilities = relationship("AvailabilityWindow", back_populates="doctor", order_by="AvailabilityWindow.day_of_week")
    appointments = relationship("Appointment", back_populates="doctor")


class AvailabilityWindow(Base):
    __tablename__ = 'doctor_availability'
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(String(5), nullable=False)  # 'HH:MM'
    end_time = Column(String(5), nullable=False)
    slot_duration = Column(Integer, nullable=False, default=30)  # minutes
    max_patients = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)

    doctor = relationship("Doctor", back_populates="availabilities")

    __table_args__ = (
        Index('idx_availability_doctor_day', 'doctor_id', 'day_of_week'),
    )


class Patient(Base):
    __tablename__ = 'patients'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=clinic_now)

    user = relationship("User", back_populates="patient")
    family_members = relationship("FamilyMember", back_populates="patient")


class FamilyMember(Base):
    __tablename__ = 'family_members'
    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)
    name = Column(String, nullable=False)
    relationship_type = Column('relationship', String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=clinic_now)

    patient = relationship("Patient", back_populates="family_members")


class Appointment(Base):
    __tablename__ = 'appointments'
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)  # the person being seen
    booked_by_user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    booked_by_patient_id = Column(Integer, ForeignKey('patients.id'), nullable=True)
    family_member_id = Column(Integer, ForeignKey('family_members.id'), nullable=True)

    appointment_date = Column(DateTime, nullable=False)
    appointment_type = Column(String, nullable=False)
    service_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    symptoms = Column(Text, nullable=False)
    previous_treatment = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False, default=30)

    # Identity used at booking time, kept for merge review
    original_patient_name = Column(String, nullable=True)
    original_patient_email = Column(String, nullable=True)
    original_patient_phone = Column(String, nullable=True)
    requires_merge = Column(Boolean, nullable=False, default=False)
    merge_notes = Column(Text, nullable=True)
    merge_resolved_at = Column(DateTime, nullable=True)
    merged_to_patient_id = Column(Integer, ForeignKey('patients.id'), nullable=True)
    merged_to_family_member_id = Column(Integer, ForeignKey('family_members.id'), nullable=True)

    created_at = Column(DateTime, nullable=False, default=clinic_now)
    updated_at = Column(DateTime, nullable=False, default=clinic_now, onupdate=clinic_now)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    doctor = relationship("Doctor", back_populates="appointments")
    patient = relationship("Patient", foreign_keys=[patient_id])
    booked_by_patient = relationship("Patient", foreign_keys=[booked_by_patient_id])
    family_member = relationship("FamilyMember", foreign_keys=[family_member_id])
    merged_to_patient = relationship("Patient", foreign_keys=[merged_to_patient_id])
    merged_to_family_member = relationship("FamilyMember", foreign_keys=[merged_to_family_member_id])

    __table_args__ = (
        Index('idx_appointment_doctor_date', 'doctor_id', 'appointment_date'),
    )


class AuditLog(Base):
    __tablename__ = 'audit_logs'
    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    user_email = Column(String, nullable=True)
    user_role = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_path = Column(String, nullable=True)
    request_method = Column(String, nullable=True)
    details = Column('metadata', JSON, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=clinic_now)


class VerificationToken(Base):
    __tablename__ = 'verification_tokens'
    id = Column(Integer, primary_key=True, index=True)
    identifier = Column(String, nullable=False, index=True)  # email the link was sent to
    token = Column(String, nullable=False, unique=True)
    expires = Column(DateTime, nullable=False)
