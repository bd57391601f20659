import os
import tempfile
from datetime import datetime, timedelta

import pytest

# Point the app at a throwaway sqlite file before any clinic_portal module reads its config
_db_dir = tempfile.mkdtemp(prefix="clinic-portal-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'clinic.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["LOGIN_RATE_LIMIT_BACKEND"] = "memory"
os.environ.pop("EMAIL_SERVER_HOST", None)

from fastapi.testclient import TestClient  # noqa: E402

from clinic_portal.main import app  # noqa: E402
from clinic_portal.app.auth import create_access_token, identity_claims, get_password_hash  # noqa: E402
from clinic_portal.app.config import clinic_now  # noqa: E402
from clinic_portal.app.dependencies import engine, SessionLocal, UserRole  # noqa: E402
from clinic_portal.app.models import (  # noqa: E402
    Base, User, Doctor, Patient, FamilyMember, AvailabilityWindow, Appointment, AppointmentStatus,
)
from clinic_portal.app.rate_limiter import login_throttle  # noqa: E402
from clinic_portal.app.utils import day_of_week  # noqa: E402

DOCTOR_PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    login_throttle.reset()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def auth_headers(user):
    token = create_access_token(identity_claims(user))
    return {"Authorization": f"Bearer {token}"}


def upcoming_day(dow, min_days_ahead=2):
    """Next date falling on `dow` (0 = Sunday) at least `min_days_ahead` days from today."""
    today = clinic_now().date()
    days_ahead = (dow - day_of_week(today)) % 7
    while days_ahead < min_days_ahead:
        days_ahead += 7
    return today + timedelta(days=days_ahead)


def at(day, hhmm):
    hour, minute = map(int, hhmm.split(":"))
    return datetime.combine(day, datetime.min.time()).replace(hour=hour, minute=minute)


def make_doctor(db, email="doctor@example.com", name="Dr. Asha Rao", is_admin=False, is_active=True,
                with_password=False, specialization="General Medicine"):
    user = User(
        email=email,
        name=name,
        role=UserRole.ADMIN.value if is_admin else UserRole.DOCTOR.value,
        hashed_password=get_password_hash(DOCTOR_PASSWORD) if with_password else None,
    )
    db.add(user)
    db.flush()
    doctor = Doctor(user_id=user.id, specialization=specialization, is_admin=is_admin, is_active=is_active)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def make_patient(db, email="patient@example.com", name="Meera Iyer", phone="9876543210"):
    user = User(email=email, name=name, phone=phone, role=UserRole.PATIENT.value)
    db.add(user)
    db.flush()
    patient = Patient(user_id=user.id)
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def make_family_member(db, patient, name="Ravi Iyer", relationship="Father", email=None):
    member = FamilyMember(patient_id=patient.id, name=name, relationship_type=relationship, email=email)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def add_window(db, doctor, dow=1, start="09:00", end="17:00", slot_duration=30, is_active=True):
    window = AvailabilityWindow(doctor_id=doctor.id, day_of_week=dow, start_time=start, end_time=end,
                                slot_duration=slot_duration, is_active=is_active)
    db.add(window)
    db.commit()
    db.refresh(window)
    return window


def make_appointment(db, doctor, patient, when, status=AppointmentStatus.SCHEDULED.value, **fields):
    appointment = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        booked_by_patient_id=fields.pop("booked_by_patient_id", patient.id),
        booked_by_user_id=fields.pop("booked_by_user_id", patient.user_id),
        appointment_date=when,
        appointment_type="IN_PERSON",
        service_type="GENERAL_CONSULTATION",
        status=status,
        symptoms="Persistent cough",
        **fields,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def booking_payload(doctor_id, when, **overrides):
    payload = {
        "doctorId": doctor_id,
        "appointmentType": "IN_PERSON",
        "serviceType": "GENERAL_CONSULTATION",
        "appointmentDate": when.isoformat(),
        "bookingFor": "MYSELF",
        "symptoms": "Fever and sore throat for two days",
        "agreeToTerms": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def no_emails(monkeypatch):
    """Capture outgoing mail instead of talking to SMTP."""
    sent = []

    def fake_send(to, subject, html_content):
        sent.append({"to": to, "subject": subject, "html": html_content})
        return True

    monkeypatch.setattr("clinic_portal.app.email_service.send_email", fake_send)
    return sent
