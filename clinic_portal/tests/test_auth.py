from datetime import timedelta

import pytest

from clinic_portal.app import email_service
from clinic_portal.app.auth import authenticate_doctor, create_access_token, validate_password_strength
from clinic_portal.app.config import clinic_now
from clinic_portal.app.errors import Unauthorized, ValidationFailure
from clinic_portal.app.models import AuditLog, User, VerificationToken

from .conftest import DOCTOR_PASSWORD, auth_headers, make_doctor, make_patient


@pytest.fixture
def magic_links(monkeypatch):
    sent = {}

    def fake_send_magic_link_email(email, token):
        sent[email] = token
        return True

    monkeypatch.setattr(email_service, "send_magic_link_email", fake_send_magic_link_email)
    return sent


def test_doctor_password_login(client, db):
    doctor = make_doctor(db, with_password=True)

    response = client.post("/token", data={"username": "Doctor@Example.com", "password": DOCTOR_PASSWORD})
    assert response.status_code == 200, response.text
    token = response.json()
    assert token["token_type"] == "bearer"

    response = client.get("/doctors/me/availability",
                          headers={"Authorization": f"Bearer {token['access_token']}"})
    assert response.status_code == 200
    assert response.json()["doctorId"] == doctor.id

    audit = db.query(AuditLog).filter(AuditLog.action == "LOGIN").one()
    assert audit.success is True
    assert audit.user_email == "doctor@example.com"


def test_wrong_password_is_recorded(client, db):
    doctor = make_doctor(db, with_password=True)

    response = client.post("/token", data={"username": "doctor@example.com", "password": "nope"})
    assert response.status_code == 401
    assert response.json() == {"error": "Incorrect email or password"}

    db.expire_all()
    user = db.query(User).filter(User.id == doctor.user_id).one()
    assert user.failed_attempts == 1
    assert db.query(AuditLog).filter(AuditLog.success.is_(False)).count() == 1


def test_patients_cannot_use_password_login(client, db):
    make_patient(db)
    response = client.post("/token", data={"username": "patient@example.com", "password": DOCTOR_PASSWORD})
    assert response.status_code == 401


def test_account_locks_after_repeated_failures(db):
    doctor = make_doctor(db, with_password=True)

    for _ in range(5):
        assert authenticate_doctor(db, "doctor@example.com", "wrong-password") is None

    with pytest.raises(Unauthorized) as excinfo:
        authenticate_doctor(db, "doctor@example.com", DOCTOR_PASSWORD)
    assert excinfo.value.detail == "Account temporarily locked"
    locked_attempts = db.query(AuditLog).filter(AuditLog.action == "LOGIN", AuditLog.error_message == "Account locked")
    assert locked_attempts.count() == 1
    assert db.query(AuditLog).filter(AuditLog.success.is_(False)).count() == 6

    user = db.query(User).filter(User.id == doctor.user_id).one()
    user.locked_until = clinic_now() - timedelta(minutes=1)
    db.commit()

    assert authenticate_doctor(db, "doctor@example.com", DOCTOR_PASSWORD) is not None
    db.refresh(user)
    assert user.failed_attempts == 0
    assert user.locked_until is None


def test_magic_link_round_trip(client, db, magic_links):
    response = client.post("/auth/magic-link", json={"email": "new.patient@example.com"})
    assert response.status_code == 200, response.text
    token = magic_links["new.patient@example.com"]

    response = client.post("/auth/magic/verify", json={"email": "new.patient@example.com", "token": token})
    assert response.status_code == 200, response.text
    access_token = response.json()["access_token"]

    user = db.query(User).filter(User.email == "new.patient@example.com").one()
    assert user.patient is not None
    assert user.role == "PATIENT"

    response = client.get("/patient/family-members", headers={"Authorization": f"Bearer {access_token}"})
    assert response.status_code == 200

    response = client.post("/auth/magic/verify", json={"email": "new.patient@example.com", "token": token})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired link"


def test_new_magic_link_replaces_old_one(client, db, magic_links):
    client.post("/auth/magic-link", json={"email": "patient@example.com"})
    first = magic_links["patient@example.com"]
    client.post("/auth/magic-link", json={"email": "patient@example.com"})
    second = magic_links["patient@example.com"]

    assert first != second
    assert db.query(VerificationToken).count() == 1
    response = client.post("/auth/magic/verify", json={"email": "patient@example.com", "token": first})
    assert response.status_code == 401


def test_expired_magic_link(client, db):
    db.add(VerificationToken(identifier="patient@example.com", token="abc123",
                             expires=clinic_now() - timedelta(minutes=5)))
    db.commit()

    response = client.post("/auth/magic/verify", json={"email": "patient@example.com", "token": "abc123"})
    assert response.status_code == 401


def test_doctors_are_refused_magic_links(client, db, magic_links):
    make_doctor(db)
    response = client.post("/auth/magic-link", json={"email": "doctor@example.com"})
    assert response.status_code == 400
    assert response.json()["error"] == "Doctors must use password login"
    assert magic_links == {}


def test_magic_link_delivery_failure(client, db):
    # No SMTP host is configured for the test run
    response = client.post("/auth/magic-link", json={"email": "patient@example.com"})
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to send magic link email"}


def test_bad_tokens_are_rejected(client, db):
    patient = make_patient(db)

    response = client.get("/patient/family-members", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "Could not validate credentials"}
    assert response.headers["www-authenticate"] == "Bearer"

    ghost = create_access_token({"sub": "ghost@example.com"})
    response = client.get("/patient/family-members", headers={"Authorization": f"Bearer {ghost}"})
    assert response.status_code == 401

    expired = create_access_token({"sub": patient.user.email}, expires_delta=timedelta(minutes=-5))
    response = client.get("/patient/family-members", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401

    response = client.get("/patient/family-members", headers=auth_headers(patient.user))
    assert response.status_code == 200


@pytest.mark.parametrize("password, problem", [
    ("Sh0rt!", "at least 8 characters"),
    ("lowercase1!", "uppercase"),
    ("UPPERCASE1!", "lowercase"),
    ("NoDigits!!", "number"),
    ("NoSpecial123", "special character"),
])
def test_password_strength(password, problem):
    with pytest.raises(ValidationFailure) as excinfo:
        validate_password_strength(password)
    assert any(problem in detail for detail in excinfo.value.details)


def test_strong_password_passes():
    validate_password_strength(DOCTOR_PASSWORD)
