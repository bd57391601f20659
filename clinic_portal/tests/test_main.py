import sys

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from clinic_portal import main
from clinic_portal.main import app
from clinic_portal.app.models import Doctor, User

from .conftest import DOCTOR_PASSWORD


def test_metrics_endpoint(client, db):
    client.get("/doctors/active")
    response = client.get("/metrics")
    assert response.status_code == 200
    samples = [
        sample for family in text_string_to_metric_families(response.text) for sample in family.samples
        if sample.name == "route_request_count_total"
    ]
    assert any(s.labels == {"method": "GET", "endpoint": "/doctors/active"} and s.value >= 1 for s in samples)


def test_unknown_route_uses_error_body(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_create_doctor_command(db, monkeypatch, capsys):
    monkeypatch.setenv("DOCTOR_PASSWORD", DOCTOR_PASSWORD)
    monkeypatch.setattr(sys, "argv", ["clinic-portal", "--mode", "create-doctor", "--email", "Lead@Example.com",
                                      "--name", "Dr. Lead", "--admin"])

    with pytest.raises(SystemExit) as excinfo:
        main.main()
    assert excinfo.value.code == 0

    user = db.query(User).filter(User.email == "lead@example.com").one()
    assert user.role == "ADMIN"
    assert db.query(Doctor).filter(Doctor.user_id == user.id).one().is_admin is True
    assert "ready for Lead@Example.com" in capsys.readouterr().out


def test_create_doctor_command_weak_password(db, monkeypatch, capsys):
    monkeypatch.setenv("DOCTOR_PASSWORD", "weak")
    assert main.create_doctor_account("weak@example.com", "Dr. Weak") == 1
    assert "Password too weak" in capsys.readouterr().out


def test_create_doctor_command_needs_email(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["clinic-portal", "--mode", "create-doctor"])
    with pytest.raises(SystemExit) as excinfo:
        main.main()
    assert excinfo.value.code == 1


def test_create_tables_command(db, capsys):
    main.create_tables()
    assert "Database tables created successfully." in capsys.readouterr().out


def test_unexpected_error_is_hidden(db, monkeypatch):
    def broken(db):
        raise RuntimeError("connection reset by peer")

    monkeypatch.setattr("clinic_portal.app.routes.list_active_doctors", broken)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/doctors/active")
    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
