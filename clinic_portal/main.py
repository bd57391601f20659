import sys
import argparse
import getpass
import os
import time
import logging

import uvicorn
from fastapi import Request
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator
from alembic import command
from alembic.config import Config

from .app import create_app
from .app.config import DATABASE_URL
from .app.dependencies import engine, SessionLocal
from .app.doctors import create_doctor
from .app.errors import ClinicError
from .app.models import Base

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

app = create_app()

# Custom Prometheus metrics for specific routes
ROUTE_REQUEST_COUNT = Counter("route_request_count", "Total number of requests per route", ["method", "endpoint"])
ROUTE_REQUEST_LATENCY = Histogram("route_request_latency_seconds", "Request latency in seconds per route", ["method", "endpoint"])


# Middleware to track custom metrics
@app.middleware("http")
async def add_metrics(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    # Label by route template so ids in the path don't explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    ROUTE_REQUEST_COUNT.labels(method=request.method, endpoint=endpoint).inc()
    ROUTE_REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)

    return response


# Instrument the app with Prometheus metrics
Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "migrations")


def start_server():
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 8000)))


def create_tables():
    logging.info(f"Creating tables on {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(engine)
    print("Database tables created successfully.")


def run_migrations(action, revision=None, message=None):
    alembic_cfg = Config()
    alembic_cfg.set_main_option('sqlalchemy.url', DATABASE_URL)
    alembic_cfg.set_main_option('script_location', MIGRATIONS_DIR)

    if action == "upgrade":
        command.upgrade(alembic_cfg, revision or "head")
    elif action == "downgrade":
        if not revision:
            print("Please specify a revision to downgrade to.")
            return
        command.downgrade(alembic_cfg, revision)
    elif action == "revision":
        if not message:
            print("Please provide a message for the migration.")
            return
        command.revision(alembic_cfg, autogenerate=True, message=message)
    elif action == "current":
        command.current(alembic_cfg)
    else:
        print("Invalid action specified for migrations.")


def create_doctor_account(email, name, specialization=None, is_admin=False):
    password = os.getenv("DOCTOR_PASSWORD") or getpass.getpass("Password: ")
    db = SessionLocal()
    try:
        doctor = create_doctor(db, name, email, password, specialization=specialization, is_admin=is_admin)
        print(f"Doctor {doctor.id} ready for {email}.")
    except ClinicError as e:
        print(f"Could not create doctor: {e.detail} {e.details or ''}".strip())
        return 1
    finally:
        db.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Clinic Portal Application")
    parser.add_argument(
        '--mode',
        type=str,
        choices=['server', 'create-tables', 'migrate', 'create-doctor'],
        required=True,
        help="Mode to run the application in. Choices are 'server' to start the FastAPI server, 'create-tables' to create the database tables, 'migrate' to manage database migrations, or 'create-doctor' to create or restore a doctor login."
    )

    parser.add_argument(
        '--action',
        type=str,
        choices=['upgrade', 'downgrade', 'revision', 'current'],
        help="Action to perform with Alembic migrations. Required if mode is 'migrate'."
    )

    parser.add_argument(
        '--revision',
        type=str,
        help="Specify the revision for downgrade or other Alembic commands where needed."
    )

    parser.add_argument(
        '--message',
        type=str,
        help="Message to use with the 'revision' action in Alembic."
    )

    parser.add_argument('--email', type=str, help="Doctor email for 'create-doctor'.")
    parser.add_argument('--name', type=str, help="Doctor display name for 'create-doctor'.")
    parser.add_argument('--specialization', type=str, help="Doctor specialization for 'create-doctor'.")
    parser.add_argument('--admin', action='store_true', help="Give the new doctor administrator rights.")

    args = parser.parse_args()

    if args.mode == 'server':
        start_server()
    elif args.mode == 'create-tables':
        create_tables()
    elif args.mode == 'migrate':
        if not args.action:
            print("Please specify an action for the 'migrate' mode.")
        else:
            run_migrations(args.action, args.revision, args.message)
    elif args.mode == 'create-doctor':
        if not args.email or not args.name:
            print("Please provide --email and --name for the 'create-doctor' mode.")
            sys.exit(1)
        sys.exit(create_doctor_account(args.email, args.name, args.specialization, args.admin))


if __name__ == "__main__":
    main()
