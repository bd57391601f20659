# auth.py
import logging
import re
import secrets
from inspect import iscoroutinefunction
from datetime import datetime, timedelta
from functools import wraps

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import (
    SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, MAGIC_LINK_EXPIRE_HOURS,
    ACCOUNT_MAX_FAILED_ATTEMPTS, ACCOUNT_LOCK_MINUTES, clinic_now,
)
from .dependencies import get_db, UserRole
from .errors import Unauthorized, Forbidden, ValidationFailure
from .models import User, Doctor, Patient, VerificationToken, AuditLog

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

PASSWORD_MIN_LENGTH = 8
SPECIAL_CHARACTERS = re.compile(r'[!@#$%^&*(),.?":{}|<>]')


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def validate_password_strength(password: str):
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain at least one number")
    if not SPECIAL_CHARACTERS.search(password):
        problems.append("Password must contain at least one special character")
    if problems:
        raise ValidationFailure("Password too weak", details=problems)


def identity_claims(user: User) -> dict:
    return {
        "sub": user.email,
        "role": user.effective_role,
        "isDoctor": user.is_doctor,
        "isAdmin": user.is_admin,
    }


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def issue_access_token(user: User):
    return {
        "access_token": create_access_token(identity_claims(user)),
        "token_type": "bearer",
    }


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise Unauthorized("Could not validate credentials")
    except JWTError as e:
        logging.warning(f"Rejected access token: {str(e)}")
        raise Unauthorized("Could not validate credentials")
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise Unauthorized("Could not validate credentials")
    return user


def role_required(required_roles):
    """Admit users whose role is listed; administrators are always admitted."""
    def allowed(user: User):
        return user.effective_role in required_roles or user.is_admin

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, current_user: User = Depends(get_current_user), **kwargs):
            if not allowed(current_user):
                raise Forbidden("User does not have the required role")
            return await func(*args, current_user=current_user, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, current_user: User = Depends(get_current_user), **kwargs):
            if not allowed(current_user):
                raise Forbidden("User does not have the required role")
            return func(*args, current_user=current_user, **kwargs)

        if iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_login_attempt(db: Session, email: str, user: User, success: bool, ip_address=None, user_agent=None,
                         error_message="Invalid credentials"):
    db.add(AuditLog(
        action="LOGIN",
        entity_type="USER",
        entity_id=str(user.id) if user else None,
        user_id=user.id if user else None,
        user_email=email,
        user_role=user.role if user else None,
        ip_address=ip_address,
        user_agent=user_agent,
        request_path="/token",
        request_method="POST",
        success=success,
        error_message=None if success else error_message,
    ))


def authenticate_doctor(db: Session, email: str, password: str, ip_address=None, user_agent=None):
    """Check doctor credentials, applying the per-account lockout.

    Returns the User on success and None on bad credentials; a locked account raises.
    """
    email = email.lower()
    now = clinic_now()
    user = (
        db.query(User)
        .join(Doctor, Doctor.user_id == User.id)
        .filter(User.email == email, Doctor.is_active.is_(True), Doctor.deleted_at.is_(None))
        .first()
    )
    if not user or not user.hashed_password:
        logging.warning(f"Login attempt for unknown doctor account: {email}")
        record_login_attempt(db, email, None, False, ip_address, user_agent)
        db.commit()
        return None

    if user.locked_until and user.locked_until > now:
        logging.warning(f"Login attempt for locked account: {email}")
        record_login_attempt(db, email, user, False, ip_address, user_agent, error_message="Account locked")
        db.commit()
        raise Unauthorized("Account temporarily locked", details="Too many failed attempts. Try again later.")

    if not verify_password(password, user.hashed_password):
        user.failed_attempts = (user.failed_attempts or 0) + 1
        if user.failed_attempts >= ACCOUNT_MAX_FAILED_ATTEMPTS:
            user.locked_until = now + timedelta(minutes=ACCOUNT_LOCK_MINUTES)
            logging.warning(f"Account locked after {user.failed_attempts} failed attempts: {email}")
        record_login_attempt(db, email, user, False, ip_address, user_agent)
        db.commit()
        return None

    user.failed_attempts = 0
    user.locked_until = None
    record_login_attempt(db, email, user, True, ip_address, user_agent)
    db.commit()
    return user


def is_registered_doctor(db: Session, email: str) -> bool:
    return db.query(Doctor).join(User, Doctor.user_id == User.id).filter(
        User.email == email.lower(),
        Doctor.is_active.is_(True),
        Doctor.deleted_at.is_(None),
    ).first() is not None


def generate_magic_token(db: Session, email: str) -> str:
    """Replace any outstanding link for this email with a fresh one."""
    email = email.lower()
    token = secrets.token_hex(32)
    db.query(VerificationToken).filter(VerificationToken.identifier == email).delete()
    db.add(VerificationToken(
        identifier=email,
        token=token,
        expires=clinic_now() + timedelta(hours=MAGIC_LINK_EXPIRE_HOURS),
    ))
    db.commit()
    return token


def consume_magic_token(db: Session, email: str, token: str) -> User:
    email = email.lower()
    verification = db.query(VerificationToken).filter(
        VerificationToken.identifier == email,
        VerificationToken.token == token,
        VerificationToken.expires > clinic_now(),
    ).first()
    if not verification:
        raise Unauthorized("Invalid or expired link")

    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, role=UserRole.PATIENT.value)
        db.add(user)
        db.flush()
    if not user.patient:
        db.add(Patient(user_id=user.id))

    db.delete(verification)
    db.commit()
    db.refresh(user)
    logging.info(f"Magic link sign-in for {email}")
    return user
