import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import quote

from .config import (
    EMAIL_SERVER_HOST, EMAIL_SERVER_PORT, EMAIL_SERVER_USER, EMAIL_SERVER_PASSWORD, EMAIL_FROM, PORTAL_URL,
)


def send_email(to: str, subject: str, html_content: str) -> bool:
    """Deliver one HTML message over SMTP. Returns False instead of raising on delivery failure."""
    if not EMAIL_SERVER_HOST:
        logging.error(f"Email not sent to {to}: EMAIL_SERVER_HOST is not configured")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM
    msg["To"] = to
    msg.attach(MIMEText(html_content, "html"))

    try:
        if EMAIL_SERVER_PORT == 465:
            server = smtplib.SMTP_SSL(EMAIL_SERVER_HOST, EMAIL_SERVER_PORT,
                                      context=ssl.create_default_context(), timeout=30)
        else:
            server = smtplib.SMTP(EMAIL_SERVER_HOST, EMAIL_SERVER_PORT, timeout=30)
            server.starttls(context=ssl.create_default_context())
        with server:
            if EMAIL_SERVER_USER:
                server.login(EMAIL_SERVER_USER, EMAIL_SERVER_PASSWORD)
            server.sendmail(EMAIL_FROM.split("<")[-1].rstrip(">"), [to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logging.error(f"Failed to send email to {to}: {str(e)}")
        return False

    logging.info(f"Email sent to {to}: {subject}")
    return True


def send_magic_link_email(email: str, token: str) -> bool:
    magic_link = f"{PORTAL_URL}/auth/magic?token={token}&email={quote(email)}"
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2>Your Magic Link</h2>
          <p>Click the link below to sign in to your patient portal:</p>
          <a href="{magic_link}">Sign In to Patient Portal</a>
          <p style="margin-top: 20px; color: #666; font-size: 14px;">
            This link will expire in 24 hours. If you didn't request this, please ignore this email.
          </p>
        </div>
    """
    return send_email(email, "Your Magic Link for Patient Portal", html)


def send_appointment_confirmation_email(appointment, recipient: str, patient_name: str) -> bool:
    when = appointment.appointment_date.strftime("%A, %d %B %Y at %H:%M")
    kind = "Online consultation" if appointment.appointment_type == "ONLINE" else "In-person visit"
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2>Appointment booked</h2>
          <p>Hello {patient_name or 'there'},</p>
          <p>Your appointment is scheduled for <strong>{when}</strong>.</p>
          <p>{kind} &middot; {appointment.service_type.replace('_', ' ').title()}</p>
          <p>You can review or cancel it from the patient portal: {PORTAL_URL}/portal/appointments</p>
        </div>
    """
    return send_email(recipient, "Your appointment is booked", html)
