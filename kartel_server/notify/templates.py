"""HTML bodies for transactional email."""

from __future__ import annotations

from html import escape
from typing import Any

from ..records import display_name, parse_iso


def _layout(heading: str, body: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #2c3e50; color: white; padding: 24px; text-align: center;">
        <h1 style="margin: 0; font-size: 24px; text-transform: uppercase; letter-spacing: 2px;">The Kartel</h1>
        <p style="margin: 10px 0 0 0; opacity: 0.9;">{escape(heading)}</p>
      </div>
      <div style="padding: 30px; background: #f8f9fa; color: #2c3e50;">
        {body}
      </div>
      <div style="background: #2c3e50; color: #bdc3c7; padding: 15px; text-align: center; font-size: 12px;">
        <p style="margin: 0;">Where Business Meets the Track</p>
      </div>
    </div>
    """


def _button(url: str, label: str, colour: str = "#e74c3c") -> str:
    return (
        f'<a href="{escape(url, quote=True)}" style="background: {colour}; color: white; '
        f'padding: 14px 28px; text-decoration: none; border-radius: 6px; font-weight: bold; '
        f'display: inline-block; margin: 6px;">{escape(label)}</a>'
    )


def new_application(application: dict[str, Any], base_url: str) -> tuple[str, str]:
    """Admin notification for a new application, with quick-action links."""
    name = display_name(application)
    app_id = application["id"]
    approve_url = f"{base_url}/admin.html?action=approve&id={app_id}&token={application['approveToken']}"
    reject_url = f"{base_url}/admin.html?action=reject&id={app_id}&token={application['rejectToken']}"

    rows = "".join(
        f"<tr><td style='padding: 8px 0; font-weight: bold; width: 30%;'>{label}:</td>"
        f"<td style='padding: 8px 0;'>{escape(str(application.get(key) or fallback))}</td></tr>"
        for label, key, fallback in (
            ("Name", "name", name),
            ("Email", "email", ""),
            ("Phone", "phone", ""),
            ("Company", "company", "Not provided"),
            ("Industry", "industry", "Not provided"),
            ("Submitted", "submittedAt", ""),
            ("Message", "message", "No message provided"),
        )
    )
    body = f"""
        <h2>Quick Actions</h2>
        <div style="text-align: center; margin-bottom: 24px;">
          {_button(approve_url, "Approve Application", "#27ae60")}
          {_button(reject_url, "Reject Application")}
        </div>
        <h3>Application Details</h3>
        <table style="width: 100%; border-collapse: collapse;">{rows}</table>
        <div style="text-align: center; margin-top: 20px;">
          {_button(f"{base_url}/admin.html", "Open Admin Dashboard", "#3498db")}
        </div>
    """
    return f"New Kartel Application - {name}", _layout("New Membership Application", body)


def application_approved(application: dict[str, Any]) -> tuple[str, str]:
    name = escape(display_name(application))
    body = f"""
        <h2>Congratulations, {name}!</h2>
        <p>We're thrilled to welcome you to <strong>The Kartel</strong>.</p>
        <p>You'll receive an invitation to the members' group within 24 hours,
        along with access to upcoming karting events and networking sessions.</p>
    """
    return "Welcome to The Kartel - Application Approved!", _layout(
        "Your application has been approved", body
    )


def application_rejected(application: dict[str, Any]) -> tuple[str, str]:
    name = escape(display_name(application))
    body = f"""
        <h2>Dear {name},</h2>
        <p>Thank you for your interest in joining <strong>The Kartel</strong>.</p>
        <p>After careful consideration, we've decided not to move forward with your
        application at this time. You're welcome to reapply in the future.</p>
    """
    return "Thank you for your interest in The Kartel", _layout(
        "Thank you for your application", body
    )


def admin_invitation(first_name: str, setup_url: str, ttl_hours: int) -> tuple[str, str]:
    body = f"""
        <h2>Administrator Access Granted</h2>
        <p>Hello {escape(first_name)},</p>
        <p>You've been granted administrator access to The Kartel platform.
        Click below to create your admin password:</p>
        <div style="text-align: center; margin: 24px 0;">{_button(setup_url, "Set Up Admin Access")}</div>
        <p style="font-size: 14px;"><strong>Important:</strong> this link expires in {ttl_hours} hours.</p>
        <p style="font-size: 12px; word-break: break-all;">{escape(setup_url)}</p>
    """
    return "Welcome to The Kartel - Admin Access Setup", _layout("Exclusive Business Networking", body)


def login_link(member: dict[str, Any], login_url: str, ttl_minutes: int) -> tuple[str, str]:
    name = escape(str(member.get("firstName") or member.get("email") or ""))
    body = f"""
        <h2>Hello {name},</h2>
        <p>Click the button below to securely access your Kartel members area:</p>
        <div style="text-align: center; margin: 24px 0;">{_button(login_url, "Access Members Area")}</div>
        <ul style="font-size: 14px;">
          <li>This link expires in <strong>{ttl_minutes} minutes</strong></li>
          <li>It can only be used <strong>once</strong></li>
          <li>If you didn't request this, please ignore this email</li>
        </ul>
        <p style="font-size: 12px; word-break: break-all;">{escape(login_url)}</p>
    """
    return "Your Secure Kartel Login Link", _layout("Secure Members Area Access", body)


def password_reset(member: dict[str, Any], reset_url: str, ttl_minutes: int) -> tuple[str, str]:
    name = escape(str(member.get("firstName") or member.get("email") or ""))
    body = f"""
        <h2>Hello {name},</h2>
        <p>We received a request to reset your members area password.</p>
        <div style="text-align: center; margin: 24px 0;">{_button(reset_url, "Reset Password")}</div>
        <p style="font-size: 14px;">This link expires in {ttl_minutes} minutes and can only be used once.</p>
    """
    return "Reset your Kartel password", _layout("Password Reset", body)


def _event_date(value: Any) -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return str(value or "TBC")
    return parsed.strftime("%A %d %B %Y")


def event_announcement(
    member: dict[str, Any],
    event: dict[str, Any],
    venue: dict[str, Any] | None,
    register_url: str,
) -> tuple[str, str]:
    """New-event email to an approved member, with a sign-up link."""
    venue = venue or {}
    venue_name = venue.get("name") or event.get("venue") or ""
    venue_address = venue.get("address") or event.get("venueAddress") or ""
    details = [
        f"<p><strong>Date:</strong> {escape(_event_date(event.get('date')))}</p>",
        f"<p><strong>Time:</strong> {escape(str(event.get('time') or 'TBC'))}</p>",
        f"<p><strong>Venue:</strong> {escape(str(venue_name))}</p>",
    ]
    if venue_address:
        details.append(f'<p style="font-size: 14px;">{escape(str(venue_address))}</p>')
    if event.get("maxAttendees"):
        max_attendees = escape(str(event["maxAttendees"]))
        details.append(f'<p style="font-size: 14px;">Max attendees: {max_attendees}</p>')
    description = ""
    if event.get("description"):
        description = f"<p>{escape(str(event['description']))}</p>"
    booking = ""
    if venue.get("website"):
        booking = f"""
        <p style="font-size: 14px;"><strong>Don't forget:</strong> you also need to book
        your karting session directly with the venue.</p>
        <div style="text-align: center; margin: 16px 0;">{_button(str(venue["website"]), "Book with the Venue", "#f1c40f")}</div>
        """
    name = escape(str(member.get("firstName") or display_name(member)))
    body = f"""
        <h2>{escape(str(event.get('name') or 'New event'))}</h2>
        <p>Hello {name},</p>
        <div style="background: white; padding: 16px; border-radius: 8px;">{"".join(details)}</div>
        {description}
        <div style="text-align: center; margin: 24px 0;">{_button(register_url, "Register for Event", "#27ae60")}</div>
        {booking}
    """
    return f"New Kartel Event: {event.get('name') or ''}".strip(), _layout("New Event Announcement", body)
