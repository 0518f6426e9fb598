"""
API routes for the Kartel backend.

Public routes cover application intake and sign-in. Admin routes require
the ``admin`` or ``super-admin`` role, member routes any signed-in role.
Success bodies carry ``success: true``; non-fatal fan-out failures are
listed under ``warnings``.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..auth import Principal
from ..backend import Backend
from ..errors import (
    NotFoundError,
    TokenAlreadyUsedError,
    TokenError,
    TokenExpiredError,
    UnauthorizedError,
)
from ..list_index import WriteResult
from ..records import COLLECTIONS
from .deps import get_backend, get_settings, require_admin, require_member
from .settings import ApiSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Kartel"])


def ok(result: WriteResult[Any] | None = None, **fields: Any) -> dict[str, Any]:
    """Build a success body, attaching fan-out warnings when present."""
    body: dict[str, Any] = {"success": True, **fields}
    if result is not None and result.warnings:
        body["warnings"] = list(result.warnings)
    return body


# --- Request Models ---


class CamelModel(BaseModel):
    """Request body with camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitApplicationRequest(CamelModel):
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    industry: str | None = None
    message: str | None = None


class QuickActionRequest(CamelModel):
    application_id: str | None = None
    action: str | None = None
    action_token: str | None = None


class ReviewRequest(CamelModel):
    status: str | None = None
    notes: str | None = None
    send_email: bool = False


class ApplicantDetailsRequest(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    company: str | None = None
    position: str | None = None
    phone: str | None = None
    status: str | None = None


class AdminInvitationRequest(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class EmailRequest(CamelModel):
    email: str | None = None


class TokenRequest(CamelModel):
    token: str | None = None


class CredentialsRequest(CamelModel):
    email: str | None = Field(None, description="Email (admins may send it as username)")
    username: str | None = None
    password: str | None = None

    @property
    def login(self) -> str | None:
        return self.email or self.username


class SetupPasswordRequest(CamelModel):
    token: str | None = None
    password: str | None = None


class PasswordRequest(CamelModel):
    password: str | None = None


class PasswordResetRequest(CamelModel):
    token: str | None = None
    email: str | None = None
    new_password: str | None = None


class ProfileRequest(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    position: str | None = None
    phone: str | None = None


class ImportMembersRequest(CamelModel):
    csv_data: Any = Field(None, description="CSV text with a header row, or parsed rows")


class EventRequest(CamelModel):
    name: str | None = None
    description: str | None = None
    date: str | None = None
    time: str | None = None
    venue: str | None = None
    venue_id: str | None = None
    venue_address: str | None = None
    max_attendees: int | None = None


class SignUpRequest(CamelModel):
    member_id: str | None = None
    member_name: str | None = None
    member_email: str | None = None
    member_company: str | None = None


class VenueRequest(CamelModel):
    name: str | None = None
    address: str | None = None
    phone: str | None = None
    website: str | None = None
    notes: str | None = None


class FaqRequest(CamelModel):
    id: str | None = None
    question: str | None = None
    answer: str | None = None
    order: int | None = None


class GalleryRequest(CamelModel):
    photos: Any = None


class SubscribeRequest(CamelModel):
    subscription: dict[str, Any] | None = None
    user_type: str | None = None
    user_id: str | None = None


class BroadcastRequest(CamelModel):
    title: str | None = None
    body: str | None = None
    user_type: str = "all"
    data: dict[str, Any] | None = None
    require_interaction: bool = True


def _fields(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True)


# --- Applications (public) ---


@router.post("/applications")
async def submit_application(
    request: SubmitApplicationRequest,
    backend: Backend = Depends(get_backend),
):
    """Submit a membership application."""
    result = await backend.applications.submit(_fields(request))
    return ok(
        result,
        message="Application submitted successfully",
        applicationId=result.value["id"],
    )


@router.post("/applications/quick-action")
async def quick_action(
    request: QuickActionRequest,
    backend: Backend = Depends(get_backend),
):
    """Approve or reject from the link in the admin notification email."""
    result = await backend.applications.quick_action(
        request.application_id or "", request.action or "", request.action_token or ""
    )
    return ok(
        result,
        message=f"Application {result.value['status']} successfully",
        status=result.value["status"],
    )


# --- Applications (admin) ---


@router.get("/applications")
async def list_applications(
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    applications = await backend.applications.list_applications()
    return ok(applications=applications, total=len(applications))


@router.post("/applications/recover")
async def recover_applications(
    dry_run: bool = Query(False, alias="dryRun"),
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    """Rebuild the applications list from individual records."""
    summary = await backend.applications.recover_applications(dry_run=dry_run)
    return ok(
        message=f"Successfully recovered {summary.recovered} member records",
        **summary.to_dict(),
    )


@router.post("/applications/import")
async def import_members(
    request: ImportMembersRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    """Bulk-create approved members from CSV rows."""
    result = await backend.applications.import_members(request.csv_data)
    return ok(result, message="CSV import completed", results=result.value.to_dict())


@router.get("/applications/{application_id}")
async def get_application(
    application_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    return ok(application=await backend.applications.get_application(application_id))


@router.post("/applications/{application_id}/review")
async def review_application(
    application_id: str,
    request: ReviewRequest,
    principal: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.applications.review(
        application_id,
        request.status or "",
        reviewer="Admin",
        notes=request.notes,
        notify=request.send_email,
    )
    logger.info(f"Application {application_id} reviewed by {principal.subject}")
    return ok(result, message="Application updated successfully", application=result.value)


@router.put("/applications/{application_id}")
async def update_applicant_details(
    application_id: str,
    request: ApplicantDetailsRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.applications.update_details(application_id, _fields(request))
    return ok(result, message="Applicant details updated successfully", application=result.value)


@router.delete("/applications/{application_id}")
async def delete_application(
    application_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.applications.delete_application(application_id)
    return ok(result, message="Application deleted successfully")


@router.post("/applications/{application_id}/admin-invitation")
async def send_admin_invitation(
    application_id: str,
    request: AdminInvitationRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    issued = await backend.applications.send_admin_invitation(
        application_id, request.first_name or "", request.last_name or "", request.email or ""
    )
    return ok(message="Admin invitation sent successfully", expiresAt=issued.expires_at)


@router.post("/admins/super")
async def promote_to_super_admin(
    request: EmailRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.applications.promote_to_super_admin(request.email or "")
    return ok(
        result,
        message=f"{result.value.get('email')} promoted to super admin",
        applicationId=result.value["id"],
    )


@router.post("/collections/{collection}/rebuild")
async def rebuild_collection(
    collection: str,
    dry_run: bool = Query(False, alias="dryRun"),
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    """Rebuild any collection's list blob from its individual records."""
    spec = COLLECTIONS.get(collection)
    if spec is None:
        raise NotFoundError(f"Unknown collection: {collection}", "collection", collection)
    summary = await backend.index.rebuild(spec, dry_run=dry_run)
    return ok(**summary.to_dict())


# --- Authentication (public) ---


@router.post("/auth/login-link")
async def request_login_link(
    request: EmailRequest,
    backend: Backend = Depends(get_backend),
):
    result = await backend.members.request_login_link(request.email or "")
    return ok(message=result.value)


_LOGIN_LINK_ERRORS: dict[type[TokenError], str] = {
    TokenExpiredError: "Login link has expired",
    TokenAlreadyUsedError: "Login link has already been used",
}


@router.post("/auth/verify-login-token")
async def verify_login_token(
    request: TokenRequest,
    backend: Backend = Depends(get_backend),
):
    """Exchange a magic-link token for a session. Token failures are 401 here."""
    try:
        session = await backend.members.verify_login_token(request.token or "")
    except TokenError as e:
        raise UnauthorizedError(_LOGIN_LINK_ERRORS.get(type(e), "Invalid or expired login link"))
    return ok(message="Login successful", **session.to_dict())


@router.post("/auth/member-login")
async def member_login(
    request: CredentialsRequest,
    backend: Backend = Depends(get_backend),
):
    session = await backend.members.member_login(request.login or "", request.password or "")
    return ok(message="Login successful", **session.to_dict())


@router.post("/auth/admin-login")
async def admin_login(
    request: CredentialsRequest,
    backend: Backend = Depends(get_backend),
):
    session = await backend.members.admin_login(request.login or "", request.password or "")
    return ok(message="Login successful", **session.to_dict())


@router.get("/auth/setup-token")
async def validate_setup_token(
    token: str = Query(""),
    backend: Backend = Depends(get_backend),
):
    user = await backend.applications.validate_setup_token(token)
    return ok(valid=True, user=user)


@router.post("/auth/setup-admin-password")
async def setup_admin_password(
    request: SetupPasswordRequest,
    backend: Backend = Depends(get_backend),
):
    await backend.applications.grant_admin_credentials(request.token or "", request.password or "")
    return ok(message="Admin password set successfully", redirectUrl="/admin.html")


@router.post("/auth/password-reset/request")
async def request_password_reset(
    request: EmailRequest,
    backend: Backend = Depends(get_backend),
):
    result = await backend.members.request_password_reset(request.email or "")
    return ok(message=result.value)


@router.post("/auth/password-reset/complete")
async def complete_password_reset(
    request: PasswordResetRequest,
    backend: Backend = Depends(get_backend),
):
    await backend.members.reset_password(
        request.token or "", request.email or "", request.new_password or ""
    )
    return ok(message="Password reset successfully. You can now log in with your new password.")


# --- Members ---


@router.post("/members/me/password")
async def set_member_password(
    request: PasswordRequest,
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    result = await backend.members.set_member_password(principal.subject, request.password or "")
    return ok(result, message="Password set successfully. You can now use password login.")


@router.put("/members/me/profile")
async def update_member_profile(
    request: ProfileRequest,
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    result = await backend.members.update_profile(principal.subject, _fields(request))
    return ok(result, message="Profile updated successfully", member=result.value)


@router.get("/members/me/password-status")
async def own_password_status(
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    return ok(**await backend.members.own_password_status(principal.subject))


@router.get("/members/password-status")
async def password_status(
    email: str = Query(""),
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    """Which credentials an application has set, for admin support."""
    return ok(**await backend.members.password_status(email))


@router.get("/members/me/events")
async def member_events(
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    return ok(events=await backend.events.events_for_member(principal.subject))


# --- Events ---


@router.get("/events")
async def list_events(
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    return ok(events=await backend.events.list_events())


@router.post("/events")
async def create_event(
    request: EventRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.events.create_event(_fields(request))
    return ok(result, message="Event created successfully", event=result.value)


@router.put("/events/{event_id}")
async def update_event(
    event_id: str,
    updates: dict[str, Any] = Body(...),
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.events.update_event(event_id, updates)
    return ok(result, message="Event updated successfully", event=result.value)


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.events.delete_event(event_id)
    return ok(result, message="Event deleted successfully")


@router.post("/events/{event_id}/announcement")
async def announce_event(
    event_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    """Email the event to every approved member."""
    result = await backend.events.announce_event(event_id)
    return ok(**result.to_dict())


def _sign_up_member_id(principal: Principal, request: SignUpRequest) -> str:
    # Admins may act on behalf of a member
    if principal.is_admin and request.member_id:
        return request.member_id
    return principal.subject


@router.post("/events/{event_id}/sign-up")
async def sign_up_event(
    event_id: str,
    request: SignUpRequest,
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    attendee = {
        "memberId": _sign_up_member_id(principal, request),
        "name": request.member_name,
        "email": request.member_email or principal.email,
        "company": request.member_company,
    }
    result = await backend.events.sign_up(event_id, attendee)
    return ok(result, message="Successfully signed up for the event!", attendee=result.value)


@router.delete("/events/{event_id}/sign-up")
async def cancel_sign_up(
    event_id: str,
    member_id: str | None = Query(None, alias="memberId"),
    principal: Principal = Depends(require_member),
    backend: Backend = Depends(get_backend),
):
    target = member_id if principal.is_admin and member_id else principal.subject
    result = await backend.events.cancel_sign_up(event_id, target)
    return ok(result, message="Successfully cancelled your sign-up for the event.")


# --- Venues ---


@router.get("/venues")
async def list_venues(
    backend: Backend = Depends(get_backend),
    settings: ApiSettings = Depends(get_settings),
):
    return ok(venues=await backend.venues.list_venues(settings.home_venue_id))


@router.post("/venues")
async def create_venue(
    request: VenueRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.venues.create_venue(_fields(request))
    return ok(result, message="Venue created successfully", venue=result.value)


@router.put("/venues/{venue_id}")
async def update_venue(
    venue_id: str,
    request: VenueRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.venues.update_venue(venue_id, request.model_dump(exclude_unset=True))
    return ok(result, message="Venue updated successfully", venue=result.value)


@router.delete("/venues/{venue_id}")
async def delete_venue(
    venue_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.venues.delete_venue(venue_id)
    return ok(result, message="Venue deleted successfully")


# --- FAQs ---


@router.get("/faqs")
async def list_faqs(backend: Backend = Depends(get_backend)):
    return ok(faqs=await backend.faqs.list_faqs())


@router.post("/faqs")
async def save_faq(
    request: FaqRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.faqs.upsert_faq(_fields(request))
    return ok(result, message="FAQ saved successfully", faq=result.value)


@router.delete("/faqs/{faq_id}")
async def delete_faq(
    faq_id: str,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.faqs.delete_faq(faq_id)
    return ok(result, message="FAQ deleted successfully")


# --- Gallery ---


@router.get("/gallery")
async def get_gallery(backend: Backend = Depends(get_backend)):
    return ok(**await backend.gallery.get_gallery())


@router.put("/gallery")
async def update_gallery(
    request: GalleryRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    data = await backend.gallery.replace_gallery(request.photos)
    return ok(message="Gallery updated successfully", **data)


# --- Push notifications ---


@router.get("/push/vapid-key")
async def get_vapid_key(backend: Backend = Depends(get_backend)):
    public_key = backend.config.push.vapid_public_key
    if not public_key:
        raise NotFoundError("Push notifications are not configured", "config", "vapid")
    return ok(publicKey=public_key)


@router.post("/push/subscriptions")
async def subscribe(
    request: SubscribeRequest,
    backend: Backend = Depends(get_backend),
):
    result = await backend.push.subscribe(request.subscription, request.user_type or "", request.user_id)
    return ok(result, message="Subscription stored successfully", subscriptionId=result.value["id"])


@router.post("/push/broadcast")
async def broadcast(
    request: BroadcastRequest,
    _: Principal = Depends(require_admin),
    backend: Backend = Depends(get_backend),
):
    result = await backend.push.broadcast(
        request.title or "",
        request.body or "",
        user_type=request.user_type,
        data=request.data,
        require_interaction=request.require_interaction,
    )
    body = ok(**result.to_dict())
    if result.warnings:
        body["warnings"] = result.warnings
    return body
