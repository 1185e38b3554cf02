"""
Tracking endpoints.

Public (hit by recipients' mail clients, must never fail):
- GET /tracking/pixel/{trackingId}/{recipient}      -> 1x1 PNG, always 200
- GET /tracking/click/{trackingId}/{url}/{recipient} -> 302 to the decoded url

Authenticated (dashboard):
- GET /tracking/analytics/{email_id}
- GET /tracking/analytics/{email_id}/recipients
- GET /tracking/stats/overview
"""

import base64

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.services import analytics, db_service
from app.services.errors import MalformedTrackingUrl
from app.services.tracking_recorder import RequestMeta, record_click, record_open
from app.services.tracking_urls import parse_click_request, parse_pixel_request
from app.utils.logger import get_logger

logger = get_logger("tracking_api")

router = APIRouter(prefix="/tracking", tags=["Tracking"])

# 1x1 transparent PNG
PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _raw_path(request: Request) -> str:
    """Request path before percent-decoding; encoded URLs contain %2F."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1")
    return request.url.path


def _request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        accept_language=request.headers.get("accept-language"),
    )


def _pixel_response() -> Response:
    return Response(content=PIXEL_PNG, media_type="image/png", headers=NO_CACHE_HEADERS)


# ============ PUBLIC TRACKING ============

@router.get("/pixel/{tracking_path:path}", include_in_schema=False)
def tracking_pixel(tracking_path: str, request: Request, db: Session = Depends(get_db)):
    """Open beacon. Serves the pixel whether or not anything is recorded."""
    try:
        hit = parse_pixel_request(_raw_path(request))
    except MalformedTrackingUrl as e:
        logger.warning(f"Malformed pixel request {tracking_path!r}: {e}")
        return _pixel_response()

    meta = _request_meta(request)
    logger.info(f"Email open tracked: {hit.tracking_id} for {hit.recipient_email} (IP: {meta.ip_address})")
    try:
        record_open(db, hit.tracking_id, hit.recipient_email, meta)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record open for {hit.tracking_id}: {e}")

    return _pixel_response()


@router.get("/click/{tracking_path:path}", include_in_schema=False)
def tracking_click(tracking_path: str, request: Request, db: Session = Depends(get_db)):
    """Click redirect. Always redirects; malformed links go to the app home."""
    try:
        hit = parse_click_request(_raw_path(request))
    except MalformedTrackingUrl as e:
        logger.warning(f"Malformed click request {tracking_path!r}: {e}")
        return RedirectResponse(url=settings.FRONTEND_URL, status_code=302)

    logger.info(f"Email click tracked: {hit.tracking_id} -> {hit.destination_url} by {hit.recipient_email}")
    try:
        record_click(
            db,
            hit.tracking_id,
            hit.recipient_email,
            hit.destination_url,
            _request_meta(request)
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record click for {hit.tracking_id}: {e}")
    return RedirectResponse(url=hit.destination_url, status_code=302)


# ============ ANALYTICS ============

def _owned_message(db: Session, user: User, email_id: int):
    message = db_service.get_user_message(db, user.id, email_id)
    if not message:
        raise HTTPException(status_code=404, detail="Email not found")
    return message


@router.get("/analytics/{email_id}")
def get_email_analytics(
    email_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Totals, unique counts, clicked URLs and the event timeline for one email."""
    message = _owned_message(db, user, email_id)
    return {"success": True, "data": analytics.email_analytics(db, message)}


@router.get("/analytics/{email_id}/recipients")
def get_recipient_analytics(
    email_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Per-recipient open/click breakdown for one email."""
    message = _owned_message(db, user, email_id)
    return {"success": True, "data": analytics.recipient_analytics(db, message)}


@router.get("/stats/overview")
def get_overview_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    return {"success": True, "data": analytics.overview_stats(db, user.id)}
