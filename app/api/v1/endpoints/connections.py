"""
Provider connection endpoints (link Gmail / Outlook mailboxes).

Flow:
1. GET /connections/connect/{provider} -> consent screen URL for the signed-in user
2. Provider redirects back to /connections/callback/{provider} with code + state
3. Callback exchanges the code, stores the connection and redirects to the dashboard
"""

from datetime import timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from google_auth_oauthlib.flow import Flow
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.dependencies import create_access_token, decode_token, get_current_user
from app.models.user import User
from app.services import db_service, gmail_service, outlook_service
from app.services.transport import TokenSnapshot
from app.utils.logger import get_logger

logger = get_logger("connections_api")

router = APIRouter(prefix="/connections", tags=["Connections"])

PROVIDERS = ("google", "microsoft")
STATE_PURPOSE = "oauth_state"
STATE_LIFETIME = timedelta(minutes=10)


class ConnectionResponse(BaseModel):
    provider: str
    email: str | None = None
    connected_at: str | None = None
    access_token_expires: str | None = None


def _require_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=400, detail="Invalid provider")
    return provider


def get_google_flow(state: str = None) -> Flow:
    """Create the Google OAuth flow from configured client credentials."""
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise HTTPException(
            status_code=500,
            detail="Google OAuth is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
        )

    client_config = {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": settings.GOOGLE_TOKEN_URI,
            "redirect_uris": [settings.GOOGLE_REDIRECT_URI],
        }
    }
    return Flow.from_client_config(
        client_config,
        scopes=gmail_service.SCOPES,
        redirect_uri=settings.GOOGLE_REDIRECT_URI,
        state=state,
        autogenerate_code_verifier=False
    )


def _dashboard_redirect(**params) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/dashboard?{urlencode(params)}", status_code=302)


# ============ LIST ============

@router.get("", response_model=list[ConnectionResponse])
def list_connections(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Linked mailboxes for the current user (tokens are never returned)."""
    return [c.to_public_dict() for c in db_service.get_user_connections(db, user.id)]


# ============ CONNECT ============

@router.get("/connect/{provider}")
def connect(provider: str, user: User = Depends(get_current_user)):
    """
    Start linking a mailbox.

    Returns the consent screen URL; the signed `state` carries the user id
    through the provider round trip.
    """
    _require_provider(provider)
    state = create_access_token(user.id, expires_delta=STATE_LIFETIME, purpose=STATE_PURPOSE)

    if provider == "google":
        flow = get_google_flow(state=state)
        auth_url, _ = flow.authorization_url(
            access_type="offline",  # Get refresh token
            include_granted_scopes="true",
            prompt="consent"  # Force consent to get refresh token
        )
    else:
        if not settings.MICROSOFT_CLIENT_ID:
            raise HTTPException(status_code=500, detail="Microsoft OAuth is not configured.")
        auth_url = outlook_service.get_authorization_url(state)

    return {"success": True, "data": {"authorization_url": auth_url}}


@router.get("/callback/{provider}")
def callback(
    provider: str,
    code: str = None,
    state: str = None,
    error: str = None,
    db: Session = Depends(get_db)
):
    """
    OAuth callback - exchanges the authorization code and stores the tokens.

    Always ends in a redirect back to the dashboard.
    """
    _require_provider(provider)

    if error:
        logger.warning(f"{provider} consent denied or failed: {error}")
        return _dashboard_redirect(error=f"{provider}_connection_failed")

    user_id = decode_token(state, purpose=STATE_PURPOSE) if state else None
    user = db_service.get_user(db, user_id) if user_id else None
    if not code or user is None:
        return _dashboard_redirect(error="user_not_found" if code else "missing_code")

    try:
        if provider == "google":
            flow = get_google_flow(state=state)
            flow.fetch_token(code=code)
            credentials = flow.credentials
            profile = gmail_service.get_account_profile(credentials)
            tokens = TokenSnapshot(
                access_token=credentials.token,
                refresh_token=credentials.refresh_token,
                expires_at=credentials.expiry
            )
        else:
            tokens = outlook_service.exchange_code(code)
            profile = outlook_service.get_account_profile(tokens.access_token)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to exchange {provider} authorization code: {e}")
        return _dashboard_redirect(error=f"{provider}_connection_failed")

    db_service.upsert_connection(
        db,
        user_id=user.id,
        provider=provider,
        tokens=tokens,
        email=profile.get("email"),
        provider_account_id=profile.get("id")
    )
    return _dashboard_redirect(connected=provider)


# ============ DISCONNECT ============

@router.delete("/{provider}")
def disconnect(
    provider: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    _require_provider(provider)
    if not db_service.delete_connection(db, user.id, provider):
        raise HTTPException(status_code=404, detail=f"No {provider} account connected")
    return {"success": True, "message": f"{provider} account disconnected successfully"}
