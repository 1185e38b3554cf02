"""
Email endpoints: compose/send with tracking, list, fetch, delete.

POST /email/send fans the message out per recipient (see
app.services.dispatcher) and stores one record for the whole send.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.services import db_service
from app.services.dispatcher import SendRequest, send_and_record
from app.utils.logger import get_logger

logger = get_logger("email_api")

router = APIRouter(prefix="/email", tags=["Email"])


# ============ Request / Response Schemas ============

class SendEmailBody(BaseModel):
    """Compose form payload."""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    htmlBody: Optional[str] = None
    provider: str

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def coerce_address_list(cls, value):
        # A single address is accepted where a list is expected
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    def to_send_request(self) -> SendRequest:
        def clean(addresses: list[str]) -> list[str]:
            return [address.strip().lower() for address in addresses]

        return SendRequest(
            to=clean(self.to),
            cc=clean(self.cc),
            bcc=clean(self.bcc),
            subject=self.subject,
            body=self.body,
            html_body=self.htmlBody or None,
            provider=self.provider
        )


class SendResultData(BaseModel):
    emailId: int
    trackingId: str
    sentCount: int


# ============ SEND ============

@router.post("/send")
def send_email(
    payload: SendEmailBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Send an email to every recipient with individual open/click tracking.

    **Returns:**
    - 200: at least one recipient received the message
    - 400: validation failed (nothing was sent)
    - 500: every recipient failed; `error` holds the first failure reason
    """
    message, outcome = send_and_record(db, user, payload.to_send_request())

    data = SendResultData(
        emailId=message.id,
        trackingId=message.tracking_id,
        sentCount=outcome.sent_count
    ).model_dump()

    if message.status == "sent":
        return {
            "success": True,
            "message": f"Email sent successfully to {outcome.sent_count} recipient(s)",
            "data": data,
        }

    logger.error(f"Email send failed for user {user.id}: {message.error}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": message.error or "Failed to send email",
            "data": data,
        }
    )


# ============ LIST / GET / DELETE ============

@router.get("")
def list_emails(
    skip: int = Query(0, ge=0, description="Offset for pagination"),
    limit: int = Query(50, ge=1, le=100, description="Max results"),
    status: Optional[str] = Query(None, description="Filter by status: sent, failed, draft"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """List the current user's sent emails, newest first."""
    emails = db_service.get_user_messages(db, user.id, skip=skip, limit=limit, status=status)
    return {"success": True, "data": [email.to_dict() for email in emails]}


@router.get("/{email_id}")
def get_email(
    email_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    email = db_service.get_user_message(db, user.id, email_id)
    if not email:
        raise HTTPException(status_code=404, detail="Email not found")
    return {"success": True, "data": email.to_dict()}


@router.delete("/{email_id}")
def delete_email(
    email_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    if not db_service.delete_user_message(db, user.id, email_id):
        raise HTTPException(status_code=404, detail="Email not found")
    return {"success": True, "message": "Email deleted successfully"}
