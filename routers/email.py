from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import mailer
from config import settings
from security import require_roles

router = APIRouter(prefix="/api", tags=["email"])


class EmailIn(BaseModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    text: Optional[str] = None
    html: Optional[str] = None


@router.post("/Email/sendEmail")
async def send_email(payload: EmailIn, user: dict = Depends(require_roles("admin"))):
    if not payload.to or not payload.subject or not (payload.text or payload.html):
        raise HTTPException(status_code=400, detail="Missing required fields: to, subject, and text or html")
    try:
        result = mailer.send_email(payload.to, payload.subject, html=payload.html, text=payload.text)
    except mailer.EmailError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "message": "Email sent successfully", **result}


@router.get("/email-diagnostic")
async def email_diagnostic(user: dict = Depends(require_roles("admin"))):
    return {
        "success": True,
        "configured": mailer.is_configured(),
        "email": "✅ Set" if settings.EMAIL else "❌ Not Set",
        "app_password": "✅ Set" if settings.EMAIL_APP_PASSWORD else "❌ Not Set",
        "smtp_host": settings.SMTP_HOST,
        "smtp_port": settings.SMTP_PORT,
    }
