import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import mailer
from config import settings
from database import db, create_document
from schemas import Otp, User
from security import (create_token, generate_code, get_current_user, hash_code, hash_password, public_user,
                      verify_password)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

CODE_TTL = timedelta(minutes=10)


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class TwoFactorRequest(BaseModel):
    enabled: bool


class EmailRequest(BaseModel):
    email: EmailStr


class CodeRequest(BaseModel):
    email: EmailStr
    code: str


class ResetPasswordRequest(CodeRequest):
    password: str = Field(..., min_length=6)


def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie("token", token, httponly=True, samesite="lax", max_age=settings.JWT_EXPIRES_MIN * 60)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, response: Response):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        hashed_password=hash_password(payload.password),
        phone=payload.phone,
        address=payload.address,
    )
    try:
        uid = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    doc = db["user"].find_one({"email": email})
    token = create_token(doc)
    _set_token_cookie(response, token)
    logger.info("Registered user %s", uid)
    return {"success": True, "token": token, "user": public_user(doc)}


@router.post("/login")
def login(payload: LoginRequest, response: Response):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account is blocked")
    now = datetime.utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now, "last_active_at": now}})
    user.update(last_login=now, last_active_at=now)
    token = create_token(user)
    _set_token_cookie(response, token)
    return {
        "success": True,
        "token": token,
        "user": public_user(user),
        "two_factor_enabled": user.get("two_factor_enabled", False),
    }


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"success": True, "message": "Logged out"}


@router.get("/myprofile")
async def my_profile(user: dict = Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}


@router.put("/updateprofile")
async def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user)):
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = datetime.utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return {"success": True, "user": public_user(db["user"].find_one({"_id": user["_id"]}))}


@router.put("/changepassword")
async def change_password(payload: ChangePasswordRequest, user: dict = Depends(get_current_user)):
    if not verify_password(payload.current_password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": hash_password(payload.new_password), "updated_at": datetime.utcnow()}},
    )
    return {"success": True, "message": "Password updated successfully"}


@router.put("/twoFactor")
async def toggle_two_factor(payload: TwoFactorRequest, user: dict = Depends(get_current_user)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"two_factor_enabled": payload.enabled}})
    return {"success": True, "two_factor_enabled": payload.enabled}


# One-time codes

@router.post("/otp")
def send_otp(payload: EmailRequest):
    email = payload.email.lower()
    code = generate_code()
    db["otp"].delete_many({"email": email})
    create_document("otp", Otp(email=email, code_hash=hash_code(code), expires_at=datetime.utcnow() + CODE_TTL))
    body = f"<p>Your verification code is:</p><h1 style=\"letter-spacing: 6px;\">{code}</h1><p>It expires in 10 minutes.</p>"
    mailer.send_quietly(email, "Your Best Wishes verification code", html=mailer.layout("Verification Code", body))
    return {"success": True, "message": "Verification code sent"}


@router.post("/verify-otp")
def verify_otp(payload: CodeRequest):
    email = payload.email.lower()
    otp = db["otp"].find_one({"email": email, "code_hash": hash_code(payload.code)})
    if not otp or otp["expires_at"] < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Invalid or expired code")
    db["otp"].delete_many({"email": email})
    return {"success": True, "message": "Code verified"}


# Password reset

@router.post("/forgot-password")
def forgot_password(payload: EmailRequest):
    email = payload.email.lower()
    user = db["user"].find_one({"email": email})
    if user:
        code = generate_code()
        db["user"].update_one({"_id": user["_id"]}, {"$set": {
            "reset_password_token": hash_code(code),
            "reset_password_expires": datetime.utcnow() + CODE_TTL,
        }})
        body = (f"<p>Dear {user.get('first_name', 'Customer')},</p>"
                f"<p>Use this code to reset your password:</p><h1 style=\"letter-spacing: 6px;\">{code}</h1>"
                f"<p>It expires in 10 minutes. If you did not ask for a reset, ignore this email.</p>")
        mailer.send_quietly(email, "Reset your Best Wishes password", html=mailer.layout("Password Reset", body))
    else:
        logger.info("Password reset requested for unknown email")
    return {"success": True, "message": "If that email is registered, a reset code has been sent"}


def _user_with_valid_reset_code(email: str, code: str) -> dict:
    user = db["user"].find_one({"email": email.lower(), "reset_password_token": hash_code(code)})
    if not user or not user.get("reset_password_expires") or user["reset_password_expires"] < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Invalid or expired reset code")
    return user


@router.post("/verify-reset-code")
def verify_reset_code(payload: CodeRequest):
    _user_with_valid_reset_code(payload.email, payload.code)
    return {"success": True, "message": "Reset code is valid"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest):
    user = _user_with_valid_reset_code(payload.email, payload.code)
    db["user"].update_one({"_id": user["_id"]}, {
        "$set": {"hashed_password": hash_password(payload.password), "updated_at": datetime.utcnow()},
        "$unset": {"reset_password_token": "", "reset_password_expires": ""},
    })
    logger.info("Password reset for user %s", user["_id"])
    return {"success": True, "message": "Password has been reset"}
