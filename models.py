from datetime import datetime

from pydantic import BaseModel


class SendOTPRequest(BaseModel):
    identifier: str | None = None
    type: str | None = None


class VerifyOTPRequest(BaseModel):
    identifier: str | None = None
    otp: str | None = None
    type: str | None = None


class UserSummary(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class UserProfile(UserSummary):
    created_at: datetime


class SendOTPData(BaseModel):
    identifier: str
    expiresIn: int  # minutes


class LoginData(BaseModel):
    user: UserSummary
    token: str


class SendOTPResponse(BaseModel):
    success: bool = True
    message: str
    data: SendOTPData


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    data: LoginData


class ProfileResponse(BaseModel):
    success: bool = True
    data: UserProfile


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned by every exception handler."""

    success: bool = False
    error: str
