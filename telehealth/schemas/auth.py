from datetime import date, datetime
from typing import Dict, List, Optional
import re

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.security import UserRole
from ..models.doctor import VerificationStatus

PASSWORD_MIN_LENGTH = 8


def validate_password_strength(password: str) -> str:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValueError("Password must contain at least one letter and one number")
    return password


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Requests

class UserRegister(CamelModel):
    email: EmailStr
    password: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(default=None, max_length=20)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class DoctorRegister(UserRegister):
    specialties: List[str] = Field(default_factory=list)
    license_number: Optional[str] = Field(default=None, max_length=50)
    experience_years: Optional[int] = Field(default=None, ge=0)


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class PasswordReset(CamelModel):
    email: EmailStr


class PasswordResetConfirm(CamelModel):
    token: str = Field(min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class ChangePassword(CamelModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class EmailVerification(CamelModel):
    token: str = Field(min_length=1)


class ResendVerification(CamelModel):
    email: EmailStr


class PhoneOtpRequest(CamelModel):
    phone: str = Field(min_length=4, max_length=20)


class PhoneVerification(CamelModel):
    phone: str = Field(min_length=4, max_length=20)
    otp: str = Field(min_length=4, max_length=10)


class DoctorProfileUpdate(CamelModel):
    specialties: Optional[List[str]] = None
    license_number: Optional[str] = Field(default=None, max_length=50)
    experience_years: Optional[int] = Field(default=None, ge=0)
    qualifications: Optional[List[str]] = None
    bio: Optional[str] = None
    consultation_fee: Optional[float] = Field(default=None, ge=0)
    availability: Optional[Dict[str, List[str]]] = None
    is_available: Optional[bool] = None


class DoctorRejection(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class UserStatusUpdate(CamelModel):
    is_active: bool


class UserRoleUpdate(CamelModel):
    role: UserRole


# Responses

class DoctorProfileResponse(CamelModel):
    id: int
    user_id: int
    specialties: List[str] = Field(default_factory=list)
    license_number: Optional[str] = None
    experience_years: Optional[int] = None
    qualifications: List[str] = Field(default_factory=list)
    bio: Optional[str] = None
    consultation_fee: Optional[float] = None
    availability: Dict[str, List[str]] = Field(default_factory=dict)
    is_available: bool = True
    verification_documents: List[str] = Field(default_factory=list)
    verification_status: VerificationStatus
    rejection_reason: Optional[str] = None
    profile_completed: bool = False


class PatientProfileResponse(CamelModel):
    id: int
    user_id: int
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    blood_group: Optional[str] = None
    allergies: Optional[str] = None


class UserResponse(CamelModel):
    id: int
    email: str
    role: UserRole
    first_name: str
    last_name: str
    phone: Optional[str] = None
    is_active: bool
    is_email_verified: bool
    is_phone_verified: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    doctor_profile: Optional[DoctorProfileResponse] = None


class AuthResponse(CamelModel):
    """Token pair plus identity, returned by register and login."""

    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    # Login responses also carry the access token as ``token`` and the user id
    token: Optional[str] = None
    user_id: Optional[int] = None
    doctor_profile: Optional[DoctorProfileResponse] = None


class RefreshResponse(CamelModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    # Only present when refresh tokens are rotated
    refresh_token: Optional[str] = None


class CurrentUserResponse(CamelModel):
    success: bool = True
    user: UserResponse


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class DoctorProfileEnvelope(CamelModel):
    success: bool = True
    data: DoctorProfileResponse


class PatientProfileEnvelope(CamelModel):
    success: bool = True
    data: PatientProfileResponse


class UserListResponse(CamelModel):
    success: bool = True
    data: List[UserResponse]
