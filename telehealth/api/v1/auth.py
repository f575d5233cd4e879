from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from ...core.database import get_db
from ...api.deps import (
    get_admin_user, get_current_user, get_doctor_user, rate_limit_check
)
from ...services.auth_service import AuthService
from ...schemas.auth import (
    AuthResponse, ChangePassword, CurrentUserResponse, DoctorProfileEnvelope,
    DoctorProfileResponse, DoctorProfileUpdate, DoctorRegister,
    EmailVerification, LogoutRequest, MessageResponse, PasswordReset,
    PasswordResetConfirm, PhoneOtpRequest, PhoneVerification,
    RefreshResponse, RefreshTokenRequest, ResendVerification, UserListResponse,
    UserLogin, UserRegister, UserResponse, UserRoleUpdate, UserStatusUpdate
)
from ...models.user import User

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    user_data: UserRegister,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Register a new patient."""
    return AuthService(db).register_patient(user_data)


@router.post(
    "/doctor/register",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def register_doctor(
    doctor_data: DoctorRegister,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Register a new doctor; the account starts pending verification."""
    return AuthService(db).register_doctor(doctor_data)


@router.post("/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login(
    login_data: UserLogin,
    db: Session = Depends(get_db),
):
    """Authenticate user and return access tokens."""
    return AuthService(db).login(login_data)


@router.post("/doctor/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login_doctor(
    login_data: UserLogin,
    db: Session = Depends(get_db),
):
    """Authenticate a doctor and return tokens with the doctor profile."""
    return AuthService(db).login_doctor(login_data)


@router.get("/current-user", response_model=CurrentUserResponse, response_model_exclude_none=True)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return CurrentUserResponse(user=UserResponse.model_validate(current_user))


@router.post("/refresh-token", response_model=RefreshResponse, response_model_exclude_none=True)
async def refresh_token(
    refresh_data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """Refresh access token using refresh token."""
    return AuthService(db).refresh_access_token(refresh_data.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    refresh_data: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Logout user by revoking refresh tokens."""
    refresh_token = refresh_data.refresh_token if refresh_data else None
    AuthService(db).logout_user(current_user, refresh_token)
    return MessageResponse(message="Successfully logged out")


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: ChangePassword,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change user password."""
    AuthService(db).change_password(current_user, password_data)
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    reset_data: PasswordReset,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Request password reset."""
    AuthService(db).request_password_reset(reset_data.email)
    return MessageResponse(message="If the email exists, a password reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    reset_data: PasswordResetConfirm,
    db: Session = Depends(get_db)
):
    """Reset password using reset token."""
    AuthService(db).reset_password(reset_data)
    return MessageResponse(message="Password reset successfully")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    verification: EmailVerification,
    db: Session = Depends(get_db)
):
    AuthService(db).verify_email(verification.token)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification-email", response_model=MessageResponse)
async def resend_verification_email(
    resend_data: ResendVerification,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    AuthService(db).resend_verification_email(resend_data.email)
    return MessageResponse(message="If the email exists, a verification link has been sent")


@router.post("/send-phone-otp", response_model=MessageResponse)
async def send_phone_otp(
    otp_request: PhoneOtpRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    AuthService(db).send_phone_otp(current_user, otp_request.phone)
    return MessageResponse(message="Verification code sent")


@router.post("/verify-phone", response_model=MessageResponse)
async def verify_phone(
    verification: PhoneVerification,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    AuthService(db).verify_phone(current_user, verification.phone, verification.otp)
    return MessageResponse(message="Phone number verified successfully")


@router.put("/doctor/complete-profile", response_model=DoctorProfileEnvelope)
async def complete_doctor_profile(
    profile_data: DoctorProfileUpdate,
    current_user: User = Depends(get_doctor_user),
    db: Session = Depends(get_db)
):
    """Fill in the professional profile after doctor registration."""
    profile = AuthService(db).complete_doctor_profile(current_user, profile_data)
    return DoctorProfileEnvelope(data=DoctorProfileResponse.model_validate(profile))


# Admin routes
@router.get("/users", response_model=UserListResponse, response_model_exclude_none=True)
async def list_users(
    skip: int = 0,
    limit: int = 10,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """List all users (admin only)."""
    users = AuthService(db).list_users(skip=skip, limit=limit)
    return UserListResponse(data=[UserResponse.model_validate(user) for user in users])


@router.patch("/users/{user_id}/status", response_model=MessageResponse)
async def update_user_status(
    user_id: int,
    status_data: UserStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """Update user active status (admin only)."""
    AuthService(db).set_user_status(user_id, status_data.is_active)
    return MessageResponse(
        message=f"User {'activated' if status_data.is_active else 'deactivated'} successfully"
    )


@router.patch("/users/{user_id}/role", response_model=MessageResponse)
async def update_user_role(
    user_id: int,
    role_data: UserRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """Change a user's role (admin only)."""
    user = AuthService(db).change_role(user_id, role_data.role)
    return MessageResponse(message=f"User role set to {user.role.value}")
