from sqlalchemy.orm import Session
from datetime import timedelta
from typing import List, Optional, Tuple
import logging
import secrets

from ..core.config import settings
from ..core.exceptions import (
    AccountLockedError, AuthenticationError, ConflictError,
    NotFoundError, ValidationError
)
from ..core.security import (
    TokenPair, UserRole, generate_email_verification_token,
    generate_password_reset_token, generate_phone_otp, get_password_hash,
    hash_token, utcnow, verify_password
)
from ..models.doctor import DoctorProfile
from ..models.patient import Patient
from ..models.user import User
from ..schemas.auth import (
    AuthResponse, ChangePassword, DoctorProfileResponse, DoctorProfileUpdate,
    DoctorRegister, PasswordResetConfirm, RefreshResponse, UserLogin,
    UserRegister, UserResponse
)
from .token_service import TokenIssuer

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def _patient_profile(user: User, data: Optional[UserRegister]) -> None:
    user.patient = Patient(
        date_of_birth=data.date_of_birth if data else None,
        gender=data.gender if data else None,
    )


def _doctor_profile(user: User, data: Optional[UserRegister]) -> None:
    doctor_data = data if isinstance(data, DoctorRegister) else None
    user.doctor_profile = DoctorProfile(
        specialties=list(doctor_data.specialties) if doctor_data else [],
        license_number=doctor_data.license_number if doctor_data else None,
        experience_years=doctor_data.experience_years if doctor_data else None,
    )


def _no_profile(user: User, data: Optional[UserRegister]) -> None:
    return None


# Every role must be listed here
ROLE_PROFILE_FACTORIES = {
    UserRole.PATIENT: _patient_profile,
    UserRole.DOCTOR: _doctor_profile,
    UserRole.ADMIN: _no_profile,
}
_unhandled_roles = set(UserRole) - set(ROLE_PROFILE_FACTORIES)
if _unhandled_roles:
    raise RuntimeError(f"No profile factory for roles: {sorted(role.value for role in _unhandled_roles)}")


class AuthService:
    def __init__(self, db: Session, token_issuer: Optional[TokenIssuer] = None):
        self.db = db
        self.tokens = token_issuer or TokenIssuer(db)

    # Registration

    def register_patient(self, user_data: UserRegister) -> AuthResponse:
        """Register a patient and sign them in."""
        user = self._create_user(user_data, UserRole.PATIENT)
        return self._auth_response(user, self.tokens.issue(user))

    def register_doctor(self, doctor_data: DoctorRegister) -> AuthResponse:
        """Register a doctor (pending verification) and sign them in."""
        if doctor_data.license_number and self.db.query(DoctorProfile).filter(
            DoctorProfile.license_number == doctor_data.license_number
        ).first():
            raise ConflictError("License number already registered")

        user = self._create_user(doctor_data, UserRole.DOCTOR)
        return self._auth_response(user, self.tokens.issue(user), include_doctor_profile=True)

    # Login / session

    def authenticate_user(self, login_data: UserLogin, role: Optional[UserRole] = None) -> User:
        """Check credentials and return the identity, applying lockout rules."""
        email = login_data.email.lower()
        user = self.db.query(User).filter(User.email == email).first()

        if not user:
            raise AuthenticationError(INVALID_CREDENTIALS)

        # Check account lockout
        if user.locked_until and user.locked_until > utcnow():
            raise AccountLockedError()

        if not verify_password(login_data.password, user.password_hash):
            self._handle_failed_login(user)
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        if role is not None and user.role != role:
            logger.info(f"Rejected {role.value} login for user {user.id} with role {user.role.value}")
            raise AuthenticationError(INVALID_CREDENTIALS)

        # Reset failed login attempts
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = utcnow()
        self.db.commit()

        return user

    def login(self, login_data: UserLogin) -> AuthResponse:
        """Log in any identity through the general (patient) entry point."""
        user = self.authenticate_user(login_data)
        tokens = self.tokens.issue(user)
        logger.info(f"User {user.id} logged in")
        return self._auth_response(user, tokens, login=True)

    def login_doctor(self, login_data: UserLogin) -> AuthResponse:
        """Log in a doctor; other roles are rejected as invalid credentials."""
        user = self.authenticate_user(login_data, role=UserRole.DOCTOR)
        tokens = self.tokens.issue(user)
        logger.info(f"Doctor {user.id} logged in")
        return self._auth_response(user, tokens, login=True, include_doctor_profile=True)

    def refresh_access_token(self, refresh_token: str) -> RefreshResponse:
        """Refresh access token using refresh token."""
        tokens = self.tokens.exchange(refresh_token)
        payload = self.tokens.verify(tokens.access_token)
        user = self.db.query(User).filter(User.id == payload.user_id).first()

        return RefreshResponse(
            access_token=tokens.access_token,
            expires_in=tokens.expires_in,
            user=UserResponse.model_validate(user),
            refresh_token=tokens.refresh_token if tokens.refresh_token != refresh_token else None,
        )

    def logout_user(self, user: User, refresh_token: Optional[str] = None) -> int:
        """Revoke the given refresh token, or all of the user's refresh tokens."""
        if refresh_token:
            revoked = 1 if self.tokens.revoke(refresh_token, user_id=user.id) else 0
        else:
            revoked = self.tokens.revoke_all(user.id)
        logger.info(f"User {user.id} logged out, revoked {revoked} refresh token(s)")
        return revoked

    # Passwords

    def request_password_reset(self, email: str) -> Optional[str]:
        """Generate password reset token. Returns None for unknown emails."""
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if not user:
            # Don't reveal if email exists
            return None

        reset_token = generate_password_reset_token()
        user.password_reset_token = hash_token(reset_token)
        user.password_reset_expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        self.db.commit()

        logger.info(f"Password reset requested for user {user.id}")
        return reset_token

    def reset_password(self, reset_data: PasswordResetConfirm) -> User:
        """Reset password using reset token."""
        user = self.db.query(User).filter(
            User.password_reset_token == hash_token(reset_data.token),
            User.password_reset_expires > utcnow()
        ).first()

        if not user:
            raise ValidationError("Invalid or expired reset token")

        user.password_hash = get_password_hash(reset_data.password)
        user.password_reset_token = None
        user.password_reset_expires = None
        user.failed_login_attempts = 0
        user.locked_until = None
        self.db.commit()

        # Sessions minted with the old password end here
        self.tokens.revoke_all(user.id)
        return user

    def change_password(self, user: User, password_data: ChangePassword) -> None:
        if not verify_password(password_data.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")

        user.password_hash = get_password_hash(password_data.new_password)
        self.db.commit()

    # Email and phone verification

    def issue_email_verification(self, user: User) -> str:
        token = generate_email_verification_token()
        user.email_verification_token = hash_token(token)
        self.db.commit()
        logger.info(f"Email verification issued for user {user.id}")
        return token

    def verify_email(self, token: str) -> User:
        user = self.db.query(User).filter(
            User.email_verification_token == hash_token(token)
        ).first()
        if not user:
            raise ValidationError("Invalid or expired verification token")

        user.is_email_verified = True
        user.email_verification_token = None
        self.db.commit()
        return user

    def resend_verification_email(self, email: str) -> Optional[str]:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if not user:
            return None
        if user.is_email_verified:
            raise ValidationError("Email is already verified")
        return self.issue_email_verification(user)

    def send_phone_otp(self, user: User, phone: str) -> str:
        otp = generate_phone_otp()
        user.phone = phone
        user.is_phone_verified = False
        user.phone_otp_hash = hash_token(otp)
        user.phone_otp_expires = utcnow() + timedelta(minutes=settings.PHONE_OTP_EXPIRE_MINUTES)
        self.db.commit()
        logger.info(f"Phone OTP issued for user {user.id}")
        return otp

    def verify_phone(self, user: User, phone: str, otp: str) -> User:
        if (
            user.phone != phone
            or not user.phone_otp_hash
            or not user.phone_otp_expires
            or user.phone_otp_expires < utcnow()
            or not secrets.compare_digest(user.phone_otp_hash, hash_token(otp))
        ):
            raise ValidationError("Invalid or expired verification code")

        user.is_phone_verified = True
        user.phone_otp_hash = None
        user.phone_otp_expires = None
        self.db.commit()
        return user

    # Doctor profile

    def complete_doctor_profile(self, user: User, profile_data: DoctorProfileUpdate) -> DoctorProfile:
        profile = user.doctor_profile
        if profile is None:
            raise NotFoundError("Doctor profile not found")

        updates = profile_data.model_dump(exclude_unset=True)
        license_number = updates.get("license_number")
        if license_number and self.db.query(DoctorProfile).filter(
            DoctorProfile.license_number == license_number,
            DoctorProfile.id != profile.id
        ).first():
            raise ConflictError("License number already registered")

        for field, value in updates.items():
            setattr(profile, field, value)
        profile.profile_completed = bool(profile.specialties and profile.license_number)

        self.db.commit()
        self.db.refresh(profile)
        return profile

    # Administration

    def list_users(self, skip: int = 0, limit: int = 10) -> List[User]:
        return self.db.query(User).order_by(User.id).offset(skip).limit(limit).all()

    def set_user_status(self, user_id: int, is_active: bool) -> User:
        user = self._get_user(user_id)
        user.is_active = is_active
        self.db.commit()
        if not is_active:
            self.tokens.revoke_all(user.id)
        return user

    def change_role(self, user_id: int, role: UserRole) -> User:
        """Move an identity to another role; existing tokens are revoked."""
        user = self._get_user(user_id)
        if user.role == role:
            return user

        user.role = role
        if (role == UserRole.PATIENT and user.patient is None) or (
            role == UserRole.DOCTOR and user.doctor_profile is None
        ):
            ROLE_PROFILE_FACTORIES[role](user, None)
        self.db.commit()
        self.tokens.revoke_all(user.id)
        logger.info(f"User {user.id} role changed to {role.value}")
        return user

    # Helpers

    def _get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def _create_user(self, user_data: UserRegister, role: UserRole) -> User:
        email = user_data.email.lower()
        if self.db.query(User).filter(User.email == email).first():
            raise ConflictError("Email already registered")

        user = User(
            email=email,
            password_hash=get_password_hash(user_data.password),
            role=role,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            phone=user_data.phone,
            is_active=True,
            is_email_verified=False,
            is_phone_verified=False,
        )
        ROLE_PROFILE_FACTORIES[role](user, user_data)

        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        self.issue_email_verification(user)
        logger.info(f"Registered {role.value} {user.id}")
        return user

    def _auth_response(
        self,
        user: User,
        tokens: TokenPair,
        login: bool = False,
        include_doctor_profile: bool = False,
    ) -> AuthResponse:
        doctor_profile = None
        if include_doctor_profile and user.doctor_profile is not None:
            doctor_profile = DoctorProfileResponse.model_validate(user.doctor_profile)

        return AuthResponse(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
            user=UserResponse.model_validate(user),
            token=tokens.access_token if login else None,
            user_id=user.id if login else None,
            doctor_profile=doctor_profile,
        )

    def _handle_failed_login(self, user: User):
        """Count a failed attempt and lock the account past the threshold."""
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

        if user.failed_login_attempts >= settings.MAX_FAILED_LOGIN_ATTEMPTS:
            user.locked_until = utcnow() + timedelta(minutes=settings.ACCOUNT_LOCKOUT_MINUTES)
            logger.warning(f"Locked user {user.id} after {user.failed_login_attempts} failed logins")

        self.db.commit()
