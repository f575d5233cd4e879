from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
import hashlib
import secrets
import uuid
from enum import Enum

from .config import settings
from .exceptions import AuthenticationError, ExpiredTokenError, MalformedTokenError

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenPayload(BaseModel):
    sub: str
    role: Optional[UserRole] = None
    email: Optional[str] = None
    exp: int
    iat: Optional[int] = None
    jti: Optional[str] = None
    token_type: str

    @property
    def user_id(self) -> int:
        return int(self.sub)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


def generate_password_reset_token() -> str:
    """Generate a secure random token for password reset."""
    return secrets.token_urlsafe(32)


def generate_email_verification_token() -> str:
    return secrets.token_urlsafe(32)


def generate_phone_otp(length: int = settings.PHONE_OTP_LENGTH) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_token(token: str) -> str:
    """Lookup key for a stored token; the token itself is never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# JWT utilities
def _encode(claims: dict, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = claims.copy()
    to_encode.update({
        "iat": now,
        "exp": now + expires_delta,
        "jti": uuid.uuid4().hex,
        "token_type": token_type,
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(
    user_id: int,
    role: UserRole,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {"sub": str(user_id), "role": UserRole(role).value}
    if email:
        claims["email"] = email
    return _encode(claims, ACCESS_TOKEN, expires_delta)


def create_refresh_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT refresh token."""
    if expires_delta is None:
        expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode({"sub": str(user_id)}, REFRESH_TOKEN, expires_delta)


def decode_token(token: str, expected_type: str) -> TokenPayload:
    """Verify and decode a JWT of the given purpose.

    Raises ExpiredTokenError once ``exp`` has passed, MalformedTokenError when
    the token cannot be decoded or was signed with another secret, and a plain
    AuthenticationError when it decodes but is not usable as ``expected_type``.
    """
    if not token:
        raise MalformedTokenError()

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except ExpiredSignatureError:
        raise ExpiredTokenError()
    except JWTError:
        raise MalformedTokenError()

    if payload.get("token_type") != expected_type:
        raise AuthenticationError("Invalid token type")

    # pydantic's ValidationError and a non-numeric subject are both ValueErrors
    try:
        token_payload = TokenPayload(**payload)
        int(token_payload.sub)
    except ValueError:
        raise AuthenticationError("Invalid token payload")

    if expected_type == ACCESS_TOKEN and token_payload.role is None:
        raise AuthenticationError("Invalid token payload")

    return token_payload
