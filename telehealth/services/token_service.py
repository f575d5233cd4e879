from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import AuthenticationError
from ..core.security import (
    ACCESS_TOKEN, REFRESH_TOKEN, TokenPair, TokenPayload,
    create_access_token, create_refresh_token, decode_token, hash_token, utcnow
)
from ..models.user import User, RefreshToken

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Mints, verifies and exchanges access/refresh token pairs.

    Refresh tokens are recorded by ``jti`` so they can be revoked at logout or
    password reset. A refresh token stays usable until its own expiry unless
    ``REFRESH_TOKEN_ROTATION`` is enabled, in which case each exchange revokes
    it and hands out a new one.
    """

    def __init__(self, db: Session, rotate_refresh_tokens: Optional[bool] = None):
        self.db = db
        if rotate_refresh_tokens is None:
            rotate_refresh_tokens = settings.REFRESH_TOKEN_ROTATION
        self.rotate_refresh_tokens = rotate_refresh_tokens

    def issue(self, user: User) -> TokenPair:
        """Create both access and refresh tokens for ``user``."""
        access_token = create_access_token(user.id, user.role, user.email)
        refresh_token = self._issue_refresh_token(user.id)
        self.db.commit()

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        )

    def verify(self, access_token: str) -> TokenPayload:
        """Resolve an access token to its claims or raise an AuthenticationError."""
        return decode_token(access_token, ACCESS_TOKEN)

    def exchange(self, refresh_token: str) -> TokenPair:
        """Trade a refresh token for a new access token."""
        payload = decode_token(refresh_token, REFRESH_TOKEN)
        stored_token = self.db.query(RefreshToken).filter(
            RefreshToken.jti == payload.jti
        ).first()

        if (
            not stored_token
            or stored_token.is_revoked
            or stored_token.token_hash != hash_token(refresh_token)
            or stored_token.user_id != payload.user_id
        ):
            raise AuthenticationError("Invalid or expired refresh token")

        user = self.db.query(User).filter(User.id == payload.user_id).first()
        if not user or not user.is_active:
            raise AuthenticationError("User not found or inactive")

        if self.rotate_refresh_tokens:
            # Conditional update so only one concurrent exchange can win
            revoked = self.db.query(RefreshToken).filter(
                RefreshToken.id == stored_token.id,
                RefreshToken.is_revoked.is_(False)
            ).update({"is_revoked": True}, synchronize_session=False)
            if revoked != 1:
                self.db.rollback()
                raise AuthenticationError("Invalid or expired refresh token")
            new_refresh_token = self._issue_refresh_token(user.id)
            self.db.commit()
        else:
            new_refresh_token = refresh_token

        access_token = create_access_token(user.id, user.role, user.email)
        logger.info(f"Exchanged refresh token for user {user.id}")

        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        )

    def revoke(self, refresh_token: str, user_id: Optional[int] = None) -> bool:
        """Revoke a single refresh token, optionally only if ``user_id`` owns it.

        Returns False if no matching active token was found.
        """
        query = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token),
            RefreshToken.is_revoked.is_(False)
        )
        if user_id is not None:
            query = query.filter(RefreshToken.user_id == user_id)
        revoked = query.update({"is_revoked": True}, synchronize_session=False)
        self.db.commit()
        return revoked > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every active refresh token belonging to ``user_id``."""
        revoked = self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False)
        ).update({"is_revoked": True}, synchronize_session=False)
        self.db.commit()
        return revoked

    def cleanup_expired_tokens(self) -> int:
        """Delete refresh token records past their expiry."""
        deleted = self.db.query(RefreshToken).filter(
            RefreshToken.expires_at < utcnow()
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted

    def _issue_refresh_token(self, user_id: int) -> str:
        """Mint a refresh token and record it; the caller commits."""
        refresh_token = create_refresh_token(user_id)
        payload = decode_token(refresh_token, REFRESH_TOKEN)

        self.db.add(RefreshToken(
            jti=payload.jti,
            user_id=user_id,
            token_hash=hash_token(refresh_token),
            expires_at=datetime.fromtimestamp(payload.exp, timezone.utc).replace(tzinfo=None)
        ))
        return refresh_token
