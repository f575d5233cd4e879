from datetime import timedelta
import time

import pytest
from jose import jwt

from telehealth.core.config import settings
from telehealth.core.exceptions import (
    AuthenticationError, ExpiredTokenError, MalformedTokenError
)
from telehealth.core.security import (
    REFRESH_TOKEN, UserRole, create_access_token, create_refresh_token,
    decode_token, utcnow
)
from telehealth.models.user import RefreshToken, User
from telehealth.services.token_service import TokenIssuer


@pytest.fixture
def user(patient, db_session):
    return db_session.query(User).filter(User.id == patient.user.id).first()


class TestTokenIssuer:

    def test_issue_then_verify(self, db_session, user):
        tokens = TokenIssuer(db_session).issue(user)

        payload = TokenIssuer(db_session).verify(tokens.access_token)
        assert payload.user_id == user.id
        assert payload.role == UserRole.PATIENT
        assert tokens.expires_in == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    def test_issue_records_refresh_token(self, db_session, user):
        before = db_session.query(RefreshToken).count()
        TokenIssuer(db_session).issue(user)
        assert db_session.query(RefreshToken).count() == before + 1

    def test_exchange_then_verify(self, db_session, user):
        issuer = TokenIssuer(db_session)
        tokens = issuer.issue(user)

        exchanged = issuer.exchange(tokens.refresh_token)
        payload = issuer.verify(exchanged.access_token)
        assert payload.user_id == user.id
        assert exchanged.refresh_token == tokens.refresh_token

    def test_expired_access_token(self, db_session, user):
        token = create_access_token(user.id, user.role, expires_delta=timedelta(seconds=-1))

        with pytest.raises(ExpiredTokenError) as exc_info:
            TokenIssuer(db_session).verify(token)
        assert exc_info.value.code == "TOKEN_EXPIRED"
        assert exc_info.value.status_code == 401

    def test_foreign_secret_is_malformed(self, db_session, user):
        token = jwt.encode(
            {"sub": str(user.id), "role": "patient", "token_type": "access"},
            "some-other-secret",
            algorithm=settings.ALGORITHM
        )
        with pytest.raises(MalformedTokenError):
            TokenIssuer(db_session).verify(token)

    def test_empty_token_is_malformed(self, db_session):
        with pytest.raises(MalformedTokenError):
            TokenIssuer(db_session).verify("")

    def test_refresh_token_is_not_an_access_token(self, db_session, user):
        tokens = TokenIssuer(db_session).issue(user)

        with pytest.raises(AuthenticationError) as exc_info:
            TokenIssuer(db_session).verify(tokens.refresh_token)
        assert exc_info.value.code == "UNKNOWN"
        assert not isinstance(exc_info.value, (ExpiredTokenError, MalformedTokenError))

    def test_access_token_cannot_be_exchanged(self, db_session, user):
        tokens = TokenIssuer(db_session).issue(user)

        with pytest.raises(AuthenticationError):
            TokenIssuer(db_session).exchange(tokens.access_token)

    def test_non_numeric_subject_rejected(self, db_session):
        token = jwt.encode(
            {"sub": "not-a-number", "role": "patient", "token_type": "access",
             "exp": int(time.time()) + 300},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM
        )
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(token, "access")
        assert exc_info.value.message == "Invalid token payload"

    def test_unrecorded_refresh_token_rejected(self, db_session, user):
        # Validly signed but never issued through the issuer
        refresh_token = create_refresh_token(user.id)

        with pytest.raises(AuthenticationError):
            TokenIssuer(db_session).exchange(refresh_token)

    def test_expired_refresh_token(self, db_session, user):
        refresh_token = create_refresh_token(user.id, expires_delta=timedelta(seconds=-1))

        with pytest.raises(ExpiredTokenError):
            TokenIssuer(db_session).exchange(refresh_token)

    def test_revoked_refresh_token_rejected(self, db_session, user):
        issuer = TokenIssuer(db_session)
        tokens = issuer.issue(user)

        assert issuer.revoke(tokens.refresh_token) is True
        assert issuer.revoke(tokens.refresh_token) is False

        with pytest.raises(AuthenticationError):
            issuer.exchange(tokens.refresh_token)

    def test_revoke_scoped_to_owner(self, db_session, user, doctor):
        issuer = TokenIssuer(db_session)
        tokens = issuer.issue(user)

        assert issuer.revoke(tokens.refresh_token, user_id=doctor.user.id) is False
        assert issuer.exchange(tokens.refresh_token).access_token

        assert issuer.revoke(tokens.refresh_token, user_id=user.id) is True
        with pytest.raises(AuthenticationError):
            issuer.exchange(tokens.refresh_token)

    def test_revoke_all(self, db_session, user):
        issuer = TokenIssuer(db_session)
        first = issuer.issue(user)
        second = issuer.issue(user)

        # One more from the patient fixture's registration
        assert issuer.revoke_all(user.id) == 3

        for tokens in (first, second):
            with pytest.raises(AuthenticationError):
                issuer.exchange(tokens.refresh_token)

    def test_inactive_user_cannot_exchange(self, db_session, user):
        issuer = TokenIssuer(db_session)
        tokens = issuer.issue(user)

        user.is_active = False
        db_session.commit()

        with pytest.raises(AuthenticationError):
            issuer.exchange(tokens.refresh_token)

    def test_rotation_revokes_presented_token(self, db_session, user):
        issuer = TokenIssuer(db_session, rotate_refresh_tokens=True)
        tokens = issuer.issue(user)

        rotated = issuer.exchange(tokens.refresh_token)
        assert rotated.refresh_token != tokens.refresh_token
        assert issuer.verify(rotated.access_token).user_id == user.id

        with pytest.raises(AuthenticationError):
            issuer.exchange(tokens.refresh_token)

        again = issuer.exchange(rotated.refresh_token)
        assert again.refresh_token != rotated.refresh_token

    def test_cleanup_expired_tokens(self, db_session, user):
        issuer = TokenIssuer(db_session)
        issuer.issue(user)

        stale = db_session.query(RefreshToken).first()
        stale.expires_at = utcnow() - timedelta(days=1)
        stale_id = stale.id
        db_session.commit()

        assert issuer.cleanup_expired_tokens() == 1
        assert db_session.query(RefreshToken).filter(RefreshToken.id == stale_id).first() is None


def test_refresh_token_expiry_recorded(db_session, patient):
    record = db_session.query(RefreshToken).first()
    payload = decode_token(patient.refresh_token, REFRESH_TOKEN)

    assert record.jti == payload.jti
    expected = utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    assert abs((record.expires_at - expected).total_seconds()) < 60


def test_rotation_over_http(client, patient, monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_TOKEN_ROTATION", True)

    response = client.post("/api/auth/refresh-token", json={"refreshToken": patient.refresh_token})
    assert response.status_code == 200
    new_refresh_token = response.json()["refreshToken"]
    assert new_refresh_token != patient.refresh_token

    replay = client.post("/api/auth/refresh-token", json={"refreshToken": patient.refresh_token})
    assert replay.status_code == 401
