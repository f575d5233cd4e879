"""
Client-side session controller.

Drives login, registration, refresh and logout against the telehealth API and
keeps the injected ``Session`` and ``SessionStorage`` in step with what the
server says. States move ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED, and
AUTHENTICATED -> REFRESHING -> AUTHENTICATED when an access token expires.
A failed refresh or an explicit logout returns to ANONYMOUS and calls the
``on_signed_out`` callback, which is where a UI redirects to its login page.
"""

from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, Mapping, Optional, Union
import asyncio
import inspect
import logging

import httpx

from ..core.exceptions import (
    AuthenticationError, ExpiredTokenError, SessionBusyError,
    TelehealthError, TransportError
)
from .config import client_settings
from .session import Session, SessionState
from .storage import (
    ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_ID_KEY,
    FileStorage, MemoryStorage, SessionStorage
)
from .transport import ApiClient

logger = logging.getLogger(__name__)

SignedOutCallback = Callable[[], Union[None, Awaitable[None]]]

REGISTER_PATH = "/auth/register"
REGISTER_DOCTOR_PATH = "/auth/doctor/register"
LOGIN_PATH = "/auth/login"
LOGIN_DOCTOR_PATH = "/auth/doctor/login"
CURRENT_USER_PATH = "/auth/current-user"
REFRESH_PATH = "/auth/refresh-token"
LOGOUT_PATH = "/auth/logout"


class SessionController:
    def __init__(
        self,
        session: Optional[Session] = None,
        storage: Optional[SessionStorage] = None,
        api: Optional[ApiClient] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_signed_out: Optional[SignedOutCallback] = None,
    ):
        self.session = session or Session()
        if storage is None:
            storage = FileStorage(client_settings.SESSION_FILE) if client_settings.SESSION_FILE else MemoryStorage()
        self.storage = storage
        self.api = api or ApiClient(
            self.session,
            base_url or client_settings.API_URL,
            timeout if timeout is not None else client_settings.REQUEST_TIMEOUT,
            transport=transport,
        )
        self._on_signed_out = on_signed_out
        self._auth_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()
        self._bootstrapped = False
        # Bumped whenever the signed-in identity is replaced or cleared
        self._generation = 0

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.api.aclose()

    # Bootstrap

    async def bootstrap(self) -> Session:
        """Restore the persisted session. Runs once per controller."""
        if self._bootstrapped:
            return self.session
        self._bootstrapped = True

        access_token = self.storage.get(ACCESS_TOKEN_KEY)
        if not access_token:
            self.session.clear()
            return self.session

        refresh_token = self.storage.get(REFRESH_TOKEN_KEY)
        self.session.access_token = access_token
        self.session.refresh_token = refresh_token
        generation = self._generation

        with self._loading():
            try:
                data = await self.api.request(
                    "GET", CURRENT_USER_PATH, fallback_message="Failed to get user profile"
                )
            except TelehealthError as e:
                logger.info(f"Stored access token rejected: {e.message}")
                await self._bootstrap_refresh(refresh_token, generation)
            else:
                if generation == self._generation:
                    self.session.user = data.get("user") or data.get("data")
                    self.session.state = SessionState.AUTHENTICATED
                    self._persist()

        return self.session

    async def _bootstrap_refresh(self, refresh_token: Optional[str], generation: int) -> None:
        if generation != self._generation:
            return
        if not refresh_token:
            self._clear_local()
            return
        try:
            await self._exchange(refresh_token)
        except TelehealthError as e:
            logger.info(f"Could not restore session: {e.message}")
            if generation == self._generation:
                self._clear_local()

    # Authentication flows

    async def register(self, user_data: Mapping[str, Any]) -> Dict[str, Any]:
        """Register a patient and sign in."""
        return await self._authenticate(REGISTER_PATH, user_data, "Registration failed")

    async def register_doctor(self, doctor_data: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._authenticate(
            REGISTER_DOCTOR_PATH, doctor_data, "Doctor registration failed", doctor=True
        )

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self._authenticate(
            LOGIN_PATH, {"email": email, "password": password}, "Login failed"
        )

    async def login_doctor(self, email: str, password: str) -> Dict[str, Any]:
        return await self._authenticate(
            LOGIN_DOCTOR_PATH, {"email": email, "password": password}, "Doctor login failed", doctor=True
        )

    async def logout(self) -> None:
        """Sign out locally; telling the server is best effort."""
        with self._loading():
            try:
                if self.session.access_token:
                    body = {"refreshToken": self.session.refresh_token} if self.session.refresh_token else None
                    await self.api.request("POST", LOGOUT_PATH, json=body, fallback_message="Logout failed")
            except TelehealthError as e:
                logger.warning(f"Server logout failed, clearing local session anyway: {e.message}")
            finally:
                self._clear_local()
        await self._notify_signed_out()

    async def refresh_access_token(self) -> Dict[str, Any]:
        """Exchange the stored refresh token now; signs out if it is rejected.

        A caller that waited on another refresh gets that refresh's result
        instead of presenting the (possibly rotated away) refresh token again.
        """
        stale_token = self.session.access_token
        async with self._refresh_lock:
            if self.session.access_token and self.session.access_token != stale_token:
                return self._session_payload()

            refresh_token = self.session.refresh_token or self.storage.get(REFRESH_TOKEN_KEY)
            if not refresh_token:
                raise AuthenticationError("Failed to refresh token")
            return await self._refresh_or_sign_out(refresh_token)

    # Protected calls

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        fallback_message: str = "Request failed",
    ) -> Dict[str, Any]:
        """Call a protected endpoint, refreshing once if the access token expired."""
        json = dict(json) if json is not None else None
        params = dict(params) if params is not None else None
        stale_token = self.session.access_token
        try:
            return await self.api.request(
                method, path, json=json, params=params, fallback_message=fallback_message
            )
        except ExpiredTokenError:
            if not self.session.refresh_token:
                raise
            await self._refresh_after_expiry(stale_token)

        return await self.api.request(
            method, path, json=json, params=params, fallback_message=fallback_message
        )

    async def get_current_user(self) -> Dict[str, Any]:
        with self._loading():
            data = await self.request("GET", CURRENT_USER_PATH, fallback_message="Failed to get user profile")
        self.session.user = data.get("user") or data.get("data")
        self._persist()
        return data

    async def change_password(self, current_password: str, new_password: str) -> Dict[str, Any]:
        with self._loading():
            return await self.request(
                "PUT",
                "/auth/change-password",
                json={"currentPassword": current_password, "newPassword": new_password},
                fallback_message="Password change failed",
            )

    async def send_phone_otp(self, phone: str) -> Dict[str, Any]:
        with self._loading():
            return await self.request(
                "POST", "/auth/send-phone-otp", json={"phone": phone},
                fallback_message="Failed to send verification code",
            )

    async def verify_phone(self, phone: str, otp: str) -> Dict[str, Any]:
        with self._loading():
            data = await self.request(
                "POST", "/auth/verify-phone", json={"phone": phone, "otp": otp},
                fallback_message="Phone verification failed",
            )
        if self.session.user is not None:
            self.session.user = {**self.session.user, "phone": phone, "isPhoneVerified": True}
        return data

    async def complete_doctor_profile(self, profile_data: Mapping[str, Any]) -> Dict[str, Any]:
        with self._loading():
            data = await self.request(
                "PUT", "/auth/doctor/complete-profile", json=profile_data,
                fallback_message="Failed to complete doctor profile",
            )
        if self.session.user is not None:
            self.session.user = {**self.session.user, "doctorProfile": data.get("data")}
        return data

    # Unauthenticated account flows

    async def forgot_password(self, email: str) -> Dict[str, Any]:
        return await self._public_post(
            "/auth/forgot-password", {"email": email}, "Failed to send reset link"
        )

    async def reset_password(self, token: str, password: str) -> Dict[str, Any]:
        return await self._public_post(
            "/auth/reset-password", {"token": token, "password": password}, "Password reset failed"
        )

    async def verify_email(self, token: str) -> Dict[str, Any]:
        data = await self._public_post("/auth/verify-email", {"token": token}, "Email verification failed")
        if self.session.user is not None:
            self.session.user = {**self.session.user, "isEmailVerified": True}
        return data

    async def resend_verification_email(self, email: str) -> Dict[str, Any]:
        return await self._public_post(
            "/auth/resend-verification-email", {"email": email}, "Failed to resend verification email"
        )

    # Internals

    async def _authenticate(
        self,
        path: str,
        payload: Mapping[str, Any],
        fallback_message: str,
        doctor: bool = False,
    ) -> Dict[str, Any]:
        if self._auth_lock.locked():
            raise SessionBusyError()

        async with self._auth_lock:
            # Any refresh still in flight belongs to the previous identity
            self._generation += 1
            self.session.state = SessionState.AUTHENTICATING
            with self._loading():
                try:
                    data = await self.api.request(
                        "POST", path, json=dict(payload), authenticated=False,
                        fallback_message=fallback_message,
                    )
                except TelehealthError:
                    self._clear_local()
                    raise

            access_token = data.get("accessToken") or data.get("token")
            user = data.get("user") or data.get("patient")
            if not access_token or user is None:
                self._clear_local()
                raise AuthenticationError(fallback_message)

            if doctor and data.get("doctorProfile") is not None:
                user = {**user, "doctorProfile": data["doctorProfile"]}

            self.session.access_token = access_token
            self.session.refresh_token = data.get("refreshToken")
            self.session.user = user
            self.session.state = SessionState.AUTHENTICATED
            self._persist()
            return data

    async def _refresh_after_expiry(self, stale_token: Optional[str]) -> None:
        async with self._refresh_lock:
            # Another caller already refreshed while we waited
            if self.session.access_token and self.session.access_token != stale_token:
                return
            refresh_token = self.session.refresh_token
            if not refresh_token:
                raise AuthenticationError("Session expired")
            await self._refresh_or_sign_out(refresh_token)

    async def _refresh_or_sign_out(self, refresh_token: str) -> Dict[str, Any]:
        generation = self._generation
        previous_state = self.session.state
        self.session.state = SessionState.REFRESHING
        try:
            return await self._exchange(refresh_token)
        except TransportError:
            # The server never answered, so the refresh token may still be good
            if generation == self._generation:
                self.session.state = previous_state
            raise
        except TelehealthError:
            # A logout or new login already decided the session's fate
            if generation == self._generation:
                self._clear_local()
                await self._notify_signed_out()
            raise

    async def _exchange(self, refresh_token: str) -> Dict[str, Any]:
        generation = self._generation
        with self._loading():
            data = await self.api.request(
                "POST", REFRESH_PATH, json={"refreshToken": refresh_token},
                authenticated=False, fallback_message="Failed to refresh token",
            )

        if generation != self._generation:
            logger.info("Discarding refresh result for a session that ended while it was in flight")
            raise AuthenticationError("Session changed during token refresh")

        access_token = data.get("accessToken")
        if not access_token:
            raise AuthenticationError("Failed to refresh token")

        self.session.access_token = access_token
        self.session.refresh_token = data.get("refreshToken") or refresh_token
        if data.get("user") is not None:
            self.session.user = data["user"]
        self.session.state = SessionState.AUTHENTICATED
        self._persist()
        return data

    async def _public_post(self, path: str, payload: Dict[str, Any], fallback_message: str) -> Dict[str, Any]:
        with self._loading():
            return await self.api.request(
                "POST", path, json=payload, authenticated=False, fallback_message=fallback_message
            )

    @contextmanager
    def _loading(self) -> Iterator[None]:
        previous = self.session.loading
        self.session.loading = True
        try:
            yield
        finally:
            self.session.loading = previous

    def _persist(self) -> None:
        self.storage.update({
            ACCESS_TOKEN_KEY: self.session.access_token,
            REFRESH_TOKEN_KEY: self.session.refresh_token,
            USER_ID_KEY: self.session.user_id,
        })

    def _session_payload(self) -> Dict[str, Any]:
        payload = {"success": True, "accessToken": self.session.access_token, "user": self.session.user}
        if self.session.refresh_token:
            payload["refreshToken"] = self.session.refresh_token
        return payload

    def _clear_local(self) -> None:
        self._generation += 1
        self.session.clear()
        self.storage.clear()

    async def _notify_signed_out(self) -> None:
        if self._on_signed_out is None:
            return
        result = self._on_signed_out()
        if inspect.isawaitable(result):
            await result
