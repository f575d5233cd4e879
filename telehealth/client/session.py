from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.security import UserRole


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass
class Session:
    """Client-local view of who is signed in.

    A cache of what the server last said; the server stays authoritative and
    the controller reconciles on bootstrap. One instance per controller.
    """

    user: Optional[Dict[str, Any]] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    loading: bool = False
    state: SessionState = SessionState.ANONYMOUS

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.access_token is not None

    @property
    def role(self) -> Optional[UserRole]:
        if not self.user or not self.user.get("role"):
            return None
        return UserRole(self.user["role"])

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR

    @property
    def user_id(self) -> Optional[str]:
        if not self.user:
            return None
        user_id = self.user.get("id", self.user.get("_id"))
        return str(user_id) if user_id is not None else None

    def clear(self) -> None:
        self.user = None
        self.access_token = None
        self.refresh_token = None
        self.state = SessionState.ANONYMOUS
