from typing import Any, Dict, Generator, Optional
import logging

import httpx

from ..core.exceptions import RequestTimeoutError, TransportError, error_from_response
from .session import Session

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    """Attach the session's current access token to each outgoing request."""

    def __init__(self, session: Session):
        self.session = session

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self.session.access_token
        if token and "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request


class ApiClient:
    """JSON API client bound to one session.

    Error responses become taxonomy errors carrying the server's message, or
    ``fallback_message`` when the body has none.
    """

    def __init__(
        self,
        session: Session,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            auth=BearerAuth(session),
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        fallback_message: str = "Request failed",
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"json": json, "params": params}
        if not authenticated:
            kwargs["auth"] = None

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e!r}")
            raise RequestTimeoutError(f"{fallback_message}: request timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise TransportError(f"{fallback_message}: network error") from e

        body = _json_body(response)
        if response.is_error:
            raise error_from_response(response.status_code, body, fallback_message)
        return body or {}

    async def aclose(self) -> None:
        await self._client.aclose()


def _json_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    if not response.content:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else {"data": body}
