"""Session transport with CSRF token caching and one-shot auth retry."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from reviewsync.models.config import ServerConfig, SessionConfig
from reviewsync.services.exceptions import AuthExpired, TransportError
from reviewsync.utils.logging import get_logger, token_preview
from reviewsync.utils.odata import odata_error


logger = get_logger(__name__)

CSRF_HEADER = "x-csrf-token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "MERGE", "DELETE"})

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
    "X-SF-Session-Verify": "1",
}


class Session:
    """
    Process-wide CSRF state: the cached token and the in-flight fetch.

    Token acquisition is single-flight: while one fetch is running, every
    other caller awaits that same fetch instead of issuing its own.

    Example:
        >>> session = Session()
        >>> token = await session.obtain(fetch_token, wait_timeout=10.0)
    """

    def __init__(self):
        self.cached_token: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def fetch_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def obtain(
        self,
        fetcher: Callable[[], Awaitable[Optional[str]]],
        wait_timeout: float,
    ) -> Optional[str]:
        """
        Return the cached token, fetching it once if needed.

        Args:
            fetcher: Coroutine function that performs the token network call
            wait_timeout: Upper bound in seconds to wait for the fetch

        Returns:
            The token, or None if the fetch failed or the wait timed out
        """
        if self.cached_token:
            return self.cached_token

        if not self.fetch_in_flight:
            self._inflight = asyncio.ensure_future(self._run_fetch(fetcher))
        else:
            logger.debug("csrf_token_fetch_joined")

        try:
            return await asyncio.wait_for(asyncio.shield(self._inflight), timeout=wait_timeout)
        except asyncio.TimeoutError:
            logger.error("csrf_token_wait_timeout", wait_timeout=wait_timeout)
            return None

    async def _run_fetch(self, fetcher: Callable[[], Awaitable[Optional[str]]]) -> Optional[str]:
        token = await fetcher()
        self.cached_token = token or None
        return self.cached_token

    def invalidate(self, token: Optional[str] = None) -> None:
        """
        Drop the cached token.

        When ``token`` is given, the cache is only cleared if it still holds
        that token, so a rejection of a stale token does not discard a fresh
        one acquired by a concurrent request.
        """
        if token is None or token == self.cached_token:
            self.cached_token = None

    def reset(self) -> None:
        """Forget all state (for tests and re-login)."""
        self.cached_token = None
        self._inflight = None


@dataclass
class _PendingRequest:
    """One logical request; ``retried`` guarantees at most one auth retry."""

    method: str
    path: str
    params: Optional[dict[str, Any]] = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    retried: bool = False


class SessionClient:
    """
    HTTP transport bound to the hosting session.

    Session cookies travel automatically with the underlying httpx client;
    this class only manages the CSRF token required by state-changing calls.
    """

    def __init__(
        self,
        server: ServerConfig,
        session_config: Optional[SessionConfig] = None,
        session: Optional[Session] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the session client.

        Args:
            server: Backend connection settings
            session_config: Timeouts (defaults apply when omitted)
            session: Shared CSRF session state (a fresh one when omitted)
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.server = server
        self.session_config = session_config or SessionConfig()
        self.session = session or Session()
        self.timeout = httpx.Timeout(
            connect=self.session_config.connect_timeout,
            read=self.session_config.read_timeout,
            write=10.0,
            pool=10.0,
        )
        self._client = httpx.AsyncClient(
            base_url=str(server.base_url),
            headers=DEFAULT_HEADERS,
            cookies=dict(server.cookies),
            timeout=self.timeout,
            verify=server.verify_tls,
            transport=transport,
        )

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def odata_path(self, resource: str) -> str:
        """Path of an OData resource relative to the base URL."""
        return self.server.odata_path.strip("/") + "/" + resource.lstrip("/")

    async def prefetch_token(self) -> str:
        """Warm the token cache ahead of the first mutating call."""
        return await self._require_token()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Issue a request within the session.

        State-changing methods carry the CSRF token. A 403 on a request that
        has not been retried yet invalidates the token, fetches a fresh one
        and re-issues the request exactly once.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            params: Query parameters
            json: JSON body
            headers: Extra headers

        Returns:
            Successful (2xx) response

        Raises:
            AuthExpired: Token rejected after the retry, unobtainable, or session gone (401)
            TransportError: Any other network or HTTP failure, including redirects
        """
        pending = _PendingRequest(
            method=method.upper(),
            path=path,
            params=params,
            json=json,
            headers=dict(headers or {}),
        )

        token = None
        if pending.method in MUTATING_METHODS:
            token = await self._require_token()

        while True:
            response = await self._send(pending, token)

            if response.status_code == 403:
                if pending.retried:
                    logger.error(
                        "csrf_token_rejected_after_retry",
                        method=pending.method,
                        path=pending.path,
                    )
                    raise AuthExpired(
                        f"{pending.method} {pending.path} rejected with 403 after token refresh"
                    )

                logger.warning(
                    "csrf_token_rejected",
                    method=pending.method,
                    path=pending.path,
                    token=token_preview(token),
                )
                pending.retried = True
                self.session.invalidate(token)
                token = await self._require_token()
                continue

            if response.status_code == 401:
                logger.error("session_unauthenticated", method=pending.method, path=pending.path)
                raise AuthExpired(f"{pending.method} {pending.path} rejected with 401")

            if 300 <= response.status_code < 400:
                # Redirects are not followed; the app router answers expired sessions with a login page.
                logger.error(
                    "http_redirect",
                    method=pending.method,
                    path=pending.path,
                    status_code=response.status_code,
                    location=response.headers.get("location"),
                )
                raise TransportError(
                    f"{pending.method} {pending.path} redirected to "
                    f"{response.headers.get('location') or 'an unknown location'}",
                    status_code=response.status_code,
                )

            if response.is_error:
                raise self._http_error(pending, response)

            return response

    async def _send(self, pending: _PendingRequest, token: Optional[str]) -> httpx.Response:
        headers = dict(pending.headers)
        if token:
            headers[CSRF_HEADER] = token

        logger.debug(
            "http_request",
            method=pending.method,
            path=pending.path,
            retried=pending.retried,
        )

        try:
            return await self._client.request(
                pending.method,
                pending.path,
                params=pending.params,
                json=pending.json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(
                "http_transport_error",
                method=pending.method,
                path=pending.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransportError(str(e) or type(e).__name__) from e

    def _http_error(self, pending: _PendingRequest, response: httpx.Response) -> TransportError:
        try:
            body = response.json()
        except ValueError:
            body = None

        code, message = odata_error(body)
        logger.error(
            "http_error",
            method=pending.method,
            path=pending.path,
            status_code=response.status_code,
            code=code,
            message=message,
        )
        return TransportError(
            message or response.reason_phrase or "HTTP error",
            status_code=response.status_code,
            code=code,
        )

    async def _require_token(self) -> str:
        token = await self.session.obtain(
            self._fetch_token,
            wait_timeout=self.session_config.token_wait_timeout,
        )
        if not token:
            raise AuthExpired("Unable to obtain a CSRF token")
        return token

    async def _fetch_token(self) -> Optional[str]:
        """Fetch a fresh token from the lightweight token endpoint."""
        logger.info("csrf_token_fetch_started", path=self.server.token_path)

        try:
            response = await self._client.get(
                self.server.token_path,
                headers={CSRF_HEADER: "Fetch"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("csrf_token_fetch_failed", error=str(e), error_type=type(e).__name__)
            return None

        token = response.headers.get(CSRF_HEADER)
        if not token or token.lower() == "required":
            logger.error("csrf_token_missing", status_code=response.status_code)
            return None

        logger.info("csrf_token_fetched", token=token_preview(token))
        return token
