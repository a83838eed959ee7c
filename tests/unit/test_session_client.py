"""Unit tests for Session and SessionClient."""

import asyncio

import httpx
import pytest

from reviewsync.models.config import ServerConfig, SessionConfig
from reviewsync.services.exceptions import AuthExpired, TransportError
from reviewsync.services.session import CSRF_HEADER, Session, SessionClient


BASE_URL = "https://sf.example.com/"
UPSERT_PATH = "SuccessFactors_API/odata/v2/upsert"


class FakeBackend:
    """Scriptable backend: counts token fetches and records mutating calls."""

    def __init__(self, post_statuses=None, token_status=200):
        self.token_fetches = 0
        self.token_status = token_status
        self.post_statuses = list(post_statuses or [])
        self.posts = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user-api/currentUser":
            self.token_fetches += 1
            # Yield so concurrent callers can pile up behind the fetch.
            await asyncio.sleep(0.01)
            if self.token_status != 200:
                return httpx.Response(self.token_status)
            token = f"tok-{self.token_fetches}"
            return httpx.Response(200, headers={CSRF_HEADER: token}, json={"name": "mgr01"})

        if request.method == "POST":
            self.posts.append(request.headers.get(CSRF_HEADER))
            status = self.post_statuses.pop(0) if self.post_statuses else 200
            if status == 200:
                return httpx.Response(200, json={"d": [{"status": "OK"}]})
            return httpx.Response(status, json={"error": {"code": "X", "message": {"value": "denied"}}})

        return httpx.Response(200, json={"d": {"results": []}})


def make_client(backend: FakeBackend, session: Session = None, **session_config) -> SessionClient:
    return SessionClient(
        ServerConfig(base_url=BASE_URL),
        SessionConfig(**session_config),
        session=session,
        transport=httpx.MockTransport(backend.handler),
    )


class TestSession:
    """Test the CSRF session state object."""

    @pytest.mark.asyncio
    async def test_obtain_caches_token(self):
        """Test a fetched token is cached and reused."""
        session = Session()
        calls = []

        async def fetcher():
            calls.append(1)
            return "abc"

        assert await session.obtain(fetcher, wait_timeout=1.0) == "abc"
        assert await session.obtain(fetcher, wait_timeout=1.0) == "abc"
        assert len(calls) == 1
        assert session.cached_token == "abc"

    @pytest.mark.asyncio
    async def test_obtain_times_out(self):
        """Test waiting on a stuck fetch gives up after the timeout."""
        session = Session()

        async def fetcher():
            await asyncio.sleep(5)
            return "late"

        assert await session.obtain(fetcher, wait_timeout=0.01) is None
        assert session.fetch_in_flight
        session._inflight.cancel()

    @pytest.mark.asyncio
    async def test_failed_fetch_not_cached(self):
        """Test an empty fetch result leaves the cache empty."""
        session = Session()

        async def fetcher():
            return None

        assert await session.obtain(fetcher, wait_timeout=1.0) is None
        assert session.cached_token is None
        assert not session.fetch_in_flight

    def test_invalidate_only_matching_token(self):
        """Test invalidating a stale token keeps a fresher cached one."""
        session = Session()
        session.cached_token = "fresh"

        session.invalidate("stale")
        assert session.cached_token == "fresh"

        session.invalidate("fresh")
        assert session.cached_token is None

    def test_reset(self):
        """Test reset clears the cache."""
        session = Session()
        session.cached_token = "abc"

        session.reset()

        assert session.cached_token is None
        assert not session.fetch_in_flight


class TestSessionClient:
    """Test CSRF handling in SessionClient.request."""

    def test_client_initialization(self):
        """Test timeouts come from the session config."""
        client = make_client(FakeBackend(), connect_timeout=5.0, read_timeout=30.0)

        assert client.timeout.connect == 5.0
        assert client.timeout.read == 30.0
        assert client.odata_path("FormFolder") == "SuccessFactors_API/odata/v2/FormFolder"

    @pytest.mark.asyncio
    async def test_get_does_not_fetch_token(self):
        """Test reads go out without a CSRF token."""
        backend = FakeBackend()

        async with make_client(backend) as client:
            response = await client.request("GET", "SuccessFactors_API/odata/v2/FormFolder")

        assert response.status_code == 200
        assert backend.token_fetches == 0

    @pytest.mark.asyncio
    async def test_post_carries_token(self):
        """Test a mutating request fetches and attaches the token."""
        backend = FakeBackend()

        async with make_client(backend) as client:
            await client.request("POST", UPSERT_PATH, json=[{}])

        assert backend.token_fetches == 1
        assert backend.posts == ["tok-1"]

    @pytest.mark.asyncio
    async def test_concurrent_posts_share_one_token_fetch(self):
        """Test two back-to-back mutating requests trigger exactly one token fetch."""
        backend = FakeBackend()

        async with make_client(backend) as client:
            await asyncio.gather(
                client.request("POST", UPSERT_PATH, json=[{"n": 1}]),
                client.request("POST", UPSERT_PATH, json=[{"n": 2}]),
            )

        assert backend.token_fetches == 1
        assert backend.posts == ["tok-1", "tok-1"]

    @pytest.mark.asyncio
    async def test_403_retried_once_with_fresh_token(self):
        """Test a single 403 refreshes the token and succeeds on retry."""
        backend = FakeBackend(post_statuses=[403, 200])

        async with make_client(backend) as client:
            response = await client.request("POST", UPSERT_PATH, json=[{}])

        assert response.status_code == 200
        assert backend.posts == ["tok-1", "tok-2"]
        assert backend.token_fetches == 2

    @pytest.mark.asyncio
    async def test_retry_bound(self):
        """Test two consecutive 403s raise AuthExpired after exactly one retry."""
        backend = FakeBackend(post_statuses=[403, 403, 403])

        async with make_client(backend) as client:
            with pytest.raises(AuthExpired):
                await client.request("POST", UPSERT_PATH, json=[{}])

        assert len(backend.posts) == 2

    @pytest.mark.asyncio
    async def test_401_not_retried(self):
        """Test an unauthenticated session fails immediately."""
        backend = FakeBackend(post_statuses=[401])

        async with make_client(backend) as client:
            with pytest.raises(AuthExpired):
                await client.request("POST", UPSERT_PATH, json=[{}])

        assert len(backend.posts) == 1

    @pytest.mark.asyncio
    async def test_token_fetch_failure(self):
        """Test a failing token endpoint surfaces AuthExpired without sending the request."""
        backend = FakeBackend(token_status=500)

        async with make_client(backend) as client:
            with pytest.raises(AuthExpired):
                await client.request("POST", UPSERT_PATH, json=[{}])

        assert backend.posts == []

    @pytest.mark.asyncio
    async def test_http_error_parsed(self):
        """Test non-auth HTTP errors carry the OData error code and message."""
        backend = FakeBackend(post_statuses=[500])

        async with make_client(backend) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.request("POST", UPSERT_PATH, json=[{}])

        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "X"
        assert exc_info.value.message == "denied"
        assert len(backend.posts) == 1

    @pytest.mark.asyncio
    async def test_redirect_is_transport_error(self):
        """Test a redirect to a login page is raised instead of returned."""
        def handler(request):
            return httpx.Response(302, headers={"location": "/login"}, text="<html>login</html>")

        client = SessionClient(
            ServerConfig(base_url=BASE_URL),
            transport=httpx.MockTransport(handler),
        )

        async with client:
            with pytest.raises(TransportError) as exc_info:
                await client.request("GET", "SuccessFactors_API/odata/v2/FormFolder")

        assert exc_info.value.status_code == 302
        assert "/login" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_failure(self):
        """Test connection errors become TransportError without retry."""
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = SessionClient(
            ServerConfig(base_url=BASE_URL),
            transport=httpx.MockTransport(handler),
        )

        async with client:
            with pytest.raises(TransportError) as exc_info:
                await client.request("GET", "SuccessFactors_API/odata/v2/FormFolder")

        assert exc_info.value.status_code is None
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_shared_session_across_clients(self):
        """Test clients sharing a Session reuse its cached token."""
        backend = FakeBackend()
        session = Session()

        async with make_client(backend, session=session) as first:
            await first.request("POST", UPSERT_PATH, json=[{}])
        async with make_client(backend, session=session) as second:
            await second.request("POST", UPSERT_PATH, json=[{}])

        assert backend.token_fetches == 1

    @pytest.mark.asyncio
    async def test_prefetch_token(self):
        """Test the cache can be warmed explicitly."""
        backend = FakeBackend()

        async with make_client(backend) as client:
            assert await client.prefetch_token() == "tok-1"
            await client.request("POST", UPSERT_PATH, json=[{}])

        assert backend.token_fetches == 1
