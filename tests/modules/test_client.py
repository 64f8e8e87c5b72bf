"""Tests for the HTTP challenge client and the dry-run executor."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from autovote.engine.config import ApiConfig, AppConfig, RunConfig
from autovote.modules.client import DryRunActionExecutor, HttpChallengeClient, make_action_executor
from autovote.shared.errors import ApiError
from autovote.shared.models import Challenge

CHALLENGES = [
    {
        "id": 1,
        "type": "flash",
        "start_time": 100,
        "close_time": 9000,
        "current_exposure": 40,
        "title": "Flash",
    },
    {
        "id": 2,
        "start_time": 100,
        "close_time": 9000,
        "member": {"ranking": {"exposure": {"exposure_factor": 70}}, "boost": {"state": "AVAILABLE", "timeout": 8000}},
    },
    {"id": 3},  # malformed: no close_time
]


class FakeService:
    """Minimal challenge service recording what it receives."""

    def __init__(self):
        self.requests: list[tuple[str, str, dict]] = []
        self.status = 200
        self.payload = {"challenges": CHALLENGES}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/challenges/active", self.active)
        app.router.add_post("/api/challenges/{id}/votes", self.vote)
        app.router.add_post("/api/challenges/{id}/boost", self.boost)
        return app

    async def active(self, request):
        self.requests.append(("active", request.headers.get("Authorization", ""), {}))
        if self.status != 200:
            return web.Response(status=self.status)
        return web.json_response(self.payload)

    async def vote(self, request):
        body = await request.json()
        self.requests.append(("vote", request.match_info["id"], body))
        return web.Response(status=self.status)

    async def boost(self, request):
        self.requests.append(("boost", request.match_info["id"], {}))
        return web.Response(status=self.status)


@pytest.fixture
def service():
    return FakeService()


@pytest_asyncio.fixture
async def client(service):
    server = test_utils.TestServer(service.app())
    await server.start_server()
    c = HttpChallengeClient(ApiConfig(base_url=str(server.make_url("/api")), token="tok", timeout_s=5))
    yield c
    await c.close()
    await server.close()


def _challenge(id="2") -> Challenge:
    return Challenge(id=id, type="default", start_time=0, close_time=1, current_exposure=0)


class TestFetchActive:
    async def test_parses_flat_and_nested_and_skips_malformed(self, client):
        challenges = await client.fetch_active()
        assert [c.id for c in challenges] == ["1", "2"]
        assert challenges[0].is_flash
        assert challenges[1].current_exposure == 70
        assert challenges[1].boost_available

    async def test_bearer_token_sent(self, client, service):
        await client.fetch_active()
        assert service.requests[0][1] == "Bearer tok"

    async def test_credential_overrides_token(self, client, service):
        await client.fetch_active("other")
        assert service.requests[0][1] == "Bearer other"

    async def test_bare_list_payload(self, client, service):
        service.payload = CHALLENGES[:1]
        assert len(await client.fetch_active()) == 1

    async def test_http_error_raises(self, client, service):
        service.status = 503
        with pytest.raises(ApiError) as exc:
            await client.fetch_active()
        assert exc.value.status == 503

    async def test_unexpected_payload_raises(self, client, service):
        service.payload = "nope"
        with pytest.raises(ApiError, match="Unexpected"):
            await client.fetch_active()

    async def test_unreachable_raises(self):
        c = HttpChallengeClient(ApiConfig(base_url="http://127.0.0.1:9", timeout_s=2))
        try:
            with pytest.raises(ApiError):
                await c.fetch_active()
        finally:
            await c.close()


class TestActions:
    async def test_vote_posts_target(self, client, service):
        assert await client.vote(_challenge(), 80)
        assert service.requests[-1] == ("vote", "2", {"target_exposure": 80})

    async def test_boost(self, client, service):
        assert await client.boost(_challenge("5"))
        assert service.requests[-1] == ("boost", "5", {})

    async def test_rejected_action_returns_false(self, client, service):
        service.status = 409
        assert await client.vote(_challenge(), 100) is False
        assert await client.boost(_challenge()) is False


class TestDryRun:
    async def test_records_and_succeeds(self):
        executor = DryRunActionExecutor()
        assert await executor.vote(_challenge("1"), 100)
        assert await executor.boost(_challenge("2"))
        assert executor.actions == [("vote", "1", 100), ("boost", "2", None)]

    def test_factory_selects_dry_run(self):
        client = HttpChallengeClient(ApiConfig())
        assert isinstance(make_action_executor(AppConfig(run=RunConfig(dry_run=True)), client), DryRunActionExecutor)
        assert make_action_executor(AppConfig(), client) is client
