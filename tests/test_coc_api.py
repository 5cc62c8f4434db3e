"""Tests for the Clash of Clans provider client (httpx MockTransport, no network)."""

import httpx
import pytest

from warcollector.etl.base import (
    ProviderForbiddenError,
    ProviderUnavailableError,
    ProviderUnexpectedError,
)
from warcollector.etl.coc_api import ClashOfClansProvider, encode_tag, normalize_league_tag


def scripted_transport(responses):
    """Serve the given responses in order, recording each request."""
    requests = []
    queue = list(responses)

    def handler(request: httpx.Request):
        requests.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.MockTransport(handler), requests


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def make_provider(responses, max_attempts=3):
    transport, requests = scripted_transport(responses)
    sleep = SleepRecorder()
    provider = ClashOfClansProvider(
        token="test-token",
        base_url="https://api.example.test/v1",
        max_attempts=max_attempts,
        base_delay=1.0,
        timeout=5.0,
        transport=transport,
        sleep=sleep,
    )
    return provider, requests, sleep


class TestTagEncoding:

    def test_hash_encoded(self):
        assert encode_tag("#2YGUQGY90") == "%232YGUQGY90"

    def test_league_tag_normalized(self):
        assert normalize_league_tag("8QJ2") == "#8QJ2"
        assert normalize_league_tag("#8QJ2") == "#8QJ2"
        assert normalize_league_tag("##8QJ2") == "#8QJ2"


class TestProviderConstruction:

    def test_missing_token_raises(self):
        with pytest.raises(ValueError):
            ClashOfClansProvider(token="")


class TestRetryBehaviour:

    @pytest.mark.asyncio
    async def test_ok_returns_payload_with_auth(self):
        provider, requests, sleep = make_provider([httpx.Response(200, json={"state": "inWar"})])
        data = await provider.fetch_current_match("#2YGUQGY90")
        await provider.close()

        assert data == {"state": "inWar"}
        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer test-token"
        assert str(requests[0].url).endswith("/v1/clans/%232YGUQGY90/currentwar")
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_not_found_is_absent(self):
        provider, requests, sleep = make_provider([httpx.Response(404, json={"reason": "notFound"})])
        assert await provider.fetch_current_league_group("#2YGUQGY90") is None
        assert len(requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_then_ok(self):
        """MAX-1 unavailable responses followed by OK returns the OK payload."""
        provider, requests, sleep = make_provider(
            [
                httpx.Response(503),
                httpx.Response(503),
                httpx.Response(200, json={"season": "2025-12"}),
            ]
        )
        data = await provider.fetch_current_league_group("#2YGUQGY90")
        assert data == {"season": "2025-12"}
        assert len(requests) == 3
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_unavailable_exhausts(self):
        """MAX consecutive unavailable responses raise a transient error."""
        provider, requests, sleep = make_provider([httpx.Response(503)] * 3)
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await provider.fetch_current_match("#2YGUQGY90")
        assert exc_info.value.attempts == 3
        assert len(requests) == 3
        # no wait after the final attempt
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limited_is_retried(self):
        provider, requests, _ = make_provider([httpx.Response(429), httpx.Response(200, json={})])
        assert await provider.fetch_current_match("#2YGUQGY90") == {}
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_forbidden_raises_immediately(self):
        provider, requests, sleep = make_provider([httpx.Response(403), httpx.Response(200, json={})])
        with pytest.raises(ProviderForbiddenError):
            await provider.fetch_current_match("#2YGUQGY90")
        assert len(requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_status_carries_body(self):
        provider, requests, _ = make_provider([httpx.Response(500, text="boom")])
        with pytest.raises(ProviderUnexpectedError) as exc_info:
            await provider.fetch_current_match("#2YGUQGY90")
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "boom"
        assert "Unexpected status 500" in str(exc_info.value)
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        provider, requests, sleep = make_provider(
            [httpx.ReadTimeout("slow"), httpx.Response(200, json={"ok": True})]
        )
        assert await provider.fetch_current_match("#2YGUQGY90") == {"ok": True}
        assert sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust(self):
        provider, _, _ = make_provider([httpx.ConnectError("down")] * 2, max_attempts=2)
        with pytest.raises(ProviderUnavailableError):
            await provider.fetch_current_match("#2YGUQGY90")

    @pytest.mark.asyncio
    async def test_league_war_path(self):
        provider, requests, _ = make_provider([httpx.Response(200, json={"state": "warEnded"})])
        await provider.fetch_league_match("8QJ2RPLUV")
        assert str(requests[0].url).endswith("/v1/clanwarleagues/wars/%238QJ2RPLUV")

    @pytest.mark.asyncio
    async def test_non_json_ok_body_is_unexpected(self):
        """A gateway page served with 200 is an error, not a crash, and is not retried."""
        provider, requests, sleep = make_provider([httpx.Response(200, text="<html>gateway</html>")])
        with pytest.raises(ProviderUnexpectedError) as exc_info:
            await provider.fetch_league_match("#W1")
        assert exc_info.value.status_code == 200
        assert exc_info.value.body == "<html>gateway</html>"
        assert len(requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_non_object_json_body_is_unexpected(self):
        provider, _, _ = make_provider([httpx.Response(200, json=[1, 2])])
        with pytest.raises(ProviderUnexpectedError):
            await provider.fetch_current_match("#2YGUQGY90")


class TestCheckConnection:

    @pytest.mark.asyncio
    async def test_ok(self):
        provider, _, _ = make_provider(
            [httpx.Response(200, json={"state": "inWar", "clan": {"name": "Us"}, "opponent": {"name": "Them"}})]
        )
        status = await provider.check_connection("#2YGUQGY90")
        assert status == {"status": "ok", "state": "inWar", "clan": "Us", "opponent": "Them"}

    @pytest.mark.asyncio
    async def test_forbidden_reported_not_raised(self):
        provider, _, _ = make_provider([httpx.Response(403)])
        status = await provider.check_connection("#2YGUQGY90")
        assert status["status"] == "forbidden"
