"""Clash of Clans API data provider implementation."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from warcollector.config import get_settings
from warcollector.etl.base import (
    ProviderForbiddenError,
    ProviderUnavailableError,
    ProviderUnexpectedError,
    ResponseClass,
    WarDataProvider,
    classify_status,
)
from warcollector.etl.retry import INITIAL_STATE, RetryPhase, backoff_delay, next_state
from warcollector.telemetry import record_provider_error, record_provider_request

logger = logging.getLogger(__name__)

PROVIDER_NAME = "coc_api"


def encode_tag(tag: str) -> str:
    """URL-encode a clan or war tag ('#' becomes '%23')."""
    return quote(tag, safe="")


def normalize_league_tag(tag: str) -> str:
    """League war tags come with or without '#'. Return them with exactly one."""
    return "#" + tag.lstrip("#")


class ClashOfClansProvider(WarDataProvider):
    """Clash of Clans API client with bounded retry and exponential backoff.

    404 is reported as absent (None), 403 aborts immediately, 503/429 and
    network failures are retried up to max_attempts, anything else aborts
    with the status code and body.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        token = token if token is not None else settings.COC_API_TOKEN
        if not token:
            raise ValueError("COC_API_TOKEN is not configured")

        self.base_url = (base_url or settings.COC_API_BASE_URL).rstrip("/")
        self.max_attempts = max_attempts or settings.PROVIDER_MAX_ATTEMPTS
        self.base_delay = settings.PROVIDER_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def _request(self, path: str, endpoint: str) -> Optional[dict]:
        """
        GET `path`, driving the retry state machine until a terminal phase.

        Args:
            path: Path under the API base URL (tags already encoded)
            endpoint: Low-cardinality label for telemetry
        """
        url = f"{self.base_url}{path}"
        state = INITIAL_STATE
        last_error = ""

        while True:
            start_time = time.time()
            status_code = 0
            response = None
            try:
                response = await self.client.get(url)
                status_code = response.status_code
                outcome = classify_status(status_code)
            except httpx.TimeoutException as e:
                outcome = ResponseClass.UNAVAILABLE
                last_error = f"timeout: {e}"
                record_provider_error(PROVIDER_NAME, endpoint, "timeout")
            except httpx.RequestError as e:
                outcome = ResponseClass.UNAVAILABLE
                last_error = f"request error: {e}"
                record_provider_error(PROVIDER_NAME, endpoint, "request_error")

            latency_ms = (time.time() - start_time) * 1000
            record_provider_request(PROVIDER_NAME, endpoint, status_code, latency_ms)

            attempt = state.attempt
            state = next_state(state, outcome, self.max_attempts)

            if state.phase is RetryPhase.SUCCESS:
                try:
                    data = response.json()
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    record_provider_error(PROVIDER_NAME, endpoint, "invalid_body")
                    logger.error(f"[PROVIDER] {endpoint}: status 200 without a JSON object body")
                    raise ProviderUnexpectedError(status_code, response.text)
                return data

            if state.phase is RetryPhase.ABSENT:
                logger.info(f"[PROVIDER] {endpoint}: not found or private ({path})")
                return None

            if state.phase is RetryPhase.TERMINAL_FAILURE:
                if outcome is ResponseClass.FORBIDDEN:
                    record_provider_error(PROVIDER_NAME, endpoint, "forbidden")
                    logger.error(f"[PROVIDER] {endpoint}: access denied, check COC_API_TOKEN and IP allow-list")
                    raise ProviderForbiddenError(f"Access denied by provider for {endpoint}")
                record_provider_error(PROVIDER_NAME, endpoint, f"http_{status_code}")
                logger.error(f"[PROVIDER] {endpoint}: unexpected status {status_code}")
                raise ProviderUnexpectedError(status_code, response.text)

            if response is not None:
                record_provider_error(PROVIDER_NAME, endpoint, "unavailable")
                last_error = f"status {status_code}"

            if state.phase is RetryPhase.TRANSIENT_FAILURE:
                attempts = state.attempt + 1
                logger.error(f"[PROVIDER] {endpoint}: unavailable after {attempts} attempts ({last_error})")
                raise ProviderUnavailableError(
                    f"Provider unavailable for {endpoint} after {attempts} attempts: {last_error}",
                    attempts=attempts,
                )

            wait_time = backoff_delay(attempt, self.base_delay)
            logger.warning(
                f"[PROVIDER] {endpoint}: unavailable ({last_error}), "
                f"retry {state.attempt + 1}/{self.max_attempts} in {wait_time:.1f}s"
            )
            await self._sleep(wait_time)

    async def fetch_current_match(self, clan_tag: str) -> Optional[dict]:
        return await self._request(f"/clans/{encode_tag(clan_tag)}/currentwar", "currentwar")

    async def fetch_current_league_group(self, clan_tag: str) -> Optional[dict]:
        return await self._request(
            f"/clans/{encode_tag(clan_tag)}/currentwar/leaguegroup", "leaguegroup"
        )

    async def fetch_league_match(self, war_tag: str) -> Optional[dict]:
        return await self._request(
            f"/clanwarleagues/wars/{encode_tag(normalize_league_tag(war_tag))}", "leaguewar"
        )

    async def check_connection(self, clan_tag: str) -> dict:
        """
        Verify credentials and reachability with a current-war fetch.

        Returns a status dict; never raises for provider errors.
        """
        try:
            data = await self.fetch_current_match(clan_tag)
        except ProviderForbiddenError as e:
            return {"status": "forbidden", "error": str(e)}
        except ProviderUnavailableError as e:
            return {"status": "unavailable", "error": str(e), "attempts": e.attempts}
        except ProviderUnexpectedError as e:
            return {"status": "error", "error": str(e), "status_code": e.status_code}

        if data is None:
            return {"status": "ok", "state": None, "detail": "war log private or clan not found"}
        return {
            "status": "ok",
            "state": data.get("state"),
            "clan": (data.get("clan") or {}).get("name"),
            "opponent": (data.get("opponent") or {}).get("name"),
        }

    async def close(self) -> None:
        await self.client.aclose()
