"""Challenge service collaborators: fetching challenges and dispatching actions.

The scheduler depends only on the ChallengeProvider and ActionExecutor
protocols. HttpChallengeClient implements both against the REST API;
DryRunActionExecutor stands in for the action side when nothing should be
sent.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from autovote.engine.config import ApiConfig, AppConfig
from autovote.shared.errors import ApiError
from autovote.shared.models import Challenge

logger = logging.getLogger(__name__)


class ChallengeProvider(Protocol):
    async def fetch_active(self, credential: str | None) -> list[Challenge]: ...


class ActionExecutor(Protocol):
    async def vote(self, challenge: Challenge, target_value: float, credential: str | None) -> bool: ...

    async def boost(self, challenge: Challenge, credential: str | None) -> bool: ...


class HttpChallengeClient:
    """aiohttp client for the challenge service.

    One ClientSession is shared by every request; call ``close()`` when done.
    """

    def __init__(self, config: ApiConfig, session: aiohttp.ClientSession | None = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.config.timeout_s))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, credential: str | None) -> dict[str, str]:
        token = credential or self.config.token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def fetch_active(self, credential: str | None = None) -> list[Challenge]:
        """Fetch the active challenges.

        Raises:
            ApiError: On transport failure, a non-2xx status, or a malformed payload.
        """
        session = await self._get_session()
        url = f"{self.config.base_url}/challenges/active"
        try:
            async with session.get(url, headers=self._headers(credential)) as resp:
                if resp.status >= 300:
                    raise ApiError(f"GET {url} returned HTTP {resp.status}", status=resp.status)
                payload = await resp.json(content_type=None)
        except (TimeoutError, aiohttp.ClientError, ValueError) as e:
            raise ApiError(f"GET {url} failed: {e}") from e

        if isinstance(payload, dict):
            payload = payload.get("challenges", [])
        if not isinstance(payload, list):
            raise ApiError(f"Unexpected challenges payload: {type(payload).__name__}")

        challenges = []
        for item in payload:
            try:
                challenges.append(Challenge.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed challenge entry: {e}")
        return challenges

    async def _post(self, url: str, credential: str | None, payload: dict[str, Any] | None = None) -> bool:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload or {}, headers=self._headers(credential)) as resp:
                if resp.status >= 300:
                    logger.warning(f"POST {url} returned HTTP {resp.status}")
                    return False
                return True
        except (TimeoutError, aiohttp.ClientError) as e:
            logger.warning(f"POST {url} failed: {e}")
            return False

    async def vote(self, challenge: Challenge, target_value: float, credential: str | None = None) -> bool:
        url = f"{self.config.base_url}/challenges/{challenge.id}/votes"
        return await self._post(url, credential, {"target_exposure": target_value})

    async def boost(self, challenge: Challenge, credential: str | None = None) -> bool:
        url = f"{self.config.base_url}/challenges/{challenge.id}/boost"
        return await self._post(url, credential)


@dataclass
class DryRunActionExecutor:
    """Logs the actions it would take and reports success."""

    actions: list[tuple[str, str, float | None]] = field(default_factory=list)

    async def vote(self, challenge: Challenge, target_value: float, credential: str | None = None) -> bool:
        logger.info(f"[dry run] vote on {challenge.id} ({challenge.title}) targeting {target_value}%")
        self.actions.append(("vote", challenge.id, target_value))
        return True

    async def boost(self, challenge: Challenge, credential: str | None = None) -> bool:
        logger.info(f"[dry run] boost {challenge.id} ({challenge.title})")
        self.actions.append(("boost", challenge.id, None))
        return True


def make_action_executor(config: AppConfig, client: HttpChallengeClient) -> ActionExecutor:
    """Pick the action executor once, at construction time."""
    if config.run.dry_run:
        logger.info("Dry run enabled: actions are logged, not sent")
        return DryRunActionExecutor()
    return client
