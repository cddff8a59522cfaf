"""
Home Automation Platform Client.

The engine consumes the platform through two narrow async interfaces:
reading entity state and invoking a service. HassClient implements both
over the REST API with aiohttp; anything satisfying HomeAssistantAPI
(e.g. MockHomeAssistant) can be passed instead.

Usage:

    async with HassClient(base_url="http://homeassistant.local:8123", token=...) as hass:
        states = await hass.read_states()
        await hass.invoke_service("light", "turn_on", {"entity_id": "light.desk"})
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
import structlog

from aurora_sync.core.config import HassConfig
from aurora_sync.core.exceptions import UpstreamError

logger = structlog.get_logger()

EntityState = Dict[str, Any]  # {"entity_id", "state", "attributes", ...}


class HomeAssistantAPI(Protocol):
    """State-read and service-invoke interfaces used by the engine."""

    async def read_state(self, entity_id: str) -> Optional[EntityState]:
        ...

    async def read_states(self) -> List[EntityState]:
        ...

    async def invoke_service(self, domain: str, service: str, payload: Dict[str, Any]) -> None:
        ...


class HassClient:
    """
    Async REST client for the home automation platform.

    Invoking a service clears the cached state listing so the next
    read_states() call observes the change.
    """

    def __init__(
        self,
        config: Optional[HassConfig] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or HassConfig()
        self.base_url = (base_url or self.config.base_url).rstrip("/")
        self.token = token if token is not None else self.config.token
        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = None
        self._states_cache: Optional[List[EntityState]] = None

    async def __aenter__(self) -> "HassClient":
        if self._external_session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_s)
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._external_session is not None:
            return self._external_session
        if self._session is None:
            raise RuntimeError(
                "ClientSession not initialised. Use 'async with HassClient(...)' "
                "or pass an existing aiohttp.ClientSession via session=."
            )
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def read_state(self, entity_id: str) -> Optional[EntityState]:
        url = f"{self.base_url}/api/states/{entity_id}"
        try:
            async with self.session.get(url, headers=self._headers()) as resp:
                if resp.status == 404:
                    return None
                resp.raise_for_status()
                return await resp.json()
        except aiohttp.ClientResponseError as e:
            raise UpstreamError("read_state", e.message, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError("read_state", str(e) or type(e).__name__) from e

    async def read_states(self) -> List[EntityState]:
        if self._states_cache is not None:
            return list(self._states_cache)

        url = f"{self.base_url}/api/states"
        try:
            async with self.session.get(url, headers=self._headers()) as resp:
                resp.raise_for_status()
                states = await resp.json()
        except aiohttp.ClientResponseError as e:
            raise UpstreamError("read_states", e.message, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError("read_states", str(e) or type(e).__name__) from e

        self._states_cache = list(states)
        return list(states)

    async def invoke_service(self, domain: str, service: str, payload: Dict[str, Any]) -> None:
        url = f"{self.base_url}/api/services/{domain}/{service}"
        self._states_cache = None
        try:
            async with self.session.post(url, headers=self._headers(), json=payload) as resp:
                resp.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise UpstreamError(f"{domain}.{service}", e.message, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"{domain}.{service}", str(e) or type(e).__name__) from e

    def invalidate_cache(self) -> None:
        self._states_cache = None
