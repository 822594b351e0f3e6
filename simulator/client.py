# file: simulator/client.py
"""
X-Plane 12 local REST API client (http://localhost:8086/api/v3).

Workflow for a dataref write
----------------------------
1. GET   /datarefs?filter[name]=<path>  -> resolve the path to a numeric session handle
2. PATCH /datarefs/{id}/value           -> write {"data": <int>}

Handles are only valid for the lifetime of one simulator process, so they are
cached in a HandleCache that is cleared on every connection transition. The
cache is stamped with an epoch: a lookup that was in flight across a clear is
never stored or returned, because its handle belongs to the previous session.

Liveness
--------
`connect()` starts a background probe task (GET /datarefs?limit=1 every
`probe_interval` seconds). `connection_changed` fires once per
reachable/unreachable transition, not on every probe. `disconnect()` cancels
the probe task as a unit.

Errors
------
Every failure to reach the simulator, non-2xx response, malformed body or
unknown dataref surfaces as ConnectivityError. Nothing here retries.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from catalogue.models import ResolvedFailure
from config.settings import SimulatorSettings
from signals import Channel

logger = logging.getLogger(__name__)


class ConnectivityError(Exception):
    """The simulator is unreachable, rejected a request, or does not know a dataref."""


# ---------------------------
# Wire shapes
# ---------------------------

class DatarefInfo(BaseModel):
    id: int
    name: str
    value_type: Optional[str] = None
    is_writable: bool = True


class DatarefListResponse(BaseModel):
    data: List[DatarefInfo] = []


# ---------------------------
# Session handle cache
# ---------------------------

class HandleCache:
    """
    name -> handle map valid for one simulator session.

    Names compare case-insensitively. `clear()` bumps the epoch; `store()` with a
    stale epoch is refused.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    @property
    def epoch(self) -> int:
        return self._epoch

    def get(self, name: str) -> Optional[int]:
        with self._lock:
            return self._handles.get(name.lower())

    def store(self, name: str, handle: int, epoch: int) -> bool:
        with self._lock:
            if epoch != self._epoch:
                return False
            self._handles[name.lower()] = handle
            return True

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()
            self._epoch += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.lower() in self._handles


# ---------------------------
# Client
# ---------------------------

class SimulatorClient:
    """
    Public API:
        - connect(settings=None) -> bool / disconnect() / probe() -> bool
        - resolve(name) -> int
        - write(name, value)
        - apply(failure) / revert(failure)
        - update_settings(settings)
    """

    def __init__(
        self,
        settings: Optional[SimulatorSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or SimulatorSettings()
        self._transport = transport
        self._http = self._make_http()
        self.cache = HandleCache()
        self.connection_changed = Channel("connection_changed")
        self._connected = False
        self._probe_task: Optional[asyncio.Task] = None

    def _make_http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
            transport=self._transport,
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def update_settings(self, settings: SimulatorSettings) -> None:
        """Swap settings. A new endpoint or timeout rebuilds the HTTP client and drops all handles."""
        old = self.settings
        self.settings = settings
        if (old.base_url, old.timeout) != (settings.base_url, settings.timeout):
            await self._http.aclose()
            self._http = self._make_http()
            self.cache.clear()

    # -------------------------
    # Connection lifecycle
    # -------------------------
    async def connect(self, settings: Optional[SimulatorSettings] = None) -> bool:
        """Reset the session, (re)start periodic probing and probe once right away."""
        if settings is not None:
            await self.update_settings(settings)
        self.cache.clear()
        await self._cancel_probe()
        self._probe_task = asyncio.create_task(self._probe_loop(), name="simulator-probe")
        return await self.probe()

    async def disconnect(self) -> None:
        await self._cancel_probe()
        self._set_connected(False)
        self.cache.clear()

    async def aclose(self) -> None:
        await self.disconnect()
        await self._http.aclose()

    async def __aenter__(self) -> "SimulatorClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def probe(self) -> bool:
        try:
            resp = await self._http.get("/datarefs", params={"limit": 1})
            ok = resp.is_success
        except httpx.HTTPError as exc:
            logger.debug("Simulator probe failed: %s", exc)
            ok = False
        self._set_connected(ok)
        return ok

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.probe_interval)
            await self.probe()

    async def _cancel_probe(self) -> None:
        task, self._probe_task = self._probe_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        # A transition means a different simulator process (or none): handles are void.
        self.cache.clear()
        if connected:
            logger.info("Simulator reachable at %s", self.settings.base_url)
        else:
            logger.warning("Simulator unreachable at %s", self.settings.base_url)
        self.connection_changed.emit(connected)

    # -------------------------
    # Dataref access
    # -------------------------
    async def resolve(self, name: str) -> int:
        handle = self.cache.get(name)
        if handle is not None:
            return handle

        epoch = self.cache.epoch
        info = await self._lookup(name)
        if self.cache.store(name, info.id, epoch):
            return info.id

        # The session changed under the lookup; its handle belongs to the old process.
        epoch = self.cache.epoch
        info = await self._lookup(name)
        if self.cache.store(name, info.id, epoch):
            return info.id
        raise ConnectivityError(f"Simulator session changed while resolving dataref '{name}'")

    async def _lookup(self, name: str) -> DatarefInfo:
        try:
            resp = await self._http.get("/datarefs", params={"filter[name]": name})
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Failed to reach simulator looking up dataref '{name}'") from exc

        if not resp.is_success:
            raise ConnectivityError(f"Simulator returned {resp.status_code} looking up dataref '{name}'")

        try:
            listing = DatarefListResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise ConnectivityError(f"Malformed response looking up dataref '{name}'") from exc

        key = name.lower()
        entry = next((d for d in listing.data if d.name.lower() == key), None)
        if entry is None:
            raise ConnectivityError(f"Dataref not found in simulator: '{name}'")
        if not entry.is_writable:
            logger.debug("Dataref %s (id=%s) reports is_writable=false", name, entry.id)
        return entry

    async def write(self, name: str, value: int) -> None:
        handle = await self.resolve(name)
        try:
            resp = await self._http.patch(f"/datarefs/{handle}/value", json={"data": int(value)})
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Failed to write dataref '{name}' (id={handle})") from exc
        if not resp.is_success:
            raise ConnectivityError(
                f"Simulator returned {resp.status_code} writing dataref '{name}' (id={handle})"
            )
        logger.debug("Wrote %s=%d (id=%d)", name, value, handle)

    # -------------------------
    # Failure-level operations
    # -------------------------
    async def apply(self, failure: ResolvedFailure) -> None:
        """Write each action's value in order. Not transactional: earlier writes stay on error."""
        for action in failure.actions:
            await self.write(action.dataref, action.value)

    async def revert(self, failure: ResolvedFailure) -> None:
        for action in failure.actions:
            await self.write(action.dataref, 0)
