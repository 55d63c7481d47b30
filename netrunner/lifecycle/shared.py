from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from netrunner.errors import LauncherError
from netrunner.logger import get_logger
from netrunner.runner.control import LaunchRequest
from netrunner.topology.models import Topology


if TYPE_CHECKING:
    from netrunner.orchestrator import Orchestrator


class SharedNode:
    """
    One running network reused by many callers.

    Reference counted; the first acquire() launches, the last release() tears
    down. Start and stop are serialised by the handle's own lock.
    """

    def __init__(self, orchestrator: Orchestrator, request: LaunchRequest) -> None:
        self._orchestrator = orchestrator
        self._request = request
        self._lock = asyncio.Lock()
        self._refs = 0
        self._launch_id: str | None = None
        self._topology: Topology | None = None
        self.logger = get_logger("shared_node")

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def topology(self) -> Topology | None:
        return self._topology

    async def acquire(self) -> Topology:
        async with self._lock:
            if self._topology is None:
                outcome = await self._orchestrator.launch(self._request)
                if not outcome.is_ok:
                    raise outcome.error
                self._topology = outcome.topology
                self._launch_id = outcome.launch_id
                self.logger.info("shared.started", relay=self._topology.relay.url)
            self._refs += 1
            return self._topology

    async def release(self) -> None:
        async with self._lock:
            if self._refs == 0:
                raise LauncherError("release() without a matching acquire()")
            self._refs -= 1
            if self._refs > 0:
                return
            launch_id, self._launch_id, self._topology = self._launch_id, None, None
            if launch_id is not None:
                await self._orchestrator.teardown(launch_id)
                self.logger.info("shared.stopped", launch_id=launch_id)

    async def __aenter__(self) -> Topology:
        return await self.acquire()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()
