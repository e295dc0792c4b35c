"""
Sync triggers.

Decides when the sync engine runs: on reconnect, on demand, and on a
fixed interval while online. The engine itself never schedules
anything; concurrent triggers simply join the pass in flight.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable

from ..config import SyncConfig
from .engine import SyncEngine, SyncResult

logger = logging.getLogger(__name__)

ConnectivityProbe = Callable[[], Awaitable[bool]]
ResultCallback = Callable[[SyncResult], None]


class SyncTrigger:
    """Runs sync passes in response to connectivity and time."""

    def __init__(
        self,
        engine: SyncEngine,
        config: SyncConfig | None = None,
        connectivity_probe: ConnectivityProbe | None = None,
    ):
        """Initialize the trigger.

        Args:
            engine: Engine whose passes this trigger starts
            config: Sync configuration (defaults to the engine's)
            connectivity_probe: Async callable returning True when the
                remote is reachable; a DNS lookup of the remote host by default
        """
        self.engine = engine
        self.config = config or engine.config
        self._probe = connectivity_probe or self._resolve_remote_host
        self._online = engine.is_online
        self._sync_task: asyncio.Task[None] | None = None

        # Called with every pass result, e.g. to show a "will retry" banner
        self.on_result: ResultCallback | None = None

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_running(self) -> bool:
        return self._sync_task is not None

    async def set_online(self, online: bool) -> SyncResult | None:
        """Record a connectivity change.

        Going from offline to online starts a pass immediately.

        Returns:
            The result of the pass started by the transition, if any
        """
        was_online = self._online
        self._online = online
        self.engine.set_online(online)

        if online and not was_online:
            logger.info("Connection restored, syncing pending changes")
            return await self.request_sync()
        if not online and was_online:
            logger.info("Connection lost, queuing changes locally")
        return None

    async def request_sync(self) -> SyncResult | None:
        """Run a pass now unless paused or offline.

        Returns:
            The pass result, or None if the pass was skipped
        """
        if self.engine.is_paused:
            logger.debug("Sync requested while paused; skipping")
            return None
        if not self._online:
            logger.debug("Sync requested while offline; skipping")
            return None

        result = await self.engine.sync_all()
        if not result.success:
            logger.warning(f"Sync finished with {result.failed} failures; will retry")
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception as e:
                logger.error(f"Sync result callback failed: {e}")
        return result

    async def check_connectivity(self) -> bool:
        """Probe the remote and record the outcome through set_online."""
        try:
            online = await self._probe()
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        await self.set_online(online)
        return online

    async def _resolve_remote_host(self) -> bool:
        host = self.config.probe_host
        if not host:
            # Nothing to probe; keep the last known state
            return self._online

        loop = asyncio.get_running_loop()
        try:
            async with asyncio.timeout(self.config.remote_timeout_s):
                await loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM)
        except (OSError, TimeoutError):
            return False
        return True

    async def start(self) -> None:
        """Start the interval trigger."""
        if self._sync_task is not None:
            return

        async def sync_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self.config.auto_sync_interval_s)
                    await self.request_sync()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Sync loop error: {e}")

        self._sync_task = asyncio.create_task(sync_loop())
        logger.debug(f"Interval sync started every {self.config.auto_sync_interval_s}s")

    async def stop(self) -> None:
        """Stop the interval trigger."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

    def pause(self) -> None:
        """Pause sync; triggers skip passes until resumed."""
        self.engine.pause()

    def resume(self) -> None:
        """Resume sync operations."""
        self.engine.resume()
